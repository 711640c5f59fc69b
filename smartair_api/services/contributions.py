"""Servicio de datos contribuidos por ciudadanos (colección ContributedData)."""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from common.db import CONTRIBUTED_DATA
from .. import ngsi
from .air_quality import NEWEST_FIRST

logger = logging.getLogger(__name__)

# Segmentos del URN que no son nombre de estación
_NON_STATION_SEGMENTS = {"contributed", "contribution"}

PUBLIC_WINDOW_DAYS = 7
ANONYMOUS = "Anonymous"


def new_contribution_id() -> str:
    return uuid.uuid4().hex


def _generated_id(base_time: datetime, counter: Optional[int] = None) -> str:
    unique = uuid.uuid4().hex[:8]
    entity_id = f"{ngsi.URN_PREFIX}:contributed:{base_time:%Y-%m-%dT%H-%M-%S}-{unique}"
    if counter is not None:
        entity_id += f"-{counter}"
    return entity_id


def contributed_station(doc: Dict[str, Any]) -> Optional[str]:
    entity_id = doc.get("id")
    if not entity_id:
        return None
    parts = entity_id.split(":")
    if len(parts) >= 4 and parts[3] and parts[3] not in _NON_STATION_SEGMENTS:
        return parts[3]
    return None


def _observed(doc: Dict[str, Any]) -> datetime:
    return ngsi.date_observed_of(doc) or datetime.min


class ContributedDataService:
    def __init__(self, db: Database):
        self._collection = db[CONTRIBUTED_DATA]

    def insert(
        self,
        doc: Dict[str, Any],
        contribution_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> str:
        if not doc.get("id"):
            doc["id"] = _generated_id(ngsi.utcnow())
        doc["contributionId"] = contribution_id
        doc["userId"] = user_id
        self._collection.insert_one(doc)
        logger.info("[CONTRIB] Saved contributed record %s", doc["id"])
        return doc["id"]

    def insert_many(
        self,
        docs: List[Dict[str, Any]],
        contribution_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> List[str]:
        base_time = ngsi.utcnow()
        counter = 0
        ids = []
        for doc in docs:
            if not doc.get("id"):
                doc["id"] = _generated_id(base_time, counter)
                counter += 1
            doc["contributionId"] = contribution_id
            doc["userId"] = user_id
            ids.append(doc["id"])

        self._collection.insert_many(docs)
        logger.info("[CONTRIB] Saved %d contributed records", len(docs))
        return ids

    def get_all(self) -> List[Dict[str, Any]]:
        return list(self._collection.find().sort(NEWEST_FIRST))

    def get_latest_n(self, limit: int = 50) -> List[Dict[str, Any]]:
        return list(self._collection.find().sort(NEWEST_FIRST).limit(limit))

    def get_distinct_stations(self) -> List[str]:
        stations = {contributed_station(doc) for doc in self._collection.find({}, {"id": 1})}
        stations.discard(None)
        return sorted(stations)

    def get_by_station(self, station_id: str) -> List[Dict[str, Any]]:
        wanted = station_id.lower()
        docs = [
            doc for doc in self._collection.find()
            if (contributed_station(doc) or "").lower() == wanted
        ]
        docs.sort(key=_observed, reverse=True)
        return docs

    def get_by_user_id(self, user_id: str) -> List[Dict[str, Any]]:
        return list(self._collection.find({"userId": user_id}).sort(NEWEST_FIRST))

    def get_last_7_days(self) -> List[Dict[str, Any]]:
        since = ngsi.utcnow() - timedelta(days=PUBLIC_WINDOW_DAYS)
        return list(self._collection.find({"dateObserved.value": {"$gte": since}}).sort(NEWEST_FIRST))

    def get_stations_info(self) -> List[Dict[str, Any]]:
        groups: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for doc in self._collection.find():
            station = contributed_station(doc)
            if station:
                groups[station].append(doc)

        info = []
        for station_id, docs in groups.items():
            latest = max(docs, key=_observed)
            location = latest.get("location") or {}
            info.append(
                {
                    "stationId": station_id,
                    "stationName": ngsi.station_display_name(station_id),
                    "sensor": ngsi.relationship_target(latest, ngsi.MADE_BY_SENSOR),
                    "location": {"type": location.get("type"), "coordinates": ngsi.coordinates_of(latest)},
                    "measuredParameters": ngsi.measured_parameters(latest),
                    "totalContributions": len(docs),
                    "latestContribution": ngsi.date_observed_of(latest),
                    "featureOfInterest": ngsi.relationship_target(latest, ngsi.FEATURE_OF_INTEREST),
                }
            )
        info.sort(key=lambda s: s["totalContributions"], reverse=True)
        return info

    def get_by_contribution_id(self, contribution_id: str) -> List[Dict[str, Any]]:
        return list(self._collection.find({"contributionId": contribution_id}).sort(NEWEST_FIRST))

    def get_latest_n_by_contribution_id(self, contribution_id: str, limit: int = 5) -> List[Dict[str, Any]]:
        cursor = self._collection.find({"contributionId": contribution_id}).sort(NEWEST_FIRST).limit(limit)
        return list(cursor)

    def get_all_contribution_ids(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Resumen por contributionId. El userId solo filtra, nunca se devuelve."""
        query = {"userId": user_id} if user_id is not None else {}
        groups: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for doc in self._collection.find(query):
            if doc.get("contributionId"):
                groups[doc["contributionId"]].append(doc)

        contributions = []
        for contribution_id, docs in groups.items():
            ordered = sorted(docs, key=_observed)
            first = ngsi.date_observed_of(ordered[0])
            last = ngsi.date_observed_of(ordered[-1])
            contributions.append(
                {
                    "contributionId": contribution_id,
                    "recordCount": len(docs),
                    "firstUploadDate": first,
                    "lastUploadDate": last,
                    "createdAt": first or ngsi.utcnow(),
                }
            )
        contributions.sort(key=lambda c: c["createdAt"], reverse=True)
        return contributions

    def get_public_summary(
        self,
        names_by_user: Optional[Dict[str, str]] = None,
        docs: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """Resumen público de los últimos 7 días agrupado por contribuyente.

        ``docs`` permite reutilizar la ventana ya leída para resolver nombres.
        """
        names_by_user = names_by_user or {}
        if docs is None:
            docs = self.get_last_7_days()

        groups: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for doc in docs:
            groups[doc.get("userId") or ANONYMOUS].append(doc)

        contributors = []
        for user_id, records in groups.items():
            contributors.append(
                {
                    "name": ANONYMOUS if user_id == ANONYMOUS else names_by_user.get(user_id, ANONYMOUS),
                    "recordCount": len(records),
                    "contributionCount": len({r.get("contributionId") for r in records if r.get("contributionId")}),
                    "lastContribution": max(_observed(r) for r in records),
                }
            )
        contributors.sort(key=lambda c: c["recordCount"], reverse=True)

        return {
            "totalContributions": len(docs),
            "totalContributors": len([u for u in groups if u != ANONYMOUS]),
            "contributors": contributors,
        }
