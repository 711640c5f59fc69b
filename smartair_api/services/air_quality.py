"""Servicio de la colección AirQuality (datos propios MQTT / IoT)."""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from common.db import AIR_QUALITY
from .. import ngsi
from .stations import StationService

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("dateObserved.value", DESCENDING), ("_id", DESCENDING)]
OLDEST_FIRST = [("dateObserved.value", ASCENDING), ("_id", ASCENDING)]


def _station_id_filter(station_id: str) -> Dict[str, str]:
    # El stationId vive dentro del URN, por eso se filtra por prefijo
    prefix = f"{ngsi.URN_PREFIX}:{station_id}"
    return {"$regex": "^" + re.escape(prefix) + "(:|$)"}


def apply_observation_defaults(doc: Dict[str, Any], station_id: Optional[str] = None) -> Dict[str, Any]:
    """Completa type, @context, id, observedProperty y dateObserved."""
    doc["type"] = ngsi.ENTITY_TYPE
    if not doc.get("@context"):
        doc["@context"] = ngsi.default_context()
    if not doc.get("id"):
        doc["id"] = ngsi.observation_id(station_id or ngsi.UNKNOWN_STATION)
    if not doc.get(ngsi.OBSERVED_PROPERTY):
        doc[ngsi.OBSERVED_PROPERTY] = ngsi.relationship("AirQuality")
    if ngsi.date_observed_of(doc) is None:
        doc["dateObserved"] = ngsi.date_property(ngsi.utcnow())
    return doc


class AirQualityService:
    def __init__(self, db: Database, stations: Optional[StationService] = None):
        self._collection = db[AIR_QUALITY]
        self._stations = stations

    def insert(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        """Inserta una observación y asegura que su estación exista."""
        apply_observation_defaults(doc)
        self._collection.insert_one(doc)
        logger.info("[AIR_QUALITY] Inserted %s", doc["id"])

        station_id = ngsi.extract_station_id(doc["id"])
        try:
            self._ensure_station(station_id, doc)
        except Exception as e:
            # La observación ya está guardada
            logger.warning("[AIR_QUALITY] Could not ensure station %s: %s", station_id, e)
        return doc

    def _ensure_station(self, station_id: str, doc: Dict[str, Any]) -> None:
        if self._stations is None or station_id == ngsi.UNKNOWN_STATION:
            return
        if self._stations.exists(station_id):
            return

        coords = ngsi.coordinates_of(doc) or [0.0, 0.0]
        self._stations.create_station(
            {
                "stationId": station_id,
                "name": ngsi.station_display_name(station_id),
                "latitude": float(coords[1]),
                "longitude": float(coords[0]),
                "type": "mqtt",
                "isActive": True,
                "sensorUrn": ngsi.relationship_target(doc, ngsi.MADE_BY_SENSOR),
                "featureOfInterest": ngsi.relationship_target(doc, ngsi.FEATURE_OF_INTEREST),
            }
        )

    def get_all(self) -> List[Dict[str, Any]]:
        return list(self._collection.find().sort(NEWEST_FIRST))

    def get_latest(self) -> Optional[Dict[str, Any]]:
        docs = self.get_latest_n(1)
        return docs[0] if docs else None

    def get_latest_n(self, limit: int = 50) -> List[Dict[str, Any]]:
        return list(self._collection.find().sort(NEWEST_FIRST).limit(limit))

    def get_by_time_range(
        self,
        start: datetime,
        end: datetime,
        station_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"dateObserved.value": {"$gte": start, "$lte": end}}
        if station_id:
            query["id"] = _station_id_filter(station_id)
        return list(self._collection.find(query).sort(OLDEST_FIRST))

    def get_distinct_stations(self) -> List[str]:
        ids = self._collection.distinct("id")
        stations = {ngsi.extract_station_id(i) for i in ids if i}
        return sorted(s for s in stations if s and s.strip())

    def get_by_station(self, station_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        query = {"id": _station_id_filter(station_id)}
        return list(self._collection.find(query).sort(NEWEST_FIRST).limit(limit))

    def get_stations_info(self) -> List[Dict[str, Any]]:
        groups: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for doc in self._collection.find():
            groups[ngsi.extract_station_id(doc.get("id"))].append(doc)

        info = []
        for station_id, docs in groups.items():
            latest = max(docs, key=lambda d: ngsi.date_observed_of(d) or datetime.min)
            coords = ngsi.coordinates_of(latest)
            location = latest.get("location") or {}
            info.append(
                {
                    "stationId": station_id,
                    "stationName": ngsi.station_display_name(station_id),
                    "sensor": ngsi.relationship_target(latest, ngsi.MADE_BY_SENSOR),
                    "location": {"type": location.get("type"), "coordinates": coords},
                    "measuredParameters": ngsi.measured_parameters(latest),
                    "totalRecords": len(docs),
                    "latestRecord": ngsi.date_observed_of(latest),
                    "featureOfInterest": ngsi.relationship_target(latest, ngsi.FEATURE_OF_INTEREST),
                }
            )
        info.sort(key=lambda s: s["totalRecords"], reverse=True)
        return info
