"""Servicio de la colección ExternalAirQuality (fuentes HTTP y MQTT externas)."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from common.db import EXTERNAL_AIR_QUALITY
from .air_quality import NEWEST_FIRST

logger = logging.getLogger(__name__)


class ExternalAirQualityService:
    def __init__(self, db: Database):
        self._collection = db[EXTERNAL_AIR_QUALITY]

    def get_all(self) -> List[Dict[str, Any]]:
        return list(self._collection.find().sort(NEWEST_FIRST))

    def get_by_station_id(self, station_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        cursor = self._collection.find({"stationId": station_id}).sort(NEWEST_FIRST).limit(limit)
        return list(cursor)

    def get_latest_by_station(self, station_id: str) -> Optional[Dict[str, Any]]:
        docs = self.get_by_station_id(station_id, limit=1)
        return docs[0] if docs else None

    def upsert(self, doc: Dict[str, Any]) -> None:
        """Reemplaza por ``id`` conservando el ``_id`` existente."""
        existing = self._collection.find_one({"id": doc["id"]}, {"_id": 1})
        if existing is not None:
            doc["_id"] = existing["_id"]
        else:
            doc.pop("_id", None)
        self._collection.replace_one({"id": doc["id"]}, doc, upsert=True)

    def exists(self, entity_id: str) -> bool:
        return self._collection.count_documents({"id": entity_id}, limit=1) > 0

    def insert(self, doc: Dict[str, Any]) -> None:
        self._collection.insert_one(doc)

    def delete_by_station_id(self, station_id: str) -> int:
        result = self._collection.delete_many({"stationId": station_id})
        logger.info("[EXT_AQ] Deleted %d records for %s", result.deleted_count, station_id)
        return result.deleted_count

    def cleanup_null_ids(self) -> int:
        result = self._collection.delete_many({"$or": [{"id": None}, {"id": ""}]})
        if result.deleted_count:
            logger.warning("[EXT_AQ] Removed %d records without id", result.deleted_count)
        return result.deleted_count

    def get_latest_n(self, limit: int = 50) -> List[Dict[str, Any]]:
        return list(self._collection.find().sort(NEWEST_FIRST).limit(limit))

    def get_latest(self) -> Optional[Dict[str, Any]]:
        docs = self.get_latest_n(1)
        return docs[0] if docs else None

    def get_by_time_range(
        self,
        start: datetime,
        end: datetime,
        station_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"dateObserved.value": {"$gte": start, "$lte": end}}
        if station_id:
            query["stationId"] = station_id
        return list(self._collection.find(query).sort(NEWEST_FIRST))

    def get_by_station(self, station_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        return self.get_by_station_id(station_id, limit=limit)
