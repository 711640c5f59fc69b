"""Servicio de fuentes HTTP externas (colección ExternalSources)."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from common.db import EXTERNAL_SOURCES
from ..ngsi import object_id_or_none, utcnow

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MINUTES = 60


class ExternalSourceService:
    def __init__(self, db: Database):
        self._collection = db[EXTERNAL_SOURCES]

    def get_all(self) -> List[Dict[str, Any]]:
        return list(self._collection.find())

    def get_active(self) -> List[Dict[str, Any]]:
        return list(self._collection.find({"isActive": True}))

    def get_by_id(self, source_id: str) -> Optional[Dict[str, Any]]:
        oid = object_id_or_none(source_id)
        if oid is None:
            return None
        return self._collection.find_one({"_id": oid})

    def get_by_url(self, url: str) -> Optional[Dict[str, Any]]:
        return self._collection.find_one({"url": url})

    def exists_by_url(self, url: str) -> bool:
        return self._collection.count_documents({"url": url}, limit=1) > 0

    def exists_by_station_id(self, station_id: str) -> bool:
        return self._collection.count_documents({"stationId": station_id}, limit=1) > 0

    def create(self, source: Dict[str, Any]) -> Dict[str, Any]:
        doc = {
            "name": source["name"],
            "url": source["url"],
            "stationId": source["stationId"],
            "intervalMinutes": source.get("intervalMinutes") or DEFAULT_INTERVAL_MINUTES,
            "latitude": source.get("latitude"),
            "longitude": source.get("longitude"),
            "headers": dict(source.get("headers") or {}),
            "lastFetchedAt": None,
            "failureCount": 0,
            "isActive": True,
            "lastError": None,
            "createdAt": utcnow(),
        }
        self._collection.insert_one(doc)
        logger.info("[EXT_SOURCES] Created source %s -> %s", doc["name"], doc["url"])
        return doc

    def delete(self, source_id: str) -> bool:
        oid = object_id_or_none(source_id)
        if oid is None:
            return False
        return self._collection.delete_one({"_id": oid}).deleted_count > 0

    def update_last_fetched(self, source_id: Any) -> None:
        self._collection.update_one(
            {"_id": source_id},
            {"$set": {"lastFetchedAt": utcnow(), "failureCount": 0, "lastError": None}},
        )

    def record_failure(self, source_id: Any, error: str) -> int:
        """Incrementa failureCount y devuelve el nuevo valor."""
        updated = self._collection.find_one_and_update(
            {"_id": source_id},
            {"$inc": {"failureCount": 1}, "$set": {"lastError": error}},
            return_document=ReturnDocument.AFTER,
        )
        return int(updated.get("failureCount", 0)) if updated else 0

    def deactivate(self, source_id: Any) -> None:
        self._collection.update_one({"_id": source_id}, {"$set": {"isActive": False}})
        logger.warning("[EXT_SOURCES] Source %s deactivated", source_id)

    def reactivate(self, source_id: str) -> bool:
        oid = object_id_or_none(source_id)
        if oid is None:
            return False
        result = self._collection.update_one(
            {"_id": oid},
            {"$set": {"isActive": True, "failureCount": 0, "lastError": None}},
        )
        return result.matched_count > 0
