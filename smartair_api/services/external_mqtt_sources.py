"""Servicio de brokers MQTT externos (colección ExternalMqttSources)."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from common.db import EXTERNAL_MQTT_SOURCES
from ..ngsi import object_id_or_none, slugify_station_id, utcnow

logger = logging.getLogger(__name__)

DEFAULT_BROKER_PORT = 1883

# Campos editables por PUT
_EDITABLE_FIELDS = (
    "name",
    "stationId",
    "brokerHost",
    "brokerPort",
    "topic",
    "username",
    "password",
    "useTls",
    "latitude",
    "longitude",
    "openAQLocationId",
    "isActive",
)


class ExternalMqttSourceService:
    def __init__(self, db: Database):
        self._collection = db[EXTERNAL_MQTT_SOURCES]

    def get_all(self) -> List[Dict[str, Any]]:
        return list(self._collection.find())

    def get_active(self) -> List[Dict[str, Any]]:
        return list(self._collection.find({"isActive": True}))

    def get_by_id(self, source_id: str) -> Optional[Dict[str, Any]]:
        oid = object_id_or_none(str(source_id))
        if oid is None:
            return None
        return self._collection.find_one({"_id": oid})

    def create(self, source: Dict[str, Any]) -> Dict[str, Any]:
        doc = {key: source.get(key) for key in _EDITABLE_FIELDS}
        if not doc.get("stationId"):
            doc["stationId"] = slugify_station_id(source["name"])
        doc["brokerPort"] = doc.get("brokerPort") or DEFAULT_BROKER_PORT
        doc["useTls"] = bool(doc.get("useTls"))
        doc["isActive"] = True
        doc["createdAt"] = utcnow()
        doc["lastConnectedAt"] = None
        doc["lastMessageAt"] = None
        doc["lastError"] = None
        doc["messageCount"] = 0

        self._collection.insert_one(doc)
        logger.info(
            "[EXT_MQTT] Created source %s (%s:%s %s)",
            doc["name"],
            doc["brokerHost"],
            doc["brokerPort"],
            doc["topic"],
        )
        return doc

    def update(self, source_id: str, source: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Reemplaza el documento conservando id, createdAt y contadores."""
        existing = self.get_by_id(source_id)
        if existing is None:
            return None

        doc = {key: source.get(key, existing.get(key)) for key in _EDITABLE_FIELDS}
        if not doc.get("stationId"):
            doc["stationId"] = existing.get("stationId") or slugify_station_id(doc["name"])
        for key in ("createdAt", "lastConnectedAt", "lastMessageAt", "lastError", "messageCount"):
            doc[key] = existing.get(key)
        doc["_id"] = existing["_id"]

        self._collection.replace_one({"_id": existing["_id"]}, doc)
        return doc

    def update_openaq(self, source_id: str, location_id: Optional[int]) -> bool:
        oid = object_id_or_none(source_id)
        if oid is None:
            return False
        result = self._collection.update_one({"_id": oid}, {"$set": {"openAQLocationId": location_id}})
        return result.matched_count > 0

    def update_connection_status(self, source_id: Any, connected: bool, error: Optional[str] = None) -> None:
        if connected:
            update = {"$set": {"lastConnectedAt": utcnow(), "lastError": None}}
        else:
            update = {"$set": {"lastError": error}}
        self._collection.update_one({"_id": source_id}, update)

    def update_last_message(self, source_id: Any) -> None:
        self._collection.update_one(
            {"_id": source_id},
            {"$set": {"lastMessageAt": utcnow()}, "$inc": {"messageCount": 1}},
        )

    def delete(self, source_id: str) -> bool:
        oid = object_id_or_none(source_id)
        if oid is None:
            return False
        return self._collection.delete_one({"_id": oid}).deleted_count > 0

    def set_active(self, source_id: str, active: bool) -> bool:
        oid = object_id_or_none(source_id)
        if oid is None:
            return False
        result = self._collection.update_one({"_id": oid}, {"$set": {"isActive": active}})
        return result.matched_count > 0
