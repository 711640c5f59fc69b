"""Dispositivos de ciudad inteligente (colección Devices)."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from common.db import DEVICES
from ..ngsi import object_id_or_none, serialize_config

logger = logging.getLogger(__name__)

STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"


def command_for_status(status: str) -> str:
    return "turn_off" if status == STATUS_INACTIVE else "turn_on"


class DeviceService:
    def __init__(self, db: Database):
        self._collection = db[DEVICES]

    def get_all(self) -> List[Dict[str, Any]]:
        return [serialize_config(doc) for doc in self._collection.find()]

    def get_by_id(self, device_id: str) -> Optional[Dict[str, Any]]:
        oid = object_id_or_none(device_id)
        if oid is None:
            return None
        return serialize_config(self._collection.find_one({"_id": oid}))

    def create(self, device: Dict[str, Any]) -> Dict[str, Any]:
        doc = {
            "deviceId": device.get("deviceId"),
            "deviceName": device["deviceName"],
            "type": device.get("type"),
            "observedProperty": device.get("observedProperty"),
            "featureOfInterest": device.get("featureOfInterest"),
            "location": device.get("location") or {"type": "Point", "coordinates": [0.0, 0.0]},
            "status": device.get("status") or STATUS_ACTIVE,
            "description": device.get("description"),
        }
        self._collection.insert_one(doc)
        logger.info("[DEVICES] Registered device %s", doc["deviceName"])
        return serialize_config(doc)

    def update_status(self, device_id: str, status: str) -> Optional[Dict[str, Any]]:
        oid = object_id_or_none(device_id)
        if oid is None:
            return None
        updated = self._collection.find_one_and_update(
            {"_id": oid},
            {"$set": {"status": status}},
            return_document=ReturnDocument.AFTER,
        )
        return serialize_config(updated)

    def delete(self, device_id: str) -> bool:
        oid = object_id_or_none(device_id)
        if oid is None:
            return False
        return self._collection.delete_one({"_id": oid}).deleted_count > 0
