"""Vista unificada de estaciones.

Combina cuatro orígenes en orden de prioridad:
1. Estaciones oficiales (mapping de configuración)
2. Estaciones guardadas en la colección Stations
3. Fuentes HTTP externas (ExternalSources)
4. Fuentes MQTT externas (ExternalMqttSources)

Si dos orígenes declaran el mismo stationId gana el primero.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from common.db import EXTERNAL_MQTT_SOURCES, EXTERNAL_SOURCES, STATIONS
from ..ngsi import utcnow

logger = logging.getLogger(__name__)

TYPE_OFFICIAL = "official"
TYPE_MQTT = "mqtt"
TYPE_EXTERNAL_HTTP = "external-http"
TYPE_EXTERNAL_MQTT = "external-mqtt"

STATION_TYPES = (TYPE_OFFICIAL, TYPE_MQTT, TYPE_EXTERNAL_HTTP, TYPE_EXTERNAL_MQTT)
EXTERNAL_TYPES = (TYPE_EXTERNAL_HTTP, TYPE_EXTERNAL_MQTT)


class StationService:
    def __init__(self, db: Database, station_mapping: Optional[Dict[str, dict]] = None):
        self._stations = db[STATIONS]
        self._external_sources = db[EXTERNAL_SOURCES]
        self._external_mqtt_sources = db[EXTERNAL_MQTT_SOURCES]
        self._station_mapping = station_mapping or {}

    def get_all_stations(self, station_type: Optional[str] = None) -> List[Dict[str, Any]]:
        merged: Dict[str, Dict[str, Any]] = {}
        for station in (
            self._official_stations()
            + self._stored_stations()
            + self._external_http_stations()
            + self._external_mqtt_stations()
        ):
            merged.setdefault(station["stationId"], station)

        stations = list(merged.values())
        if station_type in STATION_TYPES:
            stations = [s for s in stations if s["type"] == station_type]
        return stations

    def get_station_by_id(self, station_id: str) -> Optional[Dict[str, Any]]:
        for station in self.get_all_stations():
            if station["stationId"] == station_id:
                return station
        return None

    def exists(self, station_id: str) -> bool:
        if self._stations.count_documents({"stationId": station_id}, limit=1):
            return True
        return self.get_station_by_id(station_id) is not None

    def create_station(self, station: Dict[str, Any]) -> Dict[str, Any]:
        """Guarda la estación; si el stationId ya existe devuelve la existente."""
        existing = self._stations.find_one({"stationId": station["stationId"]}, {"_id": 0})
        if existing is not None:
            return existing

        doc = {
            "stationId": station["stationId"],
            "name": station.get("name") or station["stationId"],
            "latitude": float(station.get("latitude") or 0.0),
            "longitude": float(station.get("longitude") or 0.0),
            "type": station.get("type") or TYPE_MQTT,
            "isActive": station.get("isActive", True),
            "openAQLocationId": station.get("openAQLocationId"),
            "metadata": station.get("metadata") or {},
            "createdAt": utcnow(),
        }
        for key in ("sensorUrn", "featureOfInterest"):
            if station.get(key):
                doc["metadata"][key] = station[key]

        self._stations.insert_one(doc)
        doc.pop("_id", None)
        logger.info("[STATIONS] Created station %s (%s)", doc["stationId"], doc["type"])
        return doc

    def _official_stations(self) -> List[Dict[str, Any]]:
        stations = []
        for key, entry in self._station_mapping.items():
            lat = float(entry.get("latitude") or entry.get("Latitude") or 0.0)
            lon = float(entry.get("longitude") or entry.get("Longitude") or 0.0)
            if lat == 0.0 or lon == 0.0:
                logger.debug("[STATIONS] Skipping official station %s without coordinates", key)
                continue
            stations.append(
                {
                    "stationId": entry.get("stationId") or entry.get("StationId") or f"station-{key}",
                    "name": entry.get("name") or entry.get("Name") or key,
                    "latitude": lat,
                    "longitude": lon,
                    "type": TYPE_OFFICIAL,
                    "isActive": True,
                    "openAQLocationId": entry.get("openAQLocationId") or entry.get("OpenAQLocationId"),
                    "metadata": {},
                }
            )
        return stations

    def _stored_stations(self) -> List[Dict[str, Any]]:
        stations = []
        for doc in self._stations.find({}, {"_id": 0}):
            doc.setdefault("type", TYPE_MQTT)
            doc.setdefault("isActive", True)
            doc.setdefault("metadata", {})
            stations.append(doc)
        return stations

    def _external_http_stations(self) -> List[Dict[str, Any]]:
        stations = []
        for source in self._external_sources.find():
            if not source.get("stationId"):
                continue
            stations.append(
                {
                    "stationId": source["stationId"],
                    "name": source.get("name"),
                    "latitude": float(source.get("latitude") or 0.0),
                    "longitude": float(source.get("longitude") or 0.0),
                    "type": TYPE_EXTERNAL_HTTP,
                    "isActive": source.get("isActive", True),
                    "openAQLocationId": None,
                    "metadata": {
                        "sourceId": str(source["_id"]),
                        "url": source.get("url"),
                        "intervalMinutes": source.get("intervalMinutes"),
                        "lastFetchedAt": source.get("lastFetchedAt"),
                        "failureCount": source.get("failureCount", 0),
                    },
                }
            )
        return stations

    def _external_mqtt_stations(self) -> List[Dict[str, Any]]:
        stations = []
        for source in self._external_mqtt_sources.find():
            if not source.get("stationId"):
                continue
            stations.append(
                {
                    "stationId": source["stationId"],
                    "name": source.get("name"),
                    "latitude": float(source.get("latitude") or 0.0),
                    "longitude": float(source.get("longitude") or 0.0),
                    "type": TYPE_EXTERNAL_MQTT,
                    "isActive": source.get("isActive", True),
                    "openAQLocationId": source.get("openAQLocationId"),
                    "metadata": {
                        "sourceId": str(source["_id"]),
                        "brokerHost": source.get("brokerHost"),
                        "brokerPort": source.get("brokerPort"),
                        "topic": source.get("topic"),
                        "lastConnectedAt": source.get("lastConnectedAt"),
                        "lastMessageAt": source.get("lastMessageAt"),
                        "messageCount": source.get("messageCount", 0),
                    },
                }
            )
        return stations
