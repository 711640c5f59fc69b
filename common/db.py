from __future__ import annotations

import logging
import threading
from typing import Optional

from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from .config import get_settings


logger = logging.getLogger(__name__)

# Collection names shared by services and workers.
AIR_QUALITY = "AirQuality"
EXTERNAL_AIR_QUALITY = "ExternalAirQuality"
STATIONS = "Stations"
EXTERNAL_SOURCES = "ExternalSources"
EXTERNAL_MQTT_SOURCES = "ExternalMqttSources"
CONTRIBUTED_DATA = "ContributedData"
USERS = "Users"
DEVICES = "Devices"

_client: Optional[MongoClient] = None
_lock = threading.Lock()


def get_client() -> MongoClient:
    global _client

    with _lock:
        if _client is None:
            settings = get_settings()
            # Log básico de parámetros de conexión (sin credenciales)
            logger.info(
                "[DB] Crear cliente MongoDB host=%s db=%s",
                settings.mongo_uri.split("@")[-1],
                settings.mongo_db_name,
            )
            _client = MongoClient(settings.mongo_uri, serverSelectionTimeoutMS=5000)
        return _client


def get_database() -> Database:
    return get_client()[get_settings().mongo_db_name]


def ping() -> bool:
    try:
        get_client().admin.command("ping")
        return True
    except PyMongoError:
        logger.exception("[DB] Ping a MongoDB FALLÓ")
        return False


def close_client() -> None:
    global _client

    with _lock:
        if _client is not None:
            _client.close()
            _client = None
            logger.info("[DB] Cliente MongoDB cerrado")


def get_db() -> Database:
    """FastAPI dependency; tests override it with an in-memory database."""
    return get_database()
