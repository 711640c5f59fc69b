"""Fixtures compartidas.

La BD es mongomock (en memoria) y la app se usa sin lifespan, así que
ningún worker de fondo ni broker MQTT se arranca durante los tests.
"""

import dataclasses
import os
from datetime import datetime
from typing import Any, Dict, Optional
from unittest.mock import MagicMock

os.environ["ENABLE_BACKGROUND_WORKERS"] = "0"
os.environ["SMARTAIR_ENV_FILE"] = ""
os.environ.pop("MQTT_BROKER_HOST", None)
os.environ.pop("OPENAQ_API_KEY", None)
os.environ.pop("STATION_MAPPING_FILE", None)

import mongomock
import pytest
from fastapi.testclient import TestClient

from common.config import get_settings
from common.db import get_db
from smartair_api import ngsi
from smartair_api.deps import get_realtime_hub
from smartair_api.realtime import AirQualityHub


OFFICIAL_MAPPING = {
    "hanoi-center": {
        "name": "Hanoi Center",
        "latitude": 21.0285,
        "longitude": 105.8542,
        "openAQLocationId": 4946811,
    },
    "no-coords": {"name": "Not placed yet", "latitude": 0, "longitude": 0},
}


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def db():
    """BD Mongo en memoria, nueva por test."""
    return mongomock.MongoClient()["SmartAirCityTest"]


@pytest.fixture
def settings():
    return dataclasses.replace(
        get_settings(),
        mqtt_broker_host="",
        openaq_api_key=None,
        station_mapping=OFFICIAL_MAPPING,
    )


@pytest.fixture
def hub() -> MagicMock:
    return MagicMock(spec=AirQualityHub)


@pytest.fixture
def app(db, settings, hub):
    from smartair_api.main import app as fastapi_app

    fastapi_app.dependency_overrides[get_db] = lambda: db
    fastapi_app.dependency_overrides[get_settings] = lambda: settings
    fastapi_app.dependency_overrides[get_realtime_hub] = lambda: hub
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


def make_entity(
    station_id: str = "station-hn01",
    observed: str = "2025-01-01T10:00:00Z",
    coordinates=(105.8542, 21.0285),
    entity_id: Optional[str] = None,
    **measurements: float,
) -> Dict[str, Any]:
    """Entidad AirQualityObserved tal como llega por la API (fechas ISO)."""
    measurements = measurements or {"pm25": 35.2}
    stamp = observed.replace("-", "").replace(":", "").replace("T", "")[:14]
    entity: Dict[str, Any] = {
        "id": entity_id or f"{ngsi.URN_PREFIX}:{station_id}:{stamp}",
        "type": ngsi.ENTITY_TYPE,
        "@context": ngsi.default_context(),
        "dateObserved": {"type": "Property", "value": observed},
        "location": {
            "type": "GeoProperty",
            "value": {"type": "Point", "coordinates": list(coordinates)},
        },
        ngsi.MADE_BY_SENSOR: ngsi.relationship(f"urn:ngsi-ld:Device:{station_id}-mq135"),
    }
    for key, value in measurements.items():
        entity[key] = {"type": "Property", "value": value, "unitCode": ngsi.unit_for(key)}
    return entity


def make_observation(station_id: str = "station-hn01", when: Optional[datetime] = None, **measurements):
    """Documento ya normalizado (dateObserved como datetime)."""
    when = when or datetime(2025, 1, 1, 10, 0, 0)
    doc = make_entity(station_id, when.strftime("%Y-%m-%dT%H:%M:%S"), **measurements)
    doc["dateObserved"] = ngsi.date_property(when)
    return doc
