"""Tests de suscriptores MQTT externos.

No se conecta a ningún broker: los clientes paho se reemplazan con
MagicMock y los mensajes se inyectan con ``handle_payload``.
"""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from common.db import EXTERNAL_AIR_QUALITY, EXTERNAL_MQTT_SOURCES
from smartair_api import ngsi
from smartair_api.mqtt import ExternalMqttClient, ExternalMqttManager, build_entity, extract_measurements
from smartair_api.realtime import EVENT_NEW_EXTERNAL_MQTT
from smartair_api.services import ExternalAirQualityService, ExternalMqttSourceService


@pytest.fixture
def sources(db) -> ExternalMqttSourceService:
    return ExternalMqttSourceService(db)


@pytest.fixture
def source(sources):
    return sources.create(
        {
            "name": "Campus Roof",
            "brokerHost": "broker.example",
            "topic": "campus/roof/air",
            "username": "roof",
            "password": "secret",
            "latitude": 21.03,
            "longitude": 105.80,
        }
    )


# =============================================================================
# PAYLOAD -> ENTITY
# =============================================================================

class TestExtractMeasurements:
    def test_numeric_and_value_objects(self):
        payload = {
            "pm25": 12.5,
            "temperature": {"value": 21, "unitCode": "CEL"},
            "humidity": {"value": 55},
            "id": "ignored",
            "label": "text",
            "online": True,
            "sosa:madeBySensor": 1,
        }
        measurements = extract_measurements(payload)

        assert set(measurements) == {"pm25", "temperature", "humidity"}
        assert measurements["pm25"]["unitCode"] == "GQ"
        assert measurements["pm25"]["value"] == 12.5
        assert measurements["humidity"]["unitCode"] == "P1"

    def test_no_measurements(self):
        assert extract_measurements({"status": "ok", "online": False}) == {}


class TestBuildEntity:
    def test_entity_shape(self, source):
        entity = build_entity(source, {"pm25": 12.5, "co": 0.3})

        assert entity["id"].startswith(f"{ngsi.URN_PREFIX}:station-campus-roof:")
        assert entity["type"] == ngsi.ENTITY_TYPE
        assert entity["stationId"] == "station-campus-roof"
        assert entity["location"]["value"]["coordinates"] == [105.80, 21.03]
        assert entity[ngsi.MADE_BY_SENSOR]["object"] == f"urn:ngsi-ld:ExternalMqttSource:{source['_id']}"
        assert entity["externalMetadata"]["sourceUrl"] == "mqtt://broker.example:1883"
        assert entity["pm25"]["value"] == 12.5

    def test_returns_none_without_measurements(self, source):
        assert build_entity(source, {"hello": "world"}) is None


# =============================================================================
# CLIENT
# =============================================================================

class TestExternalMqttClient:
    @pytest.fixture
    def client(self, db, sources, source, hub) -> ExternalMqttClient:
        return ExternalMqttClient(source, sources, ExternalAirQualityService(db), hub)

    def test_handle_payload_saves_and_broadcasts(self, client, db, hub, source):
        entity = client.handle_payload({"pm10": 40})

        assert db[EXTERNAL_AIR_QUALITY].count_documents({"id": entity["id"]}) == 1
        stored_source = db[EXTERNAL_MQTT_SOURCES].find_one({"_id": source["_id"]})
        assert stored_source["messageCount"] == 1
        assert stored_source["lastMessageAt"] is not None

        event, payload = hub.broadcast.call_args[0]
        assert event == EVENT_NEW_EXTERNAL_MQTT
        assert "externalMetadata" not in payload
        assert client.messages_saved == 1

    def test_payload_without_measurements_is_dropped(self, client, db):
        assert client.handle_payload({"status": "ok"}) is None
        assert client.handle_payload([1, 2, 3]) is None
        assert client.messages_dropped == 2
        assert db[EXTERNAL_AIR_QUALITY].count_documents({}) == 0

    def test_invalid_json_message(self, client):
        client._on_message(None, None, SimpleNamespace(payload=b"{not json", topic="t"))
        assert client.messages_dropped == 1

    def test_valid_json_message(self, client, db):
        msg = SimpleNamespace(payload=json.dumps({"no2": 18}).encode(), topic="campus/roof/air")
        client._on_message(None, None, msg)
        assert db[EXTERNAL_AIR_QUALITY].count_documents({}) == 1

    def test_connect_callbacks_update_status(self, client, db, source):
        paho = MagicMock()
        client._on_connect(paho, None, {}, 0)
        paho.subscribe.assert_called_once_with("campus/roof/air", qos=1)
        assert client.is_connected
        assert db[EXTERNAL_MQTT_SOURCES].find_one({"_id": source["_id"]})["lastConnectedAt"] is not None

        client._on_disconnect(paho, None, {}, 7)
        assert not client.is_connected
        assert db[EXTERNAL_MQTT_SOURCES].find_one({"_id": source["_id"]})["lastError"] == "Disconnected: 7"


# =============================================================================
# MANAGER
# =============================================================================

class TestExternalMqttManager:
    def test_sync_starts_and_stops_clients(self, db, sources, source):
        manager = ExternalMqttManager(db)
        created = {}

        def fake_client(src):
            created[str(src["_id"])] = MagicMock()
            return created[str(src["_id"])]

        with patch.object(manager, "_create_client", side_effect=fake_client):
            manager.sync()
            assert manager.active_source_ids == [str(source["_id"])]
            created[str(source["_id"])].start.assert_called_once()

            # Una segunda sync no duplica clientes
            manager.sync()
            assert len(created) == 1

            sources.set_active(str(source["_id"]), False)
            manager.sync()
            assert manager.active_source_ids == []
            created[str(source["_id"])].stop.assert_called_once()

    def test_failed_start_records_error(self, db, sources, source):
        manager = ExternalMqttManager(db)
        broken = MagicMock()
        broken.start.side_effect = OSError("dns failure")

        with patch.object(manager, "_create_client", return_value=broken):
            manager.sync()

        assert manager.active_source_ids == []
        assert db[EXTERNAL_MQTT_SOURCES].find_one({"_id": source["_id"]})["lastError"] == "dns failure"

    def test_stats(self, db, source):
        manager = ExternalMqttManager(db)
        fake = MagicMock(is_connected=True, messages_saved=3, messages_dropped=1)
        with patch.object(manager, "_create_client", return_value=fake):
            manager.sync()
        stats = manager.stats
        assert stats["clients"] == 1
        assert stats["connected"] == 1
        assert stats["messages_saved"] == 3
