"""Tests del receptor MQTT principal y de la normalización IoT.

Los tests no conectan a un broker: los mensajes se entregan llamando
directamente a los callbacks de paho.
"""

import json
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import pytest

from common.db import AIR_QUALITY, STATIONS
from smartair_api import ngsi
from smartair_api.ingest import DataNormalizer, OpenAQClient
from smartair_api.ingest.normalization import OPENAQ_UNIT
from smartair_api.mqtt import MQTTReceiver
from smartair_api.mqtt.receiver import RECONNECT_DELAY
from smartair_api.mqtt.publisher import DeviceCommandPublisher
from smartair_api.realtime import EVENT_NEW_AIR_QUALITY


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def mq135_payload():
    """Lectura tal como la publica el sensor MQ135."""
    return {
        "id": "urn:ngsi-ld:AirQualityObserved:station-hn01:20250101100000",
        "type": "AirQualityObserved",
        "dateObserved": {"type": "Property", "value": "2025-01-01T10:00:00Z"},
        "location": {"type": "GeoProperty", "value": {"type": "Point", "coordinates": [105.85, 21.02]}},
        "airQualityIndex": {"type": "Property", "value": 87},
        "sosa:madeBySensor": "urn:ngsi-ld:Device:mq135-01",
        "sosa:hasFeatureOfInterest": {"type": "Relationship", "object": "urn:ngsi-ld:Air:hn01"},
    }


def openaq_client(handler) -> OpenAQClient:
    return OpenAQClient("key-123", client=httpx.Client(transport=httpx.MockTransport(handler)))


@pytest.fixture
def receiver(db, hub) -> MQTTReceiver:
    return MQTTReceiver(db, DataNormalizer(), hub, broker_host="broker.test")


# =============================================================================
# NORMALIZATION
# =============================================================================

class TestDataNormalizer:
    def test_parse_iot_payload(self, mq135_payload):
        entity = DataNormalizer().normalize(mq135_payload)

        assert entity["id"] == mq135_payload["id"]
        assert entity["dateObserved"]["value"] == datetime(2025, 1, 1, 10, 0, 0)
        assert entity["airQualityIndex"]["value"] == 87.0
        assert entity["airQualityIndex"]["unitCode"] == "P1"
        assert entity["location"] == ngsi.geo_point(105.85, 21.02)
        assert entity[ngsi.MADE_BY_SENSOR] == ngsi.relationship("urn:ngsi-ld:Device:mq135-01")
        assert entity[ngsi.FEATURE_OF_INTEREST]["object"] == "urn:ngsi-ld:Air:hn01"

    def test_invalid_date_falls_back_to_now(self, mq135_payload):
        mq135_payload["dateObserved"]["value"] = "not-a-date"
        entity = DataNormalizer().parse(mq135_payload)
        assert isinstance(entity["dateObserved"]["value"], datetime)

    def test_merges_positive_openaq_values(self, mq135_payload):
        seen = {}

        def handler(request):
            seen["key"] = request.headers.get("X-API-Key")
            seen["path"] = request.url.path
            return httpx.Response(
                200,
                json={
                    "results": [
                        {"sensorsId": 13502150, "value": 35.2},
                        {"sensorsId": 13502165, "value": 0},
                        {"sensorsId": 999, "value": 4.0},
                    ]
                },
            )

        entity = DataNormalizer(openaq_client(handler)).normalize(mq135_payload)

        assert seen["key"] == "key-123"
        assert seen["path"] == "/v3/locations/4946811/latest"
        assert entity["pm25"]["value"] == 35.2
        assert entity["pm25"]["unitCode"] == OPENAQ_UNIT
        assert "pm10" not in entity

    def test_openaq_error_keeps_iot_data(self, mq135_payload):
        entity = DataNormalizer(openaq_client(lambda r: httpx.Response(500))).normalize(mq135_payload)
        assert "pm25" not in entity
        assert entity["airQualityIndex"]["value"] == 87.0

    def test_openaq_without_key_is_not_called(self, mq135_payload):
        transport = MagicMock()
        openaq = OpenAQClient(None, client=transport)
        DataNormalizer(openaq).normalize(mq135_payload)
        transport.get.assert_not_called()


# =============================================================================
# RECEIVER
# =============================================================================

class TestMQTTReceiver:
    def test_process_stores_and_broadcasts(self, receiver, db, hub, mq135_payload):
        doc = receiver.process(mq135_payload)

        assert db[AIR_QUALITY].count_documents({"id": doc["id"]}) == 1
        assert db[STATIONS].find_one({"stationId": "station-hn01"})["type"] == "mqtt"

        event, payload = hub.broadcast.call_args[0]
        assert event == EVENT_NEW_AIR_QUALITY
        assert "_id" not in payload
        assert receiver.stats["messages_processed"] == 1

    def test_on_message_valid(self, receiver, db, mq135_payload):
        msg = SimpleNamespace(payload=json.dumps(mq135_payload).encode(), topic="air/quality/hanoi/mq135")
        receiver._on_message(None, None, msg)

        assert db[AIR_QUALITY].count_documents({}) == 1
        assert receiver.stats["messages_received"] == 1

    @pytest.mark.parametrize("raw", [b"{broken", b"[1, 2]", b"\xff\xfe"])
    def test_on_message_malformed(self, receiver, db, raw):
        receiver._on_message(None, None, SimpleNamespace(payload=raw, topic="t"))

        assert db[AIR_QUALITY].count_documents({}) == 0
        assert receiver.stats["messages_failed"] == 1

    def test_processing_error_is_counted(self, db, hub, mq135_payload):
        normalizer = MagicMock()
        normalizer.normalize.side_effect = RuntimeError("boom")
        receiver = MQTTReceiver(db, normalizer, hub)

        receiver._on_message(None, None, SimpleNamespace(payload=json.dumps(mq135_payload).encode(), topic="t"))
        assert receiver.stats["messages_failed"] == 1

    def test_on_connect_subscribes(self, receiver):
        paho = MagicMock()
        receiver._on_connect(paho, None, {}, 0)
        paho.subscribe.assert_called_once_with("air/quality/hanoi/mq135", qos=1)
        assert receiver.is_connected

        receiver._on_disconnect(paho, None, {}, 1)
        assert not receiver.health_check()["connected"]

    def test_start_keeps_loop_running_when_broker_down(self, db, hub):
        receiver = MQTTReceiver(db, DataNormalizer(), hub, broker_host="127.0.0.1", broker_port=1, connect_timeout=0)

        with patch("smartair_api.mqtt.receiver.mqtt.Client") as client_cls:
            assert receiver.start() is False

        paho = client_cls.return_value
        paho.connect_async.assert_called_once_with("127.0.0.1", 1, keepalive=60)
        paho.connect.assert_not_called()
        paho.reconnect_delay_set.assert_called_once_with(min_delay=RECONNECT_DELAY, max_delay=RECONNECT_DELAY)
        paho.loop_start.assert_called_once()
        assert receiver.is_running
        assert not receiver.is_connected

        receiver.stop()
        paho.loop_stop.assert_called_once()


# =============================================================================
# DEVICE COMMANDS
# =============================================================================

class TestDeviceCommandPublisher:
    def test_topic(self):
        publisher = DeviceCommandPublisher("broker.test", topic_prefix="smartcity/device/")
        assert publisher.topic_for("lamp-1") == "smartcity/device/lamp-1/cmd"

    def test_no_broker_returns_false(self):
        assert DeviceCommandPublisher("").publish_command("lamp-1", "turn_on") is False
