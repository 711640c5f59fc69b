"""Receptor MQTT principal.

Escucha el topic del sensor MQ135, normaliza cada lectura a
AirQualityObserved (con merge OpenAQ opcional), la guarda en AirQuality
y la difunde por el hub como ``NewAirQualityData``.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Optional

import paho.mqtt.client as mqtt
from pymongo.database import Database

from .. import ngsi
from ..ingest.normalization import DataNormalizer
from ..realtime import EVENT_NEW_AIR_QUALITY, AirQualityHub
from ..services.air_quality import AirQualityService
from ..services.stations import StationService

logger = logging.getLogger(__name__)

QOS = 1
RECONNECT_DELAY = 5


class MQTTReceiver:
    """Receptor MQTT que guarda lecturas normalizadas en AirQuality."""

    def __init__(
        self,
        db: Database,
        normalizer: DataNormalizer,
        hub: Optional[AirQualityHub] = None,
        broker_host: str = "localhost",
        broker_port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        topic: str = "air/quality/hanoi/mq135",
        client_id: str = "smartaircity-main",
        station_mapping: Optional[dict] = None,
        connect_timeout: float = 5.0,
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.username = username
        self.password = password
        self.topic = topic
        self.client_id = f"{client_id}-{int(time.time())}"
        self.connect_timeout = connect_timeout

        self._client: Optional[mqtt.Client] = None
        self._running = False
        self._connected = False

        self._air_quality = AirQualityService(db, StationService(db, station_mapping))
        self._normalizer = normalizer
        self._hub = hub

        # Stats
        self._stats = ReceiverStats()

    def start(self) -> bool:
        """Inicia el receptor MQTT."""
        try:
            self._client = mqtt.Client(
                client_id=self.client_id,
                protocol=mqtt.MQTTv311,
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            )

            self._client.on_connect = self._on_connect
            self._client.on_disconnect = self._on_disconnect
            self._client.on_message = self._on_message

            if self.username and self.password:
                self._client.username_pw_set(self.username, self.password)

            logger.info("[MQTT] Connecting to %s:%d", self.broker_host, self.broker_port)

            self._client.reconnect_delay_set(min_delay=RECONNECT_DELAY, max_delay=RECONNECT_DELAY)
            # connect_async: un broker caído al arrancar no detiene el loop, que reintenta
            self._client.connect_async(self.broker_host, self.broker_port, keepalive=60)
            self._client.loop_start()
            self._running = True

            # Esperar conexión
            deadline = time.time() + self.connect_timeout
            while not self._connected and time.time() < deadline:
                time.sleep(0.1)

            if self._connected:
                logger.info("[MQTT] Started successfully")
                return True
            # paho sigue reintentando en su loop
            logger.error("[MQTT] Connection timeout, will keep retrying in background")
            return False

        except Exception as e:
            logger.exception("[MQTT] Start failed: %s", e)
            return False

    def stop(self):
        """Detiene el receptor."""
        self._running = False

        if self._client:
            try:
                self._client.loop_stop()
                self._client.disconnect()
            except Exception as e:
                logger.warning("[MQTT] Error stopping: %s", e)

        logger.info("[MQTT] Stopped. %s", self._stats)

    def _on_connect(self, client, userdata, flags, rc, properties=None):
        """Callback de conexión."""
        if rc == 0:
            self._connected = True
            logger.info("[MQTT] Connected to broker")
            client.subscribe(self.topic, qos=QOS)
            logger.info("[MQTT] Subscribed to %s", self.topic)
        else:
            self._connected = False
            logger.error("[MQTT] Connection failed: rc=%s", rc)

    def _on_disconnect(self, client, userdata, flags, rc, properties=None):
        """Callback de desconexión."""
        self._connected = False
        logger.warning("[MQTT] Disconnected (rc=%s)", rc)

    def _on_message(self, client, userdata, msg):
        """Callback de mensaje recibido."""
        self._stats.received += 1
        self._stats.last_message_at = time.time()

        data = self._parse_json(msg.payload, msg.topic)
        if data is None:
            return

        try:
            self.process(data)
        except Exception as e:
            logger.exception("[MQTT] Processing error: %s", e)
            self._stats.failed += 1

    def process(self, data: dict) -> dict:
        """Normaliza, guarda y difunde una lectura ya parseada."""
        entity = self._normalizer.normalize(data)
        doc = self._air_quality.insert(entity)
        self._stats.processed += 1

        if self._hub is not None:
            self._hub.broadcast(EVENT_NEW_AIR_QUALITY, ngsi.to_public(doc))

        if self._stats.processed % 100 == 0:
            logger.info("[MQTT] %s", self._stats)
        return doc

    def _parse_json(self, payload: bytes, topic: str) -> Optional[dict]:
        try:
            data = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            logger.warning("[MQTT] Invalid JSON: %s (topic=%s)", e, topic)
            self._stats.failed += 1
            return None
        if not isinstance(data, dict):
            logger.warning("[MQTT] Expected JSON object (topic=%s)", topic)
            self._stats.failed += 1
            return None
        return data

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def stats(self) -> dict:
        return {
            "running": self._running,
            "connected": self._connected,
            "broker": f"{self.broker_host}:{self.broker_port}",
            "topic": self.topic,
            "messages_received": self._stats.received,
            "messages_processed": self._stats.processed,
            "messages_failed": self._stats.failed,
            "last_message_at": self._stats.last_message_at,
        }

    def health_check(self) -> dict:
        return {
            "healthy": self._running and self._connected,
            "running": self._running,
            "connected": self._connected,
            "messages_processed": self._stats.processed,
            "messages_failed": self._stats.failed,
        }


class ReceiverStats:
    """Estadísticas del receptor."""

    def __init__(self):
        self.received = 0
        self.processed = 0
        self.failed = 0
        self.last_message_at: float = 0

    def __str__(self) -> str:
        return f"Stats: received={self.received} processed={self.processed} failed={self.failed}"


# Singleton
_receiver: Optional[MQTTReceiver] = None


def get_receiver() -> Optional[MQTTReceiver]:
    """Obtiene el receptor singleton."""
    return _receiver


def start_receiver(
    db: Database,
    normalizer: DataNormalizer,
    hub: Optional[AirQualityHub],
    broker_host: str,
    broker_port: int = 1883,
    username: Optional[str] = None,
    password: Optional[str] = None,
    topic: str = "air/quality/hanoi/mq135",
    station_mapping: Optional[dict] = None,
) -> bool:
    """Inicia el receptor."""
    global _receiver

    if _receiver is not None:
        return _receiver.is_running

    _receiver = MQTTReceiver(
        db,
        normalizer,
        hub,
        broker_host=broker_host,
        broker_port=broker_port,
        username=username,
        password=password,
        topic=topic,
        station_mapping=station_mapping,
    )
    return _receiver.start()


def stop_receiver():
    """Detiene el receptor."""
    global _receiver

    if _receiver is not None:
        _receiver.stop()
        _receiver = None
