"""Suscriptores MQTT para brokers externos registrados.

Un cliente paho por ExternalMqttSource activa. ``sync()`` (cada
EXTERNAL_MQTT_SYNC_SECONDS) detiene los clientes de fuentes borradas o
desactivadas y arranca los de fuentes nuevas.

Los payloads externos son JSON libres: cada clave numérica (o con
``value`` numérico) se convierte en NumericProperty de una entidad
AirQualityObserved que se guarda en ExternalAirQuality.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Dict, Optional, Tuple

import paho.mqtt.client as mqtt
from pymongo.database import Database

from .. import ngsi
from ..realtime import EVENT_NEW_EXTERNAL_MQTT, AirQualityHub
from ..services.external_air_quality import ExternalAirQualityService
from ..services.external_mqtt_sources import ExternalMqttSourceService

logger = logging.getLogger(__name__)

QOS = 1
DEFAULT_TEST_TIMEOUT = 15.0

# Claves de estructura NGSI-LD que no son medidas
_RESERVED_KEYS = {"id", "type", "dateObserved", "location"}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def extract_measurements(payload: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Claves de medida -> NumericProperty."""
    now = ngsi.utcnow()
    measurements: Dict[str, Dict[str, Any]] = {}
    for key, value in payload.items():
        if key.startswith("@") or key.startswith("sosa:") or key in _RESERVED_KEYS:
            continue
        if _is_number(value):
            measurements[key] = ngsi.numeric_property(value, ngsi.unit_for(key), now)
        elif isinstance(value, dict) and _is_number(value.get("value")):
            unit = value.get("unitCode") or ngsi.unit_for(key)
            measurements[key] = ngsi.numeric_property(value["value"], unit, now)
    return measurements


def build_entity(source: Dict[str, Any], payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Entidad ExternalAirQuality para un mensaje, o None si no trae medidas."""
    measurements = extract_measurements(payload)
    if not measurements:
        return None

    now = ngsi.utcnow()
    station_id = source["stationId"]
    entity: Dict[str, Any] = {
        "id": ngsi.observation_id(station_id, now),
        "type": ngsi.ENTITY_TYPE,
        "@context": ngsi.default_context(),
        ngsi.MADE_BY_SENSOR: ngsi.relationship(f"urn:ngsi-ld:ExternalMqttSource:{source['_id']}"),
        ngsi.OBSERVED_PROPERTY: ngsi.relationship("AirQuality"),
        ngsi.FEATURE_OF_INTEREST: ngsi.relationship(f"urn:ngsi-ld:Air:external-mqtt-{station_id}"),
        "location": ngsi.geo_point(source.get("longitude") or 0.0, source.get("latitude") or 0.0),
        "dateObserved": ngsi.date_property(now),
        "stationId": station_id,
        "externalMetadata": {
            "sourceName": source.get("name"),
            "sourceUrl": f"mqtt://{source.get('brokerHost')}:{source.get('brokerPort')}",
            "fetchedAt": now,
        },
    }
    entity.update(measurements)
    return entity


def _new_client(client_id: str, username: Optional[str], password: Optional[str], use_tls: bool) -> mqtt.Client:
    client = mqtt.Client(
        client_id=client_id,
        protocol=mqtt.MQTTv311,
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
    )
    if username:
        client.username_pw_set(username, password or None)
    if use_tls:
        client.tls_set()
    return client


def probe_broker(
    host: str,
    port: int,
    username: Optional[str] = None,
    password: Optional[str] = None,
    use_tls: bool = False,
    timeout: float = DEFAULT_TEST_TIMEOUT,
) -> Tuple[bool, str]:
    """Prueba de conexión a un broker; devuelve (éxito, mensaje)."""
    connected = threading.Event()
    result: Dict[str, Any] = {}

    def on_connect(client, userdata, flags, rc, properties=None):
        result["rc"] = rc
        connected.set()

    client = _new_client(f"smartaircity-test-{threading.get_ident()}", username, password, use_tls)
    client.on_connect = on_connect
    try:
        client.connect_async(host, port, keepalive=30)
        client.loop_start()
        if not connected.wait(timeout):
            return False, f"Connection timeout after {timeout:.0f}s"
        if result["rc"] == 0:
            return True, "Connected successfully"
        return False, f"Connection refused: {result['rc']}"
    except Exception as e:
        logger.warning("[EXT_MQTT] Test connection to %s:%s failed: %s", host, port, e)
        return False, str(e)
    finally:
        try:
            client.loop_stop()
            client.disconnect()
        except Exception as e:
            logger.debug("[EXT_MQTT] Error closing test client: %s", e)


class ExternalMqttClient:
    """Cliente MQTT de una fuente externa."""

    def __init__(
        self,
        source: Dict[str, Any],
        sources: ExternalMqttSourceService,
        data: ExternalAirQualityService,
        hub: Optional[AirQualityHub] = None,
    ):
        self.source = source
        self.source_id = str(source["_id"])
        self._sources = sources
        self._data = data
        self._hub = hub
        self._client: Optional[mqtt.Client] = None
        self._connected = False
        self.messages_saved = 0
        self.messages_dropped = 0

    def start(self) -> None:
        source = self.source
        self._client = _new_client(
            f"smartaircity-{self.source_id}",
            source.get("username"),
            source.get("password"),
            bool(source.get("useTls")),
        )
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

        logger.info(
            "[EXT_MQTT] Connecting %s to %s:%s",
            source.get("name"),
            source.get("brokerHost"),
            source.get("brokerPort"),
        )
        # connect_async: el loop de paho reintenta si el broker no está
        self._client.connect_async(source["brokerHost"], int(source.get("brokerPort") or 1883), keepalive=60)
        self._client.loop_start()

    def stop(self) -> None:
        if self._client is None:
            return
        try:
            self._client.loop_stop()
            self._client.disconnect()
        except Exception as e:
            logger.warning("[EXT_MQTT] Error stopping %s: %s", self.source_id, e)
        self._client = None
        self._connected = False

    def _on_connect(self, client, userdata, flags, rc, properties=None):
        if rc == 0:
            self._connected = True
            client.subscribe(self.source["topic"], qos=QOS)
            logger.info("[EXT_MQTT] %s subscribed to %s", self.source.get("name"), self.source["topic"])
            self._sources.update_connection_status(self.source["_id"], True)
        else:
            self._connected = False
            logger.error("[EXT_MQTT] %s connection failed: rc=%s", self.source.get("name"), rc)
            self._sources.update_connection_status(self.source["_id"], False, f"Connection refused: {rc}")

    def _on_disconnect(self, client, userdata, flags, rc, properties=None):
        self._connected = False
        logger.warning("[EXT_MQTT] %s disconnected (rc=%s)", self.source.get("name"), rc)
        self._sources.update_connection_status(self.source["_id"], False, f"Disconnected: {rc}")

    def _on_message(self, client, userdata, msg):
        try:
            payload = json.loads(msg.payload.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            logger.warning("[EXT_MQTT] Invalid JSON from %s: %s", self.source.get("name"), e)
            self.messages_dropped += 1
            return

        try:
            self.handle_payload(payload)
        except Exception as e:
            logger.exception("[EXT_MQTT] Processing error for %s: %s", self.source.get("name"), e)
            self.messages_dropped += 1

    def handle_payload(self, payload: Any) -> Optional[Dict[str, Any]]:
        entity = build_entity(self.source, payload) if isinstance(payload, dict) else None
        if entity is None:
            logger.warning("[EXT_MQTT] No measurements in message from %s", self.source.get("name"))
            self.messages_dropped += 1
            return None

        self._data.upsert(entity)
        if self._hub is not None:
            self._hub.broadcast(EVENT_NEW_EXTERNAL_MQTT, ngsi.to_public(entity))
        self._sources.update_last_message(self.source["_id"])
        self.messages_saved += 1
        return entity

    @property
    def is_connected(self) -> bool:
        return self._connected


class ExternalMqttManager:
    """Mantiene un cliente por fuente activa."""

    DEFAULT_SYNC_INTERVAL = 30.0  # segundos

    def __init__(
        self,
        db: Database,
        hub: Optional[AirQualityHub] = None,
        sync_interval: float = DEFAULT_SYNC_INTERVAL,
    ):
        self._sources = ExternalMqttSourceService(db)
        self._data = ExternalAirQualityService(db)
        self._hub = hub
        self._sync_interval = sync_interval
        self._clients: Dict[str, ExternalMqttClient] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _create_client(self, source: Dict[str, Any]) -> ExternalMqttClient:
        return ExternalMqttClient(source, self._sources, self._data, self._hub)

    def sync(self) -> None:
        active = {str(s["_id"]): s for s in self._sources.get_active()}

        with self._lock:
            for source_id in list(self._clients):
                if source_id not in active:
                    logger.info("[EXT_MQTT] Stopping client for %s", source_id)
                    self._clients.pop(source_id).stop()

            for source_id, source in active.items():
                if source_id in self._clients:
                    continue
                client = self._create_client(source)
                try:
                    client.start()
                except Exception as e:
                    logger.error("[EXT_MQTT] Could not start %s: %s", source.get("name"), e)
                    self._sources.update_connection_status(source["_id"], False, str(e))
                    continue
                self._clients[source_id] = client

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="external-mqtt-sync", daemon=True)
        self._thread.start()
        logger.info("[EXT_MQTT] Manager started (sync every %.0fs)", self._sync_interval)

    def _loop(self):
        while not self._stop_event.is_set():
            try:
                self.sync()
            except Exception as e:
                logger.exception("[EXT_MQTT] Sync failed: %s", e)
            self._stop_event.wait(self._sync_interval)

    def stop(self):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None
        with self._lock:
            for client in self._clients.values():
                client.stop()
            self._clients.clear()
        logger.info("[EXT_MQTT] Manager stopped")

    @property
    def active_source_ids(self) -> list:
        with self._lock:
            return sorted(self._clients)

    @property
    def stats(self) -> dict:
        with self._lock:
            clients = list(self._clients.values())
        return {
            "running": self._thread is not None and self._thread.is_alive(),
            "clients": len(clients),
            "connected": sum(1 for c in clients if c.is_connected),
            "messages_saved": sum(c.messages_saved for c in clients),
            "messages_dropped": sum(c.messages_dropped for c in clients),
        }


# Singleton
_manager: Optional[ExternalMqttManager] = None


def get_manager() -> Optional[ExternalMqttManager]:
    return _manager


def start_manager(db: Database, hub: Optional[AirQualityHub], sync_interval: float) -> ExternalMqttManager:
    global _manager

    if _manager is None:
        _manager = ExternalMqttManager(db, hub, sync_interval=sync_interval)
    _manager.start()
    return _manager


def stop_manager():
    global _manager

    if _manager is not None:
        _manager.stop()
        _manager = None
