"""Hub de tiempo real por WebSocket.

Los workers (MQTT, polling HTTP) corren en threads propios; ``broadcast``
programa el envío en el event loop de la app con
``asyncio.run_coroutine_threadsafe``. Desde código async se usa
``broadcast_async`` directamente.

Formato de mensaje: ``{"event": "NewAirQualityData", "data": {...}}``
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, List, Optional

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)

EVENT_NEW_AIR_QUALITY = "NewAirQualityData"
EVENT_NEW_EXTERNAL = "NewExternalData"
EVENT_NEW_EXTERNAL_MQTT = "NewExternalMqttData"


class AirQualityHub:
    """Conexiones WebSocket activas y difusión de eventos."""

    def __init__(self):
        self._connections: List[WebSocket] = []
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._sent = 0
        self._dropped = 0

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        with self._lock:
            self._connections.append(websocket)
        logger.info("[HUB] Client connected (%d active)", self.connection_count)

    def disconnect(self, websocket: WebSocket) -> None:
        with self._lock:
            if websocket in self._connections:
                self._connections.remove(websocket)
        logger.info("[HUB] Client disconnected (%d active)", self.connection_count)

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    async def broadcast_async(self, event: str, data: Any) -> int:
        """Envía a todos los clientes; devuelve cuántos lo recibieron."""
        message = {"event": event, "data": jsonable_encoder(data)}
        with self._lock:
            targets = list(self._connections)

        delivered = 0
        for websocket in targets:
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning("[HUB] Dropping connection after send error: %s", e)
                self._dropped += 1
                self.disconnect(websocket)

        self._sent += delivered
        return delivered

    def broadcast(self, event: str, data: Any) -> None:
        """Thread-safe. Sin loop enlazado (tests, CLI) el evento se descarta."""
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("[HUB] No event loop bound, skipping %s", event)
            return
        asyncio.run_coroutine_threadsafe(self.broadcast_async(event, data), loop)

    @property
    def stats(self) -> dict:
        return {
            "connections": self.connection_count,
            "messages_sent": self._sent,
            "connections_dropped": self._dropped,
        }


_hub = AirQualityHub()


def get_hub() -> AirQualityHub:
    return _hub


async def airquality_hub_endpoint(websocket: WebSocket) -> None:
    """WebSocket ``/airqualityhub``: el servidor solo empuja eventos."""
    hub = get_hub()
    await hub.connect(websocket)
    try:
        while True:
            # Mensajes del cliente se ignoran (keepalive / ping)
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(websocket)
