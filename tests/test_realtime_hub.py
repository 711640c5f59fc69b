"""Tests del hub WebSocket de tiempo real."""

import asyncio
from datetime import datetime

import pytest

from smartair_api.realtime import EVENT_NEW_AIR_QUALITY, AirQualityHub


class FakeWebSocket:
    """WebSocket mínimo: registra lo enviado o falla al enviar."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.accepted = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)


@pytest.fixture
def hub() -> AirQualityHub:
    return AirQualityHub()


class TestAirQualityHub:
    @pytest.mark.asyncio
    async def test_connect_and_broadcast(self, hub):
        ws = FakeWebSocket()
        await hub.connect(ws)

        delivered = await hub.broadcast_async(EVENT_NEW_AIR_QUALITY, {"id": "urn:x", "at": datetime(2025, 1, 1)})

        assert ws.accepted
        assert delivered == 1
        assert ws.sent == [{"event": EVENT_NEW_AIR_QUALITY, "data": {"id": "urn:x", "at": "2025-01-01T00:00:00"}}]

    @pytest.mark.asyncio
    async def test_dead_connections_are_dropped(self, hub):
        alive, dead = FakeWebSocket(), FakeWebSocket(fail=True)
        await hub.connect(alive)
        await hub.connect(dead)

        assert await hub.broadcast_async("NewExternalData", {}) == 1
        assert hub.connection_count == 1
        assert hub.stats["connections_dropped"] == 1

    @pytest.mark.asyncio
    async def test_broadcast_from_worker_thread(self, hub):
        ws = FakeWebSocket()
        await hub.connect(ws)
        hub.bind_loop(asyncio.get_running_loop())

        await asyncio.get_running_loop().run_in_executor(None, hub.broadcast, EVENT_NEW_AIR_QUALITY, {"id": "a"})
        for _ in range(50):
            if ws.sent:
                break
            await asyncio.sleep(0.01)

        assert ws.sent[0]["data"] == {"id": "a"}

    def test_broadcast_without_loop_is_noop(self, hub):
        hub.broadcast(EVENT_NEW_AIR_QUALITY, {"id": "a"})
        assert hub.stats["messages_sent"] == 0

    def test_disconnect_unknown_socket(self, hub):
        hub.disconnect(FakeWebSocket())
        assert hub.connection_count == 0
