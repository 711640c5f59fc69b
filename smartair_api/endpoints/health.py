"""Health and readiness endpoints."""

import time

from fastapi import APIRouter, HTTPException

from common import db
from ..ingest import get_puller
from ..mqtt import get_manager, get_receiver
from ..realtime import get_hub

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    """Liveness probe: ok mientras el proceso responda."""
    return {"status": "ok"}


@router.get("/ready")
def ready():
    """Readiness probe: ping a MongoDB y latencia.

    El detalle del fallo queda en el log, no en la respuesta.
    """
    start_time = time.time()
    if not db.ping():
        raise HTTPException(status_code=503, detail="not ready")
    latency_ms = (time.time() - start_time) * 1000
    return {"status": "ready", "latency_ms": round(latency_ms, 2)}


@router.get("/health/workers")
def workers():
    """Estado de los workers de fondo (``null`` si no están corriendo)."""
    receiver = get_receiver()
    manager = get_manager()
    puller = get_puller()
    return {
        "mqttReceiver": receiver.health_check() if receiver else None,
        "externalMqtt": manager.stats if manager else None,
        "externalPull": puller.stats if puller else None,
        "realtime": get_hub().stats,
    }
