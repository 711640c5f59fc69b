"""Endpoints de brokers MQTT externos (``/api/mqtt``)."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.concurrency import run_in_threadpool

from ..deps import get_external_mqtt_source_service, server_error
from ..mqtt.external_subscriber import probe_broker
from ..ngsi import serialize_config, slugify_station_id
from ..schemas import ExternalMqttSourceIn, MqttProbeIn, OpenAQLinkIn, dump
from ..services import ExternalMqttSourceService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/mqtt", tags=["external-mqtt"])

MASKED_PASSWORD = "********"


def _public(source: dict) -> dict:
    public = serialize_config(source)
    # La contraseña del broker nunca sale por la API
    if public.get("password"):
        public["password"] = MASKED_PASSWORD
    return public


def validate_source(body: ExternalMqttSourceIn) -> None:
    """Raises HTTPException 400 con el primer error encontrado."""
    if not body.name:
        raise HTTPException(status_code=400, detail={"message": "Name is required"})
    if not body.broker_host:
        raise HTTPException(status_code=400, detail={"message": "Broker host is required"})
    if not body.topic:
        raise HTTPException(status_code=400, detail={"message": "Topic is required"})
    if not 1 <= body.broker_port <= 65535:
        raise HTTPException(status_code=400, detail={"message": "Broker port must be between 1 and 65535"})
    if not -90 <= body.latitude <= 90:
        raise HTTPException(status_code=400, detail={"message": "Latitude must be between -90 and 90"})
    if not -180 <= body.longitude <= 180:
        raise HTTPException(status_code=400, detail={"message": "Longitude must be between -180 and 180"})


def _get_or_404(service: ExternalMqttSourceService, source_id: str) -> dict:
    source = service.get_by_id(source_id)
    if source is None:
        raise HTTPException(status_code=404, detail={"message": "MQTT source not found"})
    return source


@router.get("/sources")
def list_sources(service: ExternalMqttSourceService = Depends(get_external_mqtt_source_service)):
    return [_public(s) for s in service.get_all()]


@router.get("/sources/{source_id}")
def get_source(source_id: str, service: ExternalMqttSourceService = Depends(get_external_mqtt_source_service)):
    return _public(_get_or_404(service, source_id))


@router.post("/sources", status_code=status.HTTP_201_CREATED)
def create_source(
    body: ExternalMqttSourceIn,
    service: ExternalMqttSourceService = Depends(get_external_mqtt_source_service),
):
    validate_source(body)
    data = dump(body)
    data["stationId"] = body.station_id or slugify_station_id(body.name)
    try:
        source = service.create(data)
    except Exception as e:
        logger.exception("[API] Creating MQTT source failed")
        raise server_error("Error creating MQTT source", e)
    return _public(source)


@router.put("/sources/{source_id}")
def update_source(
    source_id: str,
    body: ExternalMqttSourceIn,
    service: ExternalMqttSourceService = Depends(get_external_mqtt_source_service),
):
    existing = _get_or_404(service, source_id)
    validate_source(body)

    data = dump(body)
    data["stationId"] = existing.get("stationId")
    if not body.password or body.password == MASKED_PASSWORD:
        data["password"] = existing.get("password")
    data["isActive"] = existing.get("isActive", True)

    updated = service.update(source_id, data)
    if updated is None:
        raise HTTPException(status_code=404, detail={"message": "MQTT source not found"})
    return _public(updated)


@router.patch("/sources/{source_id}/openaq")
def link_openaq(
    source_id: str,
    body: OpenAQLinkIn,
    service: ExternalMqttSourceService = Depends(get_external_mqtt_source_service),
):
    if not service.update_openaq(source_id, body.open_aq_location_id):
        raise HTTPException(status_code=404, detail={"message": "MQTT source not found"})
    return {"message": "OpenAQ location updated", "id": source_id, "openAQLocationId": body.open_aq_location_id}


@router.delete("/sources/{source_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_source(source_id: str, service: ExternalMqttSourceService = Depends(get_external_mqtt_source_service)):
    if not service.delete(source_id):
        raise HTTPException(status_code=404, detail={"message": "MQTT source not found"})
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/sources/test")
async def probe_source(body: MqttProbeIn):
    """Conecta al broker (timeout 15 s) sin guardar nada."""
    broker = f"{body.broker_host}:{body.broker_port}"
    success, message = await run_in_threadpool(
        probe_broker,
        body.broker_host,
        body.broker_port,
        body.username,
        body.password,
        body.use_tls,
    )
    if not success:
        raise HTTPException(status_code=400, detail={"success": False, "message": message, "broker": broker})
    return {"success": True, "message": message, "broker": broker}


@router.post("/sources/{source_id}/activate")
def activate_source(source_id: str, service: ExternalMqttSourceService = Depends(get_external_mqtt_source_service)):
    if not service.set_active(source_id, True):
        raise HTTPException(status_code=404, detail={"message": "MQTT source not found"})
    return {"message": "MQTT source activated", "id": source_id}


@router.post("/sources/{source_id}/deactivate")
def deactivate_source(source_id: str, service: ExternalMqttSourceService = Depends(get_external_mqtt_source_service)):
    if not service.set_active(source_id, False):
        raise HTTPException(status_code=404, detail={"message": "MQTT source not found"})
    return {"message": "MQTT source deactivated", "id": source_id}
