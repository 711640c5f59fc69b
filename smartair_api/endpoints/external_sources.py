"""Endpoints de fuentes HTTP externas (``/api/sources``)."""

from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import JSONResponse

from ..deps import get_external_source_service, get_http_client, get_station_service, server_error
from ..ngsi import serialize_config, slugify_station_id
from ..schemas import ExternalSourceIn, UrlProbeIn
from ..services import ExternalSourceService, StationService
from ..services.stations import TYPE_EXTERNAL_HTTP

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sources", tags=["external-sources"])


@router.get("")
def list_sources(service: ExternalSourceService = Depends(get_external_source_service)):
    return [serialize_config(s) for s in service.get_all()]


@router.post("", status_code=status.HTTP_201_CREATED)
def create_source(
    body: ExternalSourceIn,
    service: ExternalSourceService = Depends(get_external_source_service),
    stations: StationService = Depends(get_station_service),
):
    """Registra una fuente y crea su estación.

    Raises:
        HTTPException 400: name o url vacíos, intervalMinutes < 1
        HTTPException 409: url o stationId ya registrados
    """
    name = (body.name or "").strip()
    url = (body.url or "").strip()
    if not name or not url:
        raise HTTPException(status_code=400, detail={"message": "Name and URL are required"})
    if body.interval_minutes < 1:
        raise HTTPException(status_code=400, detail={"message": "Interval must be at least 1 minute"})

    station_id = slugify_station_id(name)

    existing = service.get_by_url(url)
    if existing is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": "A source with this URL already exists",
                "existingSource": {
                    "id": str(existing["_id"]),
                    "name": existing.get("name"),
                    "stationId": existing.get("stationId"),
                    "isActive": existing.get("isActive"),
                },
            },
        )
    if service.exists_by_station_id(station_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": f"A source for station '{station_id}' already exists", "stationId": station_id},
        )

    try:
        source = service.create(
            {
                "name": name,
                "url": url,
                "stationId": station_id,
                "intervalMinutes": body.interval_minutes,
                "latitude": body.latitude,
                "longitude": body.longitude,
                "headers": body.headers,
            }
        )
    except Exception as e:
        logger.exception("[API] Creating source failed")
        raise server_error("Error creating source", e)

    # La fuente ya aparece como estación external-http en la vista unificada
    if not stations.exists(station_id):
        try:
            stations.create_station(
                {
                    "stationId": station_id,
                    "name": name,
                    "latitude": body.latitude,
                    "longitude": body.longitude,
                    "type": TYPE_EXTERNAL_HTTP,
                    "metadata": {"sourceUrl": url},
                }
            )
        except Exception as e:
            logger.warning("[API] Station auto-create failed for %s: %s", station_id, e)

    return serialize_config(source)


@router.delete("/{source_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_source(source_id: str, service: ExternalSourceService = Depends(get_external_source_service)):
    if not service.delete(source_id):
        raise HTTPException(status_code=404, detail={"message": "Source not found"})
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{source_id}/reactivate")
def reactivate_source(source_id: str, service: ExternalSourceService = Depends(get_external_source_service)):
    if not service.reactivate(source_id):
        raise HTTPException(status_code=404, detail={"message": "Source not found"})
    logger.info("[API] Source %s reactivated", source_id)
    return {"message": "Source reactivated", "id": source_id}


@router.post("/test")
def probe_url(body: UrlProbeIn, client: httpx.Client = Depends(get_http_client)):
    """Descarga la URL una vez para previsualizar su respuesta."""
    try:
        response = client.get(body.url, headers=body.headers)
    except Exception as e:
        logger.warning("[API] Probe of %s failed: %s", body.url, e)
        raise HTTPException(status_code=400, detail={"message": "Could not fetch URL", "error": str(e)})

    if not response.is_success:
        return JSONResponse(
            status_code=response.status_code,
            content={"message": f"Remote returned status {response.status_code}"},
        )

    try:
        return JSONResponse(content=response.json())
    except ValueError:
        return {"raw": response.text}
