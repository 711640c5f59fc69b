"""Endpoints de observaciones propias (colección AirQuality)."""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from typing import Any, Optional, Tuple

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from .. import ngsi
from ..deps import get_air_quality_service, get_normalizer, get_realtime_hub, server_error
from ..ingest.normalization import DataNormalizer
from ..realtime import EVENT_NEW_AIR_QUALITY, AirQualityHub
from ..services import AirQualityService
from .downloads import attachment_name, json_attachment

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["airquality"])


def _public_list(docs):
    return [ngsi.to_public(d) for d in docs]


def parse_history_range(start: str, end: str) -> Tuple[datetime, datetime]:
    """Rango de historial; una fecha sin hora cubre el día completo.

    Raises:
        HTTPException 400: fechas inválidas o ``from >= to``
    """
    try:
        start_dt = ngsi.parse_datetime(start)
        end_dt = ngsi.parse_datetime(end)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "'from' and 'to' must be ISO 8601 dates"},
        )

    if start_dt.time() == time(0, 0):
        start_dt = datetime.combine(start_dt.date(), time(0, 0))
    if end_dt.time() == time(0, 0):
        end_dt = datetime.combine(end_dt.date(), time(0, 0)) + timedelta(days=1, seconds=-1)

    if start_dt >= end_dt:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "'from' must be earlier than 'to'"},
        )
    return start_dt, end_dt


@router.post("/iot-data")
def post_iot_data(
    payload: Any = Body(...),
    service: AirQualityService = Depends(get_air_quality_service),
    normalizer: DataNormalizer = Depends(get_normalizer),
    hub: AirQualityHub = Depends(get_realtime_hub),
):
    """Recibe una lectura IoT NGSI-LD, la normaliza y la guarda."""
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail={"message": "IoT payload must be a JSON-LD object"})
    entity_type = payload.get("type")
    if entity_type is not None and str(entity_type).lower() != ngsi.ENTITY_TYPE.lower():
        raise HTTPException(status_code=400, detail={"message": f"type must be '{ngsi.ENTITY_TYPE}'"})
    if ngsi.coordinates_of(payload) is None:
        raise HTTPException(
            status_code=400,
            detail={"message": "location.value.coordinates must have at least 2 elements"},
        )

    try:
        doc = service.insert(normalizer.normalize(payload))
    except Exception as e:
        logger.exception("[API] iot-data insert failed")
        raise server_error("Error saving IoT data", e)

    hub.broadcast(EVENT_NEW_AIR_QUALITY, ngsi.to_public(doc))
    return {"message": "IoT JSON-LD received and stored", "id": doc["id"]}


@router.get("/airquality")
def get_air_quality(
    limit: Optional[int] = Query(None, ge=1),
    service: AirQualityService = Depends(get_air_quality_service),
):
    if limit is not None:
        return _public_list(service.get_latest_n(limit))
    return _public_list(service.get_all())


@router.get("/airquality/latest")
def get_latest(service: AirQualityService = Depends(get_air_quality_service)):
    doc = service.get_latest()
    if doc is None:
        raise HTTPException(status_code=404, detail={"message": "No data available"})
    return ngsi.to_public(doc)


@router.get("/airquality/stations")
def get_stations(service: AirQualityService = Depends(get_air_quality_service)):
    stations = service.get_distinct_stations()
    return {"stations": stations, "total": len(stations)}


@router.get("/airquality/stations/info")
def get_stations_info(service: AirQualityService = Depends(get_air_quality_service)):
    return service.get_stations_info()


@router.get("/airquality/history")
def get_history(
    start: str = Query(..., alias="from"),
    end: str = Query(..., alias="to"),
    station_id: Optional[str] = Query(None, alias="stationId"),
    service: AirQualityService = Depends(get_air_quality_service),
):
    start_dt, end_dt = parse_history_range(start, end)
    return _public_list(service.get_by_time_range(start_dt, end_dt, station_id))


@router.get("/airquality/history/download")
def download_history(
    start: str = Query(..., alias="from"),
    end: str = Query(..., alias="to"),
    station_id: Optional[str] = Query(None, alias="stationId"),
    service: AirQualityService = Depends(get_air_quality_service),
):
    start_dt, end_dt = parse_history_range(start, end)
    data = _public_list(service.get_by_time_range(start_dt, end_dt, station_id))
    filename = attachment_name("airquality_history", station_id or "all")
    return json_attachment(data, filename)


@router.get("/airquality/download")
def download(
    station_id: Optional[str] = Query(None, alias="stationId"),
    limit: int = Query(100, ge=1),
    file_format: str = Query("json", alias="format"),
    service: AirQualityService = Depends(get_air_quality_service),
):
    if file_format.lower() != "json":
        raise HTTPException(status_code=400, detail={"message": "Only format=json is supported"})

    if station_id:
        docs = service.get_by_station(station_id, limit)
    else:
        docs = service.get_latest_n(limit)
    filename = attachment_name("airquality", station_id or "all")
    return json_attachment(_public_list(docs), filename)
