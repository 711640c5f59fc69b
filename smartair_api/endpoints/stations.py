"""Endpoints de estaciones (vista unificada)."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from .. import ngsi
from ..deps import (
    get_air_quality_service,
    get_external_air_quality_service,
    get_station_service,
    server_error,
)
from ..services import AirQualityService, ExternalAirQualityService, StationService
from ..services.stations import EXTERNAL_TYPES

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stations", tags=["stations"])


@router.get("")
def list_stations(
    station_type: Optional[str] = Query(None, alias="type"),
    service: StationService = Depends(get_station_service),
):
    """Estaciones de todos los orígenes, filtrables por ``type``."""
    try:
        stations = service.get_all_stations(station_type)
    except Exception as e:
        logger.exception("[API] Listing stations failed")
        raise server_error("Error retrieving stations", e)

    return {
        "totalStations": len(stations),
        "summary": dict(Counter(s["type"] for s in stations)),
        "stations": stations,
    }


@router.get("/map")
def stations_map(service: StationService = Depends(get_station_service)):
    return [
        {
            "stationId": s["stationId"],
            "name": s["name"],
            "latitude": s["latitude"],
            "longitude": s["longitude"],
            "type": s["type"],
            "isActive": s["isActive"],
        }
        for s in service.get_all_stations()
        if s["latitude"] != 0 and s["longitude"] != 0
    ]


@router.get("/{station_id}")
def get_station(station_id: str, service: StationService = Depends(get_station_service)):
    station = service.get_station_by_id(station_id)
    if station is None:
        raise HTTPException(status_code=404, detail={"message": f"Station '{station_id}' not found"})
    return station


@router.get("/{station_id}/data")
def get_station_data(
    station_id: str,
    limit: int = Query(50, ge=1),
    stations: StationService = Depends(get_station_service),
    air_quality: AirQualityService = Depends(get_air_quality_service),
    external: ExternalAirQualityService = Depends(get_external_air_quality_service),
):
    """Últimas observaciones de la estación.

    Las estaciones externas leen de ExternalAirQuality; el resto de AirQuality.
    """
    station = stations.get_station_by_id(station_id)
    if station is not None and station["type"] in EXTERNAL_TYPES:
        docs = external.get_by_station(station_id, limit)
    else:
        docs = air_quality.get_by_station(station_id, limit)

    data = [ngsi.to_public(d) for d in docs]
    return {"stationId": station_id, "totalRecords": len(data), "data": data}
