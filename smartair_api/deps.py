"""Dependencias FastAPI (servicios por request sobre la BD compartida)."""

from __future__ import annotations

from typing import Iterator

import httpx
from fastapi import Depends, HTTPException, status
from pymongo.database import Database

from common.config import Settings, get_settings
from common.db import get_db
from .ingest.normalization import DataNormalizer
from .ingest.openaq import OpenAQClient
from .mqtt.publisher import DeviceCommandPublisher
from .realtime import AirQualityHub, get_hub
from .services import (
    AirQualityService,
    ContributedDataService,
    DeviceService,
    ExternalAirQualityService,
    ExternalMqttSourceService,
    ExternalSourceService,
    StationService,
    UserService,
)


def get_station_service(
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> StationService:
    return StationService(db, settings.station_mapping)


def get_air_quality_service(
    db: Database = Depends(get_db),
    stations: StationService = Depends(get_station_service),
) -> AirQualityService:
    return AirQualityService(db, stations)


def get_external_air_quality_service(db: Database = Depends(get_db)) -> ExternalAirQualityService:
    return ExternalAirQualityService(db)


def get_external_source_service(db: Database = Depends(get_db)) -> ExternalSourceService:
    return ExternalSourceService(db)


def get_external_mqtt_source_service(db: Database = Depends(get_db)) -> ExternalMqttSourceService:
    return ExternalMqttSourceService(db)


def get_contributed_data_service(db: Database = Depends(get_db)) -> ContributedDataService:
    return ContributedDataService(db)


def get_user_service(db: Database = Depends(get_db)) -> UserService:
    return UserService(db)


def get_device_service(db: Database = Depends(get_db)) -> DeviceService:
    return DeviceService(db)


def get_realtime_hub() -> AirQualityHub:
    return get_hub()


def get_http_client() -> Iterator[httpx.Client]:
    with httpx.Client(timeout=30.0, follow_redirects=True) as client:
        yield client


def get_command_publisher(settings: Settings = Depends(get_settings)) -> DeviceCommandPublisher:
    return DeviceCommandPublisher(
        broker_host=settings.mqtt_broker_host,
        broker_port=settings.mqtt_broker_port,
        username=settings.mqtt_username,
        password=settings.mqtt_password,
        topic_prefix=settings.device_command_topic_prefix,
    )


def server_error(message: str, exc: Exception) -> HTTPException:
    """500 con mensaje para el cliente; el detalle ya quedó en el log."""
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"message": message, "error": str(exc)},
    )


def get_normalizer(settings: Settings = Depends(get_settings)) -> Iterator[DataNormalizer]:
    openaq = OpenAQClient(
        settings.openaq_api_key,
        base_url=settings.openaq_base_url,
        location_id=settings.openaq_location_id,
    )
    try:
        yield DataNormalizer(openaq)
    finally:
        openaq.close()
