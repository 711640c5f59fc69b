"""Difusión en tiempo real de observaciones nuevas."""

from .hub import (
    EVENT_NEW_AIR_QUALITY,
    EVENT_NEW_EXTERNAL,
    EVENT_NEW_EXTERNAL_MQTT,
    AirQualityHub,
    airquality_hub_endpoint,
    get_hub,
)

__all__ = [
    "EVENT_NEW_AIR_QUALITY",
    "EVENT_NEW_EXTERNAL",
    "EVENT_NEW_EXTERNAL_MQTT",
    "AirQualityHub",
    "airquality_hub_endpoint",
    "get_hub",
]
