"""Routers HTTP de la API."""

from .air_quality import router as air_quality_router
from .contributions import router as contributions_router
from .devices import router as devices_router
from .external_mqtt import router as external_mqtt_router
from .external_sources import router as external_sources_router
from .health import router as health_router
from .stations import router as stations_router
from .users import router as users_router

ROUTERS = (
    health_router,
    air_quality_router,
    stations_router,
    external_sources_router,
    external_mqtt_router,
    contributions_router,
    users_router,
    devices_router,
)

__all__ = ["ROUTERS"]
