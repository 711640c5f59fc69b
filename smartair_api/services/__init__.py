"""Servicios de dominio sobre las colecciones MongoDB.

- air_quality.py: observaciones propias (MQTT / IoT)
- external_air_quality.py: observaciones de fuentes externas
- stations.py: vista unificada de estaciones
- external_sources.py: fuentes HTTP externas
- external_mqtt_sources.py: brokers MQTT externos
- contributions.py / contribution_validation.py: datos ciudadanos
- users.py / devices.py: usuarios y dispositivos
"""

from .air_quality import AirQualityService
from .contribution_validation import ValidationResult, validate_json, validate_payload
from .contributions import ContributedDataService
from .devices import DeviceService
from .external_air_quality import ExternalAirQualityService
from .external_mqtt_sources import ExternalMqttSourceService
from .external_sources import ExternalSourceService
from .stations import StationService
from .users import DuplicateEmailError, UserService

__all__ = [
    "AirQualityService",
    "ContributedDataService",
    "DeviceService",
    "DuplicateEmailError",
    "ExternalAirQualityService",
    "ExternalMqttSourceService",
    "ExternalSourceService",
    "StationService",
    "UserService",
    "ValidationResult",
    "validate_json",
    "validate_payload",
]
