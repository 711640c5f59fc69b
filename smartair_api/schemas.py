"""Esquemas Pydantic de entrada de la API.

Los campos se exponen en camelCase (como los documentos Mongo) y se
aceptan también por nombre Python. Las reglas de negocio (campos vacíos,
rangos de coordenadas, puertos) se validan en los endpoints para
responder 400 con mensaje, no 422.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, validator


class ExternalSourceIn(BaseModel):
    """Alta de fuente HTTP externa."""

    name: Optional[str] = None
    url: Optional[str] = None
    interval_minutes: int = Field(60, alias="intervalMinutes")
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    headers: Dict[str, str] = Field(default_factory=dict)

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "name": "Hanoi Ocean Park",
                "url": "https://example.org/ngsi-ld/airquality",
                "intervalMinutes": 30,
                "latitude": 20.99,
                "longitude": 105.94,
                "headers": {"Authorization": "Bearer <token>"},
            }
        }


class UrlProbeIn(BaseModel):
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)


class ExternalMqttSourceIn(BaseModel):
    """Alta / edición de broker MQTT externo."""

    name: Optional[str] = None
    station_id: Optional[str] = Field(None, alias="stationId")
    broker_host: Optional[str] = Field(None, alias="brokerHost")
    broker_port: int = Field(1883, alias="brokerPort")
    topic: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = Field(False, alias="useTls")
    latitude: float = 0.0
    longitude: float = 0.0
    open_aq_location_id: Optional[int] = Field(None, alias="openAQLocationId")

    @validator("name", "broker_host", "topic", "username", "station_id")
    def strip_strings(cls, v):
        return v.strip() if isinstance(v, str) else v

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "name": "Campus roof sensor",
                "brokerHost": "broker.hivemq.com",
                "brokerPort": 1883,
                "topic": "campus/roof/air",
                "useTls": False,
                "latitude": 21.0285,
                "longitude": 105.8048,
            }
        }


class OpenAQLinkIn(BaseModel):
    open_aq_location_id: Optional[int] = Field(None, alias="openAQLocationId")

    class Config:
        populate_by_name = True


class MqttProbeIn(BaseModel):
    broker_host: str = Field(..., alias="brokerHost")
    broker_port: int = Field(1883, alias="brokerPort")
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = Field(False, alias="useTls")

    class Config:
        populate_by_name = True


class SignupIn(BaseModel):
    email: str = ""
    password: str = ""
    name: str = ""
    role: Optional[str] = None


class LoginIn(BaseModel):
    email: str
    password: str


class GeoPointIn(BaseModel):
    type: str = "Point"
    coordinates: List[float] = Field(default_factory=lambda: [0.0, 0.0])


class DeviceIn(BaseModel):
    device_id: Optional[str] = Field(None, alias="deviceId")
    device_name: str = Field(..., alias="deviceName", min_length=1)
    type: Optional[str] = None
    observed_property: Optional[str] = Field(None, alias="observedProperty")
    feature_of_interest: Optional[str] = Field(None, alias="featureOfInterest")
    location: Optional[GeoPointIn] = None
    status: str = "active"
    description: Optional[str] = None

    class Config:
        populate_by_name = True


class DeviceStatusIn(BaseModel):
    status: str = Field(..., min_length=1)


def dump(model: BaseModel) -> Dict[str, Any]:
    """Modelo -> dict camelCase para los servicios."""
    return model.model_dump(by_alias=True)
