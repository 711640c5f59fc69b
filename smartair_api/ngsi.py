"""Helpers para documentos NGSI-LD AirQualityObserved.

Todos los documentos (AirQuality, ExternalAirQuality, ContributedData)
comparten la misma forma:

- ``id``: URN ``urn:ngsi-ld:AirQualityObserved:{stationId}:{yyyyMMddHHmmss}``
- ``@context``: Smart Data Models + prefijo ``sosa``
- relaciones ``sosa:*`` como ``{"type": "Relationship", "object": ...}``
- ``location`` como GeoProperty Point ``[lon, lat]``
- contaminantes como NumericProperty ``{type, value, unitCode, observedAt}``
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId

ENTITY_TYPE = "AirQualityObserved"
URN_PREFIX = "urn:ngsi-ld:AirQualityObserved"
UNKNOWN_STATION = "station-unknown"

SMART_DATA_MODELS_CONTEXT = "https://smartdatamodels.org/context.jsonld"
SOSA_NAMESPACE = "http://www.w3.org/ns/sosa/"

MADE_BY_SENSOR = "sosa:madeBySensor"
OBSERVED_PROPERTY = "sosa:observedProperty"
FEATURE_OF_INTEREST = "sosa:hasFeatureOfInterest"

# Campo -> etiqueta usada en measuredParameters
POLLUTANT_LABELS = {
    "pm25": "PM2.5",
    "pm10": "PM10",
    "o3": "O3",
    "no2": "NO2",
    "so2": "SO2",
    "co": "CO",
    "airQualityIndex": "AQI",
}

# UN/CEFACT common codes
_GQ_NAMES = {"pm25", "pm2.5", "pm10", "pm1", "o3", "ozone", "no2", "so2", "co"}
_CEL_NAMES = {"temperature", "temp"}

_SLUG_INVALID = re.compile(r"[^a-z0-9-]")


def utcnow() -> datetime:
    """UTC naive, como lo devuelve pymongo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def default_context() -> List[Any]:
    return [SMART_DATA_MODELS_CONTEXT, {"sosa": SOSA_NAMESPACE}]


def relationship(target: str) -> Dict[str, str]:
    return {"type": "Relationship", "object": target}


def geo_point(longitude: float, latitude: float) -> Dict[str, Any]:
    return {
        "type": "GeoProperty",
        "value": {"type": "Point", "coordinates": [float(longitude), float(latitude)]},
    }


def numeric_property(
    value: float,
    unit_code: str,
    observed_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    return {
        "type": "Property",
        "value": float(value),
        "unitCode": unit_code,
        "observedAt": observed_at or utcnow(),
    }


def date_property(value: datetime) -> Dict[str, Any]:
    return {"type": "Property", "value": value}


def unit_for(name: str) -> str:
    """Deriva el unitCode a partir del nombre de la medida."""
    key = name.strip().lower()
    if key in _GQ_NAMES:
        return "GQ"
    if key in _CEL_NAMES:
        return "CEL"
    if key == "humidity":
        return "P1"
    if key == "pressure":
        return "A97"
    return "E30"


def observation_id(station_id: str, when: Optional[datetime] = None) -> str:
    stamp = (when or utcnow()).strftime("%Y%m%d%H%M%S")
    return f"{URN_PREFIX}:{station_id}:{stamp}"


def extract_station_id(entity_id: Optional[str]) -> str:
    """``urn:ngsi-ld:AirQualityObserved:station-hn01:...`` -> ``station-hn01``."""
    if entity_id:
        parts = entity_id.split(":")
        if len(parts) >= 4 and parts[3]:
            return parts[3]
    return UNKNOWN_STATION


def station_display_name(station_id: Optional[str]) -> str:
    """``station-hanoi-ocean-park`` -> ``Hanoi Ocean Park``."""
    if not station_id:
        return "Unknown"
    name = station_id[len("station-"):] if station_id.startswith("station-") else station_id
    words = [w for w in name.split("-") if w]
    if not words:
        return "Unknown"
    return " ".join(w[0].upper() + w[1:] for w in words)


def slugify_station_id(name: str) -> str:
    slug = _SLUG_INVALID.sub("-", name.strip().lower())
    slug = slug.replace("--", "-").strip("-")
    return f"station-{slug}"


def coordinates_of(doc: Dict[str, Any]) -> Optional[List[float]]:
    """Coordenadas ``[lon, lat]`` del GeoProperty, o None."""
    location = doc.get("location")
    if not isinstance(location, dict):
        return None
    value = location.get("value")
    if not isinstance(value, dict):
        return None
    coords = value.get("coordinates")
    if isinstance(coords, list) and len(coords) >= 2:
        return coords
    return None


def date_observed_of(doc: Dict[str, Any]) -> Optional[datetime]:
    date_observed = doc.get("dateObserved")
    if isinstance(date_observed, dict):
        value = date_observed.get("value")
        if isinstance(value, datetime):
            return value
    return None


def relationship_target(doc: Dict[str, Any], key: str) -> Optional[str]:
    value = doc.get(key)
    if isinstance(value, dict):
        return value.get("object")
    if isinstance(value, str):
        return value
    return None


def measured_parameters(doc: Dict[str, Any]) -> List[str]:
    return [label for field, label in POLLUTANT_LABELS.items() if doc.get(field) is not None]


def parse_datetime(value: str) -> datetime:
    """Parsea ISO 8601 (acepta sufijo ``Z``) a UTC naive.

    Raises:
        ValueError: si el valor no es ISO 8601
    """
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_public(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Documento de observación listo para la API (sin ``_id`` ni metadatos internos)."""
    if doc is None:
        return None
    public = dict(doc)
    public.pop("_id", None)
    public.pop("externalMetadata", None)
    return public


def serialize_config(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Documento de configuración (fuentes, usuarios, dispositivos) con ``id`` string."""
    if doc is None:
        return None
    public = dict(doc)
    object_id = public.pop("_id", None)
    if object_id is not None:
        public["id"] = str(object_id)
    return public


def object_id_or_none(value: str) -> Optional[ObjectId]:
    if ObjectId.is_valid(value):
        return ObjectId(value)
    return None
