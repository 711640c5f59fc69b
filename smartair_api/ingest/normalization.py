"""Normalización de lecturas IoT (MQ135) a AirQualityObserved.

El sensor solo reporta AQI; si hay cliente OpenAQ configurado se
completan los contaminantes con la última lectura oficial.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .. import ngsi
from .openaq import OpenAQClient

logger = logging.getLogger(__name__)

OPENAQ_UNIT = "µg/m³"
OPENAQ_POLLUTANTS = ("pm25", "pm10", "o3", "no2", "so2", "co")


def _relationship_field(value: Any) -> Optional[Dict[str, str]]:
    if isinstance(value, dict) and value.get("object"):
        return ngsi.relationship(value["object"])
    if isinstance(value, str) and value:
        return ngsi.relationship(value)
    return None


class DataNormalizer:
    def __init__(self, openaq: Optional[OpenAQClient] = None):
        self._openaq = openaq

    def parse(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        """Extrae los campos conocidos del payload IoT."""
        entity: Dict[str, Any] = {}

        if isinstance(raw.get("id"), str):
            entity["id"] = raw["id"]

        coords = ngsi.coordinates_of(raw)
        if coords is not None:
            try:
                entity["location"] = ngsi.geo_point(float(coords[0]), float(coords[1]))
            except (TypeError, ValueError):
                logger.warning("[NORMALIZE] Ignoring non-numeric coordinates %s", coords)

        observed = None
        date_observed = raw.get("dateObserved")
        if isinstance(date_observed, dict) and isinstance(date_observed.get("value"), str):
            try:
                observed = ngsi.parse_datetime(date_observed["value"])
            except ValueError:
                logger.warning("[NORMALIZE] Invalid dateObserved %r, using now", date_observed["value"])
        entity["dateObserved"] = ngsi.date_property(observed or ngsi.utcnow())

        aqi = raw.get("airQualityIndex")
        if isinstance(aqi, dict) and aqi.get("value") is not None:
            try:
                entity["airQualityIndex"] = ngsi.numeric_property(
                    float(aqi["value"]), aqi.get("unitCode") or "P1"
                )
            except (TypeError, ValueError):
                logger.warning("[NORMALIZE] Non-numeric airQualityIndex %r", aqi.get("value"))

        for key in (ngsi.MADE_BY_SENSOR, ngsi.OBSERVED_PROPERTY, ngsi.FEATURE_OF_INTEREST):
            rel = _relationship_field(raw.get(key))
            if rel is not None:
                entity[key] = rel

        return entity

    def normalize(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        entity = self.parse(raw)
        logger.info(
            "[NORMALIZE] Parsed IoT: AQI=%s location=%s",
            (entity.get("airQualityIndex") or {}).get("value"),
            ngsi.coordinates_of(entity),
        )

        if self._openaq is None or not self._openaq.enabled:
            return entity

        try:
            values = self._openaq.get_latest()
        except Exception as e:
            logger.warning("[NORMALIZE] OpenAQ merge failed, using IoT data only: %s", e)
            return entity

        if not values:
            logger.warning("[NORMALIZE] OpenAQ returned nothing, using IoT data only")
            return entity

        for pollutant in OPENAQ_POLLUTANTS:
            value = values.get(pollutant)
            if value is not None and value > 0:
                entity[pollutant] = ngsi.numeric_property(value, OPENAQ_UNIT)
        return entity
