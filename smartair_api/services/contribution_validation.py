"""Validación de contribuciones ciudadanas en formato NGSI-LD.

Acepta un objeto AirQualityObserved o un array de objetos. Un array es
válido si al menos un elemento pasa la validación; los errores de cada
elemento se prefijan con ``Item N:``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .. import ngsi

logger = logging.getLogger(__name__)

REQUIRED_POLLUTANTS = ("pm25", "pm10", "o3", "no2", "so2", "co", "airQualityIndex")


@dataclass
class ValidationResult:
    """Resultado de validación."""

    is_valid: bool
    data: Optional[Dict[str, Any]] = None
    data_list: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def documents(self) -> List[Dict[str, Any]]:
        if self.data_list:
            return self.data_list
        return [self.data] if self.data is not None else []


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_entity(item: Any) -> List[str]:
    """Devuelve la lista de errores de un objeto (vacía si es válido)."""
    if not isinstance(item, dict):
        return ["Entity must be a JSON object"]

    errors = []
    if item.get("type") != ngsi.ENTITY_TYPE:
        errors.append(f"type must be '{ngsi.ENTITY_TYPE}'")

    context = item.get("@context")
    if not isinstance(context, list) or not context:
        errors.append("@context must be a non-empty array")

    date_observed = item.get("dateObserved")
    date_value = date_observed.get("value") if isinstance(date_observed, dict) else None
    if not isinstance(date_value, str):
        errors.append("dateObserved.value must be a string")
    else:
        try:
            ngsi.parse_datetime(date_value)
        except ValueError:
            errors.append("dateObserved.value must be an ISO 8601 date")

    coords = ngsi.coordinates_of(item)
    if coords is None:
        errors.append("location.value.coordinates must have at least 2 elements")
    elif not all(_is_number(c) for c in coords[:2]):
        errors.append("location.value.coordinates must be numeric")

    if not any(item.get(p) is not None for p in REQUIRED_POLLUTANTS):
        errors.append(
            "At least one measurement is required: " + ", ".join(REQUIRED_POLLUTANTS)
        )
    return errors


def normalize_entity(item: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(item)
    doc["dateObserved"] = ngsi.date_property(ngsi.parse_datetime(item["dateObserved"]["value"]))
    if not doc.get(ngsi.OBSERVED_PROPERTY):
        doc[ngsi.OBSERVED_PROPERTY] = ngsi.relationship("AirQuality")
    return doc


def validate_json(text: str) -> ValidationResult:
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError) as e:
        return ValidationResult(is_valid=False, errors=[f"Invalid JSON: {e}"])
    return validate_payload(parsed)


def validate_payload(parsed: Any) -> ValidationResult:
    if isinstance(parsed, dict):
        errors = validate_entity(parsed)
        if errors:
            return ValidationResult(is_valid=False, errors=errors)
        return ValidationResult(is_valid=True, data=normalize_entity(parsed))

    if isinstance(parsed, list):
        if not parsed:
            return ValidationResult(is_valid=False, errors=["Array must contain at least one entity"])

        valid_items = []
        errors = []
        for index, item in enumerate(parsed, start=1):
            item_errors = validate_entity(item)
            if item_errors:
                errors.extend(f"Item {index}: {e}" for e in item_errors)
            else:
                valid_items.append(normalize_entity(item))

        if not valid_items:
            return ValidationResult(is_valid=False, errors=errors)
        if errors:
            logger.info("[CONTRIB] %d items skipped during validation", len(parsed) - len(valid_items))
        return ValidationResult(is_valid=True, data_list=valid_items, errors=errors)

    return ValidationResult(is_valid=False, errors=["Payload must be a JSON object or array"])
