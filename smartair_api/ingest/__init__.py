"""Ingesta de datos externos y normalización.

- openaq.py: cliente OpenAQ v3
- normalization.py: payload IoT -> AirQualityObserved (+ merge OpenAQ)
- external_pull.py: polling periódico de fuentes HTTP
"""

from .external_pull import (
    MAX_FAILURE_COUNT,
    ExternalDataPuller,
    get_puller,
    start_puller,
    stop_puller,
)
from .normalization import DataNormalizer
from .openaq import OpenAQClient

__all__ = [
    "MAX_FAILURE_COUNT",
    "DataNormalizer",
    "ExternalDataPuller",
    "OpenAQClient",
    "get_puller",
    "start_puller",
    "stop_puller",
]
