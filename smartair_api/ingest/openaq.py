"""Cliente OpenAQ v3 (endpoint ``/locations/{id}/latest``).

Solo se usa para completar las lecturas del sensor MQ135 (que solo
reporta AQI) con PM2.5, PM10, O3, NO2, SO2 y CO de una estación fija.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

import httpx

logger = logging.getLogger(__name__)

# sensorsId -> parámetro, fijo para la estación 556 Nguyen Van Cu (Hanoi)
SENSOR_PARAMETERS: Dict[int, str] = {
    13502150: "pm25",
    13502158: "co",
    13502159: "no2",
    13502160: "o3",
    13502161: "so2",
    13502165: "pm10",
}


class OpenAQClient:
    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.openaq.org/v3",
        location_id: int = 4946811,
        client: Optional[httpx.Client] = None,
        timeout: float = 10.0,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.location_id = location_id
        self._client = client or httpx.Client(timeout=timeout)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def get_latest(self) -> Optional[Dict[str, float]]:
        """Últimos valores por contaminante, o None si no hay datos."""
        url = f"{self.base_url}/locations/{self.location_id}/latest"
        headers = {"X-API-Key": self.api_key} if self.api_key else {}

        logger.info("[OPENAQ] Fetching latest for location %s", self.location_id)
        try:
            response = self._client.get(url, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("[OPENAQ] Request failed: %s", e)
            return None

        if not response.is_success:
            logger.warning("[OPENAQ] Latest failed: status=%d", response.status_code)
            return None

        try:
            results = response.json().get("results") or []
        except (ValueError, AttributeError):
            logger.warning("[OPENAQ] Invalid JSON body")
            return None

        if not results:
            logger.warning("[OPENAQ] No latest data for location %s", self.location_id)
            return None

        values: Dict[str, float] = {}
        for item in results:
            try:
                parameter = SENSOR_PARAMETERS.get(int(item["sensorsId"]))
                if parameter is not None:
                    values[parameter] = float(item["value"])
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("[OPENAQ] Skipping sensor entry: %s", e)

        logger.info("[OPENAQ] Values %s", values)
        return values or None

    def close(self) -> None:
        self._client.close()
