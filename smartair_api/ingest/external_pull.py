"""Polling periódico de fuentes HTTP externas.

Cada ciclo recorre las fuentes activas y descarga las que cumplieron su
``intervalMinutes``. El cuerpo debe ser NGSI-LD AirQualityObserved (objeto
o array); cada entidad se hace upsert por ``id`` en ExternalAirQuality.

Fallos:
- Status HTTP no-2xx: se loguea y no cuenta como fallo
- Excepción (red, JSON inválido, BD): ``record_failure``; al llegar a
  MAX_FAILURE_COUNT la fuente se desactiva (``/reactivate`` la recupera)
"""

from __future__ import annotations

import logging
import threading
from datetime import timedelta
from typing import Any, Dict, List, Optional

import httpx
from pymongo.database import Database

from .. import ngsi
from ..realtime import EVENT_NEW_EXTERNAL, AirQualityHub
from ..services.external_air_quality import ExternalAirQualityService
from ..services.external_sources import ExternalSourceService
from ..services.stations import TYPE_EXTERNAL_HTTP, StationService

logger = logging.getLogger(__name__)

MAX_FAILURE_COUNT = 5


class ExternalDataPuller:
    """Worker de polling en thread propio."""

    DEFAULT_CHECK_INTERVAL = 60.0  # segundos

    def __init__(
        self,
        db: Database,
        hub: Optional[AirQualityHub] = None,
        client: Optional[httpx.Client] = None,
        check_interval: float = DEFAULT_CHECK_INTERVAL,
        station_mapping: Optional[Dict[str, dict]] = None,
    ):
        self._sources = ExternalSourceService(db)
        self._data = ExternalAirQualityService(db)
        self._stations = StationService(db, station_mapping)
        self._hub = hub
        self._client = client or httpx.Client(timeout=30.0, follow_redirects=True)
        self._check_interval = check_interval

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # Métricas
        self._cycles = 0
        self._pulls = 0
        self._saved = 0
        self._failures = 0

    def start(self):
        """Inicia el thread de polling."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="external-pull", daemon=True)
        self._thread.start()
        logger.info("[EXT_PULL] Started (check every %.0fs)", self._check_interval)

    def stop(self):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None
        logger.info("[EXT_PULL] Stopped. %s", self.stats)

    def _loop(self):
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as e:
                logger.exception("[EXT_PULL] Cycle failed: %s", e)
            self._stop_event.wait(self._check_interval)

    def run_once(self) -> int:
        """Un ciclo de polling; devuelve cuántas fuentes se descargaron."""
        self._cycles += 1
        now = ngsi.utcnow()
        pulled = 0
        for source in self._sources.get_active():
            if not self.is_due(source, now):
                continue
            self.pull_source(source)
            pulled += 1
        return pulled

    @staticmethod
    def is_due(source: Dict[str, Any], now) -> bool:
        last = source.get("lastFetchedAt")
        if last is None:
            return True
        interval = timedelta(minutes=source.get("intervalMinutes") or 60)
        return now - last >= interval

    def pull_source(self, source: Dict[str, Any]) -> int:
        """Descarga una fuente y devuelve cuántas entidades se guardaron."""
        self._pulls += 1
        name = source.get("name")
        try:
            response = self._client.get(source["url"], headers=source.get("headers") or {})
            if not response.is_success:
                logger.warning(
                    "[EXT_PULL] %s returned status=%d, skipping", name, response.status_code
                )
                return 0

            items = self._parse_body(response.json())
            saved = self._store_items(source, items)

            self._sources.update_last_fetched(source["_id"])
            logger.info("[EXT_PULL] %s: saved %d/%d entities", name, saved, len(items))
            return saved

        except Exception as e:
            self._failures += 1
            logger.error("[EXT_PULL] %s failed: %s", name, e)
            failure_count = self._sources.record_failure(source["_id"], str(e))
            if failure_count >= MAX_FAILURE_COUNT:
                self._sources.deactivate(source["_id"])
                logger.warning(
                    "[EXT_PULL] %s deactivated after %d consecutive failures", name, failure_count
                )
            return 0

    @staticmethod
    def _parse_body(body: Any) -> List[Dict[str, Any]]:
        if isinstance(body, list):
            return [item for item in body if isinstance(item, dict)]
        if isinstance(body, dict):
            return [body]
        raise ValueError(f"Unexpected JSON body type: {type(body).__name__}")

    def _store_items(self, source: Dict[str, Any], items: List[Dict[str, Any]]) -> int:
        saved = 0
        for item in items:
            doc = self._to_document(source, item)
            if doc is None:
                continue

            self._data.upsert(doc)
            saved += 1
            if self._hub is not None:
                self._hub.broadcast(EVENT_NEW_EXTERNAL, ngsi.to_public(doc))

            if saved == 1:
                self._ensure_station(source, doc)
        self._saved += saved
        return saved

    def _to_document(self, source: Dict[str, Any], item: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        entity_id = item.get("id")
        entity_type = item.get("type")
        if not isinstance(entity_id, str) or not entity_id or not isinstance(entity_type, str):
            logger.debug("[EXT_PULL] Skipping entity without id/type")
            return None
        if entity_type.lower() != ngsi.ENTITY_TYPE.lower():
            logger.debug("[EXT_PULL] Skipping entity of type %s", entity_type)
            return None

        doc = dict(item)
        doc.pop("_id", None)
        doc["type"] = ngsi.ENTITY_TYPE

        date_observed = doc.get("dateObserved")
        observed = None
        if isinstance(date_observed, dict) and isinstance(date_observed.get("value"), str):
            try:
                observed = ngsi.parse_datetime(date_observed["value"])
            except ValueError:
                logger.debug("[EXT_PULL] Unparseable dateObserved on %s", entity_id)
        if observed is not None:
            doc["dateObserved"] = ngsi.date_property(observed)
        elif ngsi.date_observed_of(doc) is None:
            doc["dateObserved"] = ngsi.date_property(ngsi.utcnow())

        doc["stationId"] = source["stationId"]
        doc["externalMetadata"] = {
            "sourceName": source.get("name"),
            "sourceUrl": source.get("url"),
            "fetchedAt": ngsi.utcnow(),
        }
        return doc

    def _ensure_station(self, source: Dict[str, Any], doc: Dict[str, Any]) -> None:
        try:
            if self._stations.exists(source["stationId"]):
                return
            lat, lon = source.get("latitude"), source.get("longitude")
            if lat is None or lon is None:
                coords = ngsi.coordinates_of(doc) or [0.0, 0.0]
                lon, lat = coords[0], coords[1]
            self._stations.create_station(
                {
                    "stationId": source["stationId"],
                    "name": source.get("name"),
                    "latitude": lat,
                    "longitude": lon,
                    "type": TYPE_EXTERNAL_HTTP,
                    "metadata": {"sourceUrl": source.get("url")},
                }
            )
        except Exception as e:
            logger.warning("[EXT_PULL] Could not ensure station %s: %s", source.get("stationId"), e)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def stats(self) -> dict:
        return {
            "running": self.is_running,
            "cycles": self._cycles,
            "pulls": self._pulls,
            "entities_saved": self._saved,
            "failures": self._failures,
        }

    def close(self) -> None:
        self._client.close()


# Singleton
_puller: Optional[ExternalDataPuller] = None


def get_puller() -> Optional[ExternalDataPuller]:
    return _puller


def start_puller(db: Database, hub: Optional[AirQualityHub], check_interval: float,
                 station_mapping: Optional[Dict[str, dict]] = None) -> ExternalDataPuller:
    global _puller

    if _puller is None:
        _puller = ExternalDataPuller(db, hub, check_interval=check_interval, station_mapping=station_mapping)
    _puller.start()
    return _puller


def stop_puller():
    global _puller

    if _puller is not None:
        _puller.stop()
        _puller.close()
        _puller = None
