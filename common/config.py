from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Tuple

from dotenv import load_dotenv


logger = logging.getLogger(__name__)


def _default_env_file() -> str:
    repo_root = Path(__file__).resolve().parents[1]
    return str(repo_root / ".env")


@dataclass(frozen=True)
class Settings:
    mongo_uri: str
    mongo_db_name: str

    mqtt_broker_host: str
    mqtt_broker_port: int
    mqtt_username: str | None
    mqtt_password: str | None
    mqtt_topic: str

    openaq_api_key: str | None
    openaq_base_url: str
    openaq_location_id: int

    external_pull_interval_seconds: float
    external_mqtt_sync_seconds: float
    enable_background_workers: bool

    device_command_topic_prefix: str
    cors_allowed_origins: Tuple[str, ...]

    # stationKey -> {name, latitude, longitude, stationId?, openAQLocationId?}
    station_mapping: Dict[str, dict] = field(default_factory=dict)


def _load_station_mapping(path: str | None) -> Dict[str, dict]:
    if not path:
        return {}
    mapping_file = Path(path)
    if not mapping_file.exists():
        logger.warning("[CONFIG] Station mapping file not found: %s", path)
        return {}
    try:
        data = json.loads(mapping_file.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.error("[CONFIG] Invalid station mapping file %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.error("[CONFIG] Station mapping must be an object keyed by station")
        return {}
    return data


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def get_settings() -> Settings:
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv("SMARTAIR_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    origins = os.getenv("CORS_ALLOWED_ORIGINS", "*")

    return Settings(
        mongo_uri=os.getenv("MONGO_URI", "mongodb://localhost:27017"),
        mongo_db_name=os.getenv("MONGO_DB_NAME", "SmartAirCity"),
        mqtt_broker_host=os.getenv("MQTT_BROKER_HOST", "").strip(),
        mqtt_broker_port=int(os.getenv("MQTT_BROKER_PORT", "1883")),
        mqtt_username=os.getenv("MQTT_USERNAME") or None,
        mqtt_password=os.getenv("MQTT_PASSWORD") or None,
        mqtt_topic=os.getenv("MQTT_TOPIC", "air/quality/hanoi/mq135"),
        openaq_api_key=os.getenv("OPENAQ_API_KEY") or None,
        openaq_base_url=os.getenv("OPENAQ_BASE_URL", "https://api.openaq.org/v3").rstrip("/"),
        openaq_location_id=int(os.getenv("OPENAQ_LOCATION_ID", "4946811")),
        external_pull_interval_seconds=float(os.getenv("EXTERNAL_PULL_INTERVAL_SECONDS", "60")),
        external_mqtt_sync_seconds=float(os.getenv("EXTERNAL_MQTT_SYNC_SECONDS", "30")),
        enable_background_workers=_as_bool(os.getenv("ENABLE_BACKGROUND_WORKERS", "1")),
        device_command_topic_prefix=os.getenv("DEVICE_COMMAND_TOPIC_PREFIX", "smartcity/device").rstrip("/"),
        cors_allowed_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        station_mapping=_load_station_mapping(os.getenv("STATION_MAPPING_FILE")),
    )
