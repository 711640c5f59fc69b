from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from common.config import get_settings
from common.db import close_client, get_database
from . import __version__
from .endpoints import ROUTERS
from .ingest import DataNormalizer, OpenAQClient, start_puller, stop_puller
from .mqtt import start_manager, start_receiver, stop_manager, stop_receiver
from .realtime import airquality_hub_endpoint, get_hub

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    hub = get_hub()
    hub.bind_loop(asyncio.get_running_loop())

    openaq = None
    if settings.enable_background_workers:
        db = get_database()
        openaq = OpenAQClient(
            settings.openaq_api_key,
            base_url=settings.openaq_base_url,
            location_id=settings.openaq_location_id,
        )

        if settings.mqtt_broker_host:
            start_receiver(
                db,
                DataNormalizer(openaq),
                hub,
                broker_host=settings.mqtt_broker_host,
                broker_port=settings.mqtt_broker_port,
                username=settings.mqtt_username,
                password=settings.mqtt_password,
                topic=settings.mqtt_topic,
                station_mapping=settings.station_mapping,
            )
        else:
            logger.warning("[APP] MQTT_BROKER_HOST not set, main receiver disabled")

        start_puller(db, hub, settings.external_pull_interval_seconds, settings.station_mapping)
        start_manager(db, hub, settings.external_mqtt_sync_seconds)
        logger.info("[APP] Background workers started")
    else:
        logger.info("[APP] Background workers disabled")

    try:
        yield
    finally:
        stop_manager()
        stop_puller()
        stop_receiver()
        if openaq is not None:
            openaq.close()
        close_client()
        logger.info("[APP] Shutdown complete")


app = FastAPI(title="SmartAir City API", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(get_settings().cors_allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for router in ROUTERS:
    app.include_router(router)

app.add_api_websocket_route("/airqualityhub", airquality_hub_endpoint)
