"""sensorsync API — FastAPI application entry point.

Run locally:
    SENSORSYNC_ROLE=companion uvicorn sensorsync.main:app --port 8000
    SENSORSYNC_ROLE=origin SENSORSYNC_COMPANION_URL=http://localhost:8000 \\
        uvicorn sensorsync.main:app --port 8001
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from sensorsync.config import Settings, get_settings
from sensorsync.pipeline.config_loader import (
    config_summary,
    get_pipeline_config,
    load_pipeline_config,
)
from sensorsync.routers import collection, health, records, sync
from sensorsync.services.runtime import PipelineRuntime

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("sensorsync")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings: Settings = app.state.settings
    logging.getLogger("sensorsync").setLevel(settings.log_level.upper())
    config = (
        load_pipeline_config(settings.pipeline_config_path)
        if settings.pipeline_config_path
        else get_pipeline_config()
    )
    logger.info(
        "Starting sensorsync v%s [%s, role=%s] %s",
        settings.app_version,
        settings.environment,
        settings.role.value,
        config_summary(config),
    )
    runtime = PipelineRuntime(settings, config)
    await runtime.start()
    app.state.runtime = runtime
    yield
    app.state.runtime = None
    await runtime.stop()
    logger.info("sensorsync shut down")


# ---------- App factory ----------

def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title="sensorsync API",
        description=(
            "Device-to-device physiological sensor sync: collection on the origin "
            "device, archive transfer, ingestion and range queries on the companion."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.runtime = None

    # ---------- Health check and inbound channel (outside v1 prefix) ----------
    app.include_router(health.router)
    app.include_router(sync.inbound_router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(sync.router, prefix=v1_prefix)
    app.include_router(records.router, prefix=v1_prefix)
    app.include_router(collection.router, prefix=v1_prefix)

    return app


app = create_app()
