"""Health check endpoint."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from sensorsync.dependencies import AppSettings, Runtime
from sensorsync.pipeline.errors import StoreError

router = APIRouter(tags=["system"])
logger = logging.getLogger("sensorsync.health")


@router.get("/health")
async def health_check(settings: AppSettings, runtime: Runtime) -> dict:
    """Liveness probe. Returns 200 if the process is up.

    Also performs a lightweight store connectivity check.
    """
    store_ok = False
    try:
        store_ok = runtime.store.ping()
    except StoreError as exc:
        logger.warning("Health check store probe failed: %s", exc)

    return {
        "status": "healthy" if store_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "role": runtime.role.value,
        "store": "connected" if store_ok else "unreachable",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
