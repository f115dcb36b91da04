"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from sensorsync.config import Settings, get_settings
from sensorsync.services.runtime import PipelineRuntime
from sensorsync.services.store import SensorStore


def get_runtime(request: Request) -> PipelineRuntime:
    """Return the runtime built by the app lifespan."""
    runtime: PipelineRuntime | None = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Pipeline not started")
    return runtime


def get_store(runtime: Annotated[PipelineRuntime, Depends(get_runtime)]) -> SensorStore:
    return runtime.store


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


# Annotated shortcuts for route signatures
Runtime = Annotated[PipelineRuntime, Depends(get_runtime)]
Store = Annotated[SensorStore, Depends(get_store)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
