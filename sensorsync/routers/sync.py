"""Sync status, manual trigger, and the companion's inbound archive route."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request, Response

from sensorsync.dependencies import Runtime
from sensorsync.models.records import SyncStatusRead, status_to_read
from sensorsync.pipeline.base import parse_instant, utc_now
from sensorsync.pipeline.errors import TransportError
from sensorsync.pipeline.status import SyncError, SyncInProgress
from sensorsync.pipeline.sync.coordinator import SyncRole
from sensorsync.pipeline.transport import (
    CHANNEL_HEADER,
    DEFAULT_CHANNEL,
    TIMESTAMP_HEADER,
    TransportPayload,
)

router = APIRouter(prefix="/sync", tags=["sync"])
inbound_router = APIRouter(tags=["sync"])
logger = logging.getLogger("sensorsync.routers.sync")


def _read(runtime, status) -> SyncStatusRead:
    return status_to_read(
        status, role=runtime.role.value, in_flight=runtime.coordinator.in_flight
    )


@router.get("/status", response_model=SyncStatusRead)
async def get_status(runtime: Runtime) -> Any:
    return _read(runtime, runtime.coordinator.status)


@router.post("/now", response_model=SyncStatusRead)
async def sync_now(runtime: Runtime, response: Response) -> Any:
    """Run one attempt for this process's role, sharing the scheduler's guard.

    409 if an attempt is already in flight.
    """
    status = await runtime.coordinator.sync_once(runtime.role)
    if isinstance(status, SyncInProgress):
        response.status_code = 409
    return _read(runtime, status)


@inbound_router.post(DEFAULT_CHANNEL, response_model=SyncStatusRead)
async def receive_sensor_data(request: Request, runtime: Runtime, response: Response) -> Any:
    """Accept one archive from the origin device and ingest it.

    The body is the raw archive.  Responds 200 once ingested, 202 if another
    attempt was in flight (the payload stays queued for the next one), and
    500 if ingestion failed.
    """
    inbound = runtime.inbound
    if runtime.role is not SyncRole.COMPANION or inbound is None:
        raise HTTPException(status_code=409, detail="This process does not accept sensor data")

    data = await request.body()
    if not data:
        raise HTTPException(status_code=422, detail="Empty archive body")

    timestamp = utc_now()
    raw_timestamp = request.headers.get(TIMESTAMP_HEADER)
    if raw_timestamp:
        try:
            timestamp = parse_instant(raw_timestamp)
        except ValueError:
            raise HTTPException(status_code=422, detail=f"Invalid {TIMESTAMP_HEADER} header")

    payload = TransportPayload(
        channel=request.headers.get(CHANNEL_HEADER, inbound.channel),
        data=data,
        timestamp=timestamp,
    )
    try:
        inbound.deliver(payload)
    except TransportError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    status = await runtime.coordinator.sync_once(SyncRole.COMPANION)
    if isinstance(status, SyncInProgress):
        response.status_code = 202
    elif isinstance(status, SyncError):
        response.status_code = 500
    else:
        await asyncio.to_thread(runtime.sweeper.sweep_archives)
    return _read(runtime, status)
