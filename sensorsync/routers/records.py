"""Range queries and retention over stored sensor records."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException, Query

from sensorsync.dependencies import Store
from sensorsync.models.records import RecordRead, RetentionResult, to_read_model
from sensorsync.pipeline.base import SensorKind

router = APIRouter(prefix="/records", tags=["records"])


def _require_aware(name: str, value: datetime) -> datetime:
    if value.tzinfo is None:
        raise HTTPException(status_code=422, detail=f"'{name}' must include a UTC offset")
    return value


@router.get("/{kind}", response_model=list[RecordRead])
async def list_records(
    kind: str,
    store: Store,
    start: datetime = Query(...),
    end: datetime = Query(...),
) -> Any:
    """Records of one kind with ``start <= timestamp <= end``, oldest first."""
    try:
        sensor_kind = SensorKind(kind)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown sensor kind '{kind}'")
    _require_aware("start", start)
    _require_aware("end", end)
    if end < start:
        raise HTTPException(status_code=422, detail="'end' must not precede 'start'")

    records = await asyncio.to_thread(store.fetch_range, sensor_kind.record_type, start, end)
    return [to_read_model(r) for r in records]


@router.delete("", response_model=RetentionResult)
async def delete_records(store: Store, before: datetime = Query(...)) -> Any:
    """Delete every record of every kind older than ``before``."""
    _require_aware("before", before)
    deleted = await asyncio.to_thread(store.delete_before, before)
    return RetentionResult(
        cutoff=before,
        deleted={k.value: n for k, n in deleted.items()},
        total_deleted=sum(deleted.values()),
    )
