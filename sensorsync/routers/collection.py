"""Origin-side sensor collection control."""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, HTTPException

from sensorsync.dependencies import Runtime
from sensorsync.models.records import CollectionStatusRead
from sensorsync.pipeline.errors import PermissionDeniedError, PipelineIOError
from sensorsync.pipeline.writer import SampleWriter

router = APIRouter(prefix="/collection", tags=["collection"])


def _writer(runtime) -> SampleWriter:
    if runtime.writer is None:
        raise HTTPException(status_code=409, detail="Collection runs on the origin role only")
    return runtime.writer


def _read(writer: SampleWriter, changed: bool) -> CollectionStatusRead:
    return CollectionStatusRead(
        collecting=writer.is_collecting,
        changed=changed,
        producers=[f"{p.kind.value}:{p.PRODUCER_ID}" for p in writer.producers],
    )


@router.get("", response_model=CollectionStatusRead)
async def get_collection(runtime: Runtime) -> Any:
    return _read(_writer(runtime), changed=False)


@router.post("/start", response_model=CollectionStatusRead)
async def start_collection(runtime: Runtime) -> Any:
    writer = _writer(runtime)
    try:
        changed = await asyncio.to_thread(writer.start_collection)
    except PermissionDeniedError as exc:
        raise HTTPException(status_code=403, detail=str(exc))
    except PipelineIOError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    return _read(writer, changed)


@router.post("/stop", response_model=CollectionStatusRead)
async def stop_collection(runtime: Runtime) -> Any:
    writer = _writer(runtime)
    changed = await asyncio.to_thread(writer.stop_collection)
    return _read(writer, changed)
