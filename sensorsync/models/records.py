"""Pydantic response models for sensor records, sync status, and collection."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from sensorsync.models.base import SensorSyncBase
from sensorsync.pipeline.base import SensorKind, SensorRecord
from sensorsync.pipeline.status import SyncError, SyncStatus, SyncSuccess, status_name


# ---------- Records (one schema per sensor kind) ----------

class HeartRateRead(SensorSyncBase):
    id: int | None = None
    timestamp: datetime
    heart_rate: float
    confidence_score: float


class RespirationRateRead(SensorSyncBase):
    id: int | None = None
    timestamp: datetime
    respiration_rate: float
    ibi: float


class EdaRead(SensorSyncBase):
    id: int | None = None
    timestamp: datetime
    eda_value: float


class TemperatureRead(SensorSyncBase):
    id: int | None = None
    timestamp: datetime
    temp_value: float


RecordRead = HeartRateRead | RespirationRateRead | EdaRead | TemperatureRead

READ_MODELS: dict[SensorKind, type[SensorSyncBase]] = {
    SensorKind.HEART_RATE: HeartRateRead,
    SensorKind.RESPIRATION_RATE: RespirationRateRead,
    SensorKind.EDA: EdaRead,
    SensorKind.TEMPERATURE: TemperatureRead,
}


def to_read_model(record: SensorRecord) -> SensorSyncBase:
    return READ_MODELS[record.kind].model_validate(record)


class RetentionResult(SensorSyncBase):
    cutoff: datetime
    deleted: dict[str, int]
    total_deleted: int


# ---------- Sync status ----------

class SyncStatusRead(SensorSyncBase):
    state: str = Field(description="idle | in_progress | success | error")
    message: str | None = None
    error_type: str | None = None
    in_flight: bool = False
    role: str


def status_to_read(status: SyncStatus, *, role: str, in_flight: bool) -> SyncStatusRead:
    message = status.message if isinstance(status, (SyncSuccess, SyncError)) else None
    error_type = None
    if isinstance(status, SyncError) and status.cause is not None:
        error_type = type(status.cause).__name__
    return SyncStatusRead(
        state=status_name(status),
        message=message,
        error_type=error_type,
        in_flight=in_flight,
        role=role,
    )


# ---------- Collection ----------

class CollectionStatusRead(SensorSyncBase):
    collecting: bool
    changed: bool
    producers: list[str] = Field(default_factory=list)
