"""sensorsync device-to-device sensor pipeline.

Collects physiological samples on the origin device, bundles them, hands the
bundle to the companion device, and ingests it there into a time-series store.

Subpackages:
    producers/ — hardware and synthetic reading producers
    sync/      — sync coordinator, periodic scheduler, retention sweeps

Core modules:
    base          — record models, sensor kinds, timestamp helpers
    status        — SyncStatus sum type and StatusBoard
    errors        — PipelineError taxonomy
    parser        — tolerant CSV log decoder
    archiver      — archive create/extract with path confinement
    writer        — SampleWriter append-only logs
    transport     — Transport contract and implementations
    config_loader — load/validate/hot-reload pipeline_config.yaml
"""

from sensorsync.pipeline.base import (
    Eda,
    HeartRate,
    RespirationRate,
    SensorKind,
    SensorRecord,
    Temperature,
)
from sensorsync.pipeline.config_loader import PipelineConfig, get_pipeline_config
from sensorsync.pipeline.status import (
    StatusBoard,
    SyncError,
    SyncIdle,
    SyncInProgress,
    SyncStatus,
    SyncSuccess,
)

__all__ = [
    "Eda",
    "HeartRate",
    "PipelineConfig",
    "RespirationRate",
    "SensorKind",
    "SensorRecord",
    "StatusBoard",
    "SyncError",
    "SyncIdle",
    "SyncInProgress",
    "SyncStatus",
    "SyncSuccess",
    "Temperature",
    "get_pipeline_config",
]
