"""Sync orchestration for sensorsync.

Modules:
    coordinator — single-flight sync attempt and status ownership
    scheduler   — periodic trigger with availability gating and retry
    retention   — store and archive retention sweeps
"""

from sensorsync.pipeline.sync.coordinator import SyncCoordinator, SyncRole
from sensorsync.pipeline.sync.retention import RetentionSweeper, SweepReport
from sensorsync.pipeline.sync.scheduler import ScheduleWindow, SyncScheduler

__all__ = [
    "RetentionSweeper",
    "ScheduleWindow",
    "SweepReport",
    "SyncCoordinator",
    "SyncRole",
    "SyncScheduler",
]
