"""Shared fixtures for sensorsync pipeline tests."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import pytest

from sensorsync.pipeline.base import SensorKind
from sensorsync.pipeline.config_loader import PipelineConfig, load_pipeline_config
from sensorsync.pipeline.status import StatusBoard
from sensorsync.pipeline.sync.coordinator import SyncCoordinator
from sensorsync.pipeline.transport import QueueTransport
from sensorsync.services.store import SensorStore

# Canonical instants used across tests
T0 = datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc)

SAMPLE_LOGS: dict[SensorKind, str] = {
    SensorKind.HEART_RATE: (
        "timestamp,heart_rate,confidence_score\n"
        "2024-01-01T10:00:00Z,72.5,0.95\n"
        "BADLINE\n"
        "2024-01-01T10:00:02Z,73.0,0.9\n"
    ),
    SensorKind.RESPIRATION_RATE: (
        "timestamp,respiration_rate,ibi\n"
        "2024-01-01T10:00:00Z,15.0,4.0\n"
    ),
    SensorKind.EDA: (
        "timestamp,eda_value\n"
        "2024-01-01T10:00:00Z,2.5\n"
        "2024-01-01T10:00:01Z,2.6\n"
    ),
    SensorKind.TEMPERATURE: (
        "timestamp,temp_value\n"
        "2024-01-01T10:00:00Z,36.6\n"
    ),
}


def write_logs(directory: Path, logs: dict[SensorKind, str] = SAMPLE_LOGS) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    for kind, text in logs.items():
        (directory / kind.file_name).write_text(text, encoding="utf-8")
    return directory


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    """Load the real bundled pipeline config for tests."""
    return load_pipeline_config()


# ---------------------------------------------------------------------------
# Filesystem fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_log_dir(tmp_path: Path) -> Path:
    """A directory holding all four sensor logs (one malformed heart-rate line)."""
    return write_logs(tmp_path / "sensor_data")


# ---------------------------------------------------------------------------
# Store / transport / coordinator fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Iterator[SensorStore]:
    """An open in-memory store."""
    s = SensorStore(":memory:")
    s.open()
    yield s
    s.close()


@pytest.fixture
def transport_pair() -> tuple[QueueTransport, QueueTransport]:
    """A connected (origin, companion) in-process link."""
    return QueueTransport.pair()


def make_coordinator(
    root: Path, store: SensorStore | None, transport, source_dir: Path | None = None
) -> SyncCoordinator:
    return SyncCoordinator(
        store=store,
        transport=transport,
        source_dir=source_dir or root / "sensor_data",
        outbox_dir=root / "outbox",
        inbox_dir=root / "inbox",
        work_dir=root / "work",
        status_board=StatusBoard(),
    )


@pytest.fixture
def origin(tmp_path: Path, sample_log_dir: Path, transport_pair) -> SyncCoordinator:
    """Sending-side coordinator over ``sample_log_dir``."""
    return make_coordinator(tmp_path / "origin", None, transport_pair[0], sample_log_dir)


@pytest.fixture
def companion(tmp_path: Path, store: SensorStore, transport_pair) -> SyncCoordinator:
    """Receiving-side coordinator writing into the in-memory ``store``."""
    return make_coordinator(tmp_path / "companion", store, transport_pair[1])
