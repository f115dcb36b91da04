"""Tests for SyncCoordinator: end-to-end sync and the status state machine."""

from __future__ import annotations

import asyncio
import zipfile
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from sensorsync.pipeline.base import Eda, HeartRate, SensorKind
from sensorsync.pipeline.errors import PathTraversalError, StoreError, TransportError
from sensorsync.pipeline.status import (
    SyncError,
    SyncIdle,
    SyncInProgress,
    SyncSuccess,
    status_name,
)
from sensorsync.pipeline.sync.coordinator import NO_PENDING_MESSAGE, SyncCoordinator, SyncRole
from sensorsync.pipeline.tests.conftest import T0, make_coordinator
from sensorsync.pipeline.transport import QueueTransport, TransportResult
from sensorsync.services.store import SensorStore


def _record_transitions(coordinator: SyncCoordinator) -> list[str]:
    seen: list[str] = []
    coordinator.status_board.subscribe(lambda status: seen.append(status_name(status)))
    return seen


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_origin_to_companion_round_trip(
        self, origin: SyncCoordinator, companion: SyncCoordinator, store: SensorStore
    ) -> None:
        """Logs on the origin end up as rows in the companion store."""
        sent = await origin.sync_once(SyncRole.ORIGIN)
        assert isinstance(sent, SyncSuccess)

        received = await companion.sync_once(SyncRole.COMPANION)

        assert isinstance(received, SyncSuccess)
        assert "Data synchronized successfully" in received.message
        assert store.count(SensorKind.HEART_RATE) == 2  # BADLINE skipped
        assert store.count(SensorKind.RESPIRATION_RATE) == 1
        assert store.count(SensorKind.EDA) == 2
        assert store.count(SensorKind.TEMPERATURE) == 1
        (first, second) = store.fetch_range(HeartRate, T0, T0.replace(second=59))
        assert (first.heart_rate, first.confidence_score) == (72.5, 0.95)
        assert second.heart_rate == 73.0

    @pytest.mark.asyncio
    async def test_sent_archive_is_deleted(self, origin: SyncCoordinator) -> None:
        await origin.sync_once(SyncRole.ORIGIN)
        assert list(origin.outbox_dir.glob("*.zip")) == []

    @pytest.mark.asyncio
    async def test_received_archive_kept_and_work_dir_cleaned(
        self, origin: SyncCoordinator, companion: SyncCoordinator
    ) -> None:
        await origin.sync_once(SyncRole.ORIGIN)
        await companion.sync_once(SyncRole.COMPANION)

        assert len(list(companion.inbox_dir.glob("sensordata_*.zip"))) == 1
        assert list(companion.work_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_nothing_pending_is_success(self, companion: SyncCoordinator) -> None:
        status = await companion.sync_once(SyncRole.COMPANION)
        assert status == SyncSuccess(NO_PENDING_MESSAGE)

    @pytest.mark.asyncio
    async def test_partial_archive_ingests_present_files(
        self, tmp_path: Path, store: SensorStore
    ) -> None:
        origin_link, companion_link = QueueTransport.pair()
        source = tmp_path / "only_eda"
        source.mkdir()
        (source / "eda.csv").write_text("timestamp,eda_value\n2024-01-01T10:00:00Z,3.3\n")
        sender = make_coordinator(tmp_path / "o", None, origin_link, source)
        receiver = make_coordinator(tmp_path / "c", store, companion_link)

        await sender.sync_once(SyncRole.ORIGIN)
        status = await receiver.sync_once(SyncRole.COMPANION)

        assert isinstance(status, SyncSuccess)
        assert [r.eda_value for r in store.fetch_range(Eda, T0, T0)] == [3.3]
        assert store.count(SensorKind.HEART_RATE) == 0


class TestStateMachine:
    @pytest.mark.asyncio
    async def test_initial_state_is_idle(self, origin: SyncCoordinator) -> None:
        assert isinstance(origin.status, SyncIdle)

    @pytest.mark.asyncio
    async def test_success_transitions(self, origin: SyncCoordinator) -> None:
        """Idle → InProgress → Success(message)."""
        seen = _record_transitions(origin)
        status = await origin.sync_once(SyncRole.ORIGIN)
        assert seen == ["in_progress", "success"]
        assert origin.status == status

    @pytest.mark.asyncio
    async def test_failing_transport_transitions_to_error(self, origin: SyncCoordinator) -> None:
        """Idle → InProgress → Error(message, cause) and no exception escapes."""
        origin.transport.send = AsyncMock(side_effect=TransportError("link dropped"))
        seen = _record_transitions(origin)

        status = await origin.sync_once(SyncRole.ORIGIN)

        assert seen == ["in_progress", "error"]
        assert isinstance(status, SyncError)
        assert isinstance(status.cause, TransportError)
        assert "link dropped" in status.message
        assert list(origin.outbox_dir.glob("*.zip")) == []  # deleted regardless

    @pytest.mark.asyncio
    async def test_unacknowledged_send_is_error(self, origin: SyncCoordinator) -> None:
        origin.transport.send = AsyncMock(
            return_value=TransportResult(acknowledged=False, detail="HTTP 500")
        )
        status = await origin.sync_once(SyncRole.ORIGIN)
        assert isinstance(status, SyncError)
        assert "HTTP 500" in status.message

    @pytest.mark.asyncio
    async def test_terminal_state_persists_until_next_attempt(self, origin: SyncCoordinator) -> None:
        await origin.sync_once(SyncRole.ORIGIN)
        assert isinstance(origin.status, SyncSuccess)

        seen = _record_transitions(origin)
        await origin.sync_once(SyncRole.ORIGIN)
        assert seen == ["idle", "in_progress", "success"]

    @pytest.mark.asyncio
    async def test_missing_source_dir_is_error(self, tmp_path: Path, transport_pair) -> None:
        coordinator = make_coordinator(tmp_path, None, transport_pair[0], tmp_path / "absent")
        status = await coordinator.sync_once(SyncRole.ORIGIN)
        assert isinstance(status, SyncError)

    @pytest.mark.asyncio
    async def test_path_traversal_surfaces_as_error(
        self, tmp_path: Path, companion: SyncCoordinator, transport_pair
    ) -> None:
        evil = tmp_path / "evil.zip"
        with zipfile.ZipFile(evil, "w") as zf:
            zf.writestr("../../escaped.csv", "pwned")
        transport_pair[1].deliver(transport_pair[0].make_payload(evil.read_bytes()))

        status = await companion.sync_once(SyncRole.COMPANION)

        assert isinstance(status, SyncError)
        assert isinstance(status.cause, PathTraversalError)
        assert not list(tmp_path.rglob("escaped.csv"))
        assert list(companion.work_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_failed_store_keeps_nothing_from_archive(
        self, origin: SyncCoordinator, companion: SyncCoordinator, store: SensorStore
    ) -> None:
        """Heart rate, respiration and eda are not kept when temperature fails."""
        store._require_conn().execute(f"DROP TABLE {SensorKind.TEMPERATURE.table}")
        await origin.sync_once(SyncRole.ORIGIN)

        status = await companion.sync_once(SyncRole.COMPANION)

        assert isinstance(status, SyncError)
        assert isinstance(status.cause, StoreError)
        assert store.count(SensorKind.HEART_RATE) == 0
        assert store.count(SensorKind.RESPIRATION_RATE) == 0
        assert store.count(SensorKind.EDA) == 0

    @pytest.mark.asyncio
    async def test_corrupt_payload_is_error(self, companion: SyncCoordinator, transport_pair) -> None:
        transport_pair[1].deliver(transport_pair[0].make_payload(b"garbage"))
        status = await companion.sync_once(SyncRole.COMPANION)
        assert isinstance(status, SyncError)


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_second_call_rejected_while_in_progress(self, origin: SyncCoordinator) -> None:
        """A concurrent sync_once returns InProgress and leaves the running attempt alone."""
        release = asyncio.Event()
        entered = asyncio.Event()

        async def slow_send(payload):
            entered.set()
            await release.wait()
            return TransportResult(acknowledged=True, detail="ok")

        origin.transport.send = slow_send
        first = asyncio.create_task(origin.sync_once(SyncRole.ORIGIN))
        await entered.wait()

        seen = _record_transitions(origin)
        rejected = await origin.sync_once(SyncRole.ORIGIN)

        assert isinstance(rejected, SyncInProgress)
        assert seen == []
        assert origin.in_flight

        release.set()
        assert isinstance(await first, SyncSuccess)
        assert seen == ["success"]
        assert not origin.in_flight

    @pytest.mark.asyncio
    async def test_cancellation_releases_guard(self, origin: SyncCoordinator) -> None:
        async def hang(payload):
            await asyncio.Event().wait()

        origin.transport.send = hang
        task = asyncio.create_task(origin.sync_once(SyncRole.ORIGIN))
        await asyncio.sleep(0.2)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not origin.in_flight
        assert isinstance(origin.status, SyncError)
