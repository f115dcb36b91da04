"""SyncCoordinator: one end-to-end sync attempt and the status it produces.

Origin role (sender)::

    create_archive(source_dir) → Transport.send → delete archive

Companion role (receiver)::

    Transport.receive → save to inbox → extract_archive(work dir)
        → parse_records per log → SensorStore.insert_batches → remove work dir

Only one attempt runs at a time, whichever path triggered it (scheduler or
manual "sync now").  An attempt that arrives while another is in flight is
rejected immediately and the running attempt is left untouched.

``sync_once`` never raises.  Every failure is published and returned as a
``SyncError`` status carrying a message and the originating exception.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
import threading
from enum import Enum
from pathlib import Path

from sensorsync.pipeline.archiver import create_archive, extract_archive, save_archive
from sensorsync.pipeline.base import SensorKind
from sensorsync.pipeline.errors import PipelineError, PipelineIOError, TransportError
from sensorsync.pipeline.parser import parse_records
from sensorsync.pipeline.status import (
    StatusBoard,
    SyncError,
    SyncIdle,
    SyncInProgress,
    SyncStatus,
    SyncSuccess,
)
from sensorsync.pipeline.transport import Transport
from sensorsync.services.store import SensorStore

logger = logging.getLogger("sensorsync.sync.coordinator")

NO_PENDING_MESSAGE = "No pending sensor data"


class SyncRole(str, Enum):
    """Which side of the link this process plays."""

    ORIGIN = "origin"
    COMPANION = "companion"


class SyncCoordinator:
    """Orchestrates sync attempts and owns the process-wide status.

    Args:
        store:        Companion-side record store.
        transport:    Link to the peer device.
        source_dir:   Origin-side directory holding the sensor logs.
        outbox_dir:   Where outgoing archives are staged before sending.
        inbox_dir:    Where received archives are kept (subject to retention).
        work_dir:     Parent directory for per-attempt extraction dirs.
        status_board: Observable status holder; a fresh one by default.
    """

    def __init__(
        self,
        store: SensorStore | None,
        transport: Transport,
        source_dir: Path,
        outbox_dir: Path,
        inbox_dir: Path,
        work_dir: Path,
        status_board: StatusBoard | None = None,
    ) -> None:
        self.store = store
        self.transport = transport
        self.source_dir = Path(source_dir)
        self.outbox_dir = Path(outbox_dir)
        self.inbox_dir = Path(inbox_dir)
        self.work_dir = Path(work_dir)
        self.status_board = status_board or StatusBoard()
        self._flight = threading.Lock()

    @property
    def status(self) -> SyncStatus:
        return self.status_board.value

    @property
    def in_flight(self) -> bool:
        return self._flight.locked()

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def sync_once(self, role: SyncRole) -> SyncStatus:
        """Run one sync attempt for ``role`` and return its terminal status.

        If an attempt is already running, returns the current
        ``SyncInProgress`` status without starting a new one.
        """
        if not self._flight.acquire(blocking=False):
            logger.info("Sync (%s) rejected: another attempt is in progress", role.value)
            return self.status_board.value

        try:
            if not isinstance(self.status_board.value, SyncIdle):
                self.status_board.publish(SyncIdle())
            self.status_board.publish(SyncInProgress())
            logger.info("Sync (%s) started", role.value)

            try:
                if role is SyncRole.ORIGIN:
                    outcome: SyncStatus = await self._send()
                else:
                    outcome = await self._receive()
            except asyncio.CancelledError as exc:
                self.status_board.publish(SyncError("Sync cancelled", exc))
                raise
            except Exception as exc:
                logger.error(
                    "Sync (%s) failed: %s", role.value, exc,
                    exc_info=not isinstance(exc, PipelineError),
                )
                outcome = SyncError(f"Sync failed: {exc}", exc)
            else:
                logger.info("Sync (%s) finished: %s", role.value, outcome.message)

            self.status_board.publish(outcome)
            return outcome
        finally:
            self._flight.release()

    # ------------------------------------------------------------------
    # Origin side
    # ------------------------------------------------------------------

    async def _send(self) -> SyncSuccess:
        archive = await asyncio.to_thread(create_archive, self.source_dir, self.outbox_dir)
        if archive is None:
            raise PipelineIOError(f"Sensor data directory {self.source_dir} does not exist")

        try:
            try:
                data = await asyncio.to_thread(archive.read_bytes)
            except OSError as exc:
                raise PipelineIOError(f"Failed to read archive {archive}: {exc}") from exc

            result = await self.transport.send(self.transport.make_payload(data))
            if not result.acknowledged:
                raise TransportError(f"Delivery not acknowledged: {result.detail}")
        finally:
            self._discard(archive)

        return SyncSuccess(f"Sent {len(data)} bytes of sensor data ({result.detail})")

    @staticmethod
    def _discard(archive: Path) -> None:
        try:
            archive.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not delete sent archive %s: %s", archive, exc)

    # ------------------------------------------------------------------
    # Companion side
    # ------------------------------------------------------------------

    async def _receive(self) -> SyncSuccess:
        payload = await self.transport.receive()
        if payload is None:
            return SyncSuccess(NO_PENDING_MESSAGE)

        archive = await asyncio.to_thread(save_archive, payload.data, self.inbox_dir)
        counts = await asyncio.to_thread(self.ingest_archive, archive)
        total = sum(counts.values())
        detail = ", ".join(f"{kind.value}={n}" for kind, n in counts.items()) or "no records"
        return SyncSuccess(f"Data synchronized successfully: {total} records ({detail})")

    def ingest_archive(self, archive: Path) -> dict[SensorKind, int]:
        """Extract, parse and store one received archive.

        Blocking; runs in a worker thread from ``sync_once``.

        Returns:
            Records stored per sensor kind present in the archive.

        Raises:
            PathTraversalError: If the archive carries an escaping entry.
            PipelineIOError:    If extraction or working-dir setup fails.
            StoreError:         If storing fails; no record from the archive is kept.
        """
        if self.store is None:
            raise PipelineIOError("No record store configured for the companion role")

        try:
            self.work_dir.mkdir(parents=True, exist_ok=True)
            extraction_dir = Path(tempfile.mkdtemp(prefix="extract_", dir=self.work_dir))
        except OSError as exc:
            raise PipelineIOError(f"Failed to create extraction dir in {self.work_dir}: {exc}") from exc

        batches = []
        try:
            extract_archive(archive, extraction_dir)
            for kind in SensorKind:
                log_path = extraction_dir / kind.file_name
                if not log_path.is_file():
                    continue
                try:
                    batches.append(list(parse_records(log_path, kind)))
                except OSError as exc:
                    raise PipelineIOError(f"Failed to read {log_path.name}: {exc}") from exc
            # One transaction for the whole archive: a failed ingest stores nothing.
            counts = self.store.insert_batches(batches)
        finally:
            shutil.rmtree(extraction_dir, ignore_errors=True)

        logger.info(
            "Ingested %s: %s", archive.name, {k.value: n for k, n in counts.items()}
        )
        return counts
