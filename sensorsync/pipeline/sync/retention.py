"""Retention sweeps for the store and for received archives on disk.

The two cutoffs are independent:

- store:      delete every record older than a timestamp cutoff
- filesystem: keep only the N most recently modified archive artifacts
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

from sensorsync.pipeline.archiver import list_archives
from sensorsync.pipeline.base import SensorKind, utc_now
from sensorsync.services.store import SensorStore

logger = logging.getLogger("sensorsync.sync.retention")

#: Received archives kept on disk after a filesystem sweep.
DEFAULT_KEEP_ARCHIVES = 10


@dataclass
class SweepReport:
    """Outcome of one combined sweep."""

    cutoff: datetime | None = None
    rows_deleted: dict[SensorKind, int] = field(default_factory=dict)
    archives_deleted: list[Path] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return sum(self.rows_deleted.values())


class RetentionSweeper:
    """Applies the retention policy.

    Args:
        store:         Record store to sweep, or None for archive-only sweeps.
        archive_dir:   Directory holding received archive artifacts.
        keep_archives: How many of the most recent archives to keep.
    """

    def __init__(
        self,
        store: SensorStore | None,
        archive_dir: Path,
        keep_archives: int = DEFAULT_KEEP_ARCHIVES,
    ) -> None:
        if keep_archives < 0:
            raise ValueError("keep_archives must be >= 0")
        self.store = store
        self.archive_dir = Path(archive_dir)
        self.keep_archives = keep_archives

    def sweep_store(self, cutoff: datetime) -> dict[SensorKind, int]:
        """Delete every record of every kind with timestamp < ``cutoff``."""
        if self.store is None:
            return {}
        return self.store.delete_before(cutoff)

    def sweep_archives(self) -> list[Path]:
        """Delete all but the ``keep_archives`` most recently modified archives.

        Returns:
            Paths that were removed.  Files that vanish concurrently or
            cannot be removed are logged and left out.
        """
        deleted: list[Path] = []
        for path in list_archives(self.archive_dir)[self.keep_archives:]:
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning("Could not delete old archive %s: %s", path, exc)
                continue
            deleted.append(path)
        if deleted:
            logger.info(
                "Archive sweep in %s removed %d file(s), kept %d",
                self.archive_dir, len(deleted), self.keep_archives,
            )
        return deleted

    def sweep(self, store_retention: timedelta, now: datetime | None = None) -> SweepReport:
        """Run both sweeps, using ``now - store_retention`` as the store cutoff."""
        cutoff = (now or utc_now()) - store_retention
        report = SweepReport(cutoff=cutoff)
        report.rows_deleted = self.sweep_store(cutoff)
        report.archives_deleted = self.sweep_archives()
        return report


async def run_retention_loop(
    sweeper: RetentionSweeper,
    store_retention: timedelta,
    interval: timedelta,
    sleep=asyncio.sleep,
) -> None:
    """Sweep forever, once per ``interval``; cancel the task to stop."""
    while True:
        try:
            report = await asyncio.to_thread(sweeper.sweep, store_retention)
            logger.info(
                "Retention sweep: %d rows, %d archives removed",
                report.total_rows, len(report.archives_deleted),
            )
        except Exception as exc:
            logger.error("Retention sweep failed: %s", exc)
        await sleep(interval.total_seconds())
