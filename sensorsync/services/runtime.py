"""Process-level wiring of the sync pipeline.

One :class:`PipelineRuntime` is built at app startup from ``Settings`` and
the pipeline config, stored on ``app.state``, and torn down at shutdown.
Every dependent receives the store, transport and coordinator from here;
nothing in the pipeline reaches for a global handle.

Roles:
    origin    — SampleWriter + HttpTransport push, scheduled send
    companion — QueueTransport fed by ``POST /sensor-data``, scheduled
                receive, retention loop over store and inbox
"""

from __future__ import annotations

import asyncio
import logging
from typing import Mapping

from sensorsync.config import Settings
from sensorsync.pipeline.base import SensorKind
from sensorsync.pipeline.config_loader import PipelineConfig
from sensorsync.pipeline.producers import SensorSource, build_producers
from sensorsync.pipeline.status import StatusBoard
from sensorsync.pipeline.sync.coordinator import SyncCoordinator, SyncRole
from sensorsync.pipeline.sync.retention import RetentionSweeper, run_retention_loop
from sensorsync.pipeline.sync.scheduler import SyncScheduler
from sensorsync.pipeline.transport import HttpTransport, QueueTransport, Transport
from sensorsync.pipeline.writer import SampleWriter
from sensorsync.services.store import SensorStore

logger = logging.getLogger("sensorsync.runtime")


class PipelineRuntime:
    """Owns every long-lived pipeline object for one process.

    Args:
        settings:  Process settings.
        config:    Validated pipeline config.
        transport: Override the role's default transport (tests).
        hardware:  Platform sensor sources by kind; kinds without one get a
                   synthetic producer.
    """

    def __init__(
        self,
        settings: Settings,
        config: PipelineConfig,
        *,
        transport: Transport | None = None,
        hardware: Mapping[SensorKind, SensorSource] | None = None,
    ) -> None:
        self.settings = settings
        self.config = config
        self.role = settings.role

        self.store = SensorStore(settings.database_path, deduplicate=config.store.deduplicate)
        self.transport = transport or self._default_transport()
        self.status_board = StatusBoard()
        self.coordinator = SyncCoordinator(
            store=self.store,
            transport=self.transport,
            source_dir=settings.sensor_log_dir,
            outbox_dir=settings.outbox_dir,
            inbox_dir=settings.inbox_dir,
            work_dir=settings.work_dir,
            status_board=self.status_board,
        )
        self.sweeper = RetentionSweeper(
            self.store, settings.inbox_dir, keep_archives=config.retention.keep_archives
        )

        self.writer: SampleWriter | None = None
        if self.role is SyncRole.ORIGIN:
            self.writer = SampleWriter(
                settings.sensor_log_dir,
                build_producers(config.collection, hardware),
                has_permission=lambda: settings.sensor_permission_granted,
                fsync=config.collection.fsync_writes,
            )

        self.scheduler: SyncScheduler | None = None
        if settings.enable_scheduler:
            self.scheduler = SyncScheduler.from_config(self.coordinator, self.role, config.schedule)
        self._retention_task: asyncio.Task | None = None

    def _default_transport(self) -> Transport:
        if self.role is SyncRole.ORIGIN:
            return HttpTransport(
                self.settings.companion_url,
                channel=self.settings.channel,
                timeout=self.settings.transport_timeout_seconds,
            )
        return QueueTransport(self.settings.channel)

    @property
    def inbound(self) -> QueueTransport | None:
        """The endpoint fed by the inbound HTTP route, if this process has one."""
        return self.transport if isinstance(self.transport, QueueTransport) else None

    async def start(self) -> None:
        """Open the store and start background tasks."""
        self.store.open()
        if self.scheduler is not None:
            self.scheduler.start()
        if self.settings.enable_scheduler and self.role is SyncRole.COMPANION:
            self._retention_task = asyncio.create_task(
                run_retention_loop(
                    self.sweeper,
                    self.config.retention.store_retention,
                    self.config.retention.sweep_interval,
                ),
                name="retention-sweep",
            )
        logger.info("Pipeline runtime started (role=%s)", self.role.value)

    async def stop(self) -> None:
        """Stop collection and background tasks, then release resources."""
        if self.writer is not None:
            await asyncio.to_thread(self.writer.stop_collection)
        if self.scheduler is not None:
            await self.scheduler.cancel()
        if self._retention_task is not None:
            self._retention_task.cancel()
            try:
                await self._retention_task
            except asyncio.CancelledError:
                pass
            self._retention_task = None
        await self.transport.close()
        self.store.close()
        logger.info("Pipeline runtime stopped")
