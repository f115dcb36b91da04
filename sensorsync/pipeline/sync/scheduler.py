"""Periodic sync trigger with availability gating and bounded retry.

Each cycle:
1. Sleep until a due time inside the flex window of the interval
2. Wait until the transport reports the peer reachable
3. Run ``SyncCoordinator.sync_once``
4. On ``SyncError``, retry up to ``max_retries`` times with exponential backoff

Defaults (from pipeline_config.yaml):
    interval:  every 2 hours
    flex:      last 30 minutes of the interval
    retries:   3, starting at 30 s
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable

from sensorsync.pipeline.config_loader import ScheduleConfig
from sensorsync.pipeline.status import SyncError, SyncInProgress, SyncStatus
from sensorsync.pipeline.sync.coordinator import SyncCoordinator, SyncRole
from sensorsync.pipeline.transport import Transport

logger = logging.getLogger("sensorsync.sync.scheduler")

Sleeper = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class ScheduleWindow:
    """A fixed interval with a tolerance window at its end.

    Attributes:
        interval: Nominal period between runs.
        flex:     Width of the window, ending at ``interval``, in which a
                  run may start.
    """

    interval: timedelta
    flex: timedelta

    def __post_init__(self) -> None:
        if self.interval <= timedelta(0):
            raise ValueError("interval must be positive")
        if not timedelta(0) <= self.flex <= self.interval:
            raise ValueError("flex must be between zero and interval")

    def next_delay(self, rng: random.Random | None = None) -> float:
        """Seconds until the next run, drawn uniformly from the flex window."""
        high = self.interval.total_seconds()
        low = high - self.flex.total_seconds()
        return (rng or random).uniform(low, high)


class SyncScheduler:
    """Drive ``sync_once`` on a schedule.

    Usage::

        scheduler = SyncScheduler(coordinator, SyncRole.ORIGIN, ScheduleWindow(...))
        scheduler.start()
        ...
        await scheduler.cancel()

    Args:
        coordinator:       The single-flight sync coordinator.
        role:              Role passed to every attempt.
        window:            Interval and flex window.
        max_retries:       Retries after a failed attempt, per cycle.
        backoff:           First retry delay; doubles on every retry.
        availability_poll: Delay between availability probes.
        sleep:             Awaitable sleep; injectable for tests.
        rng:               Random source for the flex window.
    """

    def __init__(
        self,
        coordinator: SyncCoordinator,
        role: SyncRole,
        window: ScheduleWindow,
        max_retries: int = 3,
        backoff: timedelta = timedelta(seconds=30),
        availability_poll: timedelta = timedelta(seconds=60),
        sleep: Sleeper = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.coordinator = coordinator
        self.role = role
        self.window = window
        self.max_retries = max_retries
        self.backoff = backoff
        self.availability_poll = availability_poll
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._task: asyncio.Task | None = None

    @classmethod
    def from_config(
        cls, coordinator: SyncCoordinator, role: SyncRole, config: ScheduleConfig, **kwargs
    ) -> "SyncScheduler":
        return cls(
            coordinator,
            role,
            ScheduleWindow(config.interval, config.flex),
            max_retries=config.max_retries,
            backoff=config.backoff,
            availability_poll=config.availability_poll,
            **kwargs,
        )

    @property
    def transport(self) -> Transport:
        return self.coordinator.transport

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Schedule / cancel
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task:
        """Schedule the periodic loop on the running event loop. Idempotent."""
        if self.running:
            return self._task  # type: ignore[return-value]
        self._task = asyncio.create_task(self._loop(), name=f"sync-scheduler-{self.role.value}")
        logger.info(
            "Scheduled %s sync every %s (flex %s)",
            self.role.value, self.window.interval, self.window.flex,
        )
        return self._task

    async def cancel(self) -> None:
        """Cancel the loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Cancelled %s sync schedule", self.role.value)

    async def _loop(self) -> None:
        while True:
            delay = self.window.next_delay(self._rng)
            logger.debug("Next %s sync in %.0f s", self.role.value, delay)
            await self._sleep(delay)
            await self.run_cycle()

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------

    async def wait_until_available(self) -> None:
        poll = self.availability_poll.total_seconds()
        while not await self.transport.is_available():
            logger.warning("Transport unavailable; next check in %.0f s", poll)
            await self._sleep(poll)

    async def run_cycle(self) -> SyncStatus:
        """Run one gated attempt plus any retries; returns the final status.

        A rejected attempt (another sync already in flight) is not retried.
        """
        await self.wait_until_available()
        status = await self.coordinator.sync_once(self.role)

        attempt = 0
        while isinstance(status, SyncError) and attempt < self.max_retries:
            delay = self.backoff.total_seconds() * (2 ** attempt)
            attempt += 1
            logger.warning(
                "Sync attempt failed (%s); retry %d/%d in %.0f s",
                status.message, attempt, self.max_retries, delay,
            )
            await self._sleep(delay)
            await self.wait_until_available()
            status = await self.coordinator.sync_once(self.role)

        if isinstance(status, SyncInProgress):
            logger.info("Scheduled %s sync skipped: attempt already in flight", self.role.value)
        elif isinstance(status, SyncError):
            logger.error("Scheduled %s sync gave up after %d retries", self.role.value, attempt)
        return status
