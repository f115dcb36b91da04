"""Sync status sum type and its process-wide observable holder.

``SyncStatus`` is a closed union of four frozen dataclasses.  Consumers match
on it exhaustively::

    match status:
        case SyncIdle() | SyncInProgress():
            ...
        case SyncSuccess(message=message):
            ...
        case SyncError(message=message, cause=cause):
            ...
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Union, assert_never

logger = logging.getLogger("sensorsync.sync.status")


@dataclass(frozen=True)
class SyncIdle:
    """No attempt has run yet, or a new attempt is about to start."""


@dataclass(frozen=True)
class SyncInProgress:
    """An attempt is running; further attempts are rejected until it ends."""


@dataclass(frozen=True)
class SyncSuccess:
    message: str


@dataclass(frozen=True)
class SyncError:
    """A failed attempt.

    Attributes:
        message: Human-readable summary.
        cause:   The originating exception, if any.
    """

    message: str
    cause: BaseException | None = None


SyncStatus = Union[SyncIdle, SyncInProgress, SyncSuccess, SyncError]

StatusListener = Callable[[SyncStatus], None]


def status_name(status: SyncStatus) -> str:
    """Return a stable lowercase label for a status variant."""
    match status:
        case SyncIdle():
            return "idle"
        case SyncInProgress():
            return "in_progress"
        case SyncSuccess():
            return "success"
        case SyncError():
            return "error"
        case _:
            assert_never(status)


class StatusBoard:
    """Thread-safe observable holder for the current :data:`SyncStatus`.

    Written only by the SyncCoordinator; read by any number of observers.
    Listeners are invoked synchronously, in registration order, after each
    transition and outside the internal lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value: SyncStatus = SyncIdle()
        self._listeners: list[StatusListener] = []

    @property
    def value(self) -> SyncStatus:
        with self._lock:
            return self._value

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, new: SyncStatus) -> None:
        with self._lock:
            self._value = new
            listeners = list(self._listeners)
        self._notify(listeners, new)

    @staticmethod
    def _notify(listeners: list[StatusListener], status: SyncStatus) -> None:
        for listener in listeners:
            try:
                listener(status)
            except Exception as exc:
                logger.warning("Status listener %r failed: %s", listener, exc)
