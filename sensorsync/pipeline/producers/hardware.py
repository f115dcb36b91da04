"""Bridge from a hardware sensor callback API to the producer contract.

The raw sensor API is an external collaborator; anything exposing
``register_listener`` / ``unregister_listener`` (see :class:`SensorSource`)
can back a :class:`HardwareProducer`.  Callbacks may arrive on any thread.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Protocol, Sequence

from sensorsync.pipeline.base import SensorKind, SensorRecord, utc_now
from sensorsync.pipeline.producers.base import ReadingProducer, RecordSink

logger = logging.getLogger("sensorsync.pipeline.producers.hardware")

EventListener = Callable[[Sequence[float]], None]

#: Heart-rate sensors that report only the rate get full confidence.
DEFAULT_HEART_RATE_CONFIDENCE = 1.0


class SensorSource(Protocol):
    """Minimal surface of a platform sensor."""

    def register_listener(self, listener: EventListener) -> bool:
        """Start delivering raw value vectors to ``listener``; False if unavailable."""
        ...

    def unregister_listener(self, listener: EventListener) -> None:
        ...


def record_from_event(kind: SensorKind, values: Sequence[float]) -> SensorRecord | None:
    """Map a raw sensor value vector onto a record stamped now.

    Extra values are ignored.  Returns None when the event carries too few
    values for the kind.
    """
    needed = len(kind.record_type.VALUE_COLUMNS)
    picked = tuple(float(v) for v in values[:needed])
    if len(picked) < needed:
        if kind is SensorKind.HEART_RATE and len(picked) == 1:
            picked = (picked[0], DEFAULT_HEART_RATE_CONFIDENCE)
        else:
            return None
    return kind.record_type.from_values(utc_now(), picked)


class HardwareProducer(ReadingProducer):
    """Producer backed by a platform sensor callback."""

    PRODUCER_ID = "hardware"

    def __init__(self, kind: SensorKind, source: SensorSource) -> None:
        super().__init__(kind)
        self._source = source
        self._lock = threading.Lock()
        self._registered = False

    def start(self, sink: RecordSink) -> None:
        with self._lock:
            if self._registered:
                return
            self._sink = sink
            self._registered = bool(self._source.register_listener(self.on_event))
            if not self._registered:
                self._sink = None
        if self._registered:
            logger.info("Hardware %s listener registered", self.kind.value)
        else:
            logger.warning("Hardware %s sensor unavailable; no readings will be logged", self.kind.value)

    def stop(self) -> None:
        with self._lock:
            if not self._registered:
                return
            self._source.unregister_listener(self.on_event)
            self._registered = False
            self._sink = None
        logger.info("Hardware %s listener unregistered", self.kind.value)

    def on_event(self, values: Sequence[float]) -> None:
        """Sensor callback: stamp the event and forward it to the sink."""
        record = record_from_event(self.kind, values)
        if record is None:
            logger.debug("Dropping %s event with %d values", self.kind.value, len(values))
            return
        self._emit(record)
