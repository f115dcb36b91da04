"""Producer contract shared by hardware sensors and synthetic generators.

A producer turns some source of readings into a stream of
:class:`~sensorsync.pipeline.base.SensorRecord` values pushed to a sink.
The SampleWriter only ever sees this interface, so collection behaves the
same whether a kind is backed by hardware or by the synthetic generator.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable

from sensorsync.pipeline.base import SensorKind, SensorRecord

logger = logging.getLogger("sensorsync.pipeline.producers")

#: Receives each produced record; returns False if the record was dropped.
RecordSink = Callable[[SensorRecord], bool]


class ReadingProducer(ABC):
    """Abstract base class for every reading producer.

    Subclasses must implement:
        - start()
        - stop()

    Both must be idempotent.  After ``stop()`` returns, the producer must not
    call the sink again.
    """

    #: Registry slug (e.g. 'synthetic', 'hardware').
    PRODUCER_ID: str = "unknown"

    def __init__(self, kind: SensorKind) -> None:
        self.kind = kind
        self._sink: RecordSink | None = None

    @property
    def running(self) -> bool:
        return self._sink is not None

    @abstractmethod
    def start(self, sink: RecordSink) -> None:
        """Begin delivering records of ``self.kind`` to ``sink``."""

    @abstractmethod
    def stop(self) -> None:
        """Stop delivering records and release the underlying source."""

    def _emit(self, record: SensorRecord) -> bool:
        sink = self._sink
        if sink is None:
            return False
        try:
            return sink(record)
        except Exception as exc:
            logger.warning("%s producer for %s: sink failed: %s", self.PRODUCER_ID, self.kind.value, exc)
            return False

    def __repr__(self) -> str:
        return f"<{type(self).__name__} kind={self.kind.value} running={self.running}>"
