"""Synthetic reading generator for sensor kinds without a hardware source.

Runs a daemon thread that emits one plausible reading every period
(25 Hz by default).  Value ranges come from ``CollectionConfig``.
"""

from __future__ import annotations

import logging
import random
import threading

from sensorsync.pipeline.base import (
    Eda,
    HeartRate,
    RespirationRate,
    SensorKind,
    SensorRecord,
    Temperature,
    utc_now,
)
from sensorsync.pipeline.config_loader import CollectionConfig, ValueRange
from sensorsync.pipeline.producers.base import ReadingProducer, RecordSink

logger = logging.getLogger("sensorsync.pipeline.producers.synthetic")


class SyntheticProducer(ReadingProducer):
    """Fixed-rate generator of plausible synthetic readings.

    Args:
        kind:   Sensor kind to simulate.
        config: Collection settings (rate and value ranges).
        rng:    Random source; inject a seeded ``random.Random`` in tests.
    """

    PRODUCER_ID = "synthetic"

    def __init__(
        self,
        kind: SensorKind,
        config: CollectionConfig,
        rng: random.Random | None = None,
    ) -> None:
        super().__init__(kind)
        self._config = config
        self._rng = rng or random.Random()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def period_seconds(self) -> float:
        return 1.0 / self._config.synthetic_rate_hz

    def _uniform(self, bounds: ValueRange) -> float:
        return self._rng.uniform(bounds.low, bounds.high)

    def next_reading(self) -> SensorRecord:
        """Produce one reading stamped with the current instant."""
        now = utc_now()
        cfg = self._config
        if self.kind is SensorKind.HEART_RATE:
            return HeartRate(
                timestamp=now,
                heart_rate=self._uniform(cfg.heart_rate),
                confidence_score=self._uniform(cfg.heart_rate_confidence),
            )
        if self.kind is SensorKind.RESPIRATION_RATE:
            rate = self._uniform(cfg.respiration_rate)
            return RespirationRate(timestamp=now, respiration_rate=rate, ibi=60.0 / rate)
        if self.kind is SensorKind.EDA:
            return Eda(timestamp=now, eda_value=self._uniform(cfg.eda))
        return Temperature(timestamp=now, temp_value=self._uniform(cfg.temperature))

    def start(self, sink: RecordSink) -> None:
        with self._lock:
            if self._thread is not None:
                return
            self._sink = sink
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run,
                name=f"synthetic-{self.kind.value}",
                daemon=True,
            )
            self._thread.start()
        logger.info(
            "Synthetic %s generator started at %.1f Hz",
            self.kind.value, self._config.synthetic_rate_hz,
        )

    def stop(self) -> None:
        with self._lock:
            thread = self._thread
            if thread is None:
                return
            self._stop_event.set()
            self._sink = None
            self._thread = None
        thread.join(timeout=5.0)
        logger.info("Synthetic %s generator stopped", self.kind.value)

    def _run(self) -> None:
        period = self.period_seconds
        while not self._stop_event.is_set():
            self._emit(self.next_reading())
            self._stop_event.wait(period)
