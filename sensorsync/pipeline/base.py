"""Canonical record models for the sensorsync pipeline.

Every stage of the pipeline speaks in terms of these types: producers emit
them, the SampleWriter serializes them to per-sensor CSV logs, the parser
decodes them back out of received archives, and the store persists them.

Sensor kinds and their on-disk format::

    heart_rate.csv        timestamp,heart_rate,confidence_score
    respiration_rate.csv  timestamp,respiration_rate,ibi
    eda.csv               timestamp,eda_value
    temperature.csv       timestamp,temp_value
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar, Union

logger = logging.getLogger("sensorsync.pipeline")

#: Field delimiter used by every sensor log.
FIELD_DELIMITER = ","


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_instant(value: datetime) -> str:
    """Render an aware datetime as an ISO-8601 UTC instant (``...Z``).

    Args:
        value: Timezone-aware datetime. Naive values are rejected.

    Returns:
        ISO-8601 string with a trailing ``Z`` designator.

    Raises:
        ValueError: If ``value`` has no tzinfo.
    """
    if value.tzinfo is None:
        raise ValueError("Sensor timestamps must be timezone-aware")
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_instant(text: str) -> datetime:
    """Parse an ISO-8601 instant into an aware UTC datetime.

    Accepts the ``Z`` designator and explicit offsets.  A timestamp without
    any offset is not an instant and is rejected.

    Raises:
        ValueError: If the text is not a valid absolute instant.
    """
    raw = text.strip()
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        raise ValueError(f"Timestamp has no UTC offset: {text!r}")
    return parsed.astimezone(timezone.utc)


def to_epoch_millis(value: datetime) -> int:
    """Convert an aware datetime to integer epoch milliseconds (truncating)."""
    if value.tzinfo is None:
        raise ValueError("Sensor timestamps must be timezone-aware")
    delta = value - datetime(1970, 1, 1, tzinfo=timezone.utc)
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def from_epoch_millis(millis: int) -> datetime:
    seconds, remainder = divmod(int(millis), 1000)
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(
        microsecond=remainder * 1000
    )


# ---------------------------------------------------------------------------
# Sensor kinds
# ---------------------------------------------------------------------------


class SensorKind(str, Enum):
    """The four physiological streams collected on the peripheral device."""

    HEART_RATE = "heart_rate"
    RESPIRATION_RATE = "respiration_rate"
    EDA = "eda"
    TEMPERATURE = "temperature"

    @property
    def file_name(self) -> str:
        """Log file name, identical on the device, in the archive, and on the companion."""
        return f"{self.value}.csv"

    @property
    def table(self) -> str:
        return self.value

    @property
    def record_type(self) -> type["SensorRecord"]:
        return _RECORD_TYPES[self]

    @property
    def header(self) -> str:
        return self.record_type.csv_header()

    @property
    def min_fields(self) -> int:
        """Minimum delimited field count (timestamp + value columns)."""
        return 1 + len(self.record_type.VALUE_COLUMNS)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class _RecordMixin:
    """Shared CSV/value plumbing for the concrete record dataclasses.

    Subclasses declare ``KIND`` and ``VALUE_COLUMNS``; the value columns must
    match dataclass field names, in CSV order.
    """

    KIND: ClassVar[SensorKind]
    VALUE_COLUMNS: ClassVar[tuple[str, ...]]

    timestamp: datetime
    id: int | None

    @classmethod
    def csv_header(cls) -> str:
        return FIELD_DELIMITER.join(("timestamp", *cls.VALUE_COLUMNS))

    @classmethod
    def from_values(
        cls, timestamp: datetime, values: tuple[float, ...], record_id: int | None = None
    ):
        """Build a record from a timestamp and value tuple in column order."""
        if len(values) != len(cls.VALUE_COLUMNS):
            raise ValueError(
                f"{cls.__name__} expects {len(cls.VALUE_COLUMNS)} values, got {len(values)}"
            )
        kwargs = dict(zip(cls.VALUE_COLUMNS, (float(v) for v in values)))
        return cls(timestamp=timestamp, id=record_id, **kwargs)  # type: ignore[call-arg]

    @property
    def kind(self) -> SensorKind:
        return self.KIND

    def values(self) -> tuple[float, ...]:
        return tuple(getattr(self, column) for column in self.VALUE_COLUMNS)

    def to_csv_line(self) -> str:
        """Render one log line (no trailing newline)."""
        return FIELD_DELIMITER.join(
            (format_instant(self.timestamp), *(repr(float(v)) for v in self.values()))
        )


@dataclass(frozen=True)
class HeartRate(_RecordMixin):
    """Heart-rate sample.

    Attributes:
        timestamp:        UTC instant of the reading.
        heart_rate:       Beats per minute.
        confidence_score: Sensor-reported confidence (0.0–1.0).
        id:               Store-assigned surrogate key, None until stored.
    """

    KIND: ClassVar[SensorKind] = SensorKind.HEART_RATE
    VALUE_COLUMNS: ClassVar[tuple[str, ...]] = ("heart_rate", "confidence_score")

    timestamp: datetime
    heart_rate: float
    confidence_score: float = 1.0
    id: int | None = None


@dataclass(frozen=True)
class RespirationRate(_RecordMixin):
    """Respiration sample.

    Attributes:
        timestamp:        UTC instant of the reading.
        respiration_rate: Breaths per minute.
        ibi:              Inter-beat interval in seconds.
        id:               Store-assigned surrogate key.
    """

    KIND: ClassVar[SensorKind] = SensorKind.RESPIRATION_RATE
    VALUE_COLUMNS: ClassVar[tuple[str, ...]] = ("respiration_rate", "ibi")

    timestamp: datetime
    respiration_rate: float
    ibi: float
    id: int | None = None


@dataclass(frozen=True)
class Eda(_RecordMixin):
    """Electrodermal activity (skin conductance, µS)."""

    KIND: ClassVar[SensorKind] = SensorKind.EDA
    VALUE_COLUMNS: ClassVar[tuple[str, ...]] = ("eda_value",)

    timestamp: datetime
    eda_value: float
    id: int | None = None


@dataclass(frozen=True)
class Temperature(_RecordMixin):
    """Temperature sample (°C)."""

    KIND: ClassVar[SensorKind] = SensorKind.TEMPERATURE
    VALUE_COLUMNS: ClassVar[tuple[str, ...]] = ("temp_value",)

    timestamp: datetime
    temp_value: float
    id: int | None = None


SensorRecord = Union[HeartRate, RespirationRate, Eda, Temperature]

_RECORD_TYPES: dict[SensorKind, type] = {
    SensorKind.HEART_RATE: HeartRate,
    SensorKind.RESPIRATION_RATE: RespirationRate,
    SensorKind.EDA: Eda,
    SensorKind.TEMPERATURE: Temperature,
}

#: The fixed set of log file names an archive may carry.
KNOWN_FILE_NAMES: tuple[str, ...] = tuple(kind.file_name for kind in SensorKind)
