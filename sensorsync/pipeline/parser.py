"""Tolerant line-oriented decoder for sensor CSV logs.

Ingestion is best-effort: a corrupt line is skipped and logged at debug
level, never allowed to block the valid remainder of the file.

Usage::

    for record in parse_records(path, SensorKind.HEART_RATE):
        ...
"""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Iterator

from sensorsync.pipeline.base import FIELD_DELIMITER, SensorKind, SensorRecord, parse_instant
from sensorsync.pipeline.errors import ParseError

logger = logging.getLogger("sensorsync.pipeline.parser")


def parse_line(line: str, kind: SensorKind, line_number: int = 0) -> SensorRecord:
    """Decode one delimited line into a record of ``kind``.

    Fields beyond the kind's minimum are ignored.

    Args:
        line:        Raw line text, with or without the trailing newline.
        kind:        Sensor kind the line belongs to.
        line_number: 1-based position, used only in error messages.

    Returns:
        The decoded record (``id`` is None).

    Raises:
        ParseError: On too few fields, a bad timestamp, or a non-numeric value.
    """
    parts = line.rstrip("\r\n").split(FIELD_DELIMITER)
    if len(parts) < kind.min_fields:
        raise ParseError(
            line_number, f"expected at least {kind.min_fields} fields, got {len(parts)}"
        )

    try:
        timestamp = parse_instant(parts[0])
    except ValueError as exc:
        raise ParseError(line_number, f"bad timestamp {parts[0]!r}") from exc

    values: list[float] = []
    for raw in parts[1 : kind.min_fields]:
        try:
            value = float(raw.strip())
        except ValueError as exc:
            raise ParseError(line_number, f"non-numeric field {raw!r}") from exc
        if not math.isfinite(value):
            raise ParseError(line_number, f"non-finite field {raw!r}")
        values.append(value)

    return kind.record_type.from_values(timestamp, tuple(values))


def parse_records(path: Path | str, kind: SensorKind) -> Iterator[SensorRecord]:
    """Lazily decode every valid record of a sensor log.

    The first line is always treated as the header and skipped, whatever it
    contains.  Blank lines and malformed lines are skipped individually.

    The returned generator makes a single pass over the file and cannot be
    restarted; call again to re-read.

    Args:
        path: Log file to read.
        kind: Sensor kind of the file.

    Yields:
        Records in file order.

    Raises:
        OSError: If the file cannot be opened or read.
    """
    skipped = 0
    parsed = 0
    # Undecodable bytes become U+FFFD so the damage stays confined to one line.
    with Path(path).open("r", encoding="utf-8", errors="replace", newline="") as fh:
        next(fh, None)  # header
        for line_number, line in enumerate(fh, start=2):
            if not line.strip():
                continue
            try:
                record = parse_line(line, kind, line_number)
            except ParseError as exc:
                skipped += 1
                logger.debug("Skipping malformed %s line: %s", kind.value, exc)
                continue
            parsed += 1
            yield record

    if skipped:
        logger.info(
            "Parsed %d %s records from %s (%d malformed lines skipped)",
            parsed, kind.value, Path(path).name, skipped,
        )
