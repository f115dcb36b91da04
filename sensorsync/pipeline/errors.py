"""Error taxonomy for the sensorsync pipeline.

Only :class:`ParseError` is ever recovered silently (one malformed log line is
skipped).  Every other error terminates the current sync attempt and is
captured by the coordinator as a ``SyncError`` status value.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for every failure raised by the pipeline."""


class PermissionDeniedError(PipelineError):
    """Sensor collection cannot start because the read capability is not granted."""


class PipelineIOError(PipelineError):
    """A log, archive, or working-directory read/write failed."""


class PathTraversalError(PipelineIOError):
    """An archive entry resolves outside the extraction directory.

    Attributes:
        entry_name: The offending entry name as stored in the archive.
    """

    def __init__(self, entry_name: str, message: str | None = None) -> None:
        self.entry_name = entry_name
        super().__init__(message or f"Path traversal attempt detected: {entry_name!r}")


class ParseError(PipelineError):
    """A single log line could not be decoded.

    Attributes:
        line_number: 1-based line number within the log file.
    """

    def __init__(self, line_number: int, reason: str) -> None:
        self.line_number = line_number
        super().__init__(f"line {line_number}: {reason}")


class TransportError(PipelineError):
    """The point-to-point link failed to deliver or receive a payload."""


class StoreError(PipelineError):
    """The time-series store could not complete a read or write."""
