"""SampleWriter: durable, per-sensor append-only CSV logs.

One log stream per sensor kind lives in ``data_dir`` under the kind's file
name.  Readings arrive from producers on arbitrary threads; each stream has
its own lock so lines written to the same file are totally ordered and never
interleave.  No ordering is guaranteed across different streams.

Every line is flushed before ``write`` returns.  With ``fsync=True`` it is
also forced to stable storage.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Callable, Iterable, TextIO

from sensorsync.pipeline.base import SensorKind, SensorRecord
from sensorsync.pipeline.errors import PermissionDeniedError, PipelineIOError
from sensorsync.pipeline.producers.base import ReadingProducer

logger = logging.getLogger("sensorsync.pipeline.writer")


class _LogStream:
    """An append-mode handle for one sensor log plus its exclusive section."""

    def __init__(self, kind: SensorKind, path: Path) -> None:
        self.kind = kind
        self.path = path
        self.lock = threading.Lock()
        self.handle: TextIO | None = None
        self.lines_written = 0

    def open(self) -> None:
        if self.handle is not None:
            return
        handle = self.path.open("a", encoding="utf-8", newline="")
        try:
            # Append-or-create: the header goes in only when the file is empty.
            if handle.tell() == 0:
                handle.write(self.kind.header + "\n")
                handle.flush()
        except OSError:
            handle.close()
            raise
        self.handle = handle

    def close(self) -> None:
        with self.lock:
            if self.handle is not None:
                self.handle.close()
                self.handle = None


class SampleWriter:
    """Turns asynchronous reading events into ordered per-sensor log files.

    Args:
        data_dir:       Directory holding the four sensor logs.
        producers:      One producer per sensor kind to run while collecting.
        has_permission: Returns True when sensor data may be read.
        fsync:          Force each line to disk after flushing.
    """

    def __init__(
        self,
        data_dir: Path,
        producers: Iterable[ReadingProducer] = (),
        has_permission: Callable[[], bool] = lambda: True,
        fsync: bool = False,
    ) -> None:
        self.data_dir = Path(data_dir)
        self._producers = list(producers)
        self._has_permission = has_permission
        self._fsync = fsync
        self._lifecycle_lock = threading.Lock()
        self._active = False
        self._streams: dict[SensorKind, _LogStream] = {
            kind: _LogStream(kind, self.data_dir / kind.file_name) for kind in SensorKind
        }

    @property
    def is_collecting(self) -> bool:
        return self._active

    @property
    def producers(self) -> list[ReadingProducer]:
        return list(self._producers)

    def log_path(self, kind: SensorKind) -> Path:
        return self._streams[kind].path

    def lines_written(self, kind: SensorKind) -> int:
        """Data lines appended to ``kind``'s log since this writer was created."""
        return self._streams[kind].lines_written

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_collection(self) -> bool:
        """Open every log stream and start all producers.

        Returns:
            True if collection was activated by this call, False if it was
            already active (nothing is re-opened or re-registered).

        Raises:
            PermissionDeniedError: If the sensor read capability is missing.
            PipelineIOError:       If a log stream could not be opened.
        """
        if not self._has_permission():
            raise PermissionDeniedError("Sensor data read permission has not been granted")

        # Held for the whole transition so a start cannot overlap a teardown.
        with self._lifecycle_lock:
            if self._active:
                logger.info("Collection already active; start ignored")
                return False
            try:
                self.data_dir.mkdir(parents=True, exist_ok=True)
                for stream in self._streams.values():
                    with stream.lock:
                        stream.open()
            except OSError as exc:
                for stream in self._streams.values():
                    stream.close()
                raise PipelineIOError(f"Failed to open sensor logs in {self.data_dir}: {exc}") from exc

            for producer in self._producers:
                producer.start(self.write)
            self._active = True
        logger.info(
            "Collection started in %s with %d producer(s)", self.data_dir, len(self._producers)
        )
        return True

    def stop_collection(self) -> bool:
        """Stop all producers, then close every stream.

        Once this returns no further line can be written; a ``write`` racing
        with shutdown either completes before the stream closes or is dropped.
        A ``start_collection`` issued meanwhile waits for the teardown.

        Returns:
            True if collection was active and has been stopped.
        """
        with self._lifecycle_lock:
            if not self._active:
                return False
            for producer in self._producers:
                try:
                    producer.stop()
                except Exception as exc:
                    logger.warning("Failed to stop %r: %s", producer, exc)
            for stream in self._streams.values():
                stream.close()
            self._active = False
        logger.info("Collection stopped in %s", self.data_dir)
        return True

    # ------------------------------------------------------------------
    # Sink
    # ------------------------------------------------------------------

    def write(self, record: SensorRecord) -> bool:
        """Append one record to its kind's log and flush it.

        Returns:
            False if the stream is closed and the record was dropped.

        Raises:
            PipelineIOError: If the write or flush fails.
        """
        stream = self._streams[record.kind]
        line = record.to_csv_line() + "\n"
        with stream.lock:
            handle = stream.handle
            if handle is None:
                return False
            try:
                handle.write(line)
                handle.flush()
                if self._fsync:
                    os.fsync(handle.fileno())
            except OSError as exc:
                raise PipelineIOError(f"Failed to append to {stream.path}: {exc}") from exc
            stream.lines_written += 1
        return True

    def __enter__(self) -> "SampleWriter":
        self.start_collection()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop_collection()
