"""SQLite-backed time-series store for ingested sensor records.

One table per sensor kind, each row keyed by an autoincrementing surrogate
id.  Timestamps are stored as integer epoch milliseconds (UTC).

The store is an explicitly constructed handle, opened once at process
start and closed at shutdown::

    store = SensorStore(settings.db_path)
    store.open()
    ...
    store.close()

Access model: a single writer at a time (every write runs inside one
transaction under the store lock) and any number of readers.  A batch
insert commits atomically, so a concurrent range query sees either none or
all of a batch.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
import weakref
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Callable, Generic, Iterator, Sequence, TypeVar

from sensorsync.pipeline.base import (
    SensorKind,
    SensorRecord,
    from_epoch_millis,
    to_epoch_millis,
)
from sensorsync.pipeline.errors import StoreError

logger = logging.getLogger("sensorsync.store")

R = TypeVar("R", bound=SensorRecord)

MEMORY = ":memory:"


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _ddl(kind: SensorKind) -> str:
    value_columns = ",\n                ".join(
        f"{column} REAL NOT NULL" for column in kind.record_type.VALUE_COLUMNS
    )
    return f"""
            CREATE TABLE IF NOT EXISTS {kind.table} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp INTEGER NOT NULL,
                {value_columns}
            )
            """


class RangeView(Generic[R]):
    """Live result of a range query.

    Holds the records of one kind whose timestamps fall inside
    ``[start, end]``, ascending.  The owning store refreshes the view after
    every committed batch that touches the range, and after every retention
    delete, then pushes the new snapshot to subscribers.
    """

    def __init__(
        self,
        store: "SensorStore",
        record_type: type[R],
        start: datetime,
        end: datetime,
    ) -> None:
        self._store = store
        self.record_type = record_type
        self.start = start
        self.end = end
        self._start_ms = to_epoch_millis(start)
        self._end_ms = to_epoch_millis(end)
        self._lock = threading.Lock()
        self._records: list[R] = []
        self._listeners: list[Callable[[list[R]], None]] = []
        self._closers: list[Callable[[], None]] = []
        self._closed = False

    @property
    def kind(self) -> SensorKind:
        return self.record_type.KIND

    @property
    def records(self) -> list[R]:
        with self._lock:
            return list(self._records)

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self) -> Iterator[R]:
        return iter(self.records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def overlaps(self, low_ms: int, high_ms: int) -> bool:
        return not (high_ms < self._start_ms or low_ms > self._end_ms)

    def subscribe(self, listener: Callable[[list[R]], None]) -> Callable[[], None]:
        """Call ``listener`` with the full snapshot after each refresh.

        Returns:
            A callable that removes the listener.
        """
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    async def updates(self) -> AsyncIterator[list[R]]:
        """Async iterator: yields the current snapshot, then one per refresh.

        Ends when the view is closed.  Safe to consume from an event loop
        while inserts commit on worker threads.
        """
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[list[R] | None] = asyncio.Queue()

        def _push(snapshot: list[R]) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, snapshot)

        def _close() -> None:
            loop.call_soon_threadsafe(queue.put_nowait, None)

        unsubscribe = self.subscribe(_push)
        with self._lock:
            self._closers.append(_close)
        try:
            if self._closed:
                return
            yield self.records
            while True:
                snapshot = await queue.get()
                if snapshot is None:
                    return
                yield snapshot
        finally:
            unsubscribe()
            with self._lock:
                if _close in self._closers:
                    self._closers.remove(_close)

    def refresh(self) -> None:
        """Re-run the query and notify subscribers."""
        if self._closed:
            return
        snapshot = self._store.fetch_range(self.record_type, self.start, self.end)
        with self._lock:
            self._records = snapshot
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(list(snapshot))
            except Exception as exc:
                logger.warning("Range view listener failed: %s", exc)

    def close(self) -> None:
        """Stop receiving refreshes and end any running ``updates()`` iterators."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            closers = list(self._closers)
            self._listeners.clear()
        self._store._detach(self)
        for closer in closers:
            closer()

    def __enter__(self) -> "RangeView[R]":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class SensorStore:
    """Persistent per-kind time-series storage.

    Args:
        db_path:     SQLite file path, or ``":memory:"``.
        deduplicate: When True, a UNIQUE index on ``timestamp`` per table
                     makes re-ingesting the same reading replace the old row
                     instead of adding a duplicate.
    """

    def __init__(self, db_path: Path | str, *, deduplicate: bool = False) -> None:
        self._db_path = str(db_path)
        self.deduplicate = deduplicate
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._views: dict[SensorKind, "weakref.WeakSet[RangeView]"] = {
            kind: weakref.WeakSet() for kind in SensorKind
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> "SensorStore":
        """Connect and create the schema. Idempotent."""
        with self._lock:
            if self._conn is not None:
                return self
            try:
                if self._db_path != MEMORY:
                    _ensure_parent(Path(self._db_path))
                conn = sqlite3.connect(self._db_path, check_same_thread=False)
                conn.isolation_level = None  # explicit transactions
                if self._db_path != MEMORY:
                    conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=NORMAL")
                self._conn = conn
                self._initialize()
            except sqlite3.Error as exc:
                self._conn = None
                raise StoreError(f"Failed to open store at {self._db_path}: {exc}") from exc
        logger.info(
            "Sensor store opened at %s (deduplicate=%s)", self._db_path, self.deduplicate
        )
        return self

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
        for views in self._views.values():
            for view in list(views):
                view.close()
        logger.info("Sensor store closed")

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def __enter__(self) -> "SensorStore":
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _initialize(self) -> None:
        conn = self._require_conn()
        conn.execute("BEGIN")
        try:
            for kind in SensorKind:
                conn.execute(_ddl(kind))
                if self.deduplicate:
                    conn.execute(
                        f"CREATE UNIQUE INDEX IF NOT EXISTS ux_{kind.table}_timestamp "
                        f"ON {kind.table}(timestamp)"
                    )
                else:
                    conn.execute(
                        f"CREATE INDEX IF NOT EXISTS idx_{kind.table}_timestamp "
                        f"ON {kind.table}(timestamp)"
                    )
            conn.execute("COMMIT")
        except sqlite3.Error:
            conn.execute("ROLLBACK")
            raise

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreError("Sensor store is not open; call open() first")
        return self._conn

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert_batch(self, records: Sequence[SensorRecord]) -> int:
        """Insert one batch of same-kind records in a single transaction.

        Conflict policy is replace-on-conflict.  Records carry no id until
        stored, so each row normally receives a fresh surrogate key.

        Args:
            records: Records of exactly one sensor kind.

        Returns:
            Number of rows written.

        Raises:
            ValueError: If the batch mixes kinds.
            StoreError: If the write fails; nothing from the batch is kept.
        """
        if not records:
            return 0
        return self.insert_batches([records])[records[0].KIND]

    def insert_batches(self, batches: Sequence[Sequence[SensorRecord]]) -> dict[SensorKind, int]:
        """Insert several single-kind batches in one transaction.

        Either every batch is stored or none is; a received archive is
        ingested this way so a failure leaves nothing behind to duplicate
        on the next attempt.

        Returns:
            Rows written per sensor kind (kinds with empty batches omitted).

        Raises:
            ValueError: If any batch mixes kinds.
            StoreError: If the write fails; nothing from any batch is kept.
        """
        prepared = [self._prepare_batch(batch) for batch in batches if batch]
        if not prepared:
            return {}
        label = ", ".join(kind.value for kind, _, _ in prepared)

        with self._lock:
            conn = self._require_conn()
            try:
                conn.execute("BEGIN IMMEDIATE")
                for _, sql, rows in prepared:
                    conn.executemany(sql, rows)
                conn.execute("COMMIT")
            except sqlite3.Error as exc:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise StoreError(f"Failed to insert {label} batch: {exc}") from exc

        counts: dict[SensorKind, int] = {}
        for kind, _, rows in prepared:
            counts[kind] = counts.get(kind, 0) + len(rows)
            logger.debug("Inserted %d %s records", len(rows), kind.value)
            stamps = [row[1] for row in rows]
            self._refresh_views(kind, min(stamps), max(stamps))
        return counts

    @staticmethod
    def _prepare_batch(records: Sequence[SensorRecord]) -> tuple[SensorKind, str, list[tuple]]:
        kind = records[0].KIND
        if any(r.KIND is not kind for r in records):
            raise ValueError("insert_batch() accepts records of a single sensor kind")

        columns = ("id", "timestamp", *kind.record_type.VALUE_COLUMNS)
        placeholders = ", ".join("?" for _ in columns)
        sql = (
            f"INSERT OR REPLACE INTO {kind.table} ({', '.join(columns)}) "
            f"VALUES ({placeholders})"
        )
        rows = [(r.id, to_epoch_millis(r.timestamp), *r.values()) for r in records]
        return kind, sql, rows

    def delete_before(self, cutoff: datetime) -> dict[SensorKind, int]:
        """Delete every record of every kind with timestamp strictly before ``cutoff``.

        Returns:
            Rows deleted per kind.

        Raises:
            StoreError: If the sweep fails; no kind is partially swept.
        """
        cutoff_ms = to_epoch_millis(cutoff)
        deleted: dict[SensorKind, int] = {}
        with self._lock:
            conn = self._require_conn()
            try:
                conn.execute("BEGIN IMMEDIATE")
                for kind in SensorKind:
                    cursor = conn.execute(
                        f"DELETE FROM {kind.table} WHERE timestamp < ?", (cutoff_ms,)
                    )
                    deleted[kind] = cursor.rowcount
                conn.execute("COMMIT")
            except sqlite3.Error as exc:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise StoreError(f"Retention delete failed: {exc}") from exc

        logger.info(
            "Retention sweep before %s removed %s",
            cutoff.isoformat(),
            {k.value: n for k, n in deleted.items()},
        )
        for kind in SensorKind:
            self._refresh_views(kind, None, None)
        return deleted

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def fetch_range(self, record_type: type[R], start: datetime, end: datetime) -> list[R]:
        """One-shot range read, inclusive bounds, ascending by timestamp."""
        kind = record_type.KIND
        value_columns = record_type.VALUE_COLUMNS
        sql = (
            f"SELECT id, timestamp, {', '.join(value_columns)} FROM {kind.table} "
            "WHERE timestamp BETWEEN ? AND ? ORDER BY timestamp, id"
        )
        with self._lock:
            conn = self._require_conn()
            try:
                rows = conn.execute(
                    sql, (to_epoch_millis(start), to_epoch_millis(end))
                ).fetchall()
            except sqlite3.Error as exc:
                raise StoreError(f"Range query on {kind.value} failed: {exc}") from exc

        return [
            record_type.from_values(from_epoch_millis(row[1]), tuple(row[2:]), row[0])
            for row in rows
        ]

    def range_query(self, record_type: type[R], start: datetime, end: datetime) -> RangeView[R]:
        """Open a live view over ``[start, end]`` for one record type.

        The view is populated immediately and kept current as batches
        commit.  Close it when done.
        """
        if end < start:
            raise ValueError("range_query() end must not precede start")
        view: RangeView[R] = RangeView(self, record_type, start, end)
        with self._lock:
            self._views[record_type.KIND].add(view)
        view.refresh()
        return view

    def count(self, kind: SensorKind) -> int:
        with self._lock:
            conn = self._require_conn()
            try:
                (total,) = conn.execute(f"SELECT COUNT(*) FROM {kind.table}").fetchone()
            except sqlite3.Error as exc:
                raise StoreError(f"Count on {kind.value} failed: {exc}") from exc
        return int(total)

    def ping(self) -> bool:
        with self._lock:
            conn = self._require_conn()
            try:
                conn.execute("SELECT 1").fetchone()
            except sqlite3.Error as exc:
                raise StoreError(f"Store probe failed: {exc}") from exc
        return True

    # ------------------------------------------------------------------
    # View bookkeeping
    # ------------------------------------------------------------------

    def _detach(self, view: RangeView) -> None:
        with self._lock:
            self._views[view.kind].discard(view)

    def _refresh_views(self, kind: SensorKind, low_ms: int | None, high_ms: int | None) -> None:
        with self._lock:
            views = list(self._views[kind])
        for view in views:
            if low_ms is None or high_ms is None or view.overlaps(low_ms, high_ms):
                try:
                    view.refresh()
                except StoreError as exc:
                    logger.warning("Failed to refresh %s range view: %s", kind.value, exc)
