from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Hashable, Iterator, Optional, Sequence

from loguru import logger

from . import metrics
from .accumulator import Batch, BatchAccumulator
from .error_sink import ErrorSink
from .isolation import FailureIsolator
from .loader import BulkLoader
from .models import CopyFailure, Record, SinkHealth
from .reaper import Reaper
from .settings import SinkSettings
from .sql import copy_command_for
from .store import PostgresStore, Store


def payload_type_key(record: Record) -> str:
    """Default correlation: records of the same payload type share batches."""
    return type(record).__name__


class _KeyLock:
    """Dispatch lock for one key, dropped once no dispatch holds or awaits it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class PgcopySink:
    """
    Batching COPY sink with row-level failure isolation.

    Records are accumulated per correlation key and copied in batches of
    `batch_size`; idle batches are flushed by a background reaper. A batch
    whose COPY fails is replayed record by record, and records that still
    fail are written to the error table (if configured).

    Usage:
        settings = SinkSettings(table_name="names", columns=["id", "name", "age"],
                                format="CSV", batch_size=1000, idle_timeout_ms=2000,
                                dsn="postgresql://...")
        with PgcopySink.from_settings(settings) as sink:
            for line in lines:
                sink.accept(line)
        # close() flushes every partial batch
    """

    def __init__(
        self,
        settings: SinkSettings,
        store: Store,
        *,
        key_fn: Callable[[Record], Hashable] = payload_type_key,
        owns_store: bool = False,
    ):
        self._settings = settings
        self._store = store
        self._owns_store = owns_store
        self._key_fn = key_fn
        self._table = settings.table_name

        self._command = copy_command_for(settings)
        self._accumulator = BatchAccumulator(settings.batch_size)
        self._loader = BulkLoader(store, self._command, table_name=self._table)
        self._error_sink = ErrorSink(store, settings.error_table)
        self._isolator = FailureIsolator(self._loader, self._error_sink, self._table)
        self._reaper = Reaper(
            self._accumulator,
            self._dispatch,
            idle_timeout=settings.idle_timeout,
            interval=settings.reap_interval,
        )

        # batches for one key are never copied concurrently
        self._key_locks: Dict[Hashable, _KeyLock] = {}
        self._key_locks_guard = threading.Lock()

        # guards _started/_closed and counts producer calls still running
        self._gate = threading.Condition()
        self._in_flight = 0

        self._stats_lock = threading.Lock()
        self._batches_copied = 0
        self._batches_isolated = 0
        self._rows_written = 0
        self._error_records = 0

        self._started = False
        self._closed = False
        logger.debug(f"Sink for {self._table} uses: {self._command}")

    @classmethod
    def from_settings(cls, settings: SinkSettings, **kwargs) -> "PgcopySink":
        return cls(settings, PostgresStore.from_settings(settings), owns_store=True, **kwargs)

    # --------------------------- lifecycle

    def start(self) -> "PgcopySink":
        """Verify the error table (if any) and start the reaper.

        Called implicitly by the first `submit`/`write_batch`.
        """
        with self._gate:
            if self._closed:
                raise RuntimeError("sink is closed")
            if self._started:
                return self
            if self._error_sink.enabled and self._settings.verify_error_table:
                self._error_sink.verify()
            self._reaper.start()
            self._started = True
        logger.info(
            f"pgcopy sink started: table={self._table} batch_size={self._settings.batch_size} "
            f"idle_timeout={self._settings.idle_timeout}"
        )
        return self

    def close(self) -> int:
        """Stop the reaper, flush partial batches, release the store. Idempotent.

        New records are refused from here on; calls already admitted finish
        their add and copy before the final sweep runs and the store closes.
        """
        with self._gate:
            if self._closed:
                return 0
            self._closed = True
            if self._in_flight:
                logger.debug(f"Waiting for {self._in_flight} in-flight write(s) on {self._table}")
            self._gate.wait_for(lambda: self._in_flight == 0)
        rows = self._reaper.stop(final_sweep=True)
        if self._owns_store:
            self._store.close()
        logger.info(f"pgcopy sink closed: table={self._table} rows_written={self._rows_written}")
        return rows

    def __enter__(self) -> "PgcopySink":
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # --------------------------- public API

    @property
    def command(self) -> str:
        return self._command

    @property
    def accumulator(self) -> BatchAccumulator:
        return self._accumulator

    @property
    def reaper(self) -> Reaper:
        return self._reaper

    def accept(self, payload: Any, key: Optional[Hashable] = None) -> int:
        """Take one delivery: a single record, or a pre-grouped collection.

        Returns rows written as a direct result of this call.
        """
        if isinstance(payload, (list, tuple)):
            return self.write_batch(payload, key=key)
        if isinstance(payload, (str, bytes, bytearray)):
            return self.submit(payload, key=key)
        raise TypeError(
            "Expected a collection of strings or a single str/bytes record but received "
            f"{type(payload).__name__}"
        )

    def submit(self, record: Record, key: Optional[Hashable] = None) -> int:
        """Buffer one record; copy its batch if this record filled it."""
        with self._admitted():
            if key is None:
                key = self._key_fn(record)
            batch = self._accumulator.add(key, record)
            if batch is None:
                return 0
            return self._dispatch(batch)

    def write_batch(self, records: Sequence[Record], key: Optional[Hashable] = None) -> int:
        """Copy a ready-made collection as one batch, bypassing accumulation."""
        with self._admitted():
            if not records:
                return 0
            if key is None:
                key = self._key_fn(records[0])
            return self._dispatch(Batch.sealed_from(key, records))

    def flush(self) -> int:
        """Copy every partial batch now."""
        with self._admitted():
            return self._reaper.flush_all()

    def health(self) -> SinkHealth:
        with self._stats_lock:
            return SinkHealth(
                table_name=self._table,
                pending_records=self._accumulator.pending(),
                live_batches=len(self._accumulator),
                batches_copied=self._batches_copied,
                batches_isolated=self._batches_isolated,
                rows_written=self._rows_written,
                error_records=self._error_records,
                reaper_alive=self._reaper.alive,
            )

    # --------------------------- internals

    @contextmanager
    def _admitted(self) -> Iterator[None]:
        if not self._started:
            self.start()
        with self._gate:
            if self._closed:
                raise RuntimeError("sink is closed")
            self._in_flight += 1
        try:
            yield
        finally:
            with self._gate:
                self._in_flight -= 1
                if self._in_flight == 0:
                    self._gate.notify_all()

    @contextmanager
    def _key_lock(self, key: Hashable) -> Iterator[None]:
        with self._key_locks_guard:
            entry = self._key_locks.get(key)
            if entry is None:
                entry = self._key_locks[key] = _KeyLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._key_locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._key_locks[key]

    def _dispatch(self, batch: Batch) -> int:
        with self._key_lock(batch.key):
            outcome = self._loader.load(batch)
            if isinstance(outcome, CopyFailure):
                logger.error(f"Error while copying batch of data: {outcome.cause}")
                logger.error("Switching to single row copy for current batch")
                rows = self._isolator.isolate(batch)
                isolated = True
            else:
                rows = outcome.rows_written
                metrics.ROWS_WRITTEN_TOTAL.labels(table=self._table, mode="batch").inc(rows)
                isolated = False
            batch.mark_drained()

        metrics.BATCHES_TOTAL.labels(
            table=self._table, outcome="isolated" if isolated else "copied"
        ).inc()
        with self._stats_lock:
            self._rows_written += rows
            if isolated:
                self._batches_isolated += 1
                self._error_records += batch.size - rows
            else:
                self._batches_copied += 1
        return rows
