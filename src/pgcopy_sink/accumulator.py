from __future__ import annotations

import threading
from enum import Enum
from time import monotonic
from typing import Callable, Dict, Hashable, List, Optional, Sequence

from loguru import logger

from .models import Record


class BatchState(str, Enum):
    """Lifecycle of a batch. A key with no live batch is implicitly EMPTY."""

    FILLING = "filling"
    SEALED = "sealed"
    DRAINED = "drained"


class Batch:
    """
    Ordered, append-only group of records sharing one correlation key.

    Records are only appended while FILLING, through BatchAccumulator. Once
    sealed the batch is read-only and owned by exactly one consumer.
    """

    __slots__ = ("key", "_records", "created_at", "last_appended_at", "_state")

    def __init__(self, key: Hashable, created_at: float):
        self.key = key
        self._records: List[Record] = []
        self.created_at = created_at
        self.last_appended_at = created_at
        self._state = BatchState.FILLING

    @classmethod
    def sealed_from(cls, key: Hashable, records: Sequence[Record]) -> "Batch":
        """A ready-made sealed batch, for pre-grouped deliveries."""
        batch = cls(key, monotonic())
        batch._records.extend(records)
        batch._state = BatchState.SEALED
        return batch

    @property
    def state(self) -> BatchState:
        return self._state

    @property
    def records(self) -> Sequence[Record]:
        return tuple(self._records)

    @property
    def size(self) -> int:
        return len(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def idle_for(self, now: float) -> float:
        return now - self.last_appended_at

    def mark_drained(self) -> None:
        if self._state is not BatchState.SEALED:
            raise RuntimeError(f"cannot drain a batch in state {self._state.value}")
        self._state = BatchState.DRAINED

    def __repr__(self) -> str:
        return f"Batch(key={self.key!r}, size={self.size}, state={self._state.value})"

    # --------------------------- accumulator-only

    def _append(self, record: Record, now: float) -> None:
        if self._state is not BatchState.FILLING:
            raise RuntimeError(f"cannot append to a batch in state {self._state.value}")
        self._records.append(record)
        self.last_appended_at = now

    def _seal(self) -> None:
        self._state = BatchState.SEALED


class BatchAccumulator:
    """
    Groups records into per-key batches and seals them by size or idleness.

    All transitions happen under one lock, and a sealed batch leaves the live
    registry in the same critical section that sealed it. That makes hand-off
    at-most-once even when `add` and `sweep_idle` race on the same batch, and
    the next `add` for the key always starts a fresh batch. No I/O happens
    here; callers load the returned batches themselves.

    Usage:
        acc = BatchAccumulator(batch_size=3)
        acc.add("str", "a")          # -> None (buffered)
        acc.add("str", "b")          # -> None
        acc.add("str", "c")          # -> Batch(key='str', size=3, state=sealed)
    """

    def __init__(self, batch_size: int, *, clock: Callable[[], float] = monotonic):
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self._batch_size = batch_size
        self._clock = clock
        self._live: Dict[Hashable, Batch] = {}
        self._lock = threading.Lock()

    @property
    def batch_size(self) -> int:
        return self._batch_size

    # --------------------------- public API

    def add(self, key: Hashable, record: Record) -> Optional[Batch]:
        """Append `record`; return the batch if this append sealed it."""
        with self._lock:
            now = self._clock()
            batch = self._live.get(key)
            if batch is None:
                batch = Batch(key, now)
                self._live[key] = batch
            batch._append(record, now)
            if batch.size >= self._batch_size:
                return self._seal_locked(key)
        return None

    def sweep_idle(self, idle_timeout: Optional[float], now: Optional[float] = None) -> List[Batch]:
        """Seal and return every batch idle for at least `idle_timeout` seconds.

        A None or negative timeout disables idle sealing.
        """
        if idle_timeout is None or idle_timeout < 0:
            return []
        with self._lock:
            if now is None:
                now = self._clock()
            expired = [k for k, b in self._live.items() if b.idle_for(now) >= idle_timeout]
            sealed = [self._seal_locked(k) for k in expired]
        if sealed:
            logger.debug(f"Sealed {len(sealed)} idle batch(es) after {idle_timeout}s")
        return sealed

    def drain(self) -> List[Batch]:
        """Seal and return every live batch regardless of age (shutdown)."""
        with self._lock:
            sealed = [self._seal_locked(k) for k in list(self._live)]
        if sealed:
            logger.debug(f"Drained {len(sealed)} partial batch(es)")
        return sealed

    def pending(self) -> int:
        """Records buffered in live (unsealed) batches."""
        with self._lock:
            return sum(b.size for b in self._live.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._live)

    # --------------------------- internals

    def _seal_locked(self, key: Hashable) -> Batch:
        batch = self._live.pop(key)
        batch._seal()
        return batch
