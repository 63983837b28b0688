from __future__ import annotations

import threading
from typing import Callable, Optional

from loguru import logger

from .accumulator import Batch, BatchAccumulator


class Reaper:
    """
    Periodic sweep that force-flushes idle batches.

    Every `interval` seconds it seals batches idle for `idle_timeout` and hands
    them to `dispatch`, the same path a size-triggered flush takes. `stop()`
    ends the thread and then drains every partial batch synchronously, so a
    graceful shutdown loses nothing that was buffered.
    """

    def __init__(
        self,
        accumulator: BatchAccumulator,
        dispatch: Callable[[Batch], int],
        *,
        idle_timeout: Optional[float],
        interval: float = 1.0,
        name: str = "pgcopy-reaper",
    ):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self._acc = accumulator
        self._dispatch = dispatch
        self._idle_timeout = idle_timeout
        self._interval = interval
        self._name = name
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.alive:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self._name, daemon=True)
        self._thread.start()
        logger.debug(f"{self._name} started (interval={self._interval}s, idle={self._idle_timeout})")

    def run_once(self, now: Optional[float] = None) -> int:
        """One sweep: seal idle batches and dispatch them. Returns rows written."""
        rows = 0
        for batch in self._acc.sweep_idle(self._idle_timeout, now):
            rows += self._dispatch(batch)
        return rows

    def flush_all(self) -> int:
        """Seal and dispatch every partial batch, whatever its age."""
        rows = 0
        for batch in self._acc.drain():
            rows += self._dispatch(batch)
        return rows

    def stop(self, *, final_sweep: bool = True, timeout: Optional[float] = None) -> int:
        """Stop the periodic thread; then, by default, flush everything left."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning(f"{self._name} did not stop within {timeout}s")
            self._thread = None
        rows = self.flush_all() if final_sweep else 0
        logger.debug(f"{self._name} stopped (final sweep wrote {rows} rows)")
        return rows

    # --------------------------- internals

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.run_once()
            except Exception:
                # keep sweeping; a broken tick must not strand later batches
                logger.exception(f"{self._name} sweep failed")
