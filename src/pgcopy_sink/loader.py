from __future__ import annotations

from time import perf_counter
from typing import Sequence, Union

from loguru import logger

from . import metrics
from .accumulator import Batch
from .errors import classify_db_error
from .models import BulkLoadOutcome, CopyFailure, CopySuccess, Record
from .store import Store
from .utils import encode_records


class BulkLoader:
    """
    Runs one COPY ... FROM STDIN per call, inside one transaction.

    COPY is all-or-nothing: a single bad row fails (and rolls back) the whole
    call. Failures are returned as `CopyFailure`, never retried here.
    """

    def __init__(self, store: Store, command: str, *, table_name: str = ""):
        self._store = store
        self._command = command
        self._table = table_name

    @property
    def command(self) -> str:
        return self._command

    def load(self, batch: Union[Batch, Sequence[Record]]) -> BulkLoadOutcome:
        records = batch.records if isinstance(batch, Batch) else batch
        if not records:
            return CopySuccess(0)

        data = encode_records(records)
        logger.debug(f"Executing batch of size {len(records)} for {self._command}")
        t0 = perf_counter()
        try:
            rows = self._store.copy_in(self._command, data)
        except Exception as exc:
            metrics.COPY_LATENCY.labels(table=self._table).observe(perf_counter() - t0)
            logger.debug(
                f"COPY of {len(records)} record(s) failed "
                f"[{classify_db_error(exc)}]: {type(exc).__name__}: {exc}"
            )
            return CopyFailure(exc)

        metrics.COPY_LATENCY.labels(table=self._table).observe(perf_counter() - t0)
        logger.debug(f"Wrote {rows} rows")
        return CopySuccess(rows)
