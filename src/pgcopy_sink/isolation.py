from __future__ import annotations

from loguru import logger

from . import metrics
from .accumulator import Batch
from .error_sink import ErrorSink
from .loader import BulkLoader
from .models import CopyFailure, ErrorRecord
from .utils import payload_text, root_cause_message


class FailureIsolator:
    """
    Replays a failed batch one record at a time.

    Each record gets its own single-row COPY (and transaction). Records that
    still fail become ErrorRecords for the ErrorSink; the rest land in the
    target table. One bad row therefore costs one row, not the whole batch.
    """

    def __init__(self, loader: BulkLoader, error_sink: ErrorSink, table_name: str):
        self._loader = loader
        self._error_sink = error_sink
        self._table = table_name

    def isolate(self, batch: Batch) -> int:
        """Returns the number of rows written individually."""
        rows = 0
        rejected = 0
        for record in batch.records:
            outcome = self._loader.load([record])
            if isinstance(outcome, CopyFailure):
                rejected += 1
                self._reject(record, outcome.cause)
                continue
            rows += outcome.rows_written

        metrics.ROWS_WRITTEN_TOTAL.labels(table=self._table, mode="single").inc(rows)
        logger.debug(f"Re-tried batch and wrote {rows} rows ({rejected} rejected)")
        return rows

    def _reject(self, record, cause: BaseException) -> None:
        text = payload_text(record)
        logger.error(f"Copy for single row caused error: {cause}")
        logger.error(f"Bad Data: \n{text}")
        error = ErrorRecord(
            table_name=self._table,
            error_message=root_cause_message(cause),
            payload=text,
        )
        if not self._error_sink.record(error):
            logger.error(f"Dropped record for {self._table}: {text!r}")
