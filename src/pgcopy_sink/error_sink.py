from __future__ import annotations

from typing import Optional

from loguru import logger

from . import metrics
from . import sql as q
from .errors import InvalidErrorTableError
from .models import ErrorRecord
from .store import Store


class ErrorSink:
    """
    Best-effort writer of rejected records into an error table.

    The error table needs three text-compatible columns::

        CREATE TABLE errors (table_name VARCHAR(255), error_message TEXT, payload TEXT)

    Writes use plain row-level INSERTs in their own transaction, never the
    batching path. A failing write is logged and dropped; it must not stop
    ingestion. Without an error table configured, `record` only logs.
    """

    def __init__(self, store: Store, error_table: Optional[str]):
        self._store = store
        self._error_table = error_table
        self._insert = q.error_insert_statement(error_table) if error_table else None

    @property
    def enabled(self) -> bool:
        return self._insert is not None

    @property
    def error_table(self) -> Optional[str]:
        return self._error_table

    def verify(self) -> None:
        """Probe the error table with a rolled-back insert.

        Raises:
            InvalidErrorTableError: if the table or its columns are unusable
        """
        if self._insert is None:
            return
        try:
            self._store.probe(self._insert, (self._error_table, "message", "payload"))
        except Exception as exc:
            raise InvalidErrorTableError(
                f"Invalid error table specified: {self._error_table}: {exc}"
            ) from exc
        logger.debug(f"Error table {self._error_table} verified")

    def record(self, error: ErrorRecord) -> bool:
        """Persist `error`; returns False when it was dropped."""
        if self._insert is None:
            metrics.ERROR_RECORDS_TOTAL.labels(table=error.table_name, outcome="dropped").inc()
            return False
        try:
            self._store.execute(self._insert, (error.table_name, error.error_message, error.payload))
        except Exception as exc:
            logger.error(f"Writing to error table failed: {exc}")
            metrics.ERROR_RECORDS_TOTAL.labels(table=error.table_name, outcome="dropped").inc()
            return False
        metrics.ERROR_RECORDS_TOTAL.labels(table=error.table_name, outcome="stored").inc()
        return True
