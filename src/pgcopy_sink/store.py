"""
Store boundary for the pgcopy sink.

`Store` is the minimal surface the sink needs from a database: a COPY entry
point plus row-level DML. `PostgresStore` implements it with psycopg and a
connection pool; every call checks out its own connection and runs in its own
transaction.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence, Union

from loguru import logger
from psycopg import sql as psql
from psycopg_pool import ConnectionPool

from . import sql as q
from .errors import ConfigurationError
from .settings import SinkSettings

Statement = Union[str, psql.Composable]


class Store(Protocol):
    """What the sink requires from the downstream store."""

    def copy_in(self, command: str, data: bytes) -> int:
        """Run one COPY ... FROM STDIN with `data`; return rows copied or raise."""
        ...

    def execute(self, statement: Statement, params: Sequence[Any]) -> None:
        """Run one parameterized statement in its own committed transaction."""
        ...

    def probe(self, statement: Statement, params: Sequence[Any]) -> None:
        """Run one statement in a transaction that is always rolled back."""
        ...

    def close(self) -> None: ...


@dataclass
class _Cfg:
    dsn: str
    app_name: Optional[str] = "pgcopy_sink"
    connect_timeout: float = 10.0
    statement_timeout_ms: Optional[int] = None
    pool_min: int = 1
    pool_max: int = 4


class PostgresStore:
    def __init__(self, config: dict):
        c = _Cfg(**config)
        self._cfg = c
        self._pool = ConnectionPool(
            conninfo=c.dsn,
            min_size=c.pool_min,
            max_size=c.pool_max,
            timeout=c.connect_timeout,
            open=True,
        )

    @classmethod
    def from_settings(cls, settings: SinkSettings) -> "PostgresStore":
        if not settings.dsn:
            raise ConfigurationError("dsn is required to connect to PostgreSQL")
        return cls(
            {
                "dsn": settings.dsn,
                "app_name": settings.app_name,
                "connect_timeout": settings.connect_timeout,
                "statement_timeout_ms": settings.statement_timeout_ms,
                "pool_min": settings.pool_min,
                "pool_max": settings.pool_max,
            }
        )

    def close(self) -> None:
        self._pool.close()

    # ---------- internal helpers ----------

    @contextmanager
    def _conn(self, *, rollback_only: bool = False):
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                if self._cfg.app_name:
                    cur.execute(
                        "SELECT set_config('application_name', %s, false)", (self._cfg.app_name,)
                    )
                if self._cfg.statement_timeout_ms is not None:
                    cur.execute(
                        "SELECT set_config('statement_timeout', %s, false)",
                        (f"{self._cfg.statement_timeout_ms}ms",),
                    )
            try:
                yield conn
                if rollback_only:
                    conn.rollback()
                else:
                    conn.commit()
            except Exception:
                conn.rollback()
                raise

    # ---------- Store protocol ----------

    def copy_in(self, command: str, data: bytes) -> int:
        with self._conn() as conn, conn.cursor() as cur:
            with cur.copy(command) as cp:
                cp.write(data)
            rows = cur.rowcount
        if rows < 0:
            # older servers may not report a row count for COPY
            rows = data.count(b"\n")
        return rows

    def execute(self, statement: Statement, params: Sequence[Any]) -> None:
        with self._conn() as conn, conn.cursor() as cur:
            cur.execute(statement, params)

    def probe(self, statement: Statement, params: Sequence[Any]) -> None:
        with self._conn(rollback_only=True) as conn, conn.cursor() as cur:
            cur.execute(statement, params)

    # ---------- admin / health ----------

    def health(self) -> bool:
        with self._conn(rollback_only=True) as conn, conn.cursor() as cur:
            cur.execute(q.HEALTH)
            _ = cur.fetchone()
            logger.debug(f"Store health check ok (app_name={self._cfg.app_name})")
            return True
