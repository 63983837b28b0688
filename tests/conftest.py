"""
Pytest configuration and fixtures for pgcopy-sink.

Provides an in-memory store emulating COPY semantics (all-or-nothing per call,
column-count validation) so the sink can be exercised without PostgreSQL.
"""

import threading

import pytest

from pgcopy_sink import SinkSettings


class FakeCopyError(Exception):
    """Top-level store error, like a driver's wrapper exception."""

    pass


class FakeStore:
    """Store double: COPY splits lines on `delimiter` and expects `columns` fields."""

    def __init__(self, columns: int = 3, delimiter: str = ",", error_table_ok: bool = True):
        self.columns = columns
        self.delimiter = delimiter
        self.error_table_ok = error_table_ok
        self.down = False
        self.closed = False

        self.rows: list[list[str]] = []
        self.error_rows: list[tuple] = []
        self.copy_calls: list[tuple[str, bytes]] = []
        self.probes: list[tuple] = []
        self._lock = threading.Lock()

    def copy_in(self, command: str, data: bytes) -> int:
        with self._lock:
            self.copy_calls.append((command, data))
            if self.down:
                raise FakeCopyError("connection refused")
            assert data.endswith(b"\n")
            parsed = []
            for n, line in enumerate(data.decode("utf-8").split("\n")[:-1], start=1):
                fields = line.split(self.delimiter)
                if len(fields) != self.columns:
                    raise FakeCopyError("COPY failed") from ValueError(
                        f"missing data for column, line {n}: {line!r}"
                    )
                parsed.append(fields)
            # all-or-nothing
            self.rows.extend(parsed)
            return len(parsed)

    def execute(self, statement, params) -> None:
        with self._lock:
            if self.down or not self.error_table_ok:
                raise FakeCopyError('relation "errors" does not exist')
            self.error_rows.append(tuple(params))

    def probe(self, statement, params) -> None:
        self.probes.append(tuple(params))
        if self.down or not self.error_table_ok:
            raise FakeCopyError('relation "errors" does not exist')

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def csv_settings():
    """Settings for names(id,name,age) in CSV with an error table, batch of 3."""
    return SinkSettings(
        table_name="names",
        columns=["id", "name", "age"],
        format="CSV",
        batch_size=3,
        error_table="test_errors",
    )


@pytest.fixture
def text_settings():
    return SinkSettings(
        table_name="names",
        columns=["id", "name", "age"],
        batch_size=3,
    )


@pytest.fixture
def make_store():
    """Factory for FakeStore variants (broken error table, other layouts)."""
    return FakeStore
