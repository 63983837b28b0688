"""
Data models for the pgcopy sink.

Outcomes are plain frozen dataclasses so they can be passed between threads
safely; error records are pydantic models since they are persisted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from pydantic import BaseModel, field_validator


Record = Union[str, bytes]


@dataclass(frozen=True)
class CopySuccess:
    """A COPY call committed."""

    rows_written: int

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class CopyFailure:
    """A COPY call failed and its transaction was rolled back."""

    cause: BaseException

    @property
    def ok(self) -> bool:
        return False


BulkLoadOutcome = Union[CopySuccess, CopyFailure]


class ErrorRecord(BaseModel):
    """A record that could not be written to the target table, even on its own."""

    table_name: str
    error_message: str
    payload: str

    @field_validator("payload", mode="before")
    @classmethod
    def _decode_payload(cls, v):
        if isinstance(v, (bytes, bytearray)):
            return bytes(v).decode("utf-8", errors="replace")
        return v


@dataclass(frozen=True)
class SinkHealth:
    """Point-in-time counters for a running sink."""

    table_name: str
    pending_records: int
    live_batches: int
    batches_copied: int
    batches_isolated: int
    rows_written: int
    error_records: int
    reaper_alive: bool
