from __future__ import annotations

from enum import Enum
from functools import lru_cache
from typing import Annotated, List, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class CopyFormat(str, Enum):
    """Data format understood by COPY ... FROM STDIN."""

    TEXT = "TEXT"
    CSV = "CSV"


class SinkSettings(BaseSettings):
    """
    Immutable sink configuration, loaded once.

    Values come from keyword arguments, then ``PGCOPY_*`` environment
    variables, then a ``.env`` file. Only ``table_name`` is required.
    """

    model_config = SettingsConfigDict(
        env_prefix="PGCOPY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    table_name: str
    columns: Annotated[List[str], NoDecode] = ["payload"]
    batch_size: int = 10000
    idle_timeout_ms: int = -1  # negative disables idle flushing
    format: CopyFormat = CopyFormat.TEXT
    delimiter: Optional[str] = None
    null_string: Optional[str] = None
    quote: Optional[str] = None
    escape: Optional[str] = None
    error_table: Optional[str] = None
    verify_error_table: bool = True
    reap_interval_ms: int = 1000

    # ---- connection ----
    dsn: Optional[str] = None
    app_name: Optional[str] = "pgcopy_sink"
    statement_timeout_ms: Optional[int] = None
    pool_min: int = 1
    pool_max: int = 4
    connect_timeout: float = 10.0

    @field_validator("table_name")
    @classmethod
    def _table_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("table_name must not be blank")
        return v

    @field_validator("columns", mode="before")
    @classmethod
    def _split_columns(cls, v):
        if isinstance(v, str):
            return [c.strip() for c in v.split(",") if c.strip()]
        return v

    @field_validator("format", mode="before")
    @classmethod
    def _upcase_format(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("batch_size", "reap_interval_ms")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator("delimiter")
    @classmethod
    def _validate_delimiter(cls, v: Optional[str]) -> Optional[str]:
        # a single one-byte character, or an escape sequence like '\t'
        if v is None or v.startswith("\\"):
            return v
        if len(v) != 1:
            raise ValueError(f"delimiter must be a single character, got {v!r}")
        return v

    @field_validator("quote", "escape")
    @classmethod
    def _single_char(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and len(v) != 1:
            raise ValueError(f"must be a single character, got {v!r}")
        return v

    @field_validator("error_table")
    @classmethod
    def _blank_error_table(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None

    @model_validator(mode="after")
    def _csv_only_options(self) -> "SinkSettings":
        if self.format is not CopyFormat.CSV:
            if self.quote is not None:
                raise ValueError("quote is only allowed with CSV format")
            if self.escape is not None:
                raise ValueError("escape is only allowed with CSV format")
        return self

    @property
    def idle_timeout(self) -> Optional[float]:
        """Idle timeout in seconds, or None when idle flushing is disabled."""
        if self.idle_timeout_ms < 0:
            return None
        return self.idle_timeout_ms / 1000.0

    @property
    def reap_interval(self) -> float:
        return self.reap_interval_ms / 1000.0


@lru_cache()
def get_settings() -> SinkSettings:
    return SinkSettings()
