"""
pgcopy sink

Batches a stream of pre-shaped TEXT/CSV lines into PostgreSQL with
COPY ... FROM STDIN. When a batch fails, it is replayed one row at a time so
only the offending rows are lost, and those go to an optional error table.

Usage:
    from pgcopy_sink import PgcopySink, SinkSettings

    settings = SinkSettings(table_name="names", columns=["id", "name", "age"],
                            format="CSV", batch_size=3, error_table="errors",
                            dsn="postgresql://...")
    with PgcopySink.from_settings(settings) as sink:
        sink.accept("123,Nisse,25")
        sink.accept("GARBAGE")
        sink.accept("125,Bubba,22")
"""

from .accumulator import Batch, BatchAccumulator, BatchState
from .error_sink import ErrorSink
from .errors import ConfigurationError, InvalidErrorTableError, PgcopySinkError
from .isolation import FailureIsolator
from .loader import BulkLoader
from .models import CopyFailure, CopySuccess, ErrorRecord, SinkHealth
from .reaper import Reaper
from .settings import CopyFormat, SinkSettings, get_settings
from .sink import PgcopySink
from .sql import build_copy_command
from .store import PostgresStore, Store

__version__ = "1.0.0"
__all__ = [
    "PgcopySink",
    "SinkSettings",
    "CopyFormat",
    "get_settings",
    "Batch",
    "BatchAccumulator",
    "BatchState",
    "BulkLoader",
    "FailureIsolator",
    "ErrorSink",
    "Reaper",
    "Store",
    "PostgresStore",
    "CopySuccess",
    "CopyFailure",
    "ErrorRecord",
    "SinkHealth",
    "build_copy_command",
    "PgcopySinkError",
    "ConfigurationError",
    "InvalidErrorTableError",
]
