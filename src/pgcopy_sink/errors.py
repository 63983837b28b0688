"""
Custom exceptions for the pgcopy sink.

Store errors raised while copying are never surfaced to producers; they are
classified for logging/metrics and handled by the isolation path. Only
configuration problems are raised to the caller, at startup.
"""


class PgcopySinkError(Exception):
    """Base error for the pgcopy sink."""

    pass


class ConfigurationError(PgcopySinkError):
    """Invalid or inconsistent sink configuration (fatal at startup)."""

    pass


class InvalidErrorTableError(ConfigurationError):
    """The configured error table is missing or lacks the expected columns."""

    pass


def classify_db_error(e: BaseException) -> str:
    """Short label for a store error, used in log lines and metric labels."""
    import psycopg
    import psycopg.errors as E

    if isinstance(e, (E.UndefinedTable, E.UndefinedColumn)):
        return "undefined"
    if isinstance(e, E.IntegrityError):
        return "constraint"
    if isinstance(e, E.DataError):
        return "data"
    if isinstance(e, psycopg.OperationalError):
        return "connection"
    return "other"
