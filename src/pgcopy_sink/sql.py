from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence, Union

from psycopg import sql as psql

from .settings import CopyFormat

if TYPE_CHECKING:
    from .settings import SinkSettings

# Columns every error table must carry (see ErrorSink).
ERROR_TABLE_COLUMNS = ("table_name", "error_message", "payload")


def _literal(value: str) -> str:
    # standard string literal; a single quote is doubled to escape itself
    return "'" + value.replace("'", "''") + "'"


def _delimiter_literal(value: str) -> str:
    # escape sequences such as \t only survive inside an E'' literal
    if value.startswith("\\"):
        return "E" + _literal(value)
    return _literal(value)


def build_copy_command(
    table: str,
    columns: Sequence[str] = (),
    *,
    format: Union[CopyFormat, str, None] = None,
    delimiter: Optional[str] = None,
    null_string: Optional[str] = None,
    quote: Optional[str] = None,
    escape: Optional[str] = None,
) -> str:
    """
    COPY <table> [(<cols>)] FROM STDIN [WITH <options>].

    Options are emitted in the order the COPY grammar expects:
    CSV, DELIMITER, NULL, QUOTE, ESCAPE. Unset options are omitted. The
    command is not validated here; a malformed one fails when executed.
    """
    cmd = f"COPY {table}"
    if columns:
        cmd += " (" + ",".join(columns) + ")"
    cmd += " FROM STDIN"

    options: list[str] = []
    if format is not None and CopyFormat(format) is CopyFormat.CSV:
        options.append("CSV")
    if delimiter is not None:
        options.append("DELIMITER " + _delimiter_literal(delimiter))
    if null_string is not None:
        options.append("NULL " + _literal(null_string))
    if quote is not None:
        options.append("QUOTE " + _literal(quote))
    if escape is not None:
        options.append("ESCAPE " + _literal(escape))

    if options:
        cmd += " WITH " + " ".join(options)
    return cmd


def copy_command_for(settings: "SinkSettings") -> str:
    return build_copy_command(
        settings.table_name,
        settings.columns,
        format=settings.format,
        delimiter=settings.delimiter,
        null_string=settings.null_string,
        quote=settings.quote,
        escape=settings.escape,
    )


def error_insert_statement(error_table: str) -> psql.Composed:
    """INSERT INTO <error_table> (table_name, error_message, payload) VALUES (%s, %s, %s)."""
    # taken verbatim so schema-qualified and unquoted names resolve as written
    return psql.SQL("INSERT INTO {} ({}) VALUES (%s, %s, %s)").format(
        psql.SQL(error_table),
        psql.SQL(", ").join(psql.Identifier(c) for c in ERROR_TABLE_COLUMNS),
    )


HEALTH = "SELECT 1"
