from __future__ import annotations

import json
import sys
from dataclasses import asdict
from typing import Optional

import typer
from loguru import logger
from pydantic import ValidationError

from .errors import ConfigurationError
from .error_sink import ErrorSink
from .settings import SinkSettings
from .sink import PgcopySink
from .sql import copy_command_for
from .store import PostgresStore
from .utils import iter_lines

app = typer.Typer(help="pgcopy sink operational CLI")

# ---------------------------
# Common options
# ---------------------------


def dsn_opt() -> Optional[str]:
    return typer.Option(None, "--dsn", envvar="PGCOPY_DSN", help="PostgreSQL DSN")


def table_opt() -> Optional[str]:
    return typer.Option(None, "--table", help="Target table (PGCOPY_TABLE_NAME)")


def columns_opt() -> Optional[str]:
    return typer.Option(None, "--columns", help="Comma-separated target columns")


def format_opt() -> Optional[str]:
    return typer.Option(None, "--format", help="TEXT or CSV")


def error_table_opt() -> Optional[str]:
    return typer.Option(None, "--error-table", help="Table receiving rejected rows")


def _settings(**overrides) -> SinkSettings:
    try:
        return SinkSettings(**{k: v for k, v in overrides.items() if v is not None})
    except ValidationError as e:
        typer.echo(f"Invalid configuration:\n{e}", err=True)
        raise typer.Exit(2)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


# ---------------------------
# Commands
# ---------------------------


@app.command("copy-command")
def copy_command(
    table: Optional[str] = table_opt(),
    columns: Optional[str] = columns_opt(),
    format: Optional[str] = format_opt(),
    delimiter: Optional[str] = typer.Option(None, "--delimiter"),
    null_string: Optional[str] = typer.Option(None, "--null-string"),
    quote: Optional[str] = typer.Option(None, "--quote"),
    escape: Optional[str] = typer.Option(None, "--escape"),
):
    """Print the COPY command the sink would run."""
    s = _settings(
        table_name=table,
        columns=columns,
        format=format,
        delimiter=delimiter,
        null_string=null_string,
        quote=quote,
        escape=escape,
    )
    typer.echo(copy_command_for(s))


@app.command("load")
def load(
    path: str = typer.Argument("-", help="File path or '-' for stdin (.gz ok), one record per line"),
    table: Optional[str] = table_opt(),
    columns: Optional[str] = columns_opt(),
    format: Optional[str] = format_opt(),
    delimiter: Optional[str] = typer.Option(None, "--delimiter"),
    null_string: Optional[str] = typer.Option(None, "--null-string"),
    quote: Optional[str] = typer.Option(None, "--quote"),
    escape: Optional[str] = typer.Option(None, "--escape"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size"),
    idle_timeout_ms: Optional[int] = typer.Option(None, "--idle-timeout-ms"),
    error_table: Optional[str] = error_table_opt(),
    skip_blank: bool = typer.Option(True, "--skip-blank/--keep-blank", help="Ignore empty lines"),
    dsn: Optional[str] = dsn_opt(),
):
    """Stream lines into the target table; flush and report on EOF."""
    s = _settings(
        dsn=dsn,
        table_name=table,
        columns=columns,
        format=format,
        delimiter=delimiter,
        null_string=null_string,
        quote=quote,
        escape=escape,
        batch_size=batch_size,
        idle_timeout_ms=idle_timeout_ms,
        error_table=error_table,
    )
    try:
        sink = PgcopySink.from_settings(s)
    except ConfigurationError as e:
        logger.error(str(e))
        raise typer.Exit(1)
    try:
        sink.start()
    except ConfigurationError as e:
        logger.error(str(e))
        sink.close()
        raise typer.Exit(1)

    n = 0
    try:
        for line in iter_lines(path):
            if skip_blank and not line:
                continue
            sink.accept(line)
            n += 1
    finally:
        sink.close()

    typer.echo(json.dumps({"ingested": n, **asdict(sink.health())}, indent=2))


@app.command("check-error-table")
def check_error_table(
    error_table: str = typer.Argument(..., help="Error table to probe"),
    table: str = typer.Option("error_table_check", "--table"),
    dsn: Optional[str] = dsn_opt(),
):
    """Probe the error table with a rolled-back insert."""
    s = _settings(dsn=dsn, table_name=table, error_table=error_table)
    try:
        store = PostgresStore.from_settings(s)
    except ConfigurationError as e:
        logger.error(str(e))
        raise typer.Exit(1)
    try:
        ErrorSink(store, s.error_table).verify()
    except ConfigurationError as e:
        logger.error(str(e))
        raise typer.Exit(1)
    finally:
        store.close()
    logger.success(f"Error table {error_table} is usable")


@app.command("ping")
def ping(dsn: Optional[str] = dsn_opt()):
    s = _settings(dsn=dsn, table_name="ping")
    try:
        store = PostgresStore.from_settings(s)
    except ConfigurationError as e:
        logger.error(str(e))
        raise typer.Exit(1)
    try:
        ok = store.health()
    finally:
        store.close()
    typer.echo(json.dumps({"ok": ok}, indent=2))


if __name__ == "__main__":
    app()
