"""
Unit tests for SinkSettings (defaults, env parsing, validation).
"""

import os

import pytest
from pydantic import ValidationError

from pgcopy_sink import CopyFormat, SinkSettings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    # no stray PGCOPY_* variables or .env file
    monkeypatch.chdir(tmp_path)
    for k in list(os.environ):
        if k.startswith("PGCOPY_"):
            monkeypatch.delenv(k)


def test_table_name_is_required():
    with pytest.raises(ValidationError):
        SinkSettings()


def test_defaults():
    s = SinkSettings(table_name="test")
    assert s.columns == ["payload"]
    assert s.batch_size == 10000
    assert s.idle_timeout_ms == -1
    assert s.idle_timeout is None
    assert s.format is CopyFormat.TEXT
    assert s.delimiter is None
    assert s.null_string is None
    assert s.quote is None
    assert s.escape is None
    assert s.error_table is None
    assert s.reap_interval == 1.0


def test_values_from_environment(monkeypatch):
    monkeypatch.setenv("PGCOPY_TABLE_NAME", "TEST_DATA")
    monkeypatch.setenv("PGCOPY_COLUMNS", "id, name ,age")
    monkeypatch.setenv("PGCOPY_FORMAT", "csv")
    monkeypatch.setenv("PGCOPY_NULL_STRING", "@#$")
    monkeypatch.setenv("PGCOPY_IDLE_TIMEOUT_MS", "2500")
    s = SinkSettings()
    assert s.table_name == "TEST_DATA"
    assert s.columns == ["id", "name", "age"]
    assert s.format is CopyFormat.CSV
    assert s.null_string == "@#$"
    assert s.idle_timeout == 2.5


def test_columns_accept_comma_string():
    s = SinkSettings(table_name="names", columns="id,name,age")
    assert s.columns == ["id", "name", "age"]


def test_quote_and_escape_can_be_customized():
    s = SinkSettings(table_name="t", format="CSV", quote="'", escape="~", delimiter="|")
    assert s.quote == "'"
    assert s.escape == "~"
    assert s.delimiter == "|"


def test_quote_requires_csv():
    with pytest.raises(ValidationError):
        SinkSettings(table_name="t", quote="'")


def test_escape_requires_csv():
    with pytest.raises(ValidationError):
        SinkSettings(table_name="t", format="TEXT", escape="\\")


def test_multi_char_quote_rejected():
    with pytest.raises(ValidationError):
        SinkSettings(table_name="t", format="CSV", quote="ab")


def test_escaped_delimiter_allowed():
    s = SinkSettings(table_name="t", delimiter="\\t")
    assert s.delimiter == "\\t"


def test_multi_char_delimiter_rejected():
    with pytest.raises(ValidationError):
        SinkSettings(table_name="t", delimiter="||")


def test_batch_size_must_be_positive():
    with pytest.raises(ValidationError):
        SinkSettings(table_name="t", batch_size=0)


def test_unknown_format_rejected():
    with pytest.raises(ValidationError):
        SinkSettings(table_name="t", format="parquet")


def test_blank_error_table_is_unset():
    assert SinkSettings(table_name="t", error_table="  ").error_table is None
