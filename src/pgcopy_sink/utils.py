"""
Utility functions for the pgcopy sink.

Includes the record codec used to build COPY payloads and error-message
extraction for the error table.
"""

import gzip
import sys
from typing import Iterable, Iterator, Union

LINE_TERMINATOR = b"\n"


def encode_record(record: Union[str, bytes]) -> bytes:
    """Encode one record as a COPY data line (payload plus one terminator).

    Payloads are expected to be pre-shaped TEXT/CSV lines; nothing is quoted
    or escaped here.
    """
    if isinstance(record, (bytes, bytearray)):
        return bytes(record) + LINE_TERMINATOR
    if isinstance(record, str):
        return record.encode("utf-8") + LINE_TERMINATOR
    raise TypeError(f"Expected str or bytes record, got {type(record).__name__}")


def encode_records(records: Iterable[Union[str, bytes]]) -> bytes:
    """Concatenate encoded records, preserving order."""
    return b"".join(encode_record(r) for r in records)


def payload_text(record: Union[str, bytes]) -> str:
    """Textual form of a record, as stored in the error table."""
    if isinstance(record, (bytes, bytearray)):
        return bytes(record).decode("utf-8", errors="replace")
    return record


def root_cause_message(exc: BaseException) -> str:
    """
    Message of the innermost cause of `exc`, falling back to `exc` itself.

    Drivers wrap errors differently; the root cause usually carries the
    store's own diagnostic (e.g. "missing data for column ...").
    """
    root = exc
    seen = {id(exc)}
    while root.__cause__ is not None and id(root.__cause__) not in seen:
        root = root.__cause__
        seen.add(id(root))

    message = str(root).strip()
    if not message and root is not exc:
        message = str(exc).strip()
    return message or type(exc).__name__


def iter_lines(path: str) -> Iterator[str]:
    """Yield lines (without terminator) from a file, a .gz file, or '-' for stdin."""
    if path == "-":
        for line in sys.stdin:
            yield line.rstrip("\r\n")
        return
    opener = gzip.open if path.endswith(".gz") else open
    with opener(path, "rt", encoding="utf-8") as f:
        for line in f:
            yield line.rstrip("\r\n")
