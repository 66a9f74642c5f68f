"""PutFile payload well-formedness.

With a record delimiter the service splits a payload into record chunks.
Random bytes rarely split cleanly, and a failed split would leave the state
model believing a file exists that never did, so the validator rejects
payloads here before anything is executed.

Python 3.13+.
"""

from __future__ import annotations

import csv
import io
import json
from typing import TYPE_CHECKING

from pfsfuzz.catalog import Delimiter

if TYPE_CHECKING:
    from pfsfuzz.catalog import PutFile

__all__ = ["SQL_TERMINATOR", "MalformedPayloadError", "check_put_file", "split_records"]

SQL_TERMINATOR = b"\\."


class MalformedPayloadError(ValueError):
    """Payload cannot be split with the requested delimiter."""


def _split_json(data: bytes) -> list[bytes]:
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedPayloadError(str(e)) from e
    decoder = json.JSONDecoder()
    records: list[bytes] = []
    pos = 0
    while True:
        while pos < len(text) and text[pos].isspace():
            pos += 1
        if pos == len(text):
            return records
        try:
            _, end = decoder.raw_decode(text, pos)
        except json.JSONDecodeError as e:
            raise MalformedPayloadError(str(e)) from e
        records.append(text[pos:end].encode("utf-8"))
        pos = end


def _split_csv(data: bytes) -> list[bytes]:
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedPayloadError(str(e)) from e
    if "\x00" in text:
        raise MalformedPayloadError("NUL byte in CSV payload")
    reader = csv.reader(io.StringIO(text, newline=""), strict=True)
    records: list[bytes] = []
    try:
        for row in reader:
            out = io.StringIO()
            csv.writer(out, lineterminator="\n").writerow(row)
            records.append(out.getvalue().encode("utf-8"))
    except csv.Error as e:
        raise MalformedPayloadError(str(e)) from e
    return records


def _split_sql(data: bytes) -> list[bytes]:
    """Split a pg_dump style COPY block into its rows."""
    lines = data.splitlines(keepends=True)
    start = next(
        (
            i
            for i, line in enumerate(lines)
            if line.startswith(b"COPY ") and line.rstrip().endswith(b"FROM stdin;")
        ),
        None,
    )
    if start is None:
        raise MalformedPayloadError("no COPY ... FROM stdin; header")
    for end in range(start + 1, len(lines)):
        if lines[end].rstrip(b"\r\n") == SQL_TERMINATOR:
            return lines[start + 1 : end]
    raise MalformedPayloadError("COPY block is not terminated")


def split_records(delimiter: Delimiter, data: bytes) -> list[bytes]:
    """Split a payload into records the way the service does.

    Raises:
        MalformedPayloadError: If the payload does not split
    """
    match delimiter:
        case Delimiter.NONE:
            return [data]
        case Delimiter.LINE:
            return data.splitlines(keepends=True)
        case Delimiter.JSON:
            return _split_json(data)
        case Delimiter.CSV:
            return _split_csv(data)
        case Delimiter.SQL:
            return _split_sql(data)


def check_put_file(op: PutFile) -> str | None:
    """Return why a PutFile cannot succeed, or None if it can."""
    split = op.delimiter is not Delimiter.NONE
    if op.header_records and op.delimiter not in (Delimiter.CSV, Delimiter.SQL):
        return "header_records requires a CSV or SQL delimiter"
    if (op.target_file_datums or op.target_file_bytes) and not split:
        return "target_file_datums/target_file_bytes require a delimiter"
    if op.overwrite_index is not None and split:
        return "overwrite_index cannot be combined with a delimiter"
    if not split:
        return None
    try:
        records = split_records(op.delimiter, op.data)
    except MalformedPayloadError as e:
        return f"malformed {op.delimiter.value} payload: {e}"
    if len(records) <= op.header_records:
        return "payload has no records beyond its headers"
    return None
