"""
Table Codec — TSV encoding of relational and localization tables

Self-describing TSV, one table per record:

    line 1   column header   ``name:type`` cells (loc tables: ``key text tooltip``)
    line 2   metadata        ``#<table_name>;<version>;<path>``  (loc tables: ``#Loc;1;…``)
    line 3+  rows            one row per line, cells tab-separated

Cells escape ``\\``, tab, LF and CR.  Booleans are ``true``/``false``.  The
same format is used for corpus files (``vanilla_english.tsv``, fixes).

Public API:
    decode_bytes(data, path) -> RelationalTable | LocalizationTable
    encode(decoded, path) -> bytes
    decode_record(record) / encode_record(record, decoded)
    import_tsv(path) / export_tsv(decoded, path)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, List

from lopatch.errors import DecodeFailure, IOFailure
from lopatch.types import (
    Column,
    Decoded,
    LocEntry,
    LocalizationTable,
    Record,
    RelationalTable,
)

LOC_TABLE_NAME = "Loc"
LOC_COLUMNS = ("key", "text", "tooltip")

_ESCAPES = (("\\", "\\\\"), ("\t", "\\t"), ("\n", "\\n"), ("\r", "\\r"))


# ---------------------------------------------------------------------------
# Cell escaping
# ---------------------------------------------------------------------------

def _escape(value: str) -> str:
    for raw, esc in _ESCAPES:
        value = value.replace(raw, esc)
    return value


def _unescape(value: str) -> str:
    out: List[str] = []
    i = 0
    while i < len(value):
        ch = value[i]
        if ch == "\\" and i + 1 < len(value):
            nxt = value[i + 1]
            out.append({"t": "\t", "n": "\n", "r": "\r", "\\": "\\"}.get(nxt, "\\" + nxt))
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _format_cell(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return _escape(str(value))


# ---------------------------------------------------------------------------
# Decode
# ---------------------------------------------------------------------------

def decode_bytes(data: bytes, path: str = "") -> Decoded:
    """Decode TSV bytes into a table.

    Raises:
        DecodeFailure: On any malformed header, metadata or cell.
    """
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise DecodeFailure(path, f"not UTF-8 text ({e})") from e

    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    lines = [ln[:-1] if ln.endswith("\r") else ln for ln in lines]
    if len(lines) < 2 or not lines[1].startswith("#"):
        raise DecodeFailure(path, "missing TSV header or metadata line")

    header = lines[0].split("\t")
    meta = lines[1][1:].split(";")
    table_name = meta[0]
    try:
        version = int(meta[1]) if len(meta) > 1 and meta[1] else 0
    except ValueError as e:
        raise DecodeFailure(path, f"bad version {meta[1]!r}") from e

    body = lines[2:]
    if table_name == LOC_TABLE_NAME:
        return _decode_loc(body, path)
    return _decode_table(table_name, version, header, body, path)


def _decode_loc(body: List[str], path: str) -> LocalizationTable:
    entries: List[LocEntry] = []
    for lineno, line in enumerate(body, start=3):
        if not line:
            continue
        cells = line.split("\t")
        if len(cells) < 2:
            raise DecodeFailure(path, f"line {lineno}: expected at least 2 cells")
        flag = cells[2].strip().lower() == "true" if len(cells) > 2 else False
        entries.append(LocEntry(_unescape(cells[0]), _unescape(cells[1]), flag))
    return LocalizationTable(entries=entries)


def _decode_table(
    table_name: str, version: int, header: List[str], body: List[str], path: str,
) -> RelationalTable:
    columns: List[Column] = []
    for cell in header:
        name, _, typ = cell.partition(":")
        try:
            columns.append(Column(name, typ or "str"))
        except ValueError as e:
            raise DecodeFailure(path, str(e)) from e

    rows: List[List[Any]] = []
    for lineno, line in enumerate(body, start=3):
        # A single-column row holding "" encodes as an empty line.
        if not line and len(columns) != 1:
            continue
        cells = line.split("\t")
        if len(cells) != len(columns):
            raise DecodeFailure(
                path, f"line {lineno}: {len(cells)} cells, expected {len(columns)}"
            )
        try:
            rows.append([
                col.coerce(_unescape(cell)) for col, cell in zip(columns, cells)
            ])
        except ValueError as e:
            raise DecodeFailure(path, f"line {lineno}: {e}") from e

    return RelationalTable(table_name=table_name, version=version, columns=columns, rows=rows)


# ---------------------------------------------------------------------------
# Encode
# ---------------------------------------------------------------------------

def encode(decoded: Decoded, path: str = "") -> bytes:
    """Encode a table to TSV bytes."""
    if isinstance(decoded, LocalizationTable):
        lines = ["\t".join(LOC_COLUMNS), f"#{LOC_TABLE_NAME};1;{path}"]
        for e in decoded.entries:
            lines.append("\t".join((_escape(e.key), _escape(e.value), _format_cell(e.flag))))
    else:
        lines = [
            "\t".join(f"{c.name}:{c.type}" for c in decoded.columns),
            f"#{decoded.table_name};{decoded.version};{path}",
        ]
        for row in decoded.rows:
            lines.append("\t".join(_format_cell(v) for v in row))
    return ("\n".join(lines) + "\n").encode("utf-8")


# ---------------------------------------------------------------------------
# Record helpers
# ---------------------------------------------------------------------------

def decode_record(record: Record) -> Decoded:
    """Decode (and cache) a record's table view.

    Raises:
        DecodeFailure: If the record is opaque or malformed.
    """
    if record.decoded is not None:
        return record.decoded
    if record.kind == "opaque":
        raise DecodeFailure(record.path, "opaque record has no table view")
    record.decoded = decode_bytes(record.data, record.path)
    return record.decoded


def encode_record(record: Record, decoded: Decoded) -> Record:
    """Set ``decoded`` on the record and refresh its encoded bytes."""
    record.decoded = decoded
    record.data = encode(decoded, record.path)
    return record


def import_tsv(path: str) -> Decoded:
    """Read a TSV file from disk.

    Raises:
        IOFailure: If the file cannot be read.
        DecodeFailure: If its content is malformed.
    """
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise IOFailure(f"Cannot read {path}: {e}") from e
    return decode_bytes(data, path)


def export_tsv(decoded: Decoded, path: str, record_path: str = "") -> None:
    """Write a table to a TSV file on disk."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(encode(decoded, record_path))
