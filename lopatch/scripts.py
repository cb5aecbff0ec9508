"""
Patch Scripts — invocation arguments, metadata blocks, template rendering

A patch script is a UTF-8 SQL file carrying its metadata in marker-delimited
comment blocks, parsed here separately from the SQL body:

    -- Tables to import:            (required)
    -- land_units
    -- End of tables to import.

    -- Tables to create:            (optional, "table_name file_name")
    -- my_table my_file
    -- End of tables to create.

    -- Parameters:                  (optional, "key = default")
    -- mult = 1.0
    -- End of parameters.

    -- Strings to replace:          (optional, "TOKEN ::: subquery", "------" separated)
    -- MY_TOKEN ::: SELECT key FROM land_units_tables
    -- End of strings to replace.

Rendering order: strings to replace (last declared first), ``{{key}}``
parameters, ``$N`` positional parameters (highest index first, ``$0`` is the
first value), then ``{{destination_archive}}``.

Public API:
    parse_script_argument(arg) -> ScriptInvocation
    parse_metadata(text, script) -> ScriptMetadata
    load_script(invocation) -> PatchScript
    render(script, params, destination_archive) -> str
"""

from __future__ import annotations

import csv
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from lopatch.errors import IOFailure, ScriptFailure, ScriptFormatError
from lopatch.types import table_folder

logger = logging.getLogger(__name__)

TABLES_START = "-- Tables to import:"
TABLES_END = "-- End of tables to import."
CREATE_START = "-- Tables to create:"
CREATE_END = "-- End of tables to create."
PARAMS_START = "-- Parameters:"
PARAMS_END = "-- End of parameters."
REPLACE_START = "-- Strings to replace:"
REPLACE_END = "-- End of strings to replace."
REPLACE_SEPARATOR = "------"
REPLACE_ARROW = ":::"

DESTINATION_TOKEN = "{{destination_archive}}"


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

@dataclass
class ScriptInvocation:
    """One ``<path>;<p1>;<p2>`` argument."""
    path: str
    params: List[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.path.replace("\\", "/")


@dataclass
class ScriptParameter:
    key: str
    default: str = ""


@dataclass
class ScriptMetadata:
    """Structured metadata of one patch script."""
    tables_affected: List[str] = field(default_factory=list)
    tables_created: List[Tuple[str, str]] = field(default_factory=list)
    parameters: List[ScriptParameter] = field(default_factory=list)
    replacements: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def created_paths(self) -> List[str]:
        return [f"{table_folder(t)}{f}" for t, f in self.tables_created]


@dataclass
class PatchScript:
    invocation: ScriptInvocation
    text: str
    metadata: ScriptMetadata = field(default_factory=ScriptMetadata)

    @property
    def name(self) -> str:
        return self.invocation.name


# ---------------------------------------------------------------------------
# Invocation argument
# ---------------------------------------------------------------------------

def parse_script_argument(arg: str) -> ScriptInvocation:
    """Parse ``<path>;<param>;...`` (``;`` delimited, ``"`` quoting).

    Raises:
        IOFailure: If the path is empty or does not reference an existing file.
    """
    fields = next(csv.reader([arg], delimiter=";", quotechar='"'), [])
    if not fields or not fields[0].strip():
        raise IOFailure(f"Empty SQL script argument: {arg!r}")
    path = fields[0].strip()
    if not os.path.isfile(path):
        raise IOFailure(f"SQL script not found: {path}")
    return ScriptInvocation(path=path, params=fields[1:])


# ---------------------------------------------------------------------------
# Metadata parser
# ---------------------------------------------------------------------------

def _block(text: str, start: str, end: str, script: str, required: bool) -> Optional[str]:
    """Raw text between two markers, or None if an optional block is absent."""
    start_pos = text.find(start)
    end_pos = text.find(end)
    if start_pos < 0:
        if required:
            raise ScriptFormatError(script, f"missing line {start!r}")
        if end_pos >= 0:
            raise ScriptFormatError(script, f"found {end!r} without {start!r}")
        return None
    if end_pos < 0:
        raise ScriptFormatError(script, f"missing line {end!r}")
    if end_pos < start_pos:
        raise ScriptFormatError(script, f"line {end!r} must come after {start!r}")
    return text[start_pos + len(start):end_pos].replace("\r\n", "\n")


def _comment_lines(raw: str) -> List[str]:
    out = []
    for line in raw.split("\n"):
        line = line.strip()
        if line.startswith("--"):
            line = line[2:].strip()
        if line:
            out.append(line)
    return out


def parse_metadata(text: str, script: str = "<script>") -> ScriptMetadata:
    """Parse every metadata block of a script.

    Raises:
        ScriptFormatError: If a block is missing, unterminated, out of order
            or holds a malformed entry.
    """
    meta = ScriptMetadata()

    raw = _block(text, TABLES_START, TABLES_END, script, required=True)
    for name in _comment_lines(raw):
        meta.tables_affected.append(table_folder(name))

    raw = _block(text, CREATE_START, CREATE_END, script, required=False)
    if raw is not None:
        for line in _comment_lines(raw):
            parts = line.split()
            if len(parts) != 2:
                raise ScriptFormatError(
                    script, f"table to create {line!r} is not 'table_name file_name'"
                )
            meta.tables_created.append((table_folder(parts[0]).split("/")[1], parts[1]))

    raw = _block(text, PARAMS_START, PARAMS_END, script, required=False)
    if raw is not None:
        for line in _comment_lines(raw):
            key, sep, default = line.partition("=")
            if not sep or not key.strip():
                raise ScriptFormatError(script, f"parameter {line!r} is not 'key = default'")
            meta.parameters.append(ScriptParameter(key.strip(), default.strip()))

    raw = _block(text, REPLACE_START, REPLACE_END, script, required=False)
    if raw is not None:
        for chunk in raw.split(REPLACE_SEPARATOR):
            chunk = chunk.replace("--", "")
            if not chunk.strip():
                continue
            split = chunk.split(REPLACE_ARROW)
            if len(split) != 2 or not split[0].strip():
                raise ScriptFormatError(
                    script, f"string replacement {chunk.strip()!r} is not 'TOKEN ::: subquery'"
                )
            subquery = " ".join(x.strip() for x in split[1].split("\n") if x.strip())
            meta.replacements.append((split[0].strip(), subquery))

    return meta


# ---------------------------------------------------------------------------
# Loading and rendering
# ---------------------------------------------------------------------------

def read_script_text(invocation: ScriptInvocation) -> str:
    """Raises ScriptFailure if the script cannot be read."""
    try:
        with open(invocation.path, "r", encoding="utf-8-sig") as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise ScriptFailure(invocation.name, f"cannot read script: {e}") from e


def load_script(invocation: ScriptInvocation) -> PatchScript:
    """Read and parse a script.

    Raises:
        ScriptFailure: If the file cannot be read.
        ScriptFormatError: If its metadata is malformed.
    """
    text = read_script_text(invocation)
    return PatchScript(invocation, text, parse_metadata(text, invocation.name))


def bind_parameters(metadata: ScriptMetadata, params: Sequence[str]) -> List[str]:
    """Supplied values first, then declared defaults for the rest."""
    values = list(params)
    for param in metadata.parameters[len(values):]:
        values.append(param.default)
    return values


def render(
    text: str, metadata: ScriptMetadata, params: Sequence[str], destination_archive: str,
) -> str:
    """Substitute replacements, parameters and the destination archive name."""
    for key, subquery in reversed(metadata.replacements):
        text = text.replace(key, subquery)

    values = bind_parameters(metadata, params)
    named: Dict[str, str] = {p.key: values[i] for i, p in enumerate(metadata.parameters)}
    for key, value in named.items():
        text = text.replace("{{" + key + "}}", value)

    for index in range(len(values) - 1, -1, -1):
        text = text.replace(f"${index}", values[index])

    return text.replace(DESTINATION_TOKEN, destination_archive)
