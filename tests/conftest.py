"""
Shared builders for lopatch tests: tables, records, archives and archive files.
"""

import os

import pytest

from lopatch.archive import write_archive
from lopatch.codec import encode
from lopatch.types import (
    Archive,
    Column,
    LocEntry,
    LocalizationTable,
    Record,
    RelationalTable,
)


def _table_record(path, columns, rows, version=1):
    """Record holding a relational table; ``columns`` are ``name:type`` strings."""
    cols = []
    for spec in columns:
        name, _, typ = spec.partition(":")
        cols.append(Column(name, typ or "str"))
    table = RelationalTable(
        table_name=path.split("/")[1], version=version, columns=cols,
        rows=[list(r) for r in rows],
    )
    return Record(path=path, data=encode(table, path))


def _loc_record(path, pairs):
    """Record holding a localization table from (key, value) pairs."""
    table = LocalizationTable(entries=[LocEntry(k, v) for k, v in pairs])
    return Record(path=path, data=encode(table, path))


def _archive(name, records=(), category="mod"):
    archive = Archive(name=name, category=category)
    for rec in records:
        archive.insert(rec)
    return archive


@pytest.fixture
def table_record():
    return _table_record


@pytest.fixture
def loc_record():
    return _loc_record


@pytest.fixture
def make_archive():
    return _archive


@pytest.fixture
def pack_file():
    """Write an archive to ``directory/name`` and return its path."""
    def _write(directory, name, records=(), category="mod"):
        os.makedirs(str(directory), exist_ok=True)
        return write_archive(_archive(name, records, category), os.path.join(str(directory), name))
    return _write
