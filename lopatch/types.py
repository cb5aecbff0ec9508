"""
Data Model — Archives, Records and Tables

An Archive owns a path -> Record map.  An ArchiveStack orders archives by
priority (later wins).  Records are opaque bytes until decoded by the codec
into a RelationalTable (``db/<name>_tables/<file>``) or a LocalizationTable
(``*.loc``).  Source archives are never mutated: passes copy a record before
touching it and insert the copy into the override archive.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Optional, Tuple, Union

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

RecordKind = Literal["opaque", "table", "loc"]
ColumnType = Literal["str", "int", "float", "bool"]
ArchiveCategory = Literal["boot", "release", "patch", "mod", "movie"]

VALID_COLUMN_TYPES: set = {"str", "int", "float", "bool"}
VALID_CATEGORIES: set = {"boot", "release", "patch", "mod", "movie"}
BASE_CATEGORIES: set = {"boot", "release", "patch"}

TABLES_PREFIX = "db/"
TEXT_PREFIX = "text/"
LOC_EXTENSION = ".loc"
LOW_PRIORITY_MARKER = "~"


def record_kind(path: str) -> RecordKind:
    """Classify a record by its path."""
    parts = path.split("/")
    if len(parts) >= 3 and parts[0] == "db" and parts[1].endswith("_tables"):
        return "table"
    if path.lower().endswith(LOC_EXTENSION):
        return "loc"
    return "opaque"


def table_folder(table_name: str) -> str:
    """Folder prefix for a table: ``land_units`` -> ``db/land_units_tables/``."""
    name = table_name if table_name.endswith("_tables") else f"{table_name}_tables"
    return f"{TABLES_PREFIX}{name}/"


def low_priority_path(path: str) -> str:
    """Prefix the file name of ``path`` with the low-priority marker."""
    folder, _, name = path.rpartition("/")
    renamed = f"{LOW_PRIORITY_MARKER}{name}"
    return f"{folder}/{renamed}" if folder else renamed


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------

_TYPE_DEFAULTS: Dict[str, Any] = {"str": "", "int": 0, "float": 0.0, "bool": False}


@dataclass
class Column:
    """One typed column of a relational table."""

    name: str
    type: ColumnType = "str"

    def __post_init__(self):
        if self.type not in VALID_COLUMN_TYPES:
            raise ValueError(f"Invalid column type: {self.type!r}")

    @property
    def default(self) -> Any:
        return _TYPE_DEFAULTS[self.type]

    def coerce(self, value: Any) -> Any:
        """Convert a raw cell (str from TSV, anything from SQLite) to this column's type."""
        if value is None:
            return self.default
        if self.type == "str":
            return str(value)
        if self.type == "int":
            return int(value)
        if self.type == "float":
            return float(value)
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes")
        return bool(value)


@dataclass
class RelationalTable:
    """Schema-typed table decoded from a ``db/`` record."""

    table_name: str
    version: int = 0
    columns: List[Column] = field(default_factory=list)
    rows: List[List[Any]] = field(default_factory=list)

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def column_position(self, name: str) -> Optional[int]:
        """Index of column ``name``, or None if the table has no such column."""
        for i, col in enumerate(self.columns):
            if col.name == name:
                return i
        return None

    def empty_copy(self) -> RelationalTable:
        """Same schema, zero rows."""
        return RelationalTable(
            table_name=self.table_name,
            version=self.version,
            columns=[Column(c.name, c.type) for c in self.columns],
            rows=[],
        )


@dataclass(frozen=True)
class LocEntry:
    """One localization row. Frozen: the key never changes once assigned."""

    key: str
    value: str = ""
    flag: bool = False


@dataclass
class LocalizationTable:
    """Key/value/flag table of translatable strings."""

    entries: List[LocEntry] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entries)

    def keys(self) -> set:
        return {e.key for e in self.entries}

    def as_dict(self) -> Dict[str, str]:
        """Key -> value map. First occurrence wins."""
        out: Dict[str, str] = {}
        for e in self.entries:
            out.setdefault(e.key, e.value)
        return out

    @staticmethod
    def flatten(entries: Iterable[LocEntry]) -> List[LocEntry]:
        """Drop repeated keys, keeping the first occurrence of each."""
        seen: set = set()
        out: List[LocEntry] = []
        for e in entries:
            if e.key in seen:
                continue
            seen.add(e.key)
            out.append(e)
        return out

    @classmethod
    def merge(cls, tables: Iterable[LocalizationTable]) -> LocalizationTable:
        """Concatenate tables in order, then flatten (first occurrence wins)."""
        rows: List[LocEntry] = []
        for t in tables:
            rows.extend(t.entries)
        return cls(entries=cls.flatten(rows))


Decoded = Union[RelationalTable, LocalizationTable]


# ---------------------------------------------------------------------------
# Translation corpus
# ---------------------------------------------------------------------------

@dataclass
class TranslationUnit:
    """One community translation of a localization key, for one archive."""

    key: str
    value_original: str = ""
    value_translated: str = ""
    needs_retranslation: bool = False

    @property
    def usable(self) -> bool:
        """True when a current, non-empty translation exists."""
        return bool(self.value_translated) and not self.needs_retranslation

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> TranslationUnit:
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})


# ---------------------------------------------------------------------------
# Records and archives
# ---------------------------------------------------------------------------

@dataclass
class Record:
    """One path-addressed content unit inside an archive.

    ``data`` holds the encoded bytes; ``decoded`` caches the codec's view.
    """

    path: str
    archive_name: str = ""
    data: bytes = b""
    decoded: Optional[Decoded] = None

    @property
    def kind(self) -> RecordKind:
        return record_kind(self.path)

    @property
    def file_name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def table_name(self) -> Optional[str]:
        """``land_units_tables`` for ``db/land_units_tables/x``; None otherwise."""
        if self.kind != "table":
            return None
        return self.path.split("/")[1]

    def copy(self, **changes: Any) -> Record:
        """Deep copy with optional field overrides."""
        dup = Record(
            path=self.path,
            archive_name=self.archive_name,
            data=self.data,
            decoded=copy.deepcopy(self.decoded),
        )
        for key, val in changes.items():
            setattr(dup, key, val)
        return dup

    def to_low_priority(self) -> Record:
        """Copy renamed with the low-priority marker on its file name."""
        return self.copy(path=low_priority_path(self.path))


@dataclass
class Archive:
    """A game data package: an owned map of records."""

    name: str
    category: ArchiveCategory = "mod"
    path: Optional[str] = None
    records: Dict[str, Record] = field(default_factory=dict)
    dependencies: List[Tuple[bool, str]] = field(default_factory=list)

    def __post_init__(self):
        if self.category not in VALID_CATEGORIES:
            raise ValueError(f"Invalid archive category: {self.category!r}")

    def __contains__(self, path: str) -> bool:
        return path in self.records

    def __len__(self) -> int:
        return len(self.records)

    def get(self, path: str) -> Optional[Record]:
        return self.records.get(path)

    def insert(self, record: Record) -> Record:
        """Insert a copy of ``record`` owned by this archive, replacing any prior one."""
        owned = record.copy(archive_name=self.name)
        self.records[owned.path] = owned
        return owned

    def by_prefix(self, prefix: str) -> List[Record]:
        """Records whose path starts with ``prefix``, sorted by path."""
        return [self.records[p] for p in sorted(self.records) if p.startswith(prefix)]

    def by_kind(self, kind: RecordKind) -> List[Record]:
        """Records of one kind, sorted by path."""
        return [self.records[p] for p in sorted(self.records) if self.records[p].kind == kind]


@dataclass
class ArchiveStack:
    """Archives ordered lowest to highest priority."""

    archives: List[Archive] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.archives)

    def __iter__(self):
        return iter(self.archives)

    @property
    def names(self) -> List[str]:
        return [a.name for a in self.archives]

    def resolve(self, path: str) -> Optional[Record]:
        """The highest-priority record at ``path``."""
        for archive in reversed(self.archives):
            rec = archive.get(path)
            if rec is not None:
                return rec
        return None

    def merged(self) -> Dict[str, Record]:
        """Path -> winning record view. Records are referenced, not copied."""
        view: Dict[str, Record] = {}
        for archive in self.archives:
            view.update(archive.records)
        return view

    def by_prefix(self, prefix: str) -> List[Record]:
        view = self.merged()
        return [view[p] for p in sorted(view) if p.startswith(prefix)]

    def by_kind(self, kind: RecordKind) -> List[Record]:
        view = self.merged()
        return [view[p] for p in sorted(view) if view[p].kind == kind]
