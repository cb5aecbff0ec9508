"""
Tests for lopatch.types — records, archives, priority stacks and tables.
"""

import dataclasses

import pytest

from lopatch.types import (
    Archive,
    ArchiveStack,
    Column,
    LocEntry,
    LocalizationTable,
    Record,
    RelationalTable,
    TranslationUnit,
    low_priority_path,
    record_kind,
    table_folder,
)


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------


class TestPathHelpers:
    def test_record_kind(self):
        assert record_kind("db/land_units_tables/data__") == "table"
        assert record_kind("text/db/units.loc") == "loc"
        assert record_kind("movies/intro.ca_vp8") == "opaque"
        assert record_kind("db/not_a_table") == "opaque"

    def test_table_folder(self):
        assert table_folder("land_units") == "db/land_units_tables/"
        assert table_folder("land_units_tables") == "db/land_units_tables/"

    def test_low_priority_path(self):
        assert low_priority_path("db/land_units_tables/data__") == "db/land_units_tables/~data__"
        assert low_priority_path("file.txt") == "~file.txt"


# ---------------------------------------------------------------------------
# Columns and tables
# ---------------------------------------------------------------------------


class TestColumn:
    def test_invalid_type(self):
        with pytest.raises(ValueError):
            Column("x", "blob")

    def test_none_reads_back_as_default(self):
        assert Column("a", "str").coerce(None) == ""
        assert Column("a", "int").coerce(None) == 0
        assert Column("a", "float").coerce(None) == 0.0
        assert Column("a", "bool").coerce(None) is False

    def test_coerce_values(self):
        assert Column("a", "int").coerce("12") == 12
        assert Column("a", "float").coerce(3) == 3.0
        assert Column("a", "bool").coerce("true") is True
        assert Column("a", "bool").coerce(0) is False
        assert Column("a", "str").coerce(5) == "5"


class TestRelationalTable:
    def test_column_position(self):
        t = RelationalTable("units_tables", columns=[Column("key"), Column("cost", "int")])
        assert t.column_position("cost") == 1
        assert t.column_position("missing") is None

    def test_empty_copy_keeps_schema(self):
        t = RelationalTable("units_tables", 3, [Column("key")], [["a"], ["b"]])
        e = t.empty_copy()
        assert e.rows == []
        assert e.column_names == ["key"]
        assert e.version == 3
        e.columns.append(Column("extra"))
        assert len(t.columns) == 1


class TestLocalizationTable:
    def test_merge_disjoint_sums_sizes(self):
        a = LocalizationTable([LocEntry("k1", "a"), LocEntry("k2", "b")])
        b = LocalizationTable([LocEntry("k3", "c")])
        assert len(LocalizationTable.merge([a, b])) == len(a) + len(b)

    def test_merge_overlap_first_occurrence_wins(self):
        a = LocalizationTable([LocEntry("k1", "first")])
        b = LocalizationTable([LocEntry("k1", "second"), LocEntry("k2", "x")])
        merged = LocalizationTable.merge([a, b])
        assert merged.as_dict() == {"k1": "first", "k2": "x"}
        assert [e.key for e in merged.entries] == ["k1", "k2"]

    def test_entry_is_frozen(self):
        e = LocEntry("k", "v")
        with pytest.raises(dataclasses.FrozenInstanceError):
            e.key = "other"


class TestTranslationUnit:
    def test_usable(self):
        assert TranslationUnit("k", "o", "t", False).usable
        assert not TranslationUnit("k", "o", "", False).usable
        assert not TranslationUnit("k", "o", "t", True).usable

    def test_from_dict_ignores_unknown_fields(self):
        u = TranslationUnit.from_dict({"key": "k", "value_translated": "t", "extra": 1})
        assert u.key == "k"
        assert u.value_translated == "t"


# ---------------------------------------------------------------------------
# Records, archives, stacks
# ---------------------------------------------------------------------------


class TestRecord:
    def test_table_name_and_file_name(self):
        r = Record("db/land_units_tables/data__")
        assert r.table_name == "land_units_tables"
        assert r.file_name == "data__"
        assert Record("text/a.loc").table_name is None

    def test_copy_is_deep(self):
        table = RelationalTable("t_tables", columns=[Column("k")], rows=[["a"]])
        r = Record("db/t_tables/x", decoded=table)
        dup = r.copy()
        dup.decoded.rows.append(["b"])
        assert r.decoded.rows == [["a"]]

    def test_to_low_priority(self):
        r = Record("db/t_tables/x", archive_name="data.pack")
        low = r.to_low_priority()
        assert low.path == "db/t_tables/~x"
        assert r.path == "db/t_tables/x"


class TestArchive:
    def test_invalid_category(self):
        with pytest.raises(ValueError):
            Archive("a.pack", category="bogus")

    def test_insert_copies_and_owns(self):
        src = Record("a/b.txt", archive_name="other.pack", data=b"x")
        archive = Archive("mine.pack")
        owned = archive.insert(src)
        assert owned.archive_name == "mine.pack"
        assert src.archive_name == "other.pack"
        assert owned is not src

    def test_insert_replaces(self):
        archive = Archive("mine.pack")
        archive.insert(Record("a.txt", data=b"1"))
        archive.insert(Record("a.txt", data=b"2"))
        assert len(archive) == 1
        assert archive.get("a.txt").data == b"2"

    def test_by_prefix_sorted(self):
        archive = Archive("mine.pack")
        for p in ("ui/b.xml", "ui/a.xml", "db/x_tables/y"):
            archive.insert(Record(p))
        assert [r.path for r in archive.by_prefix("ui/")] == ["ui/a.xml", "ui/b.xml"]
        assert [r.path for r in archive.by_kind("table")] == ["db/x_tables/y"]


class TestArchiveStack:
    def _stack(self):
        low = Archive("low.pack")
        low.insert(Record("shared.txt", data=b"low"))
        low.insert(Record("low_only.txt", data=b"l"))
        high = Archive("high.pack")
        high.insert(Record("shared.txt", data=b"high"))
        return ArchiveStack([low, high])

    def test_highest_priority_wins(self):
        stack = self._stack()
        assert stack.resolve("shared.txt").data == b"high"
        assert stack.resolve("low_only.txt").archive_name == "low.pack"
        assert stack.resolve("missing") is None

    def test_merged_view_matches_resolve(self):
        stack = self._stack()
        view = stack.merged()
        for path, rec in view.items():
            assert stack.resolve(path) is rec

    def test_names(self):
        assert self._stack().names == ["low.pack", "high.pack"]
