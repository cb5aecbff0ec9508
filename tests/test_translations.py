"""
Tests for lopatch.translations — corpus access and the localization merge engine.
"""

import json
import os

import pytest

import lopatch.translations as translations
from lopatch.codec import decode_record, export_tsv
from lopatch.config import TranslationConfig
from lopatch.errors import DecodeFailure, NetworkFailure
from lopatch.games import game_info
from lopatch.translations import (
    TRANSLATED_PATH,
    TRANSLATED_PATH_OLD,
    load_translation_units,
    merge_translations,
    optimize_entries,
    rows_from_units,
)
from lopatch.types import (
    Archive,
    ArchiveStack,
    LocEntry,
    LocalizationTable,
    Record,
    TranslationUnit,
)

NO_REFRESH = TranslationConfig(refresh=False)


def _write_units(root, game, archive, language, units):
    path = os.path.join(str(root), game, archive, f"{language}.json")
    os.makedirs(os.path.dirname(path), exist_ok=True)
    data = {
        "archive_name": archive,
        "language": language,
        "translations": {
            u[0]: {
                "key": u[0],
                "value_original": u[1],
                "value_translated": u[2],
                "needs_retranslation": u[3],
            }
            for u in units
        },
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f)
    return path


def _write_loc_tsv(root, game, name, pairs):
    export_tsv(
        LocalizationTable([LocEntry(k, v) for k, v in pairs]),
        os.path.join(str(root), game, name),
    )


def _output(override, path):
    return decode_record(override.get(path))


@pytest.fixture
def corpus(tmp_path):
    local = tmp_path / "local"
    remote = tmp_path / "remote"
    local.mkdir()
    remote.mkdir()
    return str(local), str(remote)


# ---------------------------------------------------------------------------
# Corpus access
# ---------------------------------------------------------------------------


class TestLoadUnits:
    def test_missing_returns_none(self, corpus):
        assert load_translation_units(corpus, "warhammer_3", "a.pack", "sp") is None

    def test_local_wins(self, corpus):
        local, remote = corpus
        _write_units(remote, "warhammer_3", "a.pack", "sp", [("k", "o", "remote", False)])
        _write_units(local, "warhammer_3", "a.pack", "sp", [("k", "o", "local", False)])
        units = load_translation_units([local, remote], "warhammer_3", "a.pack", "sp")
        assert [u.value_translated for u in units] == ["local"]

    def test_malformed_raises(self, corpus):
        local, remote = corpus
        path = os.path.join(remote, "warhammer_3", "a.pack", "sp.json")
        os.makedirs(os.path.dirname(path))
        with open(path, "w") as f:
            f.write("{broken")
        with pytest.raises(DecodeFailure):
            load_translation_units([local, remote], "warhammer_3", "a.pack", "sp")


class TestRowsFromUnits:
    def test_modern_keeps_usable_only(self):
        units = [
            TranslationUnit("a", "orig", "trad", False),
            TranslationUnit("b", "orig", "", False),
            TranslationUnit("c", "orig", "old", True),
        ]
        assert [e.key for e in rows_from_units(units, legacy=False)] == ["a"]

    def test_legacy_falls_back_to_original(self):
        units = [
            TranslationUnit("a", "orig", "trad", False),
            TranslationUnit("b", "orig_b", "", False),
            TranslationUnit("c", "", "", False),
        ]
        rows = rows_from_units(units, legacy=True)
        assert [(e.key, e.value) for e in rows] == [("a", "trad"), ("b", "orig_b")]


class TestOptimize:
    def test_drops_values_equal_to_reference(self):
        reference = LocalizationTable([LocEntry("a", "same"), LocEntry("b", "ref")])
        rows = [LocEntry("a", "same"), LocEntry("b", "changed"), LocEntry("c", "new")]
        assert [e.key for e in optimize_entries(rows, reference)] == ["b", "c"]

    def test_flattens_first(self):
        reference = LocalizationTable([LocEntry("a", "ref")])
        rows = [LocEntry("a", "mine"), LocEntry("a", "ref")]
        assert optimize_entries(rows, reference) == [LocEntry("a", "mine")]


# ---------------------------------------------------------------------------
# Merge engine
# ---------------------------------------------------------------------------


class TestModernMerge:
    @pytest.fixture
    def stacks(self, make_archive, loc_record):
        mod_a = make_archive("mod_a.pack", [loc_record("text/a.loc", [("k1", "A1"), ("k2", "A2")])])
        mod_b = make_archive("mod_b.pack", [loc_record("text/b.loc", [("k1", "B1"), ("k3", "B3")])])
        base = make_archive(
            "local_sp.pack",
            [loc_record("text/db/vanilla.loc", [("k2", "Dos"), ("k6", "")])],
            category="release",
        )
        return ArchiveStack([mod_a, mod_b]), ArchiveStack([base])

    def test_higher_priority_archive_wins(self, corpus, stacks):
        local, remote = corpus
        mods, base = stacks
        override = Archive("override.pack", category="movie")
        merge_translations(
            game_info("warhammer_3"), "sp", mods, base, override,
            local_root=local, remote_root=remote, config=NO_REFRESH,
        )
        values = _output(override, TRANSLATED_PATH).as_dict()
        assert values["k1"] == "B1"
        assert values["k2"] == "A2"
        assert values["k3"] == "B3"

    def test_corpus_translation_replaces_raw_tables(self, corpus, stacks):
        local, remote = corpus
        mods, base = stacks
        _write_units(remote, "warhammer_3", "mod_a.pack", "sp", [
            ("k2", "A2", "A2-es", False),
            ("k4", "A4", "stale", True),
        ])
        override = Archive("override.pack", category="movie")
        report = merge_translations(
            game_info("warhammer_3"), "sp", mods, base, override,
            local_root=local, remote_root=remote, config=NO_REFRESH,
        )
        values = _output(override, TRANSLATED_PATH).as_dict()
        assert values["k2"] == "A2-es"
        assert "k4" not in values
        assert report.archives_translated == ["mod_a.pack"]
        assert report.archives_merged == ["mod_b.pack"]

    def test_fixes_come_after_mods(self, corpus, stacks):
        local, remote = corpus
        mods, base = stacks
        _write_loc_tsv(remote, "warhammer_3", "vanilla_fixes_sp.tsv", [("k1", "FIX"), ("k5", "F5")])
        override = Archive("override.pack", category="movie")
        report = merge_translations(
            game_info("warhammer_3"), "sp", mods, base, override,
            local_root=local, remote_root=remote, config=NO_REFRESH,
        )
        values = _output(override, TRANSLATED_PATH).as_dict()
        assert values["k1"] == "B1"
        assert values["k5"] == "F5"
        assert report.fixes_applied

    def test_optimize_and_backfill_keep_every_key(self, corpus, stacks):
        local, remote = corpus
        mods, base = stacks
        _write_loc_tsv(remote, "warhammer_3", "vanilla_english.tsv", [
            ("k2", "A2"), ("k3", "B3"), ("k9", "V9"),
        ])
        override = Archive("override.pack", category="movie")
        report = merge_translations(
            game_info("warhammer_3"), "sp", mods, base, override,
            local_root=local, remote_root=remote, config=NO_REFRESH,
        )
        table = _output(override, TRANSLATED_PATH)
        assert table.keys() == report.keys_before_optimize
        values = table.as_dict()
        assert values["k2"] == "Dos"
        assert values["k3"] == "B3"
        assert report.restored_from_installed == 1
        assert report.restored_from_reference == 1
        assert report.rows_after_optimize < report.rows_before_optimize

    def test_reference_fallback_is_placed_first(self, corpus, stacks):
        local, remote = corpus
        mods, base = stacks
        _write_loc_tsv(remote, "warhammer_3", "vanilla_english.tsv", [("k3", "B3")])
        override = Archive("override.pack", category="movie")
        merge_translations(
            game_info("warhammer_3"), "sp", mods, base, override,
            local_root=local, remote_root=remote, config=NO_REFRESH,
        )
        table = _output(override, TRANSLATED_PATH)
        assert table.entries[0] == LocEntry("k3", "B3")

    def test_fill_missing_from_reference(self, corpus, stacks):
        local, remote = corpus
        mods, base = stacks
        _write_loc_tsv(remote, "warhammer_3", "vanilla_english.tsv", [
            ("k6", "only english"), ("k7", "new in patch"), ("k8", ""),
        ])
        override = Archive("override.pack", category="movie")
        merge_translations(
            game_info("warhammer_3"), "sp", mods, base, override,
            local_root=local, remote_root=remote,
            config=TranslationConfig(refresh=False, fill_missing_from_reference=True),
        )
        values = _output(override, TRANSLATED_PATH).as_dict()
        assert values["k6"] == "only english"
        assert values["k7"] == "new in patch"
        assert "k8" not in values

    def test_nothing_written_without_rows(self, corpus):
        local, remote = corpus
        override = Archive("override.pack", category="movie")
        report = merge_translations(
            game_info("warhammer_3"), "sp", ArchiveStack(), ArchiveStack(), override,
            local_root=local, remote_root=remote, config=NO_REFRESH,
        )
        assert len(override) == 0
        assert report.output_path is None

    def test_replaces_prior_output(self, corpus, stacks):
        local, remote = corpus
        mods, base = stacks
        override = Archive("override.pack", category="movie")
        for _ in range(2):
            merge_translations(
                game_info("warhammer_3"), "sp", mods, base, override,
                local_root=local, remote_root=remote, config=NO_REFRESH,
            )
        assert len(override) == 1
        table = _output(override, TRANSLATED_PATH)
        assert len(table.keys()) == len(table)

    def test_malformed_mod_table_aborts(self, corpus, stacks, make_archive):
        local, remote = corpus
        mods, base = stacks
        broken = make_archive("broken.pack", [Record("text/bad.loc", data=b"garbage")])
        mods = ArchiveStack(mods.archives + [broken])
        override = Archive("override.pack", category="movie")
        with pytest.raises(DecodeFailure):
            merge_translations(
                game_info("warhammer_3"), "sp", mods, base, override,
                local_root=local, remote_root=remote, config=NO_REFRESH,
            )
        assert len(override) == 0

    def test_corrupt_reference_aborts(self, corpus, stacks):
        local, remote = corpus
        mods, base = stacks
        path = os.path.join(remote, "warhammer_3", "vanilla_english.tsv")
        os.makedirs(os.path.dirname(path))
        with open(path, "w", encoding="utf-8") as f:
            f.write("junk\n")
        override = Archive("override.pack", category="movie")
        with pytest.raises(DecodeFailure):
            merge_translations(
                game_info("warhammer_3"), "sp", mods, base, override,
                local_root=local, remote_root=remote, config=NO_REFRESH,
            )
        assert len(override) == 0


class TestLegacyMerge:
    def test_appends_installed_table(self, corpus, make_archive, loc_record):
        local, remote = corpus
        mods = ArchiveStack([make_archive("mod_a.pack", [loc_record("text/a.loc", [("k1", "A1")])])])
        base = ArchiveStack([make_archive(
            "data.pack",
            [loc_record(TRANSLATED_PATH_OLD, [("k1", "V1"), ("k8", "V8")])],
            category="release",
        )])
        _write_units(remote, "attila", "mod_a.pack", "sp", [
            ("k1", "A1", "", False),
            ("k2", "orig", "", False),
        ])
        _write_loc_tsv(remote, "attila", "vanilla_english.tsv", [("k1", "A1")])
        override = Archive("override.pack", category="movie")
        report = merge_translations(
            game_info("attila"), "sp", mods, base, override,
            local_root=local, remote_root=remote, config=NO_REFRESH,
        )
        table = _output(override, TRANSLATED_PATH_OLD)
        assert TRANSLATED_PATH not in override
        assert report.keys_before_optimize <= table.keys()
        assert table.as_dict() == {"k1": "A1", "k2": "orig", "k8": "V8"}


class TestRefresh:
    def test_refresh_failure_is_not_fatal(self, corpus, monkeypatch, make_archive, loc_record):
        local, remote = corpus
        calls = []

        def failing(*args, **kwargs):
            calls.append(args)
            raise NetworkFailure("offline")

        monkeypatch.setattr(translations, "refresh_corpus", failing)
        mods = ArchiveStack([make_archive("m.pack", [loc_record("text/a.loc", [("k", "v")])])])
        override = Archive("override.pack", category="movie")
        merge_translations(
            game_info("warhammer_3"), "sp", mods, ArchiveStack(), override,
            local_root=local, remote_root=remote, config=TranslationConfig(refresh=True),
        )
        assert calls
        assert _output(override, TRANSLATED_PATH).as_dict() == {"k": "v"}
