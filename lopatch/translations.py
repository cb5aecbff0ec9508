"""
Translations — Community Corpus and Localization Merge Engine

Builds one localization table for a selected language from the mod stack, a
community translation corpus, and the installed game's own tables.

Merge order (the flattened table keeps the FIRST occurrence of each key):

    1. mod archives, highest priority first
         - corpus translation set for the archive, if one exists
         - otherwise the archive's own ``text/*.loc`` tables, sorted by path
    2. corpus "fixes" table for the language
    3. optimize against the vanilla English reference (modern titles only)
    4. vanilla backfill
         - legacy titles: the installed monolithic ``text/localisation.loc``
         - modern titles: keys lost in step 3, from the installed tables
           (last observed value) or, failing that, from the reference
           (placed ahead of everything)

Corpus layout (local root first, remote root second; local wins):

    <root>/<game_key>/<archive_name>/<language>.json
    <root>/<game_key>/vanilla_english.tsv          (remote only)
    <root>/<game_key>/vanilla_fixes_<language>.tsv (remote only)

Public API:
    refresh_corpus(local_path, repo_url, branch, remote)
    load_translation_units(roots, game_key, archive_name, language)
    optimize_entries(entries, reference) -> list[LocEntry]
    merge_translations(...) -> MergeReport
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from lopatch.codec import decode_record, encode, import_tsv
from lopatch.config import TranslationConfig
from lopatch.errors import DecodeFailure, NetworkFailure
from lopatch.games import GameInfo
from lopatch.types import (
    TEXT_PREFIX,
    Archive,
    ArchiveStack,
    LocEntry,
    LocalizationTable,
    Record,
    TranslationUnit,
)

logger = logging.getLogger(__name__)

TRANSLATED_PATH = "text/!!!!!!translated_locs.loc"
TRANSLATED_PATH_OLD = "text/localisation.loc"

VANILLA_LOC_NAME = "vanilla_english.tsv"
VANILLA_FIXES_PREFIX = "vanilla_fixes_"


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------

@dataclass
class MergeReport:
    """Counts from one translation merge."""
    language: str
    archives_translated: List[str] = field(default_factory=list)
    archives_merged: List[str] = field(default_factory=list)
    fixes_applied: bool = False
    rows_before_optimize: int = 0
    rows_after_optimize: int = 0
    keys_before_optimize: set = field(default_factory=set)
    restored_from_installed: int = 0
    restored_from_reference: int = 0
    output_path: Optional[str] = None
    rows_written: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "language": self.language,
            "archives_translated": list(self.archives_translated),
            "archives_merged": list(self.archives_merged),
            "fixes_applied": self.fixes_applied,
            "rows_before_optimize": self.rows_before_optimize,
            "rows_after_optimize": self.rows_after_optimize,
            "restored_from_installed": self.restored_from_installed,
            "restored_from_reference": self.restored_from_reference,
            "output_path": self.output_path,
            "rows_written": self.rows_written,
        }


# ---------------------------------------------------------------------------
# Corpus refresh (GitPython)
# ---------------------------------------------------------------------------

def refresh_corpus(local_path: str, repo_url: str, branch: str, remote: str = "origin") -> None:
    """Clone or fast-forward the community corpus checkout at ``local_path``.

    Raises:
        NetworkFailure: On any git or network error (callers treat it as non-fatal).
    """
    try:
        import git
    except ImportError as e:
        raise NetworkFailure(
            "GitPython is required to refresh translations. "
            "Install with: pip install GitPython"
        ) from e

    try:
        if os.path.isdir(os.path.join(local_path, ".git")):
            repo = git.Repo(local_path)
            repo.remote(remote).fetch()
            repo.git.checkout(branch)
            repo.git.reset("--hard", f"{remote}/{branch}")
        else:
            os.makedirs(os.path.dirname(os.path.abspath(local_path)), exist_ok=True)
            git.Repo.clone_from(repo_url, local_path, branch=branch, depth=1)
    except (git.exc.GitError, OSError, ValueError) as e:
        raise NetworkFailure(f"Failed to refresh translations from {repo_url}: {e}") from e


def _refresh_best_effort(local_path: str, cfg: TranslationConfig) -> None:
    logger.info("Checking and downloading community translations...")
    try:
        refresh_corpus(local_path, cfg.repo_url, cfg.branch, cfg.remote)
    except NetworkFailure as e:
        logger.warning("Translation corpus refresh failed, using local copy: %s", e)
        return
    logger.info("Community translations up to date.")


# ---------------------------------------------------------------------------
# Corpus access
# ---------------------------------------------------------------------------

def translation_file_path(root: str, game_key: str, archive_name: str, language: str) -> str:
    return os.path.join(root, game_key, archive_name, f"{language}.json")


def load_translation_units(
    roots: Sequence[str], game_key: str, archive_name: str, language: str,
) -> Optional[List[TranslationUnit]]:
    """Load the prebuilt translation set of one archive, or None if no root has one.

    Roots are searched in order; the first hit wins.

    Raises:
        DecodeFailure: If the corpus file exists but is malformed.
    """
    for root in roots:
        path = translation_file_path(root, game_key, archive_name, language)
        if not os.path.isfile(path):
            continue
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            raw = data.get("translations", {})
            items = raw.values() if isinstance(raw, dict) else raw
            units = [TranslationUnit.from_dict(d) for d in items]
        except (OSError, json.JSONDecodeError, AttributeError, TypeError) as e:
            raise DecodeFailure(path, f"invalid translation file: {e}") from e
        return sorted(units, key=lambda u: u.key)
    return None


def _load_corpus_table(path: str) -> Optional[LocalizationTable]:
    """Load an optional corpus TSV; missing files yield None."""
    if not os.path.isfile(path):
        return None
    table = import_tsv(path)
    if not isinstance(table, LocalizationTable):
        raise DecodeFailure(path, "expected a localization table")
    return table


# ---------------------------------------------------------------------------
# Row sources
# ---------------------------------------------------------------------------

def rows_from_units(units: Sequence[TranslationUnit], legacy: bool) -> List[LocEntry]:
    """Usable translations; legacy titles also fall back to the original text."""
    rows: List[LocEntry] = []
    for unit in units:
        if unit.usable:
            rows.append(LocEntry(unit.key, unit.value_translated, False))
        elif legacy and unit.value_original:
            rows.append(LocEntry(unit.key, unit.value_original, False))
    return rows


def rows_from_archive(archive: Archive) -> List[LocEntry]:
    """Concatenate every localization table under ``text/``, sorted by path.

    Raises:
        DecodeFailure: If any of those tables is malformed.
    """
    rows: List[LocEntry] = []
    for record in archive.by_prefix(TEXT_PREFIX):
        if record.kind != "loc":
            continue
        table = decode_record(record)
        if isinstance(table, LocalizationTable):
            rows.extend(table.entries)
    return rows


# ---------------------------------------------------------------------------
# Optimize
# ---------------------------------------------------------------------------

def optimize_entries(
    entries: Sequence[LocEntry], reference: LocalizationTable,
) -> List[LocEntry]:
    """Flatten (first occurrence wins) and drop entries identical to the reference."""
    ref = reference.as_dict()
    return [
        e for e in LocalizationTable.flatten(entries)
        if ref.get(e.key) != e.value
    ]


# ---------------------------------------------------------------------------
# Backfill
# ---------------------------------------------------------------------------

def _installed_values(base: ArchiveStack) -> Dict[str, str]:
    """Key -> value over all installed localization tables (last observed wins)."""
    values: Dict[str, str] = {}
    for record in base.by_kind("loc"):
        table = decode_record(record)
        if isinstance(table, LocalizationTable):
            for e in table.entries:
                values[e.key] = e.value
    return values


def _backfill_modern(
    rows: List[LocEntry],
    keys_before: set,
    base: ArchiveStack,
    reference: Optional[LocalizationTable],
    fill_missing_from_reference: bool,
    report: MergeReport,
) -> List[LocEntry]:
    installed = _installed_values(base)
    ref_values = reference.as_dict() if reference is not None else {}
    kept = {e.key for e in rows}
    lost = sorted(keys_before - kept)

    from_installed: List[LocEntry] = []
    from_reference: List[LocEntry] = []
    for key in lost:
        value = installed.get(key, "")
        if value:
            from_installed.append(LocEntry(key, value, False))
        elif key in ref_values:
            from_reference.append(LocEntry(key, ref_values[key], False))
        elif key in installed:
            from_installed.append(LocEntry(key, value, False))

    if fill_missing_from_reference and reference is not None:
        restored = {e.key for e in from_reference}
        for e in LocalizationTable.flatten(reference.entries):
            if e.value and not installed.get(e.key) and e.key not in restored:
                from_reference.append(LocEntry(e.key, e.value, False))

    report.restored_from_installed = len(from_installed)
    report.restored_from_reference = len(from_reference)
    return from_reference + rows + from_installed


def _backfill_legacy(rows: List[LocEntry], base: ArchiveStack) -> List[LocEntry]:
    record = base.resolve(TRANSLATED_PATH_OLD)
    if record is None:
        logger.warning("Installed game has no %s to append", TRANSLATED_PATH_OLD)
        return rows
    table = decode_record(record)
    if not isinstance(table, LocalizationTable):
        raise DecodeFailure(record.path, "expected a localization table")
    return rows + list(table.entries)


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------

def merge_translations(
    game: GameInfo,
    language: str,
    mods: ArchiveStack,
    base: ArchiveStack,
    override: Archive,
    *,
    local_root: str,
    remote_root: str,
    config: Optional[TranslationConfig] = None,
) -> MergeReport:
    """Assemble and write the translated localization table for ``language``.

    Args:
        game: Title description (legacy predicate, corpus key).
        language: Corpus language code (e.g. ``sp``, ``de``).
        mods: Active mod archives, lowest to highest priority.
        base: Installed game archives.
        override: Destination archive; the output record replaces any prior one.
        local_root: Local corpus override directory (searched first).
        remote_root: Remote corpus checkout (refreshed best-effort).
        config: Corpus refresh settings.

    Returns:
        MergeReport with per-step counts.

    Raises:
        DecodeFailure / IOFailure: On any corpus or archive decode/read failure.
    """
    cfg = config or TranslationConfig()
    report = MergeReport(language=language)
    legacy = game.legacy_locs

    if cfg.refresh:
        _refresh_best_effort(remote_root, cfg)

    roots = [local_root, remote_root]
    rows: List[LocEntry] = []

    for archive in reversed(list(mods)):
        units = load_translation_units(roots, game.key, archive.name, language)
        if units is not None:
            rows.extend(rows_from_units(units, legacy))
            report.archives_translated.append(archive.name)
            logger.debug("Translation found for %s", archive.name)
        else:
            rows.extend(rows_from_archive(archive))
            report.archives_merged.append(archive.name)

    game_dir = os.path.join(remote_root, game.key)
    fixes = _load_corpus_table(os.path.join(game_dir, f"{VANILLA_FIXES_PREFIX}{language}.tsv"))
    if fixes is not None:
        rows.extend(fixes.entries)
        report.fixes_applied = True

    report.keys_before_optimize = {e.key for e in rows}
    report.rows_before_optimize = len(rows)

    reference = _load_corpus_table(os.path.join(game_dir, VANILLA_LOC_NAME))
    if not legacy and reference is not None and rows:
        rows = optimize_entries(rows, reference)
    report.rows_after_optimize = len(rows)

    if legacy:
        rows = _backfill_legacy(rows, base)
    else:
        rows = _backfill_modern(
            rows, report.keys_before_optimize, base, reference,
            cfg.fill_missing_from_reference, report,
        )

    if not rows:
        logger.info("No localization data assembled for %s", language)
        return report

    table = LocalizationTable(entries=LocalizationTable.flatten(rows))
    path = TRANSLATED_PATH_OLD if legacy else TRANSLATED_PATH
    override.insert(Record(path=path, data=encode(table, path), decoded=table))
    report.output_path = path
    report.rows_written = len(table)
    logger.info(
        "Translations for %s: %d translated, %d merged, %d rows written to %s",
        language, len(report.archives_translated), len(report.archives_merged),
        report.rows_written, path,
    )
    return report
