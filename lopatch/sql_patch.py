"""
SQL Patch Pipeline

Runs user patch scripts against a SQLite projection of every relational table
in play and writes the affected tables back into the override archive.

    1. collect    base tables (renamed low priority), mod tables (winning
                  records), override tables; stable sort by path
    2. snapshot   rebuild ``vanilla.db3`` from base tables when stale
    3. working    copy the snapshot, project mod and override tables into it
    4. scripts    sequential, caller order, one pooled connection each;
                  failures are recorded and the next script still runs
    5. created    register declared-created tables as zero-row tables owned
                  by the override archive
    6. extract    for every table under an affected prefix, and every
                  declared-created table, pull its rows back and insert it
                  into the override

The call raises ``PipelineError`` after step 6 when any script failed.

Public API:
    apply_sql_scripts(...) -> PipelineReport
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from lopatch.codec import decode_record, encode
from lopatch.config import SqlConfig
from lopatch.errors import DecodeFailure, PipelineError, ScriptFailure, ScriptFormatError
from lopatch.games import GameInfo
from lopatch.scripts import (
    ScriptInvocation,
    ScriptMetadata,
    parse_metadata,
    read_script_text,
    render,
)
from lopatch.store import (
    ProjectionStore,
    make_working_copy,
    rebuild_snapshot,
    snapshot_is_stale,
    store_paths,
)
from lopatch.types import Archive, ArchiveStack, Record, RelationalTable, table_folder

logger = logging.getLogger(__name__)


@dataclass
class PipelineReport:
    """Outcome of one pipeline call."""
    scripts_run: List[str] = field(default_factory=list)
    failures: List[ScriptFailure] = field(default_factory=list)
    snapshot_rebuilt: bool = False
    tables_projected: int = 0
    tables_registered: List[str] = field(default_factory=list)
    tables_extracted: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scripts_run": list(self.scripts_run),
            "failures": [{"script": f.script, "error": str(f)} for f in self.failures],
            "snapshot_rebuilt": self.snapshot_rebuilt,
            "tables_projected": self.tables_projected,
            "tables_registered": list(self.tables_registered),
            "tables_extracted": list(self.tables_extracted),
        }


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------

def collect_tables(
    base: ArchiveStack, mods: ArchiveStack, override: Archive,
) -> Tuple[List[Record], List[Record]]:
    """Copies of every table record in play, each list sorted by path.

    Returns:
        (base records renamed low priority, mod records followed by override records)
    """
    base_tables = sorted((r.to_low_priority() for r in base.by_kind("table")), key=lambda r: r.path)
    overlay = [r.copy() for r in mods.by_kind("table")]
    overlay.extend(r.copy() for r in override.by_kind("table"))
    overlay.sort(key=lambda r: r.path)
    return base_tables, overlay


# ---------------------------------------------------------------------------
# Script execution
# ---------------------------------------------------------------------------

def _run_script(
    invocation: ScriptInvocation,
    store: ProjectionStore,
    destination: str,
    config: SqlConfig,
    report: PipelineReport,
) -> Optional[ScriptMetadata]:
    """Execute one script; failures are appended to the report.

    Returns:
        The script's metadata, or None when nothing should be re-extracted.
    """
    name = invocation.name
    logger.info("Executing script: %s (params: %s)", name, ",".join(invocation.params))
    try:
        text = read_script_text(invocation)
    except ScriptFailure as e:
        logger.error("Failed to read SQL script %s: %s", name, e)
        report.failures.append(e)
        return None

    metadata: Optional[ScriptMetadata]
    try:
        metadata = parse_metadata(text, name)
    except ScriptFormatError as e:
        logger.error("Failed to process SQL script %s due to bad formatting: %s", name, e)
        report.failures.append(e)
        if not config.run_body_on_bad_metadata:
            return None
        metadata = None

    sql = render(text, metadata or ScriptMetadata(), invocation.params, destination)
    try:
        with store.pool.connection() as conn:
            conn.executescript(sql)
    except sqlite3.Error as e:
        logger.error("SQL script %s failed to execute: %s", name, e)
        logger.debug("Contents of the failed SQL script %s:\n%s", name, sql)
        report.failures.append(ScriptFailure(name, f"execution failed: {e}"))
        return metadata
    report.scripts_run.append(name)
    return metadata


# ---------------------------------------------------------------------------
# Created tables
# ---------------------------------------------------------------------------

def _template_for(table_name: str, tables: Sequence[Record]) -> Optional[RelationalTable]:
    for record in tables:
        if record.table_name != table_name:
            continue
        try:
            decoded = decode_record(record)
        except DecodeFailure as e:
            logger.debug("Cannot use %s as schema for %s: %s", record.path, table_name, e)
            continue
        if isinstance(decoded, RelationalTable):
            return decoded.empty_copy()
    return None


def register_created_tables(
    created: Sequence[Tuple[str, str]],
    tables: List[Record],
    store: ProjectionStore,
    override: Archive,
    report: PipelineReport,
) -> List[str]:
    """Add zero-row records for declared-created tables not already collected.

    Args:
        created: (table_name, record path) pairs, in declaration order.

    The schema comes from an existing table of the same name, else from the
    SQLite table the script created.

    Returns:
        Paths of the registered tables.
    """
    known = {r.path for r in tables}
    paths: List[str] = []
    for table_name, path in created:
        if path in known:
            continue
        table = _template_for(table_name, tables)
        if table is None:
            columns = store.columns_of(table_name)
            if columns is None:
                logger.warning("Cannot register created table %s: no schema available", path)
                continue
            table = RelationalTable(table_name=table_name, columns=columns)
        tables.append(Record(
            path=path, archive_name=override.name, data=encode(table, path), decoded=table,
        ))
        known.add(path)
        paths.append(path)
        report.tables_registered.append(path)
        logger.debug("Registered created table %s", path)
    return paths


# ---------------------------------------------------------------------------
# Re-extraction
# ---------------------------------------------------------------------------

def _is_affected(path: str, prefixes: Sequence[str], exact: Set[str]) -> bool:
    return path in exact or any(path.startswith(p) for p in prefixes)


def extract_affected(
    tables: Sequence[Record],
    prefixes: Sequence[str],
    store: ProjectionStore,
    override: Archive,
    report: PipelineReport,
    paths: Sequence[str] = (),
) -> None:
    """Pull affected tables back from the store into the override archive.

    A table is affected when its path starts with one of ``prefixes`` or is
    one of the exact ``paths``; each table is extracted at most once.
    """
    exact = set(paths)
    if not prefixes and not exact:
        return
    for record in sorted(tables, key=lambda r: r.path):
        if not _is_affected(record.path, prefixes, exact):
            continue
        try:
            decoded = decode_record(record)
            if not isinstance(decoded, RelationalTable):
                continue
            table = decoded.empty_copy()
            table.rows = store.extract(record, table)
        except DecodeFailure as e:
            logger.warning("Skipping re-extraction of %s: %s", record.path, e)
            continue
        override.insert(record.copy(decoded=table, data=encode(table, record.path)))
        report.tables_extracted.append(record.path)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def apply_sql_scripts(
    game: GameInfo,
    scripts: Sequence[ScriptInvocation],
    base: ArchiveStack,
    mods: ArchiveStack,
    override: Archive,
    *,
    patch_db_dir: str,
    executable: Optional[str] = None,
    config: Optional[SqlConfig] = None,
) -> PipelineReport:
    """Run patch scripts and write the affected tables into ``override``.

    Args:
        game: Title (keys the snapshot directory).
        scripts: Invocations, executed in this order.
        base: Installed game archives (snapshot source).
        mods: Active mod archives, lowest to highest priority.
        override: Destination archive.
        patch_db_dir: Root of the per-game projection store directories.
        executable: Game executable; a newer creation time invalidates the snapshot.
        config: Pool, worker and failure-policy settings.

    Returns:
        PipelineReport when every script succeeded.

    Raises:
        PipelineError: After re-extraction, if any script failed (``.report``
            holds the full report).
        IOFailure: If the snapshot or working store cannot be written.
    """
    cfg = config or SqlConfig()
    report = PipelineReport()
    if not scripts:
        return report

    base_tables, overlay = collect_tables(base, mods, override)
    tables = sorted(base_tables + overlay, key=lambda r: r.path)
    snapshot_path, working_path = store_paths(patch_db_dir, game.key)

    if cfg.force_rebuild or snapshot_is_stale(snapshot_path, executable):
        logger.info("Rebuilding vanilla snapshot for %s", game.key)
        rebuild_snapshot(snapshot_path, base_tables, cfg.workers)
        report.snapshot_rebuilt = True

    make_working_copy(snapshot_path, working_path)
    prefixes: List[str] = []
    created: List[Tuple[str, str]] = []

    with ProjectionStore(working_path, pool_size=cfg.pool_size) as store:
        report.tables_projected = store.project(overlay, cfg.workers)

        for invocation in scripts:
            metadata = _run_script(invocation, store, override.name, cfg, report)
            if metadata is None:
                continue
            prefixes.extend(p for p in metadata.tables_affected if p not in prefixes)
            created.extend(zip((t for t, _ in metadata.tables_created), metadata.created_paths))

        register_created_tables(created, tables, store, override, report)

        logger.info("Rebuilding tables from the projection store")
        extract_affected(tables, prefixes, store, override, report, paths=[p for _, p in created])

    logger.info(
        "SQL scripts processed: %d ok, %d failed, %d table(s) extracted",
        len(report.scripts_run), len(report.failures), len(report.tables_extracted),
    )
    if report.failures:
        raise PipelineError(report.failures, report=report)
    return report
