"""
Patch Assembly Orchestrator

Builds the override archive for one launch:

    1. resolve the title (GameInfo) once
    2. load base archives, resolve the load order, load mod archives
    3. passes: skip intro videos, script logging, translations (one per
       language), SQL scripts, dev UI
    4. save the override archive with the mod list as dependencies

A pass error aborts the run before anything is written, except for SQL
script failures: the override archive is saved with whatever the scripts
produced and the ``PipelineError`` is raised afterwards.

Public API:
    LaunchOptions
    AssemblyReport
    assemble(options, config) -> AssemblyReport
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from lopatch.archive import base_archive_paths, read_stack, write_archive
from lopatch.config import PatcherConfig
from lopatch.errors import IOFailure, PipelineError
from lopatch.games import GameInfo, game_info
from lopatch.load_order import resolve_load_order
from lopatch.passes import apply_dev_ui, apply_script_logging, apply_skip_intro
from lopatch.scripts import ScriptInvocation
from lopatch.sql_patch import PipelineReport, apply_sql_scripts
from lopatch.translations import MergeReport, merge_translations
from lopatch.types import Archive

logger = logging.getLogger(__name__)

DATA_DIR_NAME = "data"


@dataclass
class LaunchOptions:
    """What to patch for one launch."""
    game: str
    game_path: str
    load_order_file_name: str = ""
    generated_pack_path: Optional[str] = None
    translation_languages: List[str] = field(default_factory=list)
    sql_scripts: List[ScriptInvocation] = field(default_factory=list)
    skip_intro_videos: bool = False
    enable_logging: bool = False
    enable_dev_ui: bool = False
    data_path: Optional[str] = None


@dataclass
class AssemblyReport:
    game: str
    output_path: str = ""
    load_order: List[str] = field(default_factory=list)
    passes: List[str] = field(default_factory=list)
    translations: List[MergeReport] = field(default_factory=list)
    sql: Optional[PipelineReport] = None
    records_written: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "game": self.game,
            "output_path": self.output_path,
            "load_order": list(self.load_order),
            "passes": list(self.passes),
            "translations": [t.to_dict() for t in self.translations],
            "sql": self.sql.to_dict() if self.sql is not None else None,
            "records_written": self.records_written,
        }


def _load_order_path(game: GameInfo, options: LaunchOptions) -> str:
    name = options.load_order_file_name or game.user_script_name
    if not name:
        raise IOFailure(f"No load order file given for {game.key}")
    return os.path.join(options.game_path, name)


def save_override(
    game: GameInfo,
    override: Archive,
    mod_paths: List[str],
    data_path: str,
    custom_path: Optional[str] = None,
    write_dependencies: bool = True,
) -> str:
    """Write the override archive; dependencies are the mod archive names."""
    target = custom_path or os.path.join(data_path, override.name)
    if write_dependencies:
        override.dependencies = [
            (game.hard_dependencies, os.path.basename(p))
            for p in mod_paths if not os.path.isdir(p)
        ]
    logger.info("Saving archive to: %s", target)
    return write_archive(override, target)


def assemble(options: LaunchOptions, config: Optional[PatcherConfig] = None) -> AssemblyReport:
    """Run every requested pass and write the override archive.

    Raises:
        ValueError: Unknown game key.
        IOFailure / DecodeFailure: Required file access failed.
        PipelineError: At least one SQL script failed. Raised after the
            override archive is written.
    """
    cfg = config or PatcherConfig()
    game = game_info(options.game)
    report = AssemblyReport(game=game.key)

    game_path = os.path.abspath(os.path.expanduser(options.game_path))
    data_path = options.data_path or os.path.join(game_path, DATA_DIR_NAME)
    override = Archive(name=game.override_archive_name, category="movie")

    base_paths = base_archive_paths(data_path)
    base = read_stack(base_paths)
    logger.info("Vanilla data loaded (%d archive(s)). Loading load order for %s.",
                len(base), game.display_name)

    load_order = resolve_load_order(
        _load_order_path(game, options),
        game_path=game_path,
        data_path=data_path,
        base_archives=base_paths,
        encoding=game.load_order_encoding,
        exclude_names=(game.override_archive_name,),
    )
    report.load_order = load_order
    mods = read_stack(load_order)
    logger.info("Mod data loaded (%d archive(s)).", len(mods))

    if options.skip_intro_videos:
        apply_skip_intro(game, base, mods, override)
        report.passes.append("skip_intro_videos")

    if options.enable_logging and apply_script_logging(game, override):
        report.passes.append("script_logging")

    for language in options.translation_languages:
        report.translations.append(merge_translations(
            game, language, mods, base, override,
            local_root=cfg.paths.translations_local,
            remote_root=cfg.paths.translations_remote,
            config=cfg.translations,
        ))
    if options.translation_languages:
        report.passes.append("translations")

    sql_error: Optional[PipelineError] = None
    if options.sql_scripts:
        try:
            report.sql = apply_sql_scripts(
                game, options.sql_scripts, base, mods, override,
                patch_db_dir=cfg.paths.patch_db,
                executable=os.path.join(game_path, game.executable),
                config=cfg.sql,
            )
        except PipelineError as e:
            report.sql = e.report
            sql_error = e
            logger.error("%d SQL script(s) failed; the override archive is still written",
                         len(e.failures))
        report.passes.append("sql_scripts")

    if options.enable_dev_ui:
        apply_dev_ui(base, mods, override)
        report.passes.append("dev_ui")

    report.output_path = save_override(
        game, override, load_order, data_path,
        custom_path=options.generated_pack_path,
        write_dependencies=cfg.output.write_dependencies,
    )
    report.records_written = len(override)
    logger.info("All done: %d record(s) written to %s", report.records_written, report.output_path)
    if sql_error is not None:
        raise sql_error
    return report
