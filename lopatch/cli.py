"""
lopatch CLI — Load-Order Patch Commands

Commands:
    lopatch patch --game G --game-path P [options]   — build the override archive
    lopatch load-order --game G --game-path P        — print the resolved load order
    lopatch games                                    — list supported game keys
    lopatch refresh-translations                     — update the translation corpus

Environment variables:
    LOPATCH_CONFIG      Path to a JSON config file
    LOPATCH_HOME        Local state directory (default: ~/.lopatch)
    LOPATCH_GAME_PATH   Game install directory
    LOPATCH_POOL_SIZE   SQLite connection pool size (default: 4)
    LOPATCH_WORKERS     Table decode workers (default: 4)

Precedence (invariant):
    CLI --flag  >  LOPATCH_* env var  >  config file  >  compiled default

Exit codes:
    0  Success
    1  Operational error (bad args, missing files, script failures)
    2  Internal failure (unexpected exception)
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

from lopatch.config import PatcherConfig, ValidationError, load_config
from lopatch.errors import PatcherError, PipelineError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Defensive env parsing (never crash on bad export)
# ---------------------------------------------------------------------------


def _env_int(name: str, default: int) -> int:
    """Parse integer env var with fallback. Never raises on bad input."""
    v = os.environ.get(name)
    if not v:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    """Parse string env var with fallback."""
    return os.environ.get(name, default)


# ---------------------------------------------------------------------------
# Stderr helpers (respect --quiet)
# ---------------------------------------------------------------------------

_quiet = False


def _info(msg: str) -> None:
    """Print progress to stderr (suppressed by --quiet)."""
    if not _quiet:
        print(msg, file=sys.stderr)


def _warn(msg: str) -> None:
    """Print warning to stderr (always visible)."""
    print(msg, file=sys.stderr)


# ---------------------------------------------------------------------------
# Resolvers
# ---------------------------------------------------------------------------


def _resolve_config(args: argparse.Namespace) -> PatcherConfig:
    """Config file, then LOPATCH_* env vars, then CLI flags.

    Raises:
        ValidationError: If the resulting values are out of range.
    """
    path = getattr(args, "config", None) or _env_str("LOPATCH_CONFIG", "") or None
    cfg = load_config(path)

    cfg.paths.home = _env_str("LOPATCH_HOME", cfg.paths.home)
    cfg.sql.pool_size = _env_int("LOPATCH_POOL_SIZE", cfg.sql.pool_size)
    cfg.sql.workers = _env_int("LOPATCH_WORKERS", cfg.sql.workers)

    if getattr(args, "home", None):
        cfg.paths.home = args.home
    if getattr(args, "force_rebuild", False):
        cfg.sql.force_rebuild = True
    if getattr(args, "no_refresh", False):
        cfg.translations.refresh = False

    errors = cfg.validate()
    if errors:
        raise ValidationError(f"Config validation failed: {'; '.join(errors)}")
    return cfg


def _resolve_game_path(args: argparse.Namespace) -> str:
    return getattr(args, "game_path", None) or _env_str("LOPATCH_GAME_PATH", "")


def _emit(data: dict, as_json: bool, lines: List[str]) -> None:
    if as_json:
        print(json.dumps(data, indent=2, ensure_ascii=False))
    else:
        for line in lines:
            print(line)


# ===========================================================================
# Command: patch
# ===========================================================================


def cmd_patch(args: argparse.Namespace) -> None:
    """Build the override archive for one launch."""
    from lopatch.orchestrator import LaunchOptions, assemble
    from lopatch.scripts import parse_script_argument

    game_path = _resolve_game_path(args)
    if not game_path:
        _warn("Error: --game-path (or LOPATCH_GAME_PATH) is required")
        sys.exit(1)

    cfg = _resolve_config(args)
    scripts = [parse_script_argument(a) for a in (args.sql_script or [])]
    options = LaunchOptions(
        game=args.game,
        game_path=game_path,
        load_order_file_name=args.load_order_file_name or "",
        generated_pack_path=args.generated_pack_path,
        translation_languages=list(args.translation_language or []),
        sql_scripts=scripts,
        skip_intro_videos=args.skip_intro_videos,
        enable_logging=args.enable_logging,
        enable_dev_ui=args.enable_dev_ui,
    )

    _info(f"[patch] {args.game}: {game_path}")
    report = assemble(options, cfg)
    _emit(report.to_dict(), getattr(args, "json", False), [report.output_path])
    _info(f"[patch] {report.records_written} record(s), passes: {', '.join(report.passes) or 'none'}")


# ===========================================================================
# Command: load-order
# ===========================================================================


def cmd_load_order(args: argparse.Namespace) -> None:
    """Print the resolved archive order, lowest priority first."""
    from lopatch.archive import base_archive_paths
    from lopatch.games import game_info
    from lopatch.load_order import resolve_load_order
    from lopatch.orchestrator import DATA_DIR_NAME

    game = game_info(args.game)
    game_path = _resolve_game_path(args)
    if not game_path:
        _warn("Error: --game-path (or LOPATCH_GAME_PATH) is required")
        sys.exit(1)
    data_path = os.path.join(game_path, DATA_DIR_NAME)
    name = args.load_order_file_name or game.user_script_name or ""
    order = resolve_load_order(
        os.path.join(game_path, name),
        game_path=game_path,
        data_path=data_path,
        base_archives=base_archive_paths(data_path),
        encoding=game.load_order_encoding,
        exclude_names=(game.override_archive_name,),
    )
    _emit({"game": game.key, "load_order": order}, getattr(args, "json", False), order)


# ===========================================================================
# Command: games
# ===========================================================================


def cmd_games(args: argparse.Namespace) -> None:
    """List supported titles."""
    from lopatch.games import GAMES, supported_keys

    data = {
        k: {
            "display_name": GAMES[k].display_name,
            "legacy_locs": GAMES[k].legacy_locs,
            "override_archive": GAMES[k].override_archive_name,
        }
        for k in supported_keys()
    }
    lines = [f"{k:<22} {GAMES[k].display_name}" for k in supported_keys()]
    _emit(data, getattr(args, "json", False), lines)


# ===========================================================================
# Command: refresh-translations
# ===========================================================================


def cmd_refresh(args: argparse.Namespace) -> None:
    """Clone or update the community translation corpus."""
    from lopatch.translations import refresh_corpus

    cfg = _resolve_config(args)
    target = cfg.paths.translations_remote
    _info(f"[refresh] {cfg.translations.repo_url} -> {target}")
    refresh_corpus(target, cfg.translations.repo_url, cfg.translations.branch, cfg.translations.remote)
    _info("[refresh] Community translations up to date.")


# ===========================================================================
# Shared argument helper
# ===========================================================================


def _add_game_arguments(p: argparse.ArgumentParser) -> None:
    """Register game selection arguments on a parser. Single source of truth."""
    from lopatch.games import supported_keys

    p.add_argument("-g", "--game", required=True, choices=supported_keys(), help="Game key")
    p.add_argument(
        "--game-path", default=None,
        help="Game install directory (default: LOPATCH_GAME_PATH)",
    )
    p.add_argument(
        "-l", "--load-order-file-name", default=None,
        help="Load order file inside the game directory (legacy titles default to their user script)",
    )


# ===========================================================================
# Entry point
# ===========================================================================


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point: lopatch <command> [args]."""
    global _quiet

    _common = argparse.ArgumentParser(add_help=False)
    _common.add_argument(
        "--config", default=argparse.SUPPRESS,
        help="Path to JSON config file (default: LOPATCH_CONFIG)",
    )
    _common.add_argument(
        "--home", default=argparse.SUPPRESS,
        help="Local state directory (default: LOPATCH_HOME or ~/.lopatch)",
    )
    _common.add_argument(
        "--quiet", "-q", action="store_true", default=argparse.SUPPRESS,
        help="Suppress stderr progress messages",
    )
    _common.add_argument(
        "--json", action="store_true", default=argparse.SUPPRESS,
        help="Machine-readable JSON output",
    )
    _common.add_argument(
        "-v", "--verbose", action="store_true", default=argparse.SUPPRESS,
        help="Enable verbose logging",
    )

    parser = argparse.ArgumentParser(
        prog="lopatch",
        description="lopatch — build a load-order override archive for a modded game",
        parents=[_common],
    )

    sub = parser.add_subparsers(dest="command", help="Available commands")

    # -- patch -------------------------------------------------------------
    p_patch = sub.add_parser("patch", parents=[_common], help="Build the override archive")
    _add_game_arguments(p_patch)
    p_patch.add_argument(
        "-p", "--generated-pack-path", default=None,
        help="Output archive path (default: <data>/<override archive name>)",
    )
    p_patch.add_argument(
        "-t", "--translation-language", action="append", default=None,
        help="Merge translations for this language (repeatable)",
    )
    p_patch.add_argument(
        "--sql-script", action="append", default=None,
        help='Patch script "<path>;<param>;..." (repeatable, run in order)',
    )
    p_patch.add_argument("-i", "--skip-intro-videos", action="store_true", help="Skip intro videos")
    p_patch.add_argument("-e", "--enable-logging", action="store_true", help="Enable script logging")
    p_patch.add_argument("--enable-dev-ui", action="store_true", help="Unlock dev-only UI")
    p_patch.add_argument("--force-rebuild", action="store_true", help="Rebuild the vanilla snapshot")
    p_patch.add_argument("--no-refresh", action="store_true", help="Do not update the translation corpus")
    p_patch.set_defaults(func=cmd_patch)

    # -- load-order --------------------------------------------------------
    p_lo = sub.add_parser("load-order", parents=[_common], help="Print the resolved load order")
    _add_game_arguments(p_lo)
    p_lo.set_defaults(func=cmd_load_order)

    # -- games -------------------------------------------------------------
    p_games = sub.add_parser("games", parents=[_common], help="List supported games")
    p_games.set_defaults(func=cmd_games)

    # -- refresh-translations ----------------------------------------------
    p_ref = sub.add_parser(
        "refresh-translations", parents=[_common], help="Update the translation corpus",
    )
    p_ref.set_defaults(func=cmd_refresh)

    # -- Parse and dispatch ------------------------------------------------
    args = parser.parse_args(argv)

    _quiet = getattr(args, "quiet", False)

    if getattr(args, "verbose", False):
        level = logging.DEBUG
    elif _quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format="%(name)s %(levelname)s %(message)s")

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except PipelineError as e:
        for failure in e.failures:
            _warn(f"Script failed: {failure}")
        _warn(f"Error: {e}")
        sys.exit(1)
    except (PatcherError, ValidationError, ValueError) as e:
        _warn(f"Error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(0)
    except Exception as e:
        _warn(f"Internal error: {e}")
        if getattr(args, "verbose", False):
            import traceback
            traceback.print_exc(file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
