"""
Load Order — Path/Priority Resolver

Reads a load-order file and linearizes it into archive paths, lowest to
highest priority:

    [data_dir, *declared mods (declaration order), *auto-detected movie archives]

Recognized lines (everything else is ignored):

    add_working_directory "<path>";
    mod "<name>";

A mod resolves against the first working directory that contains it, with
declared working directories searched in declaration order and the data
directory last.  Movie-category archives auto-load in the engine without a
``mod`` line, so every other archive under a working directory is probed and
appended when it reports the ``movie`` category.

Public API:
    parse_load_order(text) -> LoadOrderFile
    read_load_order_text(path, encoding) -> str
    resolve_load_order(...) -> list[str]
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from lopatch.archive import ARCHIVE_EXTENSION, probe_category
from lopatch.errors import IOFailure

logger = logging.getLogger(__name__)

_WORKING_DIR_RE = re.compile(r'^\s*add_working_directory\s+"(?P<value>[^"]*)"\s*;?\s*$')
_MOD_RE = re.compile(r'^\s*mod\s+"(?P<value>[^"]*)"\s*;?\s*$')


@dataclass
class LoadOrderFile:
    """Parsed declarations of a load-order file."""
    working_directories: List[str] = field(default_factory=list)
    mods: List[str] = field(default_factory=list)


def parse_load_order(text: str) -> LoadOrderFile:
    """Extract working-directory and mod declarations, in declaration order."""
    parsed = LoadOrderFile()
    for line in text.splitlines():
        m = _WORKING_DIR_RE.match(line)
        if m:
            value = m.group("value").strip()
            if value:
                parsed.working_directories.append(value)
            continue
        m = _MOD_RE.match(line)
        if m:
            value = m.group("value").strip()
            if value:
                parsed.mods.append(value)
    return parsed


def read_load_order_text(path: str, encoding: str = "utf-8") -> str:
    """Read the load-order file.

    Raises:
        IOFailure: If the file cannot be read or decoded.
    """
    try:
        with open(path, "rb") as f:
            raw = f.read()
    except OSError as e:
        raise IOFailure(f"Cannot read load order file {path}: {e}") from e
    if encoding.lower().replace("_", "-") == "utf-16" and not raw.startswith((b"\xff\xfe", b"\xfe\xff")):
        encoding = "utf-16-le"
    elif encoding.lower() == "utf-8":
        encoding = "utf-8-sig"
    try:
        return raw.decode(encoding)
    except UnicodeDecodeError as e:
        raise IOFailure(f"Cannot decode load order file {path} as {encoding}: {e}") from e


def _absolute(path: str, base_dir: str) -> str:
    expanded = os.path.expanduser(path)
    if not os.path.isabs(expanded):
        expanded = os.path.join(base_dir, expanded)
    return os.path.normpath(os.path.abspath(expanded))


def _archives_under(directory: str) -> List[str]:
    """Archive files directly inside ``directory``, sorted by name."""
    try:
        names = sorted(os.listdir(directory))
    except OSError:
        return []
    return [
        os.path.normpath(os.path.join(directory, n)) for n in names
        if n.endswith(ARCHIVE_EXTENSION) and os.path.isfile(os.path.join(directory, n))
    ]


def resolve_load_order(
    load_order_path: str,
    *,
    game_path: str,
    data_path: str,
    base_archives: Iterable[str] = (),
    encoding: str = "utf-8",
    probe: Callable[[str], str] = probe_category,
    text: Optional[str] = None,
    exclude_names: Iterable[str] = (),
) -> List[str]:
    """Resolve a load-order file into an ordered list of absolute archive paths.

    Args:
        load_order_path: Load-order file (ignored when ``text`` is given).
        game_path: Game install directory; relative working directories resolve against it.
        data_path: The game's primary data directory (always first in the result).
        base_archives: Known base-game archive paths (never auto-detected).
        encoding: File encoding (utf-8, or utf-16 for legacy user scripts).
        probe: Returns an archive's category; failures are swallowed.
        text: Pre-read file content.
        exclude_names: Archive file names never auto-detected (e.g. a previous
            run's override archive).

    Returns:
        ``[data_path, *mods, *movie archives]``, lowest to highest priority.

    Raises:
        IOFailure: If the load-order file cannot be read.
    """
    if text is None:
        text = read_load_order_text(load_order_path, encoding)
    parsed = parse_load_order(text)

    data_dir = _absolute(data_path, game_path)
    declared_dirs = [_absolute(p, game_path) for p in parsed.working_directories]
    lookup_dirs = [d for d in declared_dirs if d != data_dir] + [data_dir]

    mod_paths: List[str] = []
    for name in parsed.mods:
        found = None
        for directory in lookup_dirs:
            candidate = os.path.join(directory, name)
            if os.path.isfile(candidate):
                found = os.path.normpath(candidate)
                break
        if found is None:
            logger.warning("Mod %s not found in any working directory, skipping", name)
            continue
        if found not in mod_paths:
            mod_paths.append(found)

    known_base = {_absolute(p, game_path) for p in base_archives}
    explicit = set(mod_paths)
    excluded = set(exclude_names)
    movies: List[str] = []
    for directory in [data_dir] + [d for d in declared_dirs if d != data_dir]:
        for path in _archives_under(directory):
            if path in explicit or path in known_base or path in movies:
                continue
            if os.path.basename(path) in excluded:
                continue
            try:
                category = probe(path)
            except Exception as e:
                logger.debug("Probe failed for %s: %s", path, e)
                continue
            if category == "movie":
                movies.append(path)

    order = [data_dir] + mod_paths + movies
    logger.info("Load order resolved: %d mod(s), %d movie archive(s)", len(mod_paths), len(movies))
    for entry in order:
        logger.debug("- %s", entry.replace("\\", "/"))
    return order
