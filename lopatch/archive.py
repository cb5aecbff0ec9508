"""
Archive Container — zip-backed reader/writer

Each archive is a zip file: one entry per record (entry name = record path)
plus a JSON manifest entry ``__archive__.json`` holding the archive category
and its dependency list.  Writes are deterministic (sorted entries, fixed
timestamps) and atomic (temp file + replace).

Public API:
    read_archive(path) -> Archive
    probe_category(path) -> category
    write_archive(archive, path)
    read_stack(paths) -> ArchiveStack
    base_archive_paths(data_dir) -> list[str]
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import zipfile
from typing import Iterable, List

from lopatch.errors import IOFailure
from lopatch.types import (
    BASE_CATEGORIES,
    Archive,
    ArchiveStack,
    Record,
)

logger = logging.getLogger(__name__)

ARCHIVE_EXTENSION = ".pack"
MANIFEST_ENTRY = "__archive__.json"
BASE_MANIFEST_FILE = "manifest.txt"

# Fixed zip timestamp so identical content produces identical bytes.
_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------

def _read_manifest(zf: zipfile.ZipFile, path: str) -> dict:
    try:
        raw = zf.read(MANIFEST_ENTRY)
    except KeyError:
        return {}
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise IOFailure(f"Corrupt archive manifest in {path}: {e}") from e
    return data if isinstance(data, dict) else {}


def read_archive(path: str) -> Archive:
    """Read a whole archive into memory.

    Raises:
        IOFailure: If the file is missing or not a valid archive.
    """
    name = os.path.basename(path)
    try:
        with zipfile.ZipFile(path, "r") as zf:
            manifest = _read_manifest(zf, path)
            records = {}
            for info in zf.infolist():
                if info.is_dir() or info.filename == MANIFEST_ENTRY:
                    continue
                records[info.filename] = Record(
                    path=info.filename,
                    archive_name=name,
                    data=zf.read(info),
                )
    except (OSError, zipfile.BadZipFile) as e:
        raise IOFailure(f"Cannot read archive {path}: {e}") from e

    try:
        archive = Archive(
            name=name,
            category=manifest.get("category", "mod"),
            path=os.path.abspath(path),
            records=records,
            dependencies=[(bool(h), str(n)) for h, n in manifest.get("dependencies", [])],
        )
    except (ValueError, TypeError) as e:
        raise IOFailure(f"Invalid archive manifest in {path}: {e}") from e
    logger.debug("Read archive %s (%d records, %s)", path, len(archive), archive.category)
    return archive


def probe_category(path: str) -> str:
    """Return an archive's category without loading its records.

    Raises:
        IOFailure: If the file cannot be opened as an archive.
    """
    try:
        with zipfile.ZipFile(path, "r") as zf:
            return _read_manifest(zf, path).get("category", "mod")
    except (OSError, zipfile.BadZipFile) as e:
        raise IOFailure(f"Cannot probe archive {path}: {e}") from e


def read_stack(paths: Iterable[str]) -> ArchiveStack:
    """Read archives in priority order (lowest first). Directories are skipped."""
    archives: List[Archive] = []
    for p in paths:
        if os.path.isdir(p):
            continue
        archives.append(read_archive(p))
    return ArchiveStack(archives=archives)


# ---------------------------------------------------------------------------
# Write
# ---------------------------------------------------------------------------

def write_archive(archive: Archive, path: str) -> str:
    """Write an archive, overwriting any previous file at ``path``.

    Returns:
        The absolute output path.

    Raises:
        IOFailure: If the file cannot be written.
    """
    target = os.path.abspath(path)
    parent = os.path.dirname(target)
    manifest = {
        "category": archive.category,
        "dependencies": [[hard, name] for hard, name in archive.dependencies],
    }
    try:
        os.makedirs(parent, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".lopatch-", suffix=ARCHIVE_EXTENSION, dir=parent)
        os.close(fd)
        try:
            with zipfile.ZipFile(tmp, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                zf.writestr(
                    zipfile.ZipInfo(MANIFEST_ENTRY, date_time=_ZIP_EPOCH),
                    json.dumps(manifest, sort_keys=True),
                )
                for rec_path in sorted(archive.records):
                    info = zipfile.ZipInfo(rec_path, date_time=_ZIP_EPOCH)
                    info.compress_type = zipfile.ZIP_DEFLATED
                    zf.writestr(info, archive.records[rec_path].data)
            os.replace(tmp, target)
        finally:
            if os.path.exists(tmp):
                os.unlink(tmp)
    except OSError as e:
        raise IOFailure(f"Cannot write archive {target}: {e}") from e

    archive.path = target
    logger.info("Saved archive %s (%d records)", target, len(archive))
    return target


# ---------------------------------------------------------------------------
# Base game discovery
# ---------------------------------------------------------------------------

def base_archive_paths(data_dir: str) -> List[str]:
    """Absolute paths of the base-game archives in ``data_dir``.

    Uses ``manifest.txt`` (first tab-separated column of each line) when the
    data directory ships one; otherwise every archive whose category is a base
    category (boot, release, patch).  Sorted by file name.
    """
    manifest = os.path.join(data_dir, BASE_MANIFEST_FILE)
    names: List[str] = []
    if os.path.isfile(manifest):
        with open(manifest, "r", encoding="utf-8") as f:
            for line in f:
                name = line.split("\t")[0].strip()
                if name.endswith(ARCHIVE_EXTENSION) and os.path.isfile(os.path.join(data_dir, name)):
                    names.append(name)
    elif os.path.isdir(data_dir):
        for name in os.listdir(data_dir):
            if not name.endswith(ARCHIVE_EXTENSION):
                continue
            try:
                if probe_category(os.path.join(data_dir, name)) in BASE_CATEGORIES:
                    names.append(name)
            except IOFailure as e:
                logger.debug("Skipping unreadable archive %s: %s", name, e)

    return [os.path.abspath(os.path.join(data_dir, n)) for n in sorted(set(names))]
