"""
Cosmetic Passes — intro videos, script logging, dev UI

Each pass reads the winning records of the base and mod stacks plus the
override archive, and writes its results into the override archive only.
Passes are driven by the title's ``GamePasses`` entry: a None field means the
title does not support the pass and it is skipped with an info log.

Public API:
    apply_script_logging(game, override) -> bool
    apply_skip_intro(game, base, mods, override) -> list[str]
    apply_dev_ui(base, mods, override) -> list[str]
"""

from __future__ import annotations

import base64
import logging
import re
from typing import Dict, List

from lopatch.codec import decode_record, encode
from lopatch.errors import DecodeFailure
from lopatch.games import GameInfo, IntroStubPass, IntroTablePass
from lopatch.types import Archive, ArchiveStack, Record, RelationalTable, table_folder

logger = logging.getLogger(__name__)

SCRIPT_LOGGING_CONTENT = b"why not working?!!"

UI_PREFIX = "ui/"
DEV_ONLY_TRUE = 'is_dev_only="true"'
DEV_ONLY_FALSE = 'is_dev_only="false"'
HIDDEN = 'visible="false"'
SHOWN = 'visible="true"'

# Smallest videos the engines accept as valid, played back as nothing.
EMPTY_CA_VP8 = base64.b64decode(
    "Q0FNVgEAKQBWUDgwgALgAVVVhUIBAAAAAQAAAEoCAAABAAAAIQIAAABQQgCdASqAAuABAEcI"
    "hYWIhYSIAgIABhYE9waBZJ9r25snOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsn"
    "OHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsn"
    "OHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsn"
    "OHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsn"
    "OHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsn"
    "OHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsn"
    "OHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsn"
    "OHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsn"
    "OHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsn"
    "OHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnOHsnN4D+/6tQgCkAAAAhAgAA"
    "AQ=="
)

EMPTY_BIK = base64.b64decode(
    "QklLaQACAAABAAAAyAEAAAEAAACAAgAA4AEAABkAAAABAAAAAAAAAAEAAACQGwAARKwAcAAA"
    "AABBAAAACAIAAOQAAACQGwAAIPkaMKXb76+CEgKywZGxEUIS0lFhIfHgwODAwNBAYeKFAIJA"
    "QxZz0ikaUmiCpYVEjOkMcZCChBElkRNCBYFLNFssYxUIiRECCcZQlGTpowKA6ESjiF8BKEBK"
    "aFRALYDAHAEJhABBJAD7w4cPHxCEI5QqJAVLIQHp0NCwyPjg2LCQiFBASDg4QFBooDDxOgSE"
    "BIVmeS/cKC0VUZbLQ6zYC1RGCMIlosoxBNZpE5TLzBKENMFNrjrqUIsoDMc1EI3STByIEjAE"
    "SFkECVscJAAAEABgAzAAgHAA+PDhwwcAAABoAAAAV8F/ZfwQEQAAAAAAAAARAACAIG3btm3b"
    "tgGCtG3btm3bBghiAAAAAAAAAABAkLZt27Zt2wBB2rZt27ZtAwQRBGnbtm3btg0QpG3btm3b"
    "NgCFtv3/ABQEKNq2bfv/AQAAAAAAAFfBfmXsAAAAABEIAAAAEQAAgCD///////////////8B"
    "S/z///////8fWCICAAAAAAAAAKDg/wsAAAAAAFfBfmXsAAAAABEIAAAAEQAAgCD/////////"
    "//////8BS/z///////8fWCICAAAAAAAAAKDg/wsAAAAAAA=="
)

STUB_VIDEOS: Dict[str, bytes] = {"ca_vp8": EMPTY_CA_VP8, "bik": EMPTY_BIK}


# ---------------------------------------------------------------------------
# Script logging
# ---------------------------------------------------------------------------

def apply_script_logging(game: GameInfo, override: Archive) -> bool:
    """Write the script-logging activator record. Returns False if unsupported."""
    path = game.passes.script_logging_path
    if path is None:
        logger.info("Script logging is not supported for %s", game.key)
        return False
    override.insert(Record(path=path, data=SCRIPT_LOGGING_CONTENT))
    logger.info("Script logging enabled (%s)", path)
    return True


# ---------------------------------------------------------------------------
# Skip intro videos
# ---------------------------------------------------------------------------

def _winning(
    prefix: str, base: ArchiveStack, mods: ArchiveStack, override: Archive, low_priority_base: bool,
) -> List[Record]:
    """Winning copies of every record under ``prefix``, sorted by path."""
    view: Dict[str, Record] = {}
    for r in base.by_prefix(prefix):
        r = r.to_low_priority() if low_priority_base else r.copy()
        view[r.path] = r
    for r in mods.by_prefix(prefix) + override.by_prefix(prefix):
        view[r.path] = r.copy()
    return [view[p] for p in sorted(view)]


def _stub_videos(spec: IntroStubPass, override: Archive) -> List[str]:
    data = STUB_VIDEOS[spec.stub]
    for path in spec.paths:
        override.insert(Record(path=path, data=data))
    return list(spec.paths)


def _rewrite_intro_rows(table: RelationalTable, spec: IntroTablePass) -> int:
    if spec.column is None:
        position = 0 if table.columns else None
    else:
        position = table.column_position(spec.column)
    if position is None:
        return 0
    changed = 0
    for row in table.rows:
        value = row[position]
        if isinstance(value, str) and value in spec.keys:
            row[position] = value + spec.suffix if spec.suffix is not None else spec.replacement
            changed += 1
    return changed


def _rewrite_video_tables(
    spec: IntroTablePass, base: ArchiveStack, mods: ArchiveStack, override: Archive,
) -> List[str]:
    written: List[str] = []
    for table_name in spec.tables:
        prefix = table_folder(table_name)
        records = _winning(prefix, base, mods, override, low_priority_base=True)
        for record in records:
            try:
                table = decode_record(record)
            except DecodeFailure as e:
                logger.warning("Skipping video table %s: %s", record.path, e)
                continue
            if not isinstance(table, RelationalTable):
                continue
            changed = _rewrite_intro_rows(table, spec)
            record.data = encode(table, record.path)
            override.insert(record)
            written.append(record.path)
            logger.debug("Rewrote %d intro row(s) in %s", changed, record.path)
    return written


def apply_skip_intro(
    game: GameInfo, base: ArchiveStack, mods: ArchiveStack, override: Archive,
) -> List[str]:
    """Disable the title's intro videos.

    Returns:
        Paths written into the override archive.
    """
    spec = game.passes.skip_intro
    if spec is None:
        logger.info("Skipping intro videos is not supported for %s", game.key)
        return []
    if isinstance(spec, IntroStubPass):
        written = _stub_videos(spec, override)
    else:
        written = _rewrite_video_tables(spec, base, mods, override)
    logger.info("Intro videos disabled (%d record(s))", len(written))
    return written


# ---------------------------------------------------------------------------
# Dev UI
# ---------------------------------------------------------------------------

def unlock_dev_ui(text: str) -> str:
    """Turn dev-only UI elements on, making the next hidden flag after each visible."""
    text = text.replace(DEV_ONLY_TRUE, DEV_ONLY_FALSE)
    for match in reversed(list(re.finditer("is_dev_only", text))):
        pos = match.start()
        text = text[:pos] + text[pos:].replace(HIDDEN, SHOWN, 1)
    return text


def apply_dev_ui(base: ArchiveStack, mods: ArchiveStack, override: Archive) -> List[str]:
    """Unlock dev-only UI in every text record under ``ui/``.

    Returns:
        Paths written into the override archive.
    """
    records = _winning(UI_PREFIX, base, mods, override, low_priority_base=False)

    written: List[str] = []
    for record in records:
        try:
            text = record.data.decode("utf-8")
        except UnicodeDecodeError:
            continue
        if DEV_ONLY_TRUE not in text:
            continue
        override.insert(record.copy(data=unlock_dev_ui(text).encode("utf-8"), decoded=None))
        written.append(record.path)
    logger.info("Dev UI unlocked in %d file(s)", len(written))
    return written
