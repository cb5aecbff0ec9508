"""
Supported Games — Identity Lookup Table

Per-title behaviour is data, not code: each ``GameInfo`` carries the flags and
optional pass descriptions the orchestrator needs.  ``game_info(key)`` resolves
a title once at startup; passes check for a None field instead of switching on
the key.

Public API:
    GAMES               key -> GameInfo
    game_info(key)      -> GameInfo (ValueError on unknown key)
    supported_keys()    -> sorted list of keys
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Literal, Optional, Tuple, Union

OVERRIDE_ARCHIVE_NAME = "zzzzzzzzzzzzzzzzzzzz_load_order_patch.pack"
OVERRIDE_ARCHIVE_NAME_ALTERNATIVE = "!!!!!!!!!!!!!!!!!!!!!_load_order_patch.pack"

SCRIPT_LOGGING_PATH = "script/enable_console_logging"

StubKind = Literal["ca_vp8", "bik"]


# ---------------------------------------------------------------------------
# Pass descriptions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class IntroStubPass:
    """Skip intros by overwriting each video path with an empty stub video."""
    paths: Tuple[str, ...]
    stub: StubKind = "ca_vp8"


@dataclass(frozen=True)
class IntroTablePass:
    """Skip intros by rewriting intro rows in video tables.

    ``column`` None means the first column; ``suffix`` is appended to the
    matching cell when set, otherwise the cell is replaced by ``replacement``.
    """
    keys: Tuple[str, ...]
    tables: Tuple[str, ...] = ("videos",)
    column: Optional[str] = None
    suffix: Optional[str] = None
    replacement: str = "dummy"


IntroPass = Union[IntroStubPass, IntroTablePass]


@dataclass(frozen=True)
class GamePasses:
    """Optional per-title pass implementations. None = unsupported."""
    skip_intro: Optional[IntroPass] = None
    script_logging_path: Optional[str] = None


@dataclass(frozen=True)
class GameInfo:
    """Static description of one supported title."""
    key: str
    display_name: str
    executable: str
    legacy_locs: bool = False
    utf16_load_order: bool = False
    user_script_name: Optional[str] = None
    alternative_override_name: bool = False
    hard_dependencies: bool = True
    passes: GamePasses = GamePasses()

    @property
    def override_archive_name(self) -> str:
        if self.alternative_override_name:
            return OVERRIDE_ARCHIVE_NAME_ALTERNATIVE
        return OVERRIDE_ARCHIVE_NAME

    @property
    def load_order_encoding(self) -> str:
        return "utf-16" if self.utf16_load_order else "utf-8"


# ---------------------------------------------------------------------------
# Lookup table
# ---------------------------------------------------------------------------

_STARTUP_MOVIES = ("startup_movie_01", "startup_movie_02", "startup_movie_03")

GAMES: Dict[str, GameInfo] = {
    g.key: g for g in (
        GameInfo("pharaoh_dynasties", "Pharaoh Dynasties", "Pharaoh.exe",
                 passes=GamePasses(
                     skip_intro=IntroTablePass(
                         keys=_STARTUP_MOVIES,
                         tables=("videos", "campaign_videos"),
                         column="video_name", suffix="dummy",
                     ),
                     script_logging_path=SCRIPT_LOGGING_PATH,
                 )),
        GameInfo("pharaoh", "Pharaoh", "Pharaoh.exe",
                 passes=GamePasses(
                     skip_intro=IntroTablePass(
                         keys=_STARTUP_MOVIES,
                         tables=("videos", "campaign_videos"),
                         column="video_name", suffix="dummy",
                     ),
                     script_logging_path=SCRIPT_LOGGING_PATH,
                 )),
        GameInfo("warhammer_3", "Warhammer 3", "Warhammer3.exe"),
        GameInfo("troy", "Troy", "Troy.exe",
                 passes=GamePasses(
                     skip_intro=IntroTablePass(keys=_STARTUP_MOVIES, tables=("videos",)),
                     script_logging_path=SCRIPT_LOGGING_PATH,
                 )),
        GameInfo("three_kingdoms", "Three Kingdoms", "Three_Kingdoms.exe"),
        GameInfo("warhammer_2", "Warhammer 2", "Warhammer2.exe",
                 passes=GamePasses(
                     skip_intro=IntroStubPass(paths=tuple(
                         f"movies/{name}.ca_vp8" for name in _STARTUP_MOVIES
                     )),
                     script_logging_path=SCRIPT_LOGGING_PATH,
                 )),
        GameInfo("warhammer", "Warhammer", "Warhammer.exe"),
        GameInfo("thrones_of_britannia", "Thrones of Britannia", "Thrones.exe",
                 legacy_locs=True, alternative_override_name=True,
                 hard_dependencies=False),
        GameInfo("attila", "Attila", "Attila.exe",
                 legacy_locs=True, alternative_override_name=True,
                 hard_dependencies=False,
                 passes=GamePasses(skip_intro=IntroStubPass(paths=(
                     "movies/intro.ca_vp8",
                     "movies/sega_logo_sting_hd.ca_vp8",
                 )))),
        GameInfo("rome_2", "Rome 2", "Rome2.exe",
                 legacy_locs=True, alternative_override_name=True,
                 hard_dependencies=False),
        GameInfo("shogun_2", "Shogun 2", "Shogun2.exe",
                 legacy_locs=True, alternative_override_name=True,
                 hard_dependencies=False),
        GameInfo("napoleon", "Napoleon", "Napoleon.exe",
                 legacy_locs=True, utf16_load_order=True,
                 user_script_name="user.script.txt", hard_dependencies=False,
                 passes=GamePasses(skip_intro=IntroStubPass(paths=(
                     "movies/corei7_intro.bik",
                     "movies/ntw_intro.bik",
                     "movies/sega_logo_sting_hd.bik",
                 ), stub="bik"))),
        GameInfo("empire", "Empire", "Empire.exe",
                 legacy_locs=True, utf16_load_order=True,
                 user_script_name="user.empire_script.txt", hard_dependencies=False),
    )
}


def game_info(key: str) -> GameInfo:
    """Resolve a game key. Raises ValueError for unknown titles."""
    try:
        return GAMES[key]
    except KeyError:
        raise ValueError(
            f"Unsupported game: {key!r} (expected one of: {', '.join(supported_keys())})"
        ) from None


def supported_keys() -> List[str]:
    return sorted(GAMES)
