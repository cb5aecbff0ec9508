"""
lopatch — Load-order patcher for mod-managed game sessions.

Builds one override archive from the base game data, the active mod stack and
a set of transform passes: localization merge, SQL patch scripts, intro video
skipping, script logging and dev-UI unlock.
"""

__version__ = "0.1.0"

from lopatch.types import (
    Archive,
    ArchiveStack,
    LocEntry,
    LocalizationTable,
    Record,
    RelationalTable,
)
from lopatch.config import PatcherConfig, load_config
from lopatch.errors import PatcherError, PipelineError
from lopatch.games import GameInfo, game_info
from lopatch.orchestrator import LaunchOptions, assemble

__all__ = [
    "__version__",
    "Archive",
    "ArchiveStack",
    "LocEntry",
    "LocalizationTable",
    "Record",
    "RelationalTable",
    "PatcherConfig",
    "load_config",
    "PatcherError",
    "PipelineError",
    "GameInfo",
    "game_info",
    "LaunchOptions",
    "assemble",
]
