"""
Patcher Configuration

Configuration dataclasses for lopatch: filesystem locations, translation
corpus, SQL pipeline, and output.  Includes load_config() for reading a JSON
config file with silent fallback to compiled defaults.

Precedence (invariant, applied by the CLI):
    CLI --flag  >  LOPATCH_* env var  >  config file  >  compiled default
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(ValueError):
    """Raised when config values are out of valid range."""

    pass


def _check_range(
    errors: List[str], name: str, value, lo, hi, typ=None,
) -> None:
    """Append an error message if value is out of [lo, hi] or wrong type."""
    if typ is not None and not isinstance(value, typ):
        errors.append(f"{name}: expected {typ.__name__}, got {type(value).__name__}")
        return
    if value < lo or value > hi:
        errors.append(f"{name}: {value} not in [{lo}, {hi}]")


def _check_nonempty(errors: List[str], name: str, value) -> None:
    if not isinstance(value, str) or not value.strip():
        errors.append(f"{name}: must be a non-empty string")


@dataclass
class PathsConfig:
    """Local state locations. Empty sub-paths derive from ``home``."""
    home: str = "~/.lopatch"
    translations_local_dir: str = ""
    translations_remote_dir: str = ""
    patch_db_dir: str = ""

    def _under_home(self, value: str, default: str) -> str:
        raw = value or os.path.join(self.home, default)
        return os.path.abspath(os.path.expanduser(raw))

    @property
    def translations_local(self) -> str:
        return self._under_home(self.translations_local_dir, "translations_local")

    @property
    def translations_remote(self) -> str:
        return self._under_home(self.translations_remote_dir, "translations_remote")

    @property
    def patch_db(self) -> str:
        return self._under_home(self.patch_db_dir, "patch_db")

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_nonempty(errors, "paths.home", self.home)
        return errors


@dataclass
class TranslationConfig:
    """Community translation corpus configuration."""
    repo_url: str = "https://github.com/Frodo45127/total_war_translation_hub"
    branch: str = "master"
    remote: str = "origin"
    refresh: bool = True
    fill_missing_from_reference: bool = False

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_nonempty(errors, "translations.branch", self.branch)
        _check_nonempty(errors, "translations.remote", self.remote)
        return errors


@dataclass
class SqlConfig:
    """SQL patch pipeline configuration."""
    pool_size: int = 4
    workers: int = 4
    run_body_on_bad_metadata: bool = True
    force_rebuild: bool = False

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "sql.pool_size", self.pool_size, 1, 64, int)
        _check_range(errors, "sql.workers", self.workers, 1, 128, int)
        return errors


@dataclass
class OutputConfig:
    """Override archive output configuration."""
    write_dependencies: bool = True

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        return []


@dataclass
class PatcherConfig:
    """Top-level lopatch configuration."""
    paths: PathsConfig = field(default_factory=PathsConfig)
    translations: TranslationConfig = field(default_factory=TranslationConfig)
    sql: SqlConfig = field(default_factory=SqlConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> PatcherConfig:
        """Build config from a nested dict (e.g. JSON)."""
        kwargs: Dict[str, Any] = {}
        if "paths" in d:
            kwargs["paths"] = PathsConfig(**d["paths"])
        if "translations" in d:
            kwargs["translations"] = TranslationConfig(**d["translations"])
        if "sql" in d:
            kwargs["sql"] = SqlConfig(**d["sql"])
        if "output" in d:
            kwargs["output"] = OutputConfig(**d["output"])
        return cls(**kwargs)

    def validate(self) -> List[str]:
        """Validate all config sections. Returns list of error messages."""
        errors: List[str] = []
        errors.extend(self.paths.validate())
        errors.extend(self.translations.validate())
        errors.extend(self.sql.validate())
        errors.extend(self.output.validate())
        return errors


def load_config(
    path: Optional[str] = None, *, strict: bool = False,
) -> PatcherConfig:
    """Load config from a JSON file. Returns defaults if file missing/invalid.

    Args:
        path: Path to config.json. If None, returns compiled defaults.
        strict: If True, raise ValidationError on invalid config values.

    Returns:
        PatcherConfig with values from file or defaults.

    Raises:
        ValidationError: If strict=True and config values are out of range.
    """
    if path is None:
        cfg = PatcherConfig()
    else:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            cfg = PatcherConfig.from_dict(data)
        except (FileNotFoundError, json.JSONDecodeError, TypeError, KeyError):
            cfg = PatcherConfig()

    if strict:
        errors = cfg.validate()
        if errors:
            raise ValidationError(
                f"Config validation failed: {'; '.join(errors)}"
            )

    return cfg
