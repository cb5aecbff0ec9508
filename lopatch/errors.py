"""
Error Taxonomy

Every failure lopatch raises derives from ``PatcherError``.  Bulk steps
(table collection, projection) log and skip per-record failures; single-record
steps raise.  The SQL pipeline accumulates ``ScriptFailure`` values and raises
one terminal ``PipelineError`` after every script has been attempted.

    NetworkFailure     corpus refresh (never fatal, callers swallow it)
    IOFailure          required file access
    DecodeFailure      one record could not be decoded or encoded
    ScriptFailure      one patch script failed to execute
    ScriptFormatError  one patch script has a malformed metadata block
    PipelineError      at least one script failed
"""

from __future__ import annotations

from typing import Any, List, Optional


class PatcherError(Exception):
    """Base class for all lopatch errors."""

    pass


class NetworkFailure(PatcherError):
    """A remote refresh (translation corpus) failed."""

    pass


class IOFailure(PatcherError):
    """A required file could not be read or written."""

    pass


class DecodeFailure(PatcherError):
    """A record could not be decoded (or re-encoded)."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")


class ScriptFailure(PatcherError):
    """A patch script failed."""

    def __init__(self, script: str, message: str):
        self.script = script
        super().__init__(f"{script}: {message}")


class ScriptFormatError(ScriptFailure):
    """A patch script's metadata block is malformed."""

    pass


class PipelineError(PatcherError):
    """Terminal error of the SQL patch pipeline.

    Raised only after all scripts have been attempted and the affected tables
    re-extracted, so partial results are already in the override archive.
    """

    def __init__(
        self,
        failures: List[ScriptFailure],
        message: Optional[str] = None,
        report: Any = None,
    ):
        self.failures = list(failures)
        self.report = report
        super().__init__(
            message or f"{len(self.failures)} SQL script failure(s): "
            + "; ".join(str(f) for f in self.failures)
        )
