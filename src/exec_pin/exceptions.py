"""Exception hierarchy for exec-pin."""

from __future__ import annotations

from pathlib import Path


class ExecPinError(RuntimeError):
    """Base class for errors surfaced to the host build pipeline."""


class SourceParseError(ExecPinError):
    """A source file could not be parsed."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed to parse {path}: {reason}")
        self.path = path
        self.reason = reason


class MappingTableError(ExecPinError):
    """Raised when the mapping table cannot be read or written."""

    def __init__(self, path: Path, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


class MappingTableCorruptError(MappingTableError):
    """The persisted table exists but is not a table this tool generated.

    Proceeding would discard a possibly valid prior table, so the build stops.
    """


class MappingTableWriteError(MappingTableError):
    """The merged table could not be written; the previous file is untouched."""
