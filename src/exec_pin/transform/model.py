from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import List, Tuple, TypeAlias

import libcst as cst

MappingEntry: TypeAlias = Tuple[str, str]


class SkipReason(StrEnum):
    NOT_A_LAMBDA = "not-a-lambda"
    MISSING_FRAGMENT = "missing-fragment"
    KEYWORD_FRAGMENT = "keyword-fragment"
    STARRED_FRAGMENT = "starred-fragment"
    ALREADY_PINNED = "already-pinned"


@dataclass(frozen=True)
class CallSite:
    call: cst.Call
    fragment: cst.Lambda
    line: int

    @property
    def rest(self) -> tuple[cst.Arg, ...]:
        return tuple(self.call.args[1:])


@dataclass(frozen=True)
class Rewritten:
    """A helper call whose fragment went through every enabled rewrite.

    ``identifier`` is None when id mappings are disabled.
    """

    line: int
    identifier: str | None = None
    indirected_loads: int = 0


@dataclass(frozen=True)
class SkippedUnmatched:
    """A helper call left alone because its first argument is not a fragment."""

    line: int
    reason: SkipReason


CallSiteOutcome: TypeAlias = Rewritten | SkippedUnmatched


@dataclass
class TransformResult:
    source: str
    changed: bool = False
    outcomes: List[CallSiteOutcome] = field(default_factory=list)
    entries: List[MappingEntry] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def rewritten(self) -> list[Rewritten]:
        return [item for item in self.outcomes if isinstance(item, Rewritten)]

    @property
    def skipped(self) -> list[SkippedUnmatched]:
        return [item for item in self.outcomes if isinstance(item, SkippedUnmatched)]
