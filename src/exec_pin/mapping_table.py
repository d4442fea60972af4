"""Append-only identifier -> fragment table shared by every file of a build.

The table is persisted as a Python module whose ``FRAGMENTS`` dict maps each
identifier to the fragment as a live ``lambda``, so the server side imports it
and calls entries directly. Entries are only ever added: one loaded from disk
stays in the table even when no file of the current build still uses it.
"""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import Iterable, Iterator
import os
import re
import stat
import tempfile
import threading

import libcst as cst

from exec_pin.exceptions import MappingTableCorruptError, MappingTableWriteError
from exec_pin.transform.model import MappingEntry

TABLE_NAME = "FRAGMENTS"
TABLE_HEADER = (
    "# Generated by exec-pin. Do not edit by hand.\n"
    "# Maps fragment identifiers to the only code the server may execute.\n"
)

_IDENTIFIER_RE = re.compile(r"^[0-9a-f]{64}$")


class TableState(StrEnum):
    LOADED = "loaded"
    ACCUMULATING = "accumulating"
    PERSISTED = "persisted"


def render_table(entries: dict[str, str]) -> str:
    if not entries:
        return f"{TABLE_HEADER}\n{TABLE_NAME} = {{}}\n"
    lines = [TABLE_HEADER, "\n", f"{TABLE_NAME} = {{\n"]
    for identifier in sorted(entries):
        lines.append(f'    "{identifier}": {entries[identifier]},\n')
    lines.append("}\n")
    return "".join(lines)


def _find_table_literal(module: cst.Module) -> cst.BaseExpression | None:
    value: cst.BaseExpression | None = None
    for stmt in module.body:
        if not isinstance(stmt, cst.SimpleStatementLine):
            continue
        for item in stmt.body:
            if not isinstance(item, cst.Assign) or len(item.targets) != 1:
                continue
            target = item.targets[0].target
            if isinstance(target, cst.Name) and target.value == TABLE_NAME:
                value = item.value
    return value


def parse_table(source: str, path: Path) -> dict[str, str]:
    try:
        module = cst.parse_module(source)
    except cst.ParserSyntaxError as exc:
        raise MappingTableCorruptError(path, f"mapping table is not valid Python: {exc}") from exc
    literal = _find_table_literal(module)
    if literal is None:
        raise MappingTableCorruptError(path, f"no {TABLE_NAME} assignment found")
    if not isinstance(literal, cst.Dict):
        raise MappingTableCorruptError(path, f"{TABLE_NAME} is not a dict literal")
    entries: dict[str, str] = {}
    for element in literal.elements:
        if not isinstance(element, cst.DictElement) or not isinstance(
            element.key, cst.SimpleString
        ):
            raise MappingTableCorruptError(path, "table keys must be string literals")
        identifier = element.key.evaluated_value
        if not isinstance(identifier, str) or not _IDENTIFIER_RE.match(identifier):
            raise MappingTableCorruptError(path, f"malformed identifier {element.key.value}")
        if not isinstance(element.value, cst.Lambda):
            raise MappingTableCorruptError(path, f"entry {identifier} is not a lambda")
        if identifier in entries:
            raise MappingTableCorruptError(path, f"duplicate identifier {identifier}")
        entries[identifier] = module.code_for_node(element.value)
    return entries


def _target_mode(path: Path) -> int:
    try:
        return stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def write_atomic(path: Path, text: str) -> None:
    """Replace ``path`` with ``text`` so readers never observe a partial file."""
    tmp_path: Path | None = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            newline="",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            tmp_path = Path(tmp.name)
            tmp.write(text)
            tmp.flush()
            os.fsync(tmp.fileno())
        # NamedTemporaryFile creates 0600; keep the mode a plain write would give.
        os.chmod(tmp_path, _target_mode(path))
        os.replace(tmp_path, path)
    except OSError as exc:
        if tmp_path is not None:
            tmp_path.unlink(missing_ok=True)
        raise MappingTableWriteError(path, f"failed to write mapping table: {exc}") from exc


class MappingTable:
    """Accumulator threaded through every per-file transform of one build.

    Construct exactly one per build. All folds and writes go through a single
    lock, so concurrent workers sharing the instance cannot lose entries.
    """

    def __init__(self, output_path: Path, entries: dict[str, str] | None = None) -> None:
        self.output_path = output_path
        self._entries: dict[str, str] = dict(entries or {})
        self._loaded = frozenset(self._entries)
        self._added: list[str] = []
        self._lock = threading.Lock()
        self.state = TableState.LOADED

    @classmethod
    def load(cls, output_path: Path) -> "MappingTable":
        try:
            source = output_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return cls(output_path)
        except (OSError, UnicodeDecodeError) as exc:
            raise MappingTableCorruptError(
                output_path, f"failed to read mapping table: {exc}"
            ) from exc
        return cls(output_path, parse_table(source, output_path))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, identifier: object) -> bool:
        with self._lock:
            return identifier in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.snapshot()))

    def get(self, identifier: str) -> str | None:
        with self._lock:
            return self._entries.get(identifier)

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._entries)

    @property
    def loaded(self) -> frozenset[str]:
        return self._loaded

    @property
    def added(self) -> list[str]:
        with self._lock:
            return list(self._added)

    def fold(self, batch: Iterable[MappingEntry]) -> list[str]:
        """Add unseen identifiers; known identifiers keep their first fragment."""
        added: list[str] = []
        with self._lock:
            for identifier, fragment in batch:
                if identifier in self._entries:
                    continue
                self._entries[identifier] = fragment
                added.append(identifier)
            self._added.extend(added)
            self.state = TableState.ACCUMULATING
        return added

    def persist(self) -> Path:
        with self._lock:
            write_atomic(self.output_path, render_table(self._entries))
            self.state = TableState.PERSISTED
        return self.output_path
