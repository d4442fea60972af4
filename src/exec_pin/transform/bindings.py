"""Resolve which callee expressions in a module refer to a given function.

Resolution runs once per file over libcst ``QualifiedNameProvider`` metadata, so
it follows Python scoping: a helper imported inside a function qualifies, while a
parameter or local that merely shares the helper's name does not.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Collection, Iterable, Mapping, TypeAlias

import libcst as cst
from libcst.metadata import MetadataWrapper, QualifiedName, QualifiedNameProvider

BUILTIN_IMPORT = "builtins.__import__"
LOADER_QUALNAMES: tuple[str, ...] = (BUILTIN_IMPORT, "importlib.import_module")

QualifiedNameSet: TypeAlias = Collection[QualifiedName] | Callable[[], Collection[QualifiedName]]


@dataclass(frozen=True)
class ImportBindings:
    """Callee nodes of one module that resolve to a target qualified name."""

    targets: frozenset[str] = frozenset()
    callees: Mapping[cst.CSTNode, str] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.callees)

    def matches(self, func: cst.BaseExpression) -> bool:
        return func in self.callees

    def target_for(self, func: cst.BaseExpression) -> str | None:
        return self.callees.get(func)


def dotted_name(expr: cst.BaseExpression | None) -> str | None:
    if expr is None:
        return None
    if isinstance(expr, cst.Name):
        return expr.value
    if isinstance(expr, cst.Attribute):
        parts = []
        current: cst.BaseExpression = expr
        while isinstance(current, cst.Attribute):
            parts.append(current.attr.value)
            current = current.value
        if isinstance(current, cst.Name):
            parts.append(current.value)
            return ".".join(reversed(parts))
    return None


def _qualified_names(qset: QualifiedNameSet | None) -> list[str]:
    if not qset:
        return []
    if callable(qset):
        qset = qset()
    return sorted({q.name for q in qset})


def resolve_bindings(wrapper: MetadataWrapper, qualnames: Iterable[str]) -> ImportBindings:
    """Return every Name/Attribute in ``wrapper.module`` bound to one of ``qualnames``.

    A name with several reaching bindings qualifies when any of them is a
    target, so a conditional import of the helper is never missed.
    """
    targets = frozenset(qualnames)
    resolved: Mapping[cst.CSTNode, QualifiedNameSet] = wrapper.resolve(QualifiedNameProvider)
    callees: dict[cst.CSTNode, str] = {}
    for node, qset in resolved.items():
        if not isinstance(node, (cst.Name, cst.Attribute)):
            continue
        matched = [name for name in _qualified_names(qset) if name in targets]
        if matched:
            callees[node] = matched[0]
    return ImportBindings(targets=targets, callees=callees)


def resolve_helper_bindings(wrapper: MetadataWrapper, helpers: Iterable[str]) -> ImportBindings:
    return resolve_bindings(wrapper, helpers)


def resolve_loader_bindings(wrapper: MetadataWrapper) -> ImportBindings:
    return resolve_bindings(wrapper, LOADER_QUALNAMES)
