from __future__ import annotations

import libcst as cst
from libcst.metadata import MetadataWrapper, PositionProvider

from exec_pin.transform.bindings import ImportBindings
from exec_pin.transform.model import CallSite, SkipReason, SkippedUnmatched


def is_id_reference(expr: cst.BaseExpression) -> bool:
    """True for the ``{"id": "..."}`` literal left behind by a previous run."""
    if not isinstance(expr, cst.Dict) or len(expr.elements) != 1:
        return False
    element = expr.elements[0]
    if not isinstance(element, cst.DictElement):
        return False
    key, value = element.key, element.value
    return (
        isinstance(key, cst.SimpleString)
        and key.evaluated_value == "id"
        and isinstance(value, cst.SimpleString)
    )


def classify_call(call: cst.Call, line: int) -> CallSite | SkippedUnmatched:
    if not call.args:
        return SkippedUnmatched(line=line, reason=SkipReason.MISSING_FRAGMENT)
    first = call.args[0]
    if first.star:
        return SkippedUnmatched(line=line, reason=SkipReason.STARRED_FRAGMENT)
    if first.keyword is not None:
        return SkippedUnmatched(line=line, reason=SkipReason.KEYWORD_FRAGMENT)
    if isinstance(first.value, cst.Lambda):
        return CallSite(call=call, fragment=first.value, line=line)
    if is_id_reference(first.value):
        return SkippedUnmatched(line=line, reason=SkipReason.ALREADY_PINNED)
    return SkippedUnmatched(line=line, reason=SkipReason.NOT_A_LAMBDA)


class _CallSiteCollector(cst.CSTVisitor):
    METADATA_DEPENDENCIES = (PositionProvider,)

    def __init__(self, bindings: ImportBindings) -> None:
        self.bindings = bindings
        self.found: list[CallSite | SkippedUnmatched] = []
        self._fragments: set[cst.Lambda] = set()
        self._fragment_depth = 0

    def visit_Call(self, node: cst.Call) -> bool:
        # Helper calls inside a matched fragment are part of its text.
        if self._fragment_depth or not self.bindings.matches(node.func):
            return True
        line = self.get_metadata(PositionProvider, node).start.line
        outcome = classify_call(node, line)
        if isinstance(outcome, CallSite):
            self._fragments.add(outcome.fragment)
        self.found.append(outcome)
        return True

    def visit_Lambda(self, node: cst.Lambda) -> bool:
        if node in self._fragments:
            self._fragment_depth += 1
        return True

    def leave_Lambda(self, original_node: cst.Lambda) -> None:
        if original_node in self._fragments:
            self._fragment_depth -= 1


def find_call_sites(
    wrapper: MetadataWrapper, bindings: ImportBindings
) -> list[CallSite | SkippedUnmatched]:
    """Locate helper calls in source order.

    ``bindings`` must come from the same wrapper, since matching is by node.
    """
    if not bindings:
        return []
    collector = _CallSiteCollector(bindings)
    wrapper.visit(collector)
    return collector.found
