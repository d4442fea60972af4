from __future__ import annotations

import dataclasses
import hashlib
from typing import TYPE_CHECKING

import libcst as cst
from libcst.metadata import MetadataWrapper

from exec_pin.config import CompileOptions
from exec_pin.exceptions import SourceParseError
from exec_pin.transform.bindings import (
    BUILTIN_IMPORT,
    ImportBindings,
    resolve_helper_bindings,
    resolve_loader_bindings,
)
from exec_pin.transform.matcher import find_call_sites
from exec_pin.transform.model import (
    CallSite,
    CallSiteOutcome,
    MappingEntry,
    Rewritten,
    SkipReason,
    SkippedUnmatched,
    TransformResult,
)

if TYPE_CHECKING:
    from exec_pin.mapping_table import MappingTable

_BUILTIN_LOADER_EXPR = '"__import__"'
_IMPORTLIB_LOADER_EXPR = "\"__import__('importlib').import_module\""


def compute_identifier(fragment_source: str) -> str:
    """Content address of a fragment: SHA-256 over its exact UTF-8 text."""
    return hashlib.sha256(fragment_source.encode("utf-8")).hexdigest()


def id_reference(identifier: str) -> cst.Dict:
    return cst.Dict(
        [
            cst.DictElement(
                key=cst.SimpleString('"id"'),
                value=cst.SimpleString(f'"{identifier}"'),
            )
        ]
    )


def rewrite_call_site(
    call_site: CallSite, fragment_source: str
) -> tuple[cst.Call, MappingEntry]:
    identifier = compute_identifier(fragment_source)
    args = list(call_site.call.args)
    args[0] = args[0].with_changes(value=id_reference(identifier))
    return call_site.call.with_changes(args=args), (identifier, fragment_source)


class _LoaderIndirection(cst.CSTTransformer):
    def __init__(self, loaders: ImportBindings) -> None:
        self.loaders = loaders
        self.count = 0

    def leave_Call(self, original_node: cst.Call, updated_node: cst.Call) -> cst.BaseExpression:
        if not self.loaders.matches(original_node.func):
            return updated_node
        if len(updated_node.args) != 1:
            return updated_node
        arg = updated_node.args[0]
        if arg.star or arg.keyword is not None:
            return updated_node
        if self.loaders.target_for(original_node.func) == BUILTIN_IMPORT:
            lookup = _BUILTIN_LOADER_EXPR
        else:
            lookup = _IMPORTLIB_LOADER_EXPR
        self.count += 1
        return updated_node.with_changes(
            func=cst.Call(
                func=cst.Name("eval"),
                args=[cst.Arg(cst.SimpleString(lookup))],
            )
        )


def rewrite_eval_require(
    fragment: cst.Lambda, loaders: ImportBindings
) -> tuple[cst.Lambda, int]:
    """Hide module loads inside ``fragment`` behind a string evaluated at run time.

    ``__import__(name)`` becomes ``eval("__import__")(name)`` and
    ``importlib.import_module(name)`` (under any resolved alias) becomes
    ``eval("__import__('importlib').import_module")(name)``. Only calls with a
    single plain positional argument are rewritten.
    """
    transformer = _LoaderIndirection(loaders)
    rewritten = fragment.visit(transformer)
    if not isinstance(rewritten, cst.Lambda):  # pragma: no cover
        return fragment, 0
    return rewritten, transformer.count


class _CallSiteRewriter(cst.CSTTransformer):
    def __init__(
        self,
        *,
        module: cst.Module,
        call_sites: list[CallSite],
        options: CompileOptions,
        loaders: ImportBindings,
    ) -> None:
        self.module = module
        self.options = options
        self.loaders = loaders
        self.entries: list[MappingEntry] = []
        self.outcomes: dict[cst.Call, Rewritten] = {}
        self._sites = {site.call: site for site in call_sites}

    def leave_Call(self, original_node: cst.Call, updated_node: cst.Call) -> cst.BaseExpression:
        site = self._sites.get(original_node)
        if site is None:
            return updated_node
        fragment_source = self.module.code_for_node(site.fragment)
        call = updated_node
        loads = 0
        if self.options.eval_require.enabled:
            fragment, loads = rewrite_eval_require(site.fragment, self.loaders)
            if loads:
                args = list(call.args)
                args[0] = args[0].with_changes(value=fragment)
                call = call.with_changes(args=args)
        identifier = None
        if self.options.id_mappings.enabled:
            call, entry = rewrite_call_site(
                dataclasses.replace(site, call=call), fragment_source
            )
            identifier = entry[0]
            self.entries.append(entry)
        self.outcomes[original_node] = Rewritten(
            line=site.line, identifier=identifier, indirected_loads=loads
        )
        return call


def _skip_warning(path: str, outcome: SkippedUnmatched) -> str:
    return f"{path}:{outcome.line}: left remote-execution call unchanged ({outcome.reason})"


def transform_module(
    module: cst.Module,
    options: CompileOptions,
    table: MappingTable | None = None,
    *,
    path: str = "<string>",
) -> TransformResult:
    """Rewrite every qualifying helper call in ``module``.

    New ``(identifier, fragment)`` pairs are folded into ``table``, which must
    be the single table of the current build when id mappings are enabled.
    """
    if options.id_mappings.enabled and table is None:
        raise ValueError("a MappingTable is required when id mappings are enabled")
    source = module.code
    wrapper = MetadataWrapper(module)
    helpers = resolve_helper_bindings(wrapper, options.helpers)
    found = find_call_sites(wrapper, helpers)
    if not found:
        return TransformResult(source=source)
    warnings = [
        _skip_warning(path, item)
        for item in found
        if isinstance(item, SkippedUnmatched) and item.reason != SkipReason.ALREADY_PINNED
    ]
    call_sites = [item for item in found if isinstance(item, CallSite)]
    rewriter = _CallSiteRewriter(
        module=wrapper.module,
        call_sites=call_sites,
        options=options,
        loaders=resolve_loader_bindings(wrapper),
    )
    new_source = wrapper.module.visit(rewriter).code
    outcomes: list[CallSiteOutcome] = [
        rewriter.outcomes[item.call] if isinstance(item, CallSite) else item
        for item in found
    ]
    if table is not None and rewriter.entries:
        table.fold(rewriter.entries)
    return TransformResult(
        source=new_source,
        changed=new_source != source,
        outcomes=outcomes,
        entries=rewriter.entries,
        warnings=warnings,
    )


def transform_source(
    source: str,
    options: CompileOptions,
    table: MappingTable | None = None,
    *,
    path: str = "<string>",
) -> TransformResult:
    try:
        module = cst.parse_module(source)
    except cst.ParserSyntaxError as exc:
        raise SourceParseError(path, str(exc)) from exc
    return transform_module(module, options, table, path=path)
