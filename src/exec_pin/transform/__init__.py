from exec_pin.transform.bindings import (
    ImportBindings,
    resolve_bindings,
    resolve_helper_bindings,
    resolve_loader_bindings,
)
from exec_pin.transform.matcher import find_call_sites
from exec_pin.transform.model import (
    CallSite,
    CallSiteOutcome,
    Rewritten,
    SkipReason,
    SkippedUnmatched,
    TransformResult,
)
from exec_pin.transform.rewriter import (
    compute_identifier,
    rewrite_call_site,
    rewrite_eval_require,
    transform_module,
    transform_source,
)

__all__ = [
    "CallSite",
    "CallSiteOutcome",
    "ImportBindings",
    "Rewritten",
    "SkipReason",
    "SkippedUnmatched",
    "TransformResult",
    "compute_identifier",
    "find_call_sites",
    "resolve_bindings",
    "resolve_helper_bindings",
    "resolve_loader_bindings",
    "rewrite_call_site",
    "rewrite_eval_require",
    "transform_module",
    "transform_source",
]
