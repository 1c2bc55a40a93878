"""Identity token and output attribute resolution.

Identity tokens by intent:
- Create, success: a value surfaced by one of the Create steps (kind-specific)
- Create, failure: the best-effort partial value captured so far, else ""
- Update / Delete: the prior identity, echoed unchanged

Outputs are only populated for a successful Create. Non-critical lookups
(informational endpoint addresses) never fail a Create; a sentinel value is
substituted instead.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from .models import Intent

if TYPE_CHECKING:
    from .resource_kind import ResourceKind
    from .steps import SequenceReport, StepContext

logger = logging.getLogger(__name__)

# Substituted for outputs whose lookup failed
ENDPOINT_ERROR_SENTINEL = "stack_error: see log files"


def resolve_identity(
    intent: Intent,
    report: SequenceReport | None,
    kind: ResourceKind,
    context: StepContext,
) -> str:
    """Compute the identity token returned to the caller.

    Args:
        intent: Intent of the event being answered.
        report: Create sequence report; None for Update/Delete or when no step ran.
        kind: Resource kind that handled the event.
        context: Invocation state (prior identity, values produced by steps).
    """
    if intent in (Intent.UPDATE, Intent.DELETE):
        return context.prior_identity or ""

    if report is not None and report.succeeded:
        return kind.identity(context)

    partial = kind.partial_identity(context)
    if partial:
        logger.warning(
            "Create failed, returning partial identity for later cleanup",
            extra={"kind": kind.name, "identity": partial},
        )
    return partial or ""


def resolve_outputs(
    kind: ResourceKind,
    report: SequenceReport,
    context: StepContext,
) -> dict[str, str]:
    """Assemble the output attributes of a successful Create.

    All values are stringified; None becomes "".
    """
    if not report.succeeded:
        return {}
    outputs = kind.outputs(context)
    return {key: "" if value is None else str(value) for key, value in outputs.items()}


def resolve_optional(name: str, lookup: Callable[[], str]) -> str:
    """Resolve a non-critical output, substituting the sentinel on failure."""
    try:
        return lookup()
    except Exception as e:
        logger.error(
            "Could not resolve optional output",
            extra={"output": name, "error": str(e), "error_type": type(e).__name__},
        )
        return ENDPOINT_ERROR_SENTINEL
