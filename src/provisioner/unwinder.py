"""Best-effort teardown of compound resources.

Every teardown step runs with continue-and-log semantics: a failure in one
step never prevents the next one from being attempted, and the primary
resource is always attempted last. Failures are observability events only;
the Delete as a whole is always reported as successful.

Relationships are rediscovered from the external system inside each step
(list targets, list principals, ...) because operators may have changed them
out-of-band since Create.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence

from .client import ResourceNotFound
from .security import redact
from .steps import (
    RELATIONSHIP_ORDER,
    Relationship,
    SequenceReport,
    Step,
    StepContext,
    StepOutcome,
    StepResult,
    UnwindIncomplete,
)

logger = logging.getLogger(__name__)


def validate_teardown_order(steps: Sequence[Step]) -> None:
    """Check that a teardown sequence respects the relationship graph.

    Detach steps (ATTACHED_TO) must come before owned sub-resource deletes
    (OWNS), which must come before the single PRIMARY delete, which is last.
    STANDALONE steps are unconstrained apart from preceding PRIMARY.

    Raises:
        ValueError: If the sequence is out of order.
    """
    if not steps:
        raise ValueError("Teardown sequence is empty")

    previous_rank = -1
    for step in steps:
        if step.relationship is Relationship.STANDALONE:
            continue
        rank = RELATIONSHIP_ORDER[step.relationship]
        if rank < previous_rank:
            raise ValueError(
                f"Teardown step '{step.name}' ({step.relationship.value}) "
                f"is ordered after a step with a later relationship"
            )
        previous_rank = rank

    primaries = [s.name for s in steps if s.relationship is Relationship.PRIMARY]
    if len(primaries) != 1 or steps[-1].relationship is not Relationship.PRIMARY:
        raise ValueError(
            f"Teardown must end with exactly one primary resource step, got {primaries}"
        )


def for_each(items: Iterable[str], action: Callable[[str], None]) -> int:
    """Apply an unwind action to every discovered item, collecting failures.

    Every item gets an attempt even if an earlier one fails. Items that are
    already gone count as released.

    Returns:
        Number of items processed.

    Raises:
        UnwindIncomplete: If any item failed.
    """
    failures: dict[str, Exception] = {}
    count = 0
    for item in items:
        count += 1
        try:
            action(item)
        except ResourceNotFound:
            logger.info("Item already released", extra={"item": item})
        except Exception as e:
            failures[item] = e
    if failures:
        raise UnwindIncomplete(failures)
    return count


class TeardownUnwinder:
    """Runs Delete steps with continue-and-log semantics."""

    def run(self, steps: Sequence[Step], context: StepContext) -> SequenceReport:
        """Attempt every teardown step in order.

        Args:
            steps: Teardown steps, already validated with validate_teardown_order().
            context: Invocation state carrying the prior identity and properties.

        Returns:
            SequenceReport; never raises for step failures.
        """
        report = SequenceReport(kind=context.kind)

        for step in steps:
            try:
                produced = step.action(context)
            except ResourceNotFound as e:
                # Already gone: the goal of the step is met
                logger.info(
                    "Resource already released",
                    extra={"kind": context.kind, "step": step.name, "detail": str(e)},
                )
                report.results.append(StepResult(name=step.name, outcome=StepOutcome.SUCCESS))
                continue
            except Exception as e:
                logger.warning(
                    "Teardown step failed, continuing",
                    extra={
                        "kind": context.kind,
                        "step": step.name,
                        "identity": context.prior_identity,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                report.results.append(
                    StepResult(name=step.name, outcome=StepOutcome.CONTINUE_WITH_ERROR, error=e)
                )
                continue

            if produced:
                context.values.update(produced)
            logger.info(
                "Teardown step completed",
                extra={"kind": context.kind, "step": step.name, "produced": redact(produced or {})},
            )
            report.results.append(StepResult(name=step.name, outcome=StepOutcome.SUCCESS))

        failed = [r.name for r in report.results if r.failed]
        if failed:
            logger.warning(
                "Teardown finished with failed steps; resources may need manual cleanup",
                extra={
                    "kind": context.kind,
                    "identity": context.prior_identity,
                    "failed_steps": failed,
                },
            )
        return report
