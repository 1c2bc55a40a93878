"""Forward-only execution of Create step sequences.

Steps run in order. The first failing step aborts the sequence: later steps
are reported SKIPPED and never invoked. Steps that already ran are not rolled
back; whatever they created stays discoverable and is cleaned up by a later
Delete keyed on the partial identity captured so far.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from .security import redact
from .steps import (
    FailurePolicy,
    SequenceReport,
    Step,
    StepContext,
    StepOutcome,
    StepResult,
)

logger = logging.getLogger(__name__)


class StepSequencer:
    """Runs Create steps with abort-on-first-failure semantics."""

    def run(self, steps: Sequence[Step], context: StepContext) -> SequenceReport:
        """Execute steps in order, stopping at the first abort.

        Args:
            steps: Ordered, causally dependent steps.
            context: Ephemeral invocation state; step outputs are merged into it.

        Returns:
            SequenceReport with one result per step (including skipped ones).
        """
        report = SequenceReport(kind=context.kind)
        aborted = False

        for step in steps:
            if aborted:
                report.results.append(StepResult(name=step.name, outcome=StepOutcome.SKIPPED))
                continue

            try:
                produced = step.action(context)
            except Exception as e:
                if step.on_failure is FailurePolicy.CONTINUE_AND_LOG:
                    logger.warning(
                        "Step failed, continuing",
                        extra={"kind": context.kind, "step": step.name, "error": str(e)},
                    )
                    report.results.append(
                        StepResult(name=step.name, outcome=StepOutcome.CONTINUE_WITH_ERROR, error=e)
                    )
                    continue

                logger.error(
                    "Step failed, aborting sequence",
                    extra={
                        "kind": context.kind,
                        "step": step.name,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                report.results.append(
                    StepResult(name=step.name, outcome=StepOutcome.ABORT, error=e)
                )
                aborted = True
                continue

            if produced:
                context.values.update(produced)
            logger.info(
                "Step completed",
                extra={"kind": context.kind, "step": step.name, "produced": redact(produced or {})},
            )
            report.results.append(StepResult(name=step.name, outcome=StepOutcome.SUCCESS))

        return report
