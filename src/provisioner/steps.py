"""Provisioning step model shared by the sequencer and the unwinder.

A Step is one external call (or a small group of calls against the same
relationship) with an explicit failure policy. Executing a step yields a
StepResult instead of raising, so abort-versus-continue is a decision made by
whoever runs the steps, not a side effect of where an exception escapes.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class FailurePolicy(str, Enum):
    """What to do with the remaining steps when a step fails."""

    ABORT_SEQUENCE = "abort-sequence"
    CONTINUE_AND_LOG = "continue-and-log"


class StepOutcome(str, Enum):
    """Result of executing (or not executing) a single step."""

    SUCCESS = "success"
    ABORT = "abort"
    CONTINUE_WITH_ERROR = "continue-with-error"
    SKIPPED = "skipped"


class Relationship(str, Enum):
    """How the resource touched by a step relates to the primary resource.

    Teardown must run ATTACHED_TO steps (edge detaches) before OWNS steps
    (owned sub-resources with edges) before the PRIMARY resource. STANDALONE
    sub-resources have no edges and may be released anywhere before PRIMARY.
    """

    ATTACHED_TO = "attached-to"
    OWNS = "owns"
    STANDALONE = "standalone"
    PRIMARY = "primary"


# Ordering rank used to validate teardown sequences
RELATIONSHIP_ORDER: dict[Relationship, int] = {
    Relationship.ATTACHED_TO: 0,
    Relationship.OWNS: 1,
    Relationship.PRIMARY: 2,
}


class UnwindIncomplete(Exception):
    """Raised by a step that attempted several items and some failed.

    The step keeps going after an individual failure so every discovered
    edge gets an attempt; the collected failures are reported at the end.
    """

    def __init__(self, failures: Mapping[str, Exception]) -> None:
        details = ", ".join(f"{item}: {error}" for item, error in failures.items())
        super().__init__(f"{len(failures)} item(s) failed: {details}")
        self.failures = dict(failures)


@dataclass
class StepContext:
    """Ephemeral state shared by the steps of one invocation.

    Values produced by earlier steps (a certificate ARN, a generated key) are
    carried in `values` and are discarded when the invocation ends.
    """

    kind: str
    properties: Any
    prior_identity: str | None = None
    request_token: str | None = None
    values: dict[str, Any] = field(default_factory=dict)

    def require(self, key: str) -> Any:
        """Get a value produced by an earlier step.

        Raises:
            KeyError: If no earlier step produced the value.
        """
        if key not in self.values:
            raise KeyError(f"'{key}' was not produced by an earlier step")
        return self.values[key]


StepAction = Callable[[StepContext], Mapping[str, Any] | None]


@dataclass(frozen=True)
class Step:
    """A named, idempotent external call with a failure policy."""

    name: str
    action: StepAction
    on_failure: FailurePolicy = FailurePolicy.ABORT_SEQUENCE
    relationship: Relationship = Relationship.OWNS


@dataclass
class StepResult:
    """Outcome of a single step."""

    name: str
    outcome: StepOutcome
    error: Exception | None = None

    @property
    def attempted(self) -> bool:
        return self.outcome is not StepOutcome.SKIPPED

    @property
    def failed(self) -> bool:
        return self.outcome in (StepOutcome.ABORT, StepOutcome.CONTINUE_WITH_ERROR)


@dataclass
class SequenceReport:
    """Results of running an ordered list of steps."""

    kind: str
    results: list[StepResult] = field(default_factory=list)

    @property
    def failed_step(self) -> str | None:
        """Name of the step that aborted the sequence, if any."""
        for result in self.results:
            if result.outcome is StepOutcome.ABORT:
                return result.name
        return None

    @property
    def succeeded(self) -> bool:
        return not any(result.failed for result in self.results)

    @property
    def completed_steps(self) -> list[str]:
        return [r.name for r in self.results if r.outcome is StepOutcome.SUCCESS]

    @property
    def attempted_count(self) -> int:
        return sum(1 for r in self.results if r.attempted)

    @property
    def errors(self) -> dict[str, Exception]:
        return {r.name: r.error for r in self.results if r.error is not None}
