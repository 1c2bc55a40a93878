"""Lifecycle reconciler: routes events to Create / Update / Delete handling.

For each resource kind:
- Create runs the kind's step sequence, aborting on the first failure and
  returning whatever partial identity was captured
- Update is an identity-preserving no-op (the modeled resources are
  immutable once created)
- Delete runs the kind's teardown sequence, continuing past failures, and
  always reports success

Only two conditions escape handle(): an envelope that cannot be parsed
(InvalidRequestError) and a requested Create failure (CreateFailureRequested).
Everything else is folded into the ReconcileResult.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .client import ResourceClient
from .greengrass_deployment import GreengrassDeploymentKind
from .identity import resolve_identity, resolve_outputs
from .models import (
    Intent,
    InvalidRequestError,
    LifecycleEvent,
    ReconcileResponse,
    parse_event,
)
from .provenance import get_provenance_logger
from .resource_kind import PropertiesError, ResourceKind
from .role_alias import RoleAliasKind
from .security import redact
from .sequencer import StepSequencer
from .steps import SequenceReport, StepContext, StepOutcome, StepResult
from .thing_cert_policy import ThingCertPolicyKind
from .thing_group import ThingGroupKind
from .unwinder import TeardownUnwinder

logger = logging.getLogger(__name__)

# Step name reported when properties fail validation before any step runs
VALIDATE_PROPERTIES_STEP = "validate-properties"

KIND_REGISTRY: dict[str, type[ResourceKind]] = {
    RoleAliasKind.name: RoleAliasKind,
    ThingCertPolicyKind.name: ThingCertPolicyKind,
    ThingGroupKind.name: ThingGroupKind,
    GreengrassDeploymentKind.name: GreengrassDeploymentKind,
}

# CloudFormation resource types declared by stacks using the provisioner
RESOURCE_TYPE_TO_KIND: dict[str, str] = {
    "Custom::IotRoleAlias": RoleAliasKind.name,
    "Custom::IotThingCertPolicy": ThingCertPolicyKind.name,
    "Custom::IotThingGroup": ThingGroupKind.name,
    "Custom::GreengrassV2Deployment": GreengrassDeploymentKind.name,
}


class CreateFailureRequested(Exception):
    """Raised when a Create event asks to fail before any external call."""

    pass


class UnknownResourceKindError(Exception):
    """Raised when no registered kind matches a name or resource type."""

    pass


@dataclass
class ReconcileResult:
    """Result of handling a single lifecycle event."""

    kind: str
    intent: Intent
    identity: str = ""
    outputs: dict[str, str] = field(default_factory=dict)
    failed_step: str | None = None
    error: Exception | None = None
    step_results: list[StepResult] = field(default_factory=list)
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if the event was handled successfully.

        Delete is always successful; failed unwind steps are reported
        through step_results and the logs only.
        """
        if self.intent is Intent.DELETE:
            return True
        return self.failed_step is None and self.error is None

    @property
    def failed_steps(self) -> list[str]:
        return [r.name for r in self.step_results if r.failed]

    def to_response(self) -> ReconcileResponse:
        return ReconcileResponse(physical_resource_id=self.identity, data=self.outputs)


class Reconciler:
    """Handles lifecycle events for one resource kind."""

    def __init__(self, kind: ResourceKind) -> None:
        self._kind = kind
        self._sequencer = StepSequencer()
        self._unwinder = TeardownUnwinder()
        self._handlers: dict[Intent, Callable[[LifecycleEvent, ReconcileResult], None]] = {
            Intent.CREATE: self._create,
            Intent.UPDATE: self._update,
            Intent.DELETE: self._delete,
        }

    @property
    def kind(self) -> ResourceKind:
        return self._kind

    def handle(self, event: LifecycleEvent | Mapping[str, Any]) -> ReconcileResult:
        """Converge the external system for one lifecycle event.

        Args:
            event: A validated event, or the raw request mapping.

        Returns:
            ReconcileResult with identity token, outputs and step outcomes.

        Raises:
            InvalidRequestError: If the event is malformed or its intent unknown.
            CreateFailureRequested: If a Create event sets FailCreate.
        """
        if not isinstance(event, LifecycleEvent):
            event = parse_event(dict(event))

        handler = self._handlers.get(event.intent)
        if handler is None:
            raise InvalidRequestError(f"Unsupported request type: {event.intent}")

        provenance_logger = get_provenance_logger()
        provenance = provenance_logger.create_provenance(self._kind.name, event)
        result = ReconcileResult(kind=self._kind.name, intent=event.intent)

        logger.info(
            "Handling lifecycle event",
            extra={
                "kind": self._kind.name,
                "intent": event.intent.value,
                "request_id": event.request_id,
                "prior_identity": event.prior_identity,
                "properties": redact(event.properties),
            },
        )

        try:
            handler(event, result)
        except Exception as e:
            result.error = e
            raise
        finally:
            result.end_time = datetime.now(UTC)
            provenance.identity_token = result.identity
            provenance.success = result.success
            provenance.failed_step = result.failed_step
            provenance.steps_attempted = sum(1 for r in result.step_results if r.attempted)
            provenance.steps_failed = result.failed_steps
            provenance.duration_seconds = result.duration_seconds
            if result.error is not None:
                provenance.error = str(result.error)
                provenance.error_type = type(result.error).__name__
            for step_result in result.step_results:
                provenance_logger.log_step_detail(provenance, step_result)
            provenance_logger.log_provenance(provenance)

        self._log_result(result)
        return result

    def _create(self, event: LifecycleEvent, result: ReconcileResult) -> None:
        if event.fail_create:
            raise CreateFailureRequested("Create failure requested")

        try:
            properties = self._kind.parse_properties(event.properties)
        except PropertiesError as e:
            logger.error(
                "Step failed, aborting sequence",
                extra={"kind": self._kind.name, "step": VALIDATE_PROPERTIES_STEP, "error": str(e)},
            )
            result.failed_step = VALIDATE_PROPERTIES_STEP
            result.error = e
            result.step_results = [
                StepResult(name=VALIDATE_PROPERTIES_STEP, outcome=StepOutcome.ABORT, error=e)
            ]
            return

        context = StepContext(
            kind=self._kind.name,
            properties=properties,
            request_token=event.idempotency_token,
        )
        report = self._sequencer.run(self._kind.create_steps(properties), context)
        self._apply_report(result, report)

        result.identity = resolve_identity(event.intent, report, self._kind, context)
        result.outputs = resolve_outputs(self._kind, report, context)

    def _update(self, event: LifecycleEvent, result: ReconcileResult) -> None:
        context = StepContext(
            kind=self._kind.name, properties=None, prior_identity=event.prior_identity
        )
        logger.info(
            "No update required; resource is immutable once created",
            extra={"kind": self._kind.name, "identity": event.prior_identity},
        )
        result.identity = resolve_identity(event.intent, None, self._kind, context)

    def _delete(self, event: LifecycleEvent, result: ReconcileResult) -> None:
        try:
            properties = self._kind.parse_properties(event.properties)
        except PropertiesError as e:
            # Steps keyed on the prior identity can still run
            logger.warning(
                "Properties invalid on Delete, teardown limited to identity-keyed steps",
                extra={"kind": self._kind.name, "error": str(e)},
            )
            properties = None

        context = StepContext(
            kind=self._kind.name, properties=properties, prior_identity=event.prior_identity
        )
        report = self._unwinder.run(self._kind.delete_steps(), context)
        self._apply_report(result, report)

        result.identity = resolve_identity(event.intent, report, self._kind, context)

    def _apply_report(self, result: ReconcileResult, report: SequenceReport) -> None:
        result.step_results = list(report.results)
        result.failed_step = report.failed_step
        if report.failed_step is not None:
            result.error = report.errors.get(report.failed_step)

    def _log_result(self, result: ReconcileResult) -> None:
        """Log the result with structured data."""
        extra: dict[str, Any] = {
            "kind": result.kind,
            "intent": result.intent.value,
            "identity": result.identity,
            "duration_seconds": result.duration_seconds,
            "steps_attempted": sum(1 for r in result.step_results if r.attempted),
            "output_keys": sorted(result.outputs),
        }

        if result.failed_step is not None:
            extra["failed_step"] = result.failed_step
        if result.error is not None:
            extra["error"] = str(result.error)

        if not result.success:
            logger.error("Lifecycle event failed", extra=extra)
        elif result.failed_steps:
            extra["failed_steps"] = result.failed_steps
            logger.warning("Lifecycle event completed with failed steps", extra=extra)
        else:
            logger.info("Lifecycle event result", extra=extra)


# =============================================================================
# Per-kind registry
# =============================================================================

_reconcilers: dict[str, Reconciler] = {}


def resolve_kind_name(kind_name: str | None, resource_type: str | None) -> str:
    """Pick the kind for an event: explicit name first, then the resource type.

    Raises:
        UnknownResourceKindError: If neither identifies a registered kind.
    """
    if kind_name:
        if kind_name not in KIND_REGISTRY:
            raise UnknownResourceKindError(f"Unknown resource kind: {kind_name}")
        return kind_name
    if resource_type and resource_type in RESOURCE_TYPE_TO_KIND:
        return RESOURCE_TYPE_TO_KIND[resource_type]
    raise UnknownResourceKindError(
        f"Cannot determine resource kind (kind={kind_name!r}, resource_type={resource_type!r})"
    )


def get_reconciler(
    kind_name: str, client_factory: Callable[[], ResourceClient]
) -> Reconciler:
    """Get the shared reconciler for a kind, constructing it on first use.

    Args:
        kind_name: Registered kind name.
        client_factory: Builds the external client; only called on first use.

    Raises:
        UnknownResourceKindError: If the kind is not registered.
    """
    reconciler = _reconcilers.get(kind_name)
    if reconciler is None:
        kind_class = KIND_REGISTRY.get(kind_name)
        if kind_class is None:
            raise UnknownResourceKindError(f"Unknown resource kind: {kind_name}")
        reconciler = Reconciler(kind_class(client_factory()))
        _reconcilers[kind_name] = reconciler
        logger.info("Initialized reconciler", extra={"kind": kind_name})
    return reconciler


def reset_reconcilers() -> None:
    """Drop all shared reconcilers (used by tests)."""
    _reconcilers.clear()
