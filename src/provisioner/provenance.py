"""Invocation provenance tracking for audit.

Every handled lifecycle event produces one provenance record answering:
- "Which request created (or released) this identity token?"
- "Which steps ran, and which of them failed?"
- "What version of the provisioner handled it?"

Records are emitted through the structured logger, so they land in the
function's log group as queryable JSON.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import LifecycleEvent
    from .steps import StepResult

logger = logging.getLogger(__name__)

# Version is set at build time or falls back to dev
PROVISIONER_VERSION = os.environ.get("PROVISIONER_VERSION", "dev")


@dataclass
class InvocationProvenance:
    """Provenance record for one lifecycle event."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    # Handler identity
    kind: str = ""
    provisioner_version: str = PROVISIONER_VERSION
    function_name: str = ""
    function_version: str = ""

    # Request correlation
    intent: str = ""
    request_id: str = ""
    stack_id: str = ""
    logical_resource_id: str = ""
    prior_identity: str = ""

    # Outcome
    identity_token: str = ""
    success: bool = False
    failed_step: str | None = None
    steps_attempted: int = 0
    steps_failed: list[str] = field(default_factory=list)

    duration_seconds: float = 0.0

    error: str | None = None
    error_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        result["timestamp"] = self.timestamp.isoformat()
        return result


class ProvenanceLogger:
    """Logs provenance records for audit."""

    def __init__(self) -> None:
        self._function_name = os.environ.get("AWS_LAMBDA_FUNCTION_NAME", "")
        self._function_version = os.environ.get("AWS_LAMBDA_FUNCTION_VERSION", "")

    def create_provenance(self, kind: str, event: LifecycleEvent) -> InvocationProvenance:
        """Create a provenance record for an incoming event.

        Args:
            kind: Resource kind handling the event.
            event: The validated lifecycle event.

        Returns:
            Initialized provenance record.
        """
        return InvocationProvenance(
            kind=kind,
            provisioner_version=PROVISIONER_VERSION,
            function_name=self._function_name,
            function_version=self._function_version,
            intent=event.intent.value,
            request_id=event.request_id or "",
            stack_id=event.stack_id or "",
            logical_resource_id=event.logical_resource_id or "",
            prior_identity=event.prior_identity or "",
        )

    def log_provenance(self, provenance: InvocationProvenance) -> None:
        """Log a completed provenance record.

        Failed Creates log at ERROR; Deletes with failed unwind steps log at
        WARNING since they may have left resources behind.
        """
        log_level = logging.INFO
        if provenance.error or not provenance.success:
            log_level = logging.ERROR
        elif provenance.steps_failed:
            log_level = logging.WARNING

        logger.log(
            log_level,
            "Invocation provenance",
            extra={
                "provenance": provenance.to_dict(),
                # Flatten key fields for easier querying
                "kind": provenance.kind,
                "intent": provenance.intent,
                "request_id": provenance.request_id,
                "identity_token": provenance.identity_token,
                "success": provenance.success,
                "steps_failed": provenance.steps_failed,
                "provisioner_version": provenance.provisioner_version,
                "duration_seconds": provenance.duration_seconds,
            },
        )

    def log_step_detail(self, provenance: InvocationProvenance, result: StepResult) -> None:
        """Log one step outcome, correlated with its invocation."""
        logger.info(
            "Step outcome",
            extra={
                "kind": provenance.kind,
                "request_id": provenance.request_id,
                "step": result.name,
                "outcome": result.outcome.value,
                "has_error": result.error is not None,
            },
        )


# Global singleton for provenance logging
_provenance_logger: ProvenanceLogger | None = None


def get_provenance_logger() -> ProvenanceLogger:
    """Get the global provenance logger instance."""
    global _provenance_logger
    if _provenance_logger is None:
        _provenance_logger = ProvenanceLogger()
    return _provenance_logger
