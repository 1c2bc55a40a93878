"""Tests for invocation provenance tracking."""

from __future__ import annotations

import logging
import os
from unittest.mock import patch

import pytest
from aws_mock import lifecycle_event

from provisioner.models import parse_event
from provisioner.provenance import (
    PROVISIONER_VERSION,
    InvocationProvenance,
    ProvenanceLogger,
    get_provenance_logger,
)
from provisioner.steps import StepOutcome, StepResult


class TestInvocationProvenance:
    """Tests for InvocationProvenance dataclass."""

    def test_defaults(self) -> None:
        """Test that a new record starts unsuccessful and empty."""
        provenance = InvocationProvenance()

        assert provenance.success is False
        assert provenance.steps_failed == []
        assert provenance.provisioner_version == PROVISIONER_VERSION

    def test_to_dict_serializes_timestamp(self) -> None:
        """Test that to_dict() produces an ISO timestamp."""
        provenance = InvocationProvenance(kind="iot-thing-group", identity_token="g-1")

        data = provenance.to_dict()

        assert isinstance(data["timestamp"], str)
        assert data["timestamp"] == provenance.timestamp.isoformat()
        assert data["identity_token"] == "g-1"


class TestProvenanceLogger:
    """Tests for ProvenanceLogger."""

    def test_create_provenance_from_event(self) -> None:
        """Test that request correlation fields are copied from the event."""
        with patch.dict(
            os.environ,
            {"AWS_LAMBDA_FUNCTION_NAME": "provisioner", "AWS_LAMBDA_FUNCTION_VERSION": "7"},
        ):
            provenance_logger = ProvenanceLogger()
        event = parse_event(lifecycle_event("Delete", prior_identity="g-1", request_id="req-9"))

        provenance = provenance_logger.create_provenance("iot-thing-group", event)

        assert provenance.kind == "iot-thing-group"
        assert provenance.intent == "Delete"
        assert provenance.request_id == "req-9"
        assert provenance.prior_identity == "g-1"
        assert provenance.logical_resource_id == "Resource"
        assert provenance.function_name == "provisioner"
        assert provenance.function_version == "7"

    @pytest.mark.parametrize(
        "success,error,steps_failed,level",
        [
            (True, None, [], logging.INFO),
            (True, None, ["detach-policy-targets"], logging.WARNING),
            (False, None, [], logging.ERROR),
            (False, "boom", [], logging.ERROR),
        ],
    )
    def test_log_level(
        self,
        caplog: pytest.LogCaptureFixture,
        success: bool,
        error: str | None,
        steps_failed: list[str],
        level: int,
    ) -> None:
        """Test the log level chosen for each outcome."""
        provenance = InvocationProvenance(
            kind="iot-thing-cert-policy", success=success, error=error, steps_failed=steps_failed
        )

        with caplog.at_level(logging.INFO, logger="provisioner.provenance"):
            ProvenanceLogger().log_provenance(provenance)

        record = caplog.records[-1]
        assert record.levelno == level
        assert record.getMessage() == "Invocation provenance"
        assert record.provenance["kind"] == "iot-thing-cert-policy"
        assert record.steps_failed == steps_failed

    def test_log_step_detail(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that step outcomes are correlated with the request."""
        provenance = InvocationProvenance(kind="iot-role-alias", request_id="req-1")
        result = StepResult(
            name="create-role-alias", outcome=StepOutcome.ABORT, error=RuntimeError("x")
        )

        with caplog.at_level(logging.INFO, logger="provisioner.provenance"):
            ProvenanceLogger().log_step_detail(provenance, result)

        record = caplog.records[-1]
        assert record.step == "create-role-alias"
        assert record.outcome == "abort"
        assert record.has_error is True
        assert record.request_id == "req-1"


class TestGetProvenanceLogger:
    """Tests for the global provenance logger."""

    def test_singleton(self) -> None:
        """Test that the same instance is returned."""
        assert get_provenance_logger() is get_provenance_logger()
