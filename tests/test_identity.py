"""Tests for identity token and output resolution."""

from aws_mock import MockResourceClient

from provisioner.identity import (
    ENDPOINT_ERROR_SENTINEL,
    resolve_identity,
    resolve_optional,
    resolve_outputs,
)
from provisioner.models import Intent
from provisioner.steps import SequenceReport, StepContext, StepOutcome, StepResult
from provisioner.thing_group import ThingGroupKind


def report(*outcomes: StepOutcome) -> SequenceReport:
    return SequenceReport(
        kind="iot-thing-group",
        results=[StepResult(name=f"step-{i}", outcome=o) for i, o in enumerate(outcomes)],
    )


GROUP_VALUES = {"group_name": "G1", "group_arn": "arn:aws:iot:::thinggroup/G1", "group_id": "g-1"}


class TestResolveIdentity:
    """Tests for resolve_identity()."""

    def setup_method(self) -> None:
        self.kind = ThingGroupKind(MockResourceClient())

    def test_create_success(self) -> None:
        """Test that a successful Create returns the kind's identity."""
        context = StepContext(kind=self.kind.name, properties=None, values=dict(GROUP_VALUES))

        identity = resolve_identity(
            Intent.CREATE, report(StepOutcome.SUCCESS), self.kind, context
        )

        assert identity == "g-1"

    def test_create_failure_returns_partial(self) -> None:
        """Test that a failed Create returns the identity captured so far."""
        context = StepContext(kind=self.kind.name, properties=None, values=dict(GROUP_VALUES))

        identity = resolve_identity(
            Intent.CREATE,
            report(StepOutcome.SUCCESS, StepOutcome.ABORT),
            self.kind,
            context,
        )

        assert identity == "g-1"

    def test_create_failure_without_partial(self) -> None:
        """Test that nothing captured yields an empty identity."""
        context = StepContext(kind=self.kind.name, properties=None)

        assert resolve_identity(Intent.CREATE, report(StepOutcome.ABORT), self.kind, context) == ""

    def test_create_without_report(self) -> None:
        """Test a Create that never reached the sequencer."""
        context = StepContext(kind=self.kind.name, properties=None)

        assert resolve_identity(Intent.CREATE, None, self.kind, context) == ""

    def test_update_and_delete_echo_prior(self) -> None:
        """Test that Update and Delete return the prior identity unchanged."""
        context = StepContext(
            kind=self.kind.name, properties=None, prior_identity="g-9", values=dict(GROUP_VALUES)
        )

        assert resolve_identity(Intent.UPDATE, None, self.kind, context) == "g-9"
        assert (
            resolve_identity(Intent.DELETE, report(StepOutcome.ABORT), self.kind, context)
            == "g-9"
        )


class TestResolveOutputs:
    """Tests for resolve_outputs()."""

    def test_success_outputs(self) -> None:
        """Test that outputs are taken from the kind."""
        kind = ThingGroupKind(MockResourceClient())
        context = StepContext(kind=kind.name, properties=None, values=dict(GROUP_VALUES))

        assert resolve_outputs(kind, report(StepOutcome.SUCCESS), context) == {
            "ThingGroupName": "G1",
            "ThingGroupArn": "arn:aws:iot:::thinggroup/G1",
            "ThingGroupId": "g-1",
        }

    def test_failure_has_no_outputs(self) -> None:
        """Test that a failed Create returns empty outputs."""
        kind = ThingGroupKind(MockResourceClient())
        context = StepContext(kind=kind.name, properties=None, values=dict(GROUP_VALUES))

        assert resolve_outputs(kind, report(StepOutcome.ABORT), context) == {}


class TestResolveOptional:
    """Tests for resolve_optional()."""

    def test_successful_lookup(self) -> None:
        """Test that a successful lookup value is returned."""
        assert resolve_optional("endpoint", lambda: "a1.iot.eu-west-1.amazonaws.com") == (
            "a1.iot.eu-west-1.amazonaws.com"
        )

    def test_failed_lookup_returns_sentinel(self, caplog) -> None:
        """Test that a failed lookup is logged and replaced by the sentinel."""

        def lookup() -> str:
            raise RuntimeError("AccessDenied")

        with caplog.at_level("ERROR"):
            value = resolve_optional("iot:Data-ATS", lookup)

        assert value == ENDPOINT_ERROR_SENTINEL == "stack_error: see log files"
        assert caplog.records[-1].output == "iot:Data-ATS"
