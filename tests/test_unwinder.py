"""Tests for teardown ordering and the best-effort unwinder."""

import pytest

from provisioner.client import ResourceClientError, ResourceNotFound
from provisioner.steps import Relationship, Step, StepContext, StepOutcome, UnwindIncomplete
from provisioner.unwinder import TeardownUnwinder, for_each, validate_teardown_order


def noop(context):
    return None


def step(name: str, relationship: Relationship) -> Step:
    return Step(name, noop, relationship=relationship)


class TestValidateTeardownOrder:
    """Tests for validate_teardown_order()."""

    def test_valid_order(self) -> None:
        """Test detaches, then owned deletes, then the primary."""
        validate_teardown_order(
            [
                step("detach-a", Relationship.ATTACHED_TO),
                step("detach-b", Relationship.ATTACHED_TO),
                step("delete-owned", Relationship.OWNS),
                step("delete-primary", Relationship.PRIMARY),
            ]
        )

    def test_primary_only(self) -> None:
        """Test a single-step teardown."""
        validate_teardown_order([step("delete", Relationship.PRIMARY)])

    def test_standalone_steps_anywhere_before_primary(self) -> None:
        """Test that standalone releases do not constrain the rank order."""
        validate_teardown_order(
            [
                step("delete-parameters", Relationship.STANDALONE),
                step("detach", Relationship.ATTACHED_TO),
                step("delete-owned", Relationship.OWNS),
                step("prune", Relationship.STANDALONE),
                step("delete-primary", Relationship.PRIMARY),
            ]
        )

    def test_detach_after_owned_delete(self) -> None:
        """Test that an edge detach after an owned delete is rejected."""
        with pytest.raises(ValueError) as exc_info:
            validate_teardown_order(
                [
                    step("delete-owned", Relationship.OWNS),
                    step("detach", Relationship.ATTACHED_TO),
                    step("delete-primary", Relationship.PRIMARY),
                ]
            )

        assert "detach" in str(exc_info.value)

    def test_primary_must_be_last(self) -> None:
        """Test that the primary delete cannot be followed by other steps."""
        with pytest.raises(ValueError):
            validate_teardown_order(
                [
                    step("delete-primary", Relationship.PRIMARY),
                    step("delete-parameters", Relationship.STANDALONE),
                ]
            )

    def test_single_primary(self) -> None:
        """Test that two primary steps are rejected."""
        with pytest.raises(ValueError):
            validate_teardown_order(
                [step("a", Relationship.PRIMARY), step("b", Relationship.PRIMARY)]
            )

    def test_empty_sequence(self) -> None:
        """Test that an empty teardown is rejected."""
        with pytest.raises(ValueError):
            validate_teardown_order([])


class TestForEach:
    """Tests for for_each()."""

    def test_all_items_processed(self) -> None:
        """Test that every item gets an attempt."""
        seen: list[str] = []

        assert for_each(["a", "b", "c"], seen.append) == 3
        assert seen == ["a", "b", "c"]

    def test_failures_collected_after_all_attempts(self) -> None:
        """Test that one failure does not stop later items."""
        seen: list[str] = []

        def action(item: str) -> None:
            seen.append(item)
            if item == "b":
                raise ResourceClientError("detach", "Throttling", "slow down")

        with pytest.raises(UnwindIncomplete) as exc_info:
            for_each(["a", "b", "c"], action)

        assert seen == ["a", "b", "c"]
        assert list(exc_info.value.failures) == ["b"]
        assert "1 item(s) failed" in str(exc_info.value)

    def test_missing_items_count_as_released(self) -> None:
        """Test that already-gone items are not failures."""

        def action(item: str) -> None:
            raise ResourceNotFound("detach", "ResourceNotFoundException", item)

        assert for_each(["a"], action) == 1


class TestTeardownUnwinder:
    """Tests for TeardownUnwinder.run()."""

    def test_continues_past_failures(self) -> None:
        """Test that every step is attempted even when earlier ones fail."""
        calls: list[str] = []

        def failing(context):
            calls.append("detach")
            raise ResourceClientError("detach", "AccessDenied", "no")

        def primary(context):
            calls.append("delete")

        steps = [
            Step("detach", failing, relationship=Relationship.ATTACHED_TO),
            Step("delete", primary, relationship=Relationship.PRIMARY),
        ]

        report = TeardownUnwinder().run(steps, StepContext(kind="k", properties=None))

        assert calls == ["detach", "delete"]
        assert report.results[0].outcome is StepOutcome.CONTINUE_WITH_ERROR
        assert report.results[1].outcome is StepOutcome.SUCCESS
        assert report.failed_step is None

    def test_not_found_is_success(self) -> None:
        """Test that a resource already gone is treated as released."""

        def gone(context):
            raise ResourceNotFound("delete", "ResourceNotFoundException", "x")

        report = TeardownUnwinder().run(
            [Step("delete", gone, relationship=Relationship.PRIMARY)],
            StepContext(kind="k", properties=None, prior_identity="x"),
        )

        assert report.succeeded
        assert report.results[0].error is None

    def test_failed_steps_logged(self, caplog) -> None:
        """Test that a summary warning names the failed steps."""

        def failing(context):
            raise RuntimeError("boom")

        with caplog.at_level("WARNING"):
            TeardownUnwinder().run(
                [Step("delete", failing, relationship=Relationship.PRIMARY)],
                StepContext(kind="k", properties=None, prior_identity="id-1"),
            )

        summary = [r for r in caplog.records if "manual cleanup" in r.getMessage()]
        assert summary[0].failed_steps == ["delete"]
        assert summary[0].identity == "id-1"
