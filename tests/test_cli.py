"""Tests for the iotp CLI."""

from __future__ import annotations

import json
from pathlib import Path
from types import SimpleNamespace

import click
import pytest
import yaml
from aws_mock import MockResourceClient, lifecycle_event
from click.testing import CliRunner

from provisioner import cli as cli_module
from provisioner import main
from provisioner.cli import cli, parse_params
from provisioner.reconciler import reset_reconcilers

GROUP_PROPERTIES = {"ThingGroupName": "G1", "ThingArnList": ["arn:a"]}


@pytest.fixture(autouse=True)
def isolated(monkeypatch: pytest.MonkeyPatch):
    for var in ("RESOURCE_KIND", "AWS_REGION", "CLIENT_MAX_ATTEMPTS", "LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(cli_module, "setup_logging", lambda config=None: None)
    reset_reconcilers()
    yield
    reset_reconcilers()


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> MockResourceClient:
    mock_client = MockResourceClient()
    monkeypatch.setattr(
        main, "Boto3ResourceClient", SimpleNamespace(from_config=lambda config: mock_client)
    )
    return mock_client


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def write_event(tmp_path: Path, event: dict) -> Path:
    path = tmp_path / "event.yaml"
    path.write_text(yaml.safe_dump(event))
    return path


class TestParseParams:
    """Tests for parse_params()."""

    def test_key_value_pairs(self) -> None:
        """Test parsing repeated key=value options."""
        assert parse_params(("region=eu-west-1", "account=1=2")) == {
            "region": "eu-west-1",
            "account": "1=2",
        }

    @pytest.mark.parametrize("param", ["region", "=value"])
    def test_invalid_pair(self, param: str) -> None:
        """Test that entries without a key or '=' are rejected."""
        with pytest.raises(click.BadParameter):
            parse_params((param,))


class TestKindsCommand:
    """Tests for 'iotp kinds'."""

    def test_lists_kinds(self, runner: CliRunner) -> None:
        """Test that every kind is listed with its resource type."""
        result = runner.invoke(cli, ["kinds"])

        assert result.exit_code == 0
        assert "iot-thing-cert-policy" in result.output
        assert "Custom::GreengrassV2Deployment" in result.output


class TestRenderPolicyCommand:
    """Tests for 'iotp render-policy'."""

    def test_render(self, runner: CliRunner, tmp_path: Path) -> None:
        """Test rendering a template with thing name and extra bindings."""
        template = tmp_path / "policy.json"
        template.write_text('{"Resource": "arn:aws:iot:<%= region %>:1:client/<%= thingname %>"}')

        result = runner.invoke(
            cli,
            ["render-policy", str(template), "--thing-name", "sensor-1", "--param", "region=eu"],
        )

        assert result.exit_code == 0
        assert json.loads(result.output) == {"Resource": "arn:aws:iot:eu:1:client/sensor-1"}

    def test_unbound_parameter(self, runner: CliRunner, tmp_path: Path) -> None:
        """Test that a missing binding is a usage error."""
        template = tmp_path / "policy.json"
        template.write_text('{"Resource": "<%= region %>"}')

        result = runner.invoke(cli, ["render-policy", str(template), "--thing-name", "t"])

        assert result.exit_code == 1
        assert "Unbound template parameter" in result.output


class TestInvokeCommand:
    """Tests for 'iotp invoke'."""

    def test_invoke_create(self, runner: CliRunner, tmp_path: Path, client) -> None:
        """Test handling a Create event file and printing the response."""
        path = write_event(
            tmp_path,
            lifecycle_event("Create", GROUP_PROPERTIES, resource_type="Custom::IotThingGroup"),
        )

        result = runner.invoke(cli, ["invoke", str(path)])

        assert result.exit_code == 0, result.output
        body = json.loads(result.stdout)
        assert body["Status"] == "SUCCESS"
        assert body["PhysicalResourceId"] == client.state.thing_groups["G1"]["id"]
        assert client.state.group_members["G1"] == ["arn:a"]

    def test_invoke_with_kind(self, runner: CliRunner, tmp_path: Path, client) -> None:
        """Test that --kind routes events without a known resource type."""
        path = write_event(tmp_path, lifecycle_event("Create", GROUP_PROPERTIES))

        result = runner.invoke(cli, ["invoke", str(path), "--kind", "iot-thing-group"])

        assert result.exit_code == 0, result.output

    def test_invoke_failure_exit_code(self, runner: CliRunner, tmp_path: Path, client) -> None:
        """Test that a FAILED response exits non-zero."""
        client.fail_on("create_thing_group")
        path = write_event(
            tmp_path,
            lifecycle_event("Create", GROUP_PROPERTIES, resource_type="Custom::IotThingGroup"),
        )

        result = runner.invoke(cli, ["invoke", str(path)])

        assert result.exit_code == 1
        assert json.loads(result.stdout)["Status"] == "FAILED"

    def test_invalid_event_file(self, runner: CliRunner, tmp_path: Path, client) -> None:
        """Test that an invalid event file is reported without calls."""
        path = tmp_path / "event.yaml"
        path.write_text("RequestType: Delete\n")

        result = runner.invoke(cli, ["invoke", str(path), "--kind", "iot-thing-group"])

        assert result.exit_code == 1
        assert "PhysicalResourceId" in result.output
        assert client.calls == []

    def test_send_response(
        self, runner: CliRunner, tmp_path: Path, client, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that --send-response PUTs the body to the event's URL."""
        sent: list[tuple] = []

        def fake_send(url, body, timeout):
            sent.append((url, body))
            return True

        monkeypatch.setattr(cli_module, "send_response", fake_send)
        event = lifecycle_event(
            "Delete", GROUP_PROPERTIES, prior_identity="g-1", resource_type="Custom::IotThingGroup"
        )
        path = write_event(tmp_path, event)

        result = runner.invoke(cli, ["invoke", str(path), "--send-response"])

        assert result.exit_code == 0, result.output
        assert sent[0][0] == event["ResponseURL"]
        assert sent[0][1]["PhysicalResourceId"] == "g-1"
