"""IoT provisioner CLI (iotp).

Operator tooling for replaying lifecycle events outside Lambda and for
checking policy templates before they are deployed.

Usage:
    iotp kinds                                   # List resource kinds
    iotp invoke event.yaml --kind iot-thing-group
    iotp render-policy policy.json --thing-name sensor-1 --param region=eu-west-1
"""

from __future__ import annotations

import dataclasses
import json
from pathlib import Path
from types import SimpleNamespace

import click

from .config import Config, ConfigurationError
from .event_loader import EventLoadError, load_event
from .main import process_event, setup_logging
from .reconciler import KIND_REGISTRY, RESOURCE_TYPE_TO_KIND
from .response import SUCCESS, send_response
from .templating import TemplateRenderError, policy_bindings, render

# Stands in for the Lambda log stream name in locally built responses
CLI_LOG_STREAM_NAME = "iotp-cli"


def parse_params(params: tuple[str, ...]) -> dict[str, str]:
    """Parse repeated key=value options into a mapping.

    Raises:
        click.BadParameter: If an entry has no '='.
    """
    result: dict[str, str] = {}
    for param in params:
        key, sep, value = param.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected key=value, got '{param}'", param_hint="--param")
        result[key] = value
    return result


@click.group()
@click.version_option(version="0.1.0", prog_name="iotp")
def cli() -> None:
    """IoT lifecycle provisioner CLI (iotp).

    \b
    Quick Start:
        iotp kinds                     # Show registered resource kinds
        iotp invoke event.yaml         # Handle an event against AWS
        iotp render-policy policy.json --thing-name my-thing
    """
    pass


@cli.command()
def kinds() -> None:
    """List registered resource kinds and their resource types."""
    types_by_kind = {kind: rtype for rtype, kind in RESOURCE_TYPE_TO_KIND.items()}
    for name in KIND_REGISTRY:
        click.echo(f"{name:28} {types_by_kind.get(name, '')}")


@cli.command()
@click.argument("event_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--kind",
    "kind_name",
    type=click.Choice(sorted(KIND_REGISTRY)),
    help="Resource kind (default: derived from the event's ResourceType)",
)
@click.option("--region", help="AWS region (default: AWS_REGION / boto3 resolution)")
@click.option(
    "--send-response",
    "send_response_flag",
    is_flag=True,
    help="Also PUT the response to the event's ResponseURL",
)
def invoke(
    event_file: Path, kind_name: str | None, region: str | None, send_response_flag: bool
) -> None:
    """Handle a lifecycle event file against AWS and print the response."""
    try:
        config = Config.from_env()
        overrides = {}
        if kind_name:
            overrides["resource_kind"] = kind_name
        if region:
            overrides["aws_region"] = region
        if overrides:
            config = dataclasses.replace(config, **overrides)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    try:
        event = load_event(event_file)
    except EventLoadError as e:
        raise click.ClickException(str(e)) from e

    setup_logging(dataclasses.replace(config, enable_json_logging=False))

    raw = event.model_dump(by_alias=True, exclude_none=True, mode="json")
    body = process_event(raw, SimpleNamespace(log_stream_name=CLI_LOG_STREAM_NAME), config)
    click.echo(json.dumps(body, indent=2))

    if send_response_flag:
        if not send_response(event.response_url, body, config.response_timeout_seconds):
            raise click.ClickException("Failed to send response")
        click.secho("✓ Response sent", fg="green", err=True)

    if body["Status"] != SUCCESS:
        raise SystemExit(1)


@cli.command("render-policy")
@click.argument("template_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--thing-name", required=True, help="Value bound to 'thingname'")
@click.option("--param", "params", multiple=True, help="Additional binding as key=value")
def render_policy(template_file: Path, thing_name: str, params: tuple[str, ...]) -> None:
    """Render a policy template with the bindings a device bundle would use."""
    bindings = policy_bindings(thing_name, parse_params(params))
    try:
        click.echo(render(template_file.read_text(encoding="utf-8"), bindings), nl=False)
    except TemplateRenderError as e:
        raise click.ClickException(str(e)) from e


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
