"""Lambda entry point for the IoT lifecycle provisioner.

The handler never raises: every outcome, including malformed requests and
requested Create failures, is reported through the response channel so the
orchestrator does not wait for a timeout. Returning normally also keeps the
runtime from retrying an event whose side effects already happened.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from .client import Boto3ResourceClient
from .config import DEFAULT_RESPONSE_TIMEOUT_SECONDS, Config, ConfigurationError
from .models import Intent, InvalidRequestError
from .reconciler import (
    CreateFailureRequested,
    ReconcileResult,
    UnknownResourceKindError,
    get_reconciler,
    resolve_kind_name,
)
from .response import FAILED, SUCCESS, build_response_body, send_response
from .security import redact

logger = logging.getLogger(__name__)

# Attributes of every LogRecord; anything else came in through extra={...}
_RESERVED_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
        "aws_request_id",
    }
)

_logging_configured = False


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(config: Config | None = None) -> None:
    """Configure structured logging with JSON output for production.

    Safe to call on every invocation; handlers are only installed once per
    process (warm Lambda containers reuse the interpreter).
    """
    global _logging_configured
    if _logging_configured:
        return

    enable_json = config.enable_json_logging if config else True
    level = config.log_level if config else "INFO"

    handler = logging.StreamHandler(sys.stdout)
    if enable_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )

    root_logger = logging.getLogger()
    # The Lambda runtime pre-installs its own plain-text handler
    if os.environ.get("AWS_LAMBDA_FUNCTION_NAME"):
        for existing in list(root_logger.handlers):
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from the AWS SDK
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    _logging_configured = True


def _failure_reason(result: ReconcileResult) -> str:
    if result.failed_step:
        return f"Step '{result.failed_step}' failed: {result.error}"
    return str(result.error) if result.error else "Unknown failure"


def _unhandled(event: Mapping[str, Any], context: Any, reason: str) -> dict[str, Any]:
    """Response for an event that could not be reconciled.

    Delete always completes from the caller's point of view: the prior identity
    is reported as released so the stack can finish its teardown.
    """
    if event.get("RequestType") == Intent.DELETE.value:
        logger.error(
            "Delete not reconciled, reporting resource as released",
            extra={"identity": event.get("PhysicalResourceId"), "reason": reason},
        )
        return build_response_body(SUCCESS, event, context)
    return build_response_body(FAILED, event, context, reason=reason)


def process_event(event: Mapping[str, Any], context: Any, config: Config) -> dict[str, Any]:
    """Handle one event and build the response body (without sending it)."""
    try:
        kind_name = resolve_kind_name(config.resource_kind, event.get("ResourceType"))
        reconciler = get_reconciler(kind_name, lambda: Boto3ResourceClient.from_config(config))
        result = reconciler.handle(event)
    except InvalidRequestError as e:
        logger.error("Invalid request", extra={"error": str(e)})
        return _unhandled(event, context, str(e))
    except CreateFailureRequested as e:
        logger.error("Create failure requested, no resources touched", extra={"error": str(e)})
        return build_response_body(FAILED, event, context, reason=str(e))
    except UnknownResourceKindError as e:
        logger.error("Unknown resource kind", extra={"error": str(e)})
        return _unhandled(event, context, str(e))
    except Exception as e:
        logger.exception("Unexpected error handling event", extra={"error": str(e)})
        return _unhandled(event, context, f"Internal error: {e}")

    if result.success:
        return build_response_body(
            SUCCESS, event, context, physical_resource_id=result.identity, data=result.outputs
        )
    return build_response_body(
        FAILED,
        event,
        context,
        physical_resource_id=result.identity,
        reason=_failure_reason(result),
    )


def handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """Lambda handler for custom-resource lifecycle events.

    Returns:
        The response body that was sent to the event's ResponseURL.
    """
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        setup_logging()
        logger.error("Configuration error", extra={"error": str(e)})
        body = _unhandled(event, context, str(e))
        send_response(event.get("ResponseURL"), body, timeout=DEFAULT_RESPONSE_TIMEOUT_SECONDS)
        return body

    setup_logging(config)
    logger.info("Received event", extra={"event": redact(event)})

    body = process_event(event, context, config)
    send_response(event.get("ResponseURL"), body, timeout=config.response_timeout_seconds)
    return body
