"""Out-of-band response channel for custom-resource events.

The result of an event is not the handler's return value: it is PUT as JSON
to the pre-signed ResponseURL carried by the event. The PUT must not send a
Content-Type, otherwise the pre-signed S3 URL signature does not match.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

import requests

from .security import redact

logger = logging.getLogger(__name__)

SUCCESS = "SUCCESS"
FAILED = "FAILED"


def log_stream_reason(context: Any) -> str:
    return f"See the details in CloudWatch Log Stream: {_log_stream_name(context)}"


def _log_stream_name(context: Any) -> str:
    return getattr(context, "log_stream_name", None) or "unknown"


def build_response_body(
    status: str,
    event: Mapping[str, Any],
    context: Any,
    physical_resource_id: str | None = None,
    data: Mapping[str, str] | None = None,
    reason: str | None = None,
) -> dict[str, Any]:
    """Build the JSON body for the response PUT.

    Args:
        status: SUCCESS or FAILED.
        event: The raw request mapping (may be invalid; missing keys become "").
        context: Hosting runtime context, used for the log stream name.
        physical_resource_id: Identity token; empty values fall back to the
            prior identity, then to the log stream name.
        data: Output attributes.
        reason: Failure detail; a log stream pointer is always appended.
    """
    physical_id = (
        physical_resource_id
        or event.get("PhysicalResourceId")
        or _log_stream_name(context)
    )
    full_reason = log_stream_reason(context)
    if reason:
        full_reason = f"{reason}. {full_reason}"

    return {
        "Status": status,
        "Reason": full_reason,
        "PhysicalResourceId": physical_id,
        "StackId": event.get("StackId", ""),
        "RequestId": event.get("RequestId", ""),
        "LogicalResourceId": event.get("LogicalResourceId", ""),
        "NoEcho": False,
        "Data": dict(data or {}),
    }


def send_response(url: str | None, body: Mapping[str, Any], timeout: float) -> bool:
    """PUT the response body to the pre-signed URL.

    Failures are logged and reported through the return value; they never
    raise, since the handler has nothing left to do with them.

    Returns:
        True if the response was accepted.
    """
    if not url:
        logger.warning("No ResponseURL on event, response not sent")
        return False

    payload = json.dumps(body)
    try:
        response = requests.put(
            url,
            data=payload,
            headers={"Content-Type": "", "Content-Length": str(len(payload))},
            timeout=timeout,
        )
    except requests.RequestException as e:
        logger.error(
            "Failed to send response",
            extra={"error": str(e), "error_type": type(e).__name__},
        )
        return False

    if not response.ok:
        logger.error(
            "Response rejected",
            extra={"status_code": response.status_code, "body": response.text[:500]},
        )
        return False

    logger.info(
        "Response sent",
        extra={"status": body.get("Status"), "response": redact(dict(body))},
    )
    return True
