"""Protection of secret material in logs and audit records.

The device identity bundle handles a freshly generated private key and the
matching certificate PEM. Both exist only in memory for the duration of one
Create invocation and are written to SecureString/String parameters. They must
never reach the logs, the audit trail or the response Data.

SECURITY INVARIANTS:
1. Every mapping logged by the reconciler passes through redact() first
2. Key material is identified by key name and by PEM markers in values
3. Writes and deletes of secret-bearing parameters emit an audit event
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

logger = logging.getLogger(__name__)

REDACTED = "***REDACTED***"

# Key names whose values are always secret (case-insensitive substring match)
SECRET_KEY_FRAGMENTS: tuple[str, ...] = (
    "private_key",
    "privatekey",
    "certificate_pem",
    "certificatepem",
    "secret",
    "password",
    "token",
)

# Key names that look secret but only hold references (parameter names)
SECRET_REFERENCE_SUFFIXES: tuple[str, ...] = ("parameter", "_parameter")

PEM_MARKER_PATTERN = re.compile(r"-----BEGIN [A-Z ]+-----")


def _is_secret_key(key: str) -> bool:
    lowered = key.lower()
    if lowered.endswith(SECRET_REFERENCE_SUFFIXES):
        return False
    return any(fragment in lowered for fragment in SECRET_KEY_FRAGMENTS)


def redact(value: Any) -> Any:
    """Return a copy of value with secret material masked.

    Mappings are walked recursively; secret keys are masked regardless of
    value, and any string carrying a PEM header is masked wherever it appears.
    """
    if isinstance(value, Mapping):
        return {
            key: REDACTED if _is_secret_key(str(key)) else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list | tuple):
        return [redact(item) for item in value]
    if isinstance(value, str) and PEM_MARKER_PATTERN.search(value):
        return REDACTED
    return value


def log_security_audit_event(
    event_type: str,
    kind: str,
    target_resource: str | None = None,
    action: str | None = None,
    result: str | None = None,
) -> None:
    """Log a security-relevant audit event.

    Args:
        event_type: Type of security event (secret_parameter, credential, ...).
        kind: Resource kind generating the event.
        target_resource: Resource being accessed (never the secret value).
        action: Action being performed.
        result: Result of the action (success, failure).
    """
    logger.info(
        f"Security audit: {event_type}",
        extra={
            "security_audit": True,
            "event_type": event_type,
            "kind": kind,
            "target_resource": target_resource,
            "action": action,
            "result": result,
        },
    )
