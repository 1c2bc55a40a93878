"""Lifecycle event file loading with validation.

Used by the CLI to replay recorded or hand-written events. Files are
size-limited and parsed with yaml.safe_load, which also accepts JSON.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from .config import MAX_EVENT_FILE_SIZE_BYTES
from .models import InvalidRequestError, LifecycleEvent, parse_event

logger = logging.getLogger(__name__)


class EventLoadError(Exception):
    """Raised when event loading or validation fails."""

    pass


def load_event(path: Path) -> LifecycleEvent:
    """Load and validate a lifecycle event from a YAML or JSON file.

    Args:
        path: Path to the event file.

    Returns:
        Validated LifecycleEvent.

    Raises:
        EventLoadError: If the file is missing, too large, unparseable or invalid.
    """
    if not path.exists():
        raise EventLoadError(f"Event file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise EventLoadError(f"Failed to stat event file {path}: {e}") from e

    if file_size > MAX_EVENT_FILE_SIZE_BYTES:
        raise EventLoadError(
            f"Event file exceeds maximum size of {MAX_EVENT_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise EventLoadError(f"Failed to read event file {path}: {e}") from e

    try:
        raw = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise EventLoadError(f"Invalid YAML/JSON in {path}: {e}") from e

    if not isinstance(raw, dict):
        raise EventLoadError(f"Event file must contain a mapping: {path}")

    try:
        event = parse_event(raw)
    except InvalidRequestError as e:
        raise EventLoadError(f"Validation failed for {path}: {e}") from e

    logger.info(
        "Loaded event",
        extra={
            "path": str(path),
            "intent": event.intent.value,
            "resource_type": event.resource_type,
        },
    )
    return event
