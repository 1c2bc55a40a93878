"""Configuration management with validation.

Configuration is read once per process from the environment and validated at
load time, so a misconfigured function fails on its first invocation instead
of half-way through a provisioning sequence.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_CLIENT_MAX_ATTEMPTS = 10
MIN_CLIENT_MAX_ATTEMPTS = 1
MAX_CLIENT_MAX_ATTEMPTS = 20

DEFAULT_RESPONSE_TIMEOUT_SECONDS = 30
MIN_RESPONSE_TIMEOUT_SECONDS = 1
MAX_RESPONSE_TIMEOUT_SECONDS = 300

# Limits on local inputs
MAX_EVENT_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max event file
MAX_THING_NAME_LENGTH = 128

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
VALID_REGION_PATTERN = r"^[a-z]{2}(-[a-z]+)+-\d$"

# Kept in sync with reconciler.KIND_REGISTRY; duplicated here so configuration
# can be validated without importing the resource kinds.
KNOWN_RESOURCE_KINDS = (
    "iot-role-alias",
    "iot-thing-cert-policy",
    "iot-thing-group",
    "greengrass-v2-deployment",
)


@dataclass(frozen=True)
class Config:
    """Provisioner configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Resource kind served by this function; None routes on the event's ResourceType
    resource_kind: str | None = None

    # AWS client behaviour
    aws_region: str | None = None
    client_max_attempts: int = DEFAULT_CLIENT_MAX_ATTEMPTS

    # Out-of-band response channel
    response_timeout_seconds: int = DEFAULT_RESPONSE_TIMEOUT_SECONDS

    # Logging
    enable_json_logging: bool = True
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        import re

        errors: list[str] = []

        if self.resource_kind is not None and self.resource_kind not in KNOWN_RESOURCE_KINDS:
            errors.append(
                f"RESOURCE_KIND must be one of {list(KNOWN_RESOURCE_KINDS)}: {self.resource_kind}"
            )

        if self.aws_region is not None and not re.match(VALID_REGION_PATTERN, self.aws_region):
            errors.append(f"AWS_REGION must be a valid AWS region: {self.aws_region}")

        if not (MIN_CLIENT_MAX_ATTEMPTS <= self.client_max_attempts <= MAX_CLIENT_MAX_ATTEMPTS):
            errors.append(
                f"CLIENT_MAX_ATTEMPTS must be between {MIN_CLIENT_MAX_ATTEMPTS} "
                f"and {MAX_CLIENT_MAX_ATTEMPTS}"
            )

        if not (
            MIN_RESPONSE_TIMEOUT_SECONDS
            <= self.response_timeout_seconds
            <= MAX_RESPONSE_TIMEOUT_SECONDS
        ):
            errors.append(
                f"RESPONSE_TIMEOUT must be between {MIN_RESPONSE_TIMEOUT_SECONDS} "
                f"and {MAX_RESPONSE_TIMEOUT_SECONDS} seconds"
            )

        if self.log_level not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            RESOURCE_KIND: Kind handled by this function (default: route by ResourceType)
            AWS_REGION: Region for AWS clients (default: boto3 resolution chain)
            CLIENT_MAX_ATTEMPTS: Retry budget per AWS call (default: 10)
            RESPONSE_TIMEOUT: Timeout for the response PUT in seconds (default: 30)
            ENABLE_JSON_LOGGING: Emit JSON logs to stdout (default: true)
            LOG_LEVEL: Root log level (default: INFO)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            resource_kind=os.environ.get("RESOURCE_KIND") or None,
            aws_region=os.environ.get("AWS_REGION") or None,
            client_max_attempts=get_int("CLIENT_MAX_ATTEMPTS", DEFAULT_CLIENT_MAX_ATTEMPTS),
            response_timeout_seconds=get_int("RESPONSE_TIMEOUT", DEFAULT_RESPONSE_TIMEOUT_SECONDS),
            enable_json_logging=get_bool("ENABLE_JSON_LOGGING", True),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
