"""Pydantic models for lifecycle events and resource properties.

These models provide:
1. Type-safe parsing of custom-resource request envelopes
2. Validation at the boundary (fail fast, fail loudly)
3. Per-kind property models using the wire (PascalCase) property names
"""

from __future__ import annotations

import hashlib
import json
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .config import MAX_THING_NAME_LENGTH

# Values CloudFormation uses when it stringifies boolean properties
TRUTHY_VALUES = ("true", "1", "yes")


class InvalidRequestError(Exception):
    """Raised when a lifecycle event cannot be handled at all.

    Covers unrecognized intents and envelopes violating their invariants.
    No external state is touched when this is raised.
    """

    pass


class Intent(str, Enum):
    """Lifecycle intents issued by the orchestration control plane."""

    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"


def is_truthy(value: Any) -> bool:
    """Interpret a property flag that may arrive as a bool or a string."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in TRUTHY_VALUES


# =============================================================================
# Envelope
# =============================================================================


class LifecycleEvent(BaseModel):
    """Immutable custom-resource request envelope."""

    model_config = {"extra": "ignore", "frozen": True, "populate_by_name": True}

    intent: Intent = Field(alias="RequestType")
    properties: dict[str, Any] = Field(default_factory=dict, alias="ResourceProperties")
    prior_identity: str | None = Field(None, alias="PhysicalResourceId")

    # Passthrough fields for the response channel and kind routing
    response_url: str | None = Field(None, alias="ResponseURL")
    stack_id: str | None = Field(None, alias="StackId")
    request_id: str | None = Field(None, alias="RequestId")
    logical_resource_id: str | None = Field(None, alias="LogicalResourceId")
    resource_type: str | None = Field(None, alias="ResourceType")
    service_token: str | None = Field(None, alias="ServiceToken")
    old_properties: dict[str, Any] | None = Field(None, alias="OldResourceProperties")

    @model_validator(mode="after")
    def require_prior_identity(self) -> LifecycleEvent:
        if self.intent in (Intent.UPDATE, Intent.DELETE) and not self.prior_identity:
            raise ValueError(
                f"PhysicalResourceId is required for {self.intent.value} requests"
            )
        return self

    @property
    def idempotency_token(self) -> str:
        """Token that stays the same when this request is delivered again.

        Derived from the stack, the logical resource and the properties, so a
        re-invoked Create maps onto the same external request.
        """
        material = json.dumps(
            [self.stack_id, self.logical_resource_id, self.properties],
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(material.encode("utf-8")).hexdigest()

    @property
    def fail_create(self) -> bool:
        """True when the properties request a forced Create failure."""
        return is_truthy(self.properties.get("FailCreate", False))


def parse_event(raw: Any) -> LifecycleEvent:
    """Validate a raw request mapping into a LifecycleEvent.

    Raises:
        InvalidRequestError: If the intent is unknown or the envelope is malformed.
    """
    if not isinstance(raw, dict):
        raise InvalidRequestError("Lifecycle event must be a mapping")

    try:
        return LifecycleEvent.model_validate(raw)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"]) or "event"
            errors.append(f"{loc}: {error['msg']}")
        raise InvalidRequestError("Invalid request: " + "; ".join(errors)) from e


class ReconcileResponse(BaseModel):
    """Outbound result shape delivered through the response channel."""

    model_config = {"populate_by_name": True}

    physical_resource_id: str = Field(alias="PhysicalResourceId")
    data: dict[str, str] = Field(default_factory=dict, alias="Data")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


# =============================================================================
# Resource properties
# =============================================================================


class BaseProperties(BaseModel):
    """Base for kind-specific resource properties."""

    model_config = {"extra": "ignore", "frozen": True, "populate_by_name": True}

    stack_name: str | None = Field(None, alias="StackName")


class RoleAliasProperties(BaseProperties):
    """Properties of a credential-exchange binding (IoT role alias)."""

    role_alias_name: Annotated[str, Field(min_length=1, max_length=128)] = Field(
        alias="IotRoleAliasName"
    )
    iam_role_arn: str | None = Field(None, alias="IamRoleArn")
    iam_role_name: str | None = Field(None, alias="IamRoleName")
    iam_policy: dict[str, Any] | None = Field(None, alias="IamPolicy")
    iam_policy_name: str = Field("DefaultPolicyForIotRoleAlias", alias="IamPolicyName")

    @field_validator("iam_policy", mode="before")
    @classmethod
    def parse_policy_document(cls, v: Any) -> Any:
        # CloudFormation delivers nested documents either as objects or as JSON strings
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError as e:
                raise ValueError(f"IamPolicy is not valid JSON: {e}") from e
        return v

    @model_validator(mode="after")
    def require_role_source(self) -> RoleAliasProperties:
        if not self.iam_role_arn and not self.iam_policy:
            raise ValueError("Either IamRoleArn or IamPolicy must be provided")
        return self

    @property
    def effective_role_name(self) -> str:
        return self.iam_role_name or self.role_alias_name


class ThingCertPolicyProperties(BaseProperties):
    """Properties of a device identity bundle (thing, certificate, policy)."""

    stack_name: Annotated[str, Field(min_length=1)] = Field(alias="StackName")
    thing_name: Annotated[str, Field(min_length=1, max_length=MAX_THING_NAME_LENGTH)] = Field(
        alias="ThingName"
    )
    policy_name: Annotated[str, Field(min_length=1, max_length=128)] = Field(
        alias="IotPolicyName"
    )
    policy_document: Annotated[str, Field(min_length=1)] = Field(alias="IotPolicy")
    policy_parameters: dict[str, str] = Field(
        default_factory=dict, alias="PolicyParameterMapping"
    )

    @field_validator("policy_document", mode="before")
    @classmethod
    def serialize_policy_document(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return json.dumps(v)
        return v

    @property
    def private_key_parameter(self) -> str:
        return f"/{self.stack_name}/{self.thing_name}/private_key"

    @property
    def certificate_pem_parameter(self) -> str:
        return f"/{self.stack_name}/{self.thing_name}/certificate_pem"


class ThingGroupProperties(BaseProperties):
    """Properties of a device group membership (IoT thing group)."""

    group_name: Annotated[str, Field(min_length=1, max_length=128)] = Field(
        alias="ThingGroupName"
    )
    description: str | None = Field(None, alias="ThingGroupDescription")
    thing_arns: list[str] = Field(default_factory=list, alias="ThingArnList")

    @field_validator("thing_arns", mode="before")
    @classmethod
    def default_empty_list(cls, v: Any) -> Any:
        # An omitted list may arrive as an empty string from templates
        if v is None or v == "":
            return []
        return v


class GreengrassDeploymentProperties(BaseProperties):
    """Properties of a fleet deployment (Greengrass v2 deployment)."""

    target_arn: Annotated[str, Field(min_length=1)] = Field(alias="TargetArn")
    deployment_name: str | None = Field(None, alias="DeploymentName")
    components: dict[str, Any] = Field(default_factory=dict, alias="Components")

    @field_validator("target_arn")
    @classmethod
    def validate_target_arn(cls, v: str) -> str:
        if not v.startswith("arn:"):
            raise ValueError("TargetArn must be an ARN of a thing or thing group")
        return v

    @field_validator("components", mode="before")
    @classmethod
    def parse_components(cls, v: Any) -> Any:
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError as e:
                raise ValueError(f"Components is not valid JSON: {e}") from e
        return v
