"""Credential-exchange binding: an IoT role alias and its backing trust role.

Create optionally provisions the trust role (assumable by the IoT credentials
provider) and then the role alias pointing at it. Delete removes only the
alias; the trust role belongs to whoever declared it.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from .client import IOT_CREDENTIALS_SERVICE_PRINCIPAL
from .models import RoleAliasProperties
from .resource_kind import ResourceKind, create_or_describe
from .steps import Relationship, Step, StepContext

logger = logging.getLogger(__name__)

TRUST_ROLE_DESCRIPTION = "Allow Greengrass token exchange service to obtain temporary credentials"


class RoleAliasKind(ResourceKind):
    """IoT role alias, identified by the alias name."""

    name = "iot-role-alias"
    properties_model = RoleAliasProperties

    def create_steps(self, properties: RoleAliasProperties) -> list[Step]:
        steps = []
        if not properties.iam_role_arn:
            steps.append(Step("create-trust-role", self._create_trust_role))
        steps.append(Step("create-role-alias", self._create_role_alias))
        return steps

    def delete_steps(self) -> list[Step]:
        return [
            Step("delete-role-alias", self._delete_role_alias, relationship=Relationship.PRIMARY),
        ]

    def identity(self, context: StepContext) -> str:
        return context.require("role_alias_name")

    def partial_identity(self, context: StepContext) -> str | None:
        return context.values.get("role_alias_name")

    def outputs(self, context: StepContext) -> dict[str, Any]:
        return {
            "RoleAliasName": context.require("role_alias_name"),
            "RoleAliasArn": context.require("role_alias_arn"),
            "IamRoleArn": context.require("role_arn"),
        }

    # Create

    def _create_trust_role(self, context: StepContext) -> dict[str, Any]:
        props: RoleAliasProperties = self.properties_of(context)
        role_name = props.effective_role_name
        role = create_or_describe(
            lambda: self.client.create_role(
                role_name,
                IOT_CREDENTIALS_SERVICE_PRINCIPAL,
                TRUST_ROLE_DESCRIPTION,
            ),
            lambda: self.client.get_role(role_name),
            role_name,
        )
        # put_role_policy overwrites, so re-running converges on the same document
        self.client.put_role_policy(
            role.name, props.iam_policy_name, json.dumps(props.iam_policy)
        )
        return {"role_arn": role.arn, "role_name": role.name}

    def _create_role_alias(self, context: StepContext) -> dict[str, Any]:
        props: RoleAliasProperties = self.properties_of(context)
        role_arn = context.values.get("role_arn") or props.iam_role_arn
        alias = create_or_describe(
            lambda: self.client.create_role_alias(props.role_alias_name, role_arn),
            lambda: self.client.describe_role_alias(props.role_alias_name),
            props.role_alias_name,
            matches=lambda existing: existing.role_arn == role_arn,
        )
        return {
            "role_alias_name": alias.name,
            "role_alias_arn": alias.arn,
            "role_arn": alias.role_arn,
        }

    # Delete

    def _delete_role_alias(self, context: StepContext) -> None:
        self.client.delete_role_alias(context.prior_identity)
        logger.info("Deleted role alias", extra={"role_alias": context.prior_identity})
