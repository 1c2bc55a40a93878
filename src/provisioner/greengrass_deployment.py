"""Fleet deployment: a Greengrass v2 deployment targeting a thing or thing group.

Delete cancels the deployment job. Software already applied on target devices
stays in place; cancellation is asynchronous on the service side.
"""

from __future__ import annotations

import logging
from typing import Any

from .models import GreengrassDeploymentProperties
from .resource_kind import ResourceKind
from .steps import Relationship, Step, StepContext

logger = logging.getLogger(__name__)


class GreengrassDeploymentKind(ResourceKind):
    """Greengrass v2 deployment, identified by the deployment id."""

    name = "greengrass-v2-deployment"
    properties_model = GreengrassDeploymentProperties

    def create_steps(self, properties: GreengrassDeploymentProperties) -> list[Step]:
        return [Step("create-deployment", self._create_deployment)]

    def delete_steps(self) -> list[Step]:
        return [
            Step("cancel-deployment", self._cancel_deployment, relationship=Relationship.PRIMARY),
        ]

    def identity(self, context: StepContext) -> str:
        return context.require("deployment_id")

    def outputs(self, context: StepContext) -> dict[str, Any]:
        return {
            "DeploymentId": context.require("deployment_id"),
            "IotJobId": context.require("iot_job_id"),
            "IotJobArn": context.require("iot_job_arn"),
        }

    def _create_deployment(self, context: StepContext) -> dict[str, Any]:
        props: GreengrassDeploymentProperties = self.properties_of(context)
        deployment = self.client.create_deployment(
            props.target_arn,
            props.deployment_name,
            props.components,
            client_token=context.request_token,
        )
        return {
            "deployment_id": deployment.deployment_id,
            "iot_job_id": deployment.iot_job_id,
            "iot_job_arn": deployment.iot_job_arn,
        }

    def _cancel_deployment(self, context: StepContext) -> None:
        self.client.cancel_deployment(context.prior_identity)
        logger.info(
            "Cancelled deployment; applied software on targets is not reverted",
            extra={"deployment_id": context.prior_identity},
        )
