"""Device group membership: an IoT thing group and its initial members."""

from __future__ import annotations

from functools import partial
from typing import Any

from .models import ThingGroupProperties
from .resource_kind import ResourceKind, create_or_describe
from .steps import Relationship, Step, StepContext


class ThingGroupKind(ResourceKind):
    """IoT thing group, identified by the group id.

    Membership edges are released by the service when the group is deleted,
    so teardown is a single step.
    """

    name = "iot-thing-group"
    properties_model = ThingGroupProperties

    def create_steps(self, properties: ThingGroupProperties) -> list[Step]:
        steps = [Step("create-thing-group", self._create_thing_group)]
        for thing_arn in properties.thing_arns:
            steps.append(Step(f"add-thing:{thing_arn}", partial(self._add_thing, thing_arn)))
        return steps

    def delete_steps(self) -> list[Step]:
        return [
            Step("delete-thing-group", self._delete_thing_group, relationship=Relationship.PRIMARY),
        ]

    def identity(self, context: StepContext) -> str:
        return context.require("group_id")

    def partial_identity(self, context: StepContext) -> str | None:
        return context.values.get("group_id")

    def outputs(self, context: StepContext) -> dict[str, Any]:
        return {
            "ThingGroupName": context.require("group_name"),
            "ThingGroupArn": context.require("group_arn"),
            "ThingGroupId": context.require("group_id"),
        }

    def _create_thing_group(self, context: StepContext) -> dict[str, Any]:
        props: ThingGroupProperties = self.properties_of(context)
        group = create_or_describe(
            lambda: self.client.create_thing_group(props.group_name, props.description),
            lambda: self.client.describe_thing_group(props.group_name),
            props.group_name,
        )
        return {"group_name": group.name, "group_arn": group.arn, "group_id": group.id}

    def _add_thing(self, thing_arn: str, context: StepContext) -> None:
        # Adding an existing member is a no-op on the service side
        self.client.add_thing_to_thing_group(context.require("group_name"), thing_arn)

    def _delete_thing_group(self, context: StepContext) -> None:
        props: ThingGroupProperties = self.properties_of(context)
        self.client.delete_thing_group(props.group_name)
