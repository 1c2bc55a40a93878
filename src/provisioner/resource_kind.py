"""Base class for resource kinds handled by the reconciler.

A resource kind declares:
- the pydantic model its properties are validated against
- the ordered Create steps (abort on first failure)
- the ordered teardown steps (continue past failures), tagged with the
  relationship each step releases so the order can be checked up front
- how the identity token and output attributes are derived from step values
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from typing import Any, ClassVar, TypeVar

from pydantic import ValidationError

from .client import ResourceAlreadyExists, ResourceClient
from .models import BaseProperties
from .steps import Step, StepContext
from .unwinder import validate_teardown_order

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PropertiesError(Exception):
    """Raised when resource properties fail validation for a kind."""

    pass


class ResourceKind:
    """A compound resource provisioned through an ordered set of steps."""

    name: ClassVar[str] = ""
    properties_model: ClassVar[type[BaseProperties]] = BaseProperties

    def __init__(self, client: ResourceClient) -> None:
        self._client = client
        validate_teardown_order(self.delete_steps())

    @property
    def client(self) -> ResourceClient:
        return self._client

    def parse_properties(self, raw: Mapping[str, Any]) -> BaseProperties:
        """Validate raw properties against this kind's model.

        Raises:
            PropertiesError: If validation fails.
        """
        try:
            return self.properties_model.model_validate(dict(raw))
        except ValidationError as e:
            errors = []
            for error in e.errors():
                loc = ".".join(str(x) for x in error["loc"]) or "properties"
                errors.append(f"{loc}: {error['msg']}")
            raise PropertiesError(
                f"Invalid properties for {self.name}: " + "; ".join(errors)
            ) from e

    def create_steps(self, properties: Any) -> list[Step]:
        raise NotImplementedError

    def delete_steps(self) -> list[Step]:
        raise NotImplementedError

    def identity(self, context: StepContext) -> str:
        """Identity token of a successfully created resource."""
        raise NotImplementedError

    def partial_identity(self, context: StepContext) -> str | None:
        """Best-effort identity after a failed Create; None when nothing usable exists."""
        return None

    def outputs(self, context: StepContext) -> dict[str, Any]:
        """Output attributes of a successfully created resource."""
        return {}

    @staticmethod
    def properties_of(context: StepContext) -> Any:
        """Validated properties of the current invocation.

        Raises:
            PropertiesError: If the event's properties could not be validated.
        """
        if context.properties is None:
            raise PropertiesError("Resource properties are unavailable for this invocation")
        return context.properties


class ResourceMismatchError(Exception):
    """Raised when an existing named resource differs from the requested one."""

    pass


def create_or_describe(
    create: Callable[[], T],
    describe: Callable[[], T],
    name: str,
    matches: Callable[[T], bool] | None = None,
) -> T:
    """Create a named resource, falling back to describing an existing one.

    "Already exists" is success for named resources so that a Create re-invoked
    after a host timeout converges instead of failing, provided the existing
    resource has the requested shape.

    Raises:
        ResourceMismatchError: If `matches` rejects the existing resource.
    """
    try:
        return create()
    except ResourceAlreadyExists:
        existing = describe()
        if matches is not None and not matches(existing):
            raise ResourceMismatchError(
                f"{name} already exists with a different configuration"
            ) from None
        logger.info("Resource already exists, reusing", extra={"resource": name})
        return existing


def documents_equal(left: str, right: str) -> bool:
    """Compare two JSON documents ignoring formatting and key order."""
    try:
        return json.loads(left) == json.loads(right)
    except ValueError:
        return left == right
