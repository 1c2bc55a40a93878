"""AWS IoT control-plane mock for integration testing.

This package provides an in-memory implementation of the ResourceClient
protocol so reconcilers can be exercised without AWS connectivity.

Key Features:
- In-memory state for things, certificates, policies, groups, role aliases,
  Greengrass deployments and SSM parameters
- Service-side constraints (e.g. a thing with attached principals cannot be
  deleted) so teardown ordering is actually exercised
- Call recording for call-count and ordering assertions
- Per-operation error injection for failure scenarios

Usage:
    from aws_mock import MockResourceClient, lifecycle_event

    client = MockResourceClient()
    client.fail_on("list_policy_versions")

    reconciler = Reconciler(ThingCertPolicyKind(client))
    result = reconciler.handle(lifecycle_event("Delete", props, prior_identity="cert-0001"))

    assert client.call_count("delete_thing") == 1
"""

from .client import MockResourceClient
from .events import lifecycle_event
from .state import MockIotState

__all__ = [
    "MockIotState",
    "MockResourceClient",
    "lifecycle_event",
]
