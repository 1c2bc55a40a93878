"""External resource client for the AWS IoT control plane.

The reconciler only depends on the ResourceClient protocol; the boto3-backed
implementation below is the production default. Transport concerns (credentials,
retries with standard backoff, per-call timeouts) belong to botocore and are
configured once in Boto3ResourceClient.from_config().

Error translation:
    botocore ClientError codes are mapped onto a small exception family so that
    provisioning steps can make idempotency decisions without knowing about
    botocore:
    - ResourceAlreadyExists: a named resource exists (create is a no-op)
    - ResourceNotFound: the resource is already gone (delete is a no-op)
    - ResourceClientError: anything else
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

if TYPE_CHECKING:
    from .config import Config

# Principal allowed to assume roles behind an IoT role alias
IOT_CREDENTIALS_SERVICE_PRINCIPAL = "credentials.iot.amazonaws.com"

ALREADY_EXISTS_CODES = frozenset({"ResourceAlreadyExistsException", "EntityAlreadyExists"})
NOT_FOUND_CODES = frozenset({"ResourceNotFoundException", "NoSuchEntity", "ParameterNotFound"})


class ResourceClientError(Exception):
    """Raised when an external API call fails."""

    def __init__(self, operation: str, code: str, message: str) -> None:
        super().__init__(f"{operation} failed ({code}): {message}")
        self.operation = operation
        self.code = code
        self.message = message


class ResourceAlreadyExists(ResourceClientError):
    """The named resource already exists."""

    pass


class ResourceNotFound(ResourceClientError):
    """The resource does not exist (or no longer exists)."""

    pass


@dataclass(frozen=True)
class ResourceRef:
    """Identifiers returned by create/describe calls."""

    name: str
    arn: str
    id: str | None = None


@dataclass(frozen=True)
class KeysAndCertificate:
    """An issued certificate and its key pair.

    The private key only exists in this object for the duration of one
    Create invocation; it is persisted to the parameter store and never logged.
    """

    certificate_id: str
    certificate_arn: str
    certificate_pem: str
    private_key: str


@dataclass(frozen=True)
class CertificateDescription:
    """Status and public PEM of an issued certificate."""

    certificate_id: str
    certificate_arn: str
    status: str
    certificate_pem: str


@dataclass(frozen=True)
class PolicyDescription:
    """An IoT policy and its default document."""

    name: str
    arn: str
    document: str


@dataclass(frozen=True)
class RoleAliasDescription:
    """An IoT role alias and the role it points at."""

    name: str
    arn: str
    role_arn: str


@dataclass(frozen=True)
class PolicyVersion:
    """A single version of an IoT policy."""

    version_id: str
    is_default: bool


@dataclass(frozen=True)
class DeploymentRef:
    """Identifiers of a Greengrass v2 deployment."""

    deployment_id: str
    iot_job_id: str
    iot_job_arn: str


class ResourceClient(Protocol):
    """Capability set consumed by the resource kinds."""

    # Things
    def create_thing(self, thing_name: str) -> ResourceRef: ...
    def describe_thing(self, thing_name: str) -> ResourceRef: ...
    def delete_thing(self, thing_name: str) -> None: ...

    # Certificates
    def create_keys_and_certificate(self) -> KeysAndCertificate: ...
    def describe_certificate(self, certificate_id: str) -> CertificateDescription: ...
    def update_certificate_status(self, certificate_id: str, status: str) -> None: ...
    def delete_certificate(self, certificate_id: str) -> None: ...

    # Policies
    def create_policy(self, policy_name: str, policy_document: str) -> PolicyDescription: ...
    def get_policy(self, policy_name: str) -> PolicyDescription: ...
    def delete_policy(self, policy_name: str) -> None: ...
    def list_policy_versions(self, policy_name: str) -> list[PolicyVersion]: ...
    def delete_policy_version(self, policy_name: str, version_id: str) -> None: ...
    def list_targets_for_policy(self, policy_name: str) -> list[str]: ...
    def attach_policy(self, policy_name: str, target: str) -> None: ...
    def detach_policy(self, policy_name: str, target: str) -> None: ...
    def list_attached_policies(self, target: str) -> list[str]: ...

    # Thing <-> principal edges
    def attach_thing_principal(self, thing_name: str, principal: str) -> None: ...
    def detach_thing_principal(self, thing_name: str, principal: str) -> None: ...
    def list_thing_principals(self, thing_name: str) -> list[str]: ...
    def list_principal_things(self, principal: str) -> list[str]: ...

    # Thing groups
    def create_thing_group(self, group_name: str, description: str | None) -> ResourceRef: ...
    def describe_thing_group(self, group_name: str) -> ResourceRef: ...
    def add_thing_to_thing_group(self, group_name: str, thing_arn: str) -> None: ...
    def delete_thing_group(self, group_name: str) -> None: ...

    # Trust roles and role aliases
    def create_role(self, role_name: str, trust_service: str, description: str) -> ResourceRef: ...
    def get_role(self, role_name: str) -> ResourceRef: ...
    def put_role_policy(self, role_name: str, policy_name: str, policy_document: str) -> None: ...
    def create_role_alias(self, role_alias: str, role_arn: str) -> RoleAliasDescription: ...
    def describe_role_alias(self, role_alias: str) -> RoleAliasDescription: ...
    def delete_role_alias(self, role_alias: str) -> None: ...

    # Greengrass v2 deployments
    def create_deployment(
        self,
        target_arn: str,
        deployment_name: str | None,
        components: dict[str, Any],
        client_token: str | None = None,
    ) -> DeploymentRef: ...
    def cancel_deployment(self, deployment_id: str) -> None: ...

    # Secret-bearing parameters
    def put_parameter(self, name: str, value: str, description: str, secure: bool) -> None: ...
    def get_parameter(self, name: str, decrypt: bool) -> str: ...
    def delete_parameters(self, names: list[str]) -> list[str]: ...

    # Endpoints
    def describe_endpoint(self, endpoint_type: str) -> str: ...


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    """Map botocore failures onto the ResourceClientError family."""
    try:
        yield
    except ClientError as e:
        error = e.response.get("Error", {})
        code = error.get("Code", "Unknown")
        message = error.get("Message", str(e))
        if code in ALREADY_EXISTS_CODES:
            raise ResourceAlreadyExists(operation, code, message) from e
        if code in NOT_FOUND_CODES:
            raise ResourceNotFound(operation, code, message) from e
        raise ResourceClientError(operation, code, message) from e
    except BotoCoreError as e:
        raise ResourceClientError(operation, type(e).__name__, str(e)) from e


def trust_policy_document(service: str) -> str:
    """Build the assume-role policy allowing a service principal."""
    return json.dumps(
        {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Principal": {"Service": service},
                    "Action": "sts:AssumeRole",
                }
            ],
        }
    )


class Boto3ResourceClient:
    """ResourceClient backed by boto3 IoT, IAM, SSM and Greengrass v2 clients."""

    def __init__(self, iot: Any, iam: Any, ssm: Any, greengrass: Any) -> None:
        self._iot = iot
        self._iam = iam
        self._ssm = ssm
        self._greengrass = greengrass

    @classmethod
    def from_config(cls, config: Config) -> Boto3ResourceClient:
        """Create clients with bounded retries and standard backoff."""
        boto_config = BotoConfig(
            retries={"max_attempts": config.client_max_attempts, "mode": "standard"}
        )
        session = boto3.session.Session(region_name=config.aws_region)
        return cls(
            iot=session.client("iot", config=boto_config),
            iam=session.client("iam", config=boto_config),
            ssm=session.client("ssm", config=boto_config),
            greengrass=session.client("greengrassv2", config=boto_config),
        )

    def _paginate(self, operation: str, result_key: str, **kwargs: Any) -> list[Any]:
        items: list[Any] = []
        with _translate_errors(operation):
            for page in self._iot.get_paginator(operation).paginate(**kwargs):
                items.extend(page.get(result_key, []))
        return items

    # Things

    def create_thing(self, thing_name: str) -> ResourceRef:
        with _translate_errors("create_thing"):
            response = self._iot.create_thing(thingName=thing_name)
        return ResourceRef(
            name=response["thingName"], arn=response["thingArn"], id=response.get("thingId")
        )

    def describe_thing(self, thing_name: str) -> ResourceRef:
        with _translate_errors("describe_thing"):
            response = self._iot.describe_thing(thingName=thing_name)
        return ResourceRef(
            name=response["thingName"], arn=response["thingArn"], id=response.get("thingId")
        )

    def delete_thing(self, thing_name: str) -> None:
        with _translate_errors("delete_thing"):
            self._iot.delete_thing(thingName=thing_name)

    # Certificates

    def create_keys_and_certificate(self) -> KeysAndCertificate:
        with _translate_errors("create_keys_and_certificate"):
            response = self._iot.create_keys_and_certificate(setAsActive=True)
        return KeysAndCertificate(
            certificate_id=response["certificateId"],
            certificate_arn=response["certificateArn"],
            certificate_pem=response["certificatePem"],
            private_key=response["keyPair"]["PrivateKey"],
        )

    def describe_certificate(self, certificate_id: str) -> CertificateDescription:
        with _translate_errors("describe_certificate"):
            response = self._iot.describe_certificate(certificateId=certificate_id)
        description = response["certificateDescription"]
        return CertificateDescription(
            certificate_id=description["certificateId"],
            certificate_arn=description["certificateArn"],
            status=description.get("status", ""),
            certificate_pem=description.get("certificatePem", ""),
        )

    def update_certificate_status(self, certificate_id: str, status: str) -> None:
        with _translate_errors("update_certificate"):
            self._iot.update_certificate(certificateId=certificate_id, newStatus=status)

    def delete_certificate(self, certificate_id: str) -> None:
        with _translate_errors("delete_certificate"):
            self._iot.delete_certificate(certificateId=certificate_id)

    # Policies

    def create_policy(self, policy_name: str, policy_document: str) -> PolicyDescription:
        with _translate_errors("create_policy"):
            response = self._iot.create_policy(
                policyName=policy_name, policyDocument=policy_document
            )
        return PolicyDescription(
            name=response["policyName"],
            arn=response["policyArn"],
            document=response.get("policyDocument", policy_document),
        )

    def get_policy(self, policy_name: str) -> PolicyDescription:
        with _translate_errors("get_policy"):
            response = self._iot.get_policy(policyName=policy_name)
        return PolicyDescription(
            name=response["policyName"],
            arn=response["policyArn"],
            document=response.get("policyDocument", ""),
        )

    def delete_policy(self, policy_name: str) -> None:
        with _translate_errors("delete_policy"):
            self._iot.delete_policy(policyName=policy_name)

    def list_policy_versions(self, policy_name: str) -> list[PolicyVersion]:
        # IoT keeps at most five versions per policy, so no pagination
        with _translate_errors("list_policy_versions"):
            response = self._iot.list_policy_versions(policyName=policy_name)
        return [
            PolicyVersion(version_id=v["versionId"], is_default=bool(v.get("isDefaultVersion")))
            for v in response.get("policyVersions", [])
        ]

    def delete_policy_version(self, policy_name: str, version_id: str) -> None:
        with _translate_errors("delete_policy_version"):
            self._iot.delete_policy_version(policyName=policy_name, policyVersionId=version_id)

    def list_targets_for_policy(self, policy_name: str) -> list[str]:
        return self._paginate("list_targets_for_policy", "targets", policyName=policy_name)

    def attach_policy(self, policy_name: str, target: str) -> None:
        with _translate_errors("attach_policy"):
            self._iot.attach_policy(policyName=policy_name, target=target)

    def detach_policy(self, policy_name: str, target: str) -> None:
        with _translate_errors("detach_policy"):
            self._iot.detach_policy(policyName=policy_name, target=target)

    def list_attached_policies(self, target: str) -> list[str]:
        policies = self._paginate("list_attached_policies", "policies", target=target)
        return [p["policyName"] for p in policies]

    # Thing <-> principal edges

    def attach_thing_principal(self, thing_name: str, principal: str) -> None:
        with _translate_errors("attach_thing_principal"):
            self._iot.attach_thing_principal(thingName=thing_name, principal=principal)

    def detach_thing_principal(self, thing_name: str, principal: str) -> None:
        with _translate_errors("detach_thing_principal"):
            self._iot.detach_thing_principal(thingName=thing_name, principal=principal)

    def list_thing_principals(self, thing_name: str) -> list[str]:
        return self._paginate("list_thing_principals", "principals", thingName=thing_name)

    def list_principal_things(self, principal: str) -> list[str]:
        return self._paginate("list_principal_things", "things", principal=principal)

    # Thing groups

    def create_thing_group(self, group_name: str, description: str | None) -> ResourceRef:
        kwargs: dict[str, Any] = {"thingGroupName": group_name}
        if description:
            kwargs["thingGroupProperties"] = {"thingGroupDescription": description}
        with _translate_errors("create_thing_group"):
            response = self._iot.create_thing_group(**kwargs)
        return ResourceRef(
            name=response["thingGroupName"],
            arn=response["thingGroupArn"],
            id=response["thingGroupId"],
        )

    def describe_thing_group(self, group_name: str) -> ResourceRef:
        with _translate_errors("describe_thing_group"):
            response = self._iot.describe_thing_group(thingGroupName=group_name)
        return ResourceRef(
            name=response["thingGroupName"],
            arn=response["thingGroupArn"],
            id=response["thingGroupId"],
        )

    def add_thing_to_thing_group(self, group_name: str, thing_arn: str) -> None:
        with _translate_errors("add_thing_to_thing_group"):
            self._iot.add_thing_to_thing_group(thingGroupName=group_name, thingArn=thing_arn)

    def delete_thing_group(self, group_name: str) -> None:
        with _translate_errors("delete_thing_group"):
            self._iot.delete_thing_group(thingGroupName=group_name)

    # Trust roles and role aliases

    def create_role(self, role_name: str, trust_service: str, description: str) -> ResourceRef:
        with _translate_errors("create_role"):
            response = self._iam.create_role(
                RoleName=role_name,
                AssumeRolePolicyDocument=trust_policy_document(trust_service),
                Description=description,
            )
        role = response["Role"]
        return ResourceRef(name=role["RoleName"], arn=role["Arn"], id=role.get("RoleId"))

    def get_role(self, role_name: str) -> ResourceRef:
        with _translate_errors("get_role"):
            response = self._iam.get_role(RoleName=role_name)
        role = response["Role"]
        return ResourceRef(name=role["RoleName"], arn=role["Arn"], id=role.get("RoleId"))

    def put_role_policy(self, role_name: str, policy_name: str, policy_document: str) -> None:
        with _translate_errors("put_role_policy"):
            self._iam.put_role_policy(
                RoleName=role_name, PolicyName=policy_name, PolicyDocument=policy_document
            )

    def create_role_alias(self, role_alias: str, role_arn: str) -> RoleAliasDescription:
        with _translate_errors("create_role_alias"):
            response = self._iot.create_role_alias(roleAlias=role_alias, roleArn=role_arn)
        return RoleAliasDescription(
            name=response["roleAlias"], arn=response["roleAliasArn"], role_arn=role_arn
        )

    def describe_role_alias(self, role_alias: str) -> RoleAliasDescription:
        with _translate_errors("describe_role_alias"):
            response = self._iot.describe_role_alias(roleAlias=role_alias)
        description = response["roleAliasDescription"]
        return RoleAliasDescription(
            name=description["roleAlias"],
            arn=description["roleAliasArn"],
            role_arn=description.get("roleArn", ""),
        )

    def delete_role_alias(self, role_alias: str) -> None:
        with _translate_errors("delete_role_alias"):
            self._iot.delete_role_alias(roleAlias=role_alias)

    # Greengrass v2 deployments

    def create_deployment(
        self,
        target_arn: str,
        deployment_name: str | None,
        components: dict[str, Any],
        client_token: str | None = None,
    ) -> DeploymentRef:
        """Start a deployment; a repeated client token returns the existing one."""
        kwargs: dict[str, Any] = {"targetArn": target_arn, "components": components}
        if deployment_name:
            kwargs["deploymentName"] = deployment_name
        if client_token:
            kwargs["clientToken"] = client_token
        with _translate_errors("create_deployment"):
            response = self._greengrass.create_deployment(**kwargs)
        return DeploymentRef(
            deployment_id=response["deploymentId"],
            iot_job_id=response.get("iotJobId", ""),
            iot_job_arn=response.get("iotJobArn", ""),
        )

    def cancel_deployment(self, deployment_id: str) -> None:
        with _translate_errors("cancel_deployment"):
            self._greengrass.cancel_deployment(deploymentId=deployment_id)

    # Secret-bearing parameters

    def put_parameter(self, name: str, value: str, description: str, secure: bool) -> None:
        with _translate_errors("put_parameter"):
            self._ssm.put_parameter(
                Name=name,
                Description=description,
                Value=value,
                Type="SecureString" if secure else "String",
                Tier="Advanced",
                Overwrite=True,
            )

    def get_parameter(self, name: str, decrypt: bool) -> str:
        with _translate_errors("get_parameter"):
            response = self._ssm.get_parameter(Name=name, WithDecryption=decrypt)
        return response["Parameter"]["Value"]

    def delete_parameters(self, names: list[str]) -> list[str]:
        """Delete parameters; returns the names the service did not recognise."""
        with _translate_errors("delete_parameters"):
            response = self._ssm.delete_parameters(Names=names)
        return list(response.get("InvalidParameters", []))

    # Endpoints

    def describe_endpoint(self, endpoint_type: str) -> str:
        with _translate_errors("describe_endpoint"):
            response = self._iot.describe_endpoint(endpointType=endpoint_type)
        return response["endpointAddress"]
