"""Device identity bundle: thing, certificate, policy and stored key material.

Create graph:

    thing <--principal-- certificate <--target-- policy
                              |
                              +--> /{stack}/{thing}/private_key      (SecureString)
                              +--> /{stack}/{thing}/certificate_pem  (String)

The identity token is the certificate id. The private key only exists in the
step context of the Create invocation and in the SecureString parameter.

A Create re-invoked after an interrupted attempt reuses the certificate that
attempt attached to the thing when the stored key material belongs to it.

Teardown rediscovers every edge from the service instead of trusting the
properties, since operators may have attached extra policies or principals
after Create. Every certificate attached to the thing is released with the
bundle, not only the one named by the identity token.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from .client import ResourceNotFound
from .identity import resolve_optional
from .models import ThingCertPolicyProperties
from .resource_kind import ResourceKind, create_or_describe, documents_equal
from .security import log_security_audit_event
from .steps import Relationship, Step, StepContext, UnwindIncomplete
from .templating import policy_bindings, render
from .unwinder import for_each

logger = logging.getLogger(__name__)

DATA_ATS_ENDPOINT = "iot:Data-ATS"
CREDENTIAL_PROVIDER_ENDPOINT = "iot:CredentialProvider"

ACTIVE_STATUS = "ACTIVE"
REVOKED_STATUS = "REVOKED"

# Step context keys for certificates discovered during teardown
_CERTIFICATES = "certificates"
_CERTIFICATE_LOOKUP_FAILURES = "certificate_lookup_failures"


def certificate_id_from_arn(principal: str) -> str | None:
    """Certificate id of an IoT certificate ARN; None for other principal types."""
    resource = principal.rsplit(":", 1)[-1]
    if resource.startswith("cert/"):
        return resource[len("cert/") :]
    return None


class ThingCertPolicyKind(ResourceKind):
    """Thing + certificate + policy bundle, identified by the certificate id."""

    name = "iot-thing-cert-policy"
    properties_model = ThingCertPolicyProperties

    def create_steps(self, properties: ThingCertPolicyProperties) -> list[Step]:
        return [
            Step("render-policy", self._render_policy),
            Step("create-thing", self._create_thing),
            Step("create-keys-and-certificate", self._create_keys_and_certificate),
            Step("create-policy", self._create_policy),
            Step("attach-policy", self._attach_policy),
            Step("attach-thing-principal", self._attach_thing_principal),
            Step("store-private-key", self._store_private_key),
            Step("store-certificate-pem", self._store_certificate_pem),
        ]

    def delete_steps(self) -> list[Step]:
        return [
            Step(
                "delete-secret-parameters",
                self._delete_secret_parameters,
                relationship=Relationship.STANDALONE,
            ),
            Step(
                "prune-policy-versions",
                self._prune_policy_versions,
                relationship=Relationship.STANDALONE,
            ),
            Step(
                "detach-policy-targets",
                self._detach_policy_targets,
                relationship=Relationship.ATTACHED_TO,
            ),
            Step(
                "detach-certificate-things",
                self._detach_certificate_things,
                relationship=Relationship.ATTACHED_TO,
            ),
            Step(
                "detach-certificate-policies",
                self._detach_certificate_policies,
                relationship=Relationship.ATTACHED_TO,
            ),
            Step(
                "detach-thing-principals",
                self._detach_thing_principals,
                relationship=Relationship.ATTACHED_TO,
            ),
            Step("delete-policy", self._delete_policy),
            Step("revoke-certificates", self._revoke_certificates),
            Step("delete-certificates", self._delete_certificates),
            Step("delete-thing", self._delete_thing, relationship=Relationship.PRIMARY),
        ]

    def identity(self, context: StepContext) -> str:
        return context.require("certificate_id")

    def partial_identity(self, context: StepContext) -> str | None:
        return context.values.get("certificate_id")

    def outputs(self, context: StepContext) -> dict[str, Any]:
        props: ThingCertPolicyProperties = self.properties_of(context)
        return {
            "ThingArn": context.require("thing_arn"),
            "ThingName": props.thing_name,
            "CertificateArn": context.require("certificate_arn"),
            "IotPolicyArn": context.require("policy_arn"),
            "PrivateKeySecretParameter": props.private_key_parameter,
            "CertificatePemParameter": props.certificate_pem_parameter,
            "DataAtsEndpointAddress": resolve_optional(
                DATA_ATS_ENDPOINT, lambda: self.client.describe_endpoint(DATA_ATS_ENDPOINT)
            ),
            "CredentialProviderEndpointAddress": resolve_optional(
                CREDENTIAL_PROVIDER_ENDPOINT,
                lambda: self.client.describe_endpoint(CREDENTIAL_PROVIDER_ENDPOINT),
            ),
        }

    # =========================================================================
    # Create
    # =========================================================================

    def _render_policy(self, context: StepContext) -> dict[str, Any]:
        props: ThingCertPolicyProperties = self.properties_of(context)
        document = render(
            props.policy_document, policy_bindings(props.thing_name, props.policy_parameters)
        )
        return {"policy_document": document}

    def _create_thing(self, context: StepContext) -> dict[str, Any]:
        props: ThingCertPolicyProperties = self.properties_of(context)
        thing = create_or_describe(
            lambda: self.client.create_thing(props.thing_name),
            lambda: self.client.describe_thing(props.thing_name),
            props.thing_name,
        )
        return {"thing_arn": thing.arn}

    def _create_keys_and_certificate(self, context: StepContext) -> dict[str, Any]:
        props: ThingCertPolicyProperties = self.properties_of(context)
        existing = self._certificate_from_earlier_attempt(props)
        if existing is not None:
            return existing

        created = self.client.create_keys_and_certificate()
        log_security_audit_event(
            event_type="credential",
            kind=self.name,
            target_resource=created.certificate_arn,
            action="create_keys_and_certificate",
            result="success",
        )
        return {
            "certificate_id": created.certificate_id,
            "certificate_arn": created.certificate_arn,
            "certificate_pem": created.certificate_pem,
            "private_key": created.private_key,
        }

    def _certificate_from_earlier_attempt(
        self, props: ThingCertPolicyProperties
    ) -> dict[str, Any] | None:
        """Find a certificate an interrupted Create already attached to the thing.

        A certificate is reused only when the stored key material belongs to
        it. Other active certificates carrying this bundle's policy were issued
        by an attempt that never stored their private key, so they are revoked.
        """
        certificate_ids = [
            certificate_id
            for certificate_id in map(
                certificate_id_from_arn, self.client.list_thing_principals(props.thing_name)
            )
            if certificate_id
        ]
        if not certificate_ids:
            return None

        stored_pem = self._stored_parameter(props.certificate_pem_parameter, decrypt=False)
        private_key = self._stored_parameter(props.private_key_parameter, decrypt=True)

        reused = None
        for certificate_id in certificate_ids:
            certificate = self.client.describe_certificate(certificate_id)
            if certificate.status != ACTIVE_STATUS:
                continue
            if (
                reused is None
                and private_key
                and stored_pem
                and certificate.certificate_pem.strip() == stored_pem.strip()
            ):
                reused = certificate
            elif props.policy_name in self.client.list_attached_policies(
                certificate.certificate_arn
            ):
                self.client.update_certificate_status(certificate_id, REVOKED_STATUS)
                log_security_audit_event(
                    "credential", self.name, certificate_id, "revoke_certificate", "success"
                )
                logger.warning(
                    "Revoked certificate without stored key material",
                    extra={"certificate_id": certificate_id, "thing_name": props.thing_name},
                )

        if reused is None:
            return None
        logger.info(
            "Reusing certificate issued by an earlier attempt",
            extra={"certificate_id": reused.certificate_id, "thing_name": props.thing_name},
        )
        return {
            "certificate_id": reused.certificate_id,
            "certificate_arn": reused.certificate_arn,
            "certificate_pem": stored_pem,
            "private_key": private_key,
        }

    def _stored_parameter(self, name: str, decrypt: bool) -> str | None:
        try:
            return self.client.get_parameter(name, decrypt)
        except ResourceNotFound:
            return None

    def _create_policy(self, context: StepContext) -> dict[str, Any]:
        props: ThingCertPolicyProperties = self.properties_of(context)
        document = context.require("policy_document")
        policy = create_or_describe(
            lambda: self.client.create_policy(props.policy_name, document),
            lambda: self.client.get_policy(props.policy_name),
            props.policy_name,
            matches=lambda existing: documents_equal(existing.document, document),
        )
        return {"policy_arn": policy.arn}

    def _attach_policy(self, context: StepContext) -> None:
        props: ThingCertPolicyProperties = self.properties_of(context)
        self.client.attach_policy(props.policy_name, context.require("certificate_arn"))

    def _attach_thing_principal(self, context: StepContext) -> None:
        props: ThingCertPolicyProperties = self.properties_of(context)
        self.client.attach_thing_principal(props.thing_name, context.require("certificate_arn"))

    def _store_private_key(self, context: StepContext) -> None:
        props: ThingCertPolicyProperties = self.properties_of(context)
        self._store_parameter(
            props.private_key_parameter,
            context.require("private_key"),
            f"Certificate private key for IoT thing {props.thing_name}",
            secure=True,
        )

    def _store_certificate_pem(self, context: StepContext) -> None:
        props: ThingCertPolicyProperties = self.properties_of(context)
        self._store_parameter(
            props.certificate_pem_parameter,
            context.require("certificate_pem"),
            f"Certificate PEM for IoT thing {props.thing_name}",
            secure=False,
        )

    def _store_parameter(self, name: str, value: str, description: str, secure: bool) -> None:
        try:
            self.client.put_parameter(name, value, description, secure)
        except Exception:
            log_security_audit_event(
                "secret_parameter", self.name, name, "put_parameter", "failure"
            )
            raise
        log_security_audit_event("secret_parameter", self.name, name, "put_parameter", "success")

    # =========================================================================
    # Delete
    # =========================================================================

    def _owned_certificates(self, context: StepContext) -> dict[str, str]:
        """Certificates released with the bundle, by id (looked up once per invocation).

        The certificate named by the prior identity plus every certificate
        attached to the thing. Lookups run before detach-thing-principals
        removes the thing's edges.
        """
        if _CERTIFICATES in context.values:
            return context.values[_CERTIFICATES]

        certificates: dict[str, str] = {}
        failures: dict[str, Exception] = {}
        try:
            certificate = self.client.describe_certificate(context.prior_identity)
            certificates[certificate.certificate_id] = certificate.certificate_arn
        except ResourceNotFound:
            logger.info(
                "Certificate already released", extra={"certificate_id": context.prior_identity}
            )
        except Exception as e:
            failures[context.prior_identity] = e

        if context.properties is not None:
            thing_name = context.properties.thing_name
            principals: list[str] = []
            try:
                principals = self.client.list_thing_principals(thing_name)
            except ResourceNotFound:
                pass
            except Exception as e:
                failures[thing_name] = e
            for principal in principals:
                certificate_id = certificate_id_from_arn(principal)
                if certificate_id:
                    certificates.setdefault(certificate_id, principal)

        context.values[_CERTIFICATES] = certificates
        context.values[_CERTIFICATE_LOOKUP_FAILURES] = failures
        return certificates

    def _for_each_certificate(
        self, context: StepContext, action: Callable[[str, str], None]
    ) -> None:
        """Apply an unwind action to every owned certificate.

        Raises:
            UnwindIncomplete: If a certificate lookup or any action failed.
        """
        certificates = self._owned_certificates(context)
        failures = dict(context.values[_CERTIFICATE_LOOKUP_FAILURES])
        try:
            for_each(
                certificates,
                lambda certificate_id: action(certificate_id, certificates[certificate_id]),
            )
        except UnwindIncomplete as e:
            failures.update(e.failures)
        if failures:
            raise UnwindIncomplete(failures)

    def _delete_secret_parameters(self, context: StepContext) -> None:
        props: ThingCertPolicyProperties = self.properties_of(context)
        names = [props.private_key_parameter, props.certificate_pem_parameter]
        missing = self.client.delete_parameters(names)
        if missing:
            logger.info("Parameters already released", extra={"parameters": missing})
        log_security_audit_event(
            "secret_parameter", self.name, ",".join(names), "delete_parameters", "success"
        )

    def _prune_policy_versions(self, context: StepContext) -> None:
        props: ThingCertPolicyProperties = self.properties_of(context)
        versions = self.client.list_policy_versions(props.policy_name)
        for_each(
            (v.version_id for v in versions if not v.is_default),
            lambda version_id: self.client.delete_policy_version(props.policy_name, version_id),
        )

    def _detach_policy_targets(self, context: StepContext) -> None:
        props: ThingCertPolicyProperties = self.properties_of(context)
        targets = self.client.list_targets_for_policy(props.policy_name)
        for_each(targets, lambda target: self.client.detach_policy(props.policy_name, target))

    def _detach_certificate_things(self, context: StepContext) -> None:
        def detach(certificate_id: str, certificate_arn: str) -> None:
            things = self.client.list_principal_things(certificate_arn)
            for_each(
                things,
                lambda thing_name: self.client.detach_thing_principal(thing_name, certificate_arn),
            )

        self._for_each_certificate(context, detach)

    def _detach_certificate_policies(self, context: StepContext) -> None:
        def detach(certificate_id: str, certificate_arn: str) -> None:
            policies = self.client.list_attached_policies(certificate_arn)
            for_each(
                policies,
                lambda policy_name: self.client.detach_policy(policy_name, certificate_arn),
            )

        self._for_each_certificate(context, detach)

    def _detach_thing_principals(self, context: StepContext) -> None:
        props: ThingCertPolicyProperties = self.properties_of(context)
        principals = self.client.list_thing_principals(props.thing_name)
        for_each(
            principals,
            lambda principal: self.client.detach_thing_principal(props.thing_name, principal),
        )

    def _delete_policy(self, context: StepContext) -> None:
        props: ThingCertPolicyProperties = self.properties_of(context)
        self.client.delete_policy(props.policy_name)

    def _revoke_certificates(self, context: StepContext) -> None:
        def revoke(certificate_id: str, certificate_arn: str) -> None:
            self.client.update_certificate_status(certificate_id, REVOKED_STATUS)
            log_security_audit_event(
                "credential", self.name, certificate_id, "revoke_certificate", "success"
            )

        self._for_each_certificate(context, revoke)

    def _delete_certificates(self, context: StepContext) -> None:
        self._for_each_certificate(
            context,
            lambda certificate_id, certificate_arn: self.client.delete_certificate(certificate_id),
        )

    def _delete_thing(self, context: StepContext) -> None:
        props: ThingCertPolicyProperties = self.properties_of(context)
        self.client.delete_thing(props.thing_name)
