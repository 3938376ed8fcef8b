"""Registers this workload as an aggregated API server."""

import base64
from dataclasses import dataclass

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from .errors import RegistrationError
from .logging_config import LOGGER


@dataclass(frozen=True)
class APIServiceConfig:
    """APIService registration parameters."""

    name: str = "v3.projectcalico.org"
    group: str = "projectcalico.org"
    version: str = "v3"
    service_name: str = "tigera-api"
    service_namespace: str = "tigera-system"
    group_priority_minimum: int = 1500
    version_priority: int = 200


def build_api_service(ca_bundle: bytes, settings: APIServiceConfig) -> client.V1APIService:
    """Build the APIService trusting ca_bundle for the backing service."""
    return client.V1APIService(
        api_version="apiregistration.k8s.io/v1",
        kind="APIService",
        metadata=client.V1ObjectMeta(name=settings.name),
        spec=client.V1APIServiceSpec(
            group=settings.group,
            version=settings.version,
            group_priority_minimum=settings.group_priority_minimum,
            version_priority=settings.version_priority,
            service=client.ApiregistrationV1ServiceReference(
                name=settings.service_name,
                namespace=settings.service_namespace,
            ),
            ca_bundle=base64.b64encode(ca_bundle).decode("ascii"),
        ),
    )


def register_api_service(
    api_client: client.ApiClient,
    ca_bundle: bytes,
    settings: APIServiceConfig | None = None,
) -> None:
    """Create or update the APIService registration.

    Args:
        api_client: Authenticated Kubernetes API client
        ca_bundle: Issued certificate used as the trust anchor
        settings: Registration parameters (default: APIServiceConfig())

    Raises:
        RegistrationError: If the fetch fails with anything but 404, or the write fails
    """
    settings = settings or APIServiceConfig()
    api = client.ApiregistrationV1Api(api_client)
    api_service = build_api_service(ca_bundle, settings)

    try:
        try:
            existing = api.read_api_service(settings.name)
        except ApiException as e:
            if e.status != 404:
                raise
            api.create_api_service(api_service)
            LOGGER.info("Created APIService %s", settings.name)
            return

        existing.spec = api_service.spec
        api.replace_api_service(settings.name, existing)
        LOGGER.info("Updated APIService %s", settings.name)
    except (ApiException, HTTPError) as e:
        reason = getattr(e, "reason", None) or e
        raise RegistrationError(
            f"error during api service registration for {settings.name}: {reason}"
        ) from e
