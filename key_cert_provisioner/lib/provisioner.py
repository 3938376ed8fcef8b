"""Provisioning orchestrator: key -> CSR -> submit -> watch -> write."""

import threading
from collections.abc import Callable

from kubernetes import client

from .api_registration import APIServiceConfig, register_api_service
from .authority_client import SigningAuthorityClient, resolve_version, select_authority_client
from .cert_utils import generate_key_material
from .config import ProvisioningConfig
from .csr_builder import CSRBuilder
from .logging_config import LOGGER
from .models import ProvisioningResult
from .output_writer import OutputWriter

AuthorityFactory = Callable[[client.ApiClient], SigningAuthorityClient]


def default_authority_factory(api_client: client.ApiClient) -> SigningAuthorityClient:
    """Resolve the server version once and return the matching CSR client."""
    return select_authority_client(api_client, resolve_version(api_client))


class Provisioner:
    """Drives one certificate request from key generation to written files.

    Any failing step raises; the run is not resumed in-process. Recovery is
    left to the pod restart policy.
    """

    def __init__(
        self,
        config: ProvisioningConfig,
        api_client: client.ApiClient,
        authority_factory: AuthorityFactory = default_authority_factory,
        writer: OutputWriter | None = None,
        api_service: APIServiceConfig | None = None,
    ) -> None:
        """Initialize provisioner.

        Args:
            config: Provisioning configuration
            api_client: Authenticated Kubernetes API client
            authority_factory: Builds the version-appropriate CSR client
            writer: Output writer (default: writes into config.output_dir)
            api_service: APIService parameters used when registration is enabled
        """
        self.config = config
        self.api_client = api_client
        self.authority_factory = authority_factory
        self.writer = writer or OutputWriter.from_config(config)
        self.api_service = api_service

    def run(self, cancel_event: threading.Event | None = None) -> ProvisioningResult:
        """Provision key and certificate.

        Args:
            cancel_event: Set by the caller when its deadline expires

        Returns:
            ProvisioningResult with the written paths

        Raises:
            ProvisionerError: Subclass describing the failed step
        """
        config = self.config

        key_material = generate_key_material(config.key_algorithm)
        x509_csr = CSRBuilder.build(config, key_material)
        LOGGER.info("Created x509 certificate request %s", config.csr_name)

        authority = self.authority_factory(self.api_client)
        authority.submit(x509_csr, config)
        certificate = authority.watch(config.csr_name, cancel_event)

        output = self.writer.write(config, certificate, x509_csr.private_key_pem)

        registered = False
        if config.register_apiserver:
            register_api_service(self.api_client, certificate, self.api_service)
            registered = True

        return ProvisioningResult(
            csr_name=config.csr_name,
            api_version=authority.api_version,
            output=output,
            api_service_registered=registered,
        )
