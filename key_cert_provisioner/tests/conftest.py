"""Test fixtures for key_cert_provisioner tests."""

import base64
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from key_cert_provisioner.lib.cert_utils import generate_key_material
from key_cert_provisioner.lib.config import ProvisioningConfig
from key_cert_provisioner.lib.csr_builder import CSRBuilder
from key_cert_provisioner.lib.models import KeyMaterial, X509CSR

CSR_NAME = "ns1:pod1:abc123"
SIGNER = "example.com/signer"


@pytest.fixture
def temp_output_dir(tmp_path: Path) -> Path:
    """Return temporary directory standing in for the emptyDir volume."""
    output_dir = tmp_path / "certs"
    output_dir.mkdir()
    return output_dir


@pytest.fixture
def provisioning_config(temp_output_dir: Path) -> ProvisioningConfig:
    """Return a minimal provisioning configuration."""
    return ProvisioningConfig(
        csr_name=CSR_NAME,
        signer=SIGNER,
        common_name="svc.ns1",
        pod_ip="10.0.0.5",
        dns_names=("svc.ns1",),
        output_dir=temp_output_dir,
        key_name="tls.key",
        cert_name="tls.crt",
    )


@pytest.fixture(scope="session")
def rsa_key_material() -> KeyMaterial:
    """Generate an RSA 2048 key once for the session."""
    return generate_key_material("RSAWithSize2048")


@pytest.fixture(scope="session")
def ec_key_material() -> KeyMaterial:
    """Generate a P-256 key once for the session."""
    return generate_key_material("ECDSAWithCurve256")


@pytest.fixture
def x509_csr(provisioning_config: ProvisioningConfig, rsa_key_material: KeyMaterial) -> X509CSR:
    """Build a CSR for the default configuration."""
    return CSRBuilder.build(provisioning_config, rsa_key_material)


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def make_v1_csr(
    name: str,
    conditions: list[tuple[str, str]] | None = None,
    certificate: bytes | None = None,
) -> client.V1CertificateSigningRequest:
    """Build a typed certificates.k8s.io/v1 CSR as the watch would deliver it."""
    status = client.V1CertificateSigningRequestStatus(
        conditions=[
            client.V1CertificateSigningRequestCondition(type=condition_type, status=status)
            for condition_type, status in conditions or []
        ]
        or None,
        certificate=b64(certificate) if certificate else None,
    )
    return client.V1CertificateSigningRequest(
        api_version="certificates.k8s.io/v1",
        kind="CertificateSigningRequest",
        metadata=client.V1ObjectMeta(name=name),
        spec=client.V1CertificateSigningRequestSpec(request=b64(b"csr"), signer_name=SIGNER),
        status=status,
    )


def make_v1beta1_csr(
    name: str,
    conditions: list[dict[str, str]] | None = None,
    certificate: bytes | None = None,
) -> dict[str, Any]:
    """Build a certificates.k8s.io/v1beta1 CSR dict as the watch would deliver it."""
    status: dict[str, Any] = {}
    if conditions:
        status["conditions"] = conditions
    if certificate:
        status["certificate"] = b64(certificate)
    return {
        "apiVersion": "certificates.k8s.io/v1beta1",
        "kind": "CertificateSigningRequest",
        "metadata": {"name": name},
        "spec": {"request": b64(b"csr"), "signerName": SIGNER},
        "status": status,
    }


def event(obj: Any, event_type: str = "MODIFIED") -> dict[str, Any]:
    return {"type": event_type, "object": obj, "raw_object": obj}


class FakeWatch:
    """Stands in for kubernetes.watch.Watch.

    Each stream() call replays the next batch of events. When the batches run
    out, on_exhausted is invoked (e.g. to set a cancel event) and an empty
    stream is returned.
    """

    def __init__(
        self,
        batches: list[list[dict[str, Any]]],
        on_exhausted: Callable[[], None] | None = None,
    ) -> None:
        self.batches = list(batches)
        self.on_exhausted = on_exhausted
        self.stream_calls: list[tuple[Any, tuple[Any, ...], dict[str, Any]]] = []
        self.stop_calls = 0
        self.closed_streams = 0

    def __call__(self) -> "FakeWatch":
        return self

    def stream(self, func: Any, *args: Any, **kwargs: Any) -> Iterator[dict[str, Any]]:
        self.stream_calls.append((func, args, kwargs))
        if self.batches:
            batch = self.batches.pop(0)
        else:
            batch = []
            if self.on_exhausted is not None:
                self.on_exhausted()
        return self._replay(batch)

    def _replay(self, batch: list[dict[str, Any]]) -> Iterator[dict[str, Any]]:
        try:
            yield from batch
        finally:
            self.closed_streams += 1

    def stop(self) -> None:
        self.stop_calls += 1


class FakeCertificatesV1Api:
    """In-memory CertificatesV1Api keyed by resource name."""

    def __init__(self) -> None:
        self.store: dict[str, client.V1CertificateSigningRequest] = {}
        self.calls: list[tuple[str, str]] = []

    def create_certificate_signing_request(self, body: client.V1CertificateSigningRequest):
        name = body.metadata.name
        self.calls.append(("create", name))
        if name in self.store:
            raise ApiException(status=409, reason="AlreadyExists")
        self.store[name] = body
        return body

    def delete_certificate_signing_request(self, name: str):
        self.calls.append(("delete", name))
        if name not in self.store:
            raise ApiException(status=404, reason="NotFound")
        del self.store[name]

    def list_certificate_signing_request(self, **kwargs: Any):
        raise AssertionError("list is only called through the watch")


class FakeCustomObjectsApi:
    """In-memory CustomObjectsApi for cluster-scoped objects."""

    def __init__(self) -> None:
        self.store: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str]] = []

    def create_cluster_custom_object(self, group: str, version: str, plural: str, body: dict):
        name = body["metadata"]["name"]
        self.calls.append(("create", name))
        if name in self.store:
            raise ApiException(status=409, reason="AlreadyExists")
        self.store[name] = body
        return body

    def delete_cluster_custom_object(self, group: str, version: str, plural: str, name: str):
        self.calls.append(("delete", name))
        if name not in self.store:
            raise ApiException(status=404, reason="NotFound")
        del self.store[name]

    def list_cluster_custom_object(self, group: str, version: str, plural: str, **kwargs: Any):
        raise AssertionError("list is only called through the watch")
