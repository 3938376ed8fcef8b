"""Version-aware client for Kubernetes CertificateSigningRequest resources.

Kubernetes serves CSRs from two incompatible API generations:
certificates.k8s.io/v1beta1 (up to 1.18, removed in 1.22) and
certificates.k8s.io/v1 (1.19 onwards). The schema is chosen once per run from
the server version and the same client instance handles both submit and watch.
"""

import base64
import binascii
import re
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from kubernetes import client, watch
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError, ReadTimeoutError

from .config import ProvisioningConfig
from .errors import (
    AuthorityProtocolError,
    RequestDeniedError,
    RequestFailedError,
    SubmissionError,
    VersionParseError,
    WatchCancelledError,
)
from .logging_config import LOGGER
from .models import AuthorityVersion, X509CSR

CSR_GROUP = "certificates.k8s.io"
CSR_KIND = "CertificateSigningRequest"
CSR_PLURAL = "certificatesigningrequests"

KEY_USAGES = ["server auth", "client auth", "digital signature", "key agreement"]

# Server-side lifetime of one watch stream. The stream is reopened after it
# closes.
WATCH_TIMEOUT_SECONDS = 30

# Client-side connect/read timeout of a watch stream. A quiet stream is dropped
# and reopened after this long, which bounds how long a cancellation can go
# unnoticed while the connection is held.
WATCH_POLL_SECONDS = 5

_LEADING_DIGITS = re.compile(r"\d+")


def parse_version_component(value: str | None, label: str) -> int:
    """Parse a major/minor version string, ignoring trailing qualifiers ("27+" -> 27).

    Raises:
        VersionParseError: If the value does not start with an integer
    """
    match = _LEADING_DIGITS.match((value or "").strip())
    if not match:
        raise VersionParseError(f"failed to parse k8s {label} version: {value}")
    return int(match.group())


def resolve_version(api_client: client.ApiClient) -> AuthorityVersion:
    """Query the API server version.

    Args:
        api_client: Authenticated Kubernetes API client

    Returns:
        AuthorityVersion with integer major/minor

    Raises:
        AuthorityProtocolError: If the version endpoint cannot be reached
        VersionParseError: If major or minor is not an integer
    """
    try:
        info = client.VersionApi(api_client).get_code()
    except (ApiException, HTTPError) as e:
        raise AuthorityProtocolError(f"failed to check k8s version: {_reason(e)}") from e

    version = AuthorityVersion(
        major=parse_version_component(info.major, "major"),
        minor=parse_version_component(info.minor, "minor"),
    )
    LOGGER.info("Kubernetes API server version: %s", version)
    return version


@dataclass
class CSRObservation:
    """Schema-independent view of a CSR seen on the watch stream."""

    name: str
    conditions: list[tuple[str, str | None]] = field(default_factory=list)
    certificate: str | None = None


class SigningAuthorityClient(ABC):
    """Submits a CSR and watches it until the authority decides."""

    api_version: str
    # certificates.k8s.io/v1beta1 allowed Approved conditions without a status
    approve_unset_status: bool = False

    def __init__(self, api_client: client.ApiClient) -> None:
        self.api_client = api_client

    @abstractmethod
    def _build_body(self, x509_csr: X509CSR, config: ProvisioningConfig) -> Any:
        """Return the resource body for this schema."""

    @abstractmethod
    def _create(self, body: Any) -> None: ...

    @abstractmethod
    def _delete(self, name: str) -> None: ...

    @abstractmethod
    def _list_call(self) -> tuple[Callable[..., Any], tuple[Any, ...]]:
        """Return the list function and positional args to watch."""

    @abstractmethod
    def _observe(self, obj: Any) -> CSRObservation | None:
        """Extract name/conditions/certificate, or None if obj is not this schema."""

    def submit(self, x509_csr: X509CSR, config: ProvisioningConfig) -> None:
        """Create the CSR resource.

        An existing resource with the same name is left over from a crashed
        attempt whose key is gone, so it is deleted and creation retried once.

        Raises:
            SubmissionError: If creation fails for any other reason or the retry fails
        """
        name = config.csr_name
        body = self._build_body(x509_csr, config)

        try:
            self._create(body)
        except (ApiException, HTTPError) as e:
            if not isinstance(e, ApiException) or e.status != 409:
                raise SubmissionError(
                    f"crashed while trying to create certificate signing request {name}: {_reason(e)}"
                ) from e

            LOGGER.warning("CSR %s already exists, deleting and re-submitting", name)
            try:
                self._delete(name)
                self._create(body)
            except (ApiException, HTTPError) as retry_error:
                raise SubmissionError(
                    f"unable to re-create certificate signing request {name}: {_reason(retry_error)}"
                ) from retry_error

        LOGGER.info("Created CSR %s (%s)", name, self.api_version)

    def watch(self, name: str, cancel_event: threading.Event | None = None) -> bytes:
        """Block until the named CSR is approved, denied or failed.

        Args:
            name: CSR resource name
            cancel_event: Set by the caller to abandon the watch

        Returns:
            Issued certificate bytes (PEM as returned by the signer)

        Raises:
            RequestDeniedError: If a Denied=True condition is observed first
            RequestFailedError: If a Failed=True condition is observed first
            AuthorityProtocolError: If the stream reports an error
            WatchCancelledError: If cancel_event is set before a decision
        """
        cancel_event = cancel_event or threading.Event()
        list_func, args = self._list_call()
        LOGGER.info("Watching CSR until it has been signed and approved: %s", name)

        while not cancel_event.is_set():
            watcher = watch.Watch()
            stream = watcher.stream(
                list_func,
                *args,
                timeout_seconds=WATCH_TIMEOUT_SECONDS,
                _request_timeout=(WATCH_POLL_SECONDS, WATCH_POLL_SECONDS),
            )
            try:
                for event in stream:
                    if cancel_event.is_set():
                        break
                    certificate = self._handle_event(name, event)
                    if certificate is not None:
                        return certificate
            except ReadTimeoutError:
                LOGGER.debug("No watch events for %s in %ss", name, WATCH_POLL_SECONDS)
            except (ApiException, HTTPError) as e:
                raise AuthorityProtocolError(
                    f"unable to watch certificate requests for {name}: {_reason(e)}"
                ) from e
            finally:
                watcher.stop()
                stream.close()
            LOGGER.debug("Watch stream for %s closed, reopening", name)

        raise WatchCancelledError(f"watch cancelled before CSR {name} was decided")

    def _handle_event(self, name: str, event: dict[str, Any]) -> bytes | None:
        if event.get("type") == "ERROR":
            raise AuthorityProtocolError(
                f"error event while watching CSR {name}: {event.get('raw_object') or event.get('object')}"
            )

        obj = event.get("object")
        observation = self._observe(obj)
        if observation is None:
            LOGGER.warning(
                "Unexpected type in %s watch: %s", self.api_version, type(obj).__name__
            )
            return None

        if observation.name != name:
            return None
        # Partial updates: wait until the signer has populated the certificate.
        if not observation.conditions or not observation.certificate:
            return None

        return self._evaluate(name, observation)

    def _evaluate(self, name: str, observation: CSRObservation) -> bytes | None:
        for condition_type, status in observation.conditions:
            if condition_type == "Approved" and self._is_true(status, self.approve_unset_status):
                LOGGER.info("CSR %s has been signed and approved", name)
                return _decode_certificate(name, observation.certificate)
            if condition_type == "Denied" and self._is_true(status, False):
                raise RequestDeniedError(f"CSR was denied for this pod. CSR name: {name}", name)
            if condition_type == "Failed" and self._is_true(status, False):
                raise RequestFailedError(f"CSR failed for this pod. CSR name: {name}", name)
        return None

    @staticmethod
    def _is_true(status: str | None, unset_is_true: bool) -> bool:
        if not status:
            return unset_is_true
        return status == "True"

    @staticmethod
    def _labels(config: ProvisioningConfig) -> dict[str, str]:
        labels = {"k8s-app": config.app_name}
        if config.pod_uid:
            labels["pod-uid"] = config.pod_uid
        return labels


class CertificatesV1Client(SigningAuthorityClient):
    """certificates.k8s.io/v1 via the typed CertificatesV1Api."""

    api_version = f"{CSR_GROUP}/v1"
    approve_unset_status = False

    def __init__(self, api_client: client.ApiClient) -> None:
        super().__init__(api_client)
        self.api = client.CertificatesV1Api(api_client)

    def _build_body(self, x509_csr: X509CSR, config: ProvisioningConfig) -> Any:
        return client.V1CertificateSigningRequest(
            api_version=self.api_version,
            kind=CSR_KIND,
            metadata=client.V1ObjectMeta(name=config.csr_name, labels=self._labels(config)),
            spec=client.V1CertificateSigningRequestSpec(
                request=base64.b64encode(x509_csr.csr_pem).decode("ascii"),
                signer_name=config.signer,
                usages=list(KEY_USAGES),
            ),
        )

    def _create(self, body: Any) -> None:
        self.api.create_certificate_signing_request(body)

    def _delete(self, name: str) -> None:
        self.api.delete_certificate_signing_request(name)

    def _list_call(self) -> tuple[Callable[..., Any], tuple[Any, ...]]:
        return self.api.list_certificate_signing_request, ()

    def _observe(self, obj: Any) -> CSRObservation | None:
        if not isinstance(obj, client.V1CertificateSigningRequest):
            return None
        status = obj.status
        conditions = [(c.type, c.status) for c in (status.conditions or [])] if status else []
        return CSRObservation(
            name=obj.metadata.name if obj.metadata else "",
            conditions=conditions,
            certificate=status.certificate if status else None,
        )


class CertificatesV1beta1Client(SigningAuthorityClient):
    """certificates.k8s.io/v1beta1 for API servers older than 1.19.

    Current Python clients no longer ship a typed v1beta1 API, so the
    resource is handled as a plain dict through CustomObjectsApi.
    """

    api_version = f"{CSR_GROUP}/v1beta1"
    approve_unset_status = True

    def __init__(self, api_client: client.ApiClient) -> None:
        super().__init__(api_client)
        self.api = client.CustomObjectsApi(api_client)

    def _build_body(self, x509_csr: X509CSR, config: ProvisioningConfig) -> Any:
        return {
            "apiVersion": self.api_version,
            "kind": CSR_KIND,
            "metadata": {"name": config.csr_name, "labels": self._labels(config)},
            "spec": {
                "request": base64.b64encode(x509_csr.csr_pem).decode("ascii"),
                "signerName": config.signer,
                "usages": list(KEY_USAGES),
            },
        }

    def _create(self, body: Any) -> None:
        self.api.create_cluster_custom_object(CSR_GROUP, "v1beta1", CSR_PLURAL, body)

    def _delete(self, name: str) -> None:
        self.api.delete_cluster_custom_object(CSR_GROUP, "v1beta1", CSR_PLURAL, name)

    def _list_call(self) -> tuple[Callable[..., Any], tuple[Any, ...]]:
        return self.api.list_cluster_custom_object, (CSR_GROUP, "v1beta1", CSR_PLURAL)

    def _observe(self, obj: Any) -> CSRObservation | None:
        if not isinstance(obj, dict):
            return None
        if obj.get("apiVersion") != self.api_version or obj.get("kind") != CSR_KIND:
            return None
        status = obj.get("status") or {}
        conditions = [(c.get("type", ""), c.get("status")) for c in status.get("conditions") or []]
        return CSRObservation(
            name=(obj.get("metadata") or {}).get("name", ""),
            conditions=conditions,
            certificate=status.get("certificate"),
        )


def select_authority_client(
    api_client: client.ApiClient, version: AuthorityVersion
) -> SigningAuthorityClient:
    """Pick the CSR schema for the server version."""
    if version.uses_certificates_v1:
        return CertificatesV1Client(api_client)
    return CertificatesV1beta1Client(api_client)


def _reason(error: Exception) -> str:
    # ApiException and MaxRetryError carry a reason; ProtocolError does not
    return str(getattr(error, "reason", None) or error)


def _decode_certificate(name: str, certificate: str | None) -> bytes:
    try:
        return base64.b64decode(certificate or "", validate=True)
    except (binascii.Error, ValueError) as e:
        raise AuthorityProtocolError(f"CSR {name} carries a malformed certificate") from e
