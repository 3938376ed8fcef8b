"""Provisioning configuration dataclasses."""

import math
import os
import re
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from cryptography import x509
from cryptography.x509 import oid

from .errors import ConfigurationError

DEFAULT_APP_NAME = "key-cert-provisioner"
DEFAULT_CA_NAME = "ca.crt"
DEFAULT_TIMEOUT_SECONDS = 300.0

_DURATION_PATTERN = re.compile(r"^(?:(\d+(?:\.\d+)?)h)?(?:(\d+(?:\.\d+)?)m)?(?:(\d+(?:\.\d+)?)s)?$")


@dataclass(frozen=True)
class SubjectConfig:
    """Fixed organisational attributes placed in every CSR subject."""

    country: str = "US"
    state: str = "California"
    locality: str = "San Francisco"
    organization: str = "Tigera"
    organizational_unit: str = "Engineering"


@dataclass
class DistinguishedName:
    """X.509 Subject Distinguished Name."""

    country: str
    state: str
    locality: str
    organization: str
    organizational_unit: str
    common_name: str
    email_address: str | None = None

    @classmethod
    def from_subject_config(
        cls, subject: SubjectConfig, common_name: str, email_address: str | None = None
    ) -> "DistinguishedName":
        """Build DN from the fixed subject attributes + common_name."""
        return cls(
            country=subject.country,
            state=subject.state,
            locality=subject.locality,
            organization=subject.organization,
            organizational_unit=subject.organizational_unit,
            common_name=common_name,
            email_address=email_address,
        )

    def to_x509_name(self) -> x509.Name:
        """Convert to cryptography x509.Name for CSR generation.

        The email address is encoded as a PKCS#9 emailAddress attribute
        (IA5String) and left out entirely when not set.
        """
        attributes = [
            x509.NameAttribute(oid.NameOID.COUNTRY_NAME, self.country),
            x509.NameAttribute(oid.NameOID.STATE_OR_PROVINCE_NAME, self.state),
            x509.NameAttribute(oid.NameOID.LOCALITY_NAME, self.locality),
            x509.NameAttribute(oid.NameOID.ORGANIZATION_NAME, self.organization),
            x509.NameAttribute(oid.NameOID.ORGANIZATIONAL_UNIT_NAME, self.organizational_unit),
            x509.NameAttribute(oid.NameOID.COMMON_NAME, self.common_name),
        ]
        if self.email_address:
            attributes.append(x509.NameAttribute(oid.NameOID.EMAIL_ADDRESS, self.email_address))
        return x509.Name(attributes)


@dataclass(frozen=True)
class ProvisioningConfig:
    """Configuration resolved once at startup and passed through the run."""

    csr_name: str
    signer: str
    common_name: str
    pod_ip: str
    dns_names: tuple[str, ...]
    output_dir: Path
    key_name: str
    cert_name: str
    email_address: str | None = None
    signature_algorithm: str = ""
    key_algorithm: str = ""
    ca_bundle: bytes | None = None
    ca_name: str = DEFAULT_CA_NAME
    register_apiserver: bool = False
    app_name: str = DEFAULT_APP_NAME
    pod_uid: str | None = None
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    subject: SubjectConfig = field(default_factory=SubjectConfig)

    def __post_init__(self) -> None:
        if not self.dns_names:
            raise ConfigurationError("at least one DNS name is required")

    def distinguished_name(self) -> DistinguishedName:
        return DistinguishedName.from_subject_config(
            self.subject, self.common_name, self.email_address
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ProvisioningConfig":
        """Read configuration from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)

        Returns:
            Validated ProvisioningConfig

        Raises:
            ConfigurationError: If a required variable is missing or malformed
        """
        env = os.environ if environ is None else environ

        ca_bundle = None
        ca_bundle_path = env.get("CA_BUNDLE_PATH", "")
        if ca_bundle_path:
            try:
                ca_bundle = Path(ca_bundle_path).read_bytes()
            except OSError as e:
                raise ConfigurationError(f"unable to read CA bundle {ca_bundle_path}: {e}") from e

        return cls(
            csr_name=build_csr_name(_required(env, "POD_NAMESPACE"), _required(env, "POD_NAME")),
            signer=_required(env, "SIGNER"),
            common_name=_required(env, "COMMON_NAME"),
            email_address=env.get("EMAIL_ADDRESS") or None,
            pod_ip=_required(env, "POD_IP"),
            dns_names=parse_dns_names(env.get("DNS_NAMES", "")),
            signature_algorithm=env.get("SIGNATURE_ALGORITHM", ""),
            key_algorithm=env.get("KEY_ALGORITHM", ""),
            output_dir=Path(_required(env, "SECRET_LOCATION")),
            key_name=_required(env, "KEY_NAME"),
            cert_name=_required(env, "CERT_NAME"),
            ca_bundle=ca_bundle,
            ca_name=env.get("CA_NAME") or DEFAULT_CA_NAME,
            register_apiserver=env.get("REGISTER_APISERVER", "").lower() == "true",
            app_name=env.get("APP_NAME") or DEFAULT_APP_NAME,
            pod_uid=env.get("POD_UID") or None,
            timeout_seconds=parse_duration(env.get("TIMEOUT", "")),
        )


def _required(env: Mapping[str, str], name: str) -> str:
    value = env.get(name, "")
    if not value:
        raise ConfigurationError(f"environment variable {name} cannot be empty")
    return value


def build_csr_name(namespace: str, pod_name: str) -> str:
    """Return a per-attempt request name: <namespace>:<pod>:<6 random hex chars>."""
    return f"{namespace}:{pod_name}:{uuid.uuid4().hex[:6]}"


def parse_dns_names(raw: str) -> tuple[str, ...]:
    """Split a comma separated DNS name list, dropping blanks."""
    names = tuple(name.strip() for name in raw.split(",") if name.strip())
    if not names:
        raise ConfigurationError("environment variable DNS_NAMES cannot be empty")
    return names


def parse_duration(raw: str) -> float:
    """Parse a timeout given as seconds ("90") or units ("1h", "5m", "30s", "1m30s").

    Empty input yields DEFAULT_TIMEOUT_SECONDS.
    """
    raw = raw.strip()
    if not raw:
        return DEFAULT_TIMEOUT_SECONDS

    try:
        seconds = float(raw)
    except ValueError:
        match = _DURATION_PATTERN.match(raw)
        if not match or not any(match.groups()):
            raise ConfigurationError(f"invalid TIMEOUT value: {raw!r}") from None
        hours, minutes, secs = (float(part) if part else 0.0 for part in match.groups())
        seconds = hours * 3600 + minutes * 60 + secs

    if not math.isfinite(seconds) or seconds <= 0:
        raise ConfigurationError(f"TIMEOUT must be positive, got {raw!r}")
    return seconds
