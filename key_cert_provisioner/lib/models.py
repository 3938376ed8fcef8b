"""Value and result models for certificate provisioning."""

from dataclasses import dataclass
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePrivateKey
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

PrivateKey = RSAPrivateKey | EllipticCurvePrivateKey


@dataclass(frozen=True)
class KeyMaterial:
    """Generated private key and its PEM serialization.

    Held in memory until the request is approved, then handed to the writer.
    """

    private_key: PrivateKey
    private_key_pem: bytes


@dataclass(frozen=True)
class X509CSR:
    """Signed PKCS#10 request together with the key that signed it."""

    key_material: KeyMaterial
    csr_pem: bytes

    @property
    def private_key_pem(self) -> bytes:
        return self.key_material.private_key_pem


@dataclass(frozen=True)
class AuthorityVersion:
    """Major/minor version reported by the Kubernetes API server."""

    major: int
    minor: int

    @property
    def uses_certificates_v1(self) -> bool:
        """certificates.k8s.io/v1 is served from 1.19 onwards."""
        return self.major > 1 or (self.major == 1 and self.minor >= 19)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


@dataclass
class OutputResult:
    """Paths of the files written by the output writer."""

    cert_path: Path
    key_path: Path
    ca_path: Path | None = None


@dataclass
class ProvisioningResult:
    """Result from a complete provisioning run.

    Contains the request name, schema used and written file paths.
    """

    csr_name: str
    api_version: str
    output: OutputResult
    api_service_registered: bool = False
