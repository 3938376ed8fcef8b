"""CSR builder for PKCS#10 certificate signing requests."""

import ipaddress

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from .config import ProvisioningConfig
from .errors import CSREncodingError, InvalidIPError
from .logging_config import LOGGER
from .models import KeyMaterial, PrivateKey, X509CSR

DEFAULT_SIGNATURE_ALGORITHM = "SHA256WithRSA"

# selector -> (key family, digest)
SIGNATURE_ALGORITHMS: dict[str, tuple[str, type[hashes.HashAlgorithm]]] = {
    "SHA256WithRSA": ("RSA", hashes.SHA256),
    "SHA384WithRSA": ("RSA", hashes.SHA384),
    "SHA512WithRSA": ("RSA", hashes.SHA512),
    "ECDSAWithSHA256": ("EC", hashes.SHA256),
    "ECDSAWithSHA384": ("EC", hashes.SHA384),
    "ECDSAWithSHA512": ("EC", hashes.SHA512),
}


def resolve_signature_algorithm(selector: str) -> tuple[str, type[hashes.HashAlgorithm]]:
    """Map a signature selector to (key family, digest), defaulting to SHA256WithRSA."""
    if selector not in SIGNATURE_ALGORITHMS:
        if selector:
            LOGGER.warning(
                "Unknown signature algorithm %r, using %s", selector, DEFAULT_SIGNATURE_ALGORITHM
            )
        selector = DEFAULT_SIGNATURE_ALGORITHM
    return SIGNATURE_ALGORITHMS[selector]


def parse_pod_ip(pod_ip: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address:
    """Parse the pod IP for the IP SAN.

    Raises:
        InvalidIPError: If the string is not an IPv4/IPv6 address
    """
    try:
        return ipaddress.ip_address(pod_ip.strip())
    except ValueError as e:
        raise InvalidIPError(f"invalid pod IP {pod_ip!r}") from e


def _key_family(key: PrivateKey) -> str:
    if isinstance(key, rsa.RSAPrivateKey):
        return "RSA"
    if isinstance(key, ec.EllipticCurvePrivateKey):
        return "EC"
    raise CSREncodingError(f"unsupported private key type: {type(key).__name__}")


class CSRBuilder:
    """Builds PKCS#10 requests that bind a workload identity to a key."""

    @staticmethod
    def build(config: ProvisioningConfig, key_material: KeyMaterial) -> X509CSR:
        """Build and sign a CSR for the configured workload identity.

        The request carries the fixed subject attributes plus the configured
        CN (and PKCS#9 email when set), a critical basicConstraints CA:FALSE
        extension, and SANs for every DNS name plus the pod IP.

        Args:
            config: Provisioning configuration
            key_material: Generated key used to sign the request

        Returns:
            X509CSR with the PEM-encoded request and the key material

        Raises:
            InvalidIPError: If the pod IP does not parse
            CSREncodingError: If the selector does not match the key type or signing fails
        """
        pod_ip = parse_pod_ip(config.pod_ip)
        family, digest = resolve_signature_algorithm(config.signature_algorithm)
        key = key_material.private_key

        key_family = _key_family(key)
        if family != key_family:
            raise CSREncodingError(
                f"signature algorithm {config.signature_algorithm or DEFAULT_SIGNATURE_ALGORITHM!r} "
                f"does not match {key_family} private key"
            )

        try:
            san: list[x509.GeneralName] = [x509.DNSName(name) for name in config.dns_names]
            san.append(x509.IPAddress(pod_ip))

            builder = (
                x509.CertificateSigningRequestBuilder()
                .subject_name(config.distinguished_name().to_x509_name())
                .add_extension(
                    x509.BasicConstraints(ca=False, path_length=None),
                    critical=True,
                )
                .add_extension(
                    x509.SubjectAlternativeName(san),
                    critical=False,
                )
            )
            csr = builder.sign(key, digest())
            csr_pem = csr.public_bytes(serialization.Encoding.PEM)
        except (ValueError, TypeError) as e:
            raise CSREncodingError(f"unable to create an x509 csr: {e}") from e

        return X509CSR(key_material=key_material, csr_pem=csr_pem)
