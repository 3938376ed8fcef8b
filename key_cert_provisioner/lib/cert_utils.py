"""Key generation and PEM serialization helpers."""

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from .errors import KeyGenerationError
from .logging_config import LOGGER
from .models import KeyMaterial, PrivateKey

DEFAULT_KEY_ALGORITHM = "RSAWithSize2048"

RSA_KEY_SIZES: dict[str, int] = {
    "RSAWithSize2048": 2048,
    "RSAWithSize4096": 4096,
    "RSAWithSize8192": 8192,
}

EC_CURVES: dict[str, type[ec.EllipticCurve]] = {
    "ECDSAWithCurve256": ec.SECP256R1,
    "ECDSAWithCurve384": ec.SECP384R1,
    "ECDSAWithCurve521": ec.SECP521R1,
}


def generate_private_key(algorithm: str = DEFAULT_KEY_ALGORITHM) -> PrivateKey:
    """Generate a private key for a key-algorithm selector.

    Unknown or empty selectors fall back to RSA 2048.
    """
    if algorithm in EC_CURVES:
        return ec.generate_private_key(EC_CURVES[algorithm]())

    if algorithm not in RSA_KEY_SIZES:
        if algorithm:
            LOGGER.warning("Unknown key algorithm %r, using %s", algorithm, DEFAULT_KEY_ALGORITHM)
        algorithm = DEFAULT_KEY_ALGORITHM

    return rsa.generate_private_key(
        public_exponent=65537,
        key_size=RSA_KEY_SIZES[algorithm],
    )


def serialize_private_key(key: PrivateKey) -> bytes:
    """Serialize private key to traditional PEM (no encryption).

    RSA keys produce an "RSA PRIVATE KEY" block (PKCS#1) and EC keys an
    "EC PRIVATE KEY" block (SEC1).
    """
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def generate_key_material(algorithm: str = DEFAULT_KEY_ALGORITHM) -> KeyMaterial:
    """Generate a key pair and its PEM serialization.

    Args:
        algorithm: Key-algorithm selector (e.g. "RSAWithSize4096", "ECDSAWithCurve256")

    Returns:
        KeyMaterial holding the key object and its PEM bytes

    Raises:
        KeyGenerationError: If the crypto backend cannot produce the key
    """
    try:
        key = generate_private_key(algorithm)
        pem = serialize_private_key(key)
    except Exception as e:
        raise KeyGenerationError(f"unable to create private key: {e}") from e

    return KeyMaterial(private_key=key, private_key_pem=pem)

