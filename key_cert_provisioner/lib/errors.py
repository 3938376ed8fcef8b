"""Exception hierarchy for certificate provisioning."""


class ProvisionerError(Exception):
    """Base class for every fatal provisioning error."""


class ConfigurationError(ProvisionerError):
    """Required input missing or malformed."""


class InvalidIPError(ConfigurationError):
    """Pod IP does not parse as an IPv4 or IPv6 address."""


class CryptoError(ProvisionerError):
    """Key generation or CSR encoding failed."""


class KeyGenerationError(CryptoError):
    """Private key could not be generated or serialized."""


class CSREncodingError(CryptoError):
    """PKCS#10 request could not be built or signed."""


class AuthorityProtocolError(ProvisionerError):
    """Talking to the signing authority failed."""


class VersionParseError(AuthorityProtocolError):
    """Server version could not be parsed into integers."""


class SubmissionError(AuthorityProtocolError):
    """CertificateSigningRequest could not be created."""


class WatchCancelledError(AuthorityProtocolError):
    """Watch was cancelled before a terminal disposition arrived."""


class DispositionError(ProvisionerError):
    """The signing authority rejected the request."""

    def __init__(self, message: str, csr_name: str) -> None:
        super().__init__(message)
        self.csr_name = csr_name


class RequestDeniedError(DispositionError):
    """CSR carries a Denied=True condition."""


class RequestFailedError(DispositionError):
    """CSR carries a Failed=True condition."""


class PersistenceError(ProvisionerError):
    """Writing output files failed."""


class RegistrationError(ProvisionerError):
    """Upserting the APIService registration failed."""
