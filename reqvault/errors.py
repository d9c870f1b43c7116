"""reqvault errors - exception taxonomy shared by the execution engine."""


class ReqvaultError(Exception):
    """Base class for all reqvault errors."""


class ConfigurationError(ReqvaultError):
    """Encryption secret is missing or rejected by policy."""


class DecryptionError(ReqvaultError):
    """A stored variable value could not be decrypted."""


class MalformedPayloadError(DecryptionError):
    """Ciphertext envelope does not have the iv:ciphertext:tag shape."""


class AuthenticationError(DecryptionError):
    """Integrity tag did not verify (tampering, wrong key, corruption)."""


class SubstitutionError(ReqvaultError):
    """Unexpected failure while rewriting a request."""


class TransportError(ReqvaultError):
    """DNS, connection, TLS or timeout failure on the outbound call."""


NetworkError = TransportError


class ClassificationError(ReqvaultError):
    """Response body could not be decoded as its content-type claims."""
