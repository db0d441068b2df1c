"""Custom exceptions for the one-time secret service."""


class OTSError(Exception):
    """Base class for all service errors."""
    pass


class ValidationError(OTSError):
    """Raised when a creation request or secret ID is malformed or out of range.

    Always recoverable by the client. The message is human-readable and safe
    to return in a 400 response.
    """
    pass


class InvalidCiphertextError(ValidationError):
    """Ciphertext is missing, not valid base64, or decodes to zero bytes."""
    pass


class InvalidIVError(ValidationError):
    """IV is missing, not valid base64, or not exactly 12 bytes."""
    pass


class InvalidSaltError(ValidationError):
    """Salt was supplied but is not valid base64 or is shorter than 16 bytes."""
    pass


class InvalidTTLError(ValidationError):
    """Requested lifetime is outside the configured TTL range."""
    pass


class SecretTooLargeError(ValidationError):
    """Decoded ciphertext exceeds the configured maximum size.

    Mapped to 413 rather than 400 by the HTTP layer.
    """

    def __init__(self, size: int, max_size: int):
        self.size = size
        self.max_size = max_size
        super().__init__(f"secret exceeds maximum size: {size} bytes (max {max_size})")


class InvalidSecretIDError(ValidationError):
    """Secret ID does not match the 22-character URL-safe format."""
    pass


class SecretNotFoundError(OTSError):
    """Secret is absent, expired or already consumed.

    The three causes are deliberately indistinguishable.
    """

    def __init__(self, message: str = "not found"):
        super().__init__(message)


class DuplicateIDError(OTSError):
    """Insert collided with an existing primary key.

    The caller should generate a fresh ID and retry.
    """
    pass


class StorageError(OTSError):
    """Connectivity or transaction failure in the storage layer.

    Details are logged server-side; clients only ever see an opaque 500.
    """
    pass


class OperationTimeoutError(StorageError):
    """A store operation exceeded its deadline and was rolled back."""
    pass


class IDGenerationError(OTSError):
    """The operating system's secure random source is unavailable."""
    pass
