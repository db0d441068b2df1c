"""Secret identifier generation."""

import base64
import secrets

from ots.exceptions import IDGenerationError

# 128 bits of randomness
SECRET_ID_BYTES = 16
# base64url of 16 bytes without padding
SECRET_ID_LENGTH = 22


def generate_secret_id() -> str:
    """Generate an unpredictable, URL-safe secret identifier.

    Draws 16 bytes from the operating system CSPRNG and encodes them with the
    URL-safe base64 alphabet, padding stripped, yielding 22 characters.
    Uniqueness is not checked here; the primary key constraint enforces it.

    Raises:
        IDGenerationError: If the secure random source is unavailable
    """
    try:
        raw = secrets.token_bytes(SECRET_ID_BYTES)
    except (NotImplementedError, OSError) as e:
        raise IDGenerationError("secure random source unavailable") from e

    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")
