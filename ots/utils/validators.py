"""Input validation for secret creation and lookup.

Pure functions with no I/O: the same input always produces the same result.
"""

import base64
import math
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from ots.exceptions import (
    InvalidCiphertextError,
    InvalidIVError,
    InvalidSaltError,
    InvalidSecretIDError,
    InvalidTTLError,
    SecretTooLargeError,
)

MAX_SECRET_SIZE = 32768
MIN_SECRET_SIZE = 1
IV_SIZE = 12  # 96-bit AES-GCM nonce
MIN_SALT_SIZE = 16
MIN_TTL_SECONDS = 5 * 60
MAX_TTL_SECONDS = 24 * 60 * 60

SECRET_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]{22}")


@dataclass(frozen=True)
class ValidatedSecretRequest:
    """Normalized creation request with decoded buffers."""

    ciphertext: bytes
    iv: bytes
    salt: Optional[bytes]
    ttl: timedelta
    burn_after_read: bool = True


def encoded_length(size: int) -> int:
    """Length of the padded base64 encoding of size bytes."""
    return 4 * math.ceil(size / 3)


def _decode_base64(value: str) -> bytes:
    """Strictly decode standard base64 (padding required, no stray characters)."""
    return base64.b64decode(value, validate=True)


def validate_create_request(
    ciphertext_b64: Optional[str],
    iv_b64: Optional[str],
    salt_b64: Optional[str],
    expires_in: Optional[int],
    max_size: int = MAX_SECRET_SIZE,
    min_ttl: int = MIN_TTL_SECONDS,
    max_ttl: int = MAX_TTL_SECONDS,
) -> ValidatedSecretRequest:
    """Validate and normalize a secret creation request.

    Args:
        ciphertext_b64: Base64-encoded ciphertext
        iv_b64: Base64-encoded 12-byte IV
        salt_b64: Optional base64-encoded salt (at least 16 bytes when present)
        expires_in: Requested lifetime in seconds
        max_size: Maximum decoded ciphertext size in bytes
        min_ttl: Smallest accepted lifetime in seconds (inclusive)
        max_ttl: Largest accepted lifetime in seconds (inclusive)

    Returns:
        ValidatedSecretRequest with decoded bytes; burn_after_read is always True

    Raises:
        InvalidCiphertextError: Empty, malformed or zero-length ciphertext
        SecretTooLargeError: Decoded ciphertext longer than max_size
        InvalidIVError: Empty, malformed or wrong-length IV
        InvalidSaltError: Malformed or too-short salt
        InvalidTTLError: Lifetime outside [min_ttl, max_ttl]
    """
    if not ciphertext_b64:
        raise InvalidCiphertextError("invalid ciphertext format: ciphertext is required")
    if len(ciphertext_b64) > encoded_length(max_size):
        # Too long to decode to max_size bytes or fewer
        raise SecretTooLargeError(len(ciphertext_b64) // 4 * 3, max_size)
    try:
        ciphertext = _decode_base64(ciphertext_b64)
    except ValueError as e:
        raise InvalidCiphertextError(f"invalid ciphertext format: {e}") from e

    if len(ciphertext) < MIN_SECRET_SIZE:
        raise InvalidCiphertextError("invalid ciphertext format: ciphertext too small")
    if len(ciphertext) > max_size:
        raise SecretTooLargeError(len(ciphertext), max_size)

    if not iv_b64:
        raise InvalidIVError("invalid IV format: IV is required")
    try:
        iv = _decode_base64(iv_b64)
    except ValueError as e:
        raise InvalidIVError(f"invalid IV format: {e}") from e

    if len(iv) != IV_SIZE:
        raise InvalidIVError(f"invalid IV format: IV must be {IV_SIZE} bytes, got {len(iv)}")

    salt: Optional[bytes] = None
    if salt_b64:
        try:
            salt = _decode_base64(salt_b64)
        except ValueError as e:
            raise InvalidSaltError(f"invalid salt format: {e}") from e
        if len(salt) < MIN_SALT_SIZE:
            raise InvalidSaltError(
                f"invalid salt format: salt must be at least {MIN_SALT_SIZE} bytes"
            )

    if expires_in is None or isinstance(expires_in, bool):
        raise InvalidTTLError("invalid TTL value: expires_in is required")
    if expires_in < min_ttl or expires_in > max_ttl:
        raise InvalidTTLError(
            f"invalid TTL value: must be between {timedelta(seconds=min_ttl)} "
            f"and {timedelta(seconds=max_ttl)}"
        )

    return ValidatedSecretRequest(
        ciphertext=ciphertext,
        iv=iv,
        salt=salt,
        ttl=timedelta(seconds=expires_in),
        burn_after_read=True,
    )


def validate_secret_id(secret_id: Optional[str]) -> str:
    """Validate the shape of a secret ID before it reaches storage.

    Raises:
        InvalidSecretIDError: If the ID is empty or not 22 URL-safe characters
    """
    if not secret_id:
        raise InvalidSecretIDError("invalid secret ID: empty")
    if not SECRET_ID_PATTERN.fullmatch(secret_id):
        raise InvalidSecretIDError("invalid secret ID: invalid format")
    return secret_id
