"""Secret lifecycle: validate, create, consume and burn."""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from ots.config import Settings
from ots.exceptions import DuplicateIDError
from ots.services.metrics import SecretMetrics
from ots.services.secret_store import ConsumedSecret, SecretStore
from ots.utils.ids import generate_secret_id
from ots.utils.retry import async_retry
from ots.utils.security import mask_sensitive
from ots.utils.validators import ValidatedSecretRequest, validate_create_request, validate_secret_id

logger = logging.getLogger(__name__)

# Attempts at inserting under a freshly generated ID before giving up
CREATE_ATTEMPTS = 3


@dataclass(frozen=True)
class CreatedSecret:
    id: str
    expires_in: int


class SecretService:
    """Ties the validator, ID generator and store together for the HTTP layer."""

    def __init__(
        self,
        store: SecretStore,
        settings: Settings,
        metrics: Optional[SecretMetrics] = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.metrics = metrics

    @property
    def timeout(self) -> float:
        return float(self.settings.request_timeout)

    def validate(
        self,
        ciphertext: Optional[str],
        iv: Optional[str],
        salt: Optional[str],
        expires_in: Optional[int],
    ) -> ValidatedSecretRequest:
        """Validate a creation request, applying the default TTL when omitted."""
        if expires_in is None:
            expires_in = self.settings.default_ttl
        return validate_create_request(
            ciphertext,
            iv,
            salt,
            expires_in,
            max_size=self.settings.max_secret_size,
            min_ttl=self.settings.min_ttl,
            max_ttl=self.settings.max_ttl,
        )

    async def create_secret(
        self,
        ciphertext: Optional[str],
        iv: Optional[str],
        salt: Optional[str] = None,
        expires_in: Optional[int] = None,
    ) -> CreatedSecret:
        """Validate and store a new secret under a fresh random ID.

        A primary-key collision regenerates the ID and retries, up to
        CREATE_ATTEMPTS times.

        Raises:
            ValidationError: Bad input (SecretTooLargeError for oversized ciphertext)
            DuplicateIDError: Every attempt collided
            StorageError: Storage failure or timeout
            IDGenerationError: No secure random source
        """
        start = time.monotonic()
        request = self.validate(ciphertext, iv, salt, expires_in)

        @async_retry(max_attempts=CREATE_ATTEMPTS, backoff_max=0.0, exceptions=(DuplicateIDError,))
        async def _insert() -> str:
            secret_id = generate_secret_id()
            await self.store.create(
                secret_id,
                request.ciphertext,
                request.iv,
                request.salt,
                self.store.now() + request.ttl,
                timeout=self.timeout,
            )
            return secret_id

        secret_id = await _insert()

        if self.metrics:
            self.metrics.secrets_created.inc()

        ttl_seconds = int(request.ttl.total_seconds())
        logger.info(
            f"Secret created: id={mask_sensitive(secret_id)} expires_in={ttl_seconds}s "
            f"size={len(request.ciphertext)} duration={time.monotonic() - start:.3f}s"
        )
        return CreatedSecret(id=secret_id, expires_in=ttl_seconds)

    async def consume_secret(self, secret_id: str) -> ConsumedSecret:
        """Return a secret's content and destroy it.

        Raises:
            InvalidSecretIDError: Malformed ID (callers map this to 404)
            SecretNotFoundError: Absent, expired or already consumed
            StorageError: Storage failure or timeout
        """
        validate_secret_id(secret_id)
        secret = await self.store.consume_once(secret_id, timeout=self.timeout)

        if self.metrics:
            self.metrics.secrets_retrieved.inc()
        logger.info(f"Secret retrieved: id={mask_sensitive(secret_id)}")
        return secret

    async def burn_secret(self, secret_id: str) -> None:
        """Destroy a secret without reading it.

        Raises:
            InvalidSecretIDError: Malformed ID (callers map this to 404)
            SecretNotFoundError: Nothing to destroy
            StorageError: Storage failure or timeout
        """
        validate_secret_id(secret_id)
        await self.store.burn(secret_id, timeout=self.timeout)

        if self.metrics:
            self.metrics.secrets_burned.inc()
        logger.info(f"Secret burned: id={mask_sensitive(secret_id)}")
