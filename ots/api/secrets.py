"""API endpoints for one-time secrets."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ots.dependencies import get_secret_service
from ots.exceptions import (
    InvalidSecretIDError,
    OTSError,
    SecretNotFoundError,
    SecretTooLargeError,
    StorageError,
    ValidationError,
)
from ots.schemas.secret import SecretCreate, SecretCreateResponse, SecretResponse
from ots.services.secret_service import SecretService
from ots.utils.error_handling import safe_error_response
from ots.utils.security import mask_sensitive, sanitize_log_message

logger = logging.getLogger(__name__)

router = APIRouter()

NOT_FOUND = "not found"


@router.post("", response_model=SecretCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_secret(
    payload: SecretCreate,
    service: SecretService = Depends(get_secret_service),
) -> SecretCreateResponse:
    """Store a client-encrypted secret.

    Raises:
        400: Malformed ciphertext, IV, salt or TTL
        413: Ciphertext larger than the configured maximum
        500: Storage failure
    """
    try:
        created = await service.create_secret(
            payload.ciphertext, payload.iv, payload.salt, payload.expires_in
        )
    except SecretTooLargeError as e:
        logger.warning(f"Validation failed: {e}")
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail=str(e))
    except ValidationError as e:
        logger.warning(f"Validation failed: {sanitize_log_message(str(e))}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except OTSError as e:
        # Storage failure or exhausted ID regeneration
        safe_error_response(logger, e, "Failed to store secret")

    return SecretCreateResponse(id=created.id)


@router.get("/{secret_id}", response_model=SecretResponse, response_model_exclude_none=True)
async def get_secret(
    secret_id: str,
    service: SecretService = Depends(get_secret_service),
) -> SecretResponse:
    """Consume a secret. It is destroyed by this call.

    Raises:
        404: Unknown, expired or already consumed (indistinguishable)
        500: Storage failure; the secret is left intact
    """
    try:
        secret = await service.consume_secret(secret_id)
    except (InvalidSecretIDError, SecretNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND)
    except StorageError as e:
        safe_error_response(
            logger, e, "Failed to retrieve secret", context=f"id={mask_sensitive(secret_id)}"
        )

    return SecretResponse.from_consumed(secret)


@router.delete("/{secret_id}", status_code=status.HTTP_204_NO_CONTENT)
async def burn_secret(
    secret_id: str,
    service: SecretService = Depends(get_secret_service),
) -> Response:
    """Destroy a secret without reading it.

    Raises:
        404: Unknown, expired or already consumed (indistinguishable)
        500: Storage failure
    """
    try:
        await service.burn_secret(secret_id)
    except (InvalidSecretIDError, SecretNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND)
    except StorageError as e:
        safe_error_response(
            logger, e, "Failed to burn secret", context=f"id={mask_sensitive(secret_id)}"
        )

    return Response(status_code=status.HTTP_204_NO_CONTENT)
