"""Secret request/response schemas.

All binary fields travel as standard base64 strings. Decoding and bounds
checks happen in ots.utils.validators so that their failures map to the
service's own error messages.
"""

import base64
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ots.services.secret_store import ConsumedSecret


class SecretCreate(BaseModel):
    """Body of POST /api/secrets."""

    model_config = ConfigDict(extra="ignore")

    ciphertext: str = Field(..., description="Base64 AES-GCM ciphertext")
    iv: str = Field(..., description="Base64 12-byte IV")
    salt: Optional[str] = Field(
        default=None, description="Base64 salt, present for passphrase-derived keys"
    )
    expires_in: Optional[int] = Field(
        default=None, description="Lifetime in seconds; server default when omitted"
    )
    burn_after_read: bool = Field(
        default=True, description="Accepted for compatibility; secrets are always one-time"
    )


class SecretCreateResponse(BaseModel):
    id: str


class SecretResponse(BaseModel):
    """Body of a successful GET /api/secrets/{id}."""

    ciphertext: str
    iv: str
    salt: Optional[str] = None

    @classmethod
    def from_consumed(cls, secret: ConsumedSecret) -> "SecretResponse":
        return cls(
            ciphertext=base64.b64encode(secret.ciphertext).decode("ascii"),
            iv=base64.b64encode(secret.iv).decode("ascii"),
            salt=base64.b64encode(secret.salt).decode("ascii") if secret.salt else None,
        )
