"""Secret model: one row per live one-time secret."""

from datetime import UTC, datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from ots.database import Base


class Secret(Base):
    """A stored, client-encrypted secret.

    A row is either present (active) or absent (consumed, burned or expired);
    there is no soft-delete state. The server never interprets ciphertext,
    iv or salt.
    """

    __tablename__ = "secrets"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    ciphertext: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    iv: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    salt: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    burn_after_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    # Index for the sweeper's range delete
    __table_args__ = (
        Index("idx_secrets_expires_at", "expires_at"),
        CheckConstraint("expires_at > created_at", name="ck_secrets_expiry_after_creation"),
    )

    def __repr__(self):
        return f"<Secret(id=***{self.id[-4:]}, expires_at={self.expires_at})>"

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if the secret has passed its expiry."""
        return is_expired(self.expires_at, now)


def is_expired(expires_at: datetime, now: datetime | None = None) -> bool:
    """Compare an expiry timestamp against now (UTC).

    SQLite hands back timezone-naive datetimes; those are stored as UTC.
    """
    now = now or datetime.now(UTC)
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return now > expires_at
