"""Persistent store for one-time secrets.

Every mutation runs inside a single transaction. The read path (consume_once)
is the only correctness-critical operation: for any ID, at most one call ever
observes the row's content, no matter how many callers race for it.

Two strategies give that guarantee:

- Engines with row-level locks (PostgreSQL, MySQL/MariaDB): ``SELECT ... FOR
  UPDATE`` blocks competing consumers on the same ID until the winner's
  transaction resolves, then the row is deleted.
- SQLite, which has no row locks: a single ``DELETE ... RETURNING`` acts as an
  atomic compare-and-delete.

Any failure after the row is claimed rolls the transaction back, so a
transient error leaves the secret retrievable rather than silently destroyed.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Optional, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ots.exceptions import (
    DuplicateIDError,
    OperationTimeoutError,
    SecretNotFoundError,
    StorageError,
)
from ots.models.secret import Secret, is_expired
from ots.utils.security import mask_sensitive

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]

ROW_LOCK_DIALECTS = frozenset({"postgresql", "mysql", "mariadb"})


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class ConsumedSecret:
    """Content captured from a row just before it was deleted."""

    ciphertext: bytes
    iv: bytes
    salt: Optional[bytes]


class SecretStore:
    """Owns the ``secrets`` table.

    Args:
        session_factory: Factory producing AsyncSession objects
        clock: Returns the current time as an aware UTC datetime
        row_locking: Force the row-lock strategy on or off; None picks it from
            the engine dialect
        default_timeout: Deadline in seconds applied when a call passes none
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utc_now,
        row_locking: Optional[bool] = None,
        default_timeout: Optional[float] = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock
        self._row_locking = row_locking
        self._default_timeout = default_timeout

    def now(self) -> datetime:
        return self._clock()

    def _uses_row_locks(self, session: AsyncSession) -> bool:
        if self._row_locking is not None:
            return self._row_locking
        return session.get_bind().dialect.name in ROW_LOCK_DIALECTS

    async def _with_deadline(
        self, operation: Callable[[], Awaitable[T]], timeout: Optional[float], name: str
    ) -> T:
        """Run operation under a deadline.

        On expiry the operation is cancelled and OperationTimeoutError is
        raised. Callers apply it to work done before COMMIT only, so leaving
        the session uncommitted rolls the transaction back.
        """
        timeout = timeout if timeout is not None else self._default_timeout
        if timeout is None:
            return await operation()
        try:
            return await asyncio.wait_for(operation(), timeout)
        except TimeoutError as e:
            raise OperationTimeoutError(f"{name} timed out after {timeout}s") from e

    async def _commit_to_completion(self, session: AsyncSession) -> None:
        """Commit without letting cancellation interrupt it.

        Once COMMIT is sent the driver finishes it regardless, so the caller
        must learn the real outcome rather than a timeout. If the awaiting
        task is cancelled, the session is kept open until the commit lands.
        """
        commit = asyncio.ensure_future(session.commit())
        try:
            await asyncio.shield(commit)
        except asyncio.CancelledError:
            await asyncio.wait([commit])
            raise

    async def create(
        self,
        secret_id: str,
        ciphertext: bytes,
        iv: bytes,
        salt: Optional[bytes],
        expires_at: datetime,
        timeout: Optional[float] = None,
    ) -> Secret:
        """Insert one secret row.

        The deadline covers the INSERT; the commit runs to completion.

        Raises:
            DuplicateIDError: The ID is already taken
            StorageError: Connectivity or transaction failure
            OperationTimeoutError: The deadline expired; nothing was inserted
        """
        created_at = self._clock()
        if expires_at <= created_at:
            raise ValueError("expires_at must be later than created_at")

        secret = Secret(
            id=secret_id,
            ciphertext=ciphertext,
            iv=iv,
            salt=salt,
            expires_at=expires_at,
            burn_after_read=True,
            created_at=created_at,
        )
        try:
            async with self._session_factory() as session:
                session.add(secret)
                await self._with_deadline(session.flush, timeout, "create")
                await self._commit_to_completion(session)
        except IntegrityError as e:
            raise DuplicateIDError(
                f"secret ID {mask_sensitive(secret_id)} already exists"
            ) from e
        except SQLAlchemyError as e:
            raise StorageError("failed to store secret") from e
        return secret

    async def consume_once(self, secret_id: str, timeout: Optional[float] = None) -> ConsumedSecret:
        """Atomically return and delete a secret.

        Expired rows are deleted too but reported as not found, so an expired
        secret is never returned even if the sweeper has not reached it yet.

        The deadline covers claiming the row only. Expiry before that point
        rolls the transaction back; the commit itself always runs to
        completion, and a committed consume returns the content.

        Raises:
            SecretNotFoundError: Absent, expired or already consumed
            StorageError: Connectivity or transaction failure (rolled back)
            OperationTimeoutError: The deadline expired before the row was claimed (rolled back)
        """
        now = self._clock()

        try:
            async with self._session_factory() as session:

                async def _claim() -> Any:
                    if self._uses_row_locks(session):
                        return await self._lock_and_delete(session, secret_id)
                    return await self._delete_returning(session, secret_id)

                # Leaving the session block without a commit rolls back
                row = await self._with_deadline(_claim, timeout, "consume")
                await self._commit_to_completion(session)
        except SQLAlchemyError as e:
            raise StorageError("failed to consume secret") from e

        if row is None:
            raise SecretNotFoundError()
        if is_expired(row.expires_at, now):
            logger.debug(f"Secret {mask_sensitive(secret_id)} expired before read")
            raise SecretNotFoundError()

        return ConsumedSecret(ciphertext=row.ciphertext, iv=row.iv, salt=row.salt)

    async def _lock_and_delete(self, session: AsyncSession, secret_id: str) -> Any:
        """Row-lock strategy: concurrent callers queue on FOR UPDATE."""
        result = await session.execute(
            select(Secret.ciphertext, Secret.iv, Secret.salt, Secret.expires_at)
            .where(Secret.id == secret_id)
            .with_for_update()
        )
        row = result.one_or_none()
        if row is None:
            return None

        deleted = await session.execute(
            delete(Secret)
            .where(Secret.id == secret_id)
            .execution_options(synchronize_session=False)
        )
        if deleted.rowcount != 1:
            # Row lock held, so this indicates a storage fault
            raise StorageError(f"locked row deleted {deleted.rowcount} rows")
        return row

    async def _delete_returning(self, session: AsyncSession, secret_id: str) -> Any:
        """Compare-and-delete strategy for engines without row locks."""
        result = await session.execute(
            delete(Secret)
            .where(Secret.id == secret_id)
            .returning(Secret.ciphertext, Secret.iv, Secret.salt, Secret.expires_at)
            .execution_options(synchronize_session=False)
        )
        return result.one_or_none()

    async def burn(self, secret_id: str, timeout: Optional[float] = None) -> None:
        """Delete a secret regardless of expiry.

        As with consume_once, the deadline stops at the delete and the commit
        is never interrupted.

        Raises:
            SecretNotFoundError: No row was deleted
            StorageError: Connectivity or transaction failure
            OperationTimeoutError: The deadline expired before the delete (rolled back)
        """
        try:
            async with self._session_factory() as session:

                async def _delete() -> int:
                    result = await session.execute(
                        delete(Secret)
                        .where(Secret.id == secret_id)
                        .execution_options(synchronize_session=False)
                    )
                    return result.rowcount

                deleted = await self._with_deadline(_delete, timeout, "burn")
                await self._commit_to_completion(session)
        except SQLAlchemyError as e:
            raise StorageError("failed to burn secret") from e

        if deleted == 0:
            raise SecretNotFoundError()

    async def count(self, timeout: Optional[float] = None) -> int:
        """Number of rows currently stored (includes expired rows not yet swept)."""

        async def _count() -> int:
            try:
                async with self._session_factory() as session:
                    total = await session.scalar(select(func.count()).select_from(Secret))
            except SQLAlchemyError as e:
                raise StorageError("failed to count secrets") from e
            return int(total or 0)

        return await self._with_deadline(_count, timeout, "count")

    async def delete_expired(self, now: Optional[datetime] = None) -> int:
        """Delete every row whose expiry is in the past.

        A single statement in its own short transaction; it holds locks only
        for the duration of the delete.

        Returns:
            Number of rows removed
        """
        cutoff = now or self._clock()
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(Secret)
                        .where(Secret.expires_at < cutoff)
                        .execution_options(synchronize_session=False)
                    )
                    return result.rowcount or 0
        except SQLAlchemyError as e:
            raise StorageError("failed to delete expired secrets") from e
