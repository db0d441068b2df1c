"""Tests for SecretStore (ots/services/secret_store.py).

Covers:
- Create / consume round trip
- Consume-once under concurrency, burn racing consume
- Lazy expiry on read
- Rollback on storage failure and on deadline expiry
- Duplicate IDs, counting and the sweeper's range delete
"""

import asyncio
from datetime import timedelta
from unittest.mock import patch

import aiosqlite
import pytest
from sqlalchemy.exc import OperationalError

from ots.exceptions import (
    DuplicateIDError,
    OperationTimeoutError,
    SecretNotFoundError,
    StorageError,
)
from ots.services.secret_store import ConsumedSecret, SecretStore
from ots.utils.ids import generate_secret_id


async def create_secret(store, secret_id=None, ttl=3600, salt=b"s" * 16):
    secret_id = secret_id or generate_secret_id()
    await store.create(
        secret_id,
        b"ciphertext-" + secret_id.encode(),
        b"\x09" * 12,
        salt,
        store.now() + timedelta(seconds=ttl),
    )
    return secret_id


class TestCreateAndConsume:
    @pytest.mark.asyncio
    async def test_round_trip_is_byte_exact(self, store):
        ciphertext = bytes(range(256)) * 4
        await store.create(
            "A" * 22, ciphertext, b"\x00" * 12, b"\xff" * 16, store.now() + timedelta(hours=1)
        )

        consumed = await store.consume_once("A" * 22)

        assert consumed == ConsumedSecret(ciphertext=ciphertext, iv=b"\x00" * 12, salt=b"\xff" * 16)

    @pytest.mark.asyncio
    async def test_salt_may_be_absent(self, store):
        secret_id = await create_secret(store, salt=None)

        consumed = await store.consume_once(secret_id)

        assert consumed.salt is None

    @pytest.mark.asyncio
    async def test_second_consume_is_not_found(self, store):
        secret_id = await create_secret(store)

        await store.consume_once(secret_id)

        with pytest.raises(SecretNotFoundError):
            await store.consume_once(secret_id)

    @pytest.mark.asyncio
    async def test_unknown_id_is_not_found(self, store):
        with pytest.raises(SecretNotFoundError):
            await store.consume_once(generate_secret_id())

    @pytest.mark.asyncio
    async def test_rejects_expiry_not_after_creation(self, store):
        with pytest.raises(ValueError):
            await store.create(generate_secret_id(), b"c", b"\x00" * 12, None, store.now())

        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_duplicate_id(self, store):
        secret_id = await create_secret(store)

        with pytest.raises(DuplicateIDError):
            await create_secret(store, secret_id=secret_id)

        # Original row untouched
        consumed = await store.consume_once(secret_id)
        assert consumed.ciphertext == b"ciphertext-" + secret_id.encode()


class TestConcurrency:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("readers", [1, 2, 8])
    async def test_concurrent_consume_has_single_winner(self, store, readers):
        secret_id = await create_secret(store)

        results = await asyncio.gather(
            *(store.consume_once(secret_id) for _ in range(readers)),
            return_exceptions=True,
        )

        winners = [r for r in results if isinstance(r, ConsumedSecret)]
        losers = [r for r in results if isinstance(r, SecretNotFoundError)]
        assert len(winners) == 1
        assert len(losers) == readers - 1

    @pytest.mark.asyncio
    async def test_burn_races_consume(self, store):
        secret_id = await create_secret(store)

        consumed, burned = await asyncio.gather(
            store.consume_once(secret_id),
            store.burn(secret_id),
            return_exceptions=True,
        )

        outcomes = [consumed, burned]
        failures = [o for o in outcomes if isinstance(o, SecretNotFoundError)]
        assert len(failures) == 1
        assert await store.count() == 0


class TestExpiry:
    @pytest.mark.asyncio
    async def test_expired_secret_is_not_returned(self, store, clock):
        secret_id = await create_secret(store, ttl=300)

        clock.advance(301)

        with pytest.raises(SecretNotFoundError):
            await store.consume_once(secret_id)

    @pytest.mark.asyncio
    async def test_expired_read_removes_row(self, store, clock):
        secret_id = await create_secret(store, ttl=300)
        clock.advance(301)

        with pytest.raises(SecretNotFoundError):
            await store.consume_once(secret_id)

        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_readable_until_expiry(self, store, clock):
        secret_id = await create_secret(store, ttl=300)

        clock.advance(299)

        consumed = await store.consume_once(secret_id)
        assert consumed.iv == b"\x09" * 12

    @pytest.mark.asyncio
    async def test_delete_expired_removes_only_past_rows(self, store, clock):
        expiring = await create_secret(store, ttl=300)
        await create_secret(store, ttl=300)
        live = await create_secret(store, ttl=3600)

        clock.advance(600)
        removed = await store.delete_expired()

        assert removed == 2
        assert await store.count() == 1
        assert (await store.consume_once(live)).iv == b"\x09" * 12
        with pytest.raises(SecretNotFoundError):
            await store.consume_once(expiring)

    @pytest.mark.asyncio
    async def test_delete_expired_with_nothing_to_do(self, store):
        await create_secret(store)

        assert await store.delete_expired() == 0
        assert await store.count() == 1


class TestBurn:
    @pytest.mark.asyncio
    async def test_burn_removes_secret(self, store):
        secret_id = await create_secret(store)

        await store.burn(secret_id)

        with pytest.raises(SecretNotFoundError):
            await store.consume_once(secret_id)

    @pytest.mark.asyncio
    async def test_burn_unknown_id(self, store):
        with pytest.raises(SecretNotFoundError):
            await store.burn(generate_secret_id())

    @pytest.mark.asyncio
    async def test_burn_ignores_expiry(self, store, clock):
        secret_id = await create_secret(store, ttl=300)
        clock.advance(3600)

        await store.burn(secret_id)

        assert await store.count() == 0


class TestFailureRollback:
    @pytest.mark.asyncio
    async def test_storage_failure_leaves_secret_intact(self, store):
        secret_id = await create_secret(store)
        original = SecretStore._delete_returning

        async def delete_then_fail(self, session, target_id):
            await original(self, session, target_id)
            raise OperationalError("DELETE FROM secrets", {}, Exception("connection lost"))

        with patch.object(SecretStore, "_delete_returning", delete_then_fail):
            with pytest.raises(StorageError):
                await store.consume_once(secret_id)

        consumed = await store.consume_once(secret_id)
        assert consumed.ciphertext == b"ciphertext-" + secret_id.encode()

    @pytest.mark.asyncio
    async def test_timeout_rolls_back(self, store):
        secret_id = await create_secret(store)
        original = SecretStore._delete_returning

        async def delete_then_stall(self, session, target_id):
            row = await original(self, session, target_id)
            await asyncio.sleep(5)
            return row

        with patch.object(SecretStore, "_delete_returning", delete_then_stall):
            with pytest.raises(OperationTimeoutError):
                await store.consume_once(secret_id, timeout=0.2)

        consumed = await store.consume_once(secret_id)
        assert consumed.iv == b"\x09" * 12

    @pytest.mark.asyncio
    async def test_deadline_during_commit_delivers_secret(self, store):
        """A consume whose commit outlasts the deadline still returns the content."""
        secret_id = await create_secret(store)
        original_commit = aiosqlite.Connection.commit

        async def slow_commit(self):
            await asyncio.sleep(0.3)
            await original_commit(self)

        with patch.object(aiosqlite.Connection, "commit", slow_commit):
            consumed = await store.consume_once(secret_id, timeout=0.1)

        assert consumed.ciphertext == b"ciphertext-" + secret_id.encode()
        with pytest.raises(SecretNotFoundError):
            await store.consume_once(secret_id)

    @pytest.mark.asyncio
    async def test_deadline_during_commit_completes_burn(self, store):
        secret_id = await create_secret(store)
        original_commit = aiosqlite.Connection.commit

        async def slow_commit(self):
            await asyncio.sleep(0.3)
            await original_commit(self)

        with patch.object(aiosqlite.Connection, "commit", slow_commit):
            await store.burn(secret_id, timeout=0.1)

        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_cancelled_caller_waits_for_commit(self, store):
        """Cancelling the caller mid-commit does not abandon the transaction."""
        secret_id = await create_secret(store)
        original_commit = aiosqlite.Connection.commit
        commit_started = asyncio.Event()

        async def slow_commit(self):
            commit_started.set()
            await asyncio.sleep(0.3)
            await original_commit(self)

        with patch.object(aiosqlite.Connection, "commit", slow_commit):
            task = asyncio.create_task(store.consume_once(secret_id))
            await commit_started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        # The commit landed, so the secret is gone rather than half-consumed
        assert await store.count() == 0

    def test_timeout_is_a_storage_error(self):
        assert issubclass(OperationTimeoutError, StorageError)

    @pytest.mark.asyncio
    async def test_default_timeout_applies(self, session_factory, clock):
        store = SecretStore(session_factory, clock=clock, default_timeout=0.2)
        secret_id = await create_secret(store)

        async def stall(self, session, target_id):
            await asyncio.sleep(5)

        with patch.object(SecretStore, "_delete_returning", stall):
            with pytest.raises(OperationTimeoutError):
                await store.consume_once(secret_id)

        assert await store.count() == 1


class TestRowLockStrategy:
    """The SELECT ... FOR UPDATE path, forced on over SQLite.

    SQLite ignores FOR UPDATE, so this checks the statement sequence and the
    consume semantics rather than the locking itself.
    """

    @pytest.fixture
    def locking_store(self, session_factory, clock):
        return SecretStore(session_factory, clock=clock, row_locking=True)

    @pytest.mark.asyncio
    async def test_round_trip(self, locking_store):
        secret_id = await create_secret(locking_store)

        consumed = await locking_store.consume_once(secret_id)

        assert consumed.salt == b"s" * 16
        with pytest.raises(SecretNotFoundError):
            await locking_store.consume_once(secret_id)

    @pytest.mark.asyncio
    async def test_expired_row_is_deleted_but_not_returned(self, locking_store, clock):
        secret_id = await create_secret(locking_store, ttl=300)
        clock.advance(301)

        with pytest.raises(SecretNotFoundError):
            await locking_store.consume_once(secret_id)

        assert await locking_store.count() == 0

    @pytest.mark.asyncio
    async def test_dialect_selection(self, store, locking_store, session_factory):
        async with session_factory() as session:
            assert store._uses_row_locks(session) is False
            assert locking_store._uses_row_locks(session) is True
