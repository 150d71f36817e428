"""
Tests for logout and session storage adapters.
"""

import asyncio
import json
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from redis.exceptions import ConnectionError as RedisConnectionError, LockError

from cas_gate.adapters.sessions import SessionState
from cas_gate.adapters.impl.memory_logout import InMemoryLogoutStore
from cas_gate.adapters.impl.memory_sessions import InMemorySessionStore
from cas_gate.adapters.impl.redis_logout import RedisLogoutStore
from cas_gate.adapters.impl.redis_sessions import RedisSessionStore
from cas_gate.core.exceptions import LogoutStoreError, SessionStoreError
from cas_gate.models.schemas import Receipt


@pytest.fixture
def sample_receipt():
    """Create a sample receipt for testing."""
    return Receipt(
        username="alice",
        service_ticket="ST-1",
        proxy_list=["https://portal.example.edu/"],
        attributes={"mail": "alice@example.edu", "groups": ["staff", "admins"]}
    )


@pytest.fixture
def mock_redis():
    """Create a mock async Redis client."""
    client = MagicMock()
    client.set = AsyncMock(return_value=True)
    client.get = AsyncMock(return_value=None)
    client.exists = AsyncMock(return_value=0)
    client.delete = AsyncMock(return_value=1)
    client.aclose = AsyncMock()

    lock = MagicMock()
    lock.acquire = AsyncMock(return_value=True)
    lock.release = AsyncMock()
    client.lock.return_value = lock
    return client


class TestSessionState:
    """Test session state transitions."""

    def test_store_receipt(self, sample_receipt):
        """Test storing a receipt marks it fresh and resets the login bookkeeping."""
        state = SessionState(gateway_attempted=True, ticket_retry_count=2)

        state.store_receipt(sample_receipt)

        assert state.username == "alice"
        assert state.receipt_fresh is True
        assert state.receipt_fresh_before_redirect is True
        assert state.gateway_attempted is False
        assert state.ticket_retry_count == 0

    def test_consume_freshness_order(self, sample_receipt):
        """Test the pre-redirect flag is cleared before the fresh flag."""
        state = SessionState()
        state.store_receipt(sample_receipt)

        state.consume_freshness()
        assert state.receipt_fresh_before_redirect is False
        assert state.receipt_fresh is True

        state.consume_freshness()
        assert state.receipt_fresh is False

    def test_clear(self, sample_receipt):
        """Test clearing drops every attribute."""
        state = SessionState(gateway_attempted=True, ticket_retry_count=1)
        state.store_receipt(sample_receipt)

        state.clear()

        assert state == SessionState()
        assert state.username is None

    def test_dict_round_trip(self, sample_receipt):
        """Test a state survives serialization for Redis."""
        state = SessionState(ticket_retry_count=2)
        state.store_receipt(sample_receipt)

        restored = SessionState.from_dict(json.loads(json.dumps(state.to_dict())))

        assert restored == state
        assert restored.receipt.proxying_service == "https://portal.example.edu/"


class TestInMemoryLogoutStore:
    """Test the single-process logout store."""

    @pytest.mark.asyncio
    async def test_insert_then_contains(self):
        """Test an inserted ticket is reported as pending."""
        store = InMemoryLogoutStore()

        assert not await store.contains("ST-1")
        await store.insert("ST-1")
        assert await store.contains("ST-1")
        assert not await store.contains("ST-2")

    @pytest.mark.asyncio
    async def test_insert_is_idempotent(self):
        """Test inserting a ticket twice keeps one entry."""
        store = InMemoryLogoutStore()

        await store.insert("ST-1")
        await store.insert("ST-1")

        assert len(store) == 1
        assert await store.contains("ST-1")


class TestInMemorySessionStore:
    """Test the in-process session store."""

    @pytest.mark.asyncio
    async def test_unknown_session_is_empty(self):
        """Test opening an unknown session yields a fresh state."""
        store = InMemorySessionStore()

        async with store.session("sid") as state:
            assert state == SessionState()

    @pytest.mark.asyncio
    async def test_changes_saved_on_clean_exit(self, sample_receipt):
        """Test changes made inside the block are persisted."""
        store = InMemorySessionStore()

        async with store.session("sid") as state:
            state.store_receipt(sample_receipt)

        assert store.get("sid").username == "alice"

    @pytest.mark.asyncio
    async def test_changes_discarded_on_error(self):
        """Test an exception inside the block leaves the stored state untouched."""
        store = InMemorySessionStore()

        with pytest.raises(RuntimeError):
            async with store.session("sid") as state:
                state.ticket_retry_count = 3
                raise RuntimeError("boom")

        assert store.get("sid") is None

    @pytest.mark.asyncio
    async def test_concurrent_updates_are_serialized(self):
        """Test read-modify-writes on one session do not lose updates."""
        store = InMemorySessionStore()

        async def bump():
            async with store.session("sid") as state:
                count = state.ticket_retry_count
                await asyncio.sleep(0)
                state.ticket_retry_count = count + 1

        await asyncio.gather(*(bump() for _ in range(10)))

        assert store.get("sid").ticket_retry_count == 10

    @pytest.mark.asyncio
    async def test_delete(self, sample_receipt):
        """Test deleting a session."""
        store = InMemorySessionStore()
        async with store.session("sid") as state:
            state.store_receipt(sample_receipt)

        assert await store.delete("sid") is True
        assert await store.delete("sid") is False
        assert store.get("sid") is None

    def test_new_session_ids_are_unique(self):
        """Test minted session ids do not repeat."""
        store = InMemorySessionStore()

        ids = {store.new_session_id() for _ in range(100)}

        assert len(ids) == 100

    @pytest.mark.asyncio
    async def test_exists_and_peek(self, sample_receipt):
        """Test lookups report saved sessions only and return copies."""
        store = InMemorySessionStore()

        assert await store.exists("sid") is False
        assert await store.peek("sid") is None

        async with store.session("sid") as state:
            state.store_receipt(sample_receipt)

        assert await store.exists("sid") is True
        peeked = await store.peek("sid")
        assert peeked.username == "alice"

        peeked.clear()
        assert store.get("sid").username == "alice"

    @pytest.mark.asyncio
    async def test_rotate_moves_state(self, sample_receipt):
        """Test rotating an open session moves its state to a new id."""
        store = InMemorySessionStore()

        async with store.session("old") as state:
            state.store_receipt(sample_receipt)
            new_id = await store.rotate(state)

        assert new_id != "old"
        assert store.get(new_id).username == "alice"
        assert store.get("old") == SessionState()

    @pytest.mark.asyncio
    async def test_idle_sessions_expire_with_their_locks(self):
        """Test sessions unused for the duration are evicted along with their locks."""
        with patch("cas_gate.adapters.impl.memory_sessions.time") as mock_time:
            mock_time.monotonic.return_value = 1000.0
            store = InMemorySessionStore(duration=60)

            for i in range(50):
                async with store.session(f"sid-{i}") as state:
                    state.gateway_attempted = True

            assert len(store.sessions) == 50
            assert len(store._locks) == 50
            assert await store.exists("sid-0")

            mock_time.monotonic.return_value = 1060.0
            assert not await store.exists("sid-0")

        assert store.sessions == {}
        assert store._locks == {}

    @pytest.mark.asyncio
    async def test_saving_refreshes_lifetime(self):
        """Test a session that keeps being used does not expire."""
        with patch("cas_gate.adapters.impl.memory_sessions.time") as mock_time:
            mock_time.monotonic.return_value = 1000.0
            store = InMemorySessionStore(duration=60)
            async with store.session("sid") as state:
                state.ticket_retry_count = 1

            mock_time.monotonic.return_value = 1050.0
            async with store.session("sid") as state:
                assert state.ticket_retry_count == 1

            mock_time.monotonic.return_value = 1100.0
            assert await store.exists("sid")
            assert (await store.peek("sid")).ticket_retry_count == 1

    @pytest.mark.asyncio
    async def test_expired_session_opens_empty(self, sample_receipt):
        """Test an expired session is never handed out again."""
        with patch("cas_gate.adapters.impl.memory_sessions.time") as mock_time:
            mock_time.monotonic.return_value = 1000.0
            store = InMemorySessionStore(duration=60)
            async with store.session("sid") as state:
                state.store_receipt(sample_receipt)

            mock_time.monotonic.return_value = 1061.0
            assert await store.peek("sid") is None
            async with store.session("sid") as state:
                assert state == SessionState()

    @pytest.mark.asyncio
    async def test_lock_dropped_when_nothing_saved(self):
        """Test a failed block on an unknown session leaves no lock behind."""
        store = InMemorySessionStore()

        with pytest.raises(RuntimeError):
            async with store.session("sid"):
                raise RuntimeError("boom")

        assert store._locks == {}
        assert store._lock_users == {}


class TestRedisLogoutStore:
    """Test the Redis logout store against a mocked client."""

    @pytest.mark.asyncio
    async def test_insert_sets_expiring_key(self, mock_redis):
        """Test a ticket is stored as its own key with the retention TTL."""
        store = RedisLogoutStore(mock_redis, key_prefix="test:logout:", ttl_seconds=600)

        await store.insert("ST-7")

        mock_redis.set.assert_awaited_once_with("test:logout:ST-7", "1", ex=600)

    @pytest.mark.asyncio
    async def test_contains(self, mock_redis):
        """Test contains checks key existence."""
        store = RedisLogoutStore(mock_redis, key_prefix="test:logout:")
        mock_redis.exists.return_value = 1

        assert await store.contains("ST-7") is True
        mock_redis.exists.assert_awaited_once_with("test:logout:ST-7")

        mock_redis.exists.return_value = 0
        assert await store.contains("ST-8") is False

    @pytest.mark.asyncio
    async def test_backend_failure(self, mock_redis):
        """Test Redis errors surface as LogoutStoreError."""
        store = RedisLogoutStore(mock_redis)
        mock_redis.set.side_effect = RedisConnectionError("connection refused")
        mock_redis.exists.side_effect = RedisConnectionError("connection refused")

        with pytest.raises(LogoutStoreError):
            await store.insert("ST-7")
        with pytest.raises(LogoutStoreError):
            await store.contains("ST-7")

    @pytest.mark.asyncio
    async def test_close(self, mock_redis):
        """Test closing releases the client."""
        store = RedisLogoutStore(mock_redis)

        await store.close()

        mock_redis.aclose.assert_awaited_once()


class TestRedisSessionStore:
    """Test the Redis session store against a mocked client."""

    @pytest.mark.asyncio
    async def test_session_round_trip(self, mock_redis, sample_receipt):
        """Test a session is loaded, locked and saved as JSON."""
        stored = SessionState(ticket_retry_count=1)
        mock_redis.get.return_value = json.dumps(stored.to_dict())
        store = RedisSessionStore(mock_redis, key_prefix="test:session:", duration=60)

        async with store.session("sid") as state:
            assert state.ticket_retry_count == 1
            state.store_receipt(sample_receipt)

        mock_redis.lock.assert_called_once_with("test:session:lock:sid", timeout=30.0, blocking_timeout=10.0)
        mock_redis.get.assert_awaited_once_with("test:session:sid")

        key, payload = mock_redis.set.await_args.args
        assert key == "test:session:sid"
        assert mock_redis.set.await_args.kwargs == {"ex": 60}
        saved = SessionState.from_dict(json.loads(payload))
        assert saved.username == "alice"
        assert saved.ticket_retry_count == 0

        mock_redis.lock.return_value.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_corrupt_session_starts_fresh(self, mock_redis):
        """Test unreadable session data is replaced by an empty state."""
        mock_redis.get.return_value = "{not json"
        store = RedisSessionStore(mock_redis)

        async with store.session("sid") as state:
            assert state == SessionState()

    @pytest.mark.asyncio
    async def test_lock_timeout(self, mock_redis):
        """Test a busy session fails instead of waiting forever."""
        mock_redis.lock.return_value.acquire.return_value = False
        store = RedisSessionStore(mock_redis)

        with pytest.raises(SessionStoreError):
            async with store.session("sid"):
                pass

        mock_redis.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_not_saved_on_error(self, mock_redis):
        """Test an exception inside the block skips the save but releases the lock."""
        store = RedisSessionStore(mock_redis)

        with pytest.raises(RuntimeError):
            async with store.session("sid") as state:
                state.gateway_attempted = True
                raise RuntimeError("boom")

        mock_redis.set.assert_not_awaited()
        mock_redis.lock.return_value.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_lost_lock_is_logged_not_raised(self, mock_redis):
        """Test a lock that expired while held does not fail the request."""
        mock_redis.lock.return_value.release.side_effect = LockError("not owned")
        store = RedisSessionStore(mock_redis)

        async with store.session("sid") as state:
            state.gateway_attempted = True

        mock_redis.set.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_backend_failure(self, mock_redis):
        """Test Redis errors surface as SessionStoreError."""
        mock_redis.get.side_effect = RedisConnectionError("connection refused")
        store = RedisSessionStore(mock_redis)

        with pytest.raises(SessionStoreError):
            async with store.session("sid"):
                pass

    @pytest.mark.asyncio
    async def test_delete(self, mock_redis):
        """Test deleting a session key."""
        store = RedisSessionStore(mock_redis, key_prefix="test:session:")

        assert await store.delete("sid") is True
        mock_redis.delete.assert_awaited_once_with("test:session:sid")

    @pytest.mark.asyncio
    async def test_exists(self, mock_redis):
        """Test existence is a key lookup."""
        store = RedisSessionStore(mock_redis, key_prefix="test:session:")
        mock_redis.exists.return_value = 1

        assert await store.exists("sid") is True
        mock_redis.exists.assert_awaited_once_with("test:session:sid")

        mock_redis.exists.return_value = 0
        assert await store.exists("other") is False

    @pytest.mark.asyncio
    async def test_peek_does_not_lock_or_save(self, mock_redis):
        """Test peeking reads the session without touching its lock or expiry."""
        mock_redis.get.return_value = json.dumps(SessionState(gateway_attempted=True).to_dict())
        store = RedisSessionStore(mock_redis)

        state = await store.peek("sid")

        assert state.gateway_attempted is True
        mock_redis.lock.assert_not_called()
        mock_redis.set.assert_not_awaited()

        mock_redis.get.return_value = None
        assert await store.peek("sid") is None

    @pytest.mark.asyncio
    async def test_lookup_failures(self, mock_redis):
        """Test Redis errors on lookups surface as SessionStoreError."""
        mock_redis.exists.side_effect = RedisConnectionError("connection refused")
        mock_redis.get.side_effect = RedisConnectionError("connection refused")
        store = RedisSessionStore(mock_redis)

        with pytest.raises(SessionStoreError):
            await store.exists("sid")
        with pytest.raises(SessionStoreError):
            await store.peek("sid")
