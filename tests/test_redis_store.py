"""Tests for deltaq.coordination.redis_store against a mocked redis client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockError, LockNotOwnedError

from deltaq.coordination import LockLost, open_store
from deltaq.coordination.redis_store import RedisStore
from deltaq.errors import CoordinationStoreUnavailable


@pytest.fixture()
def client() -> MagicMock:
    return MagicMock()


class TestRedisStore:
    def test_set_if_absent_uses_nx_and_ex(self, client: MagicMock) -> None:
        client.set.return_value = True
        store = RedisStore(client, prefix="app:")

        assert store.set_if_absent("incident_index:p1", "10", ttl=21600) is True
        client.set.assert_called_once_with("app:incident_index:p1", "10", nx=True, ex=21600)

    def test_set_if_absent_existing_key(self, client: MagicMock) -> None:
        client.set.return_value = None
        assert RedisStore(client).set_if_absent("k", "v", ttl=1) is False

    def test_list_keys_strips_prefix_and_escapes_pattern(self, client: MagicMock) -> None:
        client.scan_iter.return_value = iter(["app:ns[1]:b", "app:ns[1]:a"])
        store = RedisStore(client, prefix="app:")

        assert store.list_keys("ns[1]:") == ["ns[1]:a", "ns[1]:b"]
        client.scan_iter.assert_called_once_with(match="app:ns\\[1\\]:*")

    def test_flush_deletes_matching_keys(self, client: MagicMock) -> None:
        client.scan_iter.return_value = iter(["ns:a", "ns:b"])
        client.delete.return_value = 2

        assert RedisStore(client).flush("ns:") == 2
        client.delete.assert_called_once_with("ns:a", "ns:b")

    def test_flush_with_no_keys(self, client: MagicMock) -> None:
        client.scan_iter.return_value = iter([])

        assert RedisStore(client).flush("ns:") == 0
        client.delete.assert_not_called()

    def test_redis_errors_are_wrapped(self, client: MagicMock) -> None:
        client.get.side_effect = RedisConnectionError("connection refused")

        with pytest.raises(CoordinationStoreUnavailable, match="connection refused"):
            RedisStore(client).get("k")

    def test_queue_operations(self, client: MagicMock) -> None:
        client.lpop.return_value = "payload"
        client.blpop.return_value = ("queue:ts_delta", "later")
        client.lrem.return_value = 2
        client.llen.return_value = 4
        store = RedisStore(client)

        store.push("ts_delta", "payload")
        client.rpush.assert_called_once_with("queue:ts_delta", "payload")
        assert store.pop("ts_delta") == "payload"
        assert store.pop("ts_delta", timeout=5) == "later"
        client.blpop.assert_called_once_with(["queue:ts_delta"], timeout=5)
        assert store.remove("ts_delta", "payload") == 2
        client.lrem.assert_called_once_with("queue:ts_delta", 0, "payload")
        assert store.length("ts_delta") == 4


class TestRedisLock:
    def test_lock_uses_timeout(self, client: MagicMock) -> None:
        client.lock.return_value.acquire.return_value = True
        lock = RedisStore(client).lock("deltaq:lock:articles_delta", timeout=240)

        assert lock.acquire() is True
        client.lock.assert_called_once_with("deltaq:lock:articles_delta", timeout=240)
        client.lock.return_value.acquire.assert_called_once_with(
            blocking=False, blocking_timeout=None
        )

    def test_release_of_expired_lock(self, client: MagicMock) -> None:
        client.lock.return_value.release.side_effect = LockNotOwnedError("not owned")
        lock = RedisStore(client).lock("l", timeout=1)

        with pytest.raises(LockLost):
            lock.release()

    def test_lock_error_on_acquire_is_wrapped(self, client: MagicMock) -> None:
        client.lock.return_value.acquire.side_effect = LockError("cannot acquire")
        lock = RedisStore(client).lock("l", timeout=1)

        with pytest.raises(CoordinationStoreUnavailable, match="cannot acquire"):
            lock.acquire(blocking=True, blocking_timeout=1)


def test_open_store_redis_url() -> None:
    with patch("deltaq.coordination.redis_store.redis.Redis.from_url") as from_url:
        store = open_store("redis://cache:6379/2")

    assert isinstance(store, RedisStore)
    from_url.assert_called_once_with("redis://cache:6379/2", decode_responses=True)
