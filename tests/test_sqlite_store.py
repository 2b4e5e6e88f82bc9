"""Tests for deltaq.coordination.sqlite_store — single-host coordination store."""

from __future__ import annotations

from pathlib import Path

import pytest
from conftest import FakeClock

from deltaq.coordination import LockLost, open_store
from deltaq.coordination.sqlite_store import SqliteStore
from deltaq.errors import ConfigError


class TestKeys:
    def test_set_if_absent_only_writes_once(self, store: SqliteStore) -> None:
        assert store.set_if_absent("ns:p1", "10", ttl=60) is True
        assert store.set_if_absent("ns:p1", "99", ttl=60) is False
        assert store.get("ns:p1") == "10"

    def test_ttl_expiry(self, store: SqliteStore, clock: FakeClock) -> None:
        store.set_if_absent("ns:p1", "10", ttl=60)

        clock.advance(59)
        assert store.exists("ns:p1")

        clock.advance(1)
        assert not store.exists("ns:p1")
        assert store.get("ns:p1") is None
        # An expired entry can be written again.
        assert store.set_if_absent("ns:p1", "20", ttl=60) is True

    def test_list_keys_by_prefix(self, store: SqliteStore) -> None:
        store.set_if_absent("ns:b", "1", ttl=60)
        store.set_if_absent("ns:a", "1", ttl=60)
        store.set_if_absent("other:a", "1", ttl=60)
        store.set_if_absent("nsx:a", "1", ttl=60)

        assert store.list_keys("ns:") == ["ns:a", "ns:b"]

    def test_like_wildcards_are_literal(self, store: SqliteStore) -> None:
        store.set_if_absent("a_b:1", "1", ttl=60)
        store.set_if_absent("axb:1", "1", ttl=60)

        assert store.list_keys("a_b:") == ["a_b:1"]

    def test_flush_prefix(self, store: SqliteStore) -> None:
        store.set_if_absent("ns:a", "1", ttl=60)
        store.set_if_absent("ns:b", "1", ttl=60)
        store.set_if_absent("keep", "1", ttl=60)

        assert store.flush("ns:") == 2
        assert store.flush("ns:") == 0
        assert store.list_keys("") == ["keep"]

    def test_set_and_delete_without_ttl(self, store: SqliteStore, clock: FakeClock) -> None:
        store.set("flag", "1")
        clock.advance(10**9)
        assert store.exists("flag")

        store.delete("flag")
        assert not store.exists("flag")


class TestLocks:
    def test_second_holder_is_refused(self, store: SqliteStore) -> None:
        first = store.lock("l", timeout=240)
        second = store.lock("l", timeout=240)

        assert first.acquire() is True
        assert second.acquire() is False

        first.release()
        assert second.acquire() is True

    def test_lock_expires(self, store: SqliteStore, clock: FakeClock) -> None:
        crashed = store.lock("l", timeout=240)
        crashed.acquire()

        clock.advance(240)

        assert store.lock("l", timeout=240).acquire() is True

    def test_release_after_expiry_raises(self, store: SqliteStore, clock: FakeClock) -> None:
        lock = store.lock("l", timeout=10)
        lock.acquire()
        clock.advance(11)

        with pytest.raises(LockLost):
            lock.release()
        # The stale row is gone, so the name is free.
        assert store.lock("l", timeout=10).acquire() is True

    def test_release_does_not_free_new_holder(
        self, store: SqliteStore, clock: FakeClock
    ) -> None:
        old = store.lock("l", timeout=10)
        old.acquire()
        clock.advance(11)
        new = store.lock("l", timeout=10)
        assert new.acquire() is True

        with pytest.raises(LockLost):
            old.release()
        assert store.lock("l", timeout=10).acquire() is False

    def test_blocking_acquire_times_out(self, store: SqliteStore) -> None:
        store.lock("l", timeout=60).acquire()

        assert store.lock("l", timeout=60).acquire(blocking=True, blocking_timeout=0.1) is False


class TestQueue:
    def test_fifo(self, store: SqliteStore) -> None:
        store.push("q", "a")
        store.push("q", "b")

        assert store.length("q") == 2
        assert store.pop("q") == "a"
        assert store.pop("q") == "b"
        assert store.pop("q") is None

    def test_remove_all_copies(self, store: SqliteStore) -> None:
        for payload in ("a", "b", "a", "a"):
            store.push("q", payload)

        assert store.remove("q", "a") == 3
        assert store.length("q") == 1

    def test_queues_are_separate(self, store: SqliteStore) -> None:
        store.push("q1", "a")
        assert store.pop("q2") is None
        assert store.length("q1") == 1


class TestOpenStore:
    def test_sqlite_url(self, tmp_path: Path) -> None:
        store = open_store(f"sqlite:///{tmp_path / 'c.db'}")
        assert isinstance(store, SqliteStore)
        assert store.db_path == tmp_path / "c.db"

    def test_unknown_scheme(self) -> None:
        with pytest.raises(ConfigError, match="Unsupported"):
            open_store("memcached://localhost")
