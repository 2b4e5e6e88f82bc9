"""SQLite-backed coordination store for workers sharing one host."""

from __future__ import annotations

import sqlite3
import time
import uuid
from contextlib import contextmanager
from typing import TYPE_CHECKING

from deltaq.coordination.base import LockLost
from deltaq.errors import CoordinationStoreUnavailable

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path

_POLL_INTERVAL = 0.05

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS kv (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    expires_at REAL
);

CREATE TABLE IF NOT EXISTS locks (
    name       TEXT PRIMARY KEY,
    token      TEXT NOT NULL,
    expires_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS queue (
    id      INTEGER PRIMARY KEY AUTOINCREMENT,
    queue   TEXT NOT NULL,
    payload TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_queue_name ON queue(queue, id);
"""


def _like_escape(prefix: str) -> str:
    return prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SqliteLock:
    """Row in the ``locks`` table holding an owner token and an expiry."""

    def __init__(self, store: SqliteStore, name: str, timeout: int) -> None:
        self._store = store
        self.name = name
        self.timeout = timeout
        self.token = uuid.uuid4().hex

    def _try_acquire(self) -> bool:
        now = self._store.clock()
        with self._store.transaction() as conn:
            conn.execute(
                "DELETE FROM locks WHERE name = ? AND expires_at <= ?",
                (self.name, now),
            )
            cursor = conn.execute(
                "INSERT OR IGNORE INTO locks (name, token, expires_at) VALUES (?, ?, ?)",
                (self.name, self.token, now + self.timeout),
            )
            return cursor.rowcount == 1

    def acquire(self, *, blocking: bool = False, blocking_timeout: float | None = None) -> bool:
        if self._try_acquire():
            return True
        if not blocking:
            return False

        deadline = None if blocking_timeout is None else time.monotonic() + blocking_timeout
        while deadline is None or time.monotonic() < deadline:
            time.sleep(_POLL_INTERVAL)
            if self._try_acquire():
                return True
        return False

    def release(self) -> None:
        with self._store.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM locks WHERE name = ? AND token = ? AND expires_at > ?",
                (self.name, self.token, self._store.clock()),
            )
            if cursor.rowcount == 1:
                return
            # Expired but not taken over yet: clean up our own stale row.
            conn.execute(
                "DELETE FROM locks WHERE name = ? AND token = ?",
                (self.name, self.token),
            )
        raise LockLost(f"Lock '{self.name}' expired before release")


class SqliteStore:
    """Coordination store in a SQLite file (WAL mode).

    Every operation opens its own connection, so one store object can be
    shared by threads and the same file by separate worker processes.
    Expiry is evaluated against *clock* (``time.time`` by default).
    """

    def __init__(self, db_path: Path, clock: Callable[[], float] = time.time) -> None:
        self.db_path = db_path
        self.clock = clock
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = self._connect()
            try:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.executescript(_SCHEMA_SQL)
            finally:
                conn.close()
        except (OSError, sqlite3.Error) as exc:
            raise CoordinationStoreUnavailable(f"Cannot open {db_path}: {exc}") from exc

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path), timeout=30, isolation_level=None)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside ``BEGIN IMMEDIATE``; commit on success."""
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise CoordinationStoreUnavailable(f"Cannot open {self.db_path}: {exc}") from exc
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except BaseException as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            if isinstance(exc, sqlite3.Error):
                msg = f"SQLite error on {self.db_path}: {exc}"
                raise CoordinationStoreUnavailable(msg) from exc
            raise
        finally:
            conn.close()

    def _purge_expired(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            "DELETE FROM kv WHERE expires_at IS NOT NULL AND expires_at <= ?",
            (self.clock(),),
        )

    def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        with self.transaction() as conn:
            self._purge_expired(conn)
            cursor = conn.execute(
                "INSERT OR IGNORE INTO kv (key, value, expires_at) VALUES (?, ?, ?)",
                (key, value, self.clock() + ttl),
            )
            return cursor.rowcount == 1

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    def get(self, key: str) -> str | None:
        with self.transaction() as conn:
            self._purge_expired(conn)
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return None if row is None else str(row[0])

    def set(self, key: str, value: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO kv (key, value, expires_at) VALUES (?, ?, NULL) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, expires_at = NULL",
                (key, value),
            )

    def delete(self, key: str) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))

    def list_keys(self, prefix: str) -> list[str]:
        with self.transaction() as conn:
            self._purge_expired(conn)
            rows = conn.execute(
                "SELECT key FROM kv WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
                (_like_escape(prefix) + "%",),
            ).fetchall()
        return [str(row[0]) for row in rows]

    def flush(self, prefix: str) -> int:
        with self.transaction() as conn:
            self._purge_expired(conn)
            cursor = conn.execute(
                "DELETE FROM kv WHERE key LIKE ? ESCAPE '\\'",
                (_like_escape(prefix) + "%",),
            )
            return cursor.rowcount

    def lock(self, name: str, timeout: int) -> SqliteLock:
        return SqliteLock(self, name, timeout)

    def push(self, queue: str, payload: str) -> None:
        with self.transaction() as conn:
            conn.execute("INSERT INTO queue (queue, payload) VALUES (?, ?)", (queue, payload))

    def _pop_once(self, queue: str) -> str | None:
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT id, payload FROM queue WHERE queue = ? ORDER BY id LIMIT 1",
                (queue,),
            ).fetchone()
            if row is None:
                return None
            conn.execute("DELETE FROM queue WHERE id = ?", (row[0],))
            return str(row[1])

    def pop(self, queue: str, timeout: float = 0) -> str | None:
        payload = self._pop_once(queue)
        deadline = time.monotonic() + timeout
        while payload is None and time.monotonic() < deadline:
            time.sleep(_POLL_INTERVAL)
            payload = self._pop_once(queue)
        return payload

    def remove(self, queue: str, payload: str) -> int:
        with self.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM queue WHERE queue = ? AND payload = ?",
                (queue, payload),
            )
            return cursor.rowcount

    def length(self, queue: str) -> int:
        with self.transaction() as conn:
            row = conn.execute("SELECT count(*) FROM queue WHERE queue = ?", (queue,)).fetchone()
        return int(row[0])

    def close(self) -> None:
        """Nothing to close: connections are per operation."""
