"""Redis-backed coordination store (redis-py)."""

from __future__ import annotations

import functools
import logging
import re
from typing import TYPE_CHECKING, Any, TypeVar

import redis
from redis.exceptions import LockError, LockNotOwnedError, RedisError

from deltaq.coordination.base import LockLost
from deltaq.errors import CoordinationStoreUnavailable

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

_GLOB_SPECIAL_RE = re.compile(r"([*?\[\]\\])")

F = TypeVar("F", bound="Callable[..., Any]")


def _wrap_redis_errors(func: F) -> F:
    """Re-raise any redis error as :class:`CoordinationStoreUnavailable`."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except RedisError as exc:
            raise CoordinationStoreUnavailable(f"Redis error in {func.__name__}: {exc}") from exc

    return wrapper  # type: ignore[return-value]


def _queue_key(queue: str) -> str:
    return f"queue:{queue}"


class RedisLock:
    """Adapter over :class:`redis.lock.Lock` with deltaq's error semantics."""

    def __init__(self, lock: Any, name: str) -> None:
        self._lock = lock
        self.name = name

    @_wrap_redis_errors
    def acquire(self, *, blocking: bool = False, blocking_timeout: float | None = None) -> bool:
        return bool(self._lock.acquire(blocking=blocking, blocking_timeout=blocking_timeout))

    def release(self) -> None:
        try:
            self._lock.release()
        except LockNotOwnedError as exc:
            raise LockLost(f"Lock '{self.name}' expired before release") from exc
        except LockError as exc:
            raise LockLost(f"Lock '{self.name}' is not held: {exc}") from exc
        except RedisError as exc:
            raise CoordinationStoreUnavailable(f"Cannot release lock '{self.name}': {exc}") from exc


class RedisStore:
    """Coordination store on a shared Redis server.

    Keys are namespaced with *prefix* so several deployments can share a
    server. Queues use the ``queue:<name>`` list layout.
    """

    def __init__(self, client: Any, prefix: str = "") -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "") -> RedisStore:
        return cls(redis.Redis.from_url(url, decode_responses=True), prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _strip(self, key: str) -> str:
        return key[len(self._prefix) :]

    @_wrap_redis_errors
    def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        return bool(self._client.set(self._key(key), value, nx=True, ex=ttl))

    @_wrap_redis_errors
    def exists(self, key: str) -> bool:
        return bool(self._client.exists(self._key(key)))

    @_wrap_redis_errors
    def get(self, key: str) -> str | None:
        value = self._client.get(self._key(key))
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else str(value)

    @_wrap_redis_errors
    def set(self, key: str, value: str) -> None:
        self._client.set(self._key(key), value)

    @_wrap_redis_errors
    def delete(self, key: str) -> None:
        self._client.delete(self._key(key))

    @_wrap_redis_errors
    def list_keys(self, prefix: str) -> list[str]:
        pattern = _GLOB_SPECIAL_RE.sub(r"\\\1", self._key(prefix)) + "*"
        keys = []
        for raw in self._client.scan_iter(match=pattern):
            key = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
            keys.append(self._strip(key))
        return sorted(keys)

    @_wrap_redis_errors
    def flush(self, prefix: str) -> int:
        keys = [self._key(k) for k in self.list_keys(prefix)]
        if not keys:
            return 0
        return int(self._client.delete(*keys))

    def lock(self, name: str, timeout: int) -> RedisLock:
        return RedisLock(self._client.lock(self._key(name), timeout=timeout), name)

    @_wrap_redis_errors
    def push(self, queue: str, payload: str) -> None:
        self._client.rpush(self._key(_queue_key(queue)), payload)

    @_wrap_redis_errors
    def pop(self, queue: str, timeout: float = 0) -> str | None:
        key = self._key(_queue_key(queue))
        if timeout <= 0:
            value = self._client.lpop(key)
        else:
            item = self._client.blpop([key], timeout=timeout)
            value = item[1] if item else None
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else str(value)

    @_wrap_redis_errors
    def remove(self, queue: str, payload: str) -> int:
        return int(self._client.lrem(self._key(_queue_key(queue)), 0, payload))

    @_wrap_redis_errors
    def length(self, queue: str) -> int:
        return int(self._client.llen(self._key(_queue_key(queue))))

    def close(self) -> None:
        try:
            self._client.close()
        except RedisError as exc:
            logger.debug("Error while closing Redis client: %s", exc)
