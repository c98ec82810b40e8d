"""
InMemoryStore — asyncio.Lock-based key/value store for testing and development.

Emulates the subset of Redis semantics that KeyValueStorePort needs:

  - strings with an optional expiry
  - sets and lists that disappear once they become empty
  - WRONGTYPE failures when a command hits a key of another type

Expiry is evaluated lazily against `clock`, a zero-argument callable returning
seconds. Tests inject a fake clock to expire heartbeat leases without waiting.

Zero external dependencies. Safe for multiple concurrent coroutines in a
single event loop. NOT safe across processes or threads.
"""
from __future__ import annotations

import asyncio
import dataclasses
import time
from collections.abc import Callable
from datetime import timedelta

from kvqueue.domain.errors import StorageError

_Value = str | list[str] | set[str]


@dataclasses.dataclass
class InMemoryStore:
    """
    In-process key/value store.

    Parameters
    ----------
    clock : time source in seconds (default time.monotonic)
    """

    clock: Callable[[], float] = time.monotonic

    def __post_init__(self) -> None:
        self._data: dict[str, _Value] = {}
        self._expires_at: dict[str, float] = {}
        self._lock: asyncio.Lock = asyncio.Lock()

    # ------------------------------------------------------------------ #
    # Strings and expiry                                                   #
    # ------------------------------------------------------------------ #

    async def set(self, key: str, value: str, ttl: timedelta) -> bool:
        async with self._lock:
            self._data[key] = value
            self._expires_at[key] = self.clock() + ttl.total_seconds()
            return True

    async def get(self, key: str) -> str | None:
        """Value of a string key, or None if missing or expired."""
        async with self._lock:
            self._expire(key)
            value = self._data.get(key)
            if value is None:
                return None
            if not isinstance(value, str):
                raise _wrong_type(key)
            return value

    async def ttl(self, key: str) -> timedelta:
        async with self._lock:
            self._expire(key)
            if key not in self._data:
                return timedelta(seconds=-2)
            expires_at = self._expires_at.get(key)
            if expires_at is None:
                return timedelta(seconds=-1)
            return timedelta(seconds=expires_at - self.clock())

    async def delete(self, key: str) -> int:
        async with self._lock:
            self._expire(key)
            self._expires_at.pop(key, None)
            return 0 if self._data.pop(key, None) is None else 1

    async def keys(self) -> list[str]:
        """Sorted names of all live keys."""
        async with self._lock:
            for key in list(self._data):
                self._expire(key)
            return sorted(self._data)

    # ------------------------------------------------------------------ #
    # Sets                                                                 #
    # ------------------------------------------------------------------ #

    async def sadd(self, key: str, member: str) -> int:
        async with self._lock:
            members = self._set(key, create=True)
            if member in members:
                return 0
            members.add(member)
            return 1

    async def srem(self, key: str, member: str) -> int:
        async with self._lock:
            members = self._set(key)
            if member not in members:
                return 0
            members.discard(member)
            self._drop_if_empty(key)
            return 1

    async def smembers(self, key: str) -> list[str]:
        async with self._lock:
            return list(self._set(key))

    # ------------------------------------------------------------------ #
    # Lists (index 0 is the back, the last index is the front)            #
    # ------------------------------------------------------------------ #

    async def llen(self, key: str) -> int:
        async with self._lock:
            return len(self._list(key))

    async def lpush(self, key: str, value: str) -> int:
        async with self._lock:
            items = self._list(key, create=True)
            items.insert(0, value)
            return len(items)

    async def rpoplpush(self, source: str, destination: str) -> str | None:
        async with self._lock:
            items = self._list(source)
            if not items:
                return None
            # Type-check the destination before mutating the source.
            target = self._list(destination, create=True)
            value = items.pop()
            self._drop_if_empty(source)
            if source == destination:
                target = self._list(destination, create=True)
            target.insert(0, value)
            return value

    async def lrem(self, key: str, count: int, value: str) -> int:
        async with self._lock:
            items = self._list(key)
            limit = abs(count) or len(items)
            indexes = [i for i, item in enumerate(items) if item == value]
            if count < 0:
                indexes.reverse()
            removed = indexes[:limit]
            for i in sorted(removed, reverse=True):
                del items[i]
            self._drop_if_empty(key)
            return len(removed)

    async def lrem_lpush(self, source: str, destination: str, value: str) -> bool:
        async with self._lock:
            items = self._list(source)
            if value not in items:
                return False
            # Type-check the destination before mutating the source.
            self._list(destination)
            items.remove(value)
            self._drop_if_empty(source)
            self._list(destination, create=True).insert(0, value)
            return True

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        async with self._lock:
            items = self._list(key)
            n = len(items)
            if start < 0:
                start = max(n + start, 0)
            if stop < 0:
                stop = n + stop
            stop = min(stop, n - 1)
            if start > stop:
                return []
            return list(items[start : stop + 1])

    # ------------------------------------------------------------------ #
    # Internal helpers (callers hold the lock)                            #
    # ------------------------------------------------------------------ #

    def _expire(self, key: str) -> None:
        expires_at = self._expires_at.get(key)
        if expires_at is not None and expires_at <= self.clock():
            del self._expires_at[key]
            self._data.pop(key, None)

    def _set(self, key: str, create: bool = False) -> set[str]:
        self._expire(key)
        value = self._data.get(key)
        if value is None:
            value = set()
            if create:
                self._data[key] = value
        if not isinstance(value, set):
            raise _wrong_type(key)
        return value

    def _list(self, key: str, create: bool = False) -> list[str]:
        self._expire(key)
        value = self._data.get(key)
        if value is None:
            value = []
            if create:
                self._data[key] = value
        if not isinstance(value, list):
            raise _wrong_type(key)
        return value

    def _drop_if_empty(self, key: str) -> None:
        if key in self._data and not self._data[key]:
            del self._data[key]
            self._expires_at.pop(key, None)


def _wrong_type(key: str) -> StorageError:
    return StorageError(
        "WRONGTYPE Operation against a key holding the wrong kind of value",
        TypeError(key),
    )
