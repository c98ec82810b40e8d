"""
KeyValueStorePort — the single port in kvqueue.

Any object satisfying this structural Protocol can act as the backing store.
Everything above it (queues, deliveries, heartbeats, crash recovery) is built
from exactly these primitives, so an adapter only has to map each method onto
one store command.

Atomicity contract
------------------
Each method is atomic on its own. The two-key moves, rpoplpush() and
lrem_lpush(), never leave an element observed in neither list or in both
lists; recovery and reject rely on that.

List orientation
----------------
The right end of a list is its front, the left end its back: lpush() appends
to the back, rpoplpush() takes from the front of `source` and appends to the
back of `destination`.

Missing keys
------------
Reads of missing keys are not errors: llen() returns 0, smembers() and
lrange() return empty lists, rpoplpush() returns None, ttl() returns a
negative duration.

All methods raise StorageError on I/O failure.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Protocol, runtime_checkable


@runtime_checkable
class KeyValueStorePort(Protocol):
    """
    Minimal interface required by kvqueue core.

    Implementing adapters (built-in):
      - InMemoryStore — asyncio.Lock-based, with an injectable clock for tests
      - RedisStore    — redis.asyncio client
    """

    async def set(self, key: str, value: str, ttl: timedelta) -> bool:
        """Set `key` to `value`, expiring after `ttl`. Returns True on success."""
        ...

    async def ttl(self, key: str) -> timedelta:
        """
        Remaining time-to-live of `key`.

        Returns -1s for a key without expiry and -2s for a missing key.
        """
        ...

    async def delete(self, key: str) -> int:
        """Delete `key`. Returns the number of keys removed (0 or 1)."""
        ...

    async def sadd(self, key: str, member: str) -> int:
        """Add `member` to a set. Returns 1 if it was not yet a member."""
        ...

    async def srem(self, key: str, member: str) -> int:
        """Remove `member` from a set. Returns 1 if it was a member."""
        ...

    async def smembers(self, key: str) -> list[str]:
        """All members of a set, in no particular order."""
        ...

    async def llen(self, key: str) -> int:
        """Length of a list."""
        ...

    async def lpush(self, key: str, value: str) -> int:
        """Append `value` to the back of a list. Returns the new length."""
        ...

    async def rpoplpush(self, source: str, destination: str) -> str | None:
        """
        Atomically pop the front of `source` and push it to the back of
        `destination`. Returns the moved element, or None if `source` is empty.
        """
        ...

    async def lrem(self, key: str, count: int, value: str) -> int:
        """Remove up to `count` occurrences of `value`. Returns how many were removed."""
        ...

    async def lrem_lpush(self, source: str, destination: str, value: str) -> bool:
        """
        Atomically remove one occurrence of `value` from `source` and push it
        to the back of `destination`. Nothing is pushed when `value` is not in
        `source`. Returns True if the element was moved.
        """
        ...

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        """
        Elements between `start` and `stop` inclusive, back-to-front.

        Not used by the queue protocol; kept for inspecting lists from
        tooling and tests.
        """
        ...
