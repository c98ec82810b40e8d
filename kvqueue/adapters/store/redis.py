"""
RedisStore — Redis adapter using the redis.asyncio client.

Install extras: pip install "kvqueue[redis]"

Every port method maps onto exactly one Redis command:

  set       → SET key value PX ttl
  ttl       → PTTL           (-1 / -2 passed through as seconds)
  delete    → DEL
  sadd      → SADD           srem → SREM        smembers → SMEMBERS
  llen      → LLEN           lpush → LPUSH      rpoplpush → RPOPLPUSH
  lrem      → LREM           lrange → LRANGE
  lrem_lpush → EVAL: LREM, then LPUSH only if an element was removed

Any redis.exceptions.RedisError is wrapped in StorageError. The client is
created with decode_responses=True, so every value crosses the port as str.
"""
from __future__ import annotations

import dataclasses
from collections.abc import Awaitable
from datetime import timedelta
from typing import TYPE_CHECKING, TypeVar

from redis.exceptions import RedisError

from kvqueue.domain.errors import StorageError

if TYPE_CHECKING:
    from redis.asyncio import Redis

T = TypeVar("T")

# Runs atomically on the server; the push depends on the LREM reply, which a
# MULTI/EXEC pipeline cannot express.
_LREM_LPUSH = """
if redis.call("LREM", KEYS[1], 1, ARGV[1]) == 1 then
    redis.call("LPUSH", KEYS[2], ARGV[1])
    return 1
end
return 0
"""


@dataclasses.dataclass
class RedisStore:
    """
    Redis key/value store adapter.

    Parameters
    ----------
    url    : connection URL used when no client is given
    client : redis.asyncio.Redis — created lazily from `url` if omitted.
             A caller-supplied client must use decode_responses=True.
    """

    url: str = "redis://localhost:6379/0"
    client: Redis | None = None

    def _get_client(self) -> Redis:
        if self.client is None:
            from redis.asyncio import from_url

            self.client = from_url(self.url, decode_responses=True)
        return self.client

    async def aclose(self) -> None:
        """Close the underlying client's connection pool."""
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    async def set(self, key: str, value: str, ttl: timedelta) -> bool:
        millis = max(int(ttl.total_seconds() * 1000), 1)
        reply = await _call("SET", self._get_client().set(key, value, px=millis))
        return bool(reply)

    async def ttl(self, key: str) -> timedelta:
        millis = int(await _call("PTTL", self._get_client().pttl(key)))
        if millis < 0:
            # -1: no expiry, -2: missing key
            return timedelta(seconds=millis)
        return timedelta(milliseconds=millis)

    async def delete(self, key: str) -> int:
        return int(await _call("DEL", self._get_client().delete(key)))

    async def sadd(self, key: str, member: str) -> int:
        return int(await _call("SADD", self._get_client().sadd(key, member)))

    async def srem(self, key: str, member: str) -> int:
        return int(await _call("SREM", self._get_client().srem(key, member)))

    async def smembers(self, key: str) -> list[str]:
        return list(await _call("SMEMBERS", self._get_client().smembers(key)))

    async def llen(self, key: str) -> int:
        return int(await _call("LLEN", self._get_client().llen(key)))

    async def lpush(self, key: str, value: str) -> int:
        return int(await _call("LPUSH", self._get_client().lpush(key, value)))

    async def rpoplpush(self, source: str, destination: str) -> str | None:
        return await _call(
            "RPOPLPUSH", self._get_client().rpoplpush(source, destination)
        )

    async def lrem(self, key: str, count: int, value: str) -> int:
        return int(await _call("LREM", self._get_client().lrem(key, count, value)))

    async def lrem_lpush(self, source: str, destination: str, value: str) -> bool:
        reply = await _call(
            "EVAL", self._get_client().eval(_LREM_LPUSH, 2, source, destination, value)
        )
        return int(reply) == 1

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        return list(await _call("LRANGE", self._get_client().lrange(key, start, stop)))


async def _call(command: str, pending: Awaitable[T]) -> T:
    """Await a client call, translating RedisError into StorageError."""
    try:
        return await pending
    except RedisError as exc:
        raise StorageError(f"Redis {command} failed", exc) from exc
