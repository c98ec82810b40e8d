"""
kvqueue — at-least-once message queue on key/value store lists and sets.

Every message lives in exactly one place at a time: the ready list of its
queue, or the unacked list of the one connection that pulled it. Moves between
the two are single atomic RPOPLPUSH commands.

Every process holds a Connection. A connection proves it is alive with a
heartbeat key that expires after 60 seconds and is renewed every second. Each
connection also sweeps the connection registry once a minute: any registered
connection whose heartbeat has lapsed is presumed dead, its unacked messages
are moved back to their ready lists and its keys are erased. Recovery has no
coordinator: every step is safe to repeat, so concurrent sweeps converge.

Quick start
-----------
    import asyncio
    from kvqueue import Connection
    from kvqueue.adapters.store.redis import RedisStore

    async def main():
        store = RedisStore("redis://localhost:6379/0")

        async with await Connection.open("worker", store) as conn:
            queue = await conn.open_queue("send_email")
            await queue.publish('{"to": "user@example.com"}')

            [delivery] = await queue.consume()
            print(f"Sending {delivery.payload}")
            await delivery.ack()

    asyncio.run(main())

Store adapters
--------------
Built-in adapters (no extra deps):
  - InMemoryStore   — for tests and examples

Optional adapters (install extras):
  - RedisStore      (pip install "kvqueue[redis]")

Custom adapters implement KeyValueStorePort: set-with-expiry, ttl, delete,
set add/remove/members, list length/push/range/remove and the atomic
rpoplpush and lrem_lpush moves.

Architecture
------------
Follows the Ports & Adapters pattern:
  domain/   — errors, LeaseConfig and stats models
  ports/    — Protocol interface (KeyValueStorePort)
  core/     — key schema, Delivery, Queue, HeartbeatManager,
              ConnectionCleaner, Connection, stats
  adapters/ — concrete store implementations
"""
from __future__ import annotations

from kvqueue.adapters.store.memory import InMemoryStore
from kvqueue.core.cleaner import ConnectionCleaner
from kvqueue.core.connection import Connection
from kvqueue.core.delivery import Delivery
from kvqueue.core.heartbeat import HeartbeatManager
from kvqueue.core.queue import Queue
from kvqueue.domain.errors import HeartbeatError, KVQueueError, StorageError
from kvqueue.domain.models import ConnectionStat, LeaseConfig, QueueStat, Stats
from kvqueue.ports.store import KeyValueStorePort

__all__ = [
    # Domain models
    "LeaseConfig",
    "Stats",
    "QueueStat",
    "ConnectionStat",
    # Errors
    "KVQueueError",
    "HeartbeatError",
    "StorageError",
    # Port (for typing custom adapters)
    "KeyValueStorePort",
    # High-level API
    "Connection",
    "Queue",
    "Delivery",
    "HeartbeatManager",
    "ConnectionCleaner",
    # Built-in store adapters
    "InMemoryStore",
]
