"""
ConnectionCleaner — finds dead connections and returns their unacked work.

Every open connection runs one cleaner. There is no leader: whichever cleaner
notices a lapsed lease first performs the recovery, and any other cleaner
arriving at the same connection repeats steps that are no-ops by then.

Algorithm (one sweep)
---------------------
For every name in the connection registry (including the cleaner's own):

  1. alive ⇔ the heartbeat key has a positive remaining TTL
  2. if dead, for every queue in the connection's queues set:
       drain its unacked list into the queue's ready list, one RPOPLPUSH at
       a time, for as many elements as the list held when the drain started
  3. delete every unacked list and consumers set of that connection
  4. delete the connection's queues set
  5. remove the name from the connection registry

Concurrent cleaners
-------------------
Two cleaners may drain the same unacked list at once. RPOPLPUSH moves each
element exactly once, so no payload is duplicated; the cleaner that runs out
first sees an empty pop and stops early. Steps 3–5 delete or remove only
what is still there and are harmless to repeat.

A connection whose renewals are merely delayed past the lease is treated as
dead as well. Its unacked payloads are then delivered a second time, which
at-least-once delivery permits.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from datetime import timedelta

from kvqueue.core import keys
from kvqueue.core.queue import drain
from kvqueue.domain.errors import KVQueueError, StorageError
from kvqueue.domain.models import SCAN_INTERVAL
from kvqueue.ports.store import KeyValueStorePort

logger = logging.getLogger(__name__)


async def is_alive(store: KeyValueStorePort, connection_name: str) -> bool:
    """True while the connection's heartbeat key has a positive TTL."""
    ttl = await store.ttl(keys.heartbeat_key(connection_name))
    return ttl > timedelta(0)


async def recover_connection(store: KeyValueStorePort, connection_name: str) -> int:
    """
    Return a dead connection's unacked payloads and erase its keys.

    Safe to run any number of times, also concurrently. Returns the number
    of payloads this call moved back to ready lists.
    """
    queues_key = keys.connection_queues_key(connection_name)
    queue_names = await store.smembers(queues_key)

    returned = 0
    for queue_name in queue_names:
        returned += await drain(
            store,
            keys.unacked_key(connection_name, queue_name),
            keys.ready_key(queue_name),
        )

    for queue_name in queue_names:
        await store.delete(keys.unacked_key(connection_name, queue_name))
        await store.delete(keys.consumers_key(connection_name, queue_name))

    await store.delete(queues_key)
    await store.srem(keys.CONNECTIONS_KEY, connection_name)
    return returned


@dataclasses.dataclass
class ConnectionCleaner:
    """
    Periodically sweeps the connection registry.

    Parameters
    ----------
    store    : key/value store shared by all connections
    interval : time between sweeps (default 60 seconds)
    owner    : name of the connection running this cleaner, for logging
    """

    store: KeyValueStorePort
    interval: timedelta = SCAN_INTERVAL
    owner: str = ""

    _task: asyncio.Task[None] | None = dataclasses.field(
        default=None, init=False, repr=False
    )

    async def start(self) -> None:
        """Start sweeping in the background; the first sweep runs immediately."""
        if self._task is not None:
            raise RuntimeError("ConnectionCleaner is already running")
        self._task = asyncio.create_task(
            self._loop(), name=f"kvqueue-cleaner-{self.owner}"
        )

    async def stop(self) -> None:
        """Cancel the sweep task."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def scan_once(self) -> list[str]:
        """
        Run one sweep. Returns the names of the connections recovered.

        A failure while checking or recovering one connection is logged and
        the sweep continues with the next.
        """
        recovered: list[str] = []
        for name in await self.store.smembers(keys.CONNECTIONS_KEY):
            try:
                if await is_alive(self.store, name):
                    continue
                returned = await recover_connection(self.store, name)
            except StorageError:
                logger.error("Failed to recover connection %s", name, exc_info=True)
                continue
            logger.info(
                "Recovered dead connection %s: %d deliveries returned to ready",
                name,
                returned,
            )
            recovered.append(name)
        return recovered

    async def _loop(self) -> None:
        while True:
            try:
                await self.scan_once()
            except KVQueueError:
                logger.error("Connection sweep by %s failed", self.owner, exc_info=True)
            await asyncio.sleep(self.interval.total_seconds())
