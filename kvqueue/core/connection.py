"""
Connection — one live process taking part in the queue protocol.

Opening a connection:

  1. picks a unique name ``"{tag}-{6 random alphanumerics}"``
  2. sets its heartbeat lease; if this fails, HeartbeatError is raised and
     nothing is registered
  3. adds the name to the connection registry (only after the lease exists,
     so no cleaner can see a registered connection without one)
  4. starts the lease renewal task (HeartbeatManager) and the dead-peer
     sweep (ConnectionCleaner)

Usage
-----
    store = RedisStore("redis://localhost:6379/0")

    async with await Connection.open("mailer", store) as conn:
        queue = await conn.open_queue("emails")
        await queue.publish('{"to": "user@example.com"}')

Leaving the context cancels both background tasks in this process and leaves
the store untouched: the lease expires on its own and a peer then returns
whatever this connection still had unacked. Call stop_heartbeat() first to
have peers do that without waiting out the lease.
"""
from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable
from types import TracebackType

from kvqueue.core import keys
from kvqueue.core.cleaner import ConnectionCleaner, is_alive
from kvqueue.core.heartbeat import HEARTBEAT_VALUE, HeartbeatManager
from kvqueue.core.queue import Queue
from kvqueue.core.stats import collect_stats
from kvqueue.domain.errors import HeartbeatError, StorageError
from kvqueue.domain.models import LeaseConfig, Stats
from kvqueue.ports.store import KeyValueStorePort

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class Connection:
    """
    Handle on a registered connection.

    Use Connection.open() to register a new one; constructing the dataclass
    directly (or via hijack()) gives a passive handle over an existing name
    with no background tasks.

    Parameters
    ----------
    name   : registered connection name
    store  : key/value store shared with all peers
    config : lease and sweep timing
    """

    name: str
    store: KeyValueStorePort = dataclasses.field(repr=False)
    config: LeaseConfig = dataclasses.field(default_factory=LeaseConfig, repr=False)

    heartbeat_key: str = dataclasses.field(init=False, repr=False)
    queues_key: str = dataclasses.field(init=False, repr=False)

    _heartbeat: HeartbeatManager = dataclasses.field(init=False, repr=False)
    _cleaner: ConnectionCleaner = dataclasses.field(init=False, repr=False)
    _queues: dict[str, Queue] = dataclasses.field(
        default_factory=dict, init=False, repr=False
    )

    def __post_init__(self) -> None:
        self.heartbeat_key = keys.heartbeat_key(self.name)
        self.queues_key = keys.connection_queues_key(self.name)
        self._heartbeat = HeartbeatManager(
            store=self.store,
            key=self.heartbeat_key,
            ttl=self.config.heartbeat_ttl,
            interval=self.config.heartbeat_interval,
        )
        self._cleaner = ConnectionCleaner(
            store=self.store,
            interval=self.config.scan_interval,
            owner=self.name,
        )

    def __str__(self) -> str:
        return self.name

    # ------------------------------------------------------------------ #
    # Lifecycle                                                            #
    # ------------------------------------------------------------------ #

    @classmethod
    async def open(
        cls,
        tag: str,
        store: KeyValueStorePort,
        config: LeaseConfig | None = None,
    ) -> Connection:
        """Register a new connection and start its background tasks."""
        connection = cls(
            name=keys.unique_name(tag),
            store=store,
            config=config if config is not None else LeaseConfig(),
        )
        try:
            ok = await store.set(
                connection.heartbeat_key,
                HEARTBEAT_VALUE,
                connection.config.heartbeat_ttl,
            )
        except StorageError as exc:
            raise HeartbeatError(connection.name, exc) from exc
        if not ok:
            raise HeartbeatError(connection.name)

        await store.sadd(keys.CONNECTIONS_KEY, connection.name)
        await connection._heartbeat.start()
        await connection._cleaner.start()
        logger.info("Opened connection %s", connection.name)
        return connection

    async def __aenter__(self) -> Connection:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Cancel this process's tasks for the connection. The store is not touched."""
        for queue in self._queues.values():
            await queue.stop_consuming()
        await self._heartbeat.cancel()
        await self._cleaner.stop()

    @property
    def heartbeat_stopped(self) -> bool:
        return self._heartbeat.stopped

    async def stop_heartbeat(self) -> bool:
        """
        Stop renewing the lease and delete it.

        The name stays registered, so the next sweep of any peer returns
        this connection's unacked deliveries. Returns False if the delete failed.
        """
        await self._heartbeat.stop()
        try:
            await self.store.delete(self.heartbeat_key)
        except StorageError:
            logger.exception("Failed to delete heartbeat of %s", self.name)
            return False
        return True

    async def close(self) -> bool:
        """Remove this connection from the registry. Returns False if that failed."""
        try:
            await self.store.srem(keys.CONNECTIONS_KEY, self.name)
        except StorageError:
            logger.exception("Failed to close connection %s", self.name)
            return False
        logger.info("Closed connection %s", self.name)
        return True

    def hijack(self, name: str) -> Connection:
        """Passive handle over another connection's keys, for inspection."""
        return Connection(name=name, store=self.store, config=self.config)

    # ------------------------------------------------------------------ #
    # Queues                                                               #
    # ------------------------------------------------------------------ #

    async def open_queue(self, name: str) -> Queue:
        """Register `name` in the queue registry and return its handle."""
        await self.store.sadd(keys.QUEUES_KEY, name)
        queue = self._queues.get(name)
        if queue is None:
            queue = Queue(name=name, connection_name=self.name, store=self.store)
            self._queues[name] = queue
        return queue

    async def get_open_queues(self) -> list[str]:
        """All queue names in the queue registry."""
        return sorted(await self.store.smembers(keys.QUEUES_KEY))

    async def get_consuming_queues(self) -> list[str]:
        """Queues this connection has pulled from or is consuming."""
        return sorted(await self.store.smembers(self.queues_key))

    async def close_all_queues(self) -> int:
        """Empty the queue registry for every connection. Returns keys deleted."""
        return await self.store.delete(keys.QUEUES_KEY)

    async def close_all_queues_in_connection(self) -> int:
        """Forget which queues this connection consumes. Returns keys deleted."""
        return await self.store.delete(self.queues_key)

    # ------------------------------------------------------------------ #
    # Peers                                                                #
    # ------------------------------------------------------------------ #

    async def get_connections(self) -> list[str]:
        """All names in the connection registry, dead or alive."""
        return sorted(await self.store.smembers(keys.CONNECTIONS_KEY))

    async def check(self) -> bool:
        """True while this connection's own lease is live."""
        return await is_alive(self.store, self.name)

    async def is_alive(self, connection_name: str) -> bool:
        """True while `connection_name`'s lease is live."""
        return await is_alive(self.store, connection_name)

    async def check_connections(self) -> list[str]:
        """Run one cleaner sweep now. Returns the names recovered."""
        return await self._cleaner.scan_once()

    async def collect_stats(self, queue_names: Iterable[str]) -> Stats:
        return await collect_stats(self.store, queue_names)
