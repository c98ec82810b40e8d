"""
Queue — one ready list shared by all connections, plus one unacked list and
one consumers set per consuming connection.

Publishing pushes to the back of the ready list. Pulling moves payloads from
the front of the ready list to the back of this connection's unacked list with
a single atomic RPOPLPUSH each, so a payload is never in both lists or in
neither. The queue is added to the connection's queues set before anything is
pulled; a peer's cleaner uses that set to find the unacked lists to return
should this connection die.

Consuming
---------
    queue = await connection.open_queue("emails")
    await queue.add_consumer("mailer", handle)      # sync or async callable
    await queue.start_consuming(prefetch_limit=10)
    ...
    await queue.stop_consuming()

A background fetch task keeps up to `prefetch_limit` deliveries buffered
locally; one worker task per consumer takes deliveries from that buffer.
Consumers are responsible for ack() or reject(). Deliveries that are still
buffered when consuming stops stay in the unacked list; return_all_unacked()
or a peer's cleaner puts them back.
"""
from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import timedelta

from kvqueue.core import keys
from kvqueue.core.delivery import Delivery
from kvqueue.domain.errors import StorageError
from kvqueue.ports.store import KeyValueStorePort

logger = logging.getLogger(__name__)

Consumer = Callable[[Delivery], Awaitable[None] | None]


async def drain(store: KeyValueStorePort, source: str, destination: str) -> int:
    """
    Move every element of `source` to the back of `destination`, front first.

    The length is read once up front. Each move is one atomic RPOPLPUSH; an
    empty pop means another process drained the rest and ends the loop. A move
    that fails is logged and the remaining elements are still attempted.

    Returns the number of elements moved.
    """
    length = await store.llen(source)
    moved = 0
    for _ in range(length):
        try:
            value = await store.rpoplpush(source, destination)
        except StorageError:
            logger.error(
                "Failed to move element from %s to %s", source, destination,
                exc_info=True,
            )
            continue
        if value is None:
            break
        moved += 1
    return moved


@dataclasses.dataclass
class Queue:
    """
    A named queue as seen from one connection.

    Parameters
    ----------
    name            : queue name
    connection_name : name of the owning connection
    store           : key/value store shared with the connection
    """

    name: str
    connection_name: str
    store: KeyValueStorePort = dataclasses.field(repr=False)

    ready_key: str = dataclasses.field(init=False)
    unacked_key: str = dataclasses.field(init=False)
    consumers_key: str = dataclasses.field(init=False)
    connection_queues_key: str = dataclasses.field(init=False, repr=False)

    _consumers: dict[str, Consumer] = dataclasses.field(
        default_factory=dict, init=False, repr=False
    )
    _workers: dict[str, asyncio.Task[None]] = dataclasses.field(
        default_factory=dict, init=False, repr=False
    )
    _fetch_task: asyncio.Task[None] | None = dataclasses.field(
        default=None, init=False, repr=False
    )
    _buffer: asyncio.Queue[Delivery] | None = dataclasses.field(
        default=None, init=False, repr=False
    )
    _prefetch_limit: int = dataclasses.field(default=0, init=False, repr=False)
    _poll_interval: timedelta = dataclasses.field(
        default=timedelta(seconds=1), init=False, repr=False
    )

    def __post_init__(self) -> None:
        self.ready_key = keys.ready_key(self.name)
        self.unacked_key = keys.unacked_key(self.connection_name, self.name)
        self.consumers_key = keys.consumers_key(self.connection_name, self.name)
        self.connection_queues_key = keys.connection_queues_key(self.connection_name)

    # ------------------------------------------------------------------ #
    # Publishing and pulling                                               #
    # ------------------------------------------------------------------ #

    async def publish(self, payload: str) -> bool:
        """Append a payload to the back of the ready list."""
        try:
            await self.store.lpush(self.ready_key, payload)
        except StorageError:
            logger.exception("Failed to publish to queue %s", self.name)
            return False
        return True

    async def consume(self, batch_size: int = 1) -> list[Delivery]:
        """
        Pull up to `batch_size` payloads into this connection's unacked list.

        Returns fewer deliveries (possibly none) when the ready list runs dry.
        """
        await self.store.sadd(self.connection_queues_key, self.name)
        return await self._pull(batch_size)

    async def _pull(self, batch_size: int) -> list[Delivery]:
        deliveries: list[Delivery] = []
        for _ in range(batch_size):
            payload = await self.store.rpoplpush(self.ready_key, self.unacked_key)
            if payload is None:
                break
            deliveries.append(
                Delivery(
                    payload=payload,
                    unacked_key=self.unacked_key,
                    ready_key=self.ready_key,
                    store=self.store,
                )
            )
        return deliveries

    # ------------------------------------------------------------------ #
    # Counts and maintenance                                               #
    # ------------------------------------------------------------------ #

    async def ready_count(self) -> int:
        return await self.store.llen(self.ready_key)

    async def unacked_count(self) -> int:
        return await self.store.llen(self.unacked_key)

    async def purge_ready(self) -> bool:
        """Drop every payload waiting in the ready list."""
        return await self.store.delete(self.ready_key) > 0

    async def return_all_unacked(self) -> int:
        """Return this connection's unacked payloads to the ready list."""
        returned = await drain(self.store, self.unacked_key, self.ready_key)
        if returned:
            logger.info(
                "Returned %d unacked deliveries to queue %s", returned, self.name
            )
        return returned

    async def close_in_connection(self) -> None:
        """
        Forget this queue in the owning connection.

        Stops local consuming and deletes the unacked list and consumers set.
        Call return_all_unacked() first to keep unresolved payloads.
        """
        await self.stop_consuming()
        await self.store.delete(self.unacked_key)
        await self.store.delete(self.consumers_key)
        await self.store.srem(self.connection_queues_key, self.name)

    # ------------------------------------------------------------------ #
    # Consumers                                                            #
    # ------------------------------------------------------------------ #

    async def add_consumer(self, tag: str, consumer: Consumer) -> str:
        """Register a consumer and return its generated name."""
        name = keys.unique_name(tag)
        await self.store.sadd(self.consumers_key, name)
        self._consumers[name] = consumer
        if self.is_consuming():
            self._start_worker(name, consumer)
        return name

    async def remove_consumer(self, name: str) -> bool:
        """Unregister a consumer. Returns False if it was not registered."""
        removed = await self.store.srem(self.consumers_key, name)
        self._consumers.pop(name, None)
        task = self._workers.pop(name, None)
        if task is not None:
            await _cancel(task)
        return removed == 1

    async def remove_all_consumers(self) -> int:
        """Unregister every consumer of this connection. Returns how many there were."""
        names = await self.store.smembers(self.consumers_key)
        await self.store.delete(self.consumers_key)
        self._consumers.clear()
        workers, self._workers = self._workers, {}
        for task in workers.values():
            await _cancel(task)
        return len(names)

    async def get_consumers(self) -> list[str]:
        return sorted(await self.store.smembers(self.consumers_key))

    def is_consuming(self) -> bool:
        return self._fetch_task is not None

    async def start_consuming(
        self,
        prefetch_limit: int = 10,
        poll_interval: timedelta = timedelta(seconds=1),
    ) -> bool:
        """
        Start the background fetch task and one worker per consumer.

        Returns False if this queue is already consuming.
        """
        if self.is_consuming():
            return False
        if prefetch_limit < 1:
            raise ValueError(f"prefetch_limit must be at least 1, got {prefetch_limit}")
        await self.store.sadd(self.connection_queues_key, self.name)
        self._prefetch_limit = prefetch_limit
        self._poll_interval = poll_interval
        self._buffer = asyncio.Queue()
        self._fetch_task = asyncio.create_task(
            self._fetch_loop(self._buffer), name=f"kvqueue-fetch-{self.name}"
        )
        for name, consumer in self._consumers.items():
            self._start_worker(name, consumer)
        return True

    async def stop_consuming(self) -> bool:
        """Stop fetching and cancel workers. Returns False if not consuming."""
        if self._fetch_task is None:
            return False
        fetch_task, self._fetch_task = self._fetch_task, None
        await _cancel(fetch_task)
        workers, self._workers = self._workers, {}
        for task in workers.values():
            await _cancel(task)
        self._buffer = None
        return True

    def _start_worker(self, name: str, consumer: Consumer) -> None:
        if self._buffer is None:
            return
        self._workers[name] = asyncio.create_task(
            self._work(self._buffer, name, consumer), name=f"kvqueue-consumer-{name}"
        )

    async def _fetch_loop(self, buffer: asyncio.Queue[Delivery]) -> None:
        while True:
            wanted = self._prefetch_limit - buffer.qsize()
            fetched: list[Delivery] = []
            if wanted > 0:
                try:
                    fetched = await self._pull(wanted)
                except StorageError:
                    logger.exception("Failed to fetch deliveries for queue %s", self.name)
                for delivery in fetched:
                    buffer.put_nowait(delivery)
            if len(fetched) < wanted or wanted <= 0:
                await asyncio.sleep(self._poll_interval.total_seconds())

    async def _work(
        self, buffer: asyncio.Queue[Delivery], name: str, consumer: Consumer
    ) -> None:
        while True:
            delivery = await buffer.get()
            try:
                result = consumer(delivery)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Consumer %s failed on queue %s", name, self.name)


async def _cancel(task: asyncio.Task[None]) -> None:
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
