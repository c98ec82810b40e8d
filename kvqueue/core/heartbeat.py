"""
HeartbeatManager — background task keeping a connection's lease alive.

The lease is a plain string key with a TTL. As long as it exists, peers treat
the owning connection as alive; once it expires, the first peer whose cleaner
notices reclaims the connection's unacked deliveries.

The manager re-sets the key with a fresh TTL every `interval`. A failed renewal
is logged and the loop carries on: with a 60s lease renewed every second, a
long run of failures is needed before the lease lapses, and at that point
having the connection recovered by a peer is the intended outcome.

Usage
-----
    hb = HeartbeatManager(store, keys.heartbeat_key(name))
    if not await hb.beat():
        raise HeartbeatError(name)
    await hb.start()
    ...
    await hb.stop()     # renewal ends; the key is left to expire

stop() only ends renewal. Connection.stop_heartbeat() additionally deletes the
key so peers reclaim the connection without waiting out the lease.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from datetime import timedelta
from types import TracebackType

from kvqueue.domain.errors import StorageError
from kvqueue.domain.models import HEARTBEAT_INTERVAL, HEARTBEAT_TTL
from kvqueue.ports.store import KeyValueStorePort

logger = logging.getLogger(__name__)

HEARTBEAT_VALUE = "1"


@dataclasses.dataclass
class HeartbeatManager:
    """
    Renews one heartbeat key until stopped.

    Parameters
    ----------
    store    : key/value store holding the lease
    key      : the heartbeat key
    ttl      : lease lifetime set on every renewal (default 60 seconds)
    interval : time between renewals (default 1 second)
    """

    store: KeyValueStorePort
    key: str
    ttl: timedelta = HEARTBEAT_TTL
    interval: timedelta = HEARTBEAT_INTERVAL

    _task: asyncio.Task[None] | None = dataclasses.field(
        default=None, init=False, repr=False
    )
    _stopped: bool = dataclasses.field(default=False, init=False, repr=False)
    _wakeup: asyncio.Event = dataclasses.field(
        default_factory=asyncio.Event, init=False, repr=False
    )

    @property
    def stopped(self) -> bool:
        return self._stopped

    async def __aenter__(self) -> HeartbeatManager:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()

    async def beat(self) -> bool:
        """Set the lease once. Returns False (and logs) on failure."""
        try:
            ok = await self.store.set(self.key, HEARTBEAT_VALUE, self.ttl)
        except StorageError:
            logger.warning("Failed to update heartbeat %s", self.key, exc_info=True)
            return False
        if not ok:
            logger.warning("Failed to update heartbeat %s", self.key)
        return ok

    async def start(self) -> None:
        """Start the renewal task."""
        if self._task is not None:
            raise RuntimeError("HeartbeatManager is already running")
        self._stopped = False
        self._wakeup.clear()
        self._task = asyncio.create_task(
            self._renew(), name=f"kvqueue-heartbeat-{self.key}"
        )

    async def stop(self) -> None:
        """Signal the renewal task and wait for it to finish its current beat."""
        self._stopped = True
        self._wakeup.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def cancel(self) -> None:
        """Cancel the renewal task without waiting for an in-flight beat."""
        self._stopped = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _renew(self) -> None:
        while not self._stopped:
            await self.beat()
            try:
                await asyncio.wait_for(
                    self._wakeup.wait(), self.interval.total_seconds()
                )
            except TimeoutError:
                pass
