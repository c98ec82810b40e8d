"""
Delivery — a handle on one payload sitting in an unacked list.

A consumer resolves every delivery exactly once:

    ack()    → the payload is removed from the unacked list for good
    reject() → the payload is moved from the unacked list to the back of
               the queue's ready list atomically

Both return False when the payload is no longer in the unacked list (it was
already resolved, or a peer's cleaner returned it to the ready list after this
connection was presumed dead) or when the store call fails.
"""
from __future__ import annotations

import dataclasses
import logging

from kvqueue.domain.errors import StorageError
from kvqueue.ports.store import KeyValueStorePort

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class Delivery:
    """
    Parameters
    ----------
    payload     : the message body
    unacked_key : unacked list holding the payload
    ready_key   : ready list a rejected payload is returned to
    store       : the store both lists live in
    """

    payload: str
    unacked_key: str
    ready_key: str
    store: KeyValueStorePort = dataclasses.field(repr=False, compare=False)

    async def ack(self) -> bool:
        """Remove the payload from its unacked list."""
        try:
            removed = await self.store.lrem(self.unacked_key, 1, self.payload)
        except StorageError:
            logger.exception("Failed to ack delivery from %s", self.unacked_key)
            return False
        if removed != 1:
            logger.warning("Delivery not found in %s on ack", self.unacked_key)
            return False
        return True

    async def reject(self) -> bool:
        """
        Move the payload back to the ready list in one atomic step.

        On failure the payload is left in the unacked list, where a retry or
        a peer's cleaner can still find it.
        """
        try:
            moved = await self.store.lrem_lpush(
                self.unacked_key, self.ready_key, self.payload
            )
        except StorageError:
            logger.exception("Failed to reject delivery from %s", self.unacked_key)
            return False
        if not moved:
            logger.warning("Delivery not found in %s on reject", self.unacked_key)
            return False
        return True
