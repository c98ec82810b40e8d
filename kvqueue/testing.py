"""
In-process stand-ins for code that only publishes.

RecordingConnection offers the publishing surface of Connection without a
store or background tasks. Published payloads are kept per queue so tests can
assert on them:

    conn = RecordingConnection()
    queue = await conn.open_queue("emails")
    await service.notify(queue)
    assert conn.get_delivery("emails", 0) == '{"to": "user@example.com"}'
"""
from __future__ import annotations

import dataclasses


@dataclasses.dataclass
class RecordingQueue:
    """Queue stand-in that records payloads instead of storing them."""

    name: str
    payloads: list[str] = dataclasses.field(default_factory=list)

    async def publish(self, payload: str) -> bool:
        self.payloads.append(payload)
        return True


@dataclasses.dataclass
class RecordingConnection:
    """Connection stand-in whose queues record what is published to them."""

    name: str = "kvqueue.RecordingConnection"
    _queues: dict[str, RecordingQueue] = dataclasses.field(
        default_factory=dict, init=False, repr=False
    )

    async def open_queue(self, name: str) -> RecordingQueue:
        queue = self._queues.get(name)
        if queue is None:
            queue = RecordingQueue(name)
            self._queues[name] = queue
        return queue

    async def get_open_queues(self) -> list[str]:
        return sorted(self._queues)

    def get_delivery(self, queue_name: str, index: int) -> str:
        """
        Payload number `index` published to `queue_name`, in publish order.

        Returns a "delivery not found" message rather than raising, so
        assertions show what was looked up.
        """
        queue = self._queues.get(queue_name)
        if queue is None or index < 0 or index >= len(queue.payloads):
            return f"{self.name}: delivery not found: {queue_name}[{index}]"
        return queue.payloads[index]

    def reset(self) -> None:
        """Forget every recorded payload; opened queues stay usable."""
        for queue in self._queues.values():
            queue.payloads.clear()
