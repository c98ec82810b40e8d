"""
Stats — read-only snapshot of queues and the connections consuming them.

Built purely from registry membership, list lengths and set members; takes
no part in the liveness protocol.
"""
from __future__ import annotations

from collections.abc import Iterable

from kvqueue.core import keys
from kvqueue.core.cleaner import is_alive
from kvqueue.domain.models import ConnectionStat, QueueStat, Stats
from kvqueue.ports.store import KeyValueStorePort


async def collect_stats(store: KeyValueStorePort, queue_names: Iterable[str]) -> Stats:
    """
    Snapshot the given queues.

    Registered connections that consume none of `queue_names` are reported in
    Stats.other_connections with their liveness.
    """
    wanted = list(dict.fromkeys(queue_names))
    per_queue: dict[str, dict[str, ConnectionStat]] = {name: {} for name in wanted}
    other_connections: dict[str, bool] = {}

    for connection_name in sorted(await store.smembers(keys.CONNECTIONS_KEY)):
        active = await is_alive(store, connection_name)
        consuming = set(
            await store.smembers(keys.connection_queues_key(connection_name))
        )
        matched = [name for name in wanted if name in consuming]
        if not matched:
            other_connections[connection_name] = active
            continue
        for queue_name in matched:
            consumers = await store.smembers(
                keys.consumers_key(connection_name, queue_name)
            )
            per_queue[queue_name][connection_name] = ConnectionStat(
                active=active,
                unacked_count=await store.llen(
                    keys.unacked_key(connection_name, queue_name)
                ),
                consumers=tuple(sorted(consumers)),
            )

    queues: dict[str, QueueStat] = {}
    for queue_name in wanted:
        queues[queue_name] = QueueStat(
            ready_count=await store.llen(keys.ready_key(queue_name)),
            connections=per_queue[queue_name],
        )
    return Stats(queues=queues, other_connections=other_connections)
