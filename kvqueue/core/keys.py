"""
Key schema — pure mapping from (connection, queue) names to store keys.

Every process running the protocol must derive exactly the same keys, so the
templates below are part of the wire format and must not change:

  connections                                          global connection registry (set)
  queues                                               global queue registry (set)
  connection:{connection}:heartbeat                    heartbeat lease (string with TTL)
  connection:{connection}:queues                       queues a connection consumes (set)
  connection:{connection}:queue:[{queue}]:unacked      pulled, unresolved payloads (list)
  connection:{connection}:queue:[{queue}]:consumers    consumer names (set)
  queue:[{queue}]:ready                                payloads awaiting a pull (list)

No function here touches the store.
"""
from __future__ import annotations

import secrets
import string

CONNECTIONS_KEY = "connections"
QUEUES_KEY = "queues"

CONNECTION_HEARTBEAT_TEMPLATE = "connection:{connection}:heartbeat"
CONNECTION_QUEUES_TEMPLATE = "connection:{connection}:queues"
CONNECTION_QUEUE_UNACKED_TEMPLATE = "connection:{connection}:queue:[{queue}]:unacked"
CONNECTION_QUEUE_CONSUMERS_TEMPLATE = (
    "connection:{connection}:queue:[{queue}]:consumers"
)
QUEUE_READY_TEMPLATE = "queue:[{queue}]:ready"

_ALPHABET = string.ascii_letters + string.digits


def heartbeat_key(connection: str) -> str:
    return CONNECTION_HEARTBEAT_TEMPLATE.format(connection=connection)


def connection_queues_key(connection: str) -> str:
    return CONNECTION_QUEUES_TEMPLATE.format(connection=connection)


def unacked_key(connection: str, queue: str) -> str:
    return CONNECTION_QUEUE_UNACKED_TEMPLATE.format(connection=connection, queue=queue)


def consumers_key(connection: str, queue: str) -> str:
    return CONNECTION_QUEUE_CONSUMERS_TEMPLATE.format(
        connection=connection, queue=queue
    )


def ready_key(queue: str) -> str:
    return QUEUE_READY_TEMPLATE.format(queue=queue)


def unique_name(tag: str, length: int = 6) -> str:
    """
    Return ``"{tag}-{suffix}"`` with a random alphanumeric suffix.

    Used for connection and consumer names. Collisions are not checked;
    62**6 suffixes per tag make them negligible.
    """
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(length))
    return f"{tag}-{suffix}"
