"""
Exception hierarchy for kvqueue.

KVQueueError
├── HeartbeatError   — the initial heartbeat lease of a connection could not be set
└── StorageError     — underlying key/value store failure (wraps original exception)
"""

from __future__ import annotations


class KVQueueError(Exception):
    """Base class for all kvqueue exceptions."""


class HeartbeatError(KVQueueError):
    """
    Raised by Connection.open when the first heartbeat write does not succeed.

    A connection that cannot prove it is alive must not register itself,
    otherwise a peer's cleaner could reclaim its queues at any moment.

    Attributes
    ----------
    connection_name : str
        The name the connection would have been registered under.
    cause : Exception | None
        The storage failure, if the write raised rather than returned false.
    """

    def __init__(self, connection_name: str, cause: Exception | None = None) -> None:
        self.connection_name = connection_name
        self.cause = cause
        message = f"Connection {connection_name!r} failed to set its heartbeat"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class StorageError(KVQueueError):
    """
    Wraps an underlying I/O failure from a store adapter.

    Attributes
    ----------
    cause : Exception
        The original exception from the store client.
    """

    def __init__(self, message: str, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"{message}: {cause}")
