"""
Domain models for kvqueue — backed by Pydantic v2.

LeaseConfig carries the timing constants of the liveness protocol. The stats
models are read-only snapshots produced by kvqueue.core.stats.

All models are frozen (immutable).
"""

from datetime import timedelta

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

HEARTBEAT_TTL = timedelta(seconds=60)
HEARTBEAT_INTERVAL = timedelta(seconds=1)
SCAN_INTERVAL = timedelta(seconds=60)


class LeaseConfig(BaseModel):
    """
    Timing of a connection's background tasks.

    heartbeat_ttl      — lifetime of the heartbeat key after each renewal
    heartbeat_interval — pause between two renewals
    scan_interval      — pause between two sweeps of the connection registry

    The defaults are the wire-level protocol constants; peers running with
    different values still interoperate, but detection latency changes.
    """

    model_config = ConfigDict(frozen=True)

    heartbeat_ttl: timedelta = HEARTBEAT_TTL
    heartbeat_interval: timedelta = HEARTBEAT_INTERVAL
    scan_interval: timedelta = SCAN_INTERVAL

    @field_validator("heartbeat_ttl", "heartbeat_interval", "scan_interval")
    @classmethod
    def _positive(cls, v: timedelta) -> timedelta:
        if v <= timedelta(0):
            raise ValueError(f"duration must be positive, got {v}")
        return v

    @model_validator(mode="after")
    def _renewal_inside_lease(self) -> "LeaseConfig":
        if self.heartbeat_interval >= self.heartbeat_ttl:
            raise ValueError(
                "heartbeat_interval must be shorter than heartbeat_ttl "
                f"({self.heartbeat_interval} >= {self.heartbeat_ttl})"
            )
        return self


class ConnectionStat(BaseModel):
    """
    What one connection holds for one queue.

    active         — True while the connection's heartbeat lease is live
    unacked_count  — deliveries pulled but not yet acked or rejected
    consumers      — names registered in the connection's consumers set
    """

    model_config = ConfigDict(frozen=True)

    active: bool
    unacked_count: int = 0
    consumers: tuple[str, ...] = ()


class QueueStat(BaseModel):
    """Ready count of a queue plus a ConnectionStat per consuming connection."""

    model_config = ConfigDict(frozen=True)

    ready_count: int = 0
    connections: dict[str, ConnectionStat] = {}

    def unacked_count(self) -> int:
        """Unacked deliveries summed over all consuming connections."""
        return sum(c.unacked_count for c in self.connections.values())

    def consumer_count(self) -> int:
        """Registered consumers summed over all consuming connections."""
        return sum(len(c.consumers) for c in self.connections.values())


class Stats(BaseModel):
    """
    Snapshot over a set of queues.

    queues            — QueueStat keyed by queue name
    other_connections — registered connections consuming none of those
                        queues, mapped to their liveness
    """

    model_config = ConfigDict(frozen=True)

    queues: dict[str, QueueStat] = {}
    other_connections: dict[str, bool] = {}
