import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from kvqueue.adapters.store.memory import InMemoryStore
from kvqueue.core import keys
from kvqueue.core.cleaner import ConnectionCleaner, is_alive, recover_connection
from kvqueue.core.heartbeat import HEARTBEAT_VALUE
from kvqueue.core.queue import Queue
from kvqueue.domain.errors import StorageError

LEASE = timedelta(seconds=60)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _register(store: InMemoryStore, name: str, alive: bool = True) -> None:
    if alive:
        await store.set(keys.heartbeat_key(name), HEARTBEAT_VALUE, LEASE)
    await store.sadd(keys.CONNECTIONS_KEY, name)


async def _pull_all(store: InMemoryStore, connection: str, queue: str, *payloads: str) -> Queue:
    q = Queue(name=queue, connection_name=connection, store=store)
    for payload in payloads:
        await q.publish(payload)
    await q.consume(batch_size=len(payloads))
    return q


async def _ready(store: InMemoryStore, queue: str) -> list[str]:
    return list(reversed(await store.lrange(keys.ready_key(queue), 0, -1)))


# ---------------------------------------------------------------------------
# Liveness
# ---------------------------------------------------------------------------


async def test_is_alive_with_lease(store: InMemoryStore) -> None:
    await _register(store, "a-000001")
    assert await is_alive(store, "a-000001") is True


async def test_is_alive_without_lease(store: InMemoryStore) -> None:
    await _register(store, "a-000001", alive=False)
    assert await is_alive(store, "a-000001") is False


async def test_is_alive_after_lease_expires(store: InMemoryStore, clock) -> None:
    await _register(store, "a-000001")
    clock.advance(59)
    assert await is_alive(store, "a-000001") is True
    clock.advance(1)
    assert await is_alive(store, "a-000001") is False


async def test_key_without_expiry_is_not_a_lease() -> None:
    store = AsyncMock()
    store.ttl.return_value = timedelta(seconds=-1)
    assert await is_alive(store, "a-000001") is False


# ---------------------------------------------------------------------------
# recover_connection
# ---------------------------------------------------------------------------


async def test_recovery_returns_every_unacked_message(store: InMemoryStore) -> None:
    await _register(store, "dead-000001", alive=False)
    await _pull_all(store, "dead-000001", "jobs", "m1", "m2", "m3", "m4")

    assert await recover_connection(store, "dead-000001") == 4

    assert await _ready(store, "jobs") == ["m1", "m2", "m3", "m4"]
    assert await store.llen(keys.unacked_key("dead-000001", "jobs")) == 0
    assert "dead-000001" not in await store.smembers(keys.CONNECTIONS_KEY)


async def test_recovery_covers_every_queue(store: InMemoryStore) -> None:
    await _register(store, "dead-000001", alive=False)
    await _pull_all(store, "dead-000001", "emails", "e1")
    await _pull_all(store, "dead-000001", "sms", "s1", "s2")

    assert await recover_connection(store, "dead-000001") == 3

    assert await _ready(store, "emails") == ["e1"]
    assert await _ready(store, "sms") == ["s1", "s2"]


async def test_recovery_erases_connection_keys(store: InMemoryStore) -> None:
    await _register(store, "dead-000001", alive=False)
    q = await _pull_all(store, "dead-000001", "jobs", "m1")
    await q.add_consumer("c", lambda d: None)

    await recover_connection(store, "dead-000001")

    assert await store.keys() == ["queue:[jobs]:ready"]


async def test_recovery_twice_is_idempotent(store: InMemoryStore) -> None:
    await _register(store, "dead-000001", alive=False)
    await _pull_all(store, "dead-000001", "jobs", "m1", "m2", "m3")

    assert await recover_connection(store, "dead-000001") == 3
    keys_after_first = await store.keys()
    assert await recover_connection(store, "dead-000001") == 0

    assert await store.keys() == keys_after_first
    assert await _ready(store, "jobs") == ["m1", "m2", "m3"]


async def test_concurrent_recoveries_do_not_duplicate() -> None:
    store = InMemoryStore()
    await _register(store, "dead-000001", alive=False)
    payloads = [f"m{i}" for i in range(30)]
    await _pull_all(store, "dead-000001", "jobs", *payloads)

    results = await asyncio.gather(
        recover_connection(store, "dead-000001"),
        recover_connection(store, "dead-000001"),
        recover_connection(store, "dead-000001"),
    )

    assert sum(results) == 30
    assert sorted(await _ready(store, "jobs")) == sorted(payloads)
    assert await store.smembers(keys.CONNECTIONS_KEY) == []


async def test_acked_messages_are_not_recovered(store: InMemoryStore) -> None:
    await _register(store, "dead-000001", alive=False)
    q = Queue(name="jobs", connection_name="dead-000001", store=store)
    for payload in ("m1", "m2", "m3"):
        await q.publish(payload)
    first, second, third = await q.consume(batch_size=3)
    await second.ack()

    await recover_connection(store, "dead-000001")

    assert await _ready(store, "jobs") == ["m1", "m3"]


async def test_recovery_of_unknown_connection_is_noop(store: InMemoryStore) -> None:
    assert await recover_connection(store, "ghost-000000") == 0
    assert await store.keys() == []


# ---------------------------------------------------------------------------
# ConnectionCleaner.scan_once
# ---------------------------------------------------------------------------


async def test_scan_recovers_only_dead_connections(store: InMemoryStore) -> None:
    await _register(store, "alive-000001")
    await _register(store, "dead-000001", alive=False)
    await _pull_all(store, "alive-000001", "jobs", "a1")
    await _pull_all(store, "dead-000001", "jobs", "d1")

    cleaner = ConnectionCleaner(store=store)
    assert await cleaner.scan_once() == ["dead-000001"]

    assert await _ready(store, "jobs") == ["d1"]
    assert await store.llen(keys.unacked_key("alive-000001", "jobs")) == 1
    assert await store.smembers(keys.CONNECTIONS_KEY) == ["alive-000001"]


async def test_scan_with_nothing_dead(store: InMemoryStore) -> None:
    await _register(store, "alive-000001")
    assert await ConnectionCleaner(store=store).scan_once() == []


async def test_two_cleaners_converge(store: InMemoryStore) -> None:
    await _register(store, "dead-000001", alive=False)
    await _pull_all(store, "dead-000001", "jobs", "m1", "m2", "m3")

    first = ConnectionCleaner(store=store, owner="a-000001")
    second = ConnectionCleaner(store=store, owner="b-000001")
    await first.scan_once()
    assert await second.scan_once() == []

    assert await _ready(store, "jobs") == ["m1", "m2", "m3"]


async def test_scan_continues_after_failure_on_one_connection() -> None:
    store = AsyncMock()
    store.smembers.side_effect = lambda key: {
        keys.CONNECTIONS_KEY: ["broken-000001", "dead-000001"],
    }.get(key, [])

    async def ttl(key: str) -> timedelta:
        if key == keys.heartbeat_key("broken-000001"):
            raise StorageError("PTTL failed", OSError("timeout"))
        return timedelta(seconds=-2)

    store.ttl.side_effect = ttl
    store.llen.return_value = 0

    assert await ConnectionCleaner(store=store).scan_once() == ["dead-000001"]
    store.srem.assert_awaited_once_with(keys.CONNECTIONS_KEY, "dead-000001")


# ---------------------------------------------------------------------------
# Background sweep
# ---------------------------------------------------------------------------


async def test_background_sweep_runs_immediately(store: InMemoryStore) -> None:
    await _register(store, "dead-000001", alive=False)
    await _pull_all(store, "dead-000001", "jobs", "m1")

    cleaner = ConnectionCleaner(store=store, interval=timedelta(hours=1))
    await cleaner.start()
    try:
        for _ in range(100):
            if await store.llen(keys.ready_key("jobs")) == 1:
                break
            await asyncio.sleep(0.01)
    finally:
        await cleaner.stop()

    assert await _ready(store, "jobs") == ["m1"]


async def test_background_sweep_survives_storage_errors() -> None:
    store = AsyncMock()
    store.smembers.side_effect = StorageError("SMEMBERS failed", OSError("down"))

    cleaner = ConnectionCleaner(store=store, interval=timedelta(milliseconds=5))
    await cleaner.start()
    await asyncio.sleep(0.05)
    assert cleaner._task is not None
    assert not cleaner._task.done()
    await cleaner.stop()

    assert store.smembers.await_count >= 2


async def test_double_start_raises(store: InMemoryStore) -> None:
    cleaner = ConnectionCleaner(store=store, interval=timedelta(hours=1))
    await cleaner.start()
    try:
        with pytest.raises(RuntimeError):
            await cleaner.start()
    finally:
        await cleaner.stop()
    assert cleaner._task is None
