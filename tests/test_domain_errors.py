import pytest

from kvqueue.domain.errors import HeartbeatError, KVQueueError, StorageError


def test_kvqueue_error_is_exception():
    err = KVQueueError("test message")
    assert isinstance(err, Exception)
    assert str(err) == "test message"


def test_heartbeat_error_stores_connection_name():
    err = HeartbeatError("worker-abc123")
    assert isinstance(err, KVQueueError)
    assert err.connection_name == "worker-abc123"
    assert err.cause is None
    assert "worker-abc123" in str(err)


def test_heartbeat_error_includes_cause():
    cause = ConnectionRefusedError("connection refused")
    err = HeartbeatError("worker-abc123", cause)
    assert err.cause is cause
    assert "connection refused" in str(err)


def test_storage_error_stores_cause_and_message():
    cause = RuntimeError("broken pipe")
    err = StorageError("Redis SET failed", cause)
    assert isinstance(err, KVQueueError)
    assert err.cause is cause
    assert "Redis SET failed" in str(err)
    assert "broken pipe" in str(err)


def test_error_hierarchy():
    assert issubclass(HeartbeatError, KVQueueError)
    assert issubclass(StorageError, KVQueueError)
    assert issubclass(KVQueueError, Exception)


def test_can_catch_subclass_as_base():
    with pytest.raises(KVQueueError):
        raise StorageError("read failed", OSError("timeout"))
