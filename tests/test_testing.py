from kvqueue.testing import RecordingConnection


async def test_recording_connection_records_publishes() -> None:
    connection = RecordingConnection()
    assert connection.get_delivery("things", 0) == (
        "kvqueue.RecordingConnection: delivery not found: things[0]"
    )

    queue = await connection.open_queue("things")
    assert connection.get_delivery("things", -1) == (
        "kvqueue.RecordingConnection: delivery not found: things[-1]"
    )
    assert connection.get_delivery("things", 0) == (
        "kvqueue.RecordingConnection: delivery not found: things[0]"
    )

    assert await queue.publish("bar")
    assert connection.get_delivery("things", 0) == "bar"
    assert connection.get_delivery("things", 1) == (
        "kvqueue.RecordingConnection: delivery not found: things[1]"
    )

    assert await queue.publish("foo")
    assert connection.get_delivery("things", 0) == "bar"
    assert connection.get_delivery("things", 1) == "foo"

    connection.reset()
    assert connection.get_delivery("things", 0) == (
        "kvqueue.RecordingConnection: delivery not found: things[0]"
    )

    assert await queue.publish("bar")
    assert connection.get_delivery("things", 0) == "bar"


async def test_recording_connection_tracks_open_queues() -> None:
    connection = RecordingConnection(name="mailer")
    first = await connection.open_queue("emails")
    await connection.open_queue("sms")

    assert await connection.open_queue("emails") is first
    assert await connection.get_open_queues() == ["emails", "sms"]
    assert connection.get_delivery("sms", 3) == "mailer: delivery not found: sms[3]"
