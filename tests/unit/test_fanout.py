"""Fan-out and event stream tests."""

import asyncio
import json

import pytest

from jobrelay.config import FanoutConfig
from jobrelay.fanout import InMemoryFanout, get_fanout, stream_events


@pytest.mark.asyncio
async def test_publish_without_subscribers_is_a_noop():
    fanout = InMemoryFanout()
    await fanout.publish("nobody", "notification", {"message": "hi"})
    await fanout.broadcast("notification", {"message": "hi"})
    assert fanout.subscriber_count("nobody") == 0


@pytest.mark.asyncio
async def test_publish_reaches_every_channel_of_the_user_only():
    fanout = InMemoryFanout()
    tab_one, unsub_one = fanout.subscribe("u1")
    tab_two, unsub_two = fanout.subscribe("u1")
    other, unsub_other = fanout.subscribe("u2")

    await fanout.publish("u1", "forms", {"thread_id": "t1"})

    assert (await tab_one.get()).data == {"thread_id": "t1"}
    assert (await tab_two.get()).event == "forms"
    assert other.pending() == 0

    await fanout.broadcast("maintenance", {"at": "noon"})
    assert (await other.get()).event == "maintenance"
    assert tab_one.pending() == 1

    unsub_one()
    unsub_one()
    unsub_two()
    unsub_other()
    assert fanout.connected_users() == []
    await fanout.publish("u1", "forms", {})


@pytest.mark.asyncio
async def test_stream_sends_connected_events_and_heartbeats_then_cleans_up():
    fanout = InMemoryFanout()
    disconnected = False

    async def is_disconnected():
        return disconnected

    stream = stream_events(fanout, "u1", is_disconnected, heartbeat_interval=0.05)

    first = await stream.__anext__()
    assert first.startswith("event: connected\ndata: ")
    assert json.loads(first.split("data: ", 1)[1])["userId"] == "u1"
    assert fanout.subscriber_count("u1") == 1

    await fanout.publish("u1", "notification", {"message": "hi"})
    assert await stream.__anext__() == 'event: notification\ndata: {"message": "hi"}\n\n'

    heartbeat = await asyncio.wait_for(stream.__anext__(), timeout=2)
    assert heartbeat.startswith("event: heartbeat\n")

    disconnected = True
    with pytest.raises(StopAsyncIteration):
        await asyncio.wait_for(stream.__anext__(), timeout=2)
    assert fanout.subscriber_count("u1") == 0

    await fanout.publish("u1", "notification", {"message": "late"})


@pytest.mark.asyncio
async def test_closing_the_stream_releases_the_channel():
    fanout = InMemoryFanout()

    async def is_disconnected():
        return False

    stream = stream_events(fanout, "u1", is_disconnected, heartbeat_interval=30)
    await stream.__anext__()
    assert fanout.subscriber_count("u1") == 1

    await stream.aclose()
    assert fanout.subscriber_count("u1") == 0


def test_redis_fanout_routes_messages_to_local_channels():
    fanout = get_fanout(config=FanoutConfig(backend="redis"))
    channel, unsubscribe = fanout.subscribe("u1")
    other, _ = fanout.subscribe("u2")

    fanout.handle_message(
        {"channel": "jobrelay:user:u1", "data": json.dumps({"event": "notification", "data": {"x": 1}})}
    )
    fanout.handle_message(
        {"channel": "jobrelay:broadcast", "data": json.dumps({"event": "maintenance", "data": None})}
    )
    fanout.handle_message({"channel": "jobrelay:user:u1", "data": "not json"})

    assert channel.pending() == 2
    assert other.pending() == 1
    unsubscribe()


def test_get_fanout_defaults_to_inmemory():
    assert isinstance(get_fanout(), InMemoryFanout)
    with pytest.raises(ValueError):
        get_fanout("carrier-pigeon")
