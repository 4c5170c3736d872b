"""Tests for topic fan-out over the transport."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

from babble.core.broadcaster import Broadcaster
from babble.core.records import ChatPost, ChatTopic
from babble.core.redis import RedisTransport
from babble_shared.schemas.common import PermissionKind

from fakes import FailingTransport, RecordingTransport


def _topic(topic_id=7):
    return ChatTopic(id=topic_id, title="Lobby", permissions=PermissionKind.GROUP, user_id=3)


def _post(topic_id=7):
    return ChatPost(id=70, topic_id=topic_id, post_number=1, user_id=1, raw="hi")


async def test_one_channel_per_topic(alice):
    transport = RecordingTransport()
    broadcaster = Broadcaster(transport)

    await broadcaster.publish_topic_event(_topic(7), "created")
    await broadcaster.publish_post_event(_post(7), alice)
    await broadcaster.publish_topic_event(_topic(8))

    assert [channel for channel, _ in transport.published] == [
        "babble:topics:7",
        "babble:topics:7",
        "babble:topics:8",
    ]


async def test_custom_channel_prefix():
    transport = RecordingTransport()
    broadcaster = Broadcaster(transport, channel_prefix="chat:")
    await broadcaster.publish_topic_event(_topic(1))
    assert transport.published[0][0] == "chat:1"


async def test_post_delete_event_shape(admin):
    transport = RecordingTransport()
    await Broadcaster(transport).publish_post_event(_post(), admin, "deleted")

    payload = transport.published[0][1]
    assert payload["type"] == "post"
    assert payload["is_delete"] is True
    assert payload["actor_id"] == admin.user_id
    assert payload["post"]["post_number"] == 1


async def test_presence_and_typing(alice):
    transport = RecordingTransport()
    broadcaster = Broadcaster(transport)

    await broadcaster.publish_presence(_topic(), alice)
    await broadcaster.publish_typing(_topic(), alice)

    assert [p["type"] for _, p in transport.published] == ["presence", "typing"]
    assert transport.published[1][1] == {
        "type": "typing",
        "topic_id": 7,
        "user_id": alice.user_id,
        "username": "alice",
    }


async def test_visitors_send_no_signals(anonymous):
    transport = RecordingTransport()
    await Broadcaster(transport).publish_typing(_topic(), anonymous)
    assert transport.published == []


async def test_transport_failures_are_swallowed(alice, caplog):
    transport = FailingTransport()
    broadcaster = Broadcaster(transport)

    await broadcaster.publish_post_event(_post(), alice)

    assert transport.attempts == 1
    assert "Broadcast failed" in caplog.text


async def test_no_dedup_of_repeated_signals(alice):
    transport = RecordingTransport()
    broadcaster = Broadcaster(transport)
    for _ in range(3):
        await broadcaster.publish_typing(_topic(), alice)
    assert len(transport.published) == 3


async def test_redis_transport_publishes_json():
    client = AsyncMock()
    await RedisTransport(client).publish("babble:topics:7", {"type": "topic", "topic_id": 7})

    client.publish.assert_awaited_once()
    channel, data = client.publish.await_args.args
    assert channel == "babble:topics:7"
    assert json.loads(data) == {"type": "topic", "topic_id": 7}
