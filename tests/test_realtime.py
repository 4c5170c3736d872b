"""
Tests for the WebSocket relay.

Tests cover:
- Connection registry and the Redis listener lifecycle
- Topic-scoped relays and dead connection cleanup
- Listener restart after a failure
- Access re-checks on topic updates and removal on destroy
- Frame handling: ping, subscribe (permission filtered), typing
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from babble.api.v1.realtime import handle_frame, topic_visible
from babble.core.chat import ConnectionInfo, ConnectionManager
from babble_shared.schemas.common import PermissionKind

from conftest import STAFF


@pytest.fixture
def mgr():
    return ConnectionManager()


@pytest.fixture
def mock_ws():
    ws = AsyncMock(spec_set=["accept", "send_text", "close", "receive_text"])
    ws.accept = AsyncMock()
    ws.send_text = AsyncMock()
    ws.close = AsyncMock()
    return ws


class TestConnectionManager:
    async def test_connect_and_disconnect(self, mgr, mock_ws, alice):
        with patch("babble.core.chat.get_redis") as mock_redis:
            redis_mock = AsyncMock()
            redis_mock.pubsub = MagicMock(return_value=AsyncMock())
            mock_redis.return_value = redis_mock

            info = await mgr.connect(mock_ws, alice)
            mock_ws.accept.assert_awaited_once()
            assert mgr.connections == [info]
            assert mgr._redis_task is not None

            await mgr.disconnect(info)
            assert mgr.connections == []
            assert mgr._redis_task is None

    async def test_broadcast_only_to_subscribers(self, mgr, alice, bob):
        ws1, ws2 = AsyncMock(), AsyncMock()
        info1 = ConnectionInfo(ws1, alice)
        info1.subscribed_topics.add(7)
        info2 = ConnectionInfo(ws2, bob)
        info2.subscribed_topics.add(8)
        mgr._connections = [info1, info2]

        sent = await mgr.broadcast_to_topic(7, {"type": "post"})

        assert sent == 1
        ws1.send_text.assert_awaited_once_with(json.dumps({"type": "post"}))
        ws2.send_text.assert_not_called()

    async def test_broadcast_excludes_user(self, mgr, alice, bob):
        ws1, ws2 = AsyncMock(), AsyncMock()
        info1 = ConnectionInfo(ws1, alice)
        info2 = ConnectionInfo(ws2, bob)
        for info in (info1, info2):
            info.subscribed_topics.add(7)
        mgr._connections = [info1, info2]

        await mgr.broadcast_to_topic(7, {"type": "typing"}, exclude_user=alice.user_id)

        ws1.send_text.assert_not_called()
        ws2.send_text.assert_awaited_once()

    async def test_dead_connection_cleanup(self, mgr, alice):
        ws = AsyncMock()
        ws.send_text.side_effect = Exception("connection closed")
        info = ConnectionInfo(ws, alice)
        info.subscribed_topics.add(7)
        mgr._connections = [info]

        await mgr.broadcast_to_topic(7, {"type": "post"})
        assert mgr.connections == []

    async def test_pubsub_message_routed_by_channel(self, mgr, alice):
        ws = AsyncMock()
        info = ConnectionInfo(ws, alice)
        info.subscribed_topics.add(12)
        mgr._connections = [info]

        data = json.dumps({"type": "topic", "topic_id": 12})
        await mgr.handle_pubsub_message(
            {"type": "pmessage", "pattern": "babble:topics:*", "channel": "babble:topics:12", "data": data}
        )
        await mgr.handle_pubsub_message({"type": "psubscribe", "channel": "babble:topics:*", "data": 1})
        await mgr.handle_pubsub_message(
            {"type": "pmessage", "pattern": "babble:topics:*", "channel": "babble:topics:x", "data": data}
        )

        ws.send_text.assert_awaited_once_with(data)

    def test_topic_id_for(self, mgr):
        assert mgr.topic_id_for("babble:topics:42") == 42
        assert mgr.topic_id_for("other:42") is None
        assert mgr.topic_id_for("babble:topics:abc") is None


def _topic_message(topic_id, event):
    data = json.dumps({"type": "topic", "event": event, "topic_id": topic_id})
    return {
        "type": "pmessage",
        "pattern": "babble:topics:*",
        "channel": f"babble:topics:{topic_id}",
        "data": data,
    }


class TestListenerRecovery:
    async def test_failed_listener_restarts_on_next_connect(self, mgr, alice, bob, caplog):
        with patch("babble.core.chat.get_redis", side_effect=ConnectionError("redis down")):
            await mgr.connect(AsyncMock(), alice)
            first = mgr._redis_task
            await first
            assert "Redis WS listener failed" in caplog.text

            await mgr.connect(AsyncMock(), bob)
            second = mgr._redis_task
            assert second is not first
            await second

        assert first.exception() is None
        assert len(mgr.connections) == 2


class TestAccessRecheck:
    @pytest.fixture
    def checked_mgr(self, store, resolver):
        async def access_check(principal, topic_id):
            topic = await store.find_topic(topic_id)
            return topic is not None and await resolver.can_view(principal, topic)

        return ConnectionManager(access_check=access_check)

    @pytest.fixture
    async def lobby(self, make_topic):
        return await make_topic(PermissionKind.GROUP)

    def _subscribe(self, mgr, principal, topic_id):
        info = ConnectionInfo(AsyncMock(), principal)
        info.subscribed_topics.add(topic_id)
        mgr._connections.append(info)
        return info

    async def test_update_drops_subscribers_who_lost_access(
        self, checked_mgr, store, lobby, alice, carol
    ):
        alice_conn = self._subscribe(checked_mgr, alice, lobby.id)
        carol_conn = self._subscribe(checked_mgr, carol, lobby.id)
        store.topics[lobby.id].allowed_group_ids = frozenset({STAFF})

        await checked_mgr.handle_pubsub_message(_topic_message(lobby.id, "updated"))
        assert await checked_mgr.broadcast_to_topic(lobby.id, {"type": "post"}) == 1

        alice_conn.websocket.send_text.assert_not_called()
        assert alice_conn.subscribed_topics == set()
        assert carol_conn.websocket.send_text.await_count == 2

    async def test_destroyed_is_relayed_then_dropped(self, checked_mgr, store, lobby, alice, bob):
        conns = [self._subscribe(checked_mgr, p, lobby.id) for p in (alice, bob)]
        await store.delete_topic(lobby.id)

        await checked_mgr.handle_pubsub_message(_topic_message(lobby.id, "destroyed"))

        for conn in conns:
            conn.websocket.send_text.assert_awaited_once()
            assert conn.subscribed_topics == set()

    async def test_post_events_skip_the_recheck(self, lobby, alice):
        access_check = AsyncMock(return_value=False)
        checked_mgr = ConnectionManager(access_check=access_check)
        conn = self._subscribe(checked_mgr, alice, lobby.id)

        data = json.dumps({"type": "post", "event": "created", "topic_id": lobby.id})
        await checked_mgr.handle_pubsub_message(
            {"type": "pmessage", "channel": f"babble:topics:{lobby.id}", "data": data}
        )

        access_check.assert_not_awaited()
        conn.websocket.send_text.assert_awaited_once_with(data)

    async def test_failing_check_drops_the_subscription(self, lobby, alice):
        checked_mgr = ConnectionManager(access_check=AsyncMock(side_effect=RuntimeError("db")))
        conn = self._subscribe(checked_mgr, alice, lobby.id)

        assert await checked_mgr.revalidate(lobby.id) == 1
        assert conn.subscribed_topics == set()

    async def test_topic_visible_checks_on_a_fresh_session(
        self, store, membership, lobby, make_topic, alice
    ):
        hidden = await make_topic(PermissionKind.GROUP, allowed_group_ids=frozenset({STAFF}))
        session_cm = MagicMock()
        session_cm.__aenter__ = AsyncMock(return_value=MagicMock())
        session_cm.__aexit__ = AsyncMock(return_value=False)

        with (
            patch("babble.api.v1.realtime.get_session_factory", return_value=lambda: session_cm),
            patch("babble.api.v1.realtime.SqlContentStore", return_value=store),
            patch("babble.api.v1.realtime.SqlMembership", return_value=membership),
        ):
            assert await topic_visible(alice, lobby.id) is True
            assert await topic_visible(alice, hidden.id) is False
            assert await topic_visible(alice, 404) is False


class TestFrames:
    @pytest.fixture
    def conn(self, alice):
        return ConnectionInfo(AsyncMock(), alice)

    async def test_ping(self, conn, store, resolver, broadcaster):
        reply = await handle_frame(conn, {"type": "ping"}, store, resolver, broadcaster)
        assert json.loads(reply) == {"type": "pong"}

    async def test_subscribe_filters_by_visibility(
        self, conn, store, resolver, broadcaster, make_topic
    ):
        visible = await make_topic(PermissionKind.GROUP)
        hidden = await make_topic(PermissionKind.GROUP, allowed_group_ids=frozenset({STAFF}))

        reply = await handle_frame(
            conn,
            {"type": "subscribe", "topic_ids": [visible.id, hidden.id, 404]},
            store,
            resolver,
            broadcaster,
        )
        assert json.loads(reply) == {"type": "subscribed", "topic_ids": [visible.id]}

        reply = await handle_frame(
            conn, {"type": "unsubscribe", "topic_ids": [visible.id]}, store, resolver, broadcaster
        )
        assert json.loads(reply)["topic_ids"] == []

    async def test_subscribe_rejects_bad_ids(self, conn, store, resolver, broadcaster):
        reply = await handle_frame(
            conn, {"type": "subscribe", "topic_ids": ["nope"]}, store, resolver, broadcaster
        )
        assert json.loads(reply)["code"] == "INVALID_TOPIC_IDS"

    async def test_typing_publishes_signal(
        self, conn, store, resolver, broadcaster, transport, make_topic
    ):
        topic = await make_topic(PermissionKind.GROUP)
        reply = await handle_frame(
            conn, {"type": "typing", "topic_id": topic.id}, store, resolver, broadcaster
        )
        assert reply is None
        assert transport.of_type("typing")[0]["topic_id"] == topic.id

    async def test_typing_needs_view_access(
        self, conn, store, resolver, broadcaster, transport, make_topic
    ):
        topic = await make_topic(PermissionKind.GROUP, allowed_group_ids=frozenset({STAFF}))
        reply = await handle_frame(
            conn, {"type": "typing", "topic_id": topic.id}, store, resolver, broadcaster
        )
        assert json.loads(reply)["code"] == "ACCESS_DENIED"
        assert transport.published == []

    async def test_visitors_cannot_type(self, store, resolver, broadcaster, anonymous, make_topic):
        topic = await make_topic(PermissionKind.PUBLIC, title="Town square")
        conn = ConnectionInfo(AsyncMock(), anonymous)
        reply = await handle_frame(
            conn, {"type": "typing", "topic_id": topic.id}, store, resolver, broadcaster
        )
        assert json.loads(reply)["code"] == "AUTHENTICATION_REQUIRED"

    async def test_unknown_frame(self, conn, store, resolver, broadcaster):
        reply = await handle_frame(conn, {"type": "dance"}, store, resolver, broadcaster)
        assert json.loads(reply)["code"] == "UNKNOWN_FRAME"
