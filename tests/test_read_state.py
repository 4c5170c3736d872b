"""
Tests for read-state tracking.

Tests cover:
- Monotonic read markers
- Notification cascade up to the marked post
- Rejections before any write
- Unread counts
"""

from __future__ import annotations

import pytest

from babble.core.errors import ForbiddenError, ValidationFailedError
from babble.core.records import ReadMarker
from babble_shared.schemas.common import PermissionKind

from conftest import STAFF
from fakes import FakeNotification


@pytest.fixture
async def topic(make_topic):
    return await make_topic(PermissionKind.GROUP)


class TestMarkRead:
    async def test_marker_never_moves_backwards(self, read_state, alice, topic):
        await read_state.mark_read(alice, topic, 7)
        marker = await read_state.mark_read(alice, topic, 3)
        assert marker.last_read_post_number == 7

        marker = await read_state.mark_read(alice, topic, 7)
        assert marker.last_read_post_number == 7

    async def test_marker_advances(self, read_state, alice, topic):
        await read_state.mark_read(alice, topic, 2)
        marker = await read_state.mark_read(alice, topic, 5)
        assert marker.last_read_post_number == 5

    async def test_notifications_flip_up_to_post_number(self, read_state, store, alice, topic):
        store.notifications = [
            FakeNotification(alice.user_id, topic.id, n, "mentioned") for n in (1, 3, 5, 8)
        ]
        store.notifications.append(FakeNotification(2, topic.id, 1, "mentioned"))
        store.notifications.append(FakeNotification(alice.user_id, 999, 1, "mentioned"))

        await read_state.mark_read(alice, topic, 5)

        flipped = {(n.user_id, n.topic_id, n.post_number) for n in store.notifications if n.read}
        assert flipped == {
            (alice.user_id, topic.id, 1),
            (alice.user_id, topic.id, 3),
            (alice.user_id, topic.id, 5),
        }

    async def test_cascade_runs_even_when_marker_is_ahead(self, read_state, store, alice, topic):
        await read_state.mark_read(alice, topic, 10)
        store.notifications = [FakeNotification(alice.user_id, topic.id, 4, "mentioned")]

        await read_state.mark_read(alice, topic, 4)
        assert store.notifications[0].read is True

    async def test_visitor_is_rejected(self, read_state, store, anonymous, topic):
        with pytest.raises(ForbiddenError):
            await read_state.mark_read(anonymous, topic, 1)
        assert store.markers == {}

    async def test_non_viewer_is_rejected(self, read_state, store, dave, make_topic):
        staff_topic = await make_topic(
            PermissionKind.GROUP, allowed_group_ids=frozenset({STAFF})
        )
        with pytest.raises(ForbiddenError):
            await read_state.mark_read(dave, staff_topic, 1)
        assert store.markers == {}

    async def test_negative_post_number_is_rejected(self, read_state, store, alice, topic):
        with pytest.raises(ValidationFailedError):
            await read_state.mark_read(alice, topic, -1)
        assert store.markers == {}


class TestTouch:
    async def test_creates_marker_once(self, read_state, store, alice, topic):
        first = await read_state.touch(alice, topic)
        assert first.last_read_post_number == 0

        await read_state.mark_read(alice, topic, 3)
        again = await read_state.touch(alice, topic)
        assert again.last_read_post_number == 3

    async def test_visitors_have_no_marker(self, read_state, store, anonymous, topic):
        assert await read_state.touch(anonymous, topic) is None
        assert store.markers == {}


class TestUnreadCount:
    def test_counts_posts_after_marker(self, read_state, topic):
        topic.highest_post_number = 10
        marker = ReadMarker(user_id=1, topic_id=topic.id, last_read_post_number=4)
        assert read_state.unread_count(topic, marker) == 6

    def test_no_marker_means_everything_unread(self, read_state, topic):
        topic.highest_post_number = 3
        assert read_state.unread_count(topic, None) == 3

    def test_never_negative(self, read_state, topic):
        marker = ReadMarker(user_id=1, topic_id=topic.id, last_read_post_number=9)
        assert read_state.unread_count(topic, marker) == 0
