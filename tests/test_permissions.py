"""
Tests for the permission resolver.

Tests cover:
- Visitors only see public topics
- Group, category and direct-message visibility
- Posting rules for public topics with allowed groups
- Admin-only topic edits and author-or-admin post edits
"""

from __future__ import annotations

from babble.core.records import ChatPost
from babble_shared.schemas.common import PermissionKind

from conftest import PUBLIC_CATEGORY, STAFF, STAFF_CATEGORY, TRUST_LEVEL_0


class TestVisitors:
    async def test_can_view_public_only(self, resolver, anonymous, make_topic):
        public = await make_topic(PermissionKind.PUBLIC, title="Town square")
        group = await make_topic(PermissionKind.GROUP)
        category = await make_topic(
            PermissionKind.CATEGORY, title="General", category_id=PUBLIC_CATEGORY
        )

        assert await resolver.can_view(anonymous, public) is True
        assert await resolver.can_view(anonymous, group) is False
        assert await resolver.can_view(anonymous, category) is False

    async def test_cannot_post_anywhere(self, resolver, anonymous, make_topic):
        public = await make_topic(PermissionKind.PUBLIC, title="Town square")
        assert await resolver.can_post(anonymous, public) is False

    def test_cannot_administer(self, resolver, anonymous):
        assert resolver.can_administer(anonymous) is False


class TestGroupTopics:
    async def test_member_can_view_and_post(self, resolver, alice, make_topic):
        topic = await make_topic(PermissionKind.GROUP)
        assert await resolver.can_view(alice, topic) is True
        assert await resolver.can_post(alice, topic) is True

    async def test_non_member_is_denied(self, resolver, dave, make_topic):
        topic = await make_topic(PermissionKind.GROUP)
        assert await resolver.can_view(dave, topic) is False
        assert await resolver.can_post(dave, topic) is False

    async def test_any_allowed_group_is_enough(self, resolver, carol, alice, make_topic):
        topic = await make_topic(PermissionKind.GROUP, allowed_group_ids=frozenset({STAFF, 99}))
        assert await resolver.can_view(carol, topic) is True
        assert await resolver.can_view(alice, topic) is False

    async def test_admin_sees_everything(self, resolver, admin, make_topic):
        topic = await make_topic(PermissionKind.GROUP, allowed_group_ids=frozenset({99}))
        assert await resolver.can_view(admin, topic) is True
        assert await resolver.can_post(admin, topic) is True


class TestCategoryTopics:
    async def test_public_category_is_readable_by_users(self, resolver, dave, make_topic):
        topic = await make_topic(
            PermissionKind.CATEGORY, title="General", category_id=PUBLIC_CATEGORY
        )
        assert await resolver.can_view(dave, topic) is True

    async def test_restricted_category_follows_category_groups(
        self, resolver, carol, alice, make_topic
    ):
        topic = await make_topic(
            PermissionKind.CATEGORY, title="Staff", category_id=STAFF_CATEGORY
        )
        assert await resolver.can_view(carol, topic) is True
        assert await resolver.can_view(alice, topic) is False
        assert await resolver.can_post(alice, topic) is False


class TestDirectMessages:
    async def test_only_participants(self, resolver, alice, bob, carol, make_topic):
        topic = await make_topic(
            PermissionKind.DIRECT_MESSAGE,
            title="Direct message between alice and bob",
            allowed_user_ids=frozenset({1, 2}),
        )
        assert await resolver.can_view(alice, topic) is True
        assert await resolver.can_view(bob, topic) is True
        assert await resolver.can_view(carol, topic) is False


class TestPublicTopics:
    async def test_open_posting_without_groups(self, resolver, dave, make_topic):
        topic = await make_topic(PermissionKind.PUBLIC, title="Town square")
        assert await resolver.can_post(dave, topic) is True

    async def test_allowed_groups_restrict_posting_only(self, resolver, dave, alice, make_topic):
        topic = await make_topic(
            PermissionKind.PUBLIC,
            title="Announcements",
            allowed_group_ids=frozenset({TRUST_LEVEL_0}),
        )
        assert await resolver.can_view(dave, topic) is True
        assert await resolver.can_post(dave, topic) is False
        assert await resolver.can_post(alice, topic) is True


class TestEditRights:
    async def test_topic_edit_is_admin_only(self, resolver, alice, admin, make_topic):
        topic = await make_topic(PermissionKind.GROUP)
        assert resolver.can_edit(alice, topic) is False
        assert resolver.can_edit(admin, topic) is True

    def test_post_edit_author_or_admin(self, resolver, alice, bob, admin, anonymous):
        post = ChatPost(id=1, topic_id=1, post_number=1, user_id=1, raw="hi")
        assert resolver.can_edit_post(alice, post) is True
        assert resolver.can_delete_post(alice, post) is True
        assert resolver.can_edit_post(bob, post) is False
        assert resolver.can_delete_post(admin, post) is True
        assert resolver.can_edit_post(anonymous, post) is False
