"""
Shared fixtures: an in-memory forum with a few users, groups and categories,
and the chat components wired over it.
"""

from __future__ import annotations

import pytest

from babble.core.broadcaster import Broadcaster
from babble.core.config import ChatConfig
from babble.core.records import ANONYMOUS, TopicFields
from babble.services.permissions import PermissionResolver
from babble.services.posts import PostService
from babble.services.read_state import ReadStateTracker
from babble.services.topic_index import TopicIndex
from babble.services.topics import TopicLifecycle
from babble_shared.schemas.common import PermissionKind

from fakes import FakeCategory, FakeContentStore, FakeMembership, RecordingTransport

TRUST_LEVEL_0 = 10
STAFF = 20
PUBLIC_CATEGORY = 30
STAFF_CATEGORY = 31


@pytest.fixture
def membership():
    m = FakeMembership()
    m.groups = {TRUST_LEVEL_0: "trust_level_0", STAFF: "staff"}
    m.add_user(1, "alice", groups=[TRUST_LEVEL_0])
    m.add_user(2, "bob", groups=[TRUST_LEVEL_0])
    m.add_user(3, "admin", admin=True)
    m.add_user(4, "carol", groups=[TRUST_LEVEL_0, STAFF])
    m.add_user(5, "dave")
    m.categories = {
        PUBLIC_CATEGORY: FakeCategory("General"),
        STAFF_CATEGORY: FakeCategory(
            "Staff Lounge", read_restricted=True, group_ids=frozenset({STAFF})
        ),
    }
    return m


@pytest.fixture
def alice(membership):
    return membership.users[1]


@pytest.fixture
def bob(membership):
    return membership.users[2]


@pytest.fixture
def admin(membership):
    return membership.users[3]


@pytest.fixture
def carol(membership):
    return membership.users[4]


@pytest.fixture
def dave(membership):
    return membership.users[5]


@pytest.fixture
def anonymous():
    return ANONYMOUS


@pytest.fixture
def config():
    return ChatConfig()


@pytest.fixture
def store():
    return FakeContentStore()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def broadcaster(transport):
    return Broadcaster(transport)


@pytest.fixture
def resolver(membership):
    return PermissionResolver(membership)


@pytest.fixture
def index(store, membership, resolver):
    return TopicIndex(store, membership, resolver)


@pytest.fixture
def lifecycle(store, membership, resolver, index, broadcaster, config):
    return TopicLifecycle(store, membership, resolver, index, broadcaster, config)


@pytest.fixture
def read_state(store, resolver):
    return ReadStateTracker(store, resolver)


@pytest.fixture
def post_service(store, membership, resolver, broadcaster):
    return PostService(store, membership, resolver, broadcaster)


@pytest.fixture
def make_topic(store):
    """Insert a topic straight into the store, bypassing the lifecycle rules."""

    async def _make(permissions=PermissionKind.GROUP, title="Lobby", **kwargs):
        kwargs.setdefault("user_id", 3)
        if permissions is PermissionKind.GROUP:
            kwargs.setdefault("allowed_group_ids", frozenset({TRUST_LEVEL_0}))
        return await store.create_topic(TopicFields(title=title, permissions=permissions, **kwargs))

    return _make
