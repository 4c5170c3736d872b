"""
Chat topic endpoints.

- GET /topics: channels visible to the caller (``?pm=true`` for direct messages)
- GET /topics/{topic_id}: topic with a window of its posts
- GET /topics/pm/{user}: open (or reuse) a direct message with a user
- POST/PUT/DELETE /topics[/{topic_id}]: admin topic management
- POST /topics/{topic_id}/read/{post_number}: advance the read marker
- GET /topics/{topic_id}/groups: groups allowed in a topic
- POST /topics/{topic_id}/online, /typing: presence and typing signals
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from babble.api.v1.deps import (
    get_broadcaster,
    get_chat_config,
    get_lifecycle,
    get_read_state,
    get_resolver,
    get_store,
    get_topic_index,
    get_topic_or_404,
)
from babble.core.auth import get_membership, get_principal, require_user
from babble.core.broadcaster import Broadcaster
from babble.core.config import ChatConfig
from babble.core.errors import ForbiddenError, NotFoundError
from babble.core.records import ChatTopic, Principal
from babble.core.store import ContentStore, Membership
from babble.services.permissions import PermissionResolver
from babble.services.post_window import post_window
from babble.services.read_state import ReadStateTracker
from babble.services.shapes import read_marker_read, topic_read, topic_summary
from babble.services.topic_index import TopicIndex
from babble.services.topics import TopicLifecycle
from babble_shared.schemas.common import Direction
from babble_shared.schemas.posts import ReadMarkerRead
from babble_shared.schemas.topics import (
    GroupList,
    GroupRead,
    TopicEnvelope,
    TopicList,
    TopicParams,
    TopicRead,
)

router = APIRouter()


async def _visible_topic(
    topic_id: int,
    principal: Principal,
    store: ContentStore,
    resolver: PermissionResolver,
) -> ChatTopic:
    topic = await get_topic_or_404(topic_id, store)
    if not await resolver.can_view(principal, topic):
        raise ForbiddenError("You cannot view this chat topic")
    return topic


async def _topic_with_stream(
    topic: ChatTopic,
    principal: Principal,
    store: ContentStore,
    read_state: ReadStateTracker,
    config: ChatConfig,
    *,
    from_: Optional[int] = None,
    direction: Direction = Direction.BACKWARD,
    limit: Optional[int] = None,
) -> TopicRead:
    posts = await post_window(
        store, topic, from_=from_, direction=direction, limit=limit, config=config
    )
    marker = await read_state.touch(principal, topic)
    return topic_read(
        topic, posts=posts, marker=marker, direction=direction, from_post_number=from_
    )


# ---------------------------------------------------------------------------
# Listing and reading
# ---------------------------------------------------------------------------


@router.get("", response_model=TopicList)
async def list_topics_endpoint(
    pm: bool = False,
    principal: Principal = Depends(get_principal),
    index: TopicIndex = Depends(get_topic_index),
):
    """Chat topics visible to the caller, most recently active first."""
    topics = await index.available_topics(principal, pm=pm)
    return TopicList(topics=[topic_summary(t) for t in topics])


@router.get("/pm/{user}", response_model=TopicRead)
async def direct_message_endpoint(
    user: str,
    principal: Principal = Depends(require_user),
    membership: Membership = Depends(get_membership),
    store: ContentStore = Depends(get_store),
    lifecycle: TopicLifecycle = Depends(get_lifecycle),
    read_state: ReadStateTracker = Depends(get_read_state),
    config: ChatConfig = Depends(get_chat_config),
):
    """Direct message between the caller and ``user`` (id or username)."""
    if user.isdigit():
        target = await membership.find_user(int(user))
    else:
        target = await membership.find_user_by_username(user)
    if target is None:
        raise NotFoundError("User not found")

    topic = await lifecycle.save_topic(
        principal, TopicParams(user_ids=[principal.user_id, target.user_id])
    )
    return await _topic_with_stream(topic, principal, store, read_state, config)


@router.get("/{topic_id}", response_model=TopicRead)
async def get_topic_endpoint(
    topic_id: int,
    from_: Optional[int] = Query(None, alias="from"),
    direction: Direction = Direction.BACKWARD,
    limit: Optional[int] = None,
    principal: Principal = Depends(get_principal),
    store: ContentStore = Depends(get_store),
    resolver: PermissionResolver = Depends(get_resolver),
    read_state: ReadStateTracker = Depends(get_read_state),
    config: ChatConfig = Depends(get_chat_config),
):
    """Topic details plus a window of posts; records that the caller opened it."""
    topic = await _visible_topic(topic_id, principal, store, resolver)
    return await _topic_with_stream(
        topic,
        principal,
        store,
        read_state,
        config,
        from_=from_,
        direction=direction,
        limit=limit,
    )


# ---------------------------------------------------------------------------
# Management
# ---------------------------------------------------------------------------


@router.post("", response_model=TopicRead, status_code=201)
async def create_topic_endpoint(
    body: TopicEnvelope,
    principal: Principal = Depends(get_principal),
    lifecycle: TopicLifecycle = Depends(get_lifecycle),
):
    topic = await lifecycle.save_topic(principal, body.topic)
    return topic_read(topic)


@router.put("/{topic_id}", response_model=TopicRead)
async def update_topic_endpoint(
    topic_id: int,
    body: TopicEnvelope,
    principal: Principal = Depends(get_principal),
    store: ContentStore = Depends(get_store),
    lifecycle: TopicLifecycle = Depends(get_lifecycle),
):
    existing = await get_topic_or_404(topic_id, store)
    topic = await lifecycle.save_topic(principal, body.topic, existing=existing)
    return topic_read(topic)


@router.delete("/{topic_id}", response_model=TopicRead)
async def destroy_topic_endpoint(
    topic_id: int,
    principal: Principal = Depends(get_principal),
    store: ContentStore = Depends(get_store),
    lifecycle: TopicLifecycle = Depends(get_lifecycle),
):
    topic = await get_topic_or_404(topic_id, store)
    destroyed = await lifecycle.destroy(topic, principal)
    return topic_read(destroyed)


@router.get("/{topic_id}/groups", response_model=GroupList)
async def topic_groups_endpoint(
    topic_id: int,
    principal: Principal = Depends(get_principal),
    store: ContentStore = Depends(get_store),
    membership: Membership = Depends(get_membership),
    resolver: PermissionResolver = Depends(get_resolver),
):
    """Groups allowed in a topic (admin only)."""
    topic = await get_topic_or_404(topic_id, store)
    if not resolver.can_administer(principal):
        raise ForbiddenError("Only administrators can list topic groups")
    groups = await membership.find_groups(sorted(topic.allowed_group_ids))
    return GroupList(groups=[GroupRead(id=g.id, name=g.name) for g in groups])


# ---------------------------------------------------------------------------
# Read state and signals
# ---------------------------------------------------------------------------


@router.post("/{topic_id}/read/{post_number}", response_model=ReadMarkerRead)
async def mark_read_endpoint(
    topic_id: int,
    post_number: int,
    principal: Principal = Depends(get_principal),
    store: ContentStore = Depends(get_store),
    read_state: ReadStateTracker = Depends(get_read_state),
):
    topic = await get_topic_or_404(topic_id, store)
    marker = await read_state.mark_read(principal, topic, post_number)
    return read_marker_read(topic, marker)


@router.post("/{topic_id}/online")
async def online_endpoint(
    topic_id: int,
    principal: Principal = Depends(require_user),
    store: ContentStore = Depends(get_store),
    resolver: PermissionResolver = Depends(get_resolver),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    topic = await _visible_topic(topic_id, principal, store, resolver)
    await broadcaster.publish_presence(topic, principal)
    return {"status": "ok"}


@router.post("/{topic_id}/typing")
async def typing_endpoint(
    topic_id: int,
    principal: Principal = Depends(require_user),
    store: ContentStore = Depends(get_store),
    resolver: PermissionResolver = Depends(get_resolver),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    topic = await _visible_topic(topic_id, principal, store, resolver)
    await broadcaster.publish_typing(topic, principal)
    return {"status": "ok"}
