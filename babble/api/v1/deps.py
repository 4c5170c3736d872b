"""
Request-scoped wiring of the chat components.

Every provider is a FastAPI dependency so tests can swap the store,
membership, transport or config with ``app.dependency_overrides``.
"""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from babble.core.auth import get_membership
from babble.core.broadcaster import Broadcaster
from babble.core.config import ChatConfig, get_settings
from babble.core.database import get_session
from babble.core.errors import NotFoundError
from babble.core.records import ChatTopic
from babble.core.redis import RedisTransport, get_redis
from babble.core.sql_store import SqlContentStore
from babble.core.store import ContentStore, Membership, Transport
from babble.services.permissions import PermissionResolver
from babble.services.posts import PostService
from babble.services.read_state import ReadStateTracker
from babble.services.topic_index import TopicIndex
from babble.services.topics import TopicLifecycle


async def get_store(session: AsyncSession = Depends(get_session)) -> ContentStore:
    return SqlContentStore(session)


async def get_transport() -> Transport:
    return RedisTransport(await get_redis())


def get_chat_config() -> ChatConfig:
    return get_settings().chat_config()


def get_broadcaster(transport: Transport = Depends(get_transport)) -> Broadcaster:
    return Broadcaster(transport, channel_prefix=get_settings().channel_prefix)


def get_resolver(membership: Membership = Depends(get_membership)) -> PermissionResolver:
    return PermissionResolver(membership)


def get_topic_index(
    store: ContentStore = Depends(get_store),
    membership: Membership = Depends(get_membership),
    resolver: PermissionResolver = Depends(get_resolver),
) -> TopicIndex:
    return TopicIndex(store, membership, resolver)


def get_lifecycle(
    store: ContentStore = Depends(get_store),
    membership: Membership = Depends(get_membership),
    resolver: PermissionResolver = Depends(get_resolver),
    index: TopicIndex = Depends(get_topic_index),
    broadcaster: Broadcaster = Depends(get_broadcaster),
    config: ChatConfig = Depends(get_chat_config),
) -> TopicLifecycle:
    return TopicLifecycle(store, membership, resolver, index, broadcaster, config)


def get_read_state(
    store: ContentStore = Depends(get_store),
    resolver: PermissionResolver = Depends(get_resolver),
) -> ReadStateTracker:
    return ReadStateTracker(store, resolver)


def get_post_service(
    store: ContentStore = Depends(get_store),
    membership: Membership = Depends(get_membership),
    resolver: PermissionResolver = Depends(get_resolver),
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> PostService:
    return PostService(store, membership, resolver, broadcaster)


async def get_topic_or_404(topic_id: int, store: ContentStore) -> ChatTopic:
    topic = await store.find_topic(topic_id)
    if topic is None:
        raise NotFoundError("Topic not found")
    return topic
