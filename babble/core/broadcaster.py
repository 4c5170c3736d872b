"""
Topic fan-out over the pub/sub transport.

Every event for a topic goes to one channel, ``<prefix><topic_id>``, and every
subscriber of that channel receives it. Publishing is a single PUBLISH on the
transport: it never waits for listeners and never fails the caller. Presence
and typing signals are fire-and-forget with no retries and no dedup window.
"""

from __future__ import annotations

import logging
from typing import Any

from babble.core.records import ChatPost, ChatTopic, Principal
from babble.core.store import Transport
from babble.services.shapes import post_read, topic_summary
from babble_shared.schemas.common import EventKind
from babble_shared.schemas.events import PostEvent, SignalEvent, TopicEvent

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL_PREFIX = "babble:topics:"


class Broadcaster:
    def __init__(self, transport: Transport, *, channel_prefix: str = DEFAULT_CHANNEL_PREFIX):
        self._transport = transport
        self._channel_prefix = channel_prefix

    def channel_for(self, topic_id: int) -> str:
        return f"{self._channel_prefix}{topic_id}"

    async def publish_topic_event(self, topic: ChatTopic, event: str = "updated") -> None:
        payload = TopicEvent(event=event, topic_id=topic.id, topic=topic_summary(topic))
        await self._dispatch(topic.id, payload.model_dump(mode="json"))

    async def publish_post_event(
        self, post: ChatPost, actor: Principal | None, event: str = "created"
    ) -> None:
        is_delete = event == "deleted"
        payload = PostEvent(
            event=event,
            topic_id=post.topic_id,
            is_delete=is_delete,
            actor_id=actor.user_id if actor else None,
            post=post_read(post),
        )
        await self._dispatch(post.topic_id, payload.model_dump(mode="json"))

    async def publish_presence(self, topic: ChatTopic, user: Principal) -> None:
        await self._signal(EventKind.PRESENCE, topic, user)

    async def publish_typing(self, topic: ChatTopic, user: Principal) -> None:
        await self._signal(EventKind.TYPING, topic, user)

    async def _signal(self, kind: EventKind, topic: ChatTopic, user: Principal) -> None:
        if user.user_id is None:
            return
        payload = SignalEvent(
            type=kind, topic_id=topic.id, user_id=user.user_id, username=user.username
        )
        await self._dispatch(topic.id, payload.model_dump(mode="json"))

    async def _dispatch(self, topic_id: int, payload: dict[str, Any]) -> None:
        channel = self.channel_for(topic_id)
        try:
            await self._transport.publish(channel, payload)
        except Exception:
            # Transport errors never fail the triggering write
            logger.warning(
                "Broadcast failed: channel=%s type=%s", channel, payload.get("type"), exc_info=True
            )
