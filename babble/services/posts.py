"""
Chat post operations: create, update and destroy messages in a topic.

Chat posts never touch the author's forum post count. Deletion goes through
PostDestroyHook, which wraps the store's generic deletion and fans out the
result to everyone watching the topic.
"""

from __future__ import annotations

import re
from dataclasses import replace
from typing import Optional

import structlog

from babble.core.broadcaster import Broadcaster
from babble.core.errors import ForbiddenError, NoContentError, NotFoundError, ValidationFailedError
from babble.core.records import ChatPost, ChatTopic, Principal, utcnow
from babble.core.store import ContentStore, Membership
from babble.services.permissions import PermissionResolver

log = structlog.get_logger()

MENTION_PATTERN = re.compile(r"(?<![\w@])@(\w(?:[\w.-]*\w)?)")
MENTION_NOTIFICATION = "mentioned"


def extract_mentions(raw: str) -> list[str]:
    """Unique @usernames in order of first appearance, lowercased."""
    seen: dict[str, None] = {}
    for name in MENTION_PATTERN.findall(raw):
        seen.setdefault(name.lower(), None)
    return list(seen)


class PostDestroyHook:
    """Store deletion followed by one topic event and one post delete event."""

    def __init__(self, store: ContentStore, broadcaster: Broadcaster):
        self._store = store
        self._broadcaster = broadcaster

    async def destroy(self, topic: ChatTopic, post: ChatPost, actor: Principal) -> ChatPost:
        user_deleted = await self._store.delete_post(post, actor, adjust_user_counts=False)
        if user_deleted:
            deleted = replace(post, user_deleted=True, updated_at=utcnow())
        else:
            deleted = replace(post, deleted_at=utcnow(), updated_at=utcnow())

        current = await self._store.find_topic(topic.id) or topic
        await self._broadcaster.publish_topic_event(current, "updated")
        await self._broadcaster.publish_post_event(deleted, actor, "deleted")
        return deleted


class PostService:
    def __init__(
        self,
        store: ContentStore,
        membership: Membership,
        resolver: PermissionResolver,
        broadcaster: Broadcaster,
        destroy_hook: Optional[PostDestroyHook] = None,
    ):
        self._store = store
        self._membership = membership
        self._resolver = resolver
        self._broadcaster = broadcaster
        self._destroy_hook = destroy_hook or PostDestroyHook(store, broadcaster)

    async def _topic(self, topic_id: int) -> ChatTopic:
        topic = await self._store.find_topic(topic_id)
        if topic is None:
            raise NotFoundError("Topic not found")
        return topic

    async def _post_in(self, topic: ChatTopic, post_id: int) -> ChatPost:
        post = await self._store.find_post(post_id)
        if post is None:
            raise NotFoundError("Post not found")
        if post.topic_id != topic.id:
            raise ValidationFailedError(
                "Post does not belong to this topic", fields={"post_id": "wrong topic"}
            )
        return post

    @staticmethod
    def _body(raw: Optional[str]) -> str:
        if raw is None or not raw.strip():
            raise NoContentError("Post body is blank")
        return raw

    async def create(self, principal: Principal, topic_id: int, raw: Optional[str]) -> ChatPost:
        topic = await self._topic(topic_id)
        if not await self._resolver.can_post(principal, topic):
            raise ForbiddenError("You cannot post in this chat topic")
        body = self._body(raw)

        post = await self._store.create_post(topic, principal.user_id, body)
        await self._store.advance_read_marker(principal.user_id, topic.id, post.post_number)
        mentioned = await self._notify_mentions(principal, topic, post)

        log.info(
            "post.created",
            topic_id=topic.id,
            post_id=post.id,
            post_number=post.post_number,
            author=principal.user_id,
            mentions=len(mentioned),
        )
        current = await self._store.find_topic(topic.id) or topic
        await self._broadcaster.publish_topic_event(current, "updated")
        await self._broadcaster.publish_post_event(post, principal, "created")
        return post

    async def _notify_mentions(
        self, author: Principal, topic: ChatTopic, post: ChatPost
    ) -> list[int]:
        user_ids: list[int] = []
        for username in extract_mentions(post.raw):
            user = await self._membership.find_user_by_username(username)
            if user is None or user.user_id == author.user_id or user.user_id in user_ids:
                continue
            if await self._resolver.can_view(user, topic):
                user_ids.append(user.user_id)
        if user_ids:
            await self._store.create_notifications(
                topic.id,
                post.post_number,
                user_ids,
                MENTION_NOTIFICATION,
                data={"topic_title": topic.title, "username": author.username},
            )
        return user_ids

    async def update(
        self, principal: Principal, topic_id: int, post_id: int, raw: Optional[str]
    ) -> ChatPost:
        topic = await self._topic(topic_id)
        post = await self._post_in(topic, post_id)
        if not self._resolver.can_edit_post(principal, post):
            raise ForbiddenError("You cannot edit this post")
        body = self._body(raw)

        updated = await self._store.update_post(post, body)
        log.info("post.updated", topic_id=topic.id, post_id=post.id, actor=principal.user_id)
        await self._broadcaster.publish_post_event(updated, principal, "updated")
        return updated

    async def destroy(self, principal: Principal, topic_id: int, post_id: int) -> ChatPost:
        topic = await self._topic(topic_id)
        post = await self._post_in(topic, post_id)
        if not self._resolver.can_delete_post(principal, post):
            raise ForbiddenError("You cannot delete this post")

        deleted = await self._destroy_hook.destroy(topic, post, principal)
        log.info(
            "post.destroyed",
            topic_id=topic.id,
            post_id=post.id,
            actor=principal.user_id,
            user_deleted=deleted.user_deleted,
        )
        return deleted
