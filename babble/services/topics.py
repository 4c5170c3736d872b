"""
Topic lifecycle: create, update and destroy chat topics.

All validation happens before the first store write. Store uniqueness races
(two category topics at once) come back from the store as ConflictError.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Optional

import structlog

from babble.core.broadcaster import Broadcaster
from babble.core.config import ChatConfig
from babble.core.errors import ConflictError, ForbiddenError, ValidationFailedError
from babble.core.records import ChatTopic, Principal, TopicFields, utcnow
from babble.core.store import ContentStore, Membership
from babble.services.permissions import PermissionResolver
from babble.services.topic_index import TopicIndex
from babble_shared.schemas.common import PermissionKind
from babble_shared.schemas.topics import TopicParams

log = structlog.get_logger()


def resolve_kind(params: TopicParams, existing: Optional[ChatTopic]) -> PermissionKind:
    """Explicit kind, else the existing topic's kind, else inferred from user ids."""
    if params.permissions is not None:
        return params.permissions
    if existing is not None:
        return existing.permissions
    if params.user_ids is not None:
        return PermissionKind.DIRECT_MESSAGE
    return PermissionKind.GROUP


class TopicLifecycle:
    def __init__(
        self,
        store: ContentStore,
        membership: Membership,
        resolver: PermissionResolver,
        index: TopicIndex,
        broadcaster: Broadcaster,
        config: ChatConfig,
    ):
        self._store = store
        self._membership = membership
        self._resolver = resolver
        self._index = index
        self._broadcaster = broadcaster
        self._config = config

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    async def save_topic(
        self,
        principal: Principal,
        params: TopicParams,
        existing: Optional[ChatTopic] = None,
    ) -> ChatTopic:
        """Create a topic, or apply ``params`` to ``existing``.

        Direct-message creation returns the existing conversation between
        the same two users when there is one.
        """
        kind = resolve_kind(params, existing)
        self._authorize(principal, kind, params, existing)
        title = self._validated_title(params)

        if kind is PermissionKind.DIRECT_MESSAGE:
            participants = await self._validated_participants(params, existing)
            if existing is None:
                found = await self._index.find_direct_message(participants)
                if found is not None:
                    log.info("topic.dm_reused", topic_id=found.id, user_ids=sorted(participants))
                    return found
                title = title or await self._direct_message_title(participants)
            fields = TopicFields(
                title=title or existing.title,
                permissions=kind,
                user_id=existing.user_id if existing else self._config.system_user_id,
                allowed_user_ids=participants,
            )
        elif kind is PermissionKind.CATEGORY:
            fields = await self._category_fields(principal, params, existing, title)
        else:
            fields = self._channel_fields(principal, kind, params, existing, title)

        if existing is None:
            topic = await self._store.create_topic(fields)
            event = "created"
        else:
            topic = await self._store.update_topic(existing.id, fields)
            event = "updated"

        log.info(
            "topic.saved",
            topic_id=topic.id,
            action=event,
            permissions=topic.permissions.value,
            actor=principal.user_id,
        )
        await self._broadcaster.publish_topic_event(topic, event)
        return topic

    def _authorize(
        self,
        principal: Principal,
        kind: PermissionKind,
        params: TopicParams,
        existing: Optional[ChatTopic],
    ) -> None:
        if self._resolver.can_administer(principal):
            return
        if (
            kind is PermissionKind.DIRECT_MESSAGE
            and existing is None
            and principal.authenticated
            and principal.user_id in (params.user_ids or [])
        ):
            return
        raise ForbiddenError("You are not allowed to manage this chat topic")

    def _validated_title(self, params: TopicParams) -> Optional[str]:
        if params.title is None:
            return None
        title = params.title.strip()
        if len(title) < self._config.min_title_length:
            raise ValidationFailedError(
                "Title is too short",
                fields={"title": f"must be at least {self._config.min_title_length} characters"},
            )
        return title

    async def _validated_participants(
        self, params: TopicParams, existing: Optional[ChatTopic]
    ) -> frozenset[int]:
        if params.user_ids is None and existing is not None:
            return existing.allowed_user_ids

        participants = frozenset(params.user_ids or [])
        if len(participants) != 2 or len(params.user_ids or []) != 2:
            raise ValidationFailedError(
                "A direct message needs exactly two distinct users",
                fields={"user_ids": "must list two distinct users"},
            )
        for user_id in participants:
            if await self._membership.find_user(user_id) is None:
                raise ValidationFailedError(
                    f"User {user_id} does not exist", fields={"user_ids": "unknown user"}
                )
        return participants

    async def _direct_message_title(self, participants: frozenset[int]) -> str:
        names = []
        for user_id in sorted(participants):
            user = await self._membership.find_user(user_id)
            names.append(user.username if user and user.username else str(user_id))
        return f"Direct message between {names[0]} and {names[1]}"

    async def _category_fields(
        self,
        principal: Principal,
        params: TopicParams,
        existing: Optional[ChatTopic],
        title: Optional[str],
    ) -> TopicFields:
        if "category_id" in params.model_fields_set:
            category_id = params.category_id
        else:
            category_id = existing.category_id if existing else None
        if category_id is None:
            raise ValidationFailedError(
                "A category chat channel needs a category",
                fields={"category_id": "is required"},
            )

        category_name = await self._membership.category_name(category_id)
        if category_name is None:
            raise ValidationFailedError(
                f"Category {category_id} does not exist",
                fields={"category_id": "unknown category"},
            )

        bound = await self._index.topic_for_category(category_id)
        if bound is not None and (existing is None or bound.id != existing.id):
            raise ConflictError(
                "Category already has a chat channel",
                fields={"category_id": "already has a chat channel"},
            )

        return TopicFields(
            title=title or (existing.title if existing else category_name),
            permissions=PermissionKind.CATEGORY,
            user_id=existing.user_id if existing else principal.user_id,
            category_id=category_id,
        )

    def _channel_fields(
        self,
        principal: Principal,
        kind: PermissionKind,
        params: TopicParams,
        existing: Optional[ChatTopic],
        title: Optional[str],
    ) -> TopicFields:
        if params.category_id is not None:
            raise ValidationFailedError(
                f"A {kind.value} chat channel cannot be bound to a category",
                fields={"category_id": "only allowed for category channels"},
            )
        if title is None and existing is None:
            raise ValidationFailedError("Title is required", fields={"title": "is required"})

        if params.allowed_group_ids is not None:
            group_ids = frozenset(params.allowed_group_ids)
        elif existing is not None and existing.permissions is not PermissionKind.CATEGORY:
            group_ids = existing.allowed_group_ids
        else:
            group_ids = frozenset()
        if kind is PermissionKind.GROUP and not group_ids:
            group_ids = frozenset({self._config.default_group_id})

        return TopicFields(
            title=title or existing.title,
            permissions=kind,
            user_id=existing.user_id if existing else principal.user_id,
            allowed_group_ids=group_ids,
        )

    # ------------------------------------------------------------------
    # Destroy
    # ------------------------------------------------------------------

    async def destroy(self, topic: ChatTopic, actor: Principal) -> ChatTopic:
        if not self._resolver.can_administer(actor):
            raise ForbiddenError("You are not allowed to delete this chat topic")

        await self._store.delete_topic(topic.id)
        destroyed = replace(topic, deleted_at=utcnow())
        log.info("topic.destroyed", topic_id=topic.id, actor=actor.user_id)
        await self._broadcaster.publish_topic_event(destroyed, "destroyed")
        return destroyed
