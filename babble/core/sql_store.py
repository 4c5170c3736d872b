"""
SQLModel-backed content store and membership lookups.

Each mutating call is one transaction: it commits on success, and rolls back
on failure. Uniqueness races (a second live topic for a category, a
duplicate post number) are re-raised as ConflictError.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Optional, Sequence

from sqlalchemy import case, delete, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from babble.core.errors import ConflictError, NotFoundError
from babble.core.records import (
    ChatPost,
    ChatTopic,
    GroupRef,
    Principal,
    ReadMarker,
    TopicFields,
    TopicQuery,
    utcnow,
)
from babble.models.category import Category, CategoryGroup
from babble.models.post import Post
from babble.models.read_state import Notification, TopicUser
from babble.models.topic import CHAT_ARCHETYPE, Topic, TopicAllowedGroup, TopicAllowedUser
from babble.models.user import Group, GroupUser, User
from babble_shared.schemas.common import PermissionKind


def _post_record(post: Post) -> ChatPost:
    return ChatPost(
        id=post.id,
        topic_id=post.topic_id,
        post_number=post.post_number,
        user_id=post.user_id,
        raw=post.raw,
        user_deleted=post.user_deleted,
        deleted_at=post.deleted_at,
        created_at=post.created_at,
        updated_at=post.updated_at,
    )


class SqlContentStore:
    """ContentStore over the host's topic/post/notification tables."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------------
    # Topics
    # ------------------------------------------------------------------

    async def _allowed_ids(self, topic_ids: list[int]) -> tuple[dict, dict]:
        groups: dict[int, set[int]] = defaultdict(set)
        users: dict[int, set[int]] = defaultdict(set)
        if not topic_ids:
            return groups, users

        result = await self.session.execute(
            select(TopicAllowedGroup.topic_id, TopicAllowedGroup.group_id).where(
                TopicAllowedGroup.topic_id.in_(topic_ids)
            )
        )
        for topic_id, group_id in result.all():
            groups[topic_id].add(group_id)

        result = await self.session.execute(
            select(TopicAllowedUser.topic_id, TopicAllowedUser.user_id).where(
                TopicAllowedUser.topic_id.in_(topic_ids)
            )
        )
        for topic_id, user_id in result.all():
            users[topic_id].add(user_id)
        return groups, users

    async def _to_records(self, topics: Sequence[Topic]) -> list[ChatTopic]:
        groups, users = await self._allowed_ids([t.id for t in topics])
        return [
            ChatTopic(
                id=t.id,
                title=t.title,
                permissions=PermissionKind(t.permissions),
                user_id=t.user_id,
                category_id=t.category_id,
                allowed_group_ids=frozenset(groups[t.id]),
                allowed_user_ids=frozenset(users[t.id]),
                highest_post_number=t.highest_post_number,
                created_at=t.created_at,
                last_posted_at=t.last_posted_at,
                deleted_at=t.deleted_at,
            )
            for t in topics
        ]

    async def _get_live_topic(self, topic_id: int) -> Optional[Topic]:
        topic = await self.session.get(Topic, topic_id, populate_existing=True)
        if topic is None or topic.archetype != CHAT_ARCHETYPE or topic.deleted_at is not None:
            return None
        return topic

    async def find_topic(self, topic_id: int) -> Optional[ChatTopic]:
        topic = await self._get_live_topic(topic_id)
        if topic is None:
            return None
        return (await self._to_records([topic]))[0]

    async def list_topics_matching(
        self, query: TopicQuery, limit: Optional[int] = None
    ) -> list[ChatTopic]:
        stmt = select(Topic).where(
            Topic.archetype == CHAT_ARCHETYPE,
            Topic.deleted_at.is_(None),
            Topic.permissions.in_([k.value for k in query.kinds]),
        )
        if query.category_id is not None:
            stmt = stmt.where(Topic.category_id == query.category_id)

        if query.group_ids is not None:
            stmt = stmt.where(
                or_(
                    Topic.permissions != PermissionKind.GROUP.value,
                    Topic.id.in_(
                        select(TopicAllowedGroup.topic_id).where(
                            TopicAllowedGroup.group_id.in_(list(query.group_ids))
                        )
                    ),
                )
            )

        if query.participant_id is not None:
            stmt = stmt.where(
                or_(
                    Topic.permissions != PermissionKind.DIRECT_MESSAGE.value,
                    Topic.id.in_(
                        select(TopicAllowedUser.topic_id).where(
                            TopicAllowedUser.user_id == query.participant_id
                        )
                    ),
                )
            )

        if query.participants is not None:
            # Direct messages whose allowed users are exactly this set
            members = list(query.participants)
            stmt = stmt.where(
                or_(
                    Topic.permissions != PermissionKind.DIRECT_MESSAGE.value,
                    Topic.id.in_(
                        select(TopicAllowedUser.topic_id)
                        .group_by(TopicAllowedUser.topic_id)
                        .having(
                            func.count() == len(members),
                            func.sum(
                                case((TopicAllowedUser.user_id.in_(members), 1), else_=0)
                            )
                            == len(members),
                        )
                    ),
                )
            )

        stmt = stmt.order_by(
            func.coalesce(Topic.last_posted_at, Topic.created_at).desc(),
            Topic.id.desc(),
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        records = await self._to_records(list(result.scalars().all()))
        matched = [r for r in records if query.matches(r)]
        return matched[:limit] if limit is not None else matched

    async def _sync_allowed(self, topic_id: int, fields: TopicFields) -> None:
        groups, users = await self._allowed_ids([topic_id])
        current_groups, current_users = groups[topic_id], users[topic_id]

        removed = current_groups - fields.allowed_group_ids
        if removed:
            await self.session.execute(
                delete(TopicAllowedGroup).where(
                    TopicAllowedGroup.topic_id == topic_id,
                    TopicAllowedGroup.group_id.in_(list(removed)),
                )
            )
        for group_id in fields.allowed_group_ids - current_groups:
            self.session.add(TopicAllowedGroup(topic_id=topic_id, group_id=group_id))

        removed = current_users - fields.allowed_user_ids
        if removed:
            await self.session.execute(
                delete(TopicAllowedUser).where(
                    TopicAllowedUser.topic_id == topic_id,
                    TopicAllowedUser.user_id.in_(list(removed)),
                )
            )
        for user_id in fields.allowed_user_ids - current_users:
            self.session.add(TopicAllowedUser(topic_id=topic_id, user_id=user_id))

    async def _bind_category(self, category_id: int, topic_id: int) -> None:
        await self.session.execute(
            update(Category).where(Category.id == category_id).values(chat_topic_id=topic_id)
        )

    async def _unbind_category(self, category_id: int, topic_id: int) -> None:
        await self.session.execute(
            update(Category)
            .where(Category.id == category_id, Category.chat_topic_id == topic_id)
            .values(chat_topic_id=None)
        )

    @staticmethod
    def _conflict(fields: TopicFields) -> ConflictError:
        if fields.category_id is not None:
            return ConflictError(
                "Category already has a chat channel",
                fields={"category_id": "already has a chat channel"},
            )
        return ConflictError("Topic was changed concurrently")

    async def create_topic(self, fields: TopicFields) -> ChatTopic:
        topic = Topic(
            title=fields.title,
            permissions=fields.permissions.value,
            user_id=fields.user_id,
            category_id=fields.category_id,
        )
        self.session.add(topic)
        try:
            await self.session.flush()
            await self._sync_allowed(topic.id, fields)
            if fields.category_id is not None:
                await self._bind_category(fields.category_id, topic.id)
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise self._conflict(fields) from exc
        return (await self._to_records([topic]))[0]

    async def update_topic(self, topic_id: int, fields: TopicFields) -> ChatTopic:
        topic = await self._get_live_topic(topic_id)
        if topic is None:
            raise NotFoundError("Topic not found")

        previous_category = topic.category_id
        topic.title = fields.title
        topic.permissions = fields.permissions.value
        topic.category_id = fields.category_id
        topic.updated_at = utcnow()
        try:
            await self.session.flush()
            await self._sync_allowed(topic_id, fields)
            if previous_category is not None and previous_category != fields.category_id:
                await self._unbind_category(previous_category, topic_id)
            if fields.category_id is not None:
                await self._bind_category(fields.category_id, topic_id)
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise self._conflict(fields) from exc
        return (await self._to_records([topic]))[0]

    async def delete_topic(self, topic_id: int) -> None:
        topic = await self._get_live_topic(topic_id)
        if topic is None:
            raise NotFoundError("Topic not found")
        topic.deleted_at = utcnow()
        if topic.category_id is not None:
            await self._unbind_category(topic.category_id, topic_id)
        await self.session.commit()

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    async def find_post(self, post_id: int) -> Optional[ChatPost]:
        post = await self.session.get(Post, post_id)
        if post is None or post.deleted_at is not None:
            return None
        return _post_record(post)

    async def list_posts(
        self,
        topic_id: int,
        *,
        lower: Optional[int] = None,
        upper: Optional[int] = None,
        descending: bool = True,
        limit: int = 50,
    ) -> list[ChatPost]:
        stmt = select(Post).where(Post.topic_id == topic_id, Post.deleted_at.is_(None))
        if lower is not None:
            stmt = stmt.where(Post.post_number >= lower)
        if upper is not None:
            stmt = stmt.where(Post.post_number <= upper)
        order = Post.post_number.desc() if descending else Post.post_number.asc()
        result = await self.session.execute(stmt.order_by(order).limit(limit))
        return [_post_record(p) for p in result.scalars().all()]

    async def next_sequence_number(self, topic_id: int) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.max(Post.post_number), 0)).where(Post.topic_id == topic_id)
        )
        return int(result.scalar_one()) + 1

    async def create_post(self, topic: ChatTopic, author_id: int, raw: str) -> ChatPost:
        number = await self.next_sequence_number(topic.id)
        now = utcnow()
        post = Post(
            topic_id=topic.id,
            post_number=number,
            user_id=author_id,
            raw=raw,
            created_at=now,
            updated_at=now,
        )
        self.session.add(post)
        try:
            await self.session.flush()
            await self.session.execute(
                update(Topic)
                .where(Topic.id == topic.id)
                .values(highest_post_number=number, last_posted_at=now)
            )
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise ConflictError("Post number already taken, retry the post") from exc
        return _post_record(post)

    async def update_post(self, post: ChatPost, raw: str) -> ChatPost:
        row = await self.session.get(Post, post.id)
        if row is None or row.deleted_at is not None:
            raise NotFoundError("Post not found")
        row.raw = raw
        row.updated_at = utcnow()
        await self.session.commit()
        return _post_record(row)

    async def delete_post(
        self, post: ChatPost, actor: Principal, *, adjust_user_counts: bool = True
    ) -> bool:
        row = await self.session.get(Post, post.id)
        if row is None or row.deleted_at is not None:
            raise NotFoundError("Post not found")

        # Authors withdraw their own posts; staff deletions trash the row
        user_deleted = actor.user_id == row.user_id and not actor.admin
        if user_deleted:
            row.user_deleted = True
        else:
            row.deleted_at = utcnow()
            if adjust_user_counts:
                await self.session.execute(
                    update(User)
                    .where(User.id == row.user_id, User.post_count > 0)
                    .values(post_count=User.post_count - 1)
                )
        row.updated_at = utcnow()
        await self.session.commit()
        return user_deleted

    # ------------------------------------------------------------------
    # Read state
    # ------------------------------------------------------------------

    async def get_read_marker(self, user_id: int, topic_id: int) -> Optional[ReadMarker]:
        result = await self.session.execute(
            select(TopicUser.last_read_post_number).where(
                TopicUser.user_id == user_id, TopicUser.topic_id == topic_id
            )
        )
        value = result.scalar_one_or_none()
        if value is None:
            return None
        return ReadMarker(user_id=user_id, topic_id=topic_id, last_read_post_number=value)

    async def _stored_marker(self, user_id: int, topic_id: int) -> ReadMarker:
        marker = await self.get_read_marker(user_id, topic_id)
        if marker is None:
            # Insert rejected and no row exists
            raise NotFoundError("Read marker not found")
        return marker

    async def ensure_read_marker(self, user_id: int, topic_id: int) -> ReadMarker:
        marker = await self.get_read_marker(user_id, topic_id)
        if marker is not None:
            return marker
        self.session.add(TopicUser(user_id=user_id, topic_id=topic_id))
        try:
            await self.session.commit()
        except IntegrityError:
            # Another request created it first
            await self.session.rollback()
        return await self._stored_marker(user_id, topic_id)

    async def advance_read_marker(
        self, user_id: int, topic_id: int, post_number: int
    ) -> ReadMarker:
        await self.ensure_read_marker(user_id, topic_id)
        await self.session.execute(
            update(TopicUser)
            .where(
                TopicUser.user_id == user_id,
                TopicUser.topic_id == topic_id,
                TopicUser.last_read_post_number < post_number,
            )
            .values(last_read_post_number=post_number)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return await self._stored_marker(user_id, topic_id)

    async def mark_notifications_read(
        self, user_id: int, topic_id: int, upto_post_number: int
    ) -> int:
        result = await self.session.execute(
            update(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.topic_id == topic_id,
                Notification.read.is_(False),
                Notification.post_number <= upto_post_number,
            )
            .values(read=True)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount or 0

    async def create_notifications(
        self,
        topic_id: int,
        post_number: int,
        user_ids: Sequence[int],
        notification_type: str,
        data: Optional[dict[str, Any]] = None,
    ) -> int:
        for user_id in user_ids:
            self.session.add(
                Notification(
                    user_id=user_id,
                    topic_id=topic_id,
                    post_number=post_number,
                    notification_type=notification_type,
                    data=data,
                )
            )
        await self.session.commit()
        return len(user_ids)


class SqlMembership:
    """Membership lookups over users, groups and categories."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def user_belongs_to_group(self, user_id: int, group_id: int) -> bool:
        result = await self.session.execute(
            select(GroupUser.user_id).where(
                GroupUser.user_id == user_id, GroupUser.group_id == group_id
            )
        )
        return result.first() is not None

    async def group_ids_for(self, user_id: int) -> frozenset[int]:
        result = await self.session.execute(
            select(GroupUser.group_id).where(GroupUser.user_id == user_id)
        )
        return frozenset(row[0] for row in result.all())

    async def user_can_read_category(self, user_id: Optional[int], category_id: int) -> bool:
        category = await self.session.get(Category, category_id)
        if category is None:
            return False
        if not category.read_restricted:
            return True
        if user_id is None:
            return False
        result = await self.session.execute(
            select(CategoryGroup.group_id)
            .join(GroupUser, GroupUser.group_id == CategoryGroup.group_id)
            .where(CategoryGroup.category_id == category_id, GroupUser.user_id == user_id)
        )
        return result.first() is not None

    async def category_name(self, category_id: int) -> Optional[str]:
        category = await self.session.get(Category, category_id)
        return category.name if category else None

    async def find_user(self, user_id: int) -> Optional[Principal]:
        user = await self.session.get(User, user_id)
        if user is None:
            return None
        return Principal(user_id=user.id, username=user.username, admin=user.admin)

    async def find_user_by_username(self, username: str) -> Optional[Principal]:
        result = await self.session.execute(
            select(User).where(func.lower(User.username) == username.lower())
        )
        user = result.scalar_one_or_none()
        if user is None:
            return None
        return Principal(user_id=user.id, username=user.username, admin=user.admin)

    async def find_groups(self, group_ids: Sequence[int]) -> list[GroupRef]:
        if not group_ids:
            return []
        result = await self.session.execute(
            select(Group).where(Group.id.in_(list(group_ids))).order_by(Group.name)
        )
        return [GroupRef(id=g.id, name=g.name) for g in result.scalars().all()]
