"""
Plain records exchanged between the chat core and its collaborators.

The content store owns the persisted rows; these records are the shape the
core reads and writes through the store contracts in ``babble.core.store``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from babble_shared.schemas.common import PermissionKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Principal:
    """The caller of an operation. ``user_id`` is None for visitors."""

    user_id: Optional[int] = None
    username: Optional[str] = None
    admin: bool = False

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None


ANONYMOUS = Principal()


@dataclass(frozen=True)
class GroupRef:
    id: int
    name: str


@dataclass
class ChatTopic:
    id: int
    title: str
    permissions: PermissionKind
    user_id: int
    category_id: Optional[int] = None
    allowed_group_ids: frozenset[int] = frozenset()
    allowed_user_ids: frozenset[int] = frozenset()
    highest_post_number: int = 0
    created_at: datetime = field(default_factory=utcnow)
    last_posted_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def last_activity_at(self) -> datetime:
        return self.last_posted_at or self.created_at


@dataclass(frozen=True)
class TopicFields:
    """A complete, already validated topic state to persist."""

    title: str
    permissions: PermissionKind
    user_id: int
    category_id: Optional[int] = None
    allowed_group_ids: frozenset[int] = frozenset()
    allowed_user_ids: frozenset[int] = frozenset()


@dataclass
class ChatPost:
    id: int
    topic_id: int
    post_number: int
    user_id: int
    raw: str
    user_deleted: bool = False
    deleted_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ReadMarker:
    user_id: int
    topic_id: int
    last_read_post_number: int = 0


@dataclass(frozen=True)
class TopicQuery:
    """
    Predicate for ``ContentStore.list_topics_matching``.

    - kinds: a topic's permission kind must be one of these.
    - group_ids: when set, group topics must share at least one allowed group.
    - participant_id: when set, direct-message topics must include this user.
    - participants: when set, direct-message topics must have exactly this set.
    - category_id: when set, only topics bound to this category.
    """

    kinds: frozenset[PermissionKind]
    group_ids: Optional[frozenset[int]] = None
    participant_id: Optional[int] = None
    participants: Optional[frozenset[int]] = None
    category_id: Optional[int] = None

    def matches(self, topic: ChatTopic) -> bool:
        if topic.deleted_at is not None or topic.permissions not in self.kinds:
            return False
        if self.category_id is not None and topic.category_id != self.category_id:
            return False
        if topic.permissions is PermissionKind.GROUP and self.group_ids is not None:
            return bool(topic.allowed_group_ids & self.group_ids)
        if topic.permissions is PermissionKind.DIRECT_MESSAGE:
            if self.participant_id is not None and self.participant_id not in topic.allowed_user_ids:
                return False
            if self.participants is not None and topic.allowed_user_ids != self.participants:
                return False
        return True
