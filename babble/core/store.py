"""
Collaborator contracts consumed by the chat core.

- ContentStore: topics, posts, read markers and notifications (host schema)
- Membership: users, groups and category read access
- Transport: publish/subscribe channel keyed by topic

``babble.core.sql_store`` and ``babble.core.redis`` provide the host bindings.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence

from babble.core.records import (
    ChatPost,
    ChatTopic,
    GroupRef,
    Principal,
    ReadMarker,
    TopicFields,
    TopicQuery,
)


class ContentStore(Protocol):
    # --- Topics ---

    async def find_topic(self, topic_id: int) -> Optional[ChatTopic]:
        """Return the live chat topic with this id, or None."""

    async def list_topics_matching(
        self, query: TopicQuery, limit: Optional[int] = None
    ) -> list[ChatTopic]:
        """Live chat topics matching ``query``, most recent activity first."""

    async def create_topic(self, fields: TopicFields) -> ChatTopic:
        """Insert a topic and bind its category in one transaction.

        Raises ConflictError when the category already has a live topic.
        """

    async def update_topic(self, topic_id: int, fields: TopicFields) -> ChatTopic:
        """Replace a topic's state, moving the category binding along with it."""

    async def delete_topic(self, topic_id: int) -> None:
        """Logically remove a topic and clear its category's back-reference."""

    # --- Posts ---

    async def find_post(self, post_id: int) -> Optional[ChatPost]:
        ...

    async def list_posts(
        self,
        topic_id: int,
        *,
        lower: Optional[int] = None,
        upper: Optional[int] = None,
        descending: bool = True,
        limit: int = 50,
    ) -> list[ChatPost]:
        """Posts with lower <= post_number <= upper, ordered by post number."""

    async def next_sequence_number(self, topic_id: int) -> int:
        ...

    async def create_post(self, topic: ChatTopic, author_id: int, raw: str) -> ChatPost:
        """Append a post with the next sequence number. Leaves user post counts alone."""

    async def update_post(self, post: ChatPost, raw: str) -> ChatPost:
        ...

    async def delete_post(
        self, post: ChatPost, actor: Principal, *, adjust_user_counts: bool = True
    ) -> bool:
        """Generic post deletion. Returns True when the row is now ``user_deleted``."""

    # --- Read state ---

    async def get_read_marker(self, user_id: int, topic_id: int) -> Optional[ReadMarker]:
        ...

    async def ensure_read_marker(self, user_id: int, topic_id: int) -> ReadMarker:
        ...

    async def advance_read_marker(
        self, user_id: int, topic_id: int, post_number: int
    ) -> ReadMarker:
        """Compare-and-set: only ever raises the stored value."""

    async def mark_notifications_read(
        self, user_id: int, topic_id: int, upto_post_number: int
    ) -> int:
        """Flip unread notifications up to a post number in one batch. Returns count."""

    async def create_notifications(
        self,
        topic_id: int,
        post_number: int,
        user_ids: Sequence[int],
        notification_type: str,
        data: Optional[dict[str, Any]] = None,
    ) -> int:
        ...


class Membership(Protocol):
    async def user_belongs_to_group(self, user_id: int, group_id: int) -> bool:
        ...

    async def group_ids_for(self, user_id: int) -> frozenset[int]:
        ...

    async def user_can_read_category(self, user_id: Optional[int], category_id: int) -> bool:
        ...

    async def category_name(self, category_id: int) -> Optional[str]:
        ...

    async def find_user(self, user_id: int) -> Optional[Principal]:
        ...

    async def find_user_by_username(self, username: str) -> Optional[Principal]:
        ...

    async def find_groups(self, group_ids: Sequence[int]) -> list[GroupRef]:
        ...


class Transport(Protocol):
    async def publish(self, channel_key: str, payload: dict[str, Any]) -> None:
        ...
