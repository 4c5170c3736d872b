"""Response shapes built from core records, one function per shape."""

from __future__ import annotations

from typing import Optional, Sequence

from babble.core.records import ChatPost, ChatTopic, ReadMarker
from babble_shared.schemas.common import Direction
from babble_shared.schemas.posts import PostRead, ReadMarkerRead
from babble_shared.schemas.topics import PostStream, TopicRead, TopicSummary


def unread_count(topic: ChatTopic, marker: Optional[ReadMarker]) -> int:
    read = marker.last_read_post_number if marker else 0
    return max(topic.highest_post_number - read, 0)


def topic_summary(topic: ChatTopic) -> TopicSummary:
    return TopicSummary(
        id=topic.id,
        title=topic.title,
        permissions=topic.permissions,
        category_id=topic.category_id,
        highest_post_number=topic.highest_post_number,
        last_posted_at=topic.last_posted_at,
        created_at=topic.created_at,
    )


def post_read(post: ChatPost) -> PostRead:
    return PostRead(
        id=post.id,
        topic_id=post.topic_id,
        post_number=post.post_number,
        user_id=post.user_id,
        raw=post.raw,
        user_deleted=post.user_deleted,
        deleted=post.deleted_at is not None,
        created_at=post.created_at,
        updated_at=post.updated_at,
    )


def topic_read(
    topic: ChatTopic,
    *,
    posts: Sequence[ChatPost] = (),
    marker: Optional[ReadMarker] = None,
    direction: Direction = Direction.BACKWARD,
    from_post_number: Optional[int] = None,
) -> TopicRead:
    return TopicRead(
        **topic_summary(topic).model_dump(),
        allowed_group_ids=sorted(topic.allowed_group_ids),
        allowed_user_ids=sorted(topic.allowed_user_ids),
        last_read_post_number=marker.last_read_post_number if marker else None,
        unread_count=unread_count(topic, marker),
        post_stream=PostStream(
            posts=[post_read(p) for p in posts],
            direction=direction,
            from_post_number=from_post_number,
        ),
    )


def read_marker_read(topic: ChatTopic, marker: ReadMarker) -> ReadMarkerRead:
    return ReadMarkerRead(
        topic_id=marker.topic_id,
        user_id=marker.user_id,
        last_read_post_number=marker.last_read_post_number,
        unread_count=unread_count(topic, marker),
    )
