"""Chat topic schemas shared between the server and client codegen."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .common import Direction, PermissionKind
from .posts import PostRead


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class TopicParams(BaseModel):
    """Request body for POST /topics and PUT /topics/{topicId}.

    Only the fields actually sent are applied on update.
    """
    title: Optional[str] = None
    permissions: Optional[PermissionKind] = None
    category_id: Optional[int] = None
    allowed_group_ids: Optional[List[int]] = None
    user_ids: Optional[List[int]] = None


class TopicEnvelope(BaseModel):
    """The host's form-style body: {"topic": {...}}."""
    topic: TopicParams


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class TopicSummary(BaseModel):
    id: int
    title: str
    permissions: PermissionKind
    category_id: Optional[int] = None
    highest_post_number: int = 0
    last_posted_at: Optional[datetime] = None
    created_at: datetime


class PostStream(BaseModel):
    posts: List[PostRead] = Field(default_factory=list)
    direction: Direction = Direction.BACKWARD
    from_post_number: Optional[int] = None


class TopicRead(TopicSummary):
    allowed_group_ids: List[int] = Field(default_factory=list)
    allowed_user_ids: List[int] = Field(default_factory=list)
    last_read_post_number: Optional[int] = None
    unread_count: int = 0
    post_stream: PostStream = Field(default_factory=PostStream)


class TopicList(BaseModel):
    topics: List[TopicSummary] = Field(default_factory=list)


class GroupRead(BaseModel):
    id: int
    name: str


class GroupList(BaseModel):
    groups: List[GroupRead] = Field(default_factory=list)
