"""Payload shapes published on a topic's pub/sub channel."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel

from .common import EventKind
from .posts import PostRead
from .topics import TopicSummary


class TopicEvent(BaseModel):
    type: Literal[EventKind.TOPIC] = EventKind.TOPIC
    event: str  # created | updated | destroyed
    topic_id: int
    topic: TopicSummary


class PostEvent(BaseModel):
    type: Literal[EventKind.POST] = EventKind.POST
    event: str  # created | updated | deleted
    topic_id: int
    is_delete: bool = False
    actor_id: Optional[int] = None
    post: PostRead


class SignalEvent(BaseModel):
    """Presence and typing signals. Never persisted."""
    type: Literal[EventKind.PRESENCE, EventKind.TYPING]
    topic_id: int
    user_id: int
    username: Optional[str] = None
