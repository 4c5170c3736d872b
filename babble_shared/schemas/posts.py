"""Chat post schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class PostCreate(BaseModel):
    raw: Optional[str] = None


class PostUpdate(BaseModel):
    raw: Optional[str] = None


class PostRead(BaseModel):
    id: int
    topic_id: int
    post_number: int
    user_id: int
    raw: str
    user_deleted: bool = False
    deleted: bool = False
    created_at: datetime
    updated_at: datetime


class PostDeleted(BaseModel):
    id: int
    topic_id: int
    user_deleted: bool


class ReadMarkerRead(BaseModel):
    topic_id: int
    user_id: int
    last_read_post_number: int
    unread_count: int = 0
