"""Per-user read state and notifications."""

from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IntIdMixin, TimestampMixin


class TopicUser(SQLModel, table=True):
    __tablename__ = "topic_users"

    user_id: int = Field(foreign_key="users.id", primary_key=True)
    topic_id: int = Field(foreign_key="topics.id", primary_key=True, index=True)
    last_read_post_number: int = Field(default=0, nullable=False)


class Notification(IntIdMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "notifications"

    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    topic_id: int = Field(foreign_key="topics.id", nullable=False, index=True)
    post_number: int = Field(nullable=False)
    notification_type: str = Field(nullable=False)  # mentioned | direct_message
    read: bool = Field(default=False, nullable=False)
    data: Optional[dict] = Field(default=None, sa_type=sa.JSON)
