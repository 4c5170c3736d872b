"""Topic model plus its allowed group / allowed user join tables."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IntIdMixin, TimestampMixin

CHAT_ARCHETYPE = "chat"


class Topic(IntIdMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "topics"
    __table_args__ = (
        # At most one live chat topic per category
        sa.Index(
            "uq_topics_live_category",
            "category_id",
            unique=True,
            sqlite_where=sa.text("deleted_at IS NULL AND category_id IS NOT NULL"),
            postgresql_where=sa.text("deleted_at IS NULL AND category_id IS NOT NULL"),
        ),
    )

    title: str = Field(nullable=False)
    archetype: str = Field(default=CHAT_ARCHETYPE, nullable=False, index=True)
    permissions: str = Field(nullable=False)  # group | category | direct-message | public
    user_id: int = Field(nullable=False)  # author; the system user for chat topics
    category_id: Optional[int] = Field(default=None, foreign_key="categories.id")
    highest_post_number: int = Field(default=0, nullable=False)
    last_posted_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    deleted_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))


class TopicAllowedGroup(SQLModel, table=True):
    __tablename__ = "topic_allowed_groups"

    topic_id: int = Field(foreign_key="topics.id", primary_key=True)
    group_id: int = Field(foreign_key="groups.id", primary_key=True, index=True)


class TopicAllowedUser(SQLModel, table=True):
    __tablename__ = "topic_allowed_users"

    topic_id: int = Field(foreign_key="topics.id", primary_key=True)
    user_id: int = Field(foreign_key="users.id", primary_key=True, index=True)
