"""Post model. ``post_number`` is dense and 1-based per topic."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IntIdMixin, TimestampMixin


class Post(IntIdMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "posts"
    __table_args__ = (
        sa.UniqueConstraint("topic_id", "post_number", name="uq_posts_topic_post_number"),
    )

    topic_id: int = Field(foreign_key="topics.id", nullable=False, index=True)
    post_number: int = Field(nullable=False)
    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    raw: str = Field(nullable=False)
    user_deleted: bool = Field(default=False, nullable=False)
    deleted_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
