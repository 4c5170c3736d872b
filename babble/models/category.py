"""Category models. ``chat_topic_id`` is the category's chat back-reference."""

from typing import Optional

from sqlmodel import Field, SQLModel

from .base import IntIdMixin


class Category(IntIdMixin, SQLModel, table=True):
    __tablename__ = "categories"

    name: str = Field(nullable=False)
    read_restricted: bool = Field(default=False, nullable=False)
    chat_topic_id: Optional[int] = Field(default=None, index=True)


class CategoryGroup(SQLModel, table=True):
    __tablename__ = "category_groups"

    category_id: int = Field(foreign_key="categories.id", primary_key=True)
    group_id: int = Field(foreign_key="groups.id", primary_key=True)
