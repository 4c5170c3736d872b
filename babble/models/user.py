"""User and group models (host identity tables)."""

from sqlmodel import Field, SQLModel

from .base import IntIdMixin, TimestampMixin


class User(IntIdMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "users"

    username: str = Field(nullable=False, unique=True, index=True)
    admin: bool = Field(default=False, nullable=False)
    post_count: int = Field(default=0, nullable=False)


class Group(IntIdMixin, SQLModel, table=True):
    __tablename__ = "groups"

    name: str = Field(nullable=False, unique=True)


class GroupUser(SQLModel, table=True):
    __tablename__ = "group_users"

    group_id: int = Field(foreign_key="groups.id", primary_key=True)
    user_id: int = Field(foreign_key="users.id", primary_key=True, index=True)
