# SQLModel definitions, imported here so metadata is populated.
from .base import IntIdMixin, TimestampMixin  # noqa: F401
from .user import User, Group, GroupUser  # noqa: F401
from .category import Category, CategoryGroup  # noqa: F401
from .topic import Topic, TopicAllowedGroup, TopicAllowedUser  # noqa: F401
from .post import Post  # noqa: F401
from .read_state import TopicUser, Notification  # noqa: F401
