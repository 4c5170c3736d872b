from enum import Enum
from typing import Optional

from pydantic import BaseModel


class PermissionKind(str, Enum):
    GROUP = "group"
    CATEGORY = "category"
    DIRECT_MESSAGE = "direct-message"
    PUBLIC = "public"


class Direction(str, Enum):
    FORWARD = "forward"
    BACKWARD = "backward"


class EventKind(str, Enum):
    TOPIC = "topic"
    POST = "post"
    PRESENCE = "presence"
    TYPING = "typing"


# Every topic kind except direct messages, in listing order
CHANNEL_KINDS: frozenset["PermissionKind"] = frozenset(
    {PermissionKind.GROUP, PermissionKind.CATEGORY, PermissionKind.PUBLIC}
)


class ErrorBody(BaseModel):
    code: str
    message: str
    status: int
    fields: Optional[dict[str, str]] = None


class ErrorResponse(BaseModel):
    error: ErrorBody
