"""Paged post window for a topic's message stream."""

from __future__ import annotations

from typing import Optional

from babble.core.config import ChatConfig
from babble.core.errors import ValidationFailedError
from babble.core.records import ChatPost, ChatTopic
from babble.core.store import ContentStore
from babble_shared.schemas.common import Direction


async def post_window(
    store: ContentStore,
    topic: ChatTopic,
    *,
    from_: Optional[int] = None,
    direction: Direction = Direction.BACKWARD,
    limit: Optional[int] = None,
    config: ChatConfig = ChatConfig(),
) -> list[ChatPost]:
    """
    Backward: posts numbered <= ``from_`` (default: everything), newest first.
    Forward: posts numbered >= ``from_`` (default: the start), oldest first.
    """
    if limit is None:
        limit = config.page_size
    if limit < 1:
        raise ValidationFailedError("Limit must be positive", fields={"limit": "must be >= 1"})
    limit = min(limit, config.max_page_size)

    if direction is Direction.FORWARD:
        lower = 0 if from_ is None else from_
        return await store.list_posts(topic.id, lower=lower, descending=False, limit=limit)

    upper = topic.highest_post_number + 1 if from_ is None else from_
    return await store.list_posts(topic.id, upper=upper, descending=True, limit=limit)
