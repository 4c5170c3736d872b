"""
Read-state tracking: per-user read markers and unread counts.
"""

from __future__ import annotations

import structlog

from babble.core.errors import ForbiddenError, ValidationFailedError
from babble.core.records import ChatTopic, Principal, ReadMarker
from babble.core.store import ContentStore
from babble.services.permissions import PermissionResolver
from babble.services.shapes import unread_count

log = structlog.get_logger()


class ReadStateTracker:
    def __init__(self, store: ContentStore, resolver: PermissionResolver):
        self._store = store
        self._resolver = resolver

    async def mark_read(self, principal: Principal, topic: ChatTopic, upto: int) -> ReadMarker:
        """Advance the principal's marker to ``upto`` and clear notifications up to it.

        The marker never moves backwards. Notifications are swept on every call,
        so a retry after a partial failure completes the cascade.
        """
        if not principal.authenticated or not await self._resolver.can_view(principal, topic):
            raise ForbiddenError("You cannot read this chat topic")
        if upto < 0:
            raise ValidationFailedError(
                "Post number must not be negative", fields={"post_number": "must be >= 0"}
            )

        marker = await self._store.advance_read_marker(principal.user_id, topic.id, upto)
        cleared = await self._store.mark_notifications_read(principal.user_id, topic.id, upto)
        log.info(
            "read.marked",
            topic_id=topic.id,
            user_id=principal.user_id,
            last_read=marker.last_read_post_number,
            notifications=cleared,
        )
        return marker

    async def touch(self, principal: Principal, topic: ChatTopic) -> ReadMarker | None:
        """Find or create the principal's marker when a topic is shown."""
        if not principal.authenticated:
            return None
        return await self._store.ensure_read_marker(principal.user_id, topic.id)

    @staticmethod
    def unread_count(topic: ChatTopic, marker: ReadMarker | None) -> int:
        return unread_count(topic, marker)
