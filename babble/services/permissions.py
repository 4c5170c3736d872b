"""
Permission resolver for chat topics and posts.

Every check returns a bool and never raises; callers turn ``False`` into a
ForbiddenError. Rules:
- administrators pass every check
- visitors can only view public topics
- group topics: member of at least one allowed group
- category topics: read access to the category
- direct messages: listed participant
- public topics: anyone may view; posting needs an account and, when the
  topic lists allowed groups, membership in one of them
"""

from __future__ import annotations

from babble.core.records import ChatPost, ChatTopic, Principal
from babble.core.store import Membership
from babble_shared.schemas.common import PermissionKind


class PermissionResolver:
    def __init__(self, membership: Membership):
        self._membership = membership

    def can_administer(self, principal: Principal) -> bool:
        return principal.authenticated and principal.admin

    async def _in_any_group(self, principal: Principal, group_ids: frozenset[int]) -> bool:
        for group_id in sorted(group_ids):
            if await self._membership.user_belongs_to_group(principal.user_id, group_id):
                return True
        return False

    async def can_view(self, principal: Principal, topic: ChatTopic) -> bool:
        if topic.permissions is PermissionKind.PUBLIC:
            return True
        if not principal.authenticated:
            return False
        if self.can_administer(principal):
            return True

        if topic.permissions is PermissionKind.GROUP:
            return await self._in_any_group(principal, topic.allowed_group_ids)
        if topic.permissions is PermissionKind.CATEGORY:
            if topic.category_id is None:
                return False
            return await self._membership.user_can_read_category(
                principal.user_id, topic.category_id
            )
        if topic.permissions is PermissionKind.DIRECT_MESSAGE:
            return principal.user_id in topic.allowed_user_ids
        return False

    async def can_post(self, principal: Principal, topic: ChatTopic) -> bool:
        if not principal.authenticated:
            return False
        if self.can_administer(principal):
            return True
        if topic.permissions is PermissionKind.PUBLIC:
            if not topic.allowed_group_ids:
                return True
            return await self._in_any_group(principal, topic.allowed_group_ids)
        return await self.can_view(principal, topic)

    def can_edit(self, principal: Principal, topic: ChatTopic) -> bool:
        """Topic settings (title, permissions, groups) are admin only."""
        return self.can_administer(principal)

    def can_edit_post(self, principal: Principal, post: ChatPost) -> bool:
        if not principal.authenticated:
            return False
        return self.can_administer(principal) or post.user_id == principal.user_id

    def can_delete_post(self, principal: Principal, post: ChatPost) -> bool:
        return self.can_edit_post(principal, post)
