"""
Topic access index: which chat topics a principal can see right now.

Candidate topics are narrowed in the store with a TopicQuery, then every
candidate is re-checked with the resolver. Nothing is cached; membership is
read at query time.
"""

from __future__ import annotations

from typing import Iterable, Optional

from babble.core.records import ChatTopic, Principal, TopicQuery
from babble.core.store import ContentStore, Membership
from babble.services.permissions import PermissionResolver
from babble_shared.schemas.common import CHANNEL_KINDS, PermissionKind


class TopicIndex:
    def __init__(
        self,
        store: ContentStore,
        membership: Membership,
        resolver: PermissionResolver,
    ):
        self._store = store
        self._membership = membership
        self._resolver = resolver

    async def _candidate_query(self, principal: Principal, pm: bool) -> Optional[TopicQuery]:
        if not principal.authenticated:
            if pm:
                return None
            return TopicQuery(kinds=frozenset({PermissionKind.PUBLIC}))

        if pm:
            return TopicQuery(
                kinds=frozenset({PermissionKind.DIRECT_MESSAGE}),
                participant_id=principal.user_id,
            )

        if self._resolver.can_administer(principal):
            return TopicQuery(kinds=CHANNEL_KINDS)

        return TopicQuery(
            kinds=CHANNEL_KINDS,
            group_ids=await self._membership.group_ids_for(principal.user_id),
        )

    async def available_topics(self, principal: Principal, pm: bool = False) -> list[ChatTopic]:
        """Topics visible to ``principal``, most recently active first."""
        query = await self._candidate_query(principal, pm)
        if query is None:
            return []
        candidates = await self._store.list_topics_matching(query)
        return [t for t in candidates if await self._resolver.can_view(principal, t)]

    async def find_direct_message(self, user_ids: Iterable[int]) -> Optional[ChatTopic]:
        """The direct-message topic with exactly these participants, if any."""
        participants = frozenset(user_ids)
        if not participants:
            return None
        matches = await self._store.list_topics_matching(
            TopicQuery(
                kinds=frozenset({PermissionKind.DIRECT_MESSAGE}),
                participant_id=min(participants),
                participants=participants,
            ),
            limit=1,
        )
        return matches[0] if matches else None

    async def topic_for_category(self, category_id: int) -> Optional[ChatTopic]:
        """The live chat topic bound to a category, if any."""
        matches = await self._store.list_topics_matching(
            TopicQuery(kinds=frozenset(PermissionKind), category_id=category_id),
            limit=1,
        )
        return matches[0] if matches else None
