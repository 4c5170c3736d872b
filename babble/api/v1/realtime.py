"""
WebSocket endpoint relaying topic events to connected clients.

Frame types:
- ping -> pong
- subscribe {"topic_ids": [...]} -> subscribed (only topics the caller can view)
- unsubscribe {"topic_ids": [...]} -> subscribed
- typing {"topic_id": n} -> typing signal on the topic's channel
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect

from babble.api.v1.deps import get_broadcaster, get_resolver, get_store
from babble.core.auth import SESSION_COOKIE, get_membership, principal_from_token
from babble.core.broadcaster import Broadcaster
from babble.core.chat import ConnectionInfo, manager
from babble.core.database import get_session_factory
from babble.core.records import ANONYMOUS, Principal
from babble.core.sql_store import SqlContentStore, SqlMembership
from babble.core.store import ContentStore, Membership
from babble.services.permissions import PermissionResolver

router = APIRouter()
logger = logging.getLogger(__name__)


def _error(code: str, message: str) -> str:
    return json.dumps({"type": "error", "code": code, "message": message})


def _topic_ids(frame: dict[str, Any]) -> list[int]:
    ids = frame.get("topic_ids") or []
    if not isinstance(ids, list):
        raise ValueError("topic_ids must be a list")
    return [int(i) for i in ids]


async def _viewable(
    topic_ids: list[int],
    principal: Principal,
    store: ContentStore,
    resolver: PermissionResolver,
) -> list[int]:
    allowed = []
    for topic_id in topic_ids:
        topic = await store.find_topic(topic_id)
        if topic is not None and await resolver.can_view(principal, topic):
            allowed.append(topic_id)
    return allowed


async def topic_visible(principal: Principal, topic_id: int) -> bool:
    """View check for the relay, run on its own session."""
    async with get_session_factory()() as session:
        store = SqlContentStore(session)
        resolver = PermissionResolver(SqlMembership(session))
        return bool(await _viewable([topic_id], principal, store, resolver))


async def handle_frame(
    conn_info: ConnectionInfo,
    frame: dict[str, Any],
    store: ContentStore,
    resolver: PermissionResolver,
    broadcaster: Broadcaster,
) -> Optional[str]:
    """Apply one client frame. Returns the reply text, if any."""
    frame_type = frame.get("type")
    principal = conn_info.principal

    if frame_type == "ping":
        return json.dumps({"type": "pong"})

    if frame_type in ("subscribe", "unsubscribe"):
        try:
            requested = _topic_ids(frame)
        except (TypeError, ValueError):
            return _error("INVALID_TOPIC_IDS", "topic_ids must be a list of integers.")
        if frame_type == "subscribe":
            allowed = await _viewable(requested, principal, store, resolver)
            manager.subscribe(conn_info, allowed)
        else:
            manager.unsubscribe(conn_info, requested)
        return json.dumps(
            {"type": "subscribed", "topic_ids": sorted(conn_info.subscribed_topics)}
        )

    if frame_type == "typing":
        if not principal.authenticated:
            return _error("AUTHENTICATION_REQUIRED", "Sign in to send typing signals.")
        try:
            topic_id = int(frame.get("topic_id"))
        except (TypeError, ValueError):
            return _error("INVALID_TOPIC_ID", "topic_id is required.")
        topic = await store.find_topic(topic_id)
        if topic is None or not await resolver.can_view(principal, topic):
            return _error("ACCESS_DENIED", "You cannot view this chat topic.")
        await broadcaster.publish_typing(topic, principal)
        return None

    return _error("UNKNOWN_FRAME", f"Unsupported frame type: {frame_type!r}.")


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    membership: Membership = Depends(get_membership),
    store: ContentStore = Depends(get_store),
    resolver: PermissionResolver = Depends(get_resolver),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """Authenticated (or anonymous) WebSocket for live topic events."""
    token = token or websocket.cookies.get(SESSION_COOKIE)
    principal = ANONYMOUS
    if token:
        try:
            principal = await principal_from_token(token, membership)
        except HTTPException:
            await websocket.close(code=4001, reason="authentication_failed")
            return

    conn_info = await manager.connect(websocket, principal)
    try:
        while True:
            data = await websocket.receive_text()
            try:
                frame = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_text(
                    _error("INVALID_JSON", "Could not parse message as JSON.")
                )
                continue
            if not isinstance(frame, dict):
                await websocket.send_text(_error("INVALID_FRAME", "Frames must be objects."))
                continue

            reply = await handle_frame(conn_info, frame, store, resolver, broadcaster)
            if reply is not None:
                await websocket.send_text(reply)
    except WebSocketDisconnect:
        logger.debug("WebSocket closed by client: user=%s", principal.user_id)
    finally:
        await manager.disconnect(conn_info)
