"""
WebSocket connection manager for chat topic fan-out.

- Connections subscribe to topic ids after a permission check
- One Redis pattern subscription (``<prefix>*``) per process, running while
  at least one connection is open
- Messages arriving on ``<prefix><topic_id>`` are relayed to the local
  connections subscribed to that topic
- Topic "updated" events re-check every subscriber before the relay;
  "destroyed" events are relayed, then the topic is dropped everywhere
- Dead connections are dropped during a relay
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Iterable

from fastapi import WebSocket

from babble.core.broadcaster import DEFAULT_CHANNEL_PREFIX
from babble.core.records import Principal
from babble.core.redis import get_redis
from babble_shared.schemas.common import EventKind

logger = logging.getLogger(__name__)

AccessCheck = Callable[[Principal, int], Awaitable[bool]]


class ConnectionInfo:
    """Tracks a single WebSocket connection's metadata."""

    __slots__ = ("websocket", "principal", "subscribed_topics")

    def __init__(self, websocket: WebSocket, principal: Principal):
        self.websocket = websocket
        self.principal = principal
        self.subscribed_topics: set[int] = set()


class ConnectionManager:
    """
    Local connections are tracked in-memory; Redis pub/sub carries events
    between processes.
    """

    def __init__(
        self,
        channel_prefix: str = DEFAULT_CHANNEL_PREFIX,
        access_check: AccessCheck | None = None,
    ) -> None:
        self.channel_prefix = channel_prefix
        self.access_check = access_check
        self._connections: list[ConnectionInfo] = []
        self._redis_task: asyncio.Task | None = None

    @property
    def connections(self) -> list[ConnectionInfo]:
        return self._connections

    async def connect(self, websocket: WebSocket, principal: Principal) -> ConnectionInfo:
        """Accept a WebSocket connection and register it."""
        await websocket.accept()
        info = ConnectionInfo(websocket, principal)

        if self._redis_task is None or self._redis_task.done():
            self._redis_task = asyncio.create_task(self._listen_redis())
        self._connections.append(info)

        logger.info(
            "WebSocket connected: user=%s total=%d", principal.user_id, len(self._connections)
        )
        return info

    async def disconnect(self, info: ConnectionInfo) -> None:
        """Remove a connection; stop the Redis listener with the last one."""
        try:
            self._connections.remove(info)
        except ValueError:
            return

        if not self._connections and self._redis_task is not None:
            self._redis_task.cancel()
            self._redis_task = None

        logger.info("WebSocket disconnected: user=%s", info.principal.user_id)

    def subscribe(self, info: ConnectionInfo, topic_ids: Iterable[int]) -> set[int]:
        info.subscribed_topics.update(topic_ids)
        return info.subscribed_topics

    def unsubscribe(self, info: ConnectionInfo, topic_ids: Iterable[int]) -> set[int]:
        info.subscribed_topics.difference_update(topic_ids)
        return info.subscribed_topics

    def topic_id_for(self, channel: str) -> int | None:
        """Topic id encoded in a channel key, or None for foreign channels."""
        if not channel.startswith(self.channel_prefix):
            return None
        try:
            return int(channel[len(self.channel_prefix):])
        except ValueError:
            return None

    async def broadcast_to_topic(
        self,
        topic_id: int,
        message: dict[str, Any] | str,
        exclude_user: int | None = None,
    ) -> int:
        """Send to every local connection subscribed to ``topic_id``. Returns sends."""
        msg_text = json.dumps(message) if isinstance(message, dict) else message

        sent = 0
        dead_connections = []
        for conn_info in list(self._connections):
            if topic_id not in conn_info.subscribed_topics:
                continue
            if exclude_user is not None and conn_info.principal.user_id == exclude_user:
                continue
            try:
                await conn_info.websocket.send_text(msg_text)
                sent += 1
            except Exception:
                dead_connections.append(conn_info)

        for dead in dead_connections:
            await self.disconnect(dead)
        return sent

    async def revalidate(self, topic_id: int) -> int:
        """Drop ``topic_id`` from connections that can no longer view it. Returns drops."""
        if self.access_check is None:
            return 0
        dropped = 0
        for conn_info in list(self._connections):
            if topic_id not in conn_info.subscribed_topics:
                continue
            try:
                allowed = await self.access_check(conn_info.principal, topic_id)
            except Exception:
                logger.warning(
                    "Access re-check failed: user=%s topic=%s",
                    conn_info.principal.user_id,
                    topic_id,
                    exc_info=True,
                )
                allowed = False
            if not allowed:
                conn_info.subscribed_topics.discard(topic_id)
                dropped += 1
        if dropped:
            logger.info("Dropped %d subscription(s) to topic %s", dropped, topic_id)
        return dropped

    def drop_topic(self, topic_id: int) -> None:
        for conn_info in self._connections:
            conn_info.subscribed_topics.discard(topic_id)

    async def handle_pubsub_message(self, message: dict[str, Any]) -> None:
        if message.get("type") != "pmessage":
            return
        topic_id = self.topic_id_for(message["channel"])
        if topic_id is None:
            return

        data = message["data"]
        event = _topic_event(data)
        if event == "updated":
            # Allowed groups or users may have changed
            await self.revalidate(topic_id)
        await self.broadcast_to_topic(topic_id, data)
        if event == "destroyed":
            self.drop_topic(topic_id)

    # --- Redis Pub/Sub Listener ---

    async def _listen_redis(self) -> None:
        """Relay every topic channel to local subscribers."""
        pattern = f"{self.channel_prefix}*"
        pubsub = None
        try:
            redis = await get_redis()
            pubsub = redis.pubsub()
            await pubsub.psubscribe(pattern)
            async for message in pubsub.listen():
                await self.handle_pubsub_message(message)
        except asyncio.CancelledError:
            logger.info("Redis WS listener cancelled")
        except Exception:
            logger.warning("Redis WS listener failed", exc_info=True)
        finally:
            if pubsub is not None:
                try:
                    await pubsub.punsubscribe(pattern)
                    await pubsub.close()
                except Exception:
                    logger.debug("Redis WS listener cleanup failed", exc_info=True)


def _topic_event(data: Any) -> str | None:
    """The ``event`` of a topic payload, or None for any other payload."""
    try:
        payload = json.loads(data)
    except (TypeError, ValueError):
        return None
    if not isinstance(payload, dict) or payload.get("type") != EventKind.TOPIC.value:
        return None
    return payload.get("event")


# Singleton
manager = ConnectionManager()
