# coderoom/services/redis_pub_sub.py

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Optional

import redis.asyncio as redis

if TYPE_CHECKING:
    from coderoom.services.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "room:"


class AsyncRedisPubSubService:
    """
    Room broadcast bus shared by several broker instances.

    Every broadcast is published to the room's channel ("room:<room_id>")
    as an envelope:

        {"room_id": "abc", "exclude": "<connection id>", "message": {...}}

    Each instance listens on "room:*" and hands the message to its own
    ConnectionManager, which delivers it to the local subscribers of that
    room. Redis keeps per-channel publish order, so per-room FIFO survives
    the hop.
    """

    def __init__(self, url: str, connections: "ConnectionManager", client=None):
        self.url = url
        self.connections = connections
        self.client = client
        self.pubsub = None

    async def connect(self):
        """Establish async connection to Redis."""
        if self.client is None:
            self.client = redis.from_url(self.url, decode_responses=True)
        await self.client.ping()
        logger.info("✓ Connected to Redis bus")

    async def publish(self, channel: str, message: dict):
        """Publish message to channel."""
        await self.client.publish(channel, json.dumps(message))

    async def broadcast_to_room(self, room_id: str, envelope: dict):
        """
        Publish a room broadcast.

        Args:
            room_id: Target room
            envelope: {"message": frame, "exclude": connection id or None}
        """
        await self.publish(f"{CHANNEL_PREFIX}{room_id}", {"room_id": room_id, **envelope})
        logger.debug("📨 Published to room %s via Redis", room_id)

    def handle(self, raw: str) -> int:
        """Deliver one envelope received from Redis to local subscribers."""
        data = json.loads(raw)
        room_id: Optional[str] = data.get("room_id")
        if not room_id:
            logger.warning("Redis message without room_id - ignoring")
            return 0
        return self.connections.deliver_local(room_id, data.get("message") or {}, data.get("exclude"))

    async def listen(self, pattern: str = f"{CHANNEL_PREFIX}*"):
        """Listen to room channels and deliver to local connections."""
        self.pubsub = self.client.pubsub()
        await self.pubsub.psubscribe(pattern)
        logger.info("✓ Subscribed to Redis pattern '%s'", pattern)

        async for message in self.pubsub.listen():
            if message["type"] not in ("message", "pmessage"):
                continue
            try:
                self.handle(message["data"])
            except (ValueError, TypeError) as e:
                logger.error("Error processing Redis message: %s", e)

    async def close(self):
        """Close connections."""
        if self.pubsub:
            await self.pubsub.punsubscribe()
            await self.pubsub.aclose()
        if self.client:
            await self.client.aclose()
        logger.info("Redis connection closed")
