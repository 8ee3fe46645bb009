"""EventBus: JSON messages over Redis publish/subscribe.

Channels:
    - ``price-updates``: serialized PriceReading after each successful fetch
    - ``depeg-alert``: serialized DepegEvent when a depeg is first detected
    - ``new-task``: inbound task events
    - ``task-response``: signed responses for the submission relay
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

PRICE_UPDATES = "price-updates"
DEPEG_ALERTS = "depeg-alert"
NEW_TASKS = "new-task"
TASK_RESPONSES = "task-response"


class EventBus:
    """Publish and consume JSON events.

    :ivar redis: Async Redis client.
    """

    def __init__(self, redis: Redis) -> None:
        self.redis = redis

    async def ping(self) -> None:
        """Check connectivity.

        :raises redis.exceptions.ConnectionError: If Redis is unreachable.
        """
        await self.redis.ping()

    async def publish(self, channel: str, message: dict[str, Any]) -> int:
        """Publish a message.

        :param channel: Channel name.
        :param message: JSON-serializable dict.
        :returns: Number of subscribers that received the message.
        """
        return await self.redis.publish(channel, json.dumps(message, sort_keys=True))

    async def subscribe(
        self, channel: str, ready: asyncio.Event | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield decoded messages from a channel until cancelled.

        Messages that are not valid JSON objects are logged and skipped.

        :param channel: Channel name.
        :param ready: Optional event set once the subscription is active.
        """
        pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
        await pubsub.subscribe(channel)
        logger.info(f"Subscribed to {channel}")
        if ready is not None:
            ready.set()
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    decoded = json.loads(message["data"])
                except (json.JSONDecodeError, TypeError) as e:
                    logger.warning(f"[{channel}] Dropping undecodable message: {e}")
                    continue
                if not isinstance(decoded, dict):
                    logger.warning(f"[{channel}] Dropping non-object message: {decoded!r}")
                    continue
                yield decoded
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
