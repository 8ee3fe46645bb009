"""PriceStore: Latest-price cache plus the append-only price history.

The cache lives in Redis under ``price:<asset>`` with a short TTL, so an
asset whose feed stops updating simply disappears from the cache. The
history lives in the relational store and is keyed by (asset, round).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .PriceReading import PriceReading

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from .OperatorDatabase import OperatorDatabase

logger = logging.getLogger(__name__)


class PriceCache:
    """Redis-backed cache of the latest reading per asset.

    :cvar KEY_PREFIX: Prefix of cache keys.
    :cvar DEFAULT_TTL: Default entry lifetime in seconds.
    :ivar ttl: Entry lifetime in seconds.
    """

    KEY_PREFIX = "price:"
    DEFAULT_TTL = 300

    def __init__(self, redis: Redis, ttl: int = DEFAULT_TTL) -> None:
        """Initialize the cache.

        :param redis: Async Redis client.
        :param ttl: Entry lifetime in seconds (default: 300).
        """
        self.redis = redis
        self.ttl = ttl

    @classmethod
    def key(cls, asset: str) -> str:
        return f"{cls.KEY_PREFIX}{asset}"

    async def set(self, reading: PriceReading) -> None:
        await self.redis.set(self.key(reading.asset), reading.to_json(), ex=self.ttl)

    async def get(self, asset: str) -> PriceReading | None:
        """Get the cached reading for an asset.

        :returns: The reading, or None if absent, expired or unreadable.
        """
        raw = await self.redis.get(self.key(asset))
        if raw is None:
            return None
        try:
            return PriceReading.from_json(raw)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"[{asset}] Unreadable cache entry: {e}")
            return None


class PriceStore:
    """Facade over the price cache and the price history.

    :ivar cache: Latest-price cache.
    :ivar database: Relational store holding the history.
    """

    def __init__(self, cache: PriceCache, database: OperatorDatabase) -> None:
        self.cache = cache
        self.database = database

    async def record(self, reading: PriceReading) -> bool:
        """Refresh the cache entry and append the reading to history.

        :param reading: Fresh feed reading.
        :returns: True if a new history row was written, False if the
            round was already recorded.
        """
        await self.cache.set(reading)
        inserted = await self.database.append_price(reading)
        if not inserted:
            logger.debug(f"[{reading.asset}] Round {reading.round_id} already recorded")
        return inserted

    async def latest_cached(self, asset: str) -> PriceReading | None:
        return await self.cache.get(asset)

    async def latest_recorded(self, asset: str) -> PriceReading | None:
        return await self.database.latest_price(asset)

    async def history(self, asset: str, since: int) -> list[PriceReading]:
        return await self.database.price_window(asset, since)
