"""FeedPoller: Periodic fan-out fetch of every configured feed.

Architecture:
    - Every poll fetches all feeds concurrently, each with its own timeout
    - One feed failing never blocks or fails the others
    - Successful readings refresh the price cache, are appended to the
      price history and are published on ``price-updates``
    - A new poll is started every poll_interval; if the previous poll is
      still running the new one is skipped
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

from .EventBus import PRICE_UPDATES
from .HealthTracker import HealthTracker
from .PriceReading import PriceReading
from .feeds import BaseFeedClient, FeedError, FeedSource, FeedUnavailable

if TYPE_CHECKING:
    from .EventBus import EventBus
    from .PriceStore import PriceStore

logger = logging.getLogger(__name__)


class FeedPoller:
    """Polls all configured feeds on a fixed interval.

    :ivar feeds: Immutable mapping of asset to feed source.
    :ivar poll_interval: Seconds between poll starts.
    :ivar fetch_timeout: Timeout for a single feed fetch in seconds.
    :ivar health: Per-asset failure tracking.
    :ivar skipped_polls: Number of polls skipped due to overlap.
    """

    def __init__(
        self,
        feeds: Mapping[str, FeedSource],
        client: BaseFeedClient,
        store: PriceStore,
        bus: EventBus,
        poll_interval: float = 30,
        fetch_timeout: float = 10.0,
        health: HealthTracker | None = None,
    ) -> None:
        """Initialize the poller.

        :param feeds: Mapping of asset identifier to feed source.
        :param client: Feed client used for every source.
        :param store: Price store receiving successful readings.
        :param bus: Event bus for price-update events.
        :param poll_interval: Seconds between poll starts (default: 30).
        :param fetch_timeout: Per-feed fetch timeout (default: 10.0).
        :param health: Optional shared health tracker.
        """
        self.feeds = feeds
        self.client = client
        self.store = store
        self.bus = bus
        self.poll_interval = poll_interval
        self.fetch_timeout = fetch_timeout
        self.health = health or HealthTracker(list(feeds))
        self.skipped_polls = 0
        self._lock = asyncio.Lock()
        self._inflight: set[asyncio.Task] = set()

    async def poll_once(self) -> dict[str, PriceReading | BaseException] | None:
        """Fetch every feed once.

        :returns: Dict mapping asset to its reading or the error it failed
            with, or None if the poll was skipped because another poll
            is still running.
        """
        if self._lock.locked():
            self.skipped_polls += 1
            logger.warning("Previous poll still running, skipping this cycle")
            return None

        async with self._lock:
            assets = list(self.feeds)
            results = await asyncio.gather(
                *(self._poll_asset(asset) for asset in assets),
                return_exceptions=True,
            )
            outcome = dict(zip(assets, results, strict=True))

            for asset, result in outcome.items():
                if isinstance(result, BaseException):
                    self._record_failure(asset, result)

            updated = sum(isinstance(r, PriceReading) for r in results)
            logger.info(f"Poll complete: {updated}/{len(assets)} feeds updated")
            return outcome

    async def _poll_asset(self, asset: str) -> PriceReading:
        """Fetch, store and publish one asset.

        :raises FeedError: If the fetch fails or times out.
        """
        source = self.feeds[asset]
        try:
            reading = await asyncio.wait_for(
                self.client.fetch(source), timeout=self.fetch_timeout
            )
        except asyncio.TimeoutError as e:
            raise FeedUnavailable(f"{asset}: timeout after {self.fetch_timeout}s") from e

        self.health.record_success(asset)
        await self.store.record(reading)
        await self.bus.publish(PRICE_UPDATES, reading.to_dict())
        logger.debug(
            f"[{asset}] price={reading.raw_value} decimals={reading.decimals} "
            f"round={reading.round_id}"
        )
        return reading

    def _record_failure(self, asset: str, error: BaseException) -> None:
        kind = type(error).__name__
        if isinstance(error, FeedError):
            streak = self.health.record_failure(asset, kind)
            logger.warning(f"[{asset}] {kind}: {error}")
            if streak == self.health.degraded_after:
                logger.error(f"[{asset}] Feed degraded after {streak} consecutive failures")
        else:
            logger.error(f"[{asset}] Failed to record price ({kind}): {error}")

    async def run(self) -> None:
        """Start a poll every poll_interval seconds until cancelled."""
        logger.info(
            f"Starting feed poller for {len(self.feeds)} feeds "
            f"(interval={self.poll_interval}s, timeout={self.fetch_timeout}s)"
        )
        try:
            while True:
                task = asyncio.create_task(self.poll_once())
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)
                await asyncio.sleep(self.poll_interval)
        finally:
            for task in list(self._inflight):
                task.cancel()
