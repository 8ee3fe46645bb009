"""Operator: Main orchestrator of one attestation operator process.

Architecture:
    - One OperatorConfig, built at start-up, is passed to every component
    - FeedPoller refreshes the price store on a timer and publishes
      ``price-updates``
    - DepegMonitor consumes ``price-updates`` and raises depeg alerts
    - Tasks arrive on ``new-task`` (optionally relayed from the chain by
      TaskEventWatcher) and are queued for a fixed pool of dispatcher workers
    - Start-up fails if Redis or the database is unreachable; after that,
      per-asset and per-task failures never stop the process
    - Feed and signer health is summarized in the log every health_interval
      seconds, as a warning while any feed or the signer is degraded
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from redis.asyncio import Redis

from .ContractUtility import ContractUtility
from .DepegMonitor import DepegMonitor
from .EventBus import NEW_TASKS, EventBus
from .FeedPoller import FeedPoller
from .OperatorDatabase import OperatorDatabase
from .PriceStore import PriceCache, PriceStore
from .Task import Task
from .TaskDispatcher import SIGNER_KEY, TaskDispatcher
from .TaskEventWatcher import TaskEventWatcher
from .feeds import BaseFeedClient, ChainlinkFeedClient

if TYPE_CHECKING:
    from .AttestationSigner import AttestationSigner
    from .OperatorConfig import OperatorConfig

logger = logging.getLogger(__name__)


class Operator:
    """Wires and runs all components.

    :ivar config: Operator configuration.
    :ivar redis: Async Redis client shared by the cache and the bus.
    :ivar database: Relational store.
    """

    def __init__(
        self,
        config: OperatorConfig,
        signer: AttestationSigner,
        redis: Redis | None = None,
        database: OperatorDatabase | None = None,
        feed_client: BaseFeedClient | None = None,
    ) -> None:
        """Initialize the operator.

        :param config: Operator configuration.
        :param signer: Signer holding the operator key.
        :param redis: Optional Redis client (default: from config.redis_url).
        :param database: Optional database (default: from config.database_url).
        :param feed_client: Optional feed client (default: Chainlink over
            config.rpc_url).
        """
        self.config = config
        self.redis = redis if redis is not None else Redis.from_url(config.redis_url)
        self.database = database or OperatorDatabase(config.database_url)
        self.bus = EventBus(self.redis)
        self.store = PriceStore(PriceCache(self.redis, ttl=config.price_ttl), self.database)

        w3 = None
        if feed_client is None or config.task_manager_address:
            w3 = ContractUtility(config.rpc_url).w3
        self.feed_client = feed_client or ChainlinkFeedClient(w3, max_age=config.max_price_age)

        self.poller = FeedPoller(
            feeds=config.feeds,
            client=self.feed_client,
            store=self.store,
            bus=self.bus,
            poll_interval=config.poll_interval,
            fetch_timeout=config.fetch_timeout,
        )
        self.monitor = DepegMonitor(
            pegs=config.pegs,
            store=self.store,
            database=self.database,
            bus=self.bus,
            resolve_on_recovery=config.resolve_depegs_on_recovery,
        )
        self.dispatcher = TaskDispatcher(
            signer=signer,
            store=self.store,
            database=self.database,
            bus=self.bus,
            task_timeout=config.task_timeout,
        )
        self.watcher: TaskEventWatcher | None = None
        if config.task_manager_address:
            self.watcher = TaskEventWatcher(
                w3,
                config.task_manager_address,
                self.bus,
                catchup_blocks=config.task_catchup_blocks,
            )

    async def start(self) -> None:
        """Connect to Redis and the database.

        :raises Exception: If either is unreachable; the caller treats this
            as fatal.
        """
        await self.bus.ping()
        await self.database.connect()
        logger.info("Connected to Redis and database")

    async def close(self) -> None:
        await self.database.close()
        await self.redis.aclose()

    def health_status(self) -> dict[str, Any]:
        """Summarize feed and signer health.

        :returns: Dict with an overall ``healthy`` flag, the signer state,
            degraded feeds and per-feed failure counters.
        """
        feeds = self.poller.health.get_all_status()
        degraded_feeds = self.poller.health.degraded_keys()
        signer = self.dispatcher.health.get_status(SIGNER_KEY)
        return {
            "healthy": not degraded_feeds and not self.dispatcher.signer_degraded,
            "operator": self.dispatcher.operator,
            "signer_degraded": self.dispatcher.signer_degraded,
            "signing_failures": signer.consecutive_failures if signer else 0,
            "degraded_feeds": degraded_feeds,
            "feeds": {
                asset: {
                    "consecutive_failures": status.consecutive_failures,
                    "last_error": status.last_error,
                    "last_success_at": status.last_success_at,
                }
                for asset, status in feeds.items()
            },
            "skipped_polls": self.poller.skipped_polls,
        }

    def log_health(self) -> dict[str, Any]:
        """Log a one-line health summary and return the full status."""
        status = self.health_status()
        summary = (
            f"signer={'DEGRADED' if status['signer_degraded'] else 'ok'} "
            f"feeds={len(status['feeds']) - len(status['degraded_feeds'])}/{len(status['feeds'])} ok "
            f"skipped_polls={status['skipped_polls']}"
        )
        if status["healthy"]:
            logger.info(f"Health: {summary}")
        else:
            logger.warning(
                f"Health DEGRADED: {summary} degraded_feeds={status['degraded_feeds']}"
            )
        return status

    async def _report_health(self) -> None:
        while True:
            await asyncio.sleep(self.config.health_interval)
            self.log_health()

    async def _consume_tasks(self, queue: asyncio.Queue[Task], ready: asyncio.Event) -> None:
        for task in await self.dispatcher.recover():
            await queue.put(task)

        async for message in self.bus.subscribe(NEW_TASKS, ready=ready):
            try:
                task = Task.from_event(message)
            except ValueError as e:
                logger.warning(f"Dropping malformed task event: {e}")
                continue
            await queue.put(task)

    async def _watch_tasks(self, ready: asyncio.Event) -> None:
        await ready.wait()
        await self.watcher.run()

    async def run(self) -> None:
        """Run all components until cancelled."""
        await self.start()
        queue: asyncio.Queue[Task] = asyncio.Queue(maxsize=self.config.task_queue_size)
        subscribed = asyncio.Event()

        components = [
            self.poller.run(),
            self.monitor.run(),
            self.dispatcher.run(queue, self.config.max_concurrent_tasks),
            self._consume_tasks(queue, subscribed),
            self._report_health(),
        ]
        if self.watcher is not None:
            components.append(self._watch_tasks(subscribed))

        logger.info(
            f"Operator {self.dispatcher.operator} running: {len(self.config.feeds)} feeds, "
            f"{len(self.config.pegs)} pegs, watcher={'on' if self.watcher else 'off'}"
        )
        try:
            await asyncio.gather(*components)
        finally:
            await self.close()
