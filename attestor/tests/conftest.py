"""Shared test doubles: in-memory Redis, temporary SQLite and scripted feeds."""

import asyncio

import fakeredis
import pytest
from eth_account import Account

from attestor.src.AttestationSigner import AttestationSigner
from attestor.src.EventBus import EventBus
from attestor.src.OperatorDatabase import OperatorDatabase
from attestor.src.PriceReading import PriceReading
from attestor.src.PriceStore import PriceCache, PriceStore
from attestor.src.feeds import BaseFeedClient, FeedSource, RoundData

TEST_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
NOW = 1_700_000_000


def make_reading(
    asset: str = "ETH/USD",
    price: int = 2000_00000000,
    decimals: int = 8,
    updated_at: int = NOW,
    round_id: int = 1,
) -> PriceReading:
    return PriceReading(asset, price, decimals, updated_at, round_id)


class RecordingBus(EventBus):
    """EventBus that also remembers everything it published."""

    def __init__(self, redis) -> None:
        super().__init__(redis)
        self.published: list[tuple[str, dict]] = []

    async def publish(self, channel: str, message: dict) -> int:
        self.published.append((channel, message))
        return await super().publish(channel, message)

    def messages(self, channel: str) -> list[dict]:
        return [m for c, m in self.published if c == channel]


class ScriptedFeedClient(BaseFeedClient):
    """Feed client replaying scripted rounds or errors per asset.

    The last scripted item repeats once the script is exhausted.
    """

    name = "scripted"

    def __init__(
        self,
        rounds: dict[str, list[RoundData | Exception]],
        decimals: dict[str, int] | None = None,
        delay: float = 0.0,
        max_age: int | None = None,
    ) -> None:
        super().__init__(max_age=max_age)
        self.rounds = rounds
        self._decimals = decimals or {}
        self.delay = delay
        self.calls = 0

    async def latest_round(self, source: FeedSource) -> RoundData:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        script = self.rounds[source.asset]
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def decimals(self, source: FeedSource) -> int:
        return self._decimals.get(source.asset, 8)


class Harness:
    """Async context giving each test a fresh Redis, database and store."""

    def __init__(self, tmp_path) -> None:
        self.url = f"sqlite+aiosqlite:///{tmp_path / 'operator.db'}"

    async def __aenter__(self) -> "Harness":
        self.redis = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer())
        self.database = OperatorDatabase(self.url)
        await self.database.connect()
        self.bus = RecordingBus(self.redis)
        self.cache = PriceCache(self.redis, ttl=300)
        self.store = PriceStore(self.cache, self.database)
        return self

    async def __aexit__(self, *exc) -> None:
        await self.database.close()
        await self.redis.aclose()


@pytest.fixture
def harness(tmp_path) -> Harness:
    return Harness(tmp_path)


@pytest.fixture
def signer() -> AttestationSigner:
    return AttestationSigner(Account.from_key(TEST_KEY))
