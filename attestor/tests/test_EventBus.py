"""Tests for EventBus over an in-memory Redis."""

import asyncio

import fakeredis

from attestor.src.EventBus import NEW_TASKS, PRICE_UPDATES, EventBus


async def _receive(bus: EventBus, channel: str, count: int, ready: asyncio.Event) -> list[dict]:
    received = []
    async for message in bus.subscribe(channel, ready=ready):
        received.append(message)
        if len(received) == count:
            break
    return received


class TestEventBus:
    """Test publish and subscribe."""

    def test_publish_subscribe(self) -> None:
        async def scenario():
            redis = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer())
            bus = EventBus(redis)
            ready = asyncio.Event()
            consumer = asyncio.create_task(_receive(bus, PRICE_UPDATES, 2, ready))
            await asyncio.wait_for(ready.wait(), timeout=5)

            assert await bus.publish(PRICE_UPDATES, {"asset": "ETH/USD", "price": "1"}) == 1
            await bus.publish(NEW_TASKS, {"taskIndex": 1})
            await bus.publish(PRICE_UPDATES, {"asset": "BTC/USD", "price": "2"})

            received = await asyncio.wait_for(consumer, timeout=5)
            assert [m["asset"] for m in received] == ["ETH/USD", "BTC/USD"]
            await redis.aclose()

        asyncio.run(scenario())

    def test_invalid_messages_skipped(self) -> None:
        async def scenario():
            redis = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer())
            bus = EventBus(redis)
            ready = asyncio.Event()
            consumer = asyncio.create_task(_receive(bus, NEW_TASKS, 1, ready))
            await asyncio.wait_for(ready.wait(), timeout=5)

            await redis.publish(NEW_TASKS, "not json")
            await redis.publish(NEW_TASKS, "[1, 2]")
            await bus.publish(NEW_TASKS, {"taskIndex": 3})

            received = await asyncio.wait_for(consumer, timeout=5)
            assert received == [{"taskIndex": 3}]
            await redis.aclose()

        asyncio.run(scenario())

    def test_no_subscribers(self) -> None:
        async def scenario():
            redis = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer())
            assert await EventBus(redis).publish(PRICE_UPDATES, {"asset": "X"}) == 0
            await redis.aclose()

        asyncio.run(scenario())
