"""End-to-end tests of the Operator over in-memory Redis and SQLite."""

import asyncio
import logging

import fakeredis
import pytest
from eth_abi import encode
from sqlalchemy.exc import OperationalError

from attestor.src.AttestationSigner import AttestationSigner
from attestor.src.EventBus import NEW_TASKS, TASK_RESPONSES, EventBus
from attestor.src.Operator import Operator
from attestor.src.OperatorConfig import OperatorConfig
from attestor.src.OperatorDatabase import OperatorDatabase
from attestor.src.Task import Task, TaskStatus, TaskType
from attestor.src.TaskDispatcher import SIGNER_KEY
from attestor.src.feeds import FeedSource

from conftest import ScriptedFeedClient


def make_operator(tmp_path, signer: AttestationSigner, redis, **kwargs) -> Operator:
    config = OperatorConfig(
        rpc_url="http://localhost:8545",
        redis_url="redis://localhost:6379/0",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'operator.db'}",
        poll_interval=60,
        **kwargs,
    )
    return Operator(
        config,
        signer,
        redis=redis,
        database=OperatorDatabase(config.database_url),
        feed_client=ScriptedFeedClient({}),
    )


async def wait_for_status(operator: Operator, task_index: int, expected: TaskStatus) -> None:
    for _ in range(200):
        if operator.database.engine is None:
            await asyncio.sleep(0.05)
            continue
        status = await operator.database.get_task_status(task_index, operator.dispatcher.operator)
        if status == expected:
            return
        await asyncio.sleep(0.05)
    raise AssertionError(f"Task {task_index} never reached {expected}")


async def stop(run: asyncio.Task) -> None:
    run.cancel()
    with pytest.raises(asyncio.CancelledError):
        await run


def rate_task(task_index: int, utilization_bps: int = 5000) -> Task:
    return Task(task_index, TaskType.RATE_UPDATE, encode(["uint256"], [utilization_bps]), 1)


class TestOperator:
    """Test the wiring of all components."""

    def test_task_event_answered(self, tmp_path, signer) -> None:
        async def scenario():
            server = fakeredis.FakeServer()
            operator = make_operator(tmp_path, signer, fakeredis.FakeAsyncRedis(server=server))
            observer = fakeredis.FakeAsyncRedis(server=server)
            pubsub = observer.pubsub(ignore_subscribe_messages=True)
            await pubsub.subscribe(TASK_RESPONSES)

            run = asyncio.create_task(operator.run())
            bus = EventBus(observer)
            task = rate_task(11)
            # Publish until the task consumer has subscribed.
            for _ in range(200):
                if await bus.publish(NEW_TASKS, task.to_event()):
                    break
                await asyncio.sleep(0.05)

            await wait_for_status(operator, 11, TaskStatus.RESPONDED)
            message = None
            for _ in range(50):
                message = await pubsub.get_message(timeout=0.1)
                if message is not None:
                    break
            assert message is not None and b'"taskIndex": 11' in message["data"]

            await stop(run)
            await pubsub.aclose()
            await observer.aclose()

        asyncio.run(scenario())

    def test_pending_task_recovered_on_start(self, tmp_path, signer) -> None:
        async def scenario():
            setup = OperatorDatabase(f"sqlite+aiosqlite:///{tmp_path / 'operator.db'}")
            await setup.connect()
            await setup.record_task(rate_task(5), signer.address)
            await setup.record_task(rate_task(6), signer.address)
            await setup.claim_task(6, signer.address)
            await setup.close()

            operator = make_operator(
                tmp_path, signer, fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer())
            )
            run = asyncio.create_task(operator.run())

            await wait_for_status(operator, 5, TaskStatus.RESPONDED)
            await wait_for_status(operator, 6, TaskStatus.FAILED)
            reason = await operator.database.get_failure_reason(6, signer.address)
            assert reason == "interrupted"

            await stop(run)

        asyncio.run(scenario())

    def test_start_fails_without_database(self, tmp_path, signer) -> None:
        async def scenario():
            operator = make_operator(
                tmp_path / "missing", signer, fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer())
            )
            with pytest.raises(OperationalError):
                await operator.start()
            await operator.close()

        asyncio.run(scenario())

    def test_oversized_task_index_dropped_at_intake(self, tmp_path, signer) -> None:
        """Task indexes beyond uint32 never reach the signer."""
        async def scenario():
            server = fakeredis.FakeServer()
            operator = make_operator(tmp_path, signer, fakeredis.FakeAsyncRedis(server=server))
            operator.dispatcher.health.degraded_after = 2
            observer = fakeredis.FakeAsyncRedis(server=server)
            bus = EventBus(observer)

            run = asyncio.create_task(operator.run())
            oversized = []
            for i in range(3):
                event = rate_task(0).to_event()
                event["taskIndex"] = 2**32 + i
                oversized.append(event)
            for _ in range(200):
                if await bus.publish(NEW_TASKS, oversized[0]):
                    break
                await asyncio.sleep(0.05)
            for event in oversized[1:]:
                await bus.publish(NEW_TASKS, event)
            await bus.publish(NEW_TASKS, rate_task(12).to_event())

            await wait_for_status(operator, 12, TaskStatus.RESPONDED)
            assert not operator.dispatcher.signer_degraded
            assert operator.dispatcher.health.get_status(SIGNER_KEY).total_failures == 0
            assert await operator.database.get_task_status(2**32, signer.address) is None

            await stop(run)
            await observer.aclose()

        asyncio.run(scenario())


class TestOperatorHealth:
    """Test the health summary built from poller and dispatcher state."""

    FEEDS = {
        "ETH/USD": FeedSource("ETH/USD", "0x01"),
        "BTC/USD": FeedSource("BTC/USD", "0x02"),
    }

    def _operator(self, tmp_path, signer) -> Operator:
        redis = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer())
        return make_operator(tmp_path, signer, redis, feeds=self.FEEDS)

    def test_healthy(self, tmp_path, signer, caplog) -> None:
        operator = self._operator(tmp_path, signer)

        with caplog.at_level(logging.INFO, logger="attestor.src.Operator"):
            status = operator.log_health()

        assert status["healthy"] is True
        assert status["operator"] == signer.address
        assert status["degraded_feeds"] == []
        assert set(status["feeds"]) == {"ETH/USD", "BTC/USD"}
        assert "Health: signer=ok feeds=2/2 ok" in caplog.text

    def test_degraded_feed(self, tmp_path, signer, caplog) -> None:
        operator = self._operator(tmp_path, signer)
        for _ in range(operator.poller.health.degraded_after):
            operator.poller.health.record_failure("BTC/USD", "FeedUnavailable")

        with caplog.at_level(logging.WARNING, logger="attestor.src.Operator"):
            status = operator.log_health()

        assert status["healthy"] is False
        assert status["degraded_feeds"] == ["BTC/USD"]
        assert status["feeds"]["BTC/USD"]["last_error"] == "FeedUnavailable"
        assert status["signer_degraded"] is False
        assert "Health DEGRADED: signer=ok feeds=1/2 ok" in caplog.text

    def test_degraded_signer(self, tmp_path, signer, caplog) -> None:
        operator = self._operator(tmp_path, signer)
        for _ in range(operator.dispatcher.health.degraded_after):
            operator.dispatcher.health.record_failure(SIGNER_KEY, "SigningFailure")

        with caplog.at_level(logging.WARNING, logger="attestor.src.Operator"):
            status = operator.log_health()

        assert status["healthy"] is False
        assert status["signer_degraded"] is True
        assert status["signing_failures"] == operator.dispatcher.health.degraded_after
        assert "signer=DEGRADED" in caplog.text

    def test_recovery_clears_degraded_state(self, tmp_path, signer) -> None:
        operator = self._operator(tmp_path, signer)
        for _ in range(operator.dispatcher.health.degraded_after):
            operator.dispatcher.health.record_failure(SIGNER_KEY, "SigningFailure")
        operator.dispatcher.health.record_success(SIGNER_KEY)

        assert operator.health_status()["healthy"] is True
