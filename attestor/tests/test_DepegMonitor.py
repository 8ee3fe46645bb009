"""Tests for DepegMonitor and the deviation function."""

import asyncio

import pytest

from attestor.src.DepegMonitor import DegenerateReference, DepegMonitor, deviation_bps
from attestor.src.EventBus import DEPEG_ALERTS
from attestor.src.OperatorConfig import PegConfig

from conftest import NOW, make_reading

PEGS = {"stETH/USD": PegConfig("ETH/USD", 2000)}


def make_monitor(h, pegs=PEGS, **kwargs) -> DepegMonitor:
    return DepegMonitor(pegs, h.store, h.database, h.bus, clock=lambda: NOW, **kwargs)


class TestDeviation:
    """Test deviation_bps()."""

    def test_reference_scenario(self) -> None:
        """2000.00 vs 1500.00 is a 2500 bps deviation."""
        assert deviation_bps(2000_00, 1500_00) == 2500

    def test_premium_relative_to_reference(self) -> None:
        """2500.00 against a 2000.00 reference is also a 2500 bps deviation."""
        assert deviation_bps(2000_00, 2500_00) == 2500

    @pytest.mark.parametrize("offset", [1, 250, 5000, 9999])
    def test_discount_and_premium_match(self, offset: int) -> None:
        assert deviation_bps(10000, 10000 - offset) == deviation_bps(10000, 10000 + offset)

    def test_equal_prices(self) -> None:
        assert deviation_bps(10**18, 10**18) == 0

    def test_floor_division(self) -> None:
        assert deviation_bps(3, 2) == 3333

    @pytest.mark.parametrize("reference,observed", [(0, 100), (100, 0), (-1, 100)])
    def test_degenerate(self, reference: int, observed: int) -> None:
        with pytest.raises(DegenerateReference):
            deviation_bps(reference, observed)


class TestDepegDetection:
    """Test alerting on price updates."""

    def test_depeg_creates_event_and_alert(self, harness) -> None:
        async def scenario():
            async with harness as h:
                await h.cache.set(make_reading("ETH/USD", 2000_00000000))
                event = await make_monitor(h).on_price_update(
                    make_reading("stETH/USD", 1500_00000000)
                )

                assert event is not None
                assert event.depeg_bps == 2500
                assert event.detected_at == NOW
                active = await h.database.active_depeg_events("stETH/USD")
                assert len(active) == 1
                alerts = h.bus.messages(DEPEG_ALERTS)
                assert len(alerts) == 1
                assert alerts[0]["asset"] == "stETH/USD"
                assert alerts[0]["depegBps"] == 2500

        asyncio.run(scenario())

    def test_premium_creates_event(self, harness) -> None:
        """A pegged asset trading 25% above its reference is depegged."""
        async def scenario():
            async with harness as h:
                await h.cache.set(make_reading("ETH/USD", 2000_00000000))
                event = await make_monitor(h).on_price_update(
                    make_reading("stETH/USD", 2500_00000000)
                )

                assert event is not None
                assert event.depeg_bps == 2500
                assert event.observed_price == 2500_00000000
                assert len(h.bus.messages(DEPEG_ALERTS)) == 1

        asyncio.run(scenario())

    def test_at_threshold_no_alert(self, harness) -> None:
        """The alert fires only when the deviation exceeds the threshold."""
        async def scenario():
            async with harness as h:
                await h.cache.set(make_reading("ETH/USD", 10000))
                event = await make_monitor(h).on_price_update(make_reading("stETH/USD", 8000))
                assert event is None
                assert h.bus.messages(DEPEG_ALERTS) == []

        asyncio.run(scenario())

    def test_no_duplicate_while_active(self, harness) -> None:
        """Repeated breaches keep the first event unchanged."""
        async def scenario():
            async with harness as h:
                monitor = make_monitor(h)
                await h.cache.set(make_reading("ETH/USD", 2000_00000000))
                await monitor.on_price_update(make_reading("stETH/USD", 1500_00000000, round_id=1))
                again = await monitor.on_price_update(
                    make_reading("stETH/USD", 1000_00000000, round_id=2)
                )

                assert again is None
                active = await h.database.active_depeg_events("stETH/USD")
                assert [e.depeg_bps for e in active] == [2500]
                assert len(h.bus.messages(DEPEG_ALERTS)) == 1

        asyncio.run(scenario())

    def test_missing_reference_skipped(self, harness) -> None:
        async def scenario():
            async with harness as h:
                event = await make_monitor(h).on_price_update(
                    make_reading("stETH/USD", 1500_00000000)
                )
                assert event is None
                assert await h.database.active_depeg_events() == []

        asyncio.run(scenario())

    def test_unpegged_asset_ignored(self, harness) -> None:
        async def scenario():
            async with harness as h:
                event = await make_monitor(h).on_price_update(make_reading("BTC/USD", 1))
                assert event is None

        asyncio.run(scenario())

    def test_different_decimals_compared_at_common_precision(self, harness) -> None:
        async def scenario():
            async with harness as h:
                await h.cache.set(make_reading("ETH/USD", 2000 * 10**8, decimals=8))
                event = await make_monitor(h).on_price_update(
                    make_reading("stETH/USD", 1500 * 10**18, decimals=18)
                )
                assert event.depeg_bps == 2500
                assert event.decimals == 18
                assert event.reference_price == 2000 * 10**18

        asyncio.run(scenario())


class TestDepegRecovery:
    """Test resolution of active events."""

    def test_recovery_resolves_event(self, harness) -> None:
        async def scenario():
            async with harness as h:
                monitor = make_monitor(h)
                await h.cache.set(make_reading("ETH/USD", 2000_00000000))
                await monitor.on_price_update(make_reading("stETH/USD", 1500_00000000, round_id=1))
                await monitor.on_price_update(make_reading("stETH/USD", 1990_00000000, round_id=2))

                assert await h.database.active_depeg_events("stETH/USD") == []
                (event,) = await h.database.all_depeg_events("stETH/USD")
                assert event.resolved_at == NOW

        asyncio.run(scenario())

    def test_recovery_disabled(self, harness) -> None:
        async def scenario():
            async with harness as h:
                monitor = make_monitor(h, resolve_on_recovery=False)
                await h.cache.set(make_reading("ETH/USD", 2000_00000000))
                await monitor.on_price_update(make_reading("stETH/USD", 1500_00000000, round_id=1))
                await monitor.on_price_update(make_reading("stETH/USD", 1990_00000000, round_id=2))

                assert len(await h.database.active_depeg_events("stETH/USD")) == 1

        asyncio.run(scenario())

    def test_new_event_after_recovery(self, harness) -> None:
        async def scenario():
            async with harness as h:
                monitor = make_monitor(h)
                await h.cache.set(make_reading("ETH/USD", 2000_00000000))
                for round_id, price in enumerate([1500, 2000, 1400], start=1):
                    await monitor.on_price_update(
                        make_reading("stETH/USD", price * 10**8, round_id=round_id)
                    )

                events = await h.database.all_depeg_events("stETH/USD")
                assert len(events) == 2
                assert len(h.bus.messages(DEPEG_ALERTS)) == 2

        asyncio.run(scenario())
