"""Unit tests for PriceReading, DepegEvent and Task."""

import pytest

from attestor.src.DepegEvent import DepegEvent
from attestor.src.PriceReading import NORMALIZED_DECIMALS, PriceReading
from attestor.src.Task import Task, TaskResponse, TaskStatus, TaskType


class TestPriceReadingScaling:
    """Test precision handling."""

    def test_scale_up_is_exact(self) -> None:
        """Scaling 8 -> 18 decimals multiplies by 10^10."""
        reading = PriceReading("ETH/USD", 200012345678, 8, 1700000000, 1)
        assert reading.scaled_to(18) == 200012345678 * 10**10

    def test_scale_down_floors(self) -> None:
        """Scaling down drops the extra digits."""
        reading = PriceReading("ETH/USD", 123456789, 8, 1700000000, 1)
        assert reading.scaled_to(6) == 1234567

    def test_same_decimals_unchanged(self) -> None:
        reading = PriceReading("ETH/USD", 42, 8, 1700000000, 1)
        assert reading.scaled_to(8) == 42

    def test_normalization_preserves_ordering(self) -> None:
        """Normalization is monotonic in the raw value."""
        values = [1, 99999999, 100000000, 100000001, 2**64]
        normalized = [PriceReading("X", v, 8, 1, 1).normalized_value for v in values]
        assert normalized == sorted(normalized)
        assert len(set(normalized)) == len(values)

    def test_normalization_is_lossless(self) -> None:
        """Normalized value divided by the scale factor gives back the raw value."""
        reading = PriceReading("X", 987654321, 6, 1, 1)
        scale = 10 ** (NORMALIZED_DECIMALS - 6)
        assert reading.normalized_value // scale == 987654321
        assert reading.normalized_value % scale == 0


class TestPriceReadingValidation:
    """Test invalid readings."""

    def test_zero_price_rejected(self) -> None:
        with pytest.raises(ValueError, match="positive"):
            PriceReading("ETH/USD", 0, 8, 1700000000, 1)

    def test_negative_price_rejected(self) -> None:
        with pytest.raises(ValueError):
            PriceReading("ETH/USD", -5, 8, 1700000000, 1)

    def test_negative_decimals_rejected(self) -> None:
        with pytest.raises(ValueError, match="decimals"):
            PriceReading("ETH/USD", 5, -1, 1700000000, 1)


class TestPriceReadingSerialization:
    """Test the cache and event representation."""

    def test_to_dict_carries_big_ints_as_strings(self) -> None:
        reading = PriceReading("ETH/USD", 2**70, 8, 1700000000, 18446744073709551617)
        data = reading.to_dict()
        assert data["price"] == str(2**70)
        assert data["roundId"] == "18446744073709551617"
        assert data["normalizedPrice"] == str(2**70 * 10**10)
        assert data["updatedAt"] == 1700000000

    def test_from_json_restores_reading(self) -> None:
        reading = PriceReading("stETH/USD", 199900000000, 8, 1700000000, 7)
        assert PriceReading.from_json(reading.to_json()) == reading

    def test_from_dict_missing_field(self) -> None:
        with pytest.raises(KeyError):
            PriceReading.from_dict({"asset": "X", "price": "1"})


class TestDepegEvent:
    """Test DepegEvent."""

    def test_active_until_resolved(self) -> None:
        event = DepegEvent("stETH/USD", 2500, 1500, 2000, "ETH/USD", 8, 1700000000)
        assert event.is_active
        assert not DepegEvent(
            "stETH/USD", 2500, 1500, 2000, "ETH/USD", 8, 1700000000, resolved_at=1700000100
        ).is_active

    def test_to_dict(self) -> None:
        event = DepegEvent("stETH/USD", 2500, 1500, 2000, "ETH/USD", 8, 1700000000)
        data = event.to_dict()
        assert data["asset"] == "stETH/USD"
        assert data["depegBps"] == 2500


class TestTask:
    """Test task parsing."""

    def test_from_event_hex_data(self) -> None:
        task = Task.from_event(
            {"taskIndex": 7, "taskType": 2, "taskData": "0x0102", "blockNumber": 99}
        )
        assert task == Task(7, 2, b"\x01\x02", 99)
        assert task.known_type is TaskType.VOLATILITY_CALC

    def test_event_round_trip(self) -> None:
        task = Task(3, 1, b"", 12)
        assert Task.from_event(task.to_event()) == task

    def test_unknown_type_kept(self) -> None:
        task = Task.from_event({"taskIndex": 1, "taskType": 99})
        assert task.task_type == 99
        assert task.known_type is None

    @pytest.mark.parametrize(
        "event",
        [
            {"taskType": 0},
            {"taskIndex": "x", "taskType": 0},
            {"taskIndex": -1, "taskType": 0},
            {"taskIndex": 2**32, "taskType": 0},
            {"taskIndex": 1, "taskType": 0, "taskData": "0xzz"},
        ],
    )
    def test_malformed_events(self, event: dict) -> None:
        with pytest.raises(ValueError):
            Task.from_event(event)

    def test_index_must_fit_uint32(self) -> None:
        assert Task(2**32 - 1, 0, b"", 1).task_index == 2**32 - 1
        with pytest.raises(ValueError, match="uint32"):
            Task(2**32, 0, b"", 1)
        with pytest.raises(ValueError):
            Task(-1, 0, b"", 1)

    def test_terminal_statuses(self) -> None:
        assert TaskStatus.RESPONDED.is_terminal
        assert TaskStatus.FAILED.is_terminal
        assert not TaskStatus.PENDING.is_terminal
        assert not TaskStatus.DISPATCHING.is_terminal

    def test_response_event_hex_encoding(self) -> None:
        response = TaskResponse(42, "0xabc", b"\x00\x01", b"\xff")
        event = response.to_event()
        assert event["taskIndex"] == 42
        assert event["responsePayload"] == "0x0001"
        assert event["signature"] == "0xff"
