"""VOLATILITY_CALC: Annualized realized volatility over a lookback window.

Task data: ``(string asset, uint256 periodHours)``
Response: ``(string asset, uint256 volatilityBps, uint256 periodHours,
uint256 dataPoints, uint256 timestamp)``

Numerics:
    - Prices in the window are rescaled to a common integer precision
    - Log-returns use ``log1p((p_i - p_prev) / p_prev)``; the difference is
      exact integer arithmetic, so returns near zero keep full precision
    - Population variance is computed by ``statistics.pvariance``, which
      sums exactly
    - Annualization assumes one sample per hour (24 * 365 periods per
      year) regardless of the actual sampling cadence
    - The result is floored to whole basis points

.. code-block:: python

    >>> realized_volatility_bps([100, 100, 100])
    0
"""

from __future__ import annotations

import math
import statistics
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .base import (
    HandlerContext,
    InsufficientHistory,
    MalformedTaskData,
    TaskResult,
    decode_task_data,
)

if TYPE_CHECKING:
    from ..Task import Task

BASIS_POINTS = 10000
HOURS_PER_YEAR = 24 * 365
SECONDS_PER_HOUR = 3600


def log_returns(prices: Sequence[int]) -> list[float]:
    """Log-returns of consecutive prices.

    :param prices: Positive integer prices at a common precision.
    :returns: ``len(prices) - 1`` log-returns.
    """
    return [
        math.log1p((current - previous) / previous)
        for previous, current in zip(prices, prices[1:])
    ]


def realized_volatility_bps(
    prices: Sequence[int], periods_per_year: int = HOURS_PER_YEAR
) -> int:
    """Annualized volatility of a price series in basis points.

    :param prices: Positive integer prices, oldest first.
    :param periods_per_year: Samples per year assumed for annualization.
    :returns: ``floor(stddev(log-returns) * sqrt(periods_per_year) * 10000)``.
    :raises InsufficientHistory: If fewer than two prices are given.
    """
    if len(prices) < 2:
        raise InsufficientHistory(
            f"Need at least 2 prices for volatility, got {len(prices)}"
        )
    returns = log_returns(prices)
    volatility = math.sqrt(statistics.pvariance(returns))
    return math.floor(volatility * math.sqrt(periods_per_year) * BASIS_POINTS)


@dataclass(frozen=True)
class VolatilityResult(TaskResult):
    ABI_TYPES = ("string", "uint256", "uint256", "uint256", "uint256")

    asset: str
    volatility_bps: int
    period_hours: int
    data_points: int
    timestamp: int

    def abi_values(self) -> tuple[Any, ...]:
        return (
            self.asset,
            self.volatility_bps,
            self.period_hours,
            self.data_points,
            self.timestamp,
        )


async def handle_volatility_calc(task: Task, ctx: HandlerContext) -> VolatilityResult:
    """Compute volatility from the history inside the lookback window.

    :raises MalformedTaskData: If the window is zero hours.
    :raises InsufficientHistory: If the window holds fewer than two prices.
    """
    asset, period_hours = decode_task_data(("string", "uint256"), task.task_data)
    if period_hours == 0:
        raise MalformedTaskData("Volatility window must be at least one hour")

    since = ctx.now - period_hours * SECONDS_PER_HOUR
    readings = await ctx.store.history(asset, since)
    if len(readings) < 2:
        raise InsufficientHistory(
            f"Insufficient price history for {asset}: {len(readings)} points "
            f"in {period_hours}h"
        )

    decimals = max(r.decimals for r in readings)
    prices = [r.scaled_to(decimals) for r in readings]
    return VolatilityResult(
        asset=asset,
        volatility_bps=realized_volatility_bps(prices),
        period_hours=period_hours,
        data_points=len(prices) - 1,
        timestamp=ctx.now,
    )
