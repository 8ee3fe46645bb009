"""RATE_UPDATE: Borrow rate from a kinked utilization curve.

Task data: ``(uint256 utilizationBps)``
Response: ``(uint256 rateBps, uint256 utilizationBps, uint256 timestamp)``

Below the kink the rate grows by SLOPE_1 over the whole optimal range;
above it, by SLOPE_2 over the remaining range:

.. code-block:: python

    >>> interest_rate_bps(8000)
    600
    >>> interest_rate_bps(10000)
    6600
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .base import HandlerContext, MalformedTaskData, TaskResult, decode_task_data

if TYPE_CHECKING:
    from ..Task import Task

BASIS_POINTS = 10000
BASE_RATE_BPS = 200
SLOPE_1_BPS = 400
SLOPE_2_BPS = 6000
OPTIMAL_UTILIZATION_BPS = 8000


def interest_rate_bps(utilization_bps: int) -> int:
    """Borrow rate for a utilization, both in basis points, floored."""
    if utilization_bps <= OPTIMAL_UTILIZATION_BPS:
        return BASE_RATE_BPS + utilization_bps * SLOPE_1_BPS // OPTIMAL_UTILIZATION_BPS
    excess = utilization_bps - OPTIMAL_UTILIZATION_BPS
    return (
        BASE_RATE_BPS
        + SLOPE_1_BPS
        + excess * SLOPE_2_BPS // (BASIS_POINTS - OPTIMAL_UTILIZATION_BPS)
    )


@dataclass(frozen=True)
class RateUpdateResult(TaskResult):
    ABI_TYPES = ("uint256", "uint256", "uint256")

    rate_bps: int
    utilization_bps: int
    timestamp: int

    def abi_values(self) -> tuple[Any, ...]:
        return (self.rate_bps, self.utilization_bps, self.timestamp)


async def handle_rate_update(task: Task, ctx: HandlerContext) -> RateUpdateResult:
    (utilization_bps,) = decode_task_data(("uint256",), task.task_data)
    if utilization_bps > BASIS_POINTS:
        raise MalformedTaskData(f"Utilization {utilization_bps} bps exceeds 100%")
    return RateUpdateResult(
        rate_bps=interest_rate_bps(utilization_bps),
        utilization_bps=utilization_bps,
        timestamp=ctx.now,
    )
