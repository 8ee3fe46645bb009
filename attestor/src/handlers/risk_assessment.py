"""RISK_ASSESSMENT: Score the risk of a position in an asset from 0 to 100.

Task data: ``(string asset, uint256 amount)``
Response: ``(string asset, uint256 amount, uint8 riskScore, bool isDepegged,
uint256 timestamp)``

Score:
    - 50 points if the asset has an active depeg event
    - ``min(volatilityBps / 100, 50)`` from the most recent recorded
      volatility of the asset (0 if none was recorded)
    - The sum is floored
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .base import HandlerContext, TaskResult, decode_task_data

if TYPE_CHECKING:
    from ..Task import Task

DEPEG_WEIGHT = 50
MAX_VOLATILITY_WEIGHT = 50


def risk_score(is_depegged: bool, volatility_bps: int | None) -> int:
    """Combine the depeg flag and volatility into a 0-100 score.

    :param is_depegged: Whether the asset has an active depeg.
    :param volatility_bps: Recent annualized volatility, or None if unknown.
    :returns: Integer score in [0, 100].
    """
    score = DEPEG_WEIGHT if is_depegged else 0
    if volatility_bps:
        score += min(max(volatility_bps, 0) / 100, MAX_VOLATILITY_WEIGHT)
    return math.floor(score)


@dataclass(frozen=True)
class RiskAssessmentResult(TaskResult):
    ABI_TYPES = ("string", "uint256", "uint8", "bool", "uint256")

    asset: str
    amount: int
    risk_score: int
    is_depegged: bool
    timestamp: int

    def abi_values(self) -> tuple[Any, ...]:
        return (self.asset, self.amount, self.risk_score, self.is_depegged, self.timestamp)


async def handle_risk_assessment(task: Task, ctx: HandlerContext) -> RiskAssessmentResult:
    asset, amount = decode_task_data(("string", "uint256"), task.task_data)
    is_depegged = bool(await ctx.database.active_depeg_events(asset))
    volatility_bps = await ctx.database.latest_volatility(asset)
    return RiskAssessmentResult(
        asset=asset,
        amount=amount,
        risk_score=risk_score(is_depegged, volatility_bps),
        is_depegged=is_depegged,
        timestamp=ctx.now,
    )
