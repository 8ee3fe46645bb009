"""DEPEG_DETECTION: Report the most recent active depeg event.

Task data: empty for all assets, or ``(string asset)`` to restrict to one
asset (an empty string also means all assets).
Response: ``(bool depegged, string asset, uint256 depegBps,
uint256 observedPrice, uint256 referencePrice, uint256 detectedAt,
uint256 timestamp)``
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .base import HandlerContext, TaskResult, decode_task_data

if TYPE_CHECKING:
    from ..Task import Task


@dataclass(frozen=True)
class DepegDetectionResult(TaskResult):
    ABI_TYPES = ("bool", "string", "uint256", "uint256", "uint256", "uint256", "uint256")

    depegged: bool
    asset: str
    depeg_bps: int
    observed_price: int
    reference_price: int
    detected_at: int
    timestamp: int

    def abi_values(self) -> tuple[Any, ...]:
        return (
            self.depegged,
            self.asset,
            self.depeg_bps,
            self.observed_price,
            self.reference_price,
            self.detected_at,
            self.timestamp,
        )


async def handle_depeg_detection(task: Task, ctx: HandlerContext) -> DepegDetectionResult:
    asset: str | None = None
    if task.task_data:
        (asset,) = decode_task_data(("string",), task.task_data)
        asset = asset or None

    events = await ctx.database.active_depeg_events(asset)
    if not events:
        return DepegDetectionResult(
            depegged=False,
            asset=asset or "",
            depeg_bps=0,
            observed_price=0,
            reference_price=0,
            detected_at=0,
            timestamp=ctx.now,
        )

    event = events[0]
    return DepegDetectionResult(
        depegged=True,
        asset=event.asset,
        depeg_bps=event.depeg_bps,
        observed_price=event.observed_price,
        reference_price=event.reference_price,
        detected_at=event.detected_at,
        timestamp=ctx.now,
    )
