"""PRICE_VERIFICATION: Attest to the latest recorded price of an asset.

Task data: ``(string asset)``
Response: ``(string asset, uint256 price, uint8 decimals, uint256 timestamp, bool verified)``
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .base import HandlerContext, NoPriceData, TaskResult, decode_task_data

if TYPE_CHECKING:
    from ..Task import Task


@dataclass(frozen=True)
class PriceVerificationResult(TaskResult):
    ABI_TYPES = ("string", "uint256", "uint8", "uint256", "bool")

    asset: str
    price: int
    decimals: int
    timestamp: int
    verified: bool = True

    def abi_values(self) -> tuple[Any, ...]:
        return (self.asset, self.price, self.decimals, self.timestamp, self.verified)


async def handle_price_verification(task: Task, ctx: HandlerContext) -> PriceVerificationResult:
    """Return the most recent history entry for the requested asset.

    :raises NoPriceData: If nothing has been recorded for the asset.
    """
    (asset,) = decode_task_data(("string",), task.task_data)
    reading = await ctx.store.latest_recorded(asset)
    if reading is None:
        raise NoPriceData(f"No price data for asset {asset}")
    return PriceVerificationResult(
        asset=asset,
        price=reading.raw_value,
        decimals=reading.decimals,
        timestamp=reading.updated_at,
    )
