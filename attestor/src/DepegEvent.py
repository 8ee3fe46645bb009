"""DepegEvent: A recorded deviation of a pegged asset from its reference."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class DepegEvent:
    """A depeg observation.

    Prices are stored at the common precision they were compared at.

    :ivar asset: Pegged asset identifier.
    :ivar depeg_bps: Deviation in basis points (10000 = 100%).
    :ivar observed_price: Pegged asset price.
    :ivar reference_price: Reference asset price.
    :ivar reference_asset: Reference asset identifier.
    :ivar decimals: Precision of observed_price and reference_price.
    :ivar detected_at: Unix timestamp of detection.
    :ivar resolved_at: Unix timestamp of resolution, None while active.
    :ivar id: Database row id, None before insertion.
    """

    asset: str
    depeg_bps: int
    observed_price: int
    reference_price: int
    reference_asset: str
    decimals: int
    detected_at: int
    resolved_at: int | None = None
    id: int | None = None

    @property
    def is_active(self) -> bool:
        return self.resolved_at is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset": self.asset,
            "depegBps": self.depeg_bps,
            "observedPrice": str(self.observed_price),
            "referencePrice": str(self.reference_price),
            "referenceAsset": self.reference_asset,
            "decimals": self.decimals,
            "detectedAt": self.detected_at,
            "resolvedAt": self.resolved_at,
        }
