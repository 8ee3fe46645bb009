"""PriceReading: A single round reported by an external price feed.

Readings keep the raw integer answer and the decimals the feed reports.
Scaling to a common precision is done explicitly by the consumer:

.. code-block:: python

    >>> reading = PriceReading("ETH/USD", 200000000000, 8, 1700000000, 42)
    >>> reading.scaled_to(18)
    2000000000000000000000
    >>> reading.to_dict()["price"]
    '200000000000'
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

# Precision used when a reading is published to other components.
NORMALIZED_DECIMALS = 18


@dataclass(frozen=True)
class PriceReading:
    """Latest answer of a feed for one asset.

    :ivar asset: Asset identifier (e.g., "stETH/USD").
    :ivar raw_value: Integer answer as reported by the feed.
    :ivar decimals: Number of decimals the feed reports.
    :ivar updated_at: Unix timestamp of the round update.
    :ivar round_id: Feed round identifier.
    """

    asset: str
    raw_value: int
    decimals: int
    updated_at: int
    round_id: int

    def __post_init__(self) -> None:
        if self.raw_value <= 0:
            raise ValueError(f"{self.asset}: price must be positive, got {self.raw_value}")
        if self.decimals < 0:
            raise ValueError(f"{self.asset}: decimals must be non-negative")

    def scaled_to(self, decimals: int) -> int:
        """Rescale the raw value to the given number of decimals.

        Scaling up is exact. Scaling down floors toward zero.

        :param decimals: Target number of decimals.
        :returns: Integer price at the target precision.
        """
        if decimals >= self.decimals:
            return self.raw_value * 10 ** (decimals - self.decimals)
        return self.raw_value // 10 ** (self.decimals - decimals)

    @property
    def normalized_value(self) -> int:
        """Price scaled to NORMALIZED_DECIMALS."""
        return self.scaled_to(NORMALIZED_DECIMALS)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the price cache and price-update channel.

        Big integers are carried as decimal strings.
        """
        return {
            "asset": self.asset,
            "price": str(self.raw_value),
            "decimals": self.decimals,
            "updatedAt": self.updated_at,
            "roundId": str(self.round_id),
            "normalizedPrice": str(self.normalized_value),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PriceReading:
        """Parse a serialized reading.

        :param data: Dict produced by to_dict().
        :returns: New PriceReading.
        :raises KeyError: If a field is missing.
        :raises ValueError: If a field is invalid.
        """
        return cls(
            asset=str(data["asset"]),
            raw_value=int(data["price"]),
            decimals=int(data["decimals"]),
            updated_at=int(data["updatedAt"]),
            round_id=int(data["roundId"]),
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> PriceReading:
        return cls.from_dict(json.loads(raw))
