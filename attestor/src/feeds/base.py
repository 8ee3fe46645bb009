"""Base feed client interface and feed error taxonomy.

A feed client turns one external price source into a PriceReading.
It reports the decimals the source uses and never normalizes. It never
retries: a failed fetch is retried on the next poll cycle.

.. code-block:: python

    class MyFeedClient(BaseFeedClient):
        name = "myfeed"

        async def latest_round(self, source: FeedSource) -> RoundData:
            ...

        async def decimals(self, source: FeedSource) -> int:
            ...
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar, NamedTuple

from ..PriceReading import PriceReading

logger = logging.getLogger(__name__)


class FeedError(Exception):
    """Base exception for feed errors."""

    pass


class FeedUnavailable(FeedError):
    """Raised when the source cannot be read or returns no usable answer."""

    pass


class StaleRound(FeedError):
    """Raised when the source reports an internally inconsistent round."""

    pass


class StalePrice(FeedError):
    """Raised when the latest round is older than the configured maximum age."""

    pass


@dataclass(frozen=True)
class FeedSource:
    """Where to read one asset's price.

    :ivar asset: Asset identifier (e.g., "ETH/USD").
    :ivar address: Feed contract address.
    """

    asset: str
    address: str


class RoundData(NamedTuple):
    round_id: int
    answer: int
    started_at: int
    updated_at: int
    answered_in_round: int


class BaseFeedClient(ABC):
    """Abstract base class for feed clients.

    Subclasses implement latest_round() and decimals(); fetch() combines
    them and validates the round.

    :cvar name: Unique identifier of the client kind.
    :ivar max_age: Optional maximum age of a round in seconds.
    """

    name: ClassVar[str] = ""

    def __init__(self, max_age: int | None = None) -> None:
        """Initialize the client.

        :param max_age: Reject rounds older than this many seconds
            (default: None, no age check).
        """
        self.max_age = max_age

    @abstractmethod
    async def latest_round(self, source: FeedSource) -> RoundData:
        """Read the latest round of a source.

        :param source: Feed to read.
        :returns: Round data as reported.
        """
        pass

    @abstractmethod
    async def decimals(self, source: FeedSource) -> int:
        """Read the number of decimals a source reports.

        :param source: Feed to read.
        """
        pass

    async def fetch(self, source: FeedSource) -> PriceReading:
        """Fetch and validate the latest reading of a source.

        :param source: Feed to read.
        :returns: Validated PriceReading with the source's decimals.
        :raises FeedUnavailable: If the source cannot be read or the answer
            is not positive.
        :raises StaleRound: If the answer was computed in an earlier round
            or the round is incomplete.
        :raises StalePrice: If the round is older than max_age.
        """
        try:
            round_data, decimals = await asyncio.gather(
                self.latest_round(source), self.decimals(source)
            )
        except FeedError:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise FeedUnavailable(f"{source.asset}: {e}") from e

        if round_data.answered_in_round < round_data.round_id:
            raise StaleRound(
                f"{source.asset}: answered in round {round_data.answered_in_round} "
                f"< round {round_data.round_id}"
            )
        if round_data.updated_at == 0:
            raise StaleRound(f"{source.asset}: round {round_data.round_id} not complete")
        if round_data.answer <= 0:
            raise FeedUnavailable(
                f"{source.asset}: non-positive answer {round_data.answer}"
            )
        if self.max_age is not None:
            age = int(time.time()) - round_data.updated_at
            if age > self.max_age:
                raise StalePrice(f"{source.asset}: round is {age}s old (max {self.max_age}s)")

        return PriceReading(
            asset=source.asset,
            raw_value=round_data.answer,
            decimals=decimals,
            updated_at=round_data.updated_at,
            round_id=round_data.round_id,
        )
