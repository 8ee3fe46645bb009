"""
Price feed clients.

Usage:
    from attestor.src.feeds import ChainlinkFeedClient, FeedSource

    client = ChainlinkFeedClient(w3)
    reading = await client.fetch(FeedSource("ETH/USD", "0x5f4e..."))
"""

from .base import (
    BaseFeedClient,
    FeedError,
    FeedSource,
    FeedUnavailable,
    RoundData,
    StalePrice,
    StaleRound,
)
from .chainlink import ChainlinkFeedClient

__all__ = [
    "BaseFeedClient",
    "ChainlinkFeedClient",
    "FeedError",
    "FeedSource",
    "FeedUnavailable",
    "RoundData",
    "StalePrice",
    "StaleRound",
]
