"""OperatorConfig: Immutable configuration passed to every component.

Feeds and pegs are parsed from compact strings, as given on the command
line or in the environment:

.. code-block:: python

    >>> feeds = parse_feeds("ETH/USD=0x5f4eC3Df9cbd43714FE2740f5E3616155c5b8419")
    >>> feeds["ETH/USD"].address
    '0x5f4eC3Df9cbd43714FE2740f5E3616155c5b8419'
    >>> parse_pegs("stETH/USD=ETH/USD:1500")["stETH/USD"]
    PegConfig(reference_asset='ETH/USD', threshold_bps=1500)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from .feeds import FeedSource

# 2000 bps = 20%
DEFAULT_DEPEG_THRESHOLD_BPS = 2000


@dataclass(frozen=True)
class PegConfig:
    """Peg relationship of one asset.

    :ivar reference_asset: Asset the pegged asset should trade at par with.
    :ivar threshold_bps: Deviation above which the asset is depegged.
    """

    reference_asset: str
    threshold_bps: int = DEFAULT_DEPEG_THRESHOLD_BPS


@dataclass(frozen=True)
class OperatorConfig:
    """Configuration of one operator process.

    :ivar rpc_url: JSON-RPC endpoint for feeds and task events.
    :ivar redis_url: Redis URL for the price cache and event bus.
    :ivar database_url: SQLAlchemy async URL of the relational store.
    :ivar feeds: Asset to feed source mapping.
    :ivar pegs: Pegged asset to peg configuration mapping.
    :ivar poll_interval: Seconds between feed polls.
    :ivar fetch_timeout: Timeout for a single feed fetch in seconds.
    :ivar max_price_age: Reject feed rounds older than this (None disables).
    :ivar price_ttl: Lifetime of price cache entries in seconds.
    :ivar task_timeout: Timeout for one task handler run in seconds.
    :ivar max_concurrent_tasks: Number of dispatcher workers.
    :ivar task_queue_size: Capacity of the inbound task queue.
    :ivar resolve_depegs_on_recovery: Resolve active depeg events once the
        deviation falls back under the threshold.
    :ivar task_manager_address: Task manager contract to watch (None disables).
    :ivar task_catchup_blocks: Blocks to scan for past tasks at start-up.
    :ivar health_interval: Seconds between health summaries in the log.
    """

    rpc_url: str
    redis_url: str
    database_url: str
    feeds: Mapping[str, FeedSource] = field(default_factory=dict)
    pegs: Mapping[str, PegConfig] = field(default_factory=dict)
    poll_interval: int = 30
    fetch_timeout: float = 10.0
    max_price_age: int | None = None
    price_ttl: int = 300
    task_timeout: float = 30.0
    max_concurrent_tasks: int = 4
    task_queue_size: int = 100
    resolve_depegs_on_recovery: bool = True
    task_manager_address: str | None = None
    task_catchup_blocks: int = 1000
    health_interval: int = 60

    def __post_init__(self) -> None:
        object.__setattr__(self, "feeds", MappingProxyType(dict(self.feeds)))
        object.__setattr__(self, "pegs", MappingProxyType(dict(self.pegs)))

        if self.poll_interval < 1:
            raise ValueError("poll_interval must be at least 1 second")
        if self.fetch_timeout <= 0 or self.task_timeout <= 0:
            raise ValueError("timeouts must be positive")
        if self.max_concurrent_tasks < 1:
            raise ValueError("max_concurrent_tasks must be at least 1")
        if self.task_queue_size < 1:
            raise ValueError("task_queue_size must be at least 1")
        if self.health_interval < 1:
            raise ValueError("health_interval must be at least 1 second")
        for asset, peg in self.pegs.items():
            if peg.threshold_bps < 0:
                raise ValueError(f"Negative depeg threshold for {asset}")
            if peg.reference_asset == asset:
                raise ValueError(f"{asset} cannot be pegged to itself")


def parse_feeds(text: str | None) -> dict[str, FeedSource]:
    """Parse ``asset=address,asset=address``.

    :param text: Comma-separated feed list.
    :returns: Dict mapping asset to FeedSource.
    :raises ValueError: If an entry has no address.
    """
    feeds: dict[str, FeedSource] = {}
    if not text:
        return feeds
    for item in text.split(","):
        item = item.strip()
        if not item:
            continue
        if "=" not in item:
            raise ValueError(f"Invalid feed '{item}'. Expected 'asset=address'")
        asset, address = (part.strip() for part in item.split("=", 1))
        if not asset or not address:
            raise ValueError(f"Invalid feed '{item}'. Expected 'asset=address'")
        if address == "0x0000000000000000000000000000000000000000":
            continue
        feeds[asset] = FeedSource(asset=asset, address=address)
    return feeds


def parse_pegs(text: str | None) -> dict[str, PegConfig]:
    """Parse ``pegged=reference[:threshold_bps],...``.

    :param text: Comma-separated peg list.
    :returns: Dict mapping pegged asset to PegConfig.
    :raises ValueError: If an entry is malformed.
    """
    pegs: dict[str, PegConfig] = {}
    if not text:
        return pegs
    for item in text.split(","):
        item = item.strip()
        if not item:
            continue
        if "=" not in item:
            raise ValueError(f"Invalid peg '{item}'. Expected 'pegged=reference[:bps]'")
        pegged, target = (part.strip() for part in item.split("=", 1))
        reference, _, threshold = target.partition(":")
        if not pegged or not reference:
            raise ValueError(f"Invalid peg '{item}'. Expected 'pegged=reference[:bps]'")
        pegs[pegged] = PegConfig(
            reference_asset=reference.strip(),
            threshold_bps=int(threshold) if threshold else DEFAULT_DEPEG_THRESHOLD_BPS,
        )
    return pegs
