"""Chainlink-style aggregator feed client.

Reads ``latestRoundData()`` and ``decimals()`` from an AggregatorV3Interface
contract through an async Web3 provider. Decimals are read once per address
and cached.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from web3 import AsyncWeb3

from ..ContractUtility import ContractUtility
from .base import BaseFeedClient, FeedSource, RoundData

if TYPE_CHECKING:
    from web3.contract import AsyncContract

logger = logging.getLogger(__name__)


class ChainlinkFeedClient(BaseFeedClient):
    """Feed client for AggregatorV3Interface contracts.

    :ivar w3: Async Web3 instance.
    """

    name = "chainlink"

    def __init__(self, w3: AsyncWeb3, max_age: int | None = None) -> None:
        """Initialize the client.

        :param w3: Async Web3 instance connected to the feed chain.
        :param max_age: Optional maximum round age in seconds.
        """
        super().__init__(max_age=max_age)
        self.w3 = w3
        self._abi = ContractUtility.get_abi("AggregatorV3Interface")
        self._contracts: dict[str, AsyncContract] = {}
        self._decimals: dict[str, int] = {}

    def _contract(self, address: str) -> AsyncContract:
        contract = self._contracts.get(address)
        if contract is None:
            contract = self.w3.eth.contract(
                address=AsyncWeb3.to_checksum_address(address), abi=self._abi
            )
            self._contracts[address] = contract
        return contract

    async def latest_round(self, source: FeedSource) -> RoundData:
        result = await self._contract(source.address).functions.latestRoundData().call()
        return RoundData(*result)

    async def decimals(self, source: FeedSource) -> int:
        decimals = self._decimals.get(source.address)
        if decimals is None:
            decimals = int(await self._contract(source.address).functions.decimals().call())
            self._decimals[source.address] = decimals
            logger.debug(f"[{source.asset}] Feed reports {decimals} decimals")
        return decimals
