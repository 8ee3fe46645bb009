"""ContractUtility: Async Web3 initialization and contract ABI loading."""

import json
from pathlib import Path

from web3 import AsyncWeb3


class ContractUtility:
    """Utility for the Web3 connection and contract ABI loading.

    :ivar rpc_url: JSON-RPC endpoint.
    :ivar w3: Async Web3 instance.
    """

    def __init__(self, rpc_url: str) -> None:
        """Initialize the contract utility.

        :param rpc_url: HTTP JSON-RPC endpoint of the chain.
        """
        self.rpc_url = rpc_url
        self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))

    @staticmethod
    def get_abi(contract_name: str) -> list:
        """Load the ABI of a contract from the bundled abi folder.

        :param contract_name: Name of the contract (e.g., "TaskManager").
        :returns: Contract ABI.
        """
        abi_path = (Path(__file__).parent.parent / "abi" / f"{contract_name}.json").resolve()

        with open(abi_path, "r") as file:
            return json.load(file)
