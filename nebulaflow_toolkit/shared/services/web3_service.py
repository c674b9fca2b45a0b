"""
Web3 Service module for talking to the NebulaFlow ledger node.

This module provides a Web3Service class that owns the connection to the
chain hosting the activity registry and hands out cached contract objects.
"""

from typing import Any, Dict, Optional, Tuple

from web3 import Web3

from nebulaflow_toolkit.shared.constants import GlobalConstants
from nebulaflow_toolkit.shared.services.resource_manager import (
    resource_manager,
)


class Web3Service:
    """
    A service class for managing the Web3 connection and contract objects.

    Contract objects are cached per (address, abi) pair, so repeated
    reconciliation passes don't rebuild them.
    """

    _instances: Dict[Tuple[int, str], "Web3Service"] = {}

    def __init__(
        self,
        chain_id: int,
        rpc_url: str,
        request_timeout: Optional[float] = None,
    ):
        """
        Initialize the Web3Service.

        Args:
            chain_id (int): The chain ID to use.
            rpc_url (str): The RPC URL to use.
            request_timeout (float): Optional HTTP timeout in seconds.
        """
        self.chain_id = chain_id
        self.rpc_url = rpc_url
        self.w3 = self._initialize_web3(rpc_url, request_timeout)
        self._contract_cache: Dict[Tuple[str, str], Any] = {}

    def _initialize_web3(
        self, rpc_url: str, request_timeout: Optional[float]
    ) -> Web3:
        request_kwargs = (
            {"timeout": request_timeout} if request_timeout else None
        )
        return Web3(Web3.HTTPProvider(rpc_url, request_kwargs=request_kwargs))

    @classmethod
    def get_instance(
        cls, chain_id: Optional[int] = None, rpc_url: Optional[str] = None
    ) -> "Web3Service":
        """Get or create a Web3Service for a chain/RPC pair"""
        chain_id = chain_id or GlobalConstants.get_chain_id()
        rpc_url = rpc_url or GlobalConstants.get_rpc_url()
        key = (chain_id, rpc_url)

        if key not in cls._instances:
            cls._instances[key] = cls(
                chain_id,
                rpc_url,
                request_timeout=GlobalConstants.get_validation_timeout(),
            )

        return cls._instances[key]

    def get_contract(self, address: str, abi_name: str) -> Any:
        """Get a contract instance for a given address and ABI name"""
        key = (address.lower(), abi_name)
        if key not in self._contract_cache:
            abi = resource_manager.load_abi(abi_name)
            self._contract_cache[key] = self.w3.eth.contract(
                address=Web3.to_checksum_address(address.lower()), abi=abi
            )
        return self._contract_cache[key]

    def forget_contract(self, address: str) -> None:
        """Drop cached contract objects for an address (ledger redeploy)"""
        for key in [k for k in self._contract_cache if k[0] == address.lower()]:
            del self._contract_cache[key]
