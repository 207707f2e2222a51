import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.contract import AsyncContract
from web3.middleware import SignAndSendRawMiddlewareBuilder
from web3.types import TxReceipt

from ..errors import ConfigurationError, SubmissionError, TransportError

logger = logging.getLogger(__name__)


class ContractUtility:
    """
    Async utility for contract interaction and ABI loading on one chain.

    Can be used in two modes:
    1. Full mode: Initialize with RPC URL and secret for signing transactions
    2. Read-only mode: Initialize with RPC URL only for contract calls

    State-changing submissions are serialized so that only one transaction
    per account is in flight at a time.
    """

    def __init__(
        self,
        rpc_url: str,
        secret: str = "",
        chain_id: int | None = None,
        receipt_timeout: int = 120
    ) -> None:
        """
        Initialize the ContractUtility.

        Args:
            rpc_url: HTTP(S) RPC URL for the network (required)
            secret: Private key for signing transactions (optional - read-only mode if empty)
            chain_id: Chain ID added to every transaction
            receipt_timeout: Seconds to wait for a transaction receipt
        """
        if not rpc_url:
            raise ConfigurationError("RPC URL is required")

        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.receipt_timeout = receipt_timeout
        self.account: LocalAccount | None = None

        self.w3 = AsyncWeb3(AsyncHTTPProvider(self.rpc_url))

        if secret:
            self._add_signing_middleware(secret)

        self._tx_lock = asyncio.Lock()

    def _add_signing_middleware(self, secret: str) -> None:
        """
        Add signing middleware to the existing Web3 instance.

        Args:
            secret: Private key for signing transactions
        """
        try:
            account: LocalAccount = Account.from_key(secret)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid private key: {e}") from None

        self.w3.middleware_onion.add(SignAndSendRawMiddlewareBuilder.build(account))
        self.w3.eth.default_account = account.address
        self.account = account

    @staticmethod
    def get_contract_abi(abi_path: str | Path) -> list[dict[str, Any]]:
        """Load a contract ABI from a JSON file.

        The file may hold either a bare ABI list or a build artifact
        with an "abi" key.

        Args:
            abi_path: Path to the JSON file

        Returns:
            List of ABI dictionaries for the contract

        Raises:
            ConfigurationError: If the file is missing or malformed
        """
        path = Path(abi_path)
        try:
            with path.open() as file:
                contract_data: Any = json.load(file)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot load ABI from {path}: {e}") from e

        match contract_data:
            case list() as abi:
                return abi
            case {"abi": list() as abi}:
                return abi
            case _:
                raise ConfigurationError(f"No ABI found in {path}")

    def get_contract(self, address: str, abi: list[dict[str, Any]]) -> AsyncContract:
        """Create a contract handle bound to this utility's Web3 instance."""
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    async def is_connected(self) -> bool:
        return await self.w3.is_connected()

    async def call(self, contract: AsyncContract, function_name: str, *args: Any) -> Any:
        """
        Invoke a read-only contract function.

        Args:
            contract: Contract handle
            function_name: Name of the view function
            *args: Function arguments

        Returns:
            Decoded return value

        Raises:
            TransportError: If the call fails
        """
        try:
            return await getattr(contract.functions, function_name)(*args).call()
        except Exception as e:
            raise TransportError(f"Call {function_name} on {contract.address} failed: {e}") from e

    async def send_transaction(self, contract: AsyncContract, function_name: str, *args: Any) -> TxReceipt:
        """
        Submit a state-changing transaction and wait for its receipt.

        Args:
            contract: Contract handle
            function_name: Name of the contract function to invoke
            *args: Function arguments

        Returns:
            Transaction receipt with status 1

        Raises:
            ConfigurationError: If no signing key is configured
            SubmissionError: If the transaction is rejected, reverted or times out
        """
        if self.account is None:
            raise ConfigurationError("A private key is required to submit transactions")

        tx_params: dict[str, Any] = {"from": self.account.address}
        if self.chain_id is not None:
            tx_params["chainId"] = self.chain_id

        async with self._tx_lock:
            try:
                tx_hash: HexBytes = await getattr(contract.functions, function_name)(*args).transact(tx_params)
                logger.debug(f"{function_name} submitted: {Web3.to_hex(tx_hash)}")
                receipt: TxReceipt = await self.w3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=self.receipt_timeout
                )
            except Exception as e:
                raise SubmissionError(f"{function_name} transaction failed: {e}", function_name) from e

        if (status := receipt.get("status", 0)) != 1:
            raise SubmissionError(
                f"{function_name} transaction reverted with status={status}",
                function_name,
                receipt
            )

        logger.debug(f"{function_name} confirmed in block {receipt.get('blockNumber')}")
        return receipt
