#!/usr/bin/env python3
"""Outbound message batching for the Omniverse relayer.

Messages handed over by the coordinator are queued per chain and submitted
one transaction at a time to the token contract.
"""

import asyncio
import logging
from collections import deque
from typing import TYPE_CHECKING, Any

from web3.contract import AsyncContract
from web3.types import TxReceipt

from .errors import SubmissionError, TransportError

if TYPE_CHECKING:
    from .utils.contract_utility import ContractUtility

logger = logging.getLogger(__name__)

TRANSFER_FUNCTION = "omniverseTransfer"


class MessageBatch:
    """Ordered queue of pending protocol messages for one chain."""

    def __init__(
        self,
        contract_util: "ContractUtility",
        token_contract: AsyncContract,
        chain_name: str = ""
    ) -> None:
        """
        Initialize the MessageBatch.

        Args:
            contract_util: Utility used to submit transactions
            token_contract: Token contract exposing omniverseTransfer
            chain_name: Chain name used in log messages
        """
        self.contract_util = contract_util
        self.token_contract = token_contract
        self.chain_name = chain_name

        self._messages: deque[Any] = deque()
        self._drain_lock = asyncio.Lock()
        self.messages_submitted = 0
        self.messages_failed = 0

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def pending(self) -> list[Any]:
        """Snapshot of the pending messages in submission order."""
        return list(self._messages)

    def add_message(self, message: Any) -> None:
        """Append a message to the pending queue."""
        self._messages.append(message)
        logger.debug(f"[{self.chain_name}] Message queued, {len(self._messages)} pending")

    async def push_messages(self) -> list[TxReceipt]:
        """
        Submit every pending message as its own omniverseTransfer transaction.

        Messages are submitted in insertion order, each awaiting its receipt
        before the next is sent. Only one drain runs at a time.

        Returns:
            Receipts of the submitted transactions, in order

        Raises:
            SubmissionError: If a transaction is rejected; the failed message is
                dropped and the untried ones stay queued
            TransportError: If the node cannot be reached

        Any other error leaves the current message at the head of the queue.
        """
        receipts: list[TxReceipt] = []

        async with self._drain_lock:
            if not self._messages:
                return receipts

            logger.info(f"[{self.chain_name}] Pushing {len(self._messages)} messages")

            while self._messages:
                message = self._messages[0]
                try:
                    receipt = await self.contract_util.send_transaction(
                        self.token_contract, TRANSFER_FUNCTION, message
                    )
                except (SubmissionError, TransportError) as e:
                    # Attempted, so not resubmitted
                    self._messages.popleft()
                    self.messages_failed += 1
                    logger.error(
                        f"[{self.chain_name}] ✗ Message submission failed, "
                        f"{len(self._messages)} left pending: {e}"
                    )
                    raise

                self._messages.popleft()
                self.messages_submitted += 1
                receipts.append(receipt)
                logger.info(
                    f"[{self.chain_name}] ✓ Message submitted in block {receipt.get('blockNumber')}"
                )

        return receipts
