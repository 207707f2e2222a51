#!/usr/bin/env python3
"""Delayed transaction execution for the Omniverse relayer.

Each sweep repeatedly asks the token contract for the next executable
delayed transaction, triggers its execution and classifies the events of the
resulting receipt, until the contract reports nothing left to execute.
"""

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from web3.contract import AsyncContract
from web3.types import TxReceipt

from .errors import DecodeError
from .models import DelayedTransaction, Outcome
from .signature_table import SignatureTable

if TYPE_CHECKING:
    from .utils.contract_utility import ContractUtility

logger = logging.getLogger(__name__)

GET_DELAYED_TX_FUNCTION = "getExecutableDelayedTx"
TRIGGER_FUNCTION = "triggerExecution"


class DelayedExecutor:
    """Discovers, triggers and classifies delayed transactions on one chain."""

    def __init__(
        self,
        contract_util: "ContractUtility",
        token_contract: AsyncContract,
        signature_table: SignatureTable,
        chain_name: str = "",
        max_triggers: int = 0
    ) -> None:
        """
        Initialize the DelayedExecutor.

        Args:
            contract_util: Utility for calls and transaction submission
            token_contract: Token contract holding the delayed transactions
            signature_table: Outcome events of the token contract
            chain_name: Chain name used in log messages
            max_triggers: Upper bound of triggers per sweep, 0 for no bound
        """
        self.contract_util = contract_util
        self.token_contract = token_contract
        self.signature_table = signature_table
        self.chain_name = chain_name
        self.max_triggers = max_triggers

        self.sweeps = 0
        self.triggers = 0
        self.undecodable_logs = 0

    async def poll(self) -> DelayedTransaction:
        """Ask the token contract for the next executable delayed transaction."""
        result = await self.contract_util.call(self.token_contract, GET_DELAYED_TX_FUNCTION)
        return DelayedTransaction.from_call_result(result)

    async def run_sweep(self) -> list[Outcome]:
        """
        Trigger every currently executable delayed transaction.

        Read or submission failures propagate and abort the sweep; the
        caller retries on its next scheduled run.

        Returns:
            Classified outcomes of all triggered executions, in order
        """
        outcomes: list[Outcome] = []
        triggered = 0
        self.sweeps += 1

        while True:
            delayed_tx = await self.poll()
            if delayed_tx.is_empty:
                break

            logger.debug(f"[{self.chain_name}] Delayed transaction: {delayed_tx}")
            receipt = await self.contract_util.send_transaction(self.token_contract, TRIGGER_FUNCTION)
            triggered += 1
            self.triggers += 1

            outcomes.extend(self.classify_receipt(receipt))

            if self.max_triggers and triggered >= self.max_triggers:
                logger.info(f"[{self.chain_name}] Trigger limit of {self.max_triggers} reached for this sweep")
                break

        if triggered:
            logger.info(f"[{self.chain_name}] Sweep triggered {triggered} delayed transactions")
        return outcomes

    def classify_receipt(self, receipt: TxReceipt | Mapping[str, Any]) -> list[Outcome]:
        """
        Classify the token contract events of a triggerExecution receipt.

        Logs emitted by other contracts are ignored. Logs that match a
        recognised signature but cannot be decoded are reported and skipped.

        Args:
            receipt: Transaction receipt

        Returns:
            Outcomes in log order
        """
        token_address = str(self.token_contract.address).lower()
        outcomes: list[Outcome] = []

        for log in receipt.get("logs", []):
            if str(log.get("address", "")).lower() != token_address:
                continue
            try:
                outcome = self.signature_table.classify(log)
            except DecodeError as e:
                self.undecodable_logs += 1
                logger.warning(f"[{self.chain_name}] Skipping undecodable log {log.get('logIndex')}: {e}")
                continue

            if outcome is not None:
                logger.info(f"[{self.chain_name}] {outcome.describe()}")
                outcomes.append(outcome)

        return outcomes

    def get_metrics(self) -> dict[str, int]:
        return {
            "sweeps": self.sweeps,
            "triggers": self.triggers,
            "undecodable_logs": self.undecodable_logs,
        }
