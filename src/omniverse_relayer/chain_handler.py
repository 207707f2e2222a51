import logging
from typing import Any

from .config import ChainConfig, MonitoringConfig
from .delayed_executor import DelayedExecutor
from .errors import TransportError
from .event_dispatcher import TRANSACTION_SENT_EVENT, ErrorCallback, EventDispatcher, MessageCallback
from .message_batch import MessageBatch
from .models import Outcome
from .signature_table import SignatureTable, find_event
from .utils.contract_utility import ContractUtility
from .utils.event_listener_utility import EventListenerUtility

# Get logger for this module
logger = logging.getLogger(__name__)


class ChainHandler:
    """
    Adapter between one EVM chain and the Omniverse coordinator.

    Owns the chain's client, contract handles and signature table, and
    exposes message submission, delayed execution and the TransactionSent
    subscription.
    """

    def __init__(self, config: ChainConfig, monitoring: MonitoringConfig, secret: str) -> None:
        """
        Args:
            config: Chain configuration
            monitoring: Retry and scheduling settings
            secret: Private key used to sign transactions on this chain
        """
        self.config = config
        self.monitoring = monitoring
        self.chain_name = config.name
        self._secret = secret

        self.contract_util: ContractUtility | None = None
        self.signature_table: SignatureTable | None = None
        self.batch: MessageBatch | None = None
        self.executor: DelayedExecutor | None = None
        self.dispatcher: EventDispatcher | None = None

    async def init(self) -> SignatureTable:
        """
        Connect to the node, load both contracts and build the signature table.

        Returns:
            The token contract's signature table

        Raises:
            ConfigurationError: If an ABI is missing or ambiguous
            TransportError: If the node cannot be reached
        """
        logger.info(f"Init handler: {self.chain_name}, chain id: {self.config.chain_id}")

        self.contract_util = ContractUtility(
            rpc_url=self.config.node_address,
            secret=self._secret,
            chain_id=self.config.chain_id,
            receipt_timeout=self.monitoring.receipt_timeout
        )
        if not await self.contract_util.is_connected():
            raise TransportError(f"Failed to connect to {self.chain_name} at {self.config.node_address}")

        logger.debug("Loading contract ABIs...")
        protocol_abi = ContractUtility.get_contract_abi(self.config.protocol_abi_path)
        token_abi = ContractUtility.get_contract_abi(self.config.token_abi_path)

        protocol_contract = self.contract_util.get_contract(self.config.protocol_contract_address, protocol_abi)
        token_contract = self.contract_util.get_contract(self.config.token_contract_address, token_abi)

        self.signature_table = SignatureTable.build(token_abi)
        transaction_sent = find_event(protocol_abi, TRANSACTION_SENT_EVENT)

        self.batch = MessageBatch(self.contract_util, token_contract, chain_name=self.chain_name)
        self.executor = DelayedExecutor(
            self.contract_util,
            token_contract,
            self.signature_table,
            chain_name=self.chain_name,
            max_triggers=self.monitoring.max_triggers
        )
        listener = EventListenerUtility(
            websocket_url=self.config.websocket_address or self.config.node_address,
            max_retries=self.monitoring.max_retries,
            base_delay=self.monitoring.base_delay,
            max_delay=self.monitoring.max_delay
        )
        self.dispatcher = EventDispatcher(
            self.contract_util,
            protocol_contract,
            token_contract,
            transaction_sent,
            listener,
            chain_name=self.chain_name,
            dedupe_window=self.monitoring.dedupe_window
        )

        logger.info(f"Handler {self.chain_name} initialized")
        return self.signature_table

    def _require_init(self) -> None:
        if self.batch is None or self.executor is None or self.dispatcher is None:
            raise RuntimeError(f"Handler {self.chain_name} used before init()")

    def add_message(self, message: Any) -> None:
        """Queue a message for submission on this chain."""
        self._require_init()
        self.batch.add_message(message)

    async def push_messages(self) -> int:
        """Submit all queued messages; returns how many were submitted."""
        self._require_init()
        return len(await self.batch.push_messages())

    async def try_trigger(self) -> list[Outcome]:
        """Trigger every executable delayed transaction and return the outcomes."""
        self._require_init()
        return await self.executor.run_sweep()

    async def start(self, callback: MessageCallback, on_error: ErrorCallback | None = None) -> None:
        """Dispatch TransactionSent occurrences to ``callback`` until stopped."""
        self._require_init()
        await self.dispatcher.start(callback, on_error)

    async def stop(self) -> None:
        if self.dispatcher is not None:
            await self.dispatcher.stop()

    def get_provider(self) -> Any:
        return self.contract_util.w3 if self.contract_util else None

    def get_metrics(self) -> dict[str, int]:
        metrics: dict[str, int] = {"pending_messages": len(self.batch) if self.batch else 0}
        if self.executor:
            metrics.update(self.executor.get_metrics())
        if self.dispatcher:
            metrics.update(self.dispatcher.get_metrics())
        return metrics

    def log_metrics(self) -> None:
        metrics = self.get_metrics()
        state = self.dispatcher.listener.get_status()["connection_state"] if self.dispatcher else "uninitialized"
        logger.info(
            f"Status [{self.chain_name}]: {metrics['pending_messages']} pending, "
            f"{metrics.get('triggers', 0)} triggered in {metrics.get('sweeps', 0)} sweeps, "
            f"subscription {state}"
        )
        if self.dispatcher:
            self.dispatcher.log_metrics()
