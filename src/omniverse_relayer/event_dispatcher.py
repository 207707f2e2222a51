#!/usr/bin/env python3
"""TransactionSent event dispatching for the Omniverse relayer.

This module turns TransactionSent occurrences from the protocol contract
into relay messages: it decodes the originator key and nonce, fetches the
transaction payload and the current member set, and hands both to the
coordinator callback.
"""

import asyncio
import contextlib
import inspect
import logging
from collections import OrderedDict
from collections.abc import AsyncIterator, Callable, Mapping
from typing import TYPE_CHECKING, Any

from web3.contract import AsyncContract

from .errors import DecodeError
from .models import EventDefinition, RelayMessage, TransactionSentEvent, read_field
from .signature_table import decode_log

if TYPE_CHECKING:
    from .utils.contract_utility import ContractUtility
    from .utils.event_listener_utility import EventListenerUtility

logger = logging.getLogger(__name__)

TRANSACTION_SENT_EVENT = "TransactionSent"
GET_TRANSACTION_DATA_FUNCTION = "getTransactionData"
GET_MEMBERS_FUNCTION = "getMembers"

MessageCallback = Callable[[Any, Any], Any]
ErrorCallback = Callable[[Exception, Mapping[str, Any]], Any]


class EventDispatcher:
    """Resolves TransactionSent occurrences and forwards them to the coordinator.

    This class is responsible for:
    - Decoding raw subscription logs into TransactionSentEvent objects
    - Preventing duplicate forwarding of re-delivered occurrences
    - Undoing local state for occurrences retracted by a reorg
    - Fetching the transaction payload and member set
    - Maintaining metrics on handled occurrences
    """

    def __init__(
        self,
        contract_util: "ContractUtility",
        protocol_contract: AsyncContract,
        token_contract: AsyncContract,
        transaction_sent: EventDefinition,
        listener: "EventListenerUtility",
        chain_name: str = "",
        dedupe_window: int = 1000
    ) -> None:
        """Initialize the EventDispatcher.

        Args:
            contract_util: Utility for read-only contract calls
            protocol_contract: Contract emitting TransactionSent
            token_contract: Contract exposing getMembers
            transaction_sent: Definition of the TransactionSent event
            listener: Log subscription used by ``start``
            chain_name: Chain name used in log messages
            dedupe_window: Maximum number of occurrences tracked for deduplication
        """
        self.contract_util = contract_util
        self.protocol_contract = protocol_contract
        self.token_contract = token_contract
        self.transaction_sent = transaction_sent
        self.listener = listener
        self.chain_name = chain_name
        self.dedupe_window = dedupe_window

        self.on_message: MessageCallback | None = None
        self.on_error: ErrorCallback | None = None
        self.subscription_id: str | None = None

        # Occurrence keys already forwarded, oldest first
        self.processed_events: OrderedDict[tuple[str, int], None] = OrderedDict()

        self.events_forwarded = 0
        self.events_duplicated = 0
        self.events_retracted = 0
        self.events_failed = 0

    async def start(self, on_message: MessageCallback, on_error: ErrorCallback | None = None) -> None:
        """
        Subscribe to TransactionSent and dispatch occurrences until stopped.

        Args:
            on_message: Called with ``(payload, members)`` for each new occurrence
            on_error: Optional observer called with ``(error, raw_event)``

        Raises:
            TransportError: If the subscription cannot be kept alive
        """
        self.on_message = on_message
        self.on_error = on_error
        await self.listener.listen_for_logs(
            contract_address=self.protocol_contract.address,
            topic=self.transaction_sent.signature,
            callback=self.handle_log,
            on_connected=self._on_connected,
            label=TRANSACTION_SENT_EVENT,
        )

    async def stop(self) -> None:
        await self.listener.stop()

    async def stream(self) -> AsyncIterator[RelayMessage]:
        """
        Yield relay messages from the subscription as they arrive.

        Closing the iterator stops the subscription.

        Raises:
            TransportError: If the subscription cannot be kept alive
        """
        queue: asyncio.Queue[RelayMessage] = asyncio.Queue()

        def enqueue(payload: Any, members: Any) -> None:
            queue.put_nowait(RelayMessage(chain_name=self.chain_name, payload=payload, members=members))

        listen_task = asyncio.create_task(self.start(enqueue, self.on_error))
        getter: asyncio.Task | None = None
        try:
            while True:
                getter = asyncio.create_task(queue.get())
                done, _ = await asyncio.wait({getter, listen_task}, return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    yield getter.result()
                    continue

                while not queue.empty():
                    yield queue.get_nowait()
                # Re-raises the subscription failure, if any
                listen_task.result()
                return
        finally:
            if getter is not None:
                getter.cancel()
            await self.stop()
            if not listen_task.done():
                listen_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await listen_task

    def _on_connected(self, subscription_id: str) -> None:
        self.subscription_id = subscription_id
        logger.info(f"[{self.chain_name}] connected, subscription {subscription_id}")

    def parse_event(self, event_data: Mapping[str, Any]) -> TransactionSentEvent:
        """Decode a raw TransactionSent log.

        Raises:
            DecodeError: If the log does not carry pk and nonce
        """
        args = decode_log(self.transaction_sent, event_data)
        if "pk" not in args or "nonce" not in args:
            raise DecodeError(f"TransactionSent log lacks pk/nonce: {sorted(args)}")

        tx_hash = event_data.get("transactionHash") or ""
        if isinstance(tx_hash, bytes):
            tx_hash = "0x" + tx_hash.hex()

        return TransactionSentEvent(
            pk=args["pk"],
            nonce=args["nonce"],
            transaction_hash=str(tx_hash),
            block_number=event_data.get("blockNumber", 0),
            log_index=event_data.get("logIndex", 0),
            removed=bool(event_data.get("removed", False)),
        )

    async def handle_log(self, event_data: Mapping[str, Any]) -> RelayMessage | None:
        """
        Handle one raw log delivered by the subscription.

        Args:
            event_data: Normalized log from the event listener

        Returns:
            RelayMessage if forwarded, None if retracted, duplicate or failed
        """
        try:
            event = self.parse_event(event_data)
            logger.debug(f"[{self.chain_name}] event {event}")

            if event.removed:
                self._handle_changed(event)
                return None

            if event.unique_key in self.processed_events:
                self.events_duplicated += 1
                logger.debug(f"[{self.chain_name}] Duplicate occurrence skipped: {event}")
                return None
            self._mark_processed(event)

            try:
                transaction = await self.contract_util.call(
                    self.protocol_contract, GET_TRANSACTION_DATA_FUNCTION, event.pk, event.nonce
                )
                members = await self.contract_util.call(self.token_contract, GET_MEMBERS_FUNCTION)

                message = RelayMessage(
                    chain_name=self.chain_name,
                    payload=read_field(transaction, "txData", 0),
                    members=members,
                )

                if self.on_message is not None:
                    result = self.on_message(message.payload, message.members)
                    if inspect.isawaitable(result):
                        await result
            except Exception:
                # Let a re-delivery of the same occurrence try again
                self.processed_events.pop(event.unique_key, None)
                raise

            self.events_forwarded += 1
            return message

        except Exception as e:
            self.events_failed += 1
            logger.error(f"[{self.chain_name}] error handling TransactionSent: {e}", exc_info=True)
            if self.on_error is not None:
                self.on_error(e, event_data)
            return None

    def _handle_changed(self, event: TransactionSentEvent) -> None:
        """Forget a retracted occurrence so that a re-delivery is processed again."""
        self.events_retracted += 1
        self.processed_events.pop(event.unique_key, None)
        logger.info(f"[{self.chain_name}] changed: {event}")

    def _mark_processed(self, event: TransactionSentEvent) -> None:
        """Record an occurrence, evicting the oldest when the window is full."""
        if len(self.processed_events) >= self.dedupe_window:
            self.processed_events.popitem(last=False)
        self.processed_events[event.unique_key] = None

    def get_metrics(self) -> dict[str, int]:
        return {
            "events_forwarded": self.events_forwarded,
            "events_duplicated": self.events_duplicated,
            "events_retracted": self.events_retracted,
            "events_failed": self.events_failed,
            "cache_size": len(self.processed_events),
        }

    def log_metrics(self) -> None:
        metrics = self.get_metrics()
        logger.info(
            f"[{self.chain_name}] Dispatcher Metrics: "
            f"Forwarded={metrics['events_forwarded']}, "
            f"Duplicates={metrics['events_duplicated']}, "
            f"Retracted={metrics['events_retracted']}, "
            f"Failed={metrics['events_failed']}, "
            f"Cache={metrics['cache_size']}/{self.dedupe_window}"
        )
