"""
Event Listener Utility for real-time blockchain event monitoring.

Provides WebSocket-based log subscriptions with automatic reconnection and an
explicit shutdown hook.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from web3 import AsyncWeb3, Web3
from web3.exceptions import ProviderConnectionError
from web3.providers import WebSocketProvider
from web3.utils.subscriptions import LogsSubscription, LogsSubscriptionContext

from ..errors import TransportError


class ConnectionState(Enum):
    """Connection state for event listener."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


def convert_to_websocket_url(http_url: str) -> str:
    """Convert HTTP RPC URL to WebSocket URL."""
    if http_url.startswith("https://"):
        return http_url.replace("https://", "wss://", 1)
    if http_url.startswith("http://"):
        return http_url.replace("http://", "ws://", 1)
    return http_url


def _as_int(value: Any) -> int:
    match value:
        case int():
            return value
        case str() if value.startswith("0x"):
            return int(value, 16)
        case str() if value:
            return int(value)
        case _:
            return 0


def normalize_log(log_receipt: Any) -> dict[str, Any]:
    """
    Convert a subscription log receipt into a plain event dict.

    Handles both dict-like receipts and objects with attributes.

    Args:
        log_receipt: Log receipt delivered by the node

    Returns:
        Dict with address, topics, data, block/tx identifiers and the removed flag
    """
    if hasattr(log_receipt, 'get') and callable(log_receipt.get):
        read = log_receipt.get
    else:
        def read(key: str, default: Any = None) -> Any:
            return getattr(log_receipt, key, default)

    return {
        'address': read('address'),
        'blockHash': read('blockHash'),
        'blockNumber': _as_int(read('blockNumber', 0)),
        'data': read('data'),
        'logIndex': _as_int(read('logIndex', 0)),
        'topics': list(read('topics', []) or []),
        'transactionHash': read('transactionHash'),
        'transactionIndex': _as_int(read('transactionIndex', 0)),
        'removed': bool(read('removed', False)),
    }


class EventListenerUtility:
    """
    Utility for listening to contract logs via WebSocket.

    Features:
    - Real-time log subscription through the web3 subscription manager
    - Automatic reconnection with exponential backoff
    - Delivery of reorg retractions (``removed`` logs) to the caller
    - Explicit stop for shutdown
    """

    def __init__(
        self,
        websocket_url: str,
        max_retries: int = 5,
        base_delay: float = 1,
        max_delay: float = 60
    ) -> None:
        """
        Initialize the EventListenerUtility.

        Args:
            websocket_url: WebSocket RPC endpoint URL (HTTP URLs are converted)
            max_retries: Maximum consecutive reconnection attempts
            base_delay: Initial backoff delay in seconds
            max_delay: Upper bound for the backoff delay in seconds
        """
        self.websocket_url = convert_to_websocket_url(websocket_url)
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay

        self.connection_state = ConnectionState.DISCONNECTED
        self.async_w3: AsyncWeb3 | None = None
        self.subscription_id: str | None = None

        self.event_callback: Callable[[dict[str, Any]], Awaitable[Any]] | None = None
        self.connected_callback: Callable[[str], Any] | None = None
        self._stopping = False

        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnection attempt ``attempt`` (1-based)."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    async def listen_for_logs(
        self,
        contract_address: str,
        topic: Any,
        callback: Callable[[dict[str, Any]], Awaitable[Any]],
        on_connected: Callable[[str], Any] | None = None,
        label: str = "logs"
    ) -> None:
        """
        Subscribe to logs of one contract and topic until stopped.

        Args:
            contract_address: Address of the contract to listen to
            topic: Event signature (topic0) to filter on
            callback: Async function called with each normalized log
            on_connected: Called with the subscription id after each (re)subscription
            label: Name used for the subscription in logs

        Raises:
            TransportError: If the connection cannot be re-established
        """
        self.event_callback = callback
        self.connected_callback = on_connected
        self._stopping = False
        retry_count = 0

        while not self._stopping:
            try:
                self.connection_state = ConnectionState.CONNECTING
                self.logger.info(f"Connecting to WebSocket: {self.websocket_url}")

                async with AsyncWeb3(WebSocketProvider(self.websocket_url)) as w3:
                    self.async_w3 = w3
                    self.connection_state = ConnectionState.CONNECTED

                    logs_subscription = LogsSubscription(
                        label=f"{label}-subscription",
                        address=Web3.to_checksum_address(contract_address),
                        topics=[Web3.to_hex(topic)],
                        handler=self._log_handler,
                    )
                    subscription_id = await w3.subscription_manager.subscribe(logs_subscription)
                    self.subscription_id = str(subscription_id)
                    retry_count = 0

                    self.logger.info(f"Subscribed to {label} on {contract_address}: {self.subscription_id}")
                    if self.connected_callback:
                        self.connected_callback(self.subscription_id)

                    await w3.subscription_manager.handle_subscriptions()

                if not self._stopping:
                    self.logger.warning("Subscription ended unexpectedly, reconnecting")

            except (ConnectionError, OSError, ProviderConnectionError) as e:
                if self._stopping:
                    break
                retry_count += 1
                self.logger.warning(
                    f"WebSocket connection failed (attempt {retry_count}/{self.max_retries}): {e}"
                )

                if retry_count >= self.max_retries:
                    self.logger.error("Max WebSocket retries reached")
                    self.connection_state = ConnectionState.FAILED
                    raise TransportError(f"Subscription to {label} lost: {e}") from e

                delay = self.backoff_delay(retry_count)
                self.logger.info(f"Retrying in {delay} seconds...")
                self.connection_state = ConnectionState.RECONNECTING
                await asyncio.sleep(delay)
            finally:
                self.async_w3 = None

        self.connection_state = ConnectionState.DISCONNECTED

    async def _log_handler(self, handler_context: LogsSubscriptionContext) -> None:
        """
        Handler for LogsSubscription events.

        Args:
            handler_context: Context containing the log receipt and subscription details
        """
        try:
            event_data = normalize_log(handler_context.result)
            if self.event_callback:
                await self.event_callback(event_data)
        except Exception as e:
            self.logger.error(f"Error processing subscription event: {e}", exc_info=True)

    async def stop(self) -> None:
        """Stop the listener and unsubscribe."""
        self.logger.info("Stopping event listener...")
        self._stopping = True

        try:
            if self.async_w3 is not None:
                await self.async_w3.subscription_manager.unsubscribe_all()
        except Exception as e:
            self.logger.warning(f"Error during cleanup: {e}")
        finally:
            self.connection_state = ConnectionState.DISCONNECTED
            self.subscription_id = None

    def get_status(self) -> dict[str, Any]:
        return {
            "connection_state": self.connection_state.value,
            "subscription_id": self.subscription_id,
            "websocket_url": self.websocket_url,
        }
