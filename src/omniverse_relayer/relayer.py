"""
Omniverse Relayer implementation.

This module contains the router that runs one handler per configured chain,
forwards TransactionSent payloads from each chain to all the others and
periodically drains the outbound batches and triggers delayed execution.
"""

import asyncio
import logging
from typing import Any

from .chain_handler import ChainHandler
from .config import RelayerConfig
from .errors import RelayerError
from .utils.key_provider import KeyProvider

logger = logging.getLogger(__name__)


class Router:
    """
    Main relayer service that owns every chain handler.

    This class focuses on coordination and lifecycle management, delegating
    per-chain work to ChainHandler.
    """

    def __init__(self, config: RelayerConfig, key_provider: KeyProvider | None = None):
        """
        Initialize the Router.

        Args:
            config: Relayer configuration
            key_provider: Source of signing keys (defaults to one built from config)
        """
        self.config = config
        self.key_provider = key_provider or KeyProvider(config)
        self.handlers: dict[str, ChainHandler] = {}
        self.running = False

        # Async coordination
        self.shutdown_event = asyncio.Event()

    @classmethod
    def from_env(cls, local_mode: bool = False) -> "Router":
        """
        Create a Router instance from the environment.

        Args:
            local_mode: Read keys from the secret file instead of ROFL

        Returns:
            Configured Router instance

        Raises:
            ValueError: If the configuration is missing or invalid
        """
        config = RelayerConfig.from_env(local_mode=local_mode)
        config.log_config()
        return cls(config)

    async def init_handlers(self) -> None:
        """Resolve keys and initialize one handler per configured network."""
        logger.info("Initializing chain handlers...")
        for chain in self.config.networks:
            secret = await self.key_provider.get_key(chain.name)
            handler = ChainHandler(chain, self.config.monitoring, secret)
            await handler.init()
            self.handlers[chain.name] = handler
        logger.info(f"Initialized {len(self.handlers)} chain handlers: {', '.join(self.handlers)}")

    def make_callback(self, origin: str):
        """Build the dispatcher callback for the chain named ``origin``."""
        def on_message(payload: Any, members: Any) -> None:
            logger.info(f"Message from {origin}, {len(members) if members else 0} members")
            self.forward(origin, payload)
        return on_message

    def forward(self, origin: str, payload: Any) -> list[str]:
        """Queue a payload on every chain except the one it came from."""
        targets = [name for name in self.handlers if name != origin]
        for name in targets:
            self.handlers[name].add_message(payload)
        logger.debug(f"Forwarded message from {origin} to {targets}")
        return targets

    async def scan_once(self) -> None:
        """Push pending messages and run a trigger sweep on every chain in turn."""
        for name, handler in self.handlers.items():
            try:
                pushed = await handler.push_messages()
                if pushed:
                    logger.info(f"[{name}] ✓ pushed {pushed} messages")
            except RelayerError as e:
                logger.error(f"[{name}] ✗ push failed: {e}")

            try:
                outcomes = await handler.try_trigger()
                if outcomes:
                    logger.info(f"[{name}] ✓ sweep produced {len(outcomes)} outcomes")
            except RelayerError as e:
                logger.error(f"[{name}] ✗ trigger sweep failed: {e}")

    async def _periodic_scan(self) -> None:
        while self.running:
            await self.scan_once()
            await asyncio.sleep(self.config.monitoring.scan_interval)

    async def _periodic_status_logger(self) -> None:
        """Log status periodically while running."""
        while self.running:
            await asyncio.sleep(self.config.monitoring.status_interval)
            for handler in self.handlers.values():
                handler.log_metrics()

    async def _check_task_health(self, tasks: dict[str, asyncio.Task]) -> bool:
        """Check if any critical task has failed."""
        for name, task in tasks.items():
            if task.done() and name != "status":
                try:
                    await task
                except Exception as e:
                    logger.error(f"{name} task failed: {e}", exc_info=True)
                return False
        return True

    async def _cleanup_tasks(self, tasks: dict[str, asyncio.Task]) -> None:
        """Stop every dispatcher and cancel the remaining tasks."""
        for handler in self.handlers.values():
            try:
                await handler.stop()
            except Exception as e:
                logger.warning(f"Error stopping {handler.chain_name}: {e}")

        for task in tasks.values():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    async def run(self) -> None:
        """Main event loop for the relayer service."""
        self.running = True
        logger.info("Omniverse Relayer starting...")
        logger.info(f"Scan interval: {self.config.monitoring.scan_interval}s")

        tasks: dict[str, asyncio.Task] = {}
        try:
            await self.init_handlers()

            for name, handler in self.handlers.items():
                tasks[f"{name}-dispatcher"] = asyncio.create_task(handler.start(self.make_callback(name)))
            tasks["scan"] = asyncio.create_task(self._periodic_scan())
            tasks["status"] = asyncio.create_task(self._periodic_status_logger())

            logger.info("Event monitoring started, waiting for events...")

            while self.running:
                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=1.0)
                    break
                except asyncio.TimeoutError:
                    pass

                if not await self._check_task_health(tasks):
                    logger.error("Critical task failure, shutting down")
                    break

        except Exception as e:
            logger.error(f"Error in main loop: {e}", exc_info=True)
            raise
        finally:
            await self._cleanup_tasks(tasks)
            self.running = False
            logger.info("Omniverse Relayer stopped")

    def stop(self) -> None:
        """Stop the relayer service."""
        self.running = False
        self.shutdown_event.set()
