#!/usr/bin/env python3
"""Configuration management for the Omniverse relayer.

This module provides type-safe configuration dataclasses with validation.
Configuration is loaded from a JSON file whose path comes from the command
line or the RELAYER_CONFIG environment variable, with sensible defaults for
monitoring settings.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from web3 import Web3

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/default.json"


def _checksum(address: str, label: str) -> str:
    if not address:
        raise ConfigurationError(f"{label} is required")
    if not Web3.is_address(address):
        raise ConfigurationError(f"Invalid {label}: {address}")
    return Web3.to_checksum_address(address)


def _check_url(url: str, label: str, schemes: tuple[str, ...]) -> None:
    if not url:
        raise ConfigurationError(f"{label} is required")
    parsed = urlparse(url)
    if parsed.scheme not in schemes:
        raise ConfigurationError(
            f"Invalid {label} scheme: {parsed.scheme}. Expected {', '.join(schemes)}"
        )


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """Configuration for one target chain.

    Attributes:
        name: Chain name, also the key of the chain's secret
        node_address: HTTP(S) RPC endpoint
        chain_id: Numeric chain identifier
        protocol_contract_address: Checksummed address of the protocol contract
        protocol_abi_path: Path to the protocol contract ABI
        token_contract_address: Checksummed address of the token contract
        token_abi_path: Path to the token contract ABI
        websocket_address: WebSocket endpoint (derived from node_address if unset)
    """

    name: str
    node_address: str
    chain_id: int
    protocol_contract_address: str
    protocol_abi_path: str
    token_contract_address: str
    token_abi_path: str
    websocket_address: str | None = None

    def __post_init__(self) -> None:
        """Validate chain configuration."""
        if not self.name:
            raise ConfigurationError("Chain name is required")

        _check_url(self.node_address, f"{self.name} node address", ('http', 'https'))
        if self.websocket_address:
            _check_url(self.websocket_address, f"{self.name} websocket address", ('ws', 'wss'))

        if not isinstance(self.chain_id, int) or self.chain_id <= 0:
            raise ConfigurationError(f"{self.name} chain id must be a positive integer, got {self.chain_id}")

        if not self.protocol_abi_path or not self.token_abi_path:
            raise ConfigurationError(f"{self.name} requires protocol_abi_path and token_abi_path")

        # Use object.__setattr__ since dataclass is frozen
        object.__setattr__(
            self, 'protocol_contract_address',
            _checksum(self.protocol_contract_address, f"{self.name} protocol contract address")
        )
        object.__setattr__(
            self, 'token_contract_address',
            _checksum(self.token_contract_address, f"{self.name} token contract address")
        )

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> "ChainConfig":
        try:
            return cls(
                name=name,
                node_address=data["node_address"],
                chain_id=data["chain_id"],
                protocol_contract_address=data["protocol_contract_address"],
                protocol_abi_path=data["protocol_abi_path"],
                token_contract_address=data["token_contract_address"],
                token_abi_path=data["token_abi_path"],
                websocket_address=data.get("websocket_address"),
            )
        except KeyError as e:
            raise ConfigurationError(f"Network {name} is missing setting {e}") from None


@dataclass(frozen=True, slots=True)
class MonitoringConfig:
    """Configuration for scheduling, subscriptions and submissions."""
    scan_interval: int = 5  # seconds between batch pushes and trigger sweeps
    status_interval: int = 30  # seconds between status log lines
    max_retries: int = 5  # consecutive websocket reconnection attempts
    base_delay: float = 1  # initial reconnection backoff in seconds
    max_delay: float = 60  # maximum reconnection backoff in seconds
    dedupe_window: int = 1000  # occurrences remembered for deduplication
    receipt_timeout: int = 120  # seconds to wait for a transaction receipt
    max_triggers: int = 0  # triggers per sweep, 0 for no limit

    def __post_init__(self) -> None:
        """Validate monitoring configuration."""
        if self.scan_interval <= 0:
            raise ConfigurationError(f"Scan interval must be positive, got {self.scan_interval}")
        if self.status_interval <= 0:
            raise ConfigurationError(f"Status interval must be positive, got {self.status_interval}")
        if self.max_retries < 1:
            raise ConfigurationError(f"Max retries must be at least 1, got {self.max_retries}")
        if self.base_delay <= 0 or self.max_delay < self.base_delay:
            raise ConfigurationError(
                f"Backoff delays must satisfy 0 < base_delay <= max_delay, got {self.base_delay}/{self.max_delay}"
            )
        if self.dedupe_window <= 0:
            raise ConfigurationError(f"Dedupe window must be positive, got {self.dedupe_window}")
        if self.receipt_timeout <= 0:
            raise ConfigurationError(f"Receipt timeout must be positive, got {self.receipt_timeout}")
        if self.max_triggers < 0:
            raise ConfigurationError(f"Max triggers must be non-negative, got {self.max_triggers}")


@dataclass(frozen=True, slots=True)
class RelayerConfig:
    """Main configuration for the Omniverse relayer.

    Attributes:
        networks: Per-chain configuration, in file order
        secret_path: JSON file mapping chain name to private key (local mode)
        monitoring: Scheduling and retry settings
        local_mode: Whether keys come from the secret file instead of ROFL
    """

    networks: tuple[ChainConfig, ...]
    secret_path: str | None = None
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    local_mode: bool = False

    def __post_init__(self) -> None:
        """Validate relayer configuration."""
        if not self.networks:
            raise ConfigurationError("At least one network must be configured")

        names = [chain.name for chain in self.networks]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate network names: {names}")

        if self.local_mode and not self.secret_path:
            raise ConfigurationError("Local mode requires a secret file (\"secret\" setting)")

    @classmethod
    def from_file(cls, path: str | Path, local_mode: bool = False) -> "RelayerConfig":
        """Load configuration from a JSON file.

        Args:
            path: Path to the configuration file
            local_mode: Whether to run in local mode

        Returns:
            RelayerConfig instance with loaded values

        Raises:
            ConfigurationError: If the file is missing or invalid
        """
        try:
            with Path(path).open() as file:
                data: dict[str, Any] = json.load(file)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read configuration {path}: {e}") from e

        networks = data.get("networks") or {}
        if not isinstance(networks, dict):
            raise ConfigurationError("\"networks\" must be an object keyed by chain name")

        monitoring_data = dict(data.get("monitoring") or {})
        if "scan_interval" in data:
            monitoring_data.setdefault("scan_interval", data["scan_interval"])
        try:
            monitoring = MonitoringConfig(**monitoring_data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid monitoring settings: {e}") from None

        return cls(
            networks=tuple(ChainConfig.from_dict(name, chain) for name, chain in networks.items()),
            secret_path=data.get("secret"),
            monitoring=monitoring,
            local_mode=local_mode,
        )

    @classmethod
    def from_env(cls, local_mode: bool = False) -> "RelayerConfig":
        """Load configuration from the file named by RELAYER_CONFIG.

        RELAYER_SECRET overrides the secret file path from the file.
        """
        path = os.environ.get("RELAYER_CONFIG", DEFAULT_CONFIG_PATH)
        config = cls.from_file(path, local_mode=False)

        secret_path = os.environ.get("RELAYER_SECRET", config.secret_path)
        return cls(
            networks=config.networks,
            secret_path=secret_path,
            monitoring=config.monitoring,
            local_mode=local_mode,
        )

    def get_chain(self, name: str) -> ChainConfig:
        for chain in self.networks:
            if chain.name == name:
                return chain
        raise ConfigurationError(f"Unknown network: {name}")

    def load_secret(self, chain_name: str) -> str:
        """Read the private key of a chain from the secret file.

        Raises:
            ConfigurationError: If the file is unreadable or has no key for the chain
        """
        if not self.secret_path:
            raise ConfigurationError("No secret file configured")

        try:
            with Path(self.secret_path).open() as file:
                secrets: Any = json.load(file)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read secret file {self.secret_path}: {e}") from e

        if not isinstance(secrets, dict) or not secrets.get(chain_name):
            raise ConfigurationError(f"Secret file has no key for {chain_name}")
        return secrets[chain_name]

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("Omniverse Relayer Configuration")
        logger.info("=" * 60)

        for chain in self.networks:
            logger.info(f"Network {chain.name}:")
            logger.info(f"  Node: {chain.node_address}")
            if chain.websocket_address:
                logger.info(f"  WebSocket: {chain.websocket_address}")
            logger.info(f"  Chain ID: {chain.chain_id}")
            logger.info(f"  Protocol Contract: {chain.protocol_contract_address}")
            logger.info(f"  Token Contract: {chain.token_contract_address}")

        logger.info("Monitoring Settings:")
        logger.info(f"  Scan Interval: {self.monitoring.scan_interval} seconds")
        logger.info(f"  Max Retries: {self.monitoring.max_retries}")
        logger.info(f"  Receipt Timeout: {self.monitoring.receipt_timeout} seconds")
        logger.info(f"  Max Triggers: {self.monitoring.max_triggers or 'unlimited'}")

        logger.info(f"Mode: {'LOCAL' if self.local_mode else 'ROFL'}")
        if self.local_mode:
            logger.info("  Secret File: [CONFIGURED]")

        logger.info("=" * 60)
