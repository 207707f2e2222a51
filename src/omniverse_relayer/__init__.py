"""
Omniverse Relayer package.

Chain adapter that relays Omniverse protocol messages between EVM chains and
triggers execution of delayed token transactions.
"""

from .chain_handler import ChainHandler
from .config import ChainConfig, MonitoringConfig, RelayerConfig
from .errors import ConfigurationError, DecodeError, RelayerError, SubmissionError, TransportError
from .models import OutcomeKind
from .relayer import Router
from .signature_table import SignatureTable

__all__ = [
    "ChainConfig",
    "ChainHandler",
    "ConfigurationError",
    "DecodeError",
    "MonitoringConfig",
    "OutcomeKind",
    "RelayerConfig",
    "RelayerError",
    "Router",
    "SignatureTable",
    "SubmissionError",
    "TransportError",
]
__version__ = "0.1.0"
