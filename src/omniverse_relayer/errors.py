"""
Error types for the Omniverse relayer.

Outcome events emitted by the token contract are not errors; they are
reported as data by the trigger loop. The exceptions here cover failures
of the relayer itself.
"""

from typing import Any


class RelayerError(Exception):
    """Base class for all relayer errors."""


class ConfigurationError(RelayerError, ValueError):
    """Malformed configuration, missing credential or ambiguous contract ABI.

    Subclasses ValueError so that the entry point reports it together with
    other configuration problems.
    """


class TransportError(RelayerError):
    """Node unreachable, read call failed or subscription dropped."""


class SubmissionError(RelayerError):
    """A state-changing transaction was rejected or reverted.

    Attributes:
        function_name: Contract function that was invoked
        receipt: Transaction receipt, if one was obtained
    """

    def __init__(self, message: str, function_name: str = "", receipt: Any | None = None) -> None:
        super().__init__(message)
        self.function_name = function_name
        self.receipt = receipt


class DecodeError(RelayerError):
    """Log data does not match the layout of the matched event definition."""
