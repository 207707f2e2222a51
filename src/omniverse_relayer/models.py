#!/usr/bin/env python3
"""Data models for the Omniverse relayer.

This module provides immutable data classes for the values that flow
through the relayer: event definitions, subscription occurrences, delayed
transactions and the closed set of execution outcomes.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

from hexbytes import HexBytes

from .errors import DecodeError


class OutcomeKind(Enum):
    """Recognised on-chain execution results, valued by ABI event name."""
    ERROR = "OmniverseError"
    NOT_OWNER = "OmniverseNotOwner"
    WRONG_OP = "OmniverseTokenWrongOp"
    EXCEED_BALANCE = "OmniverseTokenExceedBalance"
    TRANSFER_FROM = "OmniverseTokenTransferFrom"
    APPROVAL = "OmniverseTokenApproval"
    TRANSFER = "OmniverseTokenTransfer"


# First match wins when classifying a receipt log
OUTCOME_PRIORITY: tuple[OutcomeKind, ...] = (
    OutcomeKind.ERROR,
    OutcomeKind.NOT_OWNER,
    OutcomeKind.WRONG_OP,
    OutcomeKind.EXCEED_BALANCE,
    OutcomeKind.TRANSFER_FROM,
    OutcomeKind.APPROVAL,
    OutcomeKind.TRANSFER,
)


@dataclass(frozen=True, slots=True)
class EventDefinition:
    """One recognised event type from a contract ABI.

    Attributes:
        name: Event name as declared in the ABI
        inputs: Ordered ABI parameter descriptors
        signature: keccak256 of the canonical event signature (topic0)
    """
    name: str
    inputs: tuple[Mapping[str, Any], ...]
    signature: HexBytes

    @property
    def kind(self) -> OutcomeKind | None:
        try:
            return OutcomeKind(self.name)
        except ValueError:
            return None

    def __str__(self) -> str:
        return f"EventDefinition({self.name}, topic={self.signature.to_0x_hex()[:10]}...)"


def _require(args: Mapping[str, Any], *names: str) -> list[Any]:
    missing = [name for name in names if name not in args]
    if missing:
        raise DecodeError(f"Decoded log is missing fields: {', '.join(missing)}")
    return [args[name] for name in names]


@dataclass(frozen=True, slots=True)
class ExecutionError:
    """Generic execution failure reported by the token contract."""
    kind: ClassVar[OutcomeKind] = OutcomeKind.ERROR
    sender: Any
    reason: str

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "ExecutionError":
        return cls(*_require(args, "sender", "reason"))

    def describe(self) -> str:
        return f"Execute failed: sent by {self.sender}, the reason is {self.reason}."

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.name, "sender": self.sender, "reason": self.reason}


@dataclass(frozen=True, slots=True)
class NotOwner:
    """Execution rejected because the sender does not own the tokens."""
    kind: ClassVar[OutcomeKind] = OutcomeKind.NOT_OWNER
    sender: Any

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "NotOwner":
        return cls(*_require(args, "sender"))

    def describe(self) -> str:
        return f"Execute failed due to not owner: sent by {self.sender}."

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.name, "sender": self.sender}


@dataclass(frozen=True, slots=True)
class WrongOp:
    """Execution rejected because of an unknown operation code."""
    kind: ClassVar[OutcomeKind] = OutcomeKind.WRONG_OP
    sender: Any
    op: int

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "WrongOp":
        return cls(*_require(args, "sender", "op"))

    def describe(self) -> str:
        return f"Execute failed due to wrong Op: sent by {self.sender}, the op code is {self.op}."

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.name, "sender": self.sender, "op": self.op}


@dataclass(frozen=True, slots=True)
class ExceedBalance:
    """Execution rejected because the owner balance is too low."""
    kind: ClassVar[OutcomeKind] = OutcomeKind.EXCEED_BALANCE
    value: int
    owner: Any
    balance: int

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "ExceedBalance":
        return cls(*_require(args, "value", "owner", "balance"))

    def describe(self) -> str:
        return (
            f"Execute failed due to exceeding balance: {self.value} is needed "
            f"from {self.owner}, which only has {self.balance}."
        )

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.name, "value": self.value, "owner": self.owner, "balance": self.balance}


@dataclass(frozen=True, slots=True)
class TransferFromExecuted:
    kind: ClassVar[OutcomeKind] = OutcomeKind.TRANSFER_FROM
    value: int
    from_: Any
    to: Any

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "TransferFromExecuted":
        return cls(*_require(args, "value", "from", "to"))

    def describe(self) -> str:
        return (
            f"Execute OmniverseTransferFrom successfully: transfer {self.value} "
            f"from {self.from_} to {self.to}."
        )

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.name, "value": self.value, "from": self.from_, "to": self.to}


@dataclass(frozen=True, slots=True)
class ApprovalExecuted:
    kind: ClassVar[OutcomeKind] = OutcomeKind.APPROVAL
    owner: Any
    spender: Any
    value: int

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "ApprovalExecuted":
        return cls(*_require(args, "owner", "spender", "value"))

    def describe(self) -> str:
        return f"Execute OmniverseApprove successfully: {self.owner} approve {self.spender} for {self.value}."

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.name, "owner": self.owner, "spender": self.spender, "value": self.value}


@dataclass(frozen=True, slots=True)
class TransferExecuted:
    kind: ClassVar[OutcomeKind] = OutcomeKind.TRANSFER
    from_: Any
    value: int
    to: Any

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "TransferExecuted":
        return cls(*_require(args, "from", "value", "to"))

    def describe(self) -> str:
        return f"Execute OmniverseTransfer successfully: {self.from_} transfer {self.value} to {self.to}."

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.name, "from": self.from_, "value": self.value, "to": self.to}


Outcome = (
    ExecutionError
    | NotOwner
    | WrongOp
    | ExceedBalance
    | TransferFromExecuted
    | ApprovalExecuted
    | TransferExecuted
)

OUTCOME_TYPES: dict[OutcomeKind, type] = {
    OutcomeKind.ERROR: ExecutionError,
    OutcomeKind.NOT_OWNER: NotOwner,
    OutcomeKind.WRONG_OP: WrongOp,
    OutcomeKind.EXCEED_BALANCE: ExceedBalance,
    OutcomeKind.TRANSFER_FROM: TransferFromExecuted,
    OutcomeKind.APPROVAL: ApprovalExecuted,
    OutcomeKind.TRANSFER: TransferExecuted,
}


def read_field(result: Any, name: str, index: int) -> Any:
    """Read a named field from a contract call result.

    web3 returns structs as plain tuples, so fall back to the positional
    index when the result carries no names.
    """
    match result:
        case Mapping() if name in result:
            return result[name]
        case _ if hasattr(result, name):
            return getattr(result, name)
        case list() | tuple() if len(result) > index:
            return result[index]
        case _:
            return None


@dataclass(frozen=True, slots=True)
class DelayedTransaction:
    """The next executable delayed transaction reported by the token contract.

    Attributes:
        sender: Originator of the delayed transaction (public key or address)
        nonce: Sequence number of the transaction, if reported
    """
    sender: Any
    nonce: int | None = None

    @classmethod
    def from_call_result(cls, result: Any) -> "DelayedTransaction":
        # A single struct return value may arrive wrapped in a 1-tuple
        if isinstance(result, (list, tuple)) and len(result) == 1 and isinstance(result[0], (list, tuple)):
            result = result[0]
        return cls(sender=read_field(result, "sender", 0), nonce=read_field(result, "nonce", 1))

    @property
    def is_empty(self) -> bool:
        """True for the sentinel returned when nothing is executable."""
        match self.sender:
            case None:
                return True
            case bytes() as raw:
                return not any(raw)
            case str() as text:
                digits = text.removeprefix("0x")
                return not digits or set(digits) == {"0"}
            case _:
                return False


@dataclass(frozen=True, slots=True)
class TransactionSentEvent:
    """A TransactionSent occurrence delivered by the protocol contract subscription.

    Attributes:
        pk: Originator public key
        nonce: Originator sequence number
        transaction_hash: Hash of the transaction that emitted the event
        block_number: Block number where the event was emitted
        log_index: Index of the log entry in the block
        removed: True when the node retracted the log after a reorg
    """
    pk: Any
    nonce: int
    transaction_hash: str
    block_number: int
    log_index: int
    removed: bool = False

    def __str__(self) -> str:
        return (
            f"TransactionSentEvent(nonce={self.nonce}, "
            f"tx={self.transaction_hash[:10]}..., "
            f"block={self.block_number}{', removed' if self.removed else ''})"
        )

    @property
    def unique_key(self) -> tuple[str, int]:
        """Key identifying this occurrence for deduplication."""
        return (self.transaction_hash, self.log_index)


@dataclass(frozen=True, slots=True)
class RelayMessage:
    """A resolved protocol message ready for the coordinator."""
    chain_name: str
    payload: Any
    members: Any
