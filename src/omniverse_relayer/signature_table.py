"""
Event signature table for the token contract.

Builds the index of recognised outcome events once at start-up and decodes
raw receipt logs into typed outcome variants.
"""

import logging
from collections.abc import Iterator, Mapping, Sequence
from typing import Any

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from hexbytes import HexBytes
from web3 import Web3

from .errors import ConfigurationError, DecodeError
from .models import OUTCOME_PRIORITY, OUTCOME_TYPES, EventDefinition, Outcome, OutcomeKind

logger = logging.getLogger(__name__)


def canonical_type(param: Mapping[str, Any]) -> str:
    """Return the canonical ABI type of a parameter, collapsing tuples."""
    abi_type: str = param["type"]
    if abi_type.startswith("tuple"):
        inner = ",".join(canonical_type(component) for component in param.get("components", []))
        return f"({inner}){abi_type[len('tuple'):]}"
    return abi_type


def _is_dynamic(abi_type: str) -> bool:
    return abi_type in ("string", "bytes") or abi_type.endswith("]") or abi_type.startswith("(")


def build_event_definition(event_abi: Mapping[str, Any]) -> EventDefinition:
    """Compute the topic signature of one ABI event entry.

    Args:
        event_abi: ABI member with type "event"

    Returns:
        EventDefinition with the keccak256 topic of ``Name(type1,type2,...)``
    """
    inputs = tuple(event_abi.get("inputs", []))
    text = f"{event_abi['name']}({','.join(canonical_type(param) for param in inputs)})"
    return EventDefinition(name=event_abi["name"], inputs=inputs, signature=Web3.keccak(text=text))


def find_event(abi: Sequence[Mapping[str, Any]], name: str) -> EventDefinition:
    """Find exactly one event named ``name`` in an ABI.

    Raises:
        ConfigurationError: If the event is missing or declared more than once
    """
    matches = [member for member in abi if member.get("type") == "event" and member.get("name") == name]
    if len(matches) != 1:
        raise ConfigurationError(f"Expected exactly one {name} event in ABI, found {len(matches)}")
    return build_event_definition(matches[0])


def decode_log(definition: EventDefinition, log: Mapping[str, Any]) -> dict[str, Any]:
    """Decode a raw log entry against an event definition.

    Indexed inputs are read from ``topics[1:]`` and the rest from ``data``.
    Indexed dynamic values are only available as their topic hash and are
    returned as such.

    Args:
        definition: Event definition whose signature matched topic0
        log: Raw log entry with ``topics`` and ``data``

    Returns:
        Mapping of input name to decoded value

    Raises:
        DecodeError: If the log does not fit the definition's layout
    """
    indexed = [param for param in definition.inputs if param.get("indexed")]
    non_indexed = [param for param in definition.inputs if not param.get("indexed")]
    topics = list(log.get("topics", []))[1:]

    if len(topics) != len(indexed):
        raise DecodeError(
            f"{definition.name} expects {len(indexed)} indexed topics, log has {len(topics)}"
        )

    decoded: dict[str, Any] = {}
    try:
        for param, topic in zip(indexed, topics):
            abi_type = canonical_type(param)
            if _is_dynamic(abi_type):
                decoded[param["name"]] = HexBytes(topic)
            else:
                decoded[param["name"]] = abi_decode([abi_type], bytes(HexBytes(topic)))[0]

        data = bytes(HexBytes(log.get("data") or b""))
        values = abi_decode([canonical_type(param) for param in non_indexed], data)
        for param, value in zip(non_indexed, values):
            decoded[param["name"]] = value
    except (DecodingError, TypeError, ValueError) as e:
        raise DecodeError(f"Failed to decode {definition.name} log: {e}") from e

    for param in definition.inputs:
        if param["type"] == "address" and isinstance(decoded.get(param["name"]), str):
            decoded[param["name"]] = Web3.to_checksum_address(decoded[param["name"]])

    return decoded


class SignatureTable:
    """Read-only index of recognised outcome events by kind.

    Signatures are computed once by ``build`` and never change afterwards.
    Classification checks kinds in a fixed priority order and decodes the
    first match into its outcome variant.
    """

    def __init__(self, definitions: Mapping[OutcomeKind, EventDefinition]) -> None:
        self._definitions: dict[OutcomeKind, EventDefinition] = dict(definitions)

        seen: dict[bytes, OutcomeKind] = {}
        for kind, definition in self._definitions.items():
            signature = bytes(definition.signature)
            if signature in seen:
                raise ConfigurationError(
                    f"{kind.value} and {seen[signature].value} share signature "
                    f"{definition.signature.to_0x_hex()}"
                )
            seen[signature] = kind

    @classmethod
    def build(cls, abi: Sequence[Mapping[str, Any]]) -> "SignatureTable":
        """Build the table from a contract ABI.

        Args:
            abi: Ordered list of ABI member descriptors

        Returns:
            SignatureTable with one definition per recognised kind present

        Raises:
            ConfigurationError: If a recognised event is declared twice
        """
        definitions: dict[OutcomeKind, EventDefinition] = {}
        for member in abi:
            if member.get("type") != "event":
                continue
            try:
                kind = OutcomeKind(member.get("name"))
            except ValueError:
                continue
            if kind in definitions:
                raise ConfigurationError(f"Event {kind.value} is declared more than once in the ABI")
            definitions[kind] = build_event_definition(member)

        missing = [kind.value for kind in OutcomeKind if kind not in definitions]
        if missing:
            logger.warning(f"ABI has no definition for: {', '.join(missing)}")
        logger.info(f"Signature table built with {len(definitions)} outcome events")
        return cls(definitions)

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, kind: object) -> bool:
        return kind in self._definitions

    def __iter__(self) -> Iterator[OutcomeKind]:
        return iter(self._definitions)

    def get(self, kind: OutcomeKind) -> EventDefinition | None:
        return self._definitions.get(kind)

    def classify(self, log: Mapping[str, Any]) -> Outcome | None:
        """Classify a receipt log into an outcome variant.

        Args:
            log: Raw log entry; its origin address is not checked here

        Returns:
            The decoded outcome, or None if topic0 matches no recognised kind

        Raises:
            DecodeError: If topic0 matches but the log cannot be decoded
        """
        topics = log.get("topics") or []
        if not topics:
            return None
        topic0 = HexBytes(topics[0])

        for kind in OUTCOME_PRIORITY:
            definition = self._definitions.get(kind)
            if definition is not None and definition.signature == topic0:
                return OUTCOME_TYPES[kind].from_args(decode_log(definition, log))
        return None
