"""Shared fixtures for the Omniverse relayer tests."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_abi import encode
from hexbytes import HexBytes

from omniverse_relayer.config import ChainConfig
from omniverse_relayer.signature_table import SignatureTable, canonical_type, find_event

CONTRACTS_DIR = Path(__file__).resolve().parent.parent / "contracts"
PROTOCOL_ABI_PATH = CONTRACTS_DIR / "OmniverseProtocol.json"
TOKEN_ABI_PATH = CONTRACTS_DIR / "SkywalkerFungible.json"

PROTOCOL_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
TOKEN_ADDRESS = "0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512"
OTHER_ADDRESS = "0x9fE46736679d2D9a65F0992F2272dE9f3c7fa6e0"


def make_chain_config(name: str = "ethereum", **overrides) -> ChainConfig:
    values = {
        "node_address": "http://127.0.0.1:8545",
        "chain_id": 1337,
        "protocol_contract_address": PROTOCOL_ADDRESS,
        "protocol_abi_path": str(PROTOCOL_ABI_PATH),
        "token_contract_address": TOKEN_ADDRESS,
        "token_abi_path": str(TOKEN_ABI_PATH),
    }
    values.update(overrides)
    return ChainConfig(name=name, **values)


@pytest.fixture
def protocol_abi():
    with PROTOCOL_ABI_PATH.open() as file:
        return json.load(file)["abi"]


@pytest.fixture
def token_abi():
    with TOKEN_ABI_PATH.open() as file:
        return json.load(file)["abi"]


@pytest.fixture
def signature_table(token_abi):
    return SignatureTable.build(token_abi)


@pytest.fixture
def transaction_sent(protocol_abi):
    return find_event(protocol_abi, "TransactionSent")


@pytest.fixture
def make_log():
    """Build a raw log entry for an event definition from its non-indexed values."""
    def _make_log(definition, values, address=TOKEN_ADDRESS, **extra):
        types = [canonical_type(param) for param in definition.inputs if not param.get("indexed")]
        log = {
            "address": address,
            "topics": [definition.signature],
            "data": HexBytes(encode(types, values)),
            "blockNumber": 100,
            "transactionHash": "0x" + "ab" * 32,
            "logIndex": 0,
            "removed": False,
        }
        log.update(extra)
        return log
    return _make_log


@pytest.fixture
def token_contract():
    mock = MagicMock()
    mock.address = TOKEN_ADDRESS
    return mock


@pytest.fixture
def protocol_contract():
    mock = MagicMock()
    mock.address = PROTOCOL_ADDRESS
    return mock


@pytest.fixture
def mock_contract_util():
    """Create a mock ContractUtility with async call and send_transaction."""
    mock = MagicMock()
    mock.call = AsyncMock()
    mock.send_transaction = AsyncMock(return_value={"status": 1, "blockNumber": 1, "logs": []})
    return mock


@pytest.fixture
def chain_factory():
    return make_chain_config
