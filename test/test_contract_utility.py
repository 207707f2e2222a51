#!/usr/bin/env python3
"""Unit tests for ContractUtility."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from hexbytes import HexBytes

from omniverse_relayer.errors import ConfigurationError, SubmissionError, TransportError
from omniverse_relayer.utils.contract_utility import ContractUtility

TEST_KEY = "0x" + "11" * 32


@pytest.fixture
def contract_util():
    utility = ContractUtility("http://127.0.0.1:8545", secret=TEST_KEY, chain_id=1337, receipt_timeout=5)
    utility.w3 = MagicMock()
    return utility


@pytest.fixture
def contract():
    mock = MagicMock()
    mock.address = "0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512"
    return mock


class TestGetContractAbi:
    """Tests for ABI loading."""

    def test_artifact(self, tmp_path):
        path = tmp_path / "Token.json"
        path.write_text(json.dumps({"contractName": "Token", "abi": [{"type": "event", "name": "X"}]}))
        assert ContractUtility.get_contract_abi(path) == [{"type": "event", "name": "X"}]

    def test_bare_list(self, tmp_path):
        path = tmp_path / "Token.json"
        path.write_text("[]")
        assert ContractUtility.get_contract_abi(path) == []

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot load ABI"):
            ContractUtility.get_contract_abi(tmp_path / "missing.json")

    def test_no_abi_key(self, tmp_path):
        path = tmp_path / "Token.json"
        path.write_text(json.dumps({"bytecode": "0x"}))
        with pytest.raises(ConfigurationError, match="No ABI found"):
            ContractUtility.get_contract_abi(path)


class TestContractUtility:
    """Tests for calls and transaction submission."""

    def test_requires_rpc_url(self):
        with pytest.raises(ConfigurationError):
            ContractUtility("")

    def test_read_only_mode(self):
        utility = ContractUtility("http://127.0.0.1:8545")
        assert utility.account is None

    def test_signing_account(self):
        utility = ContractUtility("http://127.0.0.1:8545", secret=TEST_KEY)
        assert utility.account is not None
        assert utility.w3.eth.default_account == utility.account.address

    @pytest.mark.asyncio
    async def test_call(self, contract_util, contract):
        contract.functions.getMembers.return_value.call = AsyncMock(return_value=[1, 2])

        assert await contract_util.call(contract, "getMembers") == [1, 2]

    @pytest.mark.asyncio
    async def test_call_failure_wrapped(self, contract_util, contract):
        contract.functions.getMembers.return_value.call = AsyncMock(side_effect=ConnectionError("refused"))

        with pytest.raises(TransportError, match="getMembers"):
            await contract_util.call(contract, "getMembers")

    @pytest.mark.asyncio
    async def test_send_transaction(self, contract_util, contract):
        transact = AsyncMock(return_value=HexBytes(b"\x12" * 32))
        contract.functions.triggerExecution.return_value.transact = transact
        contract_util.w3.eth.wait_for_transaction_receipt = AsyncMock(return_value={"status": 1, "blockNumber": 9})

        receipt = await contract_util.send_transaction(contract, "triggerExecution")

        assert receipt["blockNumber"] == 9
        tx_params = transact.await_args.args[0]
        assert tx_params == {"from": contract_util.account.address, "chainId": 1337}

    @pytest.mark.asyncio
    async def test_reverted_transaction(self, contract_util, contract):
        contract.functions.triggerExecution.return_value.transact = AsyncMock(return_value=HexBytes(b"\x12" * 32))
        contract_util.w3.eth.wait_for_transaction_receipt = AsyncMock(return_value={"status": 0})

        with pytest.raises(SubmissionError) as exc_info:
            await contract_util.send_transaction(contract, "triggerExecution")

        assert exc_info.value.function_name == "triggerExecution"
        assert exc_info.value.receipt == {"status": 0}

    @pytest.mark.asyncio
    async def test_rejected_transaction(self, contract_util, contract):
        contract.functions.omniverseTransfer.return_value.transact = AsyncMock(side_effect=ValueError("nonce too low"))

        with pytest.raises(SubmissionError, match="nonce too low"):
            await contract_util.send_transaction(contract, "omniverseTransfer", b"\x01")

    @pytest.mark.asyncio
    async def test_send_requires_key(self, contract):
        utility = ContractUtility("http://127.0.0.1:8545")

        with pytest.raises(ConfigurationError, match="private key"):
            await utility.send_transaction(contract, "triggerExecution")
