#!/usr/bin/env python3
"""Unit tests for the outbound message batch."""

import asyncio
from unittest.mock import AsyncMock, call

import pytest

from omniverse_relayer.errors import ConfigurationError, SubmissionError, TransportError
from omniverse_relayer.message_batch import TRANSFER_FUNCTION, MessageBatch


@pytest.fixture
def batch(mock_contract_util, token_contract):
    return MessageBatch(mock_contract_util, token_contract, chain_name="ethereum")


class TestMessageBatch:
    """Test suite for MessageBatch."""

    @pytest.mark.asyncio
    async def test_submits_in_insertion_order(self, batch, mock_contract_util, token_contract):
        for message in ("a", "b", "c"):
            batch.add_message(message)

        receipts = await batch.push_messages()

        assert len(receipts) == 3
        assert mock_contract_util.send_transaction.await_args_list == [
            call(token_contract, TRANSFER_FUNCTION, "a"),
            call(token_contract, TRANSFER_FUNCTION, "b"),
            call(token_contract, TRANSFER_FUNCTION, "c"),
        ]
        assert len(batch) == 0
        assert batch.messages_submitted == 3

    @pytest.mark.asyncio
    async def test_empty_batch(self, batch, mock_contract_util):
        assert await batch.push_messages() == []
        mock_contract_util.send_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_keeps_untried_messages(self, batch, mock_contract_util):
        receipt = {"status": 1, "blockNumber": 1}
        mock_contract_util.send_transaction = AsyncMock(
            side_effect=[receipt, SubmissionError("reverted", TRANSFER_FUNCTION), receipt]
        )
        for message in ("a", "b", "c"):
            batch.add_message(message)

        with pytest.raises(SubmissionError):
            await batch.push_messages()

        assert batch.pending == ["c"]
        assert batch.messages_submitted == 1
        assert batch.messages_failed == 1

    @pytest.mark.asyncio
    async def test_transport_failure_propagates(self, batch, mock_contract_util):
        mock_contract_util.send_transaction = AsyncMock(side_effect=TransportError("node down"))
        batch.add_message("a")

        with pytest.raises(TransportError):
            await batch.push_messages()
        assert len(batch) == 0

    @pytest.mark.asyncio
    async def test_error_before_submission_keeps_message(self, batch, mock_contract_util):
        mock_contract_util.send_transaction = AsyncMock(side_effect=ConfigurationError("no key"))
        batch.add_message("a")
        batch.add_message("b")

        with pytest.raises(ConfigurationError):
            await batch.push_messages()

        assert batch.pending == ["a", "b"]
        assert batch.messages_failed == 0

    @pytest.mark.asyncio
    async def test_cancelled_drain_keeps_message(self, batch, mock_contract_util):
        started = asyncio.Event()

        async def hang(*args):
            started.set()
            await asyncio.Event().wait()

        mock_contract_util.send_transaction = AsyncMock(side_effect=hang)
        batch.add_message("a")
        drain = asyncio.create_task(batch.push_messages())
        await started.wait()

        drain.cancel()
        with pytest.raises(asyncio.CancelledError):
            await drain

        assert batch.pending == ["a"]

    @pytest.mark.asyncio
    async def test_concurrent_pushes_submit_once(self, batch, mock_contract_util):
        async def slow_send(*args):
            await asyncio.sleep(0.01)
            return {"status": 1, "blockNumber": 1}

        mock_contract_util.send_transaction = AsyncMock(side_effect=slow_send)
        for message in ("a", "b", "c"):
            batch.add_message(message)

        first, second = await asyncio.gather(batch.push_messages(), batch.push_messages())

        assert len(first) + len(second) == 3
        assert mock_contract_util.send_transaction.await_count == 3

    @pytest.mark.asyncio
    async def test_message_added_during_drain(self, batch, mock_contract_util):
        async def send_and_enqueue(contract, function_name, message):
            if message == "a":
                batch.add_message("late")
            return {"status": 1, "blockNumber": 1}

        mock_contract_util.send_transaction = AsyncMock(side_effect=send_and_enqueue)
        batch.add_message("a")

        receipts = await batch.push_messages()

        assert len(receipts) == 2
        assert len(batch) == 0
