#!/usr/bin/env python3
"""Unit tests for the Router."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from omniverse_relayer.config import MonitoringConfig, RelayerConfig
from omniverse_relayer.errors import SubmissionError
from omniverse_relayer.relayer import Router


def make_handler(name: str) -> MagicMock:
    handler = MagicMock()
    handler.chain_name = name
    handler.init = AsyncMock()
    handler.push_messages = AsyncMock(return_value=0)
    handler.try_trigger = AsyncMock(return_value=[])
    handler.stop = AsyncMock()
    handler.get_metrics = MagicMock(return_value={})
    return handler


@pytest.fixture
def config(chain_factory):
    return RelayerConfig(
        networks=(chain_factory("ethereum"), chain_factory("sapphire"), chain_factory("bsc")),
        monitoring=MonitoringConfig(scan_interval=1, status_interval=1),
    )


@pytest.fixture
def key_provider():
    mock = MagicMock()
    mock.get_key = AsyncMock(side_effect=lambda name: f"key-{name}")
    return mock


@pytest.fixture
def router(config, key_provider):
    router = Router(config, key_provider=key_provider)
    router.handlers = {name: make_handler(name) for name in ("ethereum", "sapphire", "bsc")}
    return router


class TestRouter:
    """Test suite for Router."""

    def test_forward_skips_origin(self, router):
        targets = router.forward("sapphire", b"payload")

        assert targets == ["ethereum", "bsc"]
        router.handlers["ethereum"].add_message.assert_called_once_with(b"payload")
        router.handlers["bsc"].add_message.assert_called_once_with(b"payload")
        router.handlers["sapphire"].add_message.assert_not_called()

    def test_callback_forwards(self, router):
        router.make_callback("ethereum")(b"payload", [1, 2])

        router.handlers["ethereum"].add_message.assert_not_called()
        router.handlers["sapphire"].add_message.assert_called_once_with(b"payload")

    @pytest.mark.asyncio
    async def test_scan_pushes_then_triggers(self, router):
        order = []
        handler = router.handlers["ethereum"]
        handler.push_messages.side_effect = lambda: order.append("push") or 1
        handler.try_trigger.side_effect = lambda: order.append("trigger") or []

        await router.scan_once()

        assert order == ["push", "trigger"]

    @pytest.mark.asyncio
    async def test_scan_isolates_chain_failures(self, router):
        router.handlers["ethereum"].push_messages.side_effect = SubmissionError("reverted")

        await router.scan_once()

        router.handlers["ethereum"].try_trigger.assert_awaited_once()
        router.handlers["sapphire"].push_messages.assert_awaited_once()
        router.handlers["bsc"].try_trigger.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sweep_failure_does_not_block_other_chains(self, router):
        router.handlers["ethereum"].try_trigger.side_effect = SubmissionError("reverted")

        await router.scan_once()

        router.handlers["sapphire"].try_trigger.assert_awaited_once()
        router.handlers["bsc"].push_messages.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_init_handlers(self, config, key_provider):
        router = Router(config, key_provider=key_provider)

        with patch("omniverse_relayer.relayer.ChainHandler") as mock_handler_class:
            mock_handler_class.side_effect = lambda chain, monitoring, secret: make_handler(chain.name)
            await router.init_handlers()

        assert list(router.handlers) == ["ethereum", "sapphire", "bsc"]
        secrets = [call.args[2] for call in mock_handler_class.call_args_list]
        assert secrets == ["key-ethereum", "key-sapphire", "key-bsc"]
        for handler in router.handlers.values():
            handler.init.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_until_stopped(self, config, key_provider):
        router = Router(config, key_provider=key_provider)
        handlers = {}

        async def listen_forever(*args, **kwargs):
            await asyncio.Event().wait()

        def build_handler(chain, monitoring, secret):
            handler = make_handler(chain.name)
            handler.start = AsyncMock(side_effect=listen_forever)
            handlers[chain.name] = handler
            return handler

        with patch("omniverse_relayer.relayer.ChainHandler", side_effect=build_handler):
            run_task = asyncio.create_task(router.run())
            await asyncio.sleep(0.1)
            router.stop()
            await asyncio.wait_for(run_task, timeout=5)

        for handler in handlers.values():
            handler.start.assert_awaited_once()
            handler.stop.assert_awaited_once()
            handler.push_messages.assert_awaited()
        assert router.running is False

    @pytest.mark.asyncio
    async def test_run_stops_when_dispatcher_fails(self, config, key_provider):
        router = Router(config, key_provider=key_provider)

        def build_handler(chain, monitoring, secret):
            handler = make_handler(chain.name)
            handler.start = AsyncMock(side_effect=ConnectionError("subscription lost"))
            return handler

        with patch("omniverse_relayer.relayer.ChainHandler", side_effect=build_handler):
            await asyncio.wait_for(router.run(), timeout=5)

        for handler in router.handlers.values():
            handler.stop.assert_awaited_once()
