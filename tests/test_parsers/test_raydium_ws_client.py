"""Tests for the Raydium logsSubscribe client message handling."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.parsers.raydium.models import NewPoolSignature
from src.parsers.raydium.ws_client import ConnectionState, RaydiumLogsClient, is_pool_creation


def _notification(signature: str, logs: list[str], *, err=None, slot: int = 123) -> dict:
    return {
        "jsonrpc": "2.0",
        "method": "logsNotification",
        "params": {
            "result": {
                "context": {"slot": slot},
                "value": {"signature": signature, "err": err, "logs": logs},
            },
            "subscription": 7,
        },
    }


CREATE_LOGS = [
    "Program 675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8 invoke [1]",
    "Program log: initialize2: InitializeInstruction2 { nonce: 254, open_time: 0 }",
]
SWAP_LOGS = [
    "Program 675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8 invoke [1]",
    "Program log: ray_log: AwDh9QUAAAAA",
]


class TestIsPoolCreation:
    def test_initialize2_marker(self) -> None:
        assert is_pool_creation(CREATE_LOGS) is True

    def test_create_pool_marker(self) -> None:
        assert is_pool_creation(["Program log: CreatePool"]) is True

    def test_swap_logs(self) -> None:
        assert is_pool_creation(SWAP_LOGS) is False


class TestHandleMessage:
    @pytest.mark.asyncio
    @pytest.mark.asyncio
    async def test_pool_creation_emits_event(self) -> None:
        client = RaydiumLogsClient("wss://example")
        client.on_new_pool = AsyncMock()

        client._handle_message(_notification("sigA", CREATE_LOGS))
        await asyncio.sleep(0)

        client.on_new_pool.assert_awaited_once_with(NewPoolSignature(signature="sigA", slot=123))
        assert client.pool_count == 1

    @pytest.mark.asyncio
    @pytest.mark.asyncio
    async def test_failed_transaction_ignored(self) -> None:
        client = RaydiumLogsClient("wss://example")
        client.on_new_pool = AsyncMock()

        client._handle_message(_notification("sigB", CREATE_LOGS, err={"InstructionError": [0, "x"]}))
        await asyncio.sleep(0)

        client.on_new_pool.assert_not_awaited()
        assert client.pool_count == 0

    @pytest.mark.asyncio
    @pytest.mark.asyncio
    async def test_non_creation_logs_ignored(self) -> None:
        client = RaydiumLogsClient("wss://example")
        client.on_new_pool = AsyncMock()

        client._handle_message(_notification("sigC", SWAP_LOGS))
        client._handle_message({"jsonrpc": "2.0", "result": 7, "id": 1})
        await asyncio.sleep(0)

        client.on_new_pool.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.asyncio
    async def test_callback_error_is_contained(self) -> None:
        client = RaydiumLogsClient("wss://example")
        client.on_new_pool = AsyncMock(side_effect=RuntimeError("boom"))

        client._handle_message(_notification("sigD", CREATE_LOGS))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        client.on_new_pool.assert_awaited_once()
        assert not client._pending_tasks

    @pytest.mark.asyncio
    @pytest.mark.asyncio
    async def test_stop_sets_disconnected(self) -> None:
        client = RaydiumLogsClient("wss://example")
        await client.stop()
        assert client.state is ConnectionState.DISCONNECTED
