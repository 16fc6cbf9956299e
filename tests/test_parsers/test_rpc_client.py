"""Tests for SolanaRpcClient: retries on reads, single-shot sends."""

import base64
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from src.parsers.solana.rpc_client import SolanaRpcClient, SolanaRpcError

RPC_URL = "https://rpc.example"


def _response(status: int = 200, body: dict | None = None) -> MagicMock:
    resp = MagicMock(spec=httpx.Response)
    resp.status_code = status
    resp.json.return_value = body or {}
    return resp


def _ok(result) -> MagicMock:
    return _response(200, {"jsonrpc": "2.0", "id": 1, "result": result})


@pytest.fixture
def client() -> SolanaRpcClient:
    c = SolanaRpcClient(RPC_URL, max_rps=1000.0)
    c._client = AsyncMock(spec=httpx.AsyncClient)
    return c


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("src.parsers.solana.rpc_client.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


class TestInit:
    def test_empty_url_raises(self) -> None:
        with pytest.raises(ValueError, match="RPC URL is empty"):
            SolanaRpcClient("")


class TestReads:
    @pytest.mark.asyncio
    async def test_retry_on_429_then_success(self, client: SolanaRpcClient) -> None:
        client._client.post = AsyncMock(side_effect=[_response(429), _ok({"value": 5})])
        assert await client.get_balance("Addr") == 5
        assert client._client.post.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self, client: SolanaRpcClient) -> None:
        client._client.post = AsyncMock(return_value=_response(503))
        assert await client.get_balance("Addr") is None
        assert client._client.post.await_count == 3

    @pytest.mark.asyncio
    async def test_timeout_retried(self, client: SolanaRpcClient) -> None:
        client._client.post = AsyncMock(
            side_effect=[httpx.TimeoutException("slow"), _ok({"value": {"decimals": 6}})]
        )
        assert await client.get_token_decimals("Mint") == 6

    @pytest.mark.asyncio
    async def test_rpc_error_returns_none(self, client: SolanaRpcClient) -> None:
        client._client.post = AsyncMock(
            return_value=_response(200, {"error": {"code": -32602, "message": "bad"}})
        )
        assert await client.get_account_data("Addr") is None

    @pytest.mark.asyncio
    async def test_account_data_decoded(self, client: SolanaRpcClient) -> None:
        raw = b"\x01\x02\x03"
        client._client.post = AsyncMock(
            return_value=_ok({"value": {"data": [base64.b64encode(raw).decode(), "base64"]}})
        )
        assert await client.get_account_data("Addr") == raw

    @pytest.mark.asyncio
    async def test_missing_account(self, client: SolanaRpcClient) -> None:
        client._client.post = AsyncMock(return_value=_ok({"value": None}))
        assert await client.get_account_data("Addr") is None

    @pytest.mark.asyncio
    async def test_get_transaction_polls_until_available(self, client: SolanaRpcClient, no_sleep) -> None:
        tx = {"slot": 1, "transaction": {}}
        client._client.post = AsyncMock(side_effect=[_ok(None), _ok(None), _ok(tx)])
        assert await client.get_transaction("sig", initial_delay=2.0) == tx
        # rate limiter waits are sub-second
        delays = [call.args[0] for call in no_sleep.await_args_list if call.args[0] >= 1.0]
        assert delays == [2.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_get_transaction_gives_up(self, client: SolanaRpcClient) -> None:
        client._client.post = AsyncMock(return_value=_ok(None))
        assert await client.get_transaction("sig", retries=2, initial_delay=0) is None
        assert client._client.post.await_count == 2

    @pytest.mark.asyncio
    async def test_signature_status(self, client: SolanaRpcClient) -> None:
        status = {"confirmationStatus": "confirmed", "err": None}
        client._client.post = AsyncMock(return_value=_ok({"value": [status]}))
        assert await client.get_signature_status("sig") == status

    @pytest.mark.asyncio
    async def test_latest_blockhash_missing_raises(self, client: SolanaRpcClient) -> None:
        client._client.post = AsyncMock(return_value=_ok(None))
        with pytest.raises(SolanaRpcError):
            await client.get_latest_blockhash()


class TestSendTransaction:
    @pytest.mark.asyncio
    async def test_success(self, client: SolanaRpcClient) -> None:
        client._client.post = AsyncMock(return_value=_ok("5sig"))
        assert await client.send_transaction("dHg=") == "5sig"
        payload = client._client.post.await_args.kwargs["json"]
        assert payload["method"] == "sendTransaction"
        assert payload["params"][1]["encoding"] == "base64"

    @pytest.mark.asyncio
    async def test_not_retried_on_server_error(self, client: SolanaRpcClient) -> None:
        client._client.post = AsyncMock(return_value=_response(503))
        with pytest.raises(SolanaRpcError, match="HTTP 503"):
            await client.send_transaction("dHg=")
        assert client._client.post.await_count == 1

    @pytest.mark.asyncio
    async def test_rpc_error_raises(self, client: SolanaRpcClient) -> None:
        client._client.post = AsyncMock(
            return_value=_response(200, {"error": {"code": -32002, "message": "Blockhash not found"}})
        )
        with pytest.raises(SolanaRpcError, match="Blockhash not found"):
            await client.send_transaction("dHg=")

    @pytest.mark.asyncio
    async def test_transport_error_raises(self, client: SolanaRpcClient) -> None:
        client._client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(SolanaRpcError):
            await client.send_transaction("dHg=")
