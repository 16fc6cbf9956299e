"""Solana JSON-RPC client: transactions, account data, token supply, tx submission."""

import asyncio
import base64
from typing import Any

import httpx
from loguru import logger

from src.parsers.rate_limiter import RateLimiter

MAX_RETRIES = 2
RETRY_DELAYS = [1.0, 3.0]


class SolanaRpcError(Exception):
    pass


class SolanaRpcClient:
    """Async HTTP client for the Solana JSON-RPC API.

    Reads are retried on timeouts, 429 and 5xx. ``send_transaction`` is never
    retried here: callers resend the same signed payload themselves.
    """

    def __init__(self, rpc_url: str, max_rps: float = 10.0) -> None:
        if not rpc_url:
            raise ValueError("RPC URL is empty")
        self._rpc_url = rpc_url
        self._rate_limiter = RateLimiter(max_rps)
        self._client = httpx.AsyncClient(timeout=15.0)

    async def close(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, params: list[Any]) -> Any:
        """POST one JSON-RPC request with retry. Returns ``result`` or None."""
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

        for attempt in range(MAX_RETRIES + 1):
            try:
                await self._rate_limiter.acquire()
                resp = await self._client.post(self._rpc_url, json=payload)

                if resp.status_code == 429 or resp.status_code >= 500:
                    if attempt < MAX_RETRIES:
                        delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                        logger.debug(f"[RPC] {method} HTTP {resp.status_code}, retry in {delay}s")
                        await asyncio.sleep(delay)
                        continue
                    logger.warning(f"[RPC] {method} failed: HTTP {resp.status_code}")
                    return None

                if resp.status_code != 200:
                    logger.warning(f"[RPC] {method} unexpected HTTP {resp.status_code}")
                    return None

                data = resp.json()
                if "error" in data:
                    logger.warning(f"[RPC] {method} error: {data['error']}")
                    return None
                return data.get("result")

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt < MAX_RETRIES:
                    delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                    logger.debug(f"[RPC] {method} {type(e).__name__}, retry in {delay}s")
                    await asyncio.sleep(delay)
                else:
                    logger.warning(f"[RPC] {method} failed after retries: {e}")
                    return None

        return None

    async def get_transaction(
        self, signature: str, *, retries: int = 4, initial_delay: float = 2.0
    ) -> dict | None:
        """Fetch a transaction (``encoding=json``, base58 instruction data).

        logsSubscribe delivers signatures before the RPC index is ready, so we
        wait ``initial_delay`` seconds first and back off while the result is null.
        """
        params = [
            signature,
            {
                "encoding": "json",
                "commitment": "confirmed",
                "maxSupportedTransactionVersion": 0,
            },
        ]
        if initial_delay > 0:
            await asyncio.sleep(initial_delay)
        delay = 2.0
        for attempt in range(retries):
            result = await self._call("getTransaction", params)
            if result is not None:
                return result
            if attempt < retries - 1:
                await asyncio.sleep(delay)
                delay *= 2
        logger.debug(f"[RPC] getTransaction gave up on {signature[:16]}")
        return None

    async def get_account_data(self, address: str) -> bytes | None:
        """Raw account data via getAccountInfo (base64). None if missing."""
        result = await self._call(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": "confirmed"}],
        )
        if not result or not result.get("value"):
            return None
        account_data = result["value"]["data"]
        b64_data = account_data[0] if isinstance(account_data, list) else account_data
        try:
            return base64.b64decode(b64_data)
        except (ValueError, TypeError) as e:
            logger.debug(f"[RPC] Bad account data for {address[:12]}: {e}")
            return None

    async def get_balance(self, address: str) -> int | None:
        """Lamports held by an account."""
        result = await self._call("getBalance", [address, {"commitment": "confirmed"}])
        if result is None:
            return None
        return int(result.get("value", 0))

    async def get_token_decimals(self, mint: str) -> int | None:
        """Mint decimals via getTokenSupply."""
        result = await self._call("getTokenSupply", [mint, {"commitment": "confirmed"}])
        if not result or not result.get("value"):
            return None
        return int(result["value"]["decimals"])

    async def get_latest_blockhash(self) -> str:
        result = await self._call("getLatestBlockhash", [{"commitment": "confirmed"}])
        if not result or not result.get("value"):
            raise SolanaRpcError("getLatestBlockhash returned no value")
        return result["value"]["blockhash"]

    async def send_transaction(self, tx_b64: str) -> str:
        """Single sendTransaction call. Raises SolanaRpcError on any failure."""
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "sendTransaction",
            "params": [
                tx_b64,
                {"encoding": "base64", "skipPreflight": True, "maxRetries": 0},
            ],
        }
        try:
            resp = await self._client.post(self._rpc_url, json=payload)
        except (httpx.TimeoutException, httpx.ConnectError) as e:
            raise SolanaRpcError(f"sendTransaction transport error: {e}") from e
        if resp.status_code != 200:
            raise SolanaRpcError(f"sendTransaction HTTP {resp.status_code}")
        data = resp.json()
        if "error" in data:
            error = data["error"]
            raise SolanaRpcError(
                f"sendTransaction RPC error {error.get('code', '?')}: {error.get('message', error)}"
            )
        result = data.get("result")
        if not result:
            raise SolanaRpcError("sendTransaction returned no signature")
        return str(result)

    async def get_signature_status(self, signature: str) -> dict | None:
        """Status entry of getSignatureStatuses, or None if not seen yet."""
        result = await self._call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        if not result:
            return None
        statuses = result.get("value") or [None]
        return statuses[0]
