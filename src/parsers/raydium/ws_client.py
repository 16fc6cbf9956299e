"""WebSocket client for Raydium AMM v4 pool creation via Solana logsSubscribe.

logsSubscribe gives us: signature + log messages. New pools are detected from
the instruction log lines; the worker then fetches the full transaction via
RPC getTransaction to decode the accounts.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from enum import Enum

import websockets
from loguru import logger

from src.parsers.raydium.constants import (
    POOL_CREATION_LOG_MARKERS,
    RAYDIUM_AMM_PROGRAM_ID,
)
from src.parsers.raydium.models import NewPoolSignature


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ACTIVE = "active"


def is_pool_creation(logs: list[str]) -> bool:
    """True if any log line carries a pool-creation marker."""
    return any(marker in line for line in logs for marker in POOL_CREATION_LOG_MARKERS)


class RaydiumLogsClient:
    """Streams Raydium AMM program logs and emits NewPoolSignature events.

    Single connection, auto-reconnect with exponential backoff.
    """

    def __init__(self, ws_url: str, program_id: str = RAYDIUM_AMM_PROGRAM_ID) -> None:
        self._ws_url = ws_url
        self._program_id = program_id
        self._ws: websockets.WebSocketClientProtocol | None = None
        self._state = ConnectionState.DISCONNECTED
        self._running = False
        self._reconnect_delay = 5.0
        self._max_reconnect_delay = 60.0
        self._message_count = 0
        self._pool_count = 0
        self._subscription_id: int | None = None

        self.on_new_pool: Callable[[NewPoolSignature], Awaitable[None]] | None = None
        self._pending_tasks: set[asyncio.Task] = set()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def message_count(self) -> int:
        return self._message_count

    @property
    def pool_count(self) -> int:
        return self._pool_count

    async def connect(self) -> None:
        """Connect and listen. Auto-reconnects on disconnect."""
        self._running = True
        while self._running:
            try:
                self._state = ConnectionState.CONNECTING
                async with websockets.connect(
                    self._ws_url,
                    ping_interval=30,
                    ping_timeout=10,
                    close_timeout=5,
                ) as ws:
                    self._ws = ws
                    self._state = ConnectionState.CONNECTED
                    self._reconnect_delay = 5.0
                    await self._subscribe()
                    self._state = ConnectionState.ACTIVE
                    logger.info(
                        f"[LOGS] Solana WS connected, logsSubscribe on {self._program_id[:12]}"
                    )
                    await self._listen()
            except (
                websockets.ConnectionClosed,
                ConnectionError,
                OSError,
                TimeoutError,
            ) as e:
                logger.warning(f"[LOGS] WS disconnected: {e}")
            finally:
                self._state = ConnectionState.DISCONNECTED
                self._ws = None
                self._subscription_id = None

            if self._running:
                logger.info(f"[LOGS] Reconnecting in {self._reconnect_delay:.0f}s...")
                await asyncio.sleep(self._reconnect_delay)
                self._reconnect_delay = min(
                    self._reconnect_delay * 2, self._max_reconnect_delay
                )

    async def _subscribe(self) -> None:
        """Send logsSubscribe for transactions mentioning the AMM program."""
        if not self._ws:
            return
        subscribe_msg = json.dumps({
            "jsonrpc": "2.0",
            "id": 1,
            "method": "logsSubscribe",
            "params": [
                {"mentions": [self._program_id]},
                {"commitment": "confirmed"},
            ],
        })
        await self._ws.send(subscribe_msg)
        try:
            response = await asyncio.wait_for(self._ws.recv(), timeout=10.0)
            data = json.loads(response)
            if "result" in data:
                self._subscription_id = data["result"]
                logger.debug(f"[LOGS] logsSubscribe id={self._subscription_id}")
        except (asyncio.TimeoutError, json.JSONDecodeError) as e:
            logger.warning(f"[LOGS] Subscribe confirmation failed: {e}")

    async def _listen(self) -> None:
        if not self._ws:
            return

        async for message in self._ws:
            self._message_count += 1
            try:
                data = json.loads(message)
            except json.JSONDecodeError:
                continue
            self._handle_message(data)

    def _handle_message(self, data: dict) -> None:
        # {"method": "logsNotification", "params": {"result": {"context": {...}, "value": {...}}}}
        params = data.get("params")
        if not params:
            return

        result = params.get("result", {})
        value = result.get("value", {})
        signature = value.get("signature")
        logs = value.get("logs") or []

        if not signature or not logs:
            return
        if value.get("err"):
            return  # failed transaction
        if not is_pool_creation(logs):
            return

        self._pool_count += 1
        slot = (result.get("context") or {}).get("slot")
        logger.info(f"[LOGS] New AMM pool tx {signature[:16]}...")

        if self.on_new_pool:
            event = NewPoolSignature(signature=signature, slot=slot)
            task = asyncio.create_task(self._safe_callback(self.on_new_pool, event))
            self._pending_tasks.add(task)
            task.add_done_callback(self._pending_tasks.discard)

    async def _safe_callback(
        self, callback: Callable[..., Awaitable[None]], event: object
    ) -> None:
        """Run one handler; a failure never reaches the listen loop."""
        try:
            await callback(event)
        except Exception as e:
            logger.error(f"[LOGS] Callback error for {type(event).__name__}: {e}")

    async def stop(self) -> None:
        self._running = False
        if self._ws:
            await self._ws.close()
            self._ws = None
        self._state = ConnectionState.DISCONNECTED
        for task in list(self._pending_tasks):
            task.cancel()
