"""Live account balance feed over Solana accountSubscribe.

One WebSocket carries every subscription. Each subscription owns a queue and
a consumer task, so updates for one account are delivered in order and a slow
callback never holds up another account's updates.

Handles returned by ``subscribe`` are local ints that survive reconnects:
after a reconnect every live handle is subscribed again.
"""

import asyncio
import base64
import itertools
import json
import struct
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import websockets
from loguru import logger

from src.parsers.raydium.constants import TOKEN_ACCOUNT_AMOUNT_OFFSET
from src.parsers.raydium.ws_client import ConnectionState
from src.trading.exceptions import SubscriptionError

BalanceCallback = Callable[[int], Awaitable[None]]


def parse_account_balance(value: dict) -> int:
    """Raw balance of an account notification value.

    SPL token accounts report their token ``amount``; anything else its lamports.
    """
    data = value.get("data")
    if isinstance(data, list) and data:
        try:
            raw = base64.b64decode(data[0])
        except (ValueError, TypeError):
            raw = b""
        if len(raw) >= TOKEN_ACCOUNT_AMOUNT_OFFSET + 8:
            return struct.unpack_from("<Q", raw, TOKEN_ACCOUNT_AMOUNT_OFFSET)[0]
    return int(value.get("lamports", 0))


@dataclass
class _Subscription:
    handle: int
    address: str
    callback: BalanceCallback
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    server_id: int | None = None
    active: bool = True
    worker: asyncio.Task | None = None


class SolanaAccountFeed:
    """accountSubscribe client: ``subscribe(address, on_update) -> handle``."""

    def __init__(
        self,
        ws_url: str,
        *,
        commitment: str = "confirmed",
        request_timeout: float = 10.0,
    ) -> None:
        self._ws_url = ws_url
        self._commitment = commitment
        self._request_timeout = request_timeout
        self._ws: websockets.WebSocketClientProtocol | None = None
        self._state = ConnectionState.DISCONNECTED
        self._connected = asyncio.Event()
        self._running = False
        self._reconnect_delay = 3.0
        self._max_reconnect_delay = 60.0

        self._handles = itertools.count(1)
        self._request_ids = itertools.count(1)
        self._subs: dict[int, _Subscription] = {}
        self._by_server_id: dict[int, _Subscription] = {}
        self._pending: dict[int, asyncio.Future] = {}
        self._pending_subs: dict[int, _Subscription] = {}
        self._notification_count = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def subscription_count(self) -> int:
        return len(self._subs)

    @property
    def notification_count(self) -> int:
        return self._notification_count

    async def connect(self) -> None:
        """Connect and listen. Auto-reconnects and resubscribes live handles."""
        self._running = True
        while self._running:
            listen_task: asyncio.Task | None = None
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
                    self._reconnect_delay = 3.0
                    listen_task = asyncio.create_task(self._listen())
                    await self._resubscribe_all()
                    self._state = ConnectionState.ACTIVE
                    self._connected.set()
                    logger.info(f"[FEED] Account feed connected ({len(self._subs)} live subs)")
                    await listen_task
            except (
                websockets.ConnectionClosed,
                ConnectionError,
                OSError,
                TimeoutError,
            ) as e:
                logger.warning(f"[FEED] WS disconnected: {e}")
            finally:
                if listen_task is not None and not listen_task.done():
                    listen_task.cancel()
                self._on_disconnect()

            if self._running:
                logger.info(f"[FEED] Reconnecting in {self._reconnect_delay:.0f}s...")
                await asyncio.sleep(self._reconnect_delay)
                self._reconnect_delay = min(
                    self._reconnect_delay * 2, self._max_reconnect_delay
                )

    def _on_disconnect(self) -> None:
        self._connected.clear()
        self._state = ConnectionState.DISCONNECTED
        self._ws = None
        self._by_server_id.clear()
        for sub in self._subs.values():
            sub.server_id = None
        for fut in self._pending.values():
            if not fut.done():
                fut.set_exception(SubscriptionError("account feed disconnected"))

    async def _resubscribe_all(self) -> None:
        for sub in list(self._subs.values()):
            try:
                await self._request("accountSubscribe", self._subscribe_params(sub.address), sub=sub)
            except SubscriptionError as e:
                logger.error(f"[FEED] Resubscribe failed for {sub.address[:12]}: {e}")

    def _subscribe_params(self, address: str) -> list[Any]:
        return [address, {"encoding": "base64", "commitment": self._commitment}]

    async def _request(
        self, method: str, params: list[Any], *, sub: _Subscription | None = None
    ) -> Any:
        if self._ws is None:
            raise SubscriptionError("account feed not connected")

        req_id = next(self._request_ids)
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[req_id] = fut
        if sub is not None:
            self._pending_subs[req_id] = sub
        try:
            await self._ws.send(json.dumps({
                "jsonrpc": "2.0",
                "id": req_id,
                "method": method,
                "params": params,
            }))
            return await asyncio.wait_for(fut, timeout=self._request_timeout)
        except (asyncio.TimeoutError, websockets.ConnectionClosed, OSError) as e:
            raise SubscriptionError(f"{method} failed: {e!r}") from e
        finally:
            self._pending.pop(req_id, None)
            self._pending_subs.pop(req_id, None)

    async def _listen(self) -> None:
        if not self._ws:
            return
        async for message in self._ws:
            try:
                data = json.loads(message)
            except json.JSONDecodeError:
                continue
            self._handle_message(data)

    def _handle_message(self, data: dict) -> None:
        req_id = data.get("id")
        if req_id is not None and req_id in self._pending:
            self._resolve(req_id, data)
            return

        if data.get("method") != "accountNotification":
            return
        params = data.get("params") or {}
        sub = self._by_server_id.get(params.get("subscription"))
        if sub is None or not sub.active:
            return
        value = (params.get("result") or {}).get("value") or {}
        self._notification_count += 1
        sub.queue.put_nowait(parse_account_balance(value))

    def _resolve(self, req_id: int, data: dict) -> None:
        fut = self._pending[req_id]
        if fut.done():
            return
        if "error" in data:
            fut.set_exception(SubscriptionError(f"RPC error: {data['error']}"))
            return
        sub = self._pending_subs.get(req_id)
        if sub is not None and sub.active:
            # Register before anything else is read so no notification is dropped
            sub.server_id = data.get("result")
            self._by_server_id[sub.server_id] = sub
        fut.set_result(data.get("result"))

    async def subscribe(self, address: str, on_update: BalanceCallback) -> int:
        """Subscribe to balance changes of ``address``. Raises SubscriptionError."""
        if not self._connected.is_set():
            try:
                await asyncio.wait_for(self._connected.wait(), timeout=self._request_timeout)
            except asyncio.TimeoutError as e:
                raise SubscriptionError("account feed not connected") from e

        sub = _Subscription(handle=next(self._handles), address=address, callback=on_update)
        await self._request("accountSubscribe", self._subscribe_params(address), sub=sub)
        self._subs[sub.handle] = sub
        sub.worker = asyncio.create_task(self._drain(sub), name=f"feed_{sub.handle}")
        logger.debug(f"[FEED] Subscribed {address[:12]} handle={sub.handle} id={sub.server_id}")
        return sub.handle

    async def _drain(self, sub: _Subscription) -> None:
        while True:
            balance = await sub.queue.get()
            if balance is None or not sub.active:
                return
            try:
                await sub.callback(balance)
            except Exception:
                logger.exception(f"[FEED] Callback for {sub.address[:12]} raised")

    async def unsubscribe(self, handle: int) -> None:
        """Stop delivering updates for ``handle``. Unknown or released handles are a no-op.

        Safe to call from inside the handle's own callback: the consumer
        finishes the current update and exits.
        """
        sub = self._subs.pop(handle, None)
        if sub is None:
            return
        sub.active = False
        sub.queue.put_nowait(None)
        server_id = sub.server_id
        if server_id is not None:
            self._by_server_id.pop(server_id, None)
        if server_id is None or self._ws is None:
            return
        try:
            await self._request("accountUnsubscribe", [server_id])
        except SubscriptionError as e:
            logger.warning(f"[FEED] accountUnsubscribe {server_id} failed: {e}")
        logger.debug(f"[FEED] Unsubscribed handle={handle}")

    async def stop(self) -> None:
        self._running = False
        for handle in list(self._subs):
            sub = self._subs.pop(handle)
            sub.active = False
            sub.queue.put_nowait(None)
        if self._ws:
            await self._ws.close()
            self._ws = None
        self._connected.clear()
        self._state = ConnectionState.DISCONNECTED
