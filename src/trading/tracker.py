"""Per-pool position lifecycle: buy, watch the quote vault, sell at target.

CREATED -> BOUGHT -> WATCHING -> SELLING -> CLOSED, with FAILED reachable from
every non-terminal state. State changes that race with feed updates
(WATCHING -> SELLING in particular) are check-and-set under a lock that is
never held across an await.

Live price model: the base reserve is re-derived from the creation-time K,
so price = quote_human^2 / K.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Protocol

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from src.parsers.raydium.models import PoolRecord
from src.trading.exceptions import ExecutionFailed, InvalidTransition, SubscriptionError
from src.trading.execution import BalanceReader, ExecutionService, OrderDirection, SwapOrder

UpdateCallback = Callable[[int], Awaitable[None]]


class TrackerState(str, Enum):
    CREATED = "created"
    BOUGHT = "bought"
    WATCHING = "watching"
    SELLING = "selling"
    CLOSED = "closed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({TrackerState.CLOSED, TrackerState.FAILED})


class TrackerConfig(BaseModel):
    """Per-tracker trading parameters."""

    buy_amount: float = Field(gt=0)  # numeraire units, e.g. 0.02 SOL
    target_percent: float = Field(gt=0)  # 100 = sell at 2x launch price

    model_config = ConfigDict(frozen=True)


class ValueFeed(Protocol):
    async def subscribe(self, address: str, on_update: UpdateCallback) -> int: ...

    async def unsubscribe(self, handle: int) -> None: ...


def compute_target_price(v: float, target_percent: float) -> Decimal:
    return Decimal(str(v)) * (1 + Decimal(str(target_percent)) / 100)


class PoolTracker:
    """Buy/watch/sell state machine for one pool.

    The tracker owns its subscription handle and is the only thing that
    releases it. It knows nothing about the manager holding it.
    """

    def __init__(
        self,
        record: PoolRecord,
        config: TrackerConfig,
        *,
        execution: ExecutionService,
        feed: ValueFeed,
        balance_reader: BalanceReader,
    ) -> None:
        if record.k <= 0:
            raise ValueError(f"pool {record.pool_id} has K={record.k}, price undefined")
        if not record.quote_is_numeraire:
            raise ValueError(f"pool {record.pool_id} has no numeraire side")

        self._record = record
        self._config = config
        self._execution = execution
        self._feed = feed
        self._balance_reader = balance_reader
        self._lock = threading.Lock()

        self._state = TrackerState.CREATED
        self._buying = False
        self._handle: int | None = None
        self._target_price = compute_target_price(record.v, config.target_percent)
        self._k = Decimal(record.k)
        self._quote_scale = Decimal(10) ** record.quote_decimals

        self.buy_signature: str | None = None
        self.sell_signature: str | None = None
        self.sold_amount: int | None = None
        self.last_price: Decimal | None = None
        self.failure_reason: str | None = None
        self.created_at = datetime.now(UTC)
        self.bought_at: datetime | None = None
        self.closed_at: datetime | None = None
        self._watch_started: float | None = None

    def __repr__(self) -> str:
        return f"PoolTracker(pool={self.pool_id[:12]}, state={self._state.value})"

    # ─── Read-only views ─────────────────────────────────────────────

    @property
    def record(self) -> PoolRecord:
        return self._record

    @property
    def pool_id(self) -> str:
        return self._record.pool_id

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    @property
    def config(self) -> TrackerConfig:
        return self._config

    @property
    def target_price(self) -> Decimal:
        return self._target_price

    @property
    def subscription_handle(self) -> int | None:
        return self._handle

    def price_from_quote(self, raw_quote: int) -> Decimal:
        quote_human = Decimal(raw_quote) / self._quote_scale
        return quote_human * quote_human / self._k

    def buy_amount_raw(self) -> int:
        return int(Decimal(str(self._config.buy_amount)) * self._quote_scale)

    # ─── Lifecycle ───────────────────────────────────────────────────

    async def buy(self) -> str:
        """CREATED -> BOUGHT. Any submit error moves to FAILED and propagates."""
        with self._lock:
            if self._state is not TrackerState.CREATED or self._buying:
                raise InvalidTransition(f"buy() in state {self._state.value}")
            self._buying = True
            amount = self.buy_amount_raw()

        order = SwapOrder(pool=self._record, amount=amount, direction=OrderDirection.BUY)
        try:
            signature = await self._execution.submit(order)
        except ExecutionFailed as e:
            await self.fail(f"buy failed: {e}")
            raise
        except Exception as e:
            await self.fail(f"buy raised: {e!r}")
            raise
        finally:
            self._buying = False

        with self._lock:
            if self._state is not TrackerState.CREATED:
                # failed while the buy was in flight; the position still exists
                logger.warning(
                    f"[TRACKER] {self.pool_id[:12]} bought after reaching "
                    f"{self._state.value}, tx={signature}"
                )
                self.buy_signature = signature
                return signature
            self._state = TrackerState.BOUGHT
            self.buy_signature = signature
            self.bought_at = datetime.now(UTC)

        logger.info(
            f"[TRACKER] {self.pool_id[:12]} BOUGHT {self._config.buy_amount} "
            f"target={self._target_price:.10g} tx={signature}"
        )
        return signature

    async def subscribe(self, on_update: UpdateCallback | None = None) -> int:
        """BOUGHT -> WATCHING on the quote vault.

        SubscriptionError reverts to BOUGHT with no handle held.
        """
        with self._lock:
            if self._state is not TrackerState.BOUGHT:
                raise InvalidTransition(f"subscribe() in state {self._state.value}")
            # updates delivered while the subscribe call is in flight must be evaluated
            self._state = TrackerState.WATCHING
            self._watch_started = time.monotonic()

        try:
            handle = await self._feed.subscribe(
                self._record.quote_vault, on_update or self.on_balance_update
            )
        except SubscriptionError:
            with self._lock:
                if self._state is TrackerState.WATCHING:
                    self._state = TrackerState.BOUGHT
                    self._watch_started = None
            raise

        with self._lock:
            release_now = self.is_terminal
            if not release_now:
                self._handle = handle
        if release_now:
            await self._feed.unsubscribe(handle)
            logger.debug(f"[TRACKER] {self.pool_id[:12]} terminal during subscribe, released")
        else:
            logger.info(f"[TRACKER] {self.pool_id[:12]} WATCHING quote vault handle={handle}")
        return handle

    async def on_balance_update(self, raw_quote: int) -> None:
        """Evaluate one quote-vault balance. Terminal trackers ignore updates."""
        if self._state is not TrackerState.WATCHING:
            return
        price = self.price_from_quote(raw_quote)
        self.last_price = price
        logger.debug(
            f"[PRICE] {self.pool_id[:12]} price={price:.10g} target={self._target_price:.10g}"
        )
        if price < self._target_price:
            return
        if not self._enter_selling():
            return
        logger.info(
            f"[TRACKER] {self.pool_id[:12]} target hit: price={price:.10g} "
            f">= {self._target_price:.10g}"
        )
        await self.sell()

    def _enter_selling(self) -> bool:
        with self._lock:
            if self._state is not TrackerState.WATCHING:
                return False
            self._state = TrackerState.SELLING
            return True

    async def sell(self) -> str:
        """SELLING -> CLOSED: sell the whole fresh base balance, then release."""
        if self._state is not TrackerState.SELLING:
            raise InvalidTransition(f"sell() in state {self._state.value}")

        raw_balance, _decimals = await self._balance_reader.get_token_balance(
            self._record.base_mint
        )
        if raw_balance <= 0:
            await self.fail("no base balance to sell")
            raise ExecutionFailed(f"zero {self._record.base_mint[:12]} balance at sell")

        order = SwapOrder(pool=self._record, amount=raw_balance, direction=OrderDirection.SELL)
        try:
            signature = await self._execution.submit(order)
        except ExecutionFailed as e:
            await self.fail(f"sell failed: {e}")
            raise
        except Exception as e:
            await self.fail(f"sell raised: {e!r}")
            raise

        with self._lock:
            self._state = TrackerState.CLOSED
            self.sell_signature = signature
            self.sold_amount = raw_balance
            self.closed_at = datetime.now(UTC)
        await self._release_subscription()
        logger.info(f"[TRACKER] {self.pool_id[:12]} CLOSED sold={raw_balance} tx={signature}")
        return signature

    async def fail(self, reason: str) -> None:
        """Any non-terminal state -> FAILED. No-op once terminal."""
        with self._lock:
            if self.is_terminal:
                return
            previous = self._state
            self._state = TrackerState.FAILED
            self.failure_reason = reason
            self.closed_at = datetime.now(UTC)
        if previous in (TrackerState.BOUGHT, TrackerState.WATCHING, TrackerState.SELLING):
            logger.error(
                f"[TRACKER] {self.pool_id[:12]} FAILED from {previous.value} with open "
                f"position (buy tx={self.buy_signature}): {reason}"
            )
        else:
            logger.warning(f"[TRACKER] {self.pool_id[:12]} FAILED: {reason}")
        await self._release_subscription()

    async def force_exit(self, reason: str) -> str | None:
        """Sell now through the same WATCHING -> SELLING gate as a price trigger.

        Returns None when another path already took the gate.
        """
        if not self._enter_selling():
            return None
        logger.info(f"[TRACKER] {self.pool_id[:12]} forced exit: {reason}")
        return await self.sell()

    def watch_expired(self, now: float, max_watch_sec: float) -> bool:
        """True once WATCHING has lasted ``max_watch_sec`` (monotonic seconds)."""
        if max_watch_sec <= 0 or self._state is not TrackerState.WATCHING:
            return False
        if self._watch_started is None:
            return False
        return now - self._watch_started >= max_watch_sec

    async def _release_subscription(self) -> None:
        with self._lock:
            handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            await self._feed.unsubscribe(handle)
        except SubscriptionError as e:
            logger.warning(f"[TRACKER] {self.pool_id[:12]} unsubscribe {handle} failed: {e}")

    # ─── Runtime mutators ────────────────────────────────────────────

    def set_target_percent(self, target_percent: float) -> Decimal:
        """Recompute the target price. Allowed until the tracker starts selling."""
        config = TrackerConfig(buy_amount=self._config.buy_amount, target_percent=target_percent)
        with self._lock:
            if self._state not in (
                TrackerState.CREATED, TrackerState.BOUGHT, TrackerState.WATCHING
            ):
                raise InvalidTransition(f"set_target_percent() in state {self._state.value}")
            self._config = config
            self._target_price = compute_target_price(self._record.v, target_percent)
        logger.info(f"[TRACKER] {self.pool_id[:12]} target -> {self._target_price:.10g}")
        return self._target_price

    def set_buy_amount(self, buy_amount: float) -> None:
        """Change the buy size. Only before the buy is submitted."""
        config = TrackerConfig(buy_amount=buy_amount, target_percent=self._config.target_percent)
        with self._lock:
            if self._state is not TrackerState.CREATED or self._buying:
                raise InvalidTransition(f"set_buy_amount() in state {self._state.value}")
            self._config = config
