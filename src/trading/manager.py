"""Tracker registry: bootstraps trackers and owns the live set.

Every feed callback runs through ``_dispatch`` so a failure inside one
tracker's update handling fails only that tracker.
"""

from __future__ import annotations

import asyncio
import threading
import time
from decimal import Decimal

from loguru import logger

from src.parsers.raydium.models import PoolRecord
from src.trading.exceptions import DuplicateTracker, InvalidTransition, SubscriptionError, TrackerError
from src.trading.execution import BalanceReader, ExecutionService
from src.trading.tracker import PoolTracker, TrackerConfig, ValueFeed


class TrackerManager:
    def __init__(
        self,
        *,
        execution: ExecutionService,
        feed: ValueFeed,
        balance_reader: BalanceReader,
        subscribe_attempts: int = 2,
        max_watch_sec: float = 0,
    ) -> None:
        if subscribe_attempts < 1:
            raise ValueError("subscribe_attempts must be >= 1")
        self._execution = execution
        self._feed = feed
        self._balance_reader = balance_reader
        self._subscribe_attempts = subscribe_attempts
        self._max_watch_sec = max_watch_sec

        self._lock = threading.Lock()
        self._live: dict[str, PoolTracker] = {}
        self._bootstrapping: set[str] = set()
        self._closed_count = 0
        self._failed_count = 0

    @property
    def live(self) -> dict[str, PoolTracker]:
        """Snapshot of live trackers by pool id."""
        with self._lock:
            return dict(self._live)

    @property
    def closed_count(self) -> int:
        return self._closed_count

    @property
    def failed_count(self) -> int:
        return self._failed_count

    def get(self, pool_id: str) -> PoolTracker | None:
        with self._lock:
            return self._live.get(pool_id)

    async def track(
        self, record: PoolRecord, buy_amount: float, target_percent: float
    ) -> PoolTracker:
        """Buy into ``record`` and start watching it.

        Raises DuplicateTracker for a pool already live or bootstrapping, and
        re-raises any bootstrap failure; the tracker then never enters the live set.
        """
        config = TrackerConfig(buy_amount=buy_amount, target_percent=target_percent)
        with self._lock:
            if record.pool_id in self._live or record.pool_id in self._bootstrapping:
                raise DuplicateTracker(f"pool {record.pool_id} already tracked")
            self._bootstrapping.add(record.pool_id)

        tracker: PoolTracker | None = None
        try:
            tracker = PoolTracker(
                record,
                config,
                execution=self._execution,
                feed=self._feed,
                balance_reader=self._balance_reader,
            )
            await tracker.buy()
            await self._subscribe_with_retry(tracker)

            with self._lock:
                if tracker.is_terminal:
                    self._count_terminal(tracker)
                else:
                    self._live[record.pool_id] = tracker
        except Exception as e:
            if tracker is not None:
                await tracker.fail(f"bootstrap raised: {e!r}")
            with self._lock:
                self._failed_count += 1
            raise
        finally:
            with self._lock:
                self._bootstrapping.discard(record.pool_id)

        logger.info(
            f"[MANAGER] Tracking {record.pool_id[:12]} state={tracker.state.value} "
            f"({len(self._live)} live)"
        )
        return tracker

    async def _subscribe_with_retry(self, tracker: PoolTracker) -> None:
        for attempt in range(1, self._subscribe_attempts + 1):
            try:
                await tracker.subscribe(self._callback_for(tracker))
                return
            except SubscriptionError as e:
                logger.warning(
                    f"[MANAGER] Subscribe {tracker.pool_id[:12]} attempt "
                    f"{attempt}/{self._subscribe_attempts} failed: {e}"
                )
                if attempt == self._subscribe_attempts:
                    await tracker.fail(f"could not subscribe after buy: {e}")
                    raise

    def _callback_for(self, tracker: PoolTracker):
        async def on_update(raw_balance: int) -> None:
            await self._dispatch(tracker, raw_balance)

        return on_update

    async def _dispatch(self, tracker: PoolTracker, raw_balance: int) -> None:
        """Deliver one update; any failure fails this tracker only."""
        try:
            await tracker.on_balance_update(raw_balance)
        except Exception:
            logger.exception(f"[MANAGER] Update handling failed for {tracker.pool_id[:12]}")
            await tracker.fail("update handling raised")
        if tracker.is_terminal:
            self._retire(tracker)

    def _retire(self, tracker: PoolTracker) -> None:
        with self._lock:
            if self._live.get(tracker.pool_id) is not tracker:
                return
            del self._live[tracker.pool_id]
            self._count_terminal(tracker)
        logger.info(f"[MANAGER] Retired {tracker.pool_id[:12]} ({tracker.state.value})")

    def _count_terminal(self, tracker: PoolTracker) -> None:
        if tracker.sell_signature is not None:
            self._closed_count += 1
        else:
            self._failed_count += 1

    # ─── Runtime control ─────────────────────────────────────────────

    def _require(self, pool_id: str) -> PoolTracker:
        tracker = self.get(pool_id)
        if tracker is None:
            raise InvalidTransition(f"pool {pool_id} is not live")
        return tracker

    def set_target_percent(self, pool_id: str, target_percent: float) -> Decimal:
        return self._require(pool_id).set_target_percent(target_percent)

    def set_buy_amount(self, pool_id: str, buy_amount: float) -> None:
        self._require(pool_id).set_buy_amount(buy_amount)

    async def sweep_expired(self, now: float | None = None) -> int:
        """Force out trackers that watched longer than ``max_watch_sec``."""
        if self._max_watch_sec <= 0:
            return 0
        now = time.monotonic() if now is None else now
        expired = [
            t for t in self.live.values() if t.watch_expired(now, self._max_watch_sec)
        ]
        for tracker in expired:
            try:
                await tracker.force_exit(f"watched over {self._max_watch_sec}s")
            except TrackerError as e:
                logger.warning(f"[MANAGER] Forced exit of {tracker.pool_id[:12]} failed: {e}")
            except Exception:
                logger.exception(f"[MANAGER] Forced exit of {tracker.pool_id[:12]} raised")
                await tracker.fail("forced exit raised")
            if tracker.is_terminal:
                self._retire(tracker)
        return len(expired)

    async def run_sweep_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            expired = await self.sweep_expired()
            if expired:
                logger.info(f"[MANAGER] Swept {expired} expired trackers")

    async def shutdown(self) -> None:
        """Release every subscription. Open positions are left as they are."""
        with self._lock:
            trackers = list(self._live.values())
            self._live.clear()
        for tracker in trackers:
            await tracker.fail("shutdown")
        logger.info(f"[MANAGER] Shutdown released {len(trackers)} trackers")
