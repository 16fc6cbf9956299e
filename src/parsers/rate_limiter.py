import asyncio
from time import monotonic


class RateLimiter:
    """Spaces RPC requests at least ``1 / max_rps`` seconds apart.

    Each caller reserves the next free slot under the lock and sleeps
    outside it, so waiting callers queue up in arrival order.
    """

    def __init__(self, max_rps: float) -> None:
        if max_rps <= 0:
            raise ValueError(f"max_rps must be positive, got {max_rps}")
        self._min_interval = 1.0 / max_rps
        self._next_slot = 0.0
        self._lock = asyncio.Lock()

    @property
    def min_interval(self) -> float:
        return self._min_interval

    async def acquire(self) -> None:
        async with self._lock:
            now = monotonic()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self._min_interval
        wait = slot - now
        if wait > 0:
            await asyncio.sleep(wait)
