"""Execution service contract shared by trackers.

``submit`` either returns the confirmed transaction signature or raises
ExecutionFailed. Implementations keep no per-call mutable state so one
instance is shared by every tracker.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from src.parsers.raydium.models import PoolRecord


class OrderDirection(str, Enum):
    BUY = "buy"  # quote (numeraire) in, base out
    SELL = "sell"  # base in, quote out


@dataclass(frozen=True)
class SwapOrder:
    pool: PoolRecord
    amount: int  # raw units of the input side
    direction: OrderDirection

    @property
    def input_mint(self) -> str:
        return self.pool.quote_mint if self.direction is OrderDirection.BUY else self.pool.base_mint

    @property
    def output_mint(self) -> str:
        return self.pool.base_mint if self.direction is OrderDirection.BUY else self.pool.quote_mint


class ExecutionService(Protocol):
    async def submit(self, order: SwapOrder) -> str: ...


class BalanceReader(Protocol):
    async def get_token_balance(self, mint: str) -> tuple[int, int]: ...
