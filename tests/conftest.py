"""Shared test fixtures."""

from collections.abc import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.db.database import Database
from src.parsers.raydium.constants import (
    OPENBOOK_PROGRAM_ID,
    RAYDIUM_AMM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    WSOL_MINT,
)
from src.parsers.raydium.models import PoolRecord


def new_key() -> str:
    return str(Pubkey.new_unique())


@pytest.fixture
def make_pool_record() -> Callable[..., PoolRecord]:
    """Factory for a SOL-quoted PoolRecord: base 1e9 raw/9 dec, quote 50e9 raw/9 dec."""

    def _make(**overrides) -> PoolRecord:
        fields = {
            "program_id": RAYDIUM_AMM_PROGRAM_ID,
            "pool_id": new_key(),
            "lp_mint": new_key(),
            "authority": new_key(),
            "open_orders": new_key(),
            "target_orders": new_key(),
            "base_mint": new_key(),
            "quote_mint": WSOL_MINT,
            "base_vault": new_key(),
            "quote_vault": new_key(),
            "market_id": new_key(),
            "market_program_id": OPENBOOK_PROGRAM_ID,
            "init_base_amount": 1_000_000_000,
            "init_quote_amount": 50_000_000_000,
            "nonce": 254,
            "open_time": 0,
            "signature": "5sigTest",
            "base_decimals": 9,
            "quote_decimals": 9,
            "lp_decimals": 9,
            "k": 50,
            "v": 50.0,
            "withdraw_queue": new_key(),
            "lp_vault": new_key(),
            "market_event_queue": new_key(),
            "market_bids": new_key(),
            "market_asks": new_key(),
            "market_base_vault": new_key(),
            "market_quote_vault": new_key(),
            "market_authority": new_key(),
            "vault_owner": new_key(),
            "owner": new_key(),
            "user_base_token_account": new_key(),
            "user_quote_token_account": new_key(),
            "token_program_id": TOKEN_PROGRAM_ID,
        }
        fields.update(overrides)
        return PoolRecord(**fields)

    return _make


@pytest_asyncio.fixture(scope="function")
async def database(tmp_path) -> AsyncGenerator[Database, None]:
    """Fresh SQLite database per test, tables created on open."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'pools.db'}")
    await db.open()
    yield db
    await db.close()
