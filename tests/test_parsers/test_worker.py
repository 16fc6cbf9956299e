"""Tests for the pool-creation pipeline: signature -> record -> tracker."""

import struct
from unittest.mock import AsyncMock, MagicMock

import base58
import pytest
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.db.pool_store import PoolRecordExists, PoolRecordStore
from src.parsers.raydium.constants import (
    AMM_STATE_SIZE,
    JUPITER_AMM_ADDRESS,
    OPENBOOK_PROGRAM_ID,
    RAYDIUM_AMM_PROGRAM_ID,
    SYSVAR_RENT,
    WSOL_MINT,
)
from src.parsers.raydium.models import NewPoolSignature
from src.parsers.solana.rpc_client import SolanaRpcClient
from src.parsers.worker import PoolCreationWorker
from src.trading.exceptions import ExecutionFailed
from src.trading.manager import TrackerManager


def _key() -> str:
    return str(Pubkey.new_unique())


def _derivable_nonce(market: str) -> int:
    for nonce in range(256):
        try:
            Pubkey.create_program_address(
                [bytes(Pubkey.from_string(market)), nonce.to_bytes(8, "little")],
                Pubkey.from_string(OPENBOOK_PROGRAM_ID),
            )
            return nonce
        except Exception:
            continue
    raise AssertionError("no derivable vault signer nonce")


class PoolFixture:
    """A consistent transaction plus its pool and market account bytes."""

    def __init__(self, *, base_mint: str | None = None, quote_mint: str = WSOL_MINT, extra_keys=()) -> None:
        self.keys = [_key() for _ in range(21)]
        self.keys[3] = SYSVAR_RENT
        self.keys[8] = base_mint or _key()
        self.keys[9] = quote_mint
        self.keys[15] = OPENBOOK_PROGRAM_ID
        self.pool_id = self.keys[4]
        self.market_id = self.keys[16]
        self.keys += [RAYDIUM_AMM_PROGRAM_ID, *extra_keys]

        data = struct.pack("<BBQQQ", 1, 254, 0, 50_000_000_000, 1_000_000_000)
        self.tx = {
            "slot": 10,
            "transaction": {"message": {
                "accountKeys": self.keys,
                "instructions": [{
                    "programIdIndex": 21,
                    "accounts": list(range(21)),
                    "data": base58.b58encode(data).decode(),
                }],
            }},
            "meta": {"err": None},
        }

        amm = bytearray(AMM_STATE_SIZE)
        struct.pack_into("<Q", amm, 32, 9)
        struct.pack_into("<Q", amm, 40, 9)
        amm[624:656] = bytes(Pubkey.new_unique())
        amm[656:688] = bytes(Pubkey.new_unique())
        self.amm = bytes(amm)

        market = bytearray(388)
        struct.pack_into("<Q", market, 45, _derivable_nonce(self.market_id))
        for offset in (117, 165, 253, 285, 317):
            market[offset:offset + 32] = bytes(Pubkey.new_unique())
        self.market = bytes(market)

    def account_data(self, address: str) -> bytes | None:
        return {self.pool_id: self.amm, self.market_id: self.market}.get(address)


def _rpc_for(pool: PoolFixture) -> MagicMock:
    rpc = MagicMock(spec=SolanaRpcClient)
    rpc.get_transaction = AsyncMock(return_value=pool.tx)
    rpc.get_account_data = AsyncMock(side_effect=pool.account_data)
    return rpc


def _worker(rpc, *, store=None, manager=None, **kwargs) -> PoolCreationWorker:
    if store is None:
        store = MagicMock(spec=PoolRecordStore)
        store.put = AsyncMock(return_value=1)
    return PoolCreationWorker(
        rpc=rpc,
        store=store,
        owner=_key(),
        manager=manager,
        program_id=RAYDIUM_AMM_PROGRAM_ID,
        buy_amount=0.02,
        target_percent=10.0,
        tx_fetch_delay=0,
        **kwargs,
    )


class TestHandleSignature:
    @pytest.mark.asyncio
    async def test_pipeline_persists_and_tracks(self) -> None:
        pool = PoolFixture()
        manager = MagicMock(spec=TrackerManager)
        manager.track = AsyncMock()
        worker = _worker(_rpc_for(pool), manager=manager)

        record = await worker.handle_signature(NewPoolSignature(signature="sig1"))

        assert record is not None
        assert record.pool_id == pool.pool_id
        assert record.k == 50
        assert record.v == 50.0
        assert record.signature == "sig1"
        worker._store.put.assert_awaited_once_with(record)
        manager.track.assert_awaited_once_with(record, 0.02, 10.0)
        assert worker.stats["tracked"] == 1

    @pytest.mark.asyncio
    async def test_decode_only_without_manager(self) -> None:
        worker = _worker(_rpc_for(PoolFixture()))
        record = await worker.handle_signature(NewPoolSignature(signature="sig1"))
        assert record is not None
        worker._store.put.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_persisted_against_real_store(self, database) -> None:
        store = PoolRecordStore(database)
        pool = PoolFixture()
        worker = _worker(_rpc_for(pool), store=store)

        record = await worker.handle_signature(NewPoolSignature(signature="sig1"))

        stored = await store.get_by_pool_id(pool.pool_id)
        assert stored is not None
        assert stored.model_dump() == record.model_dump()

    @pytest.mark.asyncio
    async def test_jupiter_routed_transaction_skipped(self) -> None:
        worker = _worker(_rpc_for(PoolFixture(extra_keys=(JUPITER_AMM_ADDRESS,))))
        assert await worker.handle_signature(NewPoolSignature(signature="sig1")) is None
        worker._store.put.assert_not_awaited()
        assert worker.stats["skipped"] == 1

    @pytest.mark.asyncio
    async def test_missing_transaction_skipped(self) -> None:
        rpc = MagicMock(spec=SolanaRpcClient)
        rpc.get_transaction = AsyncMock(return_value=None)
        worker = _worker(rpc)
        assert await worker.handle_signature(NewPoolSignature(signature="sig1")) is None

    @pytest.mark.asyncio
    async def test_missing_market_account_is_logged_not_raised(self) -> None:
        pool = PoolFixture()
        rpc = _rpc_for(pool)
        rpc.get_account_data = AsyncMock(side_effect=lambda addr: pool.amm if addr == pool.pool_id else None)
        worker = _worker(rpc)

        assert await worker.handle_signature(NewPoolSignature(signature="sig1")) is None
        assert worker.stats["errors"] == 1

    @pytest.mark.asyncio
    async def test_short_pool_account_is_logged_not_raised(self) -> None:
        pool = PoolFixture()
        pool.amm = pool.amm[:100]
        worker = _worker(_rpc_for(pool))
        assert await worker.handle_signature(NewPoolSignature(signature="sig1")) is None
        assert worker.stats["errors"] == 1

    @pytest.mark.asyncio
    async def test_duplicate_pool_not_tracked_twice(self) -> None:
        store = MagicMock(spec=PoolRecordStore)
        store.put = AsyncMock(side_effect=PoolRecordExists("dup"))
        manager = MagicMock(spec=TrackerManager)
        manager.track = AsyncMock()
        worker = _worker(_rpc_for(PoolFixture()), store=store, manager=manager)

        assert await worker.handle_signature(NewPoolSignature(signature="sig1")) is None
        manager.track.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pool_without_sol_side_not_tracked(self) -> None:
        manager = MagicMock(spec=TrackerManager)
        manager.track = AsyncMock()
        worker = _worker(_rpc_for(PoolFixture(quote_mint=_key())), manager=manager)

        record = await worker.handle_signature(NewPoolSignature(signature="sig1"))
        assert record is not None
        assert record.quote_is_numeraire is False
        manager.track.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tracker_failure_is_contained(self) -> None:
        manager = MagicMock(spec=TrackerManager)
        manager.track = AsyncMock(side_effect=ExecutionFailed("no fill"))
        worker = _worker(_rpc_for(PoolFixture()), manager=manager)

        record = await worker.handle_signature(NewPoolSignature(signature="sig1"))
        assert record is not None
        assert worker.stats["tracked"] == 0

    @pytest.mark.asyncio
    async def test_unexpected_tracker_error_is_contained(self) -> None:
        manager = MagicMock(spec=TrackerManager)
        manager.track = AsyncMock(side_effect=RuntimeError("transport closed"))
        worker = _worker(_rpc_for(PoolFixture()), manager=manager)

        record = await worker.handle_signature(NewPoolSignature(signature="sig1"))
        assert record is not None
        assert worker.stats["tracked"] == 0
        assert worker.stats["errors"] == 1

    @pytest.mark.asyncio
    async def test_sol_on_coin_side_is_normalized(self) -> None:
        worker = _worker(_rpc_for(PoolFixture(base_mint=WSOL_MINT, quote_mint=_key())))
        record = await worker.handle_signature(NewPoolSignature(signature="sig1"))
        assert record is not None
        assert record.sides_swapped is True
        assert record.quote_mint == WSOL_MINT
        # coin 1e9 raw becomes the quote side, pc 50e9 raw the base side
        assert record.v == pytest.approx(0.02)
