"""Sniper pipeline: pool-creation signature -> decoded record -> tracker.

Per signature:
  1. getTransaction (delayed, the RPC index lags logsSubscribe)
  2. skip transactions routed through the Jupiter aggregator
  3. decode initialize2 (variant-aware account layout)
  4. read the AMM state and OpenBook market accounts
  5. normalize sides, K and V, derive routing addresses
  6. persist the record (write-once)
  7. hand numeraire pools to the TrackerManager
"""

import asyncio

from loguru import logger

from config.settings import settings
from src.db.database import Database
from src.db.pool_store import PoolRecordExists, PoolRecordStore, PoolStoreError
from src.parsers.raydium.constants import JUPITER_AMM_ADDRESS
from src.parsers.raydium.decoder import (
    decode_amm_state,
    decode_market_state,
    find_pool_creation,
    transaction_account_keys,
)
from src.parsers.raydium.exceptions import IncompleteAccountData, RaydiumDecodeError
from src.parsers.raydium.models import NewPoolSignature, PoolRecord
from src.parsers.raydium.normalizer import normalize_pool
from src.parsers.raydium.ws_client import RaydiumLogsClient
from src.parsers.solana.account_feed import SolanaAccountFeed
from src.parsers.solana.rpc_client import SolanaRpcClient
from src.trading.exceptions import TrackerError
from src.trading.manager import TrackerManager
from src.trading.raydium_swap import RaydiumSwapExecutor
from src.trading.wallet import SolanaWallet


class PoolCreationWorker:
    """Turns pool-creation signatures into persisted records and live trackers.

    ``manager=None`` runs decode-and-persist only.
    """

    def __init__(
        self,
        *,
        rpc: SolanaRpcClient,
        store: PoolRecordStore,
        owner: str,
        manager: TrackerManager | None = None,
        program_id: str = settings.raydium_amm_program_id,
        buy_amount: float = settings.buy_amount,
        target_percent: float = settings.sell_target_pct,
        skip_jupiter: bool = settings.skip_jupiter_pools,
        tx_fetch_delay: float = settings.tx_fetch_delay_sec,
    ) -> None:
        self._rpc = rpc
        self._store = store
        self._owner = owner
        self._manager = manager
        self._program_id = program_id
        self._buy_amount = buy_amount
        self._target_percent = target_percent
        self._skip_jupiter = skip_jupiter
        self._tx_fetch_delay = tx_fetch_delay
        self.stats = {"seen": 0, "decoded": 0, "skipped": 0, "errors": 0, "tracked": 0}

    async def handle_signature(self, event: NewPoolSignature) -> PoolRecord | None:
        """Run the whole pipeline for one signature. Never raises for a bad event."""
        self.stats["seen"] += 1
        sig = event.signature
        try:
            record = await self._decode(sig)
        except RaydiumDecodeError as e:
            self.stats["errors"] += 1
            logger.warning(f"[WORKER] {sig[:16]} skipped: {type(e).__name__}: {e}")
            return None
        if record is None:
            self.stats["skipped"] += 1
            return None
        self.stats["decoded"] += 1

        try:
            record_id = await self._store.put(record)
        except PoolRecordExists:
            logger.debug(f"[WORKER] Pool {record.pool_id[:12]} already stored")
            return None
        except PoolStoreError as e:
            self.stats["errors"] += 1
            logger.error(f"[WORKER] Store failed for {record.pool_id[:12]}: {e}")
            return None

        logger.info(
            f"[WORKER] Pool #{record_id} {record.pool_id[:12]} base={record.base_mint[:12]} "
            f"V={record.v:.10g} K={record.k}"
        )

        if self._manager is None:
            return record
        if not record.quote_is_numeraire:
            logger.info(f"[WORKER] {record.pool_id[:12]} has no SOL side, not tracked")
            return record
        if record.k <= 0:
            logger.info(f"[WORKER] {record.pool_id[:12]} has K=0 (dust reserves), not tracked")
            return record

        try:
            await self._manager.track(record, self._buy_amount, self._target_percent)
            self.stats["tracked"] += 1
        except TrackerError as e:
            logger.error(f"[WORKER] Tracker bootstrap failed for {record.pool_id[:12]}: {e}")
        except Exception:
            self.stats["errors"] += 1
            logger.exception(f"[WORKER] Tracker bootstrap raised for {record.pool_id[:12]}")
        return record

    async def _decode(self, sig: str) -> PoolRecord | None:
        tx = await self._rpc.get_transaction(sig, initial_delay=self._tx_fetch_delay)
        if tx is None:
            logger.warning(f"[WORKER] Transaction {sig[:16]} not available")
            return None

        if self._skip_jupiter and JUPITER_AMM_ADDRESS in transaction_account_keys(tx):
            logger.debug(f"[WORKER] {sig[:16]} routed via Jupiter, skipped")
            return None

        event = find_pool_creation(tx, self._program_id)
        if event is None:
            logger.debug(f"[WORKER] {sig[:16]} holds no initialize2")
            return None

        amm_data, market_data = await asyncio.gather(
            self._rpc.get_account_data(event.pool_id),
            self._rpc.get_account_data(event.market_id),
        )
        if amm_data is None:
            raise IncompleteAccountData(f"pool account {event.pool_id} not found")
        if market_data is None:
            raise IncompleteAccountData(f"market account {event.market_id} not found")
        amm_state = decode_amm_state(amm_data)
        market_state = decode_market_state(market_data)

        return normalize_pool(
            event,
            amm_state=amm_state,
            market_state=market_state,
            mint_decimals={
                event.base_mint: amm_state.base_decimals,
                event.quote_mint: amm_state.quote_decimals,
            },
            owner=self._owner,
            signature=sig,
        )


async def run_sniper() -> None:
    """Entry point: wires feeds, store, executor and manager, then runs forever."""
    rpc = SolanaRpcClient(settings.solana_rpc_url, max_rps=settings.rpc_max_rps)
    database = Database(settings.database_url)
    await database.open()
    store = PoolRecordStore(database)

    feed: SolanaAccountFeed | None = None
    manager: TrackerManager | None = None
    owner = settings.user_solana_address
    tasks: list[asyncio.Task] = []

    if settings.trading_enabled:
        wallet = SolanaWallet(settings.wallet_private_key, rpc)
        if owner and owner != wallet.pubkey_str:
            logger.warning("[WORKER] USER_SOLANA_ADDRESS differs from the wallet, using the wallet")
        owner = wallet.pubkey_str
        executor = RaydiumSwapExecutor(
            rpc=rpc,
            keypair=wallet.keypair,
            compute_unit_limit=settings.compute_unit_limit,
            priority_fee_micro_lamports=settings.priority_fee_micro_lamports,
            priority_fee_multiplier=settings.priority_fee_multiplier,
        )
        feed = SolanaAccountFeed(settings.solana_ws_url)
        manager = TrackerManager(
            execution=executor,
            feed=feed,
            balance_reader=wallet,
            subscribe_attempts=settings.subscribe_attempts,
            max_watch_sec=settings.max_watch_sec,
        )
        balance = await wallet.get_sol_balance()
        logger.info(f"[WORKER] Trading enabled, wallet balance {balance:.4f} SOL")
        tasks.append(asyncio.create_task(feed.connect(), name="account_feed"))
        if settings.max_watch_sec > 0:
            tasks.append(asyncio.create_task(
                manager.run_sweep_loop(settings.sweep_interval_sec), name="watch_sweep"
            ))
    else:
        logger.warning("[WORKER] Trading disabled, decode and persist only")
        if not owner:
            await rpc.close()
            await database.close()
            raise ValueError("USER_SOLANA_ADDRESS is required when trading is disabled")

    worker = PoolCreationWorker(rpc=rpc, store=store, owner=owner, manager=manager)
    logs = RaydiumLogsClient(settings.solana_ws_url, settings.raydium_amm_program_id)
    logs.on_new_pool = worker.handle_signature
    tasks.append(asyncio.create_task(logs.connect(), name="raydium_logs"))

    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        logger.info("[WORKER] Sniper tasks cancelled")
    finally:
        await logs.stop()
        if manager:
            await manager.shutdown()
        if feed:
            await feed.stop()
        for task in tasks:
            task.cancel()
        await rpc.close()
        await database.close()
        logger.info(f"[WORKER] Stats: {worker.stats}")
