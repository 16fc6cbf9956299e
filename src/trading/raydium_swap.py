"""Raydium AMM v4 swap execution: build, sign, send, confirm.

Pipeline:
  1. compute budget (unit limit + priority price)
  2. idempotent ATA creation for the input and output mints
  3. WSOL wrap when SOL is the input (system transfer + SyncNative)
  4. AMM ``swap_base_in`` (opcode 9), minimum out 0
  5. close the WSOL account so leftovers unwrap back to SOL
  6. fresh blockhash, sign once, send, poll status while resending the same bytes
"""

from __future__ import annotations

import asyncio
import base64
import struct

from loguru import logger
from solders.compute_budget import (  # type: ignore[import-untyped]
    set_compute_unit_limit,
    set_compute_unit_price,
)
from solders.hash import Hash  # type: ignore[import-untyped]
from solders.instruction import AccountMeta, Instruction  # type: ignore[import-untyped]
from solders.keypair import Keypair  # type: ignore[import-untyped]
from solders.message import MessageV0  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]
from solders.system_program import TransferParams, transfer  # type: ignore[import-untyped]
from solders.transaction import VersionedTransaction  # type: ignore[import-untyped]

from src.parsers.raydium.constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    OPCODE_SWAP_BASE_IN,
    SYSTEM_PROGRAM_ID,
    WSOL_MINT,
)
from src.parsers.raydium.normalizer import derive_associated_token_account
from src.parsers.solana.rpc_client import SolanaRpcClient, SolanaRpcError
from src.trading.exceptions import ExecutionFailed
from src.trading.execution import OrderDirection, SwapOrder

# SPL token instruction tags
_TOKEN_IX_CLOSE_ACCOUNT = 9
_TOKEN_IX_SYNC_NATIVE = 17
_ATA_IX_CREATE_IDEMPOTENT = 1

CONFIRM_POLL_INTERVAL = 2.0  # seconds
CONFIRM_TIMEOUT = 60.0  # seconds
RESEND_INTERVAL = 4.0  # seconds


def _meta(address: str, *, writable: bool = False, signer: bool = False) -> AccountMeta:
    return AccountMeta(
        pubkey=Pubkey.from_string(address), is_signer=signer, is_writable=writable
    )


def swap_base_in_data(amount_in: int, minimum_amount_out: int = 0) -> bytes:
    """``u8 opcode | u64 amount_in | u64 minimum_amount_out``."""
    return struct.pack("<BQQ", OPCODE_SWAP_BASE_IN, amount_in, minimum_amount_out)


def build_swap_instruction(order: SwapOrder) -> Instruction:
    """AMM v4 swap_base_in. Vaults go in the exchange's coin/pc order."""
    pool = order.pool
    if order.direction is OrderDirection.BUY:
        source, dest = pool.user_quote_token_account, pool.user_base_token_account
    else:
        source, dest = pool.user_base_token_account, pool.user_quote_token_account

    accounts = [
        _meta(pool.token_program_id),
        _meta(pool.pool_id, writable=True),
        _meta(pool.authority),
        _meta(pool.open_orders, writable=True),
        _meta(pool.target_orders, writable=True),
        _meta(pool.coin_vault, writable=True),
        _meta(pool.pc_vault, writable=True),
        _meta(pool.market_program_id),
        _meta(pool.market_id, writable=True),
        _meta(pool.market_bids, writable=True),
        _meta(pool.market_asks, writable=True),
        _meta(pool.market_event_queue, writable=True),
        _meta(pool.market_base_vault, writable=True),
        _meta(pool.market_quote_vault, writable=True),
        _meta(pool.market_authority),
        _meta(source, writable=True),
        _meta(dest, writable=True),
        _meta(pool.owner, signer=True),
    ]
    return Instruction(
        Pubkey.from_string(pool.program_id), swap_base_in_data(order.amount), accounts
    )


def build_create_ata_idempotent(payer: str, owner: str, mint: str, token_program_id: str) -> Instruction:
    ata = derive_associated_token_account(owner, mint, token_program_id)
    accounts = [
        _meta(payer, writable=True, signer=True),
        _meta(ata, writable=True),
        _meta(owner),
        _meta(mint),
        _meta(SYSTEM_PROGRAM_ID),
        _meta(token_program_id),
    ]
    return Instruction(
        Pubkey.from_string(ASSOCIATED_TOKEN_PROGRAM_ID),
        bytes([_ATA_IX_CREATE_IDEMPOTENT]),
        accounts,
    )


class RaydiumSwapExecutor:
    """Executes swap orders directly against the AMM v4 program.

    Holds read-only state only (RPC client, keypair, fee settings), so one
    instance is shared by every tracker.
    """

    def __init__(
        self,
        *,
        rpc: SolanaRpcClient,
        keypair: Keypair,
        compute_unit_limit: int = 300_000,
        priority_fee_micro_lamports: int = 50_000,
        priority_fee_multiplier: float = 1.5,
        confirm_timeout: float = CONFIRM_TIMEOUT,
        poll_interval: float = CONFIRM_POLL_INTERVAL,
        resend_interval: float = RESEND_INTERVAL,
    ) -> None:
        self._rpc = rpc
        self._keypair = keypair
        self._cu_limit = compute_unit_limit
        self._cu_price = int(priority_fee_micro_lamports * priority_fee_multiplier)
        self._confirm_timeout = confirm_timeout
        self._poll_interval = poll_interval
        self._resend_interval = resend_interval

    @property
    def payer(self) -> str:
        return str(self._keypair.pubkey())

    def build_instructions(self, order: SwapOrder) -> list[Instruction]:
        if order.amount <= 0:
            raise ExecutionFailed(f"non-positive swap amount {order.amount}")
        pool = order.pool
        if pool.owner != self.payer:
            raise ExecutionFailed(f"pool record owner {pool.owner[:12]} is not the signing wallet")

        ixs: list[Instruction] = [
            set_compute_unit_limit(self._cu_limit),
            set_compute_unit_price(self._cu_price),
        ]
        for mint in (order.input_mint, order.output_mint):
            ixs.append(build_create_ata_idempotent(self.payer, pool.owner, mint, pool.token_program_id))

        wsol_ata = None
        if WSOL_MINT in (pool.base_mint, pool.quote_mint):
            wsol_ata = derive_associated_token_account(pool.owner, WSOL_MINT, pool.token_program_id)

        if order.input_mint == WSOL_MINT and wsol_ata is not None:
            ixs.append(transfer(TransferParams(
                from_pubkey=self._keypair.pubkey(),
                to_pubkey=Pubkey.from_string(wsol_ata),
                lamports=order.amount,
            )))
            ixs.append(Instruction(
                Pubkey.from_string(pool.token_program_id),
                bytes([_TOKEN_IX_SYNC_NATIVE]),
                [_meta(wsol_ata, writable=True)],
            ))

        ixs.append(build_swap_instruction(order))

        if wsol_ata is not None:
            ixs.append(Instruction(
                Pubkey.from_string(pool.token_program_id),
                bytes([_TOKEN_IX_CLOSE_ACCOUNT]),
                [
                    _meta(wsol_ata, writable=True),
                    _meta(pool.owner, writable=True),
                    _meta(pool.owner, signer=True),
                ],
            ))
        return ixs

    async def submit(self, order: SwapOrder) -> str:
        """Sign once and land the transaction. Returns the confirmed signature."""
        pool = order.pool
        logger.info(
            f"[SWAP] {order.direction.value.upper()} {pool.pool_id[:12]} "
            f"amount={order.amount} {order.input_mint[:8]} -> {order.output_mint[:8]}"
        )
        ixs = self.build_instructions(order)

        try:
            blockhash = await self._rpc.get_latest_blockhash()
            msg = MessageV0.try_compile(
                payer=self._keypair.pubkey(),
                instructions=ixs,
                address_lookup_table_accounts=[],
                recent_blockhash=Hash.from_string(blockhash),
            )
            tx = VersionedTransaction(msg, [self._keypair])
        except SolanaRpcError as e:
            raise ExecutionFailed(f"blockhash fetch failed: {e}") from e
        except Exception as e:
            raise ExecutionFailed(f"TX build/sign failed: {e}") from e

        tx_b64 = base64.b64encode(bytes(tx)).decode("ascii")
        signature = str(tx.signatures[0])

        try:
            await self._rpc.send_transaction(tx_b64)
        except SolanaRpcError as e:
            raise ExecutionFailed(str(e)) from e
        except Exception as e:
            raise ExecutionFailed(f"TX send raised: {e!r}") from e

        try:
            await self._wait_for_confirmation(signature, tx_b64)
        except ExecutionFailed:
            raise
        except Exception as e:
            raise ExecutionFailed(f"TX {signature[:16]} status check raised: {e!r}") from e

        logger.info(f"[SWAP] {order.direction.value.upper()} confirmed: {pool.pool_id[:12]} tx={signature}")
        return signature

    async def _wait_for_confirmation(self, signature: str, tx_b64: str) -> None:
        """Poll status, resending the same signed bytes. Raises ExecutionFailed."""
        elapsed = 0.0
        last_resend = 0.0
        while elapsed < self._confirm_timeout:
            status = await self._rpc.get_signature_status(signature)
            if status is not None:
                if status.get("err"):
                    raise ExecutionFailed(f"TX {signature[:16]} failed on-chain: {status['err']}")
                if status.get("confirmationStatus") in ("confirmed", "finalized"):
                    logger.debug(f"[SWAP] TX {signature[:16]} confirmed in {elapsed:.1f}s")
                    return

            if elapsed - last_resend >= self._resend_interval:
                try:
                    await self._rpc.send_transaction(tx_b64)
                except SolanaRpcError as e:
                    logger.debug(f"[SWAP] Resend of {signature[:16]} rejected: {e}")
                last_resend = elapsed

            await asyncio.sleep(self._poll_interval)
            elapsed += self._poll_interval

        raise ExecutionFailed(
            f"TX {signature[:16]} confirmation timeout after {self._confirm_timeout:.0f}s"
        )
