"""Solana wallet: keypair loading, fresh balance reads, ATA derivation.

Private key is loaded ONCE at startup and never logged or exposed.
Only the public key is shown in logs and __repr__.
"""

from __future__ import annotations

import struct

from loguru import logger
from solders.keypair import Keypair  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.parsers.raydium.constants import (
    LAMPORTS_PER_SOL,
    TOKEN_ACCOUNT_AMOUNT_OFFSET,
    TOKEN_PROGRAM_ID,
)
from src.parsers.raydium.normalizer import derive_associated_token_account
from src.parsers.solana.rpc_client import SolanaRpcClient


class SolanaWallet:
    """Signing identity plus on-chain balance queries for the trading wallet.

    Security: private key is only accessible via .keypair property.
    """

    def __init__(self, private_key_base58: str, rpc: SolanaRpcClient) -> None:
        if not private_key_base58:
            raise ValueError("Wallet private key is empty")

        self._keypair = Keypair.from_base58_string(private_key_base58)
        self._rpc = rpc
        logger.info(f"[WALLET] Loaded wallet: {self.pubkey_str}")

    def __repr__(self) -> str:
        return f"SolanaWallet(pubkey={self.pubkey_str})"

    @property
    def pubkey(self) -> Pubkey:
        return self._keypair.pubkey()

    @property
    def pubkey_str(self) -> str:
        return str(self._keypair.pubkey())

    @property
    def keypair(self) -> Keypair:
        return self._keypair

    async def get_sol_balance(self) -> float:
        """SOL balance in SOL (not lamports). 0.0 when the RPC gives nothing."""
        lamports = await self._rpc.get_balance(self.pubkey_str)
        if lamports is None:
            logger.warning("[WALLET] getBalance returned nothing")
            return 0.0
        return lamports / LAMPORTS_PER_SOL

    async def get_token_balance(self, mint: str) -> tuple[int, int]:
        """Raw SPL balance of the wallet's ATA for ``mint``, read fresh.

        Returns (raw_amount, decimals). A missing account reads as zero.
        """
        ata = self.get_ata_address(mint)
        data = await self._rpc.get_account_data(ata)
        if not data or len(data) < TOKEN_ACCOUNT_AMOUNT_OFFSET + 8:
            logger.debug(f"[WALLET] No token account for {mint[:12]}")
            return 0, 0
        raw_amount = struct.unpack_from("<Q", data, TOKEN_ACCOUNT_AMOUNT_OFFSET)[0]
        decimals = await self._rpc.get_token_decimals(mint) or 0
        return raw_amount, decimals

    def get_ata_address(self, mint: str, token_program_id: str = TOKEN_PROGRAM_ID) -> str:
        """Associated Token Account address of this wallet for a mint."""
        return derive_associated_token_account(self.pubkey_str, mint, token_program_id)
