"""Decode Raydium AMM v4 pool creation instructions and the accounts they create.

Pure functions, no I/O. Three inputs are understood:

* ``initialize2`` instruction (opcode 1), 26 bytes of data:
    0      opcode (u8)
    1      nonce (u8)
    2:10   open_time (u64 LE)
    10:18  init_pc_amount (u64 LE)
    18:26  init_coin_amount (u64 LE)
* AMM v4 pool state account (752 bytes, LiquidityStateV4).
* OpenBook market account (event queue 253, bids 285, asks 317).

Account-key layouts resolved by ``resolve_layout``:

  STANDARD        4 amm | 5 authority | 6 open_orders | 7 lp_mint | 8 coin_mint
                  9 pc_mint | 10 coin_vault | 11 pc_vault | 13 target_orders
                  15 market_program | 16 market
  CLOCK_PREFIXED  the clock sysvar occupies slot 5, so authority/open_orders
                  move to 6/7; every other account keeps its STANDARD slot.

Anything else raises UnsupportedLayoutVariant.
"""

import struct
from collections.abc import Sequence

import base58
from loguru import logger
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.parsers.raydium.constants import (
    AMM_BASE_DECIMAL_OFFSET,
    AMM_LP_RESERVE_OFFSET,
    AMM_LP_VAULT_OFFSET,
    AMM_NONCE_OFFSET,
    AMM_POOL_OPEN_TIME_OFFSET,
    AMM_QUOTE_DECIMAL_OFFSET,
    AMM_STATE_SIZE,
    AMM_STATUS_OFFSET,
    AMM_WITHDRAW_QUEUE_OFFSET,
    INIT2_COIN_AMOUNT_OFFSET,
    INIT2_DATA_LEN,
    INIT2_NONCE_OFFSET,
    INIT2_OPEN_TIME_OFFSET,
    INIT2_PC_AMOUNT_OFFSET,
    KNOWN_SYSVARS,
    MARKET_ASKS_OFFSET,
    MARKET_BASE_VAULT_OFFSET,
    MARKET_BIDS_OFFSET,
    MARKET_EVENT_QUEUE_OFFSET,
    MARKET_MIN_SIZE,
    MARKET_QUOTE_VAULT_OFFSET,
    MARKET_VAULT_SIGNER_NONCE_OFFSET,
    OPCODE_INITIALIZE2,
    PUBKEY_LEN,
    SYSVAR_CLOCK,
)
from src.parsers.raydium.exceptions import (
    IncompleteAccountData,
    MalformedInstruction,
    UnsupportedLayoutVariant,
)
from src.parsers.raydium.models import (
    AccountLayout,
    AmmPoolState,
    MarketState,
    PoolCreationEvent,
)

CANONICAL_AUTHORITY_INDEX = 5

_STANDARD_INDICES: dict[str, int] = {
    "pool_id": 4,
    "authority": 5,
    "open_orders": 6,
    "lp_mint": 7,
    "base_mint": 8,
    "quote_mint": 9,
    "base_vault": 10,
    "quote_vault": 11,
    "target_orders": 13,
    "market_program_id": 15,
    "market_id": 16,
}

LAYOUT_INDICES: dict[AccountLayout, dict[str, int]] = {
    AccountLayout.STANDARD: _STANDARD_INDICES,
    # only authority and open_orders move; every other account keeps its slot
    AccountLayout.CLOCK_PREFIXED: {**_STANDARD_INDICES, "authority": 6, "open_orders": 7},
}


def _account_at(
    account_keys: Sequence[str], ix_accounts: Sequence[int], position: int
) -> str:
    if position >= len(ix_accounts):
        raise MalformedInstruction(
            f"instruction has {len(ix_accounts)} accounts, layout needs index {position}"
        )
    key_index = ix_accounts[position]
    if key_index >= len(account_keys):
        raise MalformedInstruction(
            f"account index {key_index} outside {len(account_keys)} transaction keys"
        )
    return str(account_keys[key_index])


def resolve_layout(account_keys: Sequence[str], ix_accounts: Sequence[int]) -> AccountLayout:
    """Pick the account layout by looking at the canonical authority slot."""
    at_authority = _account_at(account_keys, ix_accounts, CANONICAL_AUTHORITY_INDEX)
    if at_authority == SYSVAR_CLOCK:
        shifted = _account_at(account_keys, ix_accounts, CANONICAL_AUTHORITY_INDEX + 1)
        if shifted in KNOWN_SYSVARS:
            raise UnsupportedLayoutVariant(
                f"sysvar {shifted} follows the clock in the authority slot"
            )
        return AccountLayout.CLOCK_PREFIXED
    if at_authority in KNOWN_SYSVARS:
        raise UnsupportedLayoutVariant(f"unexpected sysvar {at_authority} in authority slot")
    return AccountLayout.STANDARD


def _read_u64(data: bytes, offset: int, field: str) -> int:
    try:
        return struct.unpack_from("<Q", data, offset)[0]
    except struct.error as e:
        raise MalformedInstruction(f"{field} is not a u64 at offset {offset}: {e}") from e


def decode_initialize2(
    program_id: str,
    account_keys: Sequence[str],
    ix_accounts: Sequence[int],
    ix_data: bytes,
) -> PoolCreationEvent:
    """Decode one initialize2 instruction into a PoolCreationEvent."""
    if not ix_data or ix_data[0] != OPCODE_INITIALIZE2:
        opcode = ix_data[0] if ix_data else None
        raise MalformedInstruction(f"opcode {opcode} is not initialize2")
    if len(ix_data) < INIT2_DATA_LEN:
        raise MalformedInstruction(
            f"initialize2 data is {len(ix_data)} bytes, expected {INIT2_DATA_LEN}"
        )

    # Layout must be known before touching any shifted index
    layout = resolve_layout(account_keys, ix_accounts)
    accounts = {
        name: _account_at(account_keys, ix_accounts, idx)
        for name, idx in LAYOUT_INDICES[layout].items()
    }

    return PoolCreationEvent(
        program_id=program_id,
        **accounts,
        init_base_amount=_read_u64(ix_data, INIT2_COIN_AMOUNT_OFFSET, "init_coin_amount"),
        init_quote_amount=_read_u64(ix_data, INIT2_PC_AMOUNT_OFFSET, "init_pc_amount"),
        nonce=ix_data[INIT2_NONCE_OFFSET],
        open_time=_read_u64(ix_data, INIT2_OPEN_TIME_OFFSET, "open_time"),
        layout=layout,
    )


def _pubkey_at(data: bytes, offset: int) -> str:
    return str(Pubkey.from_bytes(data[offset : offset + PUBKEY_LEN]))


def decode_amm_state(data: bytes) -> AmmPoolState:
    """Decode the fields of the AMM v4 pool state account the record needs."""
    if len(data) < AMM_STATE_SIZE:
        raise IncompleteAccountData(
            f"AMM state is {len(data)} bytes, expected {AMM_STATE_SIZE}"
        )

    def u64(offset: int) -> int:
        return struct.unpack_from("<Q", data, offset)[0]

    return AmmPoolState(
        status=u64(AMM_STATUS_OFFSET),
        nonce=u64(AMM_NONCE_OFFSET),
        base_decimals=u64(AMM_BASE_DECIMAL_OFFSET),
        quote_decimals=u64(AMM_QUOTE_DECIMAL_OFFSET),
        pool_open_time=u64(AMM_POOL_OPEN_TIME_OFFSET),
        withdraw_queue=_pubkey_at(data, AMM_WITHDRAW_QUEUE_OFFSET),
        lp_vault=_pubkey_at(data, AMM_LP_VAULT_OFFSET),
        lp_reserve=u64(AMM_LP_RESERVE_OFFSET),
    )


def decode_market_state(data: bytes) -> MarketState:
    """Read the market side accounts at their fixed offsets."""
    if len(data) < MARKET_MIN_SIZE:
        raise IncompleteAccountData(
            f"market account is {len(data)} bytes, need at least {MARKET_MIN_SIZE}"
        )
    return MarketState(
        vault_signer_nonce=struct.unpack_from("<Q", data, MARKET_VAULT_SIGNER_NONCE_OFFSET)[0],
        base_vault=_pubkey_at(data, MARKET_BASE_VAULT_OFFSET),
        quote_vault=_pubkey_at(data, MARKET_QUOTE_VAULT_OFFSET),
        event_queue=_pubkey_at(data, MARKET_EVENT_QUEUE_OFFSET),
        bids=_pubkey_at(data, MARKET_BIDS_OFFSET),
        asks=_pubkey_at(data, MARKET_ASKS_OFFSET),
    )


def transaction_account_keys(tx: dict) -> list[str]:
    """Static keys followed by lookup-table loaded keys (writable, then readonly)."""
    message = tx.get("transaction", {}).get("message", {})
    keys = [str(k) for k in message.get("accountKeys", [])]
    loaded = (tx.get("meta") or {}).get("loadedAddresses") or {}
    keys.extend(loaded.get("writable", []))
    keys.extend(loaded.get("readonly", []))
    return keys


def find_pool_creation(tx: dict, program_id: str) -> PoolCreationEvent | None:
    """Return the first initialize2 of ``program_id`` in a getTransaction result.

    Expects ``encoding=json`` (base58 instruction data). Instructions of other
    programs or with other opcodes are ignored; a malformed initialize2 raises.
    """
    account_keys = transaction_account_keys(tx)
    instructions = tx.get("transaction", {}).get("message", {}).get("instructions", [])

    for ix in instructions:
        program_index = ix.get("programIdIndex")
        if program_index is None or program_index >= len(account_keys):
            continue
        if account_keys[program_index] != program_id:
            continue

        data = base58.b58decode(ix.get("data", ""))
        if not data or data[0] != OPCODE_INITIALIZE2:
            logger.debug(f"[DECODE] Skipping AMM opcode {data[0] if data else None}")
            continue

        return decode_initialize2(program_id, account_keys, ix.get("accounts", []), data)

    return None
