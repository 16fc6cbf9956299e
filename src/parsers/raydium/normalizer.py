"""Turn a decoded PoolCreationEvent into the canonical PoolRecord.

Side resolution: Raydium labels reserves coin/pc regardless of which side is
SOL. If WSOL sits on the coin (base) side, mint, vault, raw reserve and
decimals all flip together so quote is always the numeraire.

K is computed with Python ints (exact at any size, truncating division);
V is a float ratio of independently scaled reserves.
"""

from collections.abc import Mapping

from loguru import logger
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.parsers.raydium.constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    WSOL_MINT,
)
from src.parsers.raydium.exceptions import DerivationError, InvalidReserves
from src.parsers.raydium.models import (
    AmmPoolState,
    MarketState,
    PoolCreationEvent,
    PoolRecord,
)


def compute_k(raw_base: int, raw_quote: int, base_decimals: int, quote_decimals: int) -> int:
    """Decimal-normalised constant product, truncated toward zero."""
    return (raw_quote * raw_base) // 10 ** (quote_decimals + base_decimals)


def compute_v(raw_base: int, raw_quote: int, base_decimals: int, quote_decimals: int) -> float:
    """Launch price in quote per base, human units."""
    if raw_base <= 0:
        raise InvalidReserves("base reserve is zero, launch price undefined")
    return (raw_quote / 10**quote_decimals) / (raw_base / 10**base_decimals)


def _pubkey(value: str, field: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError as e:
        raise DerivationError(f"{field} is not a valid public key: {value!r}") from e


def derive_vault_owner(market_id: str, market_program_id: str) -> str:
    """PDA of seeds [market] under the market program."""
    market = _pubkey(market_id, "market_id")
    program = _pubkey(market_program_id, "market_program_id")
    owner, _bump = Pubkey.find_program_address([bytes(market)], program)
    return str(owner)


def derive_market_authority(market_id: str, vault_signer_nonce: int, market_program_id: str) -> str:
    """OpenBook vault signer: create_program_address([market, nonce u64 LE])."""
    market = _pubkey(market_id, "market_id")
    program = _pubkey(market_program_id, "market_program_id")
    try:
        signer = Pubkey.create_program_address(
            [bytes(market), vault_signer_nonce.to_bytes(8, "little")], program
        )
    except Exception as e:
        raise DerivationError(
            f"vault signer nonce {vault_signer_nonce} does not derive for {market_id}: {e}"
        ) from e
    return str(signer)


def derive_associated_token_account(
    owner: str, mint: str, token_program_id: str = TOKEN_PROGRAM_ID
) -> str:
    """Associated Token Account address for (owner, mint)."""
    ata, _bump = Pubkey.find_program_address(
        [
            bytes(_pubkey(owner, "owner")),
            bytes(_pubkey(token_program_id, "token_program_id")),
            bytes(_pubkey(mint, "mint")),
        ],
        Pubkey.from_string(ASSOCIATED_TOKEN_PROGRAM_ID),
    )
    return str(ata)


def normalize_pool(
    event: PoolCreationEvent,
    *,
    amm_state: AmmPoolState,
    market_state: MarketState,
    mint_decimals: Mapping[str, int],
    owner: str,
    signature: str = "",
) -> PoolRecord:
    """Resolve sides, compute K/V and derive trade-routing addresses."""
    try:
        coin_decimals = mint_decimals[event.base_mint]
        pc_decimals = mint_decimals[event.quote_mint]
    except KeyError as e:
        raise InvalidReserves(f"decimals missing for mint {e.args[0]}") from e

    if event.init_base_amount <= 0 or event.init_quote_amount <= 0:
        raise InvalidReserves(
            f"empty reserves for pool {event.pool_id}: "
            f"coin={event.init_base_amount} pc={event.init_quote_amount}"
        )

    swapped = event.base_mint == WSOL_MINT
    base = (event.base_mint, event.base_vault, event.init_base_amount, coin_decimals)
    quote = (event.quote_mint, event.quote_vault, event.init_quote_amount, pc_decimals)
    if swapped:
        base, quote = quote, base
    base_mint, base_vault, raw_base, base_decimals = base
    quote_mint, quote_vault, raw_quote, quote_decimals = quote

    k = compute_k(raw_base, raw_quote, base_decimals, quote_decimals)
    v = compute_v(raw_base, raw_quote, base_decimals, quote_decimals)

    fields = event.model_dump(
        exclude={
            "base_mint", "quote_mint", "base_vault", "quote_vault",
            "init_base_amount", "init_quote_amount",
        }
    )
    record = PoolRecord(
        **fields,
        signature=signature,
        base_mint=base_mint,
        quote_mint=quote_mint,
        base_vault=base_vault,
        quote_vault=quote_vault,
        init_base_amount=raw_base,
        init_quote_amount=raw_quote,
        base_decimals=base_decimals,
        quote_decimals=quote_decimals,
        # Raydium mints LP with the coin decimals
        lp_decimals=amm_state.base_decimals,
        k=k,
        v=v,
        sides_swapped=swapped,
        quote_is_numeraire=quote_mint == WSOL_MINT,
        withdraw_queue=amm_state.withdraw_queue,
        lp_vault=amm_state.lp_vault,
        market_event_queue=market_state.event_queue,
        market_bids=market_state.bids,
        market_asks=market_state.asks,
        market_base_vault=market_state.base_vault,
        market_quote_vault=market_state.quote_vault,
        market_authority=derive_market_authority(
            event.market_id, market_state.vault_signer_nonce, event.market_program_id
        ),
        vault_owner=derive_vault_owner(event.market_id, event.market_program_id),
        owner=owner,
        user_base_token_account=derive_associated_token_account(owner, base_mint),
        user_quote_token_account=derive_associated_token_account(owner, quote_mint),
        token_program_id=TOKEN_PROGRAM_ID,
    )

    logger.debug(
        f"[NORMALIZE] {record.pool_id[:12]} base={base_mint[:12]} "
        f"K={k} V={v:.10g} swapped={swapped}"
    )
    return record
