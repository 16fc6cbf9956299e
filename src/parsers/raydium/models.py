"""Pydantic v2 models for decoded Raydium AMM v4 pool creation data."""

from enum import Enum

from pydantic import BaseModel, ConfigDict


class AccountLayout(str, Enum):
    """Account-key layouts of the initialize2 instruction."""

    STANDARD = "standard"
    CLOCK_PREFIXED = "clock_prefixed"  # clock sysvar sits in the authority slot


class NewPoolSignature(BaseModel):
    """Event: pool creation seen in program logs via logsSubscribe."""

    signature: str
    slot: int | None = None

    model_config = ConfigDict(extra="ignore")


class PoolCreationEvent(BaseModel):
    """Fields of one initialize2 instruction.

    ``base``/``quote`` follow the exchange's coin/pc labels here; the
    normalizer decides which side is the numeraire.
    """

    program_id: str
    pool_id: str
    lp_mint: str
    authority: str
    open_orders: str
    target_orders: str
    base_mint: str
    quote_mint: str
    base_vault: str
    quote_vault: str
    market_id: str
    market_program_id: str
    init_base_amount: int
    init_quote_amount: int
    nonce: int
    open_time: int
    layout: AccountLayout = AccountLayout.STANDARD

    model_config = ConfigDict(frozen=True)


class AmmPoolState(BaseModel):
    """Subset of the 752-byte AMM v4 pool state account."""

    status: int
    nonce: int
    base_decimals: int
    quote_decimals: int
    pool_open_time: int
    withdraw_queue: str
    lp_vault: str
    lp_reserve: int

    model_config = ConfigDict(frozen=True)


class MarketState(BaseModel):
    """OpenBook market side accounts read at fixed offsets."""

    vault_signer_nonce: int
    base_vault: str
    quote_vault: str
    event_queue: str
    bids: str
    asks: str

    model_config = ConfigDict(frozen=True)


class PoolRecord(PoolCreationEvent):
    """Canonical, persisted pool record. Quote is the numeraire side when one exists.

    Numeric fields are a snapshot taken at creation and never change.
    """

    signature: str = ""
    base_decimals: int
    quote_decimals: int
    lp_decimals: int
    k: int  # (raw_base * raw_quote) // 10^(base_dec + quote_dec)
    v: float  # launch price, quote per base, human units
    sides_swapped: bool = False
    quote_is_numeraire: bool = True
    withdraw_queue: str
    lp_vault: str
    market_event_queue: str
    market_bids: str
    market_asks: str
    market_base_vault: str
    market_quote_vault: str
    market_authority: str
    vault_owner: str
    owner: str
    user_base_token_account: str
    user_quote_token_account: str
    token_program_id: str

    @property
    def coin_vault(self) -> str:
        """Pool vault of the exchange's coin side (swap instructions expect coin first)."""
        return self.quote_vault if self.sides_swapped else self.base_vault

    @property
    def pc_vault(self) -> str:
        return self.base_vault if self.sides_swapped else self.quote_vault
