from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base


class RaydiumPool(Base):
    """One persisted pool record. Written once, never updated."""

    __tablename__ = "raydium_pools"

    id: Mapped[int] = mapped_column(primary_key=True)
    pool_id: Mapped[str] = mapped_column(String(64), unique=True)
    signature: Mapped[str] = mapped_column(String(100), default="")
    program_id: Mapped[str] = mapped_column(String(64))
    layout: Mapped[str] = mapped_column(String(20))
    first_seen_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    # Pool accounts
    lp_mint: Mapped[str] = mapped_column(String(64))
    authority: Mapped[str] = mapped_column(String(64))
    open_orders: Mapped[str] = mapped_column(String(64))
    target_orders: Mapped[str] = mapped_column(String(64))
    withdraw_queue: Mapped[str] = mapped_column(String(64))
    lp_vault: Mapped[str] = mapped_column(String(64))

    # Sides after normalization (quote = numeraire when present)
    base_mint: Mapped[str] = mapped_column(String(64))
    quote_mint: Mapped[str] = mapped_column(String(64))
    base_vault: Mapped[str] = mapped_column(String(64))
    quote_vault: Mapped[str] = mapped_column(String(64))
    base_decimals: Mapped[int] = mapped_column(Integer)
    quote_decimals: Mapped[int] = mapped_column(Integer)
    lp_decimals: Mapped[int] = mapped_column(Integer)
    sides_swapped: Mapped[bool] = mapped_column(Boolean, default=False)
    quote_is_numeraire: Mapped[bool] = mapped_column(Boolean, default=True)

    # Raw u64 reserves and K kept as decimal strings (exact on every backend)
    init_base_amount: Mapped[str] = mapped_column(String(40))
    init_quote_amount: Mapped[str] = mapped_column(String(40))
    k: Mapped[str] = mapped_column(String(80))
    v: Mapped[float] = mapped_column(Float)
    nonce: Mapped[int] = mapped_column(Integer)
    open_time: Mapped[str] = mapped_column(String(40))

    # OpenBook market
    market_id: Mapped[str] = mapped_column(String(64))
    market_program_id: Mapped[str] = mapped_column(String(64))
    market_event_queue: Mapped[str] = mapped_column(String(64))
    market_bids: Mapped[str] = mapped_column(String(64))
    market_asks: Mapped[str] = mapped_column(String(64))
    market_base_vault: Mapped[str] = mapped_column(String(64))
    market_quote_vault: Mapped[str] = mapped_column(String(64))
    market_authority: Mapped[str] = mapped_column(String(64))
    vault_owner: Mapped[str] = mapped_column(String(64))

    # Trading wallet routing
    owner: Mapped[str] = mapped_column(String(64))
    user_base_token_account: Mapped[str] = mapped_column(String(64))
    user_quote_token_account: Mapped[str] = mapped_column(String(64))
    token_program_id: Mapped[str] = mapped_column(String(64))

    __table_args__ = (
        Index("idx_raydium_pools_base_mint", "base_mint"),
    )
