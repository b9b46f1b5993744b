from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base


class PoolRecord(Base):
    """Durable form of a decoded pool-creation event.

    Raw u64 amounts and K are kept as decimal strings (K overflows any SQL
    integer type); V is stored as an exact ``p/q`` fraction string.
    """

    __tablename__ = "pools"

    id: Mapped[int] = mapped_column(primary_key=True)
    program_id: Mapped[str] = mapped_column(String(64))
    amm_id: Mapped[str] = mapped_column(String(64), unique=True)
    amm_authority: Mapped[str] = mapped_column(String(64))
    amm_open_orders: Mapped[str] = mapped_column(String(64))
    target_orders: Mapped[str] = mapped_column(String(64))
    lp_mint: Mapped[str] = mapped_column(String(64))
    base_mint: Mapped[str] = mapped_column(String(64))
    quote_mint: Mapped[str] = mapped_column(String(64))
    base_vault: Mapped[str] = mapped_column(String(64))
    quote_vault: Mapped[str] = mapped_column(String(64))
    deployer: Mapped[str | None] = mapped_column(String(64))

    # OpenBook market
    market_program_id: Mapped[str] = mapped_column(String(64))
    market_id: Mapped[str] = mapped_column(String(64))
    market_bids: Mapped[str] = mapped_column(String(64))
    market_asks: Mapped[str] = mapped_column(String(64))
    market_event_queue: Mapped[str] = mapped_column(String(64))
    market_base_vault: Mapped[str] = mapped_column(String(64))
    market_quote_vault: Mapped[str] = mapped_column(String(64))
    market_authority: Mapped[str] = mapped_column(String(64))

    base_decimals: Mapped[int] = mapped_column(Integer, default=9)
    quote_decimals: Mapped[int] = mapped_column(Integer, default=9)
    init_base_amount: Mapped[str] = mapped_column(String(24))
    init_quote_amount: Mapped[str] = mapped_column(String(24))
    open_time: Mapped[str | None] = mapped_column(String(24))
    nonce: Mapped[int | None] = mapped_column(Integer)
    k: Mapped[str] = mapped_column(String(48))
    v: Mapped[str] = mapped_column(String(64))
    fee_rate: Mapped[str] = mapped_column(String(16), default="0.003")

    signature: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        Index("idx_pools_base_mint", "base_mint"),
        Index("idx_pools_created", "created_at"),
    )

    def __repr__(self) -> str:
        return f"PoolRecord(id={self.id}, amm_id={self.amm_id})"


class SwapAttempt(Base):
    """Audit row written for every buy/sell attempt, successful or not."""

    __tablename__ = "swap_attempts"

    id: Mapped[int] = mapped_column(primary_key=True)
    pool_id: Mapped[int] = mapped_column(ForeignKey("pools.id", ondelete="CASCADE"))
    amm_id: Mapped[str] = mapped_column(String(64))
    amount: Mapped[str] = mapped_column(String(24))
    direction: Mapped[str] = mapped_column(String(10))  # "buy" | "sell"
    signature: Mapped[str | None] = mapped_column(String(128))
    error: Mapped[str | None] = mapped_column(String(1000))
    status: Mapped[str] = mapped_column(String(10))  # "success" | "failed"
    price: Mapped[Decimal | None] = mapped_column(Numeric)
    timestamp: Mapped[datetime] = mapped_column(DateTime)

    __table_args__ = (
        Index("idx_swap_attempts_pool", "pool_id"),
        Index("idx_swap_attempts_time", "timestamp"),
    )
