"""Value types shared by the lifecycle, registry and swap executor."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import ROUND_FLOOR, Decimal
from enum import Enum
from fractions import Fraction
from typing import TYPE_CHECKING

from src.parsers.raydium.models import calc_initial_price

if TYPE_CHECKING:
    from src.models.pool import PoolRecord


class SniperState(Enum):
    CREATED = "created"
    BOUGHT = "bought"
    MONITORING = "monitoring"
    SELLING = "selling"
    CLOSED = "closed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SniperState.CLOSED, SniperState.FAILED)


class SwapDirection(Enum):
    QUOTE_TO_BASE = "buy"
    BASE_TO_QUOTE = "sell"


def to_smallest_unit(amount: Decimal | float | str, decimals: int) -> int:
    """floor(amount * 10^decimals). Truncates, never rounds up."""
    scaled = Decimal(str(amount)) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


@dataclass
class SwapOutcome:
    """Result of one swap attempt."""

    status: str  # "success" | "failed"
    signature: str | None = None
    price: Decimal | None = None
    error: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def success(self) -> bool:
        return self.status == "success"

    @classmethod
    def succeeded(cls, signature: str, price: Decimal | None = None) -> SwapOutcome:
        return cls(status="success", signature=signature, price=price)

    @classmethod
    def failed(cls, error: str, signature: str | None = None) -> SwapOutcome:
        return cls(status="failed", signature=signature, error=error)


@dataclass(frozen=True)
class SwapAttemptEntry:
    pool_id: int
    amm_id: str
    amount: int
    direction: SwapDirection
    outcome: SwapOutcome


@dataclass(frozen=True, slots=True)
class LightweightHandle:
    """Everything a monitoring campaign keeps in memory.

    Holds no account keys besides the pool id and the two mints; selling
    re-reads the full PoolRecord by ``storage_id``.
    """

    storage_id: int
    amm_id: str
    base_mint: str
    quote_mint: str
    base_decimals: int
    quote_decimals: int
    buy_amount: Decimal
    sell_target_multiplier: Decimal
    k: int
    v: Fraction
    initial_price: Decimal

    @classmethod
    def from_record(
        cls,
        record: PoolRecord,
        *,
        buy_amount: Decimal,
        sell_target_multiplier: Decimal,
        default_decimals: int = 9,
    ) -> LightweightHandle:
        base_decimals = record.base_decimals if record.base_decimals is not None else default_decimals
        quote_decimals = record.quote_decimals if record.quote_decimals is not None else default_decimals
        init_base = int(record.init_base_amount)
        init_quote = int(record.init_quote_amount)
        return cls(
            storage_id=record.id,
            amm_id=record.amm_id,
            base_mint=record.base_mint,
            quote_mint=record.quote_mint,
            base_decimals=base_decimals,
            quote_decimals=quote_decimals,
            buy_amount=Decimal(str(buy_amount)),
            sell_target_multiplier=Decimal(str(sell_target_multiplier)),
            k=int(record.k),
            v=Fraction(record.v),
            initial_price=calc_initial_price(init_base, init_quote, base_decimals, quote_decimals),
        )
