"""Models for Raydium pool-creation events and raw RPC transactions."""

from dataclasses import dataclass, field
from decimal import Decimal
from fractions import Fraction

from pydantic import BaseModel, field_validator
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

ACCOUNT_FIELDS = (
    "program_id",
    "amm_id",
    "amm_authority",
    "amm_open_orders",
    "lp_mint",
    "base_mint",
    "quote_mint",
    "base_vault",
    "quote_vault",
    "target_orders",
    "deployer",
    "market_program_id",
    "market_id",
    "market_bids",
    "market_asks",
    "market_event_queue",
    "market_base_vault",
    "market_quote_vault",
    "market_authority",
)


def calc_initial_price(
    init_base: int,
    init_quote: int,
    base_decimals: int,
    quote_decimals: int,
) -> Decimal:
    """Quote per base at launch, each side scaled by its mint decimals."""
    base = Decimal(init_base) / (Decimal(10) ** base_decimals)
    quote = Decimal(init_quote) / (Decimal(10) ** quote_decimals)
    return quote / base


class PoolCreationEvent(BaseModel):
    """Decoded Raydium ``initialize2`` instruction plus its market sub-accounts.

    K and V are derived from the raw initial amounts and cannot be set.
    """

    program_id: str
    amm_id: str
    amm_authority: str
    amm_open_orders: str
    lp_mint: str
    base_mint: str
    quote_mint: str
    base_vault: str
    quote_vault: str
    target_orders: str
    deployer: str
    market_program_id: str
    market_id: str
    market_bids: str
    market_asks: str
    market_event_queue: str
    market_base_vault: str
    market_quote_vault: str
    market_authority: str

    nonce: int
    open_time: int
    init_base_amount: int
    init_quote_amount: int
    base_decimals: int = 9
    quote_decimals: int = 9

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator(*ACCOUNT_FIELDS)
    @classmethod
    def _is_pubkey(cls, value: str) -> str:
        # Pubkey.from_string rejects anything that is not 32 bytes of base58
        Pubkey.from_string(value)
        return value

    @field_validator("init_base_amount", "init_quote_amount")
    @classmethod
    def _positive_amount(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("initial amount must be positive")
        return value

    @property
    def k(self) -> int:
        return self.init_base_amount * self.init_quote_amount

    @property
    def v(self) -> Fraction:
        low = min(self.init_base_amount, self.init_quote_amount)
        high = max(self.init_base_amount, self.init_quote_amount)
        return Fraction(low, high)

    @property
    def initial_price(self) -> Decimal:
        return calc_initial_price(
            self.init_base_amount,
            self.init_quote_amount,
            self.base_decimals,
            self.quote_decimals,
        )


@dataclass(frozen=True)
class CompiledInstruction:
    program_id_index: int
    accounts: list[int]
    data: bytes


@dataclass
class RawTransaction:
    """Account keys (static + loaded) and top-level instructions of a tx."""

    signature: str
    account_keys: list[str]
    instructions: list[CompiledInstruction] = field(default_factory=list)
