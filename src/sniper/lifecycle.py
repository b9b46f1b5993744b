"""Per-pool campaign: buy, monitor, sell, release.

The full PoolRecord is held only while buying and while selling. Between
the two the campaign keeps a LightweightHandle and nothing else.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from loguru import logger

from src.sniper.errors import Rejected, RecordUnavailable
from src.sniper.models import (
    LightweightHandle,
    SniperState,
    SwapDirection,
    SwapOutcome,
    to_smallest_unit,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from src.models.pool import PoolRecord
    from src.parsers.persistence import PoolStore
    from src.trading.price_oracle import PriceOracle
    from src.trading.raydium_swap import RaydiumSwapExecutor
    from src.trading.wallet import SolanaWallet


class SniperLifecycle:
    """State machine for one pool.

    CREATED -> BOUGHT -> MONITORING -> SELLING -> CLOSED, with FAILED
    reachable from any non-terminal state.
    """

    def __init__(
        self,
        *,
        executor: RaydiumSwapExecutor,
        oracle: PriceOracle,
        store: PoolStore,
        wallet: SolanaWallet,
        buy_amount: Decimal,
        sell_target_multiplier: Decimal,
        default_decimals: int = 9,
    ) -> None:
        self._executor = executor
        self._oracle = oracle
        self._store = store
        self._wallet = wallet
        self._buy_amount = Decimal(str(buy_amount))
        self._sell_target = Decimal(str(sell_target_multiplier))
        self._default_decimals = default_decimals

        self._state = SniperState.CREATED
        self._handle: LightweightHandle | None = None
        self._record: PoolRecord | None = None
        self._session: AsyncSession | None = None
        self._cleaned = False
        self.last_multiplier: Decimal | None = None
        self.last_error: str | None = None
        self.buy_outcome: SwapOutcome | None = None
        self.sell_outcome: SwapOutcome | None = None

    def __repr__(self) -> str:
        amm = self._handle.amm_id[:12] if self._handle else "?"
        return f"SniperLifecycle(amm={amm}, state={self._state.value})"

    @property
    def state(self) -> SniperState:
        return self._state

    @property
    def handle(self) -> LightweightHandle | None:
        return self._handle

    @property
    def is_terminal(self) -> bool:
        return self._state.is_terminal

    @property
    def holds_full_record(self) -> bool:
        return self._record is not None

    # ── Buy ──────────────────────────────────────────────────────────

    async def start(self, record: PoolRecord) -> SwapOutcome:
        """Buy into the pool, then drop to the lightweight handle.

        Raises whatever the buy raised; the lifecycle is FAILED in that case.
        """
        if self._state is not SniperState.CREATED:
            raise RuntimeError(f"start() called in state {self._state.value}")

        self._record = record
        try:
            self._handle = LightweightHandle.from_record(
                record,
                buy_amount=self._buy_amount,
                sell_target_multiplier=self._sell_target,
                default_decimals=self._default_decimals,
            )
            amount = to_smallest_unit(self._buy_amount, self._handle.quote_decimals)
            outcome = await self._executor.swap(record, SwapDirection.QUOTE_TO_BASE, amount)
        except BaseException as e:
            self._state = SniperState.FAILED
            self._record = None
            self.last_error = str(e) or type(e).__name__
            logger.warning(f"[SNIPER] Buy failed for {record.amm_id[:12]}: {self.last_error}")
            raise

        self.buy_outcome = outcome
        self._state = SniperState.BOUGHT
        self._record = None
        self._state = SniperState.MONITORING
        logger.info(
            f"[SNIPER] Bought {record.amm_id[:12]}: {self._buy_amount} "
            f"initial_price={self._handle.initial_price} tx={outcome.signature}"
        )
        return outcome

    # ── Monitor ──────────────────────────────────────────────────────

    async def tick(self) -> None:
        """One price sample. Sells when the multiplier reaches the target."""
        if self._state is not SniperState.MONITORING or self._handle is None:
            return

        handle = self._handle
        try:
            raw_price = await self._oracle.sample(handle.amm_id)
        except Exception as e:
            logger.warning(f"[SNIPER] Price sample error for {handle.amm_id[:12]}: {e}")
            return
        if raw_price is None:
            logger.debug(f"[SNIPER] No price sample for {handle.amm_id[:12]} this round")
            return

        # reserves are raw units; initial price is decimal-adjusted
        price = raw_price * (Decimal(10) ** (handle.base_decimals - handle.quote_decimals))
        if handle.initial_price <= 0:
            logger.warning(f"[SNIPER] Non-positive initial price for {handle.amm_id[:12]}")
            return

        multiplier = price / handle.initial_price
        self.last_multiplier = multiplier
        logger.debug(
            f"[SNIPER] {handle.amm_id[:12]} price={price} x{multiplier:.4f} "
            f"(target x{handle.sell_target_multiplier})"
        )

        if multiplier >= handle.sell_target_multiplier:
            logger.info(
                f"[SNIPER] Target hit for {handle.amm_id[:12]}: x{multiplier:.4f}"
            )
            self._state = SniperState.SELLING
            await self._sell()

    # ── Sell ─────────────────────────────────────────────────────────

    async def _sell(self) -> None:
        handle = self._handle
        assert handle is not None
        try:
            if self._session is None:
                self._session = self._store.open_session()
            record = await self._store.fetch_pool_record_by_id(
                handle.storage_id, session=self._session
            )
            if record is None:
                raise RecordUnavailable(
                    f"Pool record id={handle.storage_id} ({handle.amm_id[:12]}) not found"
                )
            self._record = record

            balance = await self._wallet.get_owned_token_amount(handle.base_mint)
            if balance <= 0:
                raise Rejected(f"No {handle.base_mint[:12]} balance to sell")

            self.sell_outcome = await self._executor.swap(
                record, SwapDirection.BASE_TO_QUOTE, balance
            )
        except Exception as e:
            self._state = SniperState.FAILED
            self.last_error = str(e)
            logger.error(f"[SNIPER] Sell failed for {handle.amm_id[:12]}: {e}")
        else:
            self._state = SniperState.CLOSED
            logger.info(
                f"[SNIPER] Closed {handle.amm_id[:12]}: tx={self.sell_outcome.signature}"
            )
        finally:
            self._record = None

    # ── Cleanup ──────────────────────────────────────────────────────

    async def cleanup(self) -> None:
        """Release everything retained. Safe to call more than once."""
        if self._cleaned:
            return
        self._cleaned = True
        self._record = None
        if self._session is not None:
            session, self._session = self._session, None
            try:
                await session.close()
            except Exception as e:
                logger.warning(f"[SNIPER] Session close failed: {e}")
        amm = self._handle.amm_id[:12] if self._handle else "?"
        logger.debug(f"[SNIPER] Cleaned up {amm} (state={self._state.value})")

    def mark_failed(self, error: str) -> None:
        if not self._state.is_terminal:
            self._state = SniperState.FAILED
        self.last_error = error
