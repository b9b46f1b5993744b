"""Persistence gateway: maps decoded pool events and swap attempts to SQLAlchemy rows.

Pool records are written once at detection time and read back by storage
id when a campaign sells. Swap attempts are append-only.
"""

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.models.pool import PoolRecord, SwapAttempt
from src.parsers.raydium.constants import DEFAULT_FEE_RATE
from src.parsers.raydium.models import PoolCreationEvent
from src.sniper.models import SwapAttemptEntry


def pool_record_from_event(
    event: PoolCreationEvent,
    signature: str | None = None,
) -> PoolRecord:
    return PoolRecord(
        program_id=event.program_id,
        amm_id=event.amm_id,
        amm_authority=event.amm_authority,
        amm_open_orders=event.amm_open_orders,
        target_orders=event.target_orders,
        lp_mint=event.lp_mint,
        base_mint=event.base_mint,
        quote_mint=event.quote_mint,
        base_vault=event.base_vault,
        quote_vault=event.quote_vault,
        deployer=event.deployer,
        market_program_id=event.market_program_id,
        market_id=event.market_id,
        market_bids=event.market_bids,
        market_asks=event.market_asks,
        market_event_queue=event.market_event_queue,
        market_base_vault=event.market_base_vault,
        market_quote_vault=event.market_quote_vault,
        market_authority=event.market_authority,
        base_decimals=event.base_decimals,
        quote_decimals=event.quote_decimals,
        init_base_amount=str(event.init_base_amount),
        init_quote_amount=str(event.init_quote_amount),
        open_time=str(event.open_time),
        nonce=event.nonce,
        k=str(event.k),
        v=str(event.v),
        fee_rate=DEFAULT_FEE_RATE,
        signature=signature,
    )


class PoolStore:
    """Stores full pool records keyed by storage id and audits swap attempts."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    def open_session(self) -> AsyncSession:
        """A session owned by the caller, who must close it."""
        return self._session_factory()

    async def persist_pool_record(
        self,
        event: PoolCreationEvent,
        *,
        signature: str | None = None,
    ) -> PoolRecord:
        """Insert the record for ``event``. An amm_id seen before returns the existing row."""
        async with self._session_factory() as session:
            existing = await self._get_by_amm_id(session, event.amm_id)
            if existing is not None:
                logger.debug(f"[STORE] Pool {event.amm_id[:12]} already stored as id={existing.id}")
                return existing

            record = pool_record_from_event(event, signature)
            session.add(record)
            try:
                await session.commit()
            except IntegrityError:
                # concurrent insert of the same pool
                await session.rollback()
                existing = await self._get_by_amm_id(session, event.amm_id)
                if existing is None:
                    raise
                return existing

            logger.info(f"[STORE] Saved pool {event.amm_id[:12]} as id={record.id}")
            return record

    async def fetch_pool_record_by_id(
        self,
        storage_id: int,
        *,
        session: AsyncSession | None = None,
    ) -> PoolRecord | None:
        if session is not None:
            return await session.get(PoolRecord, storage_id)
        async with self._session_factory() as own_session:
            return await own_session.get(PoolRecord, storage_id)

    async def append_swap_attempt(self, entry: SwapAttemptEntry) -> None:
        outcome = entry.outcome
        async with self._session_factory() as session:
            session.add(
                SwapAttempt(
                    pool_id=entry.pool_id,
                    amm_id=entry.amm_id,
                    amount=str(entry.amount),
                    direction=entry.direction.value,
                    signature=outcome.signature,
                    error=(outcome.error or "")[:1000] or None,
                    status=outcome.status,
                    price=outcome.price,
                    timestamp=outcome.timestamp,
                )
            )
            await session.commit()

    async def list_swap_attempts(self, pool_id: int) -> list[SwapAttempt]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SwapAttempt)
                .where(SwapAttempt.pool_id == pool_id)
                .order_by(SwapAttempt.timestamp, SwapAttempt.id)
            )
            return list(result.scalars().all())

    @staticmethod
    async def _get_by_amm_id(session: AsyncSession, amm_id: str) -> PoolRecord | None:
        result = await session.execute(select(PoolRecord).where(PoolRecord.amm_id == amm_id))
        return result.scalar_one_or_none()
