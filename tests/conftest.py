"""Shared test fixtures."""

from collections.abc import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from solders.pubkey import Pubkey  # type: ignore[import-untyped]
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.db.database import init_db
from src.parsers.persistence import PoolStore
from src.parsers.raydium.constants import RAYDIUM_AMM_V4_PROGRAM_ID, WSOL_MINT
from src.parsers.raydium.models import ACCOUNT_FIELDS, PoolCreationEvent


@pytest_asyncio.fixture(scope="function")
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh in-memory SQLite database per test.

    StaticPool keeps the single connection alive so every session sees
    the same in-memory tables.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def pool_store(session_factory) -> PoolStore:
    return PoolStore(session_factory)


@pytest.fixture
def make_event() -> Callable[..., PoolCreationEvent]:
    """Factory for valid PoolCreationEvents with unique account keys."""

    def _make(**overrides) -> PoolCreationEvent:
        fields: dict = {name: str(Pubkey.new_unique()) for name in ACCOUNT_FIELDS}
        fields["program_id"] = RAYDIUM_AMM_V4_PROGRAM_ID
        fields["quote_mint"] = WSOL_MINT
        fields.update(
            nonce=254,
            open_time=0,
            init_base_amount=1_000_000_000,
            init_quote_amount=2_000_000_000,
        )
        fields.update(overrides)
        return PoolCreationEvent(**fields)

    return _make
