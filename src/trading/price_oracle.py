"""Instantaneous pool price from the AMM account's reserve fields.

price = quote_reserve / base_reserve, both u64 LE at fixed offsets.
A missing sample is "no data this round", never an error that stops
monitoring: ``sample`` returns None where ``read_price`` raises.
"""

import struct
from collections.abc import Awaitable, Callable
from decimal import Decimal

from loguru import logger

from src.parsers.raydium.constants import (
    POOL_BASE_RESERVE_OFFSET,
    POOL_MIN_SIZE,
    POOL_QUOTE_RESERVE_OFFSET,
)
from src.sniper.errors import SampleUnavailable


def read_reserves(data: bytes) -> tuple[int, int] | None:
    """(base_reserve, quote_reserve), or None if the account is too short."""
    if len(data) < POOL_MIN_SIZE:
        return None
    (base_reserve,) = struct.unpack_from("<Q", data, POOL_BASE_RESERVE_OFFSET)
    (quote_reserve,) = struct.unpack_from("<Q", data, POOL_QUOTE_RESERVE_OFFSET)
    return base_reserve, quote_reserve


class PriceOracle:
    def __init__(self, fetch_account: Callable[[str], Awaitable[bytes | None]]) -> None:
        self._fetch_account = fetch_account

    async def read_price(self, amm_id: str) -> Decimal:
        """Raw quote/base reserve ratio. Raises SampleUnavailable."""
        try:
            data = await self._fetch_account(amm_id)
        except Exception as e:
            raise SampleUnavailable(f"Fetch failed for {amm_id[:12]}: {e}") from e

        if data is None:
            raise SampleUnavailable(f"Pool account {amm_id[:12]} not found")

        reserves = read_reserves(data)
        if reserves is None:
            raise SampleUnavailable(f"Pool account {amm_id[:12]} too short: {len(data)} bytes")

        base_reserve, quote_reserve = reserves
        if base_reserve == 0:
            raise SampleUnavailable(f"Pool {amm_id[:12]} has empty base reserve")
        return Decimal(quote_reserve) / Decimal(base_reserve)

    async def sample(self, amm_id: str) -> Decimal | None:
        try:
            return await self.read_price(amm_id)
        except SampleUnavailable as e:
            logger.debug(f"[PRICE] {e}")
            return None
