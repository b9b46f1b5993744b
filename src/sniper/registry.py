"""Admission and scheduling of concurrent per-pool campaigns.

At most one campaign exists per amm_id. A campaign is registered only
after its buy succeeds; from then on a background task ticks it every
``poll_interval`` seconds until it reaches a terminal state.
"""

from __future__ import annotations

import asyncio
import resource
import sys
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

from src.sniper.errors import IncompleteEvent
from src.sniper.lifecycle import SniperLifecycle
from src.sniper.models import SniperState
from src.trading.raydium_swap import missing_swap_roles

if TYPE_CHECKING:
    from src.models.pool import PoolRecord


@dataclass
class _Entry:
    lifecycle: SniperLifecycle
    task: asyncio.Task


class SniperRegistry:
    def __init__(
        self,
        lifecycle_factory: Callable[[], SniperLifecycle],
        *,
        poll_interval: float = 5.0,
    ) -> None:
        self._factory = lifecycle_factory
        self._poll_interval = poll_interval
        self._entries: dict[str, _Entry] = {}
        self._pending: set[str] = set()
        self._lock = asyncio.Lock()
        self._stopping = False

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, amm_id: object) -> bool:
        return amm_id in self._entries

    def active_pool_ids(self) -> list[str]:
        return list(self._entries)

    def get(self, amm_id: str) -> SniperLifecycle | None:
        entry = self._entries.get(amm_id)
        return entry.lifecycle if entry else None

    async def add_sniper(self, record: PoolRecord) -> SniperLifecycle | None:
        """Buy into ``record``'s pool and start monitoring it.

        Returns the new lifecycle, or None if the pool is already tracked.
        Raises IncompleteEvent for a record missing swap roles, and
        re-raises the buy error when the buy fails (nothing is registered).
        """
        missing = missing_swap_roles(record)
        if missing:
            raise IncompleteEvent(missing)

        amm_id = record.amm_id
        async with self._lock:
            if self._stopping:
                logger.debug(f"[REGISTRY] Stopping, ignoring {amm_id[:12]}")
                return None
            if amm_id in self._entries or amm_id in self._pending:
                logger.debug(f"[REGISTRY] Duplicate pool {amm_id[:12]}, skipping")
                return None
            self._pending.add(amm_id)

        lifecycle = self._factory()
        try:
            await lifecycle.start(record)
        except BaseException:
            # no await before the discard: the id is freed even on cancellation
            self._pending.discard(amm_id)
            await lifecycle.cleanup()
            raise

        async with self._lock:
            self._pending.discard(amm_id)
            stopping = self._stopping
            if not stopping:
                task = asyncio.create_task(
                    self._poll_loop(amm_id, lifecycle),
                    name=f"sniper_poll_{amm_id[:12]}",
                )
                self._entries[amm_id] = _Entry(lifecycle=lifecycle, task=task)
                active = len(self._entries)

        if stopping:
            buy_tx = lifecycle.buy_outcome.signature if lifecycle.buy_outcome else None
            logger.warning(
                f"[REGISTRY] Bought {amm_id[:12]} during shutdown, not monitoring "
                f"(buy tx={buy_tx})"
            )
            await lifecycle.cleanup()
            return None

        logger.info(f"[REGISTRY] Tracking {amm_id[:12]} ({active} active)")
        return lifecycle

    async def _poll_loop(self, amm_id: str, lifecycle: SniperLifecycle) -> None:
        try:
            while not lifecycle.is_terminal:
                await asyncio.sleep(self._poll_interval)
                try:
                    await lifecycle.tick()
                except Exception as e:
                    logger.error(f"[REGISTRY] Tick error for {amm_id[:12]}: {e}")
                    lifecycle.mark_failed(str(e))
        finally:
            await self._retire(amm_id, lifecycle)

    async def _retire(self, amm_id: str, lifecycle: SniperLifecycle) -> None:
        async with self._lock:
            entry = self._entries.get(amm_id)
            if entry is None or entry.lifecycle is not lifecycle:
                return
            del self._entries[amm_id]
        await lifecycle.cleanup()
        logger.info(
            f"[REGISTRY] Retired {amm_id[:12]} state={lifecycle.state.value} "
            f"({len(self._entries)} active)"
        )

    async def stop_all(self) -> int:
        """Cancel every schedule and clean up every campaign.

        A campaign caught mid-sell is allowed to finish its swap. Returns
        the number of campaigns stopped.
        """
        async with self._lock:
            self._stopping = True
            entries = list(self._entries.items())
            self._entries.clear()

        if not entries:
            return 0

        tasks = []
        for amm_id, entry in entries:
            if entry.lifecycle.state is SniperState.SELLING:
                logger.info(f"[REGISTRY] Waiting for in-flight sell on {amm_id[:12]}")
            else:
                entry.task.cancel()
            tasks.append(entry.task)

        await asyncio.gather(*tasks, return_exceptions=True)
        for _amm_id, entry in entries:
            await entry.lifecycle.cleanup()

        logger.info(f"[REGISTRY] Stopped {len(entries)} sniper(s)")
        return len(entries)

    def get_memory_usage(self) -> dict:
        """Active campaign count and peak resident set size of the process."""
        rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        # ru_maxrss is bytes on macOS, kilobytes elsewhere
        rss_bytes = rss if sys.platform == "darwin" else rss * 1024
        return {
            "active_snipers": len(self._entries),
            "pending": len(self._pending),
            "max_rss_mb": round(rss_bytes / (1024 * 1024), 2),
        }
