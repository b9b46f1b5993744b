"""Launch worker: turns a pool-creation signature into a running campaign.

Flow per signature:
1. getTransaction (retried briefly: the tx can lag the log notification)
2. decode the initialize2 instruction into a PoolCreationEvent
3. persist the full PoolRecord
4. hand the record to the SniperRegistry, which buys and starts monitoring
"""

import asyncio
from collections import OrderedDict

from loguru import logger

from src.parsers.persistence import PoolStore
from src.parsers.raydium.client import SolanaRpcClient
from src.parsers.raydium.decoder import decode_pool_creation
from src.sniper.errors import AdmissionError, DecodeError, RpcError, SwapError
from src.sniper.lifecycle import SniperLifecycle
from src.sniper.registry import SniperRegistry

_SEEN_SIGNATURES_MAX = 10_000


class LaunchWorker:
    def __init__(
        self,
        *,
        rpc: SolanaRpcClient,
        store: PoolStore,
        registry: SniperRegistry,
        program_id: str,
        default_decimals: int = 9,
        tx_fetch_attempts: int = 3,
        tx_fetch_delay: float = 1.0,
    ) -> None:
        self._rpc = rpc
        self._store = store
        self._registry = registry
        self._program_id = program_id
        self._default_decimals = default_decimals
        self._tx_fetch_attempts = tx_fetch_attempts
        self._tx_fetch_delay = tx_fetch_delay
        self._seen: OrderedDict[str, None] = OrderedDict()

        self.pools_detected = 0
        self.pools_admitted = 0
        self.decode_errors = 0
        self.buy_failures = 0

    def stats_line(self) -> str:
        return (
            f"detected={self.pools_detected} admitted={self.pools_admitted} "
            f"decode_errors={self.decode_errors} buy_failures={self.buy_failures} "
            f"active={len(self._registry)}"
        )

    async def process_signature(self, signature: str) -> SniperLifecycle | None:
        """Decode, persist and admit the pool created by ``signature``.

        Returns the admitted lifecycle, or None when the signature was seen
        before, creates no pool, fails to decode or the buy fails.
        """
        if signature in self._seen:
            return None
        self._seen[signature] = None
        if len(self._seen) > _SEEN_SIGNATURES_MAX:
            self._seen.popitem(last=False)

        tx = await self._fetch_transaction(signature)
        if tx is None:
            logger.warning(f"[WORKER] Transaction {signature[:16]} unavailable")
            return None

        try:
            event = await decode_pool_creation(
                tx,
                program_id=self._program_id,
                fetch_account=self._rpc.get_account_data,
                base_decimals=self._default_decimals,
                quote_decimals=self._default_decimals,
            )
        except DecodeError as e:
            self.decode_errors += 1
            logger.warning(f"[WORKER] Decode failed for {signature[:16]}: {type(e).__name__}: {e}")
            return None
        if event is None:
            logger.debug(f"[WORKER] No pool creation in {signature[:16]}")
            return None

        self.pools_detected += 1
        logger.info(
            f"[WORKER] New pool {event.amm_id[:12]} base={event.base_mint[:12]} "
            f"quote={event.quote_mint[:12]} price={event.initial_price}"
        )

        record = await self._store.persist_pool_record(event, signature=signature)

        try:
            lifecycle = await self._registry.add_sniper(record)
        except AdmissionError as e:
            logger.warning(f"[WORKER] Pool {event.amm_id[:12]} not admitted: {e}")
            return None
        except SwapError as e:
            self.buy_failures += 1
            logger.warning(f"[WORKER] Buy failed for {event.amm_id[:12]}: {e}")
            return None

        if lifecycle is not None:
            self.pools_admitted += 1
        return lifecycle

    async def _fetch_transaction(self, signature: str):
        for attempt in range(1, self._tx_fetch_attempts + 1):
            try:
                tx = await self._rpc.get_transaction(signature)
            except RpcError as e:
                logger.debug(f"[WORKER] getTransaction {signature[:16]} attempt {attempt}: {e}")
                tx = None
            if tx is not None:
                return tx
            if attempt < self._tx_fetch_attempts:
                await asyncio.sleep(self._tx_fetch_delay)
        return None
