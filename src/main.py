"""Entry point for the lp-sniper."""

import asyncio
import signal

from loguru import logger

from config.settings import settings
from src.db.database import async_session_factory, engine, init_db
from src.parsers.persistence import PoolStore
from src.parsers.raydium.client import SolanaRpcClient
from src.parsers.raydium.ws_client import RaydiumLogsClient
from src.parsers.worker import LaunchWorker
from src.sniper.lifecycle import SniperLifecycle
from src.sniper.registry import SniperRegistry
from src.trading.price_oracle import PriceOracle
from src.trading.raydium_swap import RaydiumSwapExecutor
from src.trading.wallet import SolanaWallet
from src.utils.logger import setup_logger


async def _stats_reporter(
    ws: RaydiumLogsClient,
    worker: LaunchWorker,
    registry: SniperRegistry,
) -> None:
    """Log sniper stats every 60 seconds."""
    while True:
        await asyncio.sleep(60)
        mem = registry.get_memory_usage()
        logger.info(
            f"[STATS] WS messages: {ws.message_count} | WS state: {ws.state.value} | "
            f"{worker.stats_line()} | max_rss={mem['max_rss_mb']}MB"
        )


async def main() -> None:
    setup_logger(
        json_logs=settings.json_logs, level=settings.log_level, log_dir=settings.log_dir
    )
    logger.info("Starting lp-sniper...")

    if not settings.wallet_private_key:
        logger.error("WALLET_PRIVATE_KEY is not set, refusing to start")
        return

    await init_db()

    rpc = SolanaRpcClient(settings.solana_rpc_url, max_rps=settings.rpc_max_rps)
    wallet = SolanaWallet(settings.wallet_private_key, rpc)
    store = PoolStore(async_session_factory)
    oracle = PriceOracle(rpc.get_account_data)
    executor = RaydiumSwapExecutor(
        rpc=rpc,
        wallet=wallet,
        store=store,
        oracle=oracle,
        compute_unit_limit=settings.compute_unit_limit,
        compute_unit_price=settings.compute_unit_price_micro_lamports,
        min_amount_out=settings.min_amount_out,
        confirm_timeout=settings.confirm_timeout_sec,
    )

    def lifecycle_factory() -> SniperLifecycle:
        return SniperLifecycle(
            executor=executor,
            oracle=oracle,
            store=store,
            wallet=wallet,
            buy_amount=settings.buy_amount,
            sell_target_multiplier=settings.sell_target_multiplier,
            default_decimals=settings.default_decimals,
        )

    registry = SniperRegistry(lifecycle_factory, poll_interval=settings.poll_interval_sec)
    worker = LaunchWorker(
        rpc=rpc,
        store=store,
        registry=registry,
        program_id=settings.raydium_amm_program_id,
        default_decimals=settings.default_decimals,
    )
    ws = RaydiumLogsClient(
        settings.solana_ws_url,
        settings.raydium_amm_program_id,
        # buy confirmation can take up to confirm_timeout_sec
        callback_timeout=settings.confirm_timeout_sec + 30,
    )
    ws.on_new_pool = worker.process_signature

    logger.info(
        f"Buy {settings.buy_amount} per pool, sell at x{settings.sell_target_multiplier}, "
        f"poll every {settings.poll_interval_sec}s"
    )

    # Graceful shutdown on SIGINT/SIGTERM
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Shutdown signal received")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    ws_task = asyncio.create_task(ws.connect(), name="amm_logs_ws")
    stats_task = asyncio.create_task(_stats_reporter(ws, worker, registry), name="stats")

    done, pending = await asyncio.wait(
        [ws_task, asyncio.create_task(shutdown_event.wait())],
        return_when=asyncio.FIRST_COMPLETED,
    )

    await ws.stop()
    for task in (*pending, stats_task):
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    stopped = await registry.stop_all()
    logger.info(f"Stopped {stopped} active sniper(s)")
    await rpc.close()
    await engine.dispose()
    logger.info("Shutdown complete")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
