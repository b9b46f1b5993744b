"""Loguru sinks for the sniper.

Three sinks: the console, a daily DEBUG log of everything, and a trade
log holding only swap and campaign lines (tags below) kept for a month.
"""

import os
import sys
from pathlib import Path

from loguru import logger

TRADE_TAGS = ("[SWAP]", "[SNIPER]")

_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
    "<level>{message}</level>"
)
_TRADE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {message}"


def is_trade_record(record: dict) -> bool:
    return record["message"].startswith(TRADE_TAGS)


def setup_logger(
    *,
    json_logs: bool = False,
    level: str = "INFO",
    log_dir: str | Path = "logs",
) -> list[int]:
    """Replace loguru's handlers with the sniper's sinks.

    LOG_LEVEL in the environment overrides ``level`` for the console only.
    Returns the handler ids (console, debug file, trade file).
    """
    console_level = os.getenv("LOG_LEVEL", level).upper()
    log_dir = Path(log_dir)
    logger.remove()

    if json_logs:
        console = logger.add(sys.stdout, serialize=True, level=console_level)
    else:
        console = logger.add(
            sys.stdout, format=_CONSOLE_FORMAT, level=console_level, colorize=True
        )

    debug_file = logger.add(
        log_dir / "sniper_{time:YYYY-MM-DD}.log",
        rotation="50 MB",
        retention="3 days",
        compression="gz",
        level="DEBUG",
        serialize=json_logs,
    )

    # buy/sell history outlives the debug log
    trades_file = logger.add(
        log_dir / "trades_{time:YYYY-MM}.log",
        format=_TRADE_FORMAT,
        filter=is_trade_record,
        retention="30 days",
        level="INFO",
        serialize=json_logs,
    )
    return [console, debug_file, trades_file]
