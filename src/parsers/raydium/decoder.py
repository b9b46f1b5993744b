"""Decode Raydium AMM v4 ``initialize2`` instructions into pool-creation events.

Payload layout and account positions live in ``constants``
(INITIALIZE2_LAYOUT / INITIALIZE2_ACCOUNT_INDEX). Every read is bounds
checked: a short payload or account list fails closed instead of reading
garbage.

The only side effect is one getAccountInfo on the OpenBook market, needed
for the bids/asks/event-queue keys that swaps require later.
"""

import struct
from collections.abc import Awaitable, Callable

from loguru import logger
from pydantic import ValidationError
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.parsers.raydium.constants import (
    INITIALIZE2_ACCOUNT_INDEX,
    INITIALIZE2_LAYOUT,
    INITIALIZE2_SIZE,
    IX_INITIALIZE2,
    MARKET_ASKS_OFFSET,
    MARKET_BIDS_OFFSET,
    MARKET_EVENT_QUEUE_OFFSET,
    MARKET_MIN_SIZE,
)
from src.parsers.raydium.models import (
    CompiledInstruction,
    PoolCreationEvent,
    RawTransaction,
)
from src.sniper.errors import (
    MalformedPayload,
    MissingMarketData,
    TruncatedAccountList,
    UnrecognizedProgram,
)

FetchAccount = Callable[[str], Awaitable[bytes | None]]


def read_field(data: bytes, offset: int, fmt: str) -> int:
    """Read one little-endian integer, failing closed on a short buffer."""
    size = struct.calcsize(fmt)
    if offset < 0 or offset + size > len(data):
        raise MalformedPayload(
            f"Payload too short: need {offset + size} bytes, have {len(data)}"
        )
    return struct.unpack_from(fmt, data, offset)[0]


def read_pubkey(data: bytes, offset: int) -> str:
    if offset < 0 or offset + 32 > len(data):
        raise MalformedPayload(
            f"Account data too short for key at {offset}: {len(data)} bytes"
        )
    return str(Pubkey.from_bytes(data[offset : offset + 32]))


def parse_initialize2(data: bytes) -> dict[str, int]:
    """Parse the fixed initialize2 record: tag, nonce, open time, amounts."""
    if len(data) < INITIALIZE2_SIZE:
        raise MalformedPayload(
            f"initialize2 payload is {len(data)} bytes, expected {INITIALIZE2_SIZE}"
        )
    params = {name: read_field(data, offset, fmt) for name, offset, fmt in INITIALIZE2_LAYOUT}
    if params["discriminator"] != IX_INITIALIZE2:
        raise MalformedPayload(f"Unexpected instruction tag {params['discriminator']}")
    return params


def resolve_accounts(account_keys: list[str], ix_accounts: list[int]) -> dict[str, str]:
    """Map each initialize2 role to its account key via the fixed index table."""
    resolved: dict[str, str] = {}
    for role, position in INITIALIZE2_ACCOUNT_INDEX.items():
        if position >= len(ix_accounts):
            raise TruncatedAccountList(
                f"Role {role} needs account #{position}, instruction has {len(ix_accounts)}"
            )
        key_index = ix_accounts[position]
        if key_index >= len(account_keys):
            raise TruncatedAccountList(
                f"Role {role} points at key {key_index}, tx has {len(account_keys)}"
            )
        resolved[role] = account_keys[key_index]
    return resolved


def parse_market_accounts(data: bytes | None) -> dict[str, str]:
    if data is None:
        raise MissingMarketData("Market account not found")
    if len(data) < MARKET_MIN_SIZE:
        raise MissingMarketData(
            f"Market account data too short: {len(data)} < {MARKET_MIN_SIZE}"
        )
    return {
        "market_event_queue": read_pubkey(data, MARKET_EVENT_QUEUE_OFFSET),
        "market_bids": read_pubkey(data, MARKET_BIDS_OFFSET),
        "market_asks": read_pubkey(data, MARKET_ASKS_OFFSET),
    }


def is_candidate(tx: RawTransaction, ix: CompiledInstruction, program_id: str) -> bool:
    if ix.program_id_index >= len(tx.account_keys):
        return False
    return tx.account_keys[ix.program_id_index] == program_id and len(ix.data) > 0


async def decode_instruction(
    tx: RawTransaction,
    ix: CompiledInstruction,
    *,
    program_id: str,
    fetch_account: FetchAccount,
    base_decimals: int = 9,
    quote_decimals: int = 9,
) -> PoolCreationEvent:
    """Decode one AMM instruction of ``tx`` into a PoolCreationEvent.

    Raises UnrecognizedProgram, MalformedPayload, TruncatedAccountList or
    MissingMarketData. Never returns a partially populated event.
    """
    if not is_candidate(tx, ix, program_id):
        raise UnrecognizedProgram(
            f"Instruction is not an AMM call (program index {ix.program_id_index})"
        )

    params = parse_initialize2(ix.data)
    accounts = resolve_accounts(tx.account_keys, ix.accounts)

    try:
        market_data = await fetch_account(accounts["market_id"])
    except Exception as e:
        raise MissingMarketData(f"Market lookup failed for {accounts['market_id'][:12]}: {e}") from e
    market = parse_market_accounts(market_data)

    try:
        event = PoolCreationEvent(
            **{**accounts, "program_id": program_id},
            **market,
            nonce=params["nonce"],
            open_time=params["open_time"],
            init_base_amount=params["init_coin_amount"],
            init_quote_amount=params["init_pc_amount"],
            base_decimals=base_decimals,
            quote_decimals=quote_decimals,
        )
    except ValidationError as e:
        raise MalformedPayload(f"Invalid pool creation fields: {e.errors()[0]['msg']}") from e

    logger.debug(
        f"[DECODE] Pool {event.amm_id[:12]} base={event.base_mint[:12]} "
        f"quote={event.quote_mint[:12]} K={event.k} V={event.v}"
    )
    return event


async def decode_pool_creation(
    tx: RawTransaction,
    *,
    program_id: str,
    fetch_account: FetchAccount,
    base_decimals: int = 9,
    quote_decimals: int = 9,
) -> PoolCreationEvent | None:
    """Find and decode the initialize2 instruction in ``tx``.

    Non-AMM instructions and AMM instructions with another tag are skipped.
    Returns None when the transaction creates no pool.
    """
    for ix in tx.instructions:
        if not is_candidate(tx, ix, program_id):
            continue
        if ix.data[0] != IX_INITIALIZE2:
            logger.debug(f"[DECODE] Skipping AMM instruction tag {ix.data[0]} in {tx.signature[:12]}")
            continue
        return await decode_instruction(
            tx,
            ix,
            program_id=program_id,
            fetch_account=fetch_account,
            base_decimals=base_decimals,
            quote_decimals=quote_decimals,
        )
    return None
