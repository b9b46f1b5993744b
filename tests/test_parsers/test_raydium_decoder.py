"""Tests for the Raydium initialize2 decoder."""

import struct
from decimal import Decimal
from fractions import Fraction
from unittest.mock import AsyncMock

import pytest
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.parsers.raydium.constants import (
    INITIALIZE2_ACCOUNT_INDEX,
    MARKET_ASKS_OFFSET,
    MARKET_BIDS_OFFSET,
    MARKET_EVENT_QUEUE_OFFSET,
    MARKET_MIN_SIZE,
    RAYDIUM_AMM_V4_PROGRAM_ID,
)
from src.parsers.raydium.decoder import (
    decode_instruction,
    decode_pool_creation,
    parse_initialize2,
    read_field,
)
from src.parsers.raydium.models import CompiledInstruction, RawTransaction
from src.sniper.errors import (
    MalformedPayload,
    MissingMarketData,
    TruncatedAccountList,
    UnrecognizedProgram,
)

N_ACCOUNTS = 21
PROGRAM_INDEX = N_ACCOUNTS


def _payload(init_pc: int = 2_000_000_000, init_coin: int = 1_000_000_000, tag: int = 1) -> bytes:
    return struct.pack("<BBQQQ", tag, 254, 1_700_000_000, init_pc, init_coin)


def _market_data(event_queue: Pubkey, bids: Pubkey, asks: Pubkey) -> bytes:
    data = bytearray(MARKET_MIN_SIZE + 47)
    data[MARKET_EVENT_QUEUE_OFFSET : MARKET_EVENT_QUEUE_OFFSET + 32] = bytes(event_queue)
    data[MARKET_BIDS_OFFSET : MARKET_BIDS_OFFSET + 32] = bytes(bids)
    data[MARKET_ASKS_OFFSET : MARKET_ASKS_OFFSET + 32] = bytes(asks)
    return bytes(data)


def _make_tx(data: bytes | None = None, n_accounts: int = N_ACCOUNTS) -> RawTransaction:
    keys = [str(Pubkey.new_unique()) for _ in range(N_ACCOUNTS)]
    keys.append(RAYDIUM_AMM_V4_PROGRAM_ID)
    ix = CompiledInstruction(
        program_id_index=PROGRAM_INDEX,
        accounts=list(range(n_accounts)),
        data=_payload() if data is None else data,
    )
    return RawTransaction(signature="5" * 88, account_keys=keys, instructions=[ix])


@pytest.fixture
def market_keys() -> tuple[Pubkey, Pubkey, Pubkey]:
    return Pubkey.new_unique(), Pubkey.new_unique(), Pubkey.new_unique()


@pytest.fixture
def fetch_market(market_keys) -> AsyncMock:
    return AsyncMock(return_value=_market_data(*market_keys))


# ── Primitive reads ────────────────────────────────────────────────────


class TestReads:
    def test_read_field_little_endian(self):
        assert read_field(b"\x00\x01\x00\x00\x00\x00\x00\x00\x00", 1, "<Q") == 1

    def test_read_field_out_of_bounds(self):
        with pytest.raises(MalformedPayload):
            read_field(b"\x00" * 8, 4, "<Q")

    def test_parse_initialize2_fields(self):
        params = parse_initialize2(_payload(init_pc=7, init_coin=9))
        assert params["discriminator"] == 1
        assert params["nonce"] == 254
        assert params["open_time"] == 1_700_000_000
        assert params["init_pc_amount"] == 7
        assert params["init_coin_amount"] == 9

    def test_parse_initialize2_short_payload(self):
        with pytest.raises(MalformedPayload):
            parse_initialize2(_payload()[:25])

    def test_parse_initialize2_wrong_tag(self):
        with pytest.raises(MalformedPayload, match="tag"):
            parse_initialize2(_payload(tag=9))


# ── decode_instruction ────────────────────────────────────────────────


class TestDecodeInstruction:
    async def test_pool_creation_amounts(self, fetch_market):
        tx = _make_tx()
        event = await decode_instruction(
            tx,
            tx.instructions[0],
            program_id=RAYDIUM_AMM_V4_PROGRAM_ID,
            fetch_account=fetch_market,
        )
        assert event.init_base_amount == 1_000_000_000
        assert event.init_quote_amount == 2_000_000_000
        assert event.k == 2 * 10**18
        assert event.v == Fraction(1, 2)
        assert event.initial_price == Decimal("2")

    async def test_account_roles_resolved(self, fetch_market, market_keys):
        tx = _make_tx()
        event = await decode_instruction(
            tx,
            tx.instructions[0],
            program_id=RAYDIUM_AMM_V4_PROGRAM_ID,
            fetch_account=fetch_market,
        )
        assert event.program_id == RAYDIUM_AMM_V4_PROGRAM_ID
        assert event.amm_id == tx.account_keys[INITIALIZE2_ACCOUNT_INDEX["amm_id"]]
        assert event.base_mint == tx.account_keys[INITIALIZE2_ACCOUNT_INDEX["base_mint"]]
        assert event.market_id == tx.account_keys[INITIALIZE2_ACCOUNT_INDEX["market_id"]]
        assert event.market_event_queue == str(market_keys[0])
        assert event.market_bids == str(market_keys[1])
        assert event.market_asks == str(market_keys[2])
        fetch_market.assert_awaited_once_with(event.market_id)

    async def test_deterministic(self, fetch_market):
        tx = _make_tx()
        first = await decode_instruction(
            tx, tx.instructions[0], program_id=RAYDIUM_AMM_V4_PROGRAM_ID, fetch_account=fetch_market
        )
        second = await decode_instruction(
            tx, tx.instructions[0], program_id=RAYDIUM_AMM_V4_PROGRAM_ID, fetch_account=fetch_market
        )
        assert first == second

    async def test_truncated_account_list(self, fetch_market):
        tx = _make_tx(n_accounts=17)
        with pytest.raises(TruncatedAccountList):
            await decode_instruction(
                tx, tx.instructions[0], program_id=RAYDIUM_AMM_V4_PROGRAM_ID, fetch_account=fetch_market
            )
        fetch_market.assert_not_awaited()

    async def test_short_payload(self, fetch_market):
        tx = _make_tx(data=_payload()[:10])
        with pytest.raises(MalformedPayload):
            await decode_instruction(
                tx, tx.instructions[0], program_id=RAYDIUM_AMM_V4_PROGRAM_ID, fetch_account=fetch_market
            )

    async def test_zero_amount_rejected(self, fetch_market):
        tx = _make_tx(data=_payload(init_coin=0))
        with pytest.raises(MalformedPayload):
            await decode_instruction(
                tx, tx.instructions[0], program_id=RAYDIUM_AMM_V4_PROGRAM_ID, fetch_account=fetch_market
            )

    async def test_other_program(self, fetch_market):
        tx = _make_tx()
        ix = CompiledInstruction(program_id_index=0, accounts=list(range(N_ACCOUNTS)), data=_payload())
        with pytest.raises(UnrecognizedProgram):
            await decode_instruction(
                tx, ix, program_id=RAYDIUM_AMM_V4_PROGRAM_ID, fetch_account=fetch_market
            )

    async def test_market_missing(self):
        tx = _make_tx()
        with pytest.raises(MissingMarketData):
            await decode_instruction(
                tx,
                tx.instructions[0],
                program_id=RAYDIUM_AMM_V4_PROGRAM_ID,
                fetch_account=AsyncMock(return_value=None),
            )

    async def test_market_too_short(self):
        tx = _make_tx()
        with pytest.raises(MissingMarketData):
            await decode_instruction(
                tx,
                tx.instructions[0],
                program_id=RAYDIUM_AMM_V4_PROGRAM_ID,
                fetch_account=AsyncMock(return_value=b"\x00" * (MARKET_MIN_SIZE - 1)),
            )

    async def test_market_fetch_error(self):
        tx = _make_tx()
        with pytest.raises(MissingMarketData):
            await decode_instruction(
                tx,
                tx.instructions[0],
                program_id=RAYDIUM_AMM_V4_PROGRAM_ID,
                fetch_account=AsyncMock(side_effect=ConnectionError("rpc down")),
            )


# ── decode_pool_creation ──────────────────────────────────────────────


class TestDecodePoolCreation:
    async def test_finds_initialize2(self, fetch_market):
        event = await decode_pool_creation(
            _make_tx(), program_id=RAYDIUM_AMM_V4_PROGRAM_ID, fetch_account=fetch_market
        )
        assert event is not None
        assert event.k == 2 * 10**18

    async def test_skips_other_amm_instructions(self, fetch_market):
        tx = _make_tx(data=_payload(tag=9))
        event = await decode_pool_creation(
            tx, program_id=RAYDIUM_AMM_V4_PROGRAM_ID, fetch_account=fetch_market
        )
        assert event is None
        fetch_market.assert_not_awaited()

    async def test_skips_non_amm_instructions(self, fetch_market):
        tx = _make_tx()
        tx.instructions.insert(
            0, CompiledInstruction(program_id_index=3, accounts=[0, 1], data=b"\x02\x00")
        )
        event = await decode_pool_creation(
            tx, program_id=RAYDIUM_AMM_V4_PROGRAM_ID, fetch_account=fetch_market
        )
        assert event is not None

    async def test_no_instructions(self, fetch_market):
        tx = RawTransaction(signature="x", account_keys=[RAYDIUM_AMM_V4_PROGRAM_ID])
        assert await decode_pool_creation(
            tx, program_id=RAYDIUM_AMM_V4_PROGRAM_ID, fetch_account=fetch_market
        ) is None

    async def test_custom_decimals(self, fetch_market):
        event = await decode_pool_creation(
            _make_tx(),
            program_id=RAYDIUM_AMM_V4_PROGRAM_ID,
            fetch_account=fetch_market,
            base_decimals=6,
            quote_decimals=9,
        )
        # (2e9 / 1e9) / (1e9 / 1e6)
        assert event.initial_price == Decimal("0.002")
