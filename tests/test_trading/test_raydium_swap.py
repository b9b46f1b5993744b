"""Tests for RaydiumSwapExecutor: instruction layout, submission, audit trail.

All RPC calls are mocked. No real transactions are sent.
"""

from __future__ import annotations

import asyncio
import struct
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from solders.hash import Hash  # type: ignore[import-untyped]
from solders.keypair import Keypair  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.parsers.persistence import pool_record_from_event
from src.parsers.raydium.constants import TOKEN_PROGRAM_ID, WSOL_MINT
from src.sniper.errors import ConstructionFailed, Rejected, RpcError, SubmissionFailed
from src.sniper.models import SwapDirection
from src.trading.raydium_swap import RaydiumSwapExecutor, missing_swap_roles
from src.trading.wallet import SolanaWallet

COMPUTE_BUDGET_PROGRAM = Pubkey.from_string("ComputeBudget111111111111111111111111111111")


# ── Fixtures ───────────────────────────────────────────────────────────


@pytest.fixture
def rpc() -> MagicMock:
    rpc = MagicMock()
    rpc.get_latest_blockhash = AsyncMock(return_value=str(Hash.new_unique()))
    rpc.send_transaction = AsyncMock(return_value="5sig")
    rpc.get_signature_status = AsyncMock(
        return_value={"confirmationStatus": "confirmed", "err": None}
    )
    return rpc


@pytest.fixture
def wallet(rpc) -> SolanaWallet:
    return SolanaWallet(str(Keypair()), rpc)


@pytest.fixture
def store() -> MagicMock:
    store = MagicMock()
    store.append_swap_attempt = AsyncMock()
    return store


@pytest.fixture
def oracle() -> MagicMock:
    oracle = MagicMock()
    oracle.sample = AsyncMock(return_value=Decimal("2.05"))
    return oracle


@pytest.fixture
def executor(rpc, wallet, store, oracle) -> RaydiumSwapExecutor:
    return RaydiumSwapExecutor(
        rpc=rpc,
        wallet=wallet,
        store=store,
        oracle=oracle,
        confirm_timeout=0.05,
        confirm_poll_interval=0.01,
        resend_interval=0.02,
    )


@pytest.fixture
def record(make_event):
    rec = pool_record_from_event(make_event())
    rec.id = 7
    return rec


def _swap_ix(instructions, record):
    return next(ix for ix in instructions if str(ix.program_id) == record.program_id)


# ── Instruction building ──────────────────────────────────────────────


class TestBuildInstructions:
    def test_buy_wraps_and_closes_wsol(self, executor, record, wallet):
        ixs = executor.build_instructions(record, SwapDirection.QUOTE_TO_BASE, 20_000_000)
        assert len(ixs) == 8
        assert ixs[0].program_id == COMPUTE_BUDGET_PROGRAM
        assert ixs[1].program_id == COMPUTE_BUDGET_PROGRAM

        wsol_ata = wallet.get_ata_address(WSOL_MINT)
        sync = ixs[5]
        assert str(sync.program_id) == TOKEN_PROGRAM_ID
        assert sync.data == bytes([17])
        assert sync.accounts[0].pubkey == wsol_ata

        close = ixs[-1]
        assert str(close.program_id) == TOKEN_PROGRAM_ID
        assert close.data == bytes([9])
        assert close.accounts[0].pubkey == wsol_ata

    def test_swap_instruction_layout(self, executor, record, wallet):
        ixs = executor.build_instructions(record, SwapDirection.QUOTE_TO_BASE, 20_000_000)
        swap = _swap_ix(ixs, record)
        assert swap.data == struct.pack("<BQQ", 9, 20_000_000, 0)
        assert len(swap.accounts) == 18
        keys = [str(meta.pubkey) for meta in swap.accounts]
        assert keys[0] == TOKEN_PROGRAM_ID
        assert keys[1] == record.amm_id
        assert keys[9] == record.market_bids
        assert keys[11] == record.market_event_queue
        assert swap.accounts[15].pubkey == wallet.get_ata_address(record.quote_mint)
        assert swap.accounts[16].pubkey == wallet.get_ata_address(record.base_mint)
        assert swap.accounts[17].pubkey == wallet.pubkey
        assert swap.accounts[17].is_signer

    def test_sell_closes_wsol_output_only(self, executor, record, wallet):
        ixs = executor.build_instructions(record, SwapDirection.BASE_TO_QUOTE, 500)
        assert len(ixs) == 6
        swap = _swap_ix(ixs, record)
        assert swap.accounts[15].pubkey == wallet.get_ata_address(record.base_mint)
        assert swap.accounts[16].pubkey == wallet.get_ata_address(WSOL_MINT)
        assert ixs[-1].data == bytes([9])
        assert not any(ix.data == bytes([17]) for ix in ixs)

    def test_non_native_pair(self, executor, make_event):
        rec = pool_record_from_event(make_event(quote_mint=str(Pubkey.new_unique())))
        rec.id = 1
        ixs = executor.build_instructions(rec, SwapDirection.QUOTE_TO_BASE, 1)
        assert len(ixs) == 5
        assert ixs[-1].program_id == Pubkey.from_string(rec.program_id)

    def test_zero_amount(self, executor, record):
        with pytest.raises(ValueError):
            executor.build_instructions(record, SwapDirection.QUOTE_TO_BASE, 0)

    def test_missing_role(self, executor, record):
        record.market_bids = None
        assert missing_swap_roles(record) == ["market_bids"]
        with pytest.raises(ValueError, match="market_bids"):
            executor.build_instructions(record, SwapDirection.QUOTE_TO_BASE, 1)


# ── swap() ─────────────────────────────────────────────────────────────


class TestSwap:
    async def test_success_recorded(self, executor, record, store):
        outcome = await executor.swap(record, SwapDirection.QUOTE_TO_BASE, 20_000_000)
        assert outcome.success
        assert outcome.signature == "5sig"
        assert outcome.price == Decimal("2.05")

        entry = store.append_swap_attempt.await_args.args[0]
        assert entry.pool_id == 7
        assert entry.amount == 20_000_000
        assert entry.direction is SwapDirection.QUOTE_TO_BASE
        assert entry.outcome.status == "success"

    async def test_price_is_best_effort(self, executor, record, oracle):
        oracle.sample.return_value = None
        outcome = await executor.swap(record, SwapDirection.QUOTE_TO_BASE, 1)
        assert outcome.success
        assert outcome.price is None

    async def test_send_failure(self, executor, record, rpc, store):
        rpc.send_transaction.side_effect = RpcError("sendTransaction failed", http_status=503)
        with pytest.raises(SubmissionFailed):
            await executor.swap(record, SwapDirection.QUOTE_TO_BASE, 1)
        entry = store.append_swap_attempt.await_args.args[0]
        assert entry.outcome.status == "failed"
        assert "503" in entry.outcome.error

    async def test_on_chain_error(self, executor, record, rpc, store):
        rpc.get_signature_status.return_value = {
            "confirmationStatus": "confirmed",
            "err": {"InstructionError": [6, {"Custom": 30}]},
        }
        with pytest.raises(Rejected) as exc:
            await executor.swap(record, SwapDirection.BASE_TO_QUOTE, 10)
        assert exc.value.outcome.signature == "5sig"
        assert store.append_swap_attempt.await_args.args[0].outcome.status == "failed"

    async def test_confirmation_timeout_resends(self, executor, record, rpc, store):
        rpc.get_signature_status.return_value = None
        with pytest.raises(SubmissionFailed, match="timeout"):
            await executor.swap(record, SwapDirection.QUOTE_TO_BASE, 1)
        assert rpc.send_transaction.await_count >= 2
        store.append_swap_attempt.assert_awaited_once()

    async def test_blockhash_failure(self, executor, record, rpc, store):
        rpc.get_latest_blockhash.side_effect = RpcError("getLatestBlockhash failed")
        with pytest.raises(ConstructionFailed):
            await executor.swap(record, SwapDirection.QUOTE_TO_BASE, 1)
        rpc.send_transaction.assert_not_awaited()
        store.append_swap_attempt.assert_awaited_once()

    async def test_audit_failure_does_not_mask_result(self, executor, record, store):
        store.append_swap_attempt.side_effect = RuntimeError("db down")
        outcome = await executor.swap(record, SwapDirection.QUOTE_TO_BASE, 1)
        assert outcome.signature == "5sig"

    async def test_cancelled_swap_recorded(self, executor, record, rpc, store):
        never = asyncio.Event()

        async def status(*args, **kwargs):
            await never.wait()

        rpc.get_signature_status.side_effect = status
        task = asyncio.create_task(executor.swap(record, SwapDirection.BASE_TO_QUOTE, 10))
        while not rpc.get_signature_status.await_count:
            await asyncio.sleep(0.005)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        entry = store.append_swap_attempt.await_args.args[0]
        assert entry.direction is SwapDirection.BASE_TO_QUOTE
        assert entry.outcome.status == "failed"
        assert "Cancelled" in entry.outcome.error
