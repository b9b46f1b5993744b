"""Tests for LaunchWorker: signature to admitted campaign."""

import struct
from unittest.mock import AsyncMock, MagicMock

import pytest
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.parsers.raydium.constants import MARKET_MIN_SIZE, RAYDIUM_AMM_V4_PROGRAM_ID
from src.parsers.raydium.models import CompiledInstruction, RawTransaction
from src.parsers.worker import LaunchWorker
from src.sniper.errors import IncompleteEvent, RpcError, SubmissionFailed

SIGNATURE = "3" * 88


def _pool_tx(signature: str = SIGNATURE) -> RawTransaction:
    keys = [str(Pubkey.new_unique()) for _ in range(21)] + [RAYDIUM_AMM_V4_PROGRAM_ID]
    data = struct.pack("<BBQQQ", 1, 254, 0, 2_000_000_000, 1_000_000_000)
    return RawTransaction(
        signature=signature,
        account_keys=keys,
        instructions=[CompiledInstruction(program_id_index=21, accounts=list(range(21)), data=data)],
    )


def _market_data() -> bytes:
    # every sub-account key non-zero so it parses as a distinct pubkey
    return bytes(range(256)) + bytes(range(MARKET_MIN_SIZE - 256))


@pytest.fixture
def rpc() -> MagicMock:
    rpc = MagicMock()
    rpc.get_transaction = AsyncMock(return_value=_pool_tx())
    rpc.get_account_data = AsyncMock(return_value=_market_data())
    return rpc


@pytest.fixture
def registry() -> MagicMock:
    registry = MagicMock()
    registry.add_sniper = AsyncMock(return_value=MagicMock(name="lifecycle"))
    return registry


@pytest.fixture
def worker(rpc, pool_store, registry) -> LaunchWorker:
    return LaunchWorker(
        rpc=rpc,
        store=pool_store,
        registry=registry,
        program_id=RAYDIUM_AMM_V4_PROGRAM_ID,
        tx_fetch_delay=0,
    )


class TestProcessSignature:
    async def test_new_pool_admitted(self, worker, registry, pool_store):
        lifecycle = await worker.process_signature(SIGNATURE)
        assert lifecycle is registry.add_sniper.return_value

        record = registry.add_sniper.await_args.args[0]
        stored = await pool_store.fetch_pool_record_by_id(record.id)
        assert stored.amm_id == record.amm_id
        assert stored.signature == SIGNATURE
        assert worker.pools_detected == 1
        assert worker.pools_admitted == 1

    async def test_signature_processed_once(self, worker, rpc, registry):
        await worker.process_signature(SIGNATURE)
        assert await worker.process_signature(SIGNATURE) is None
        rpc.get_transaction.assert_awaited_once()
        registry.add_sniper.assert_awaited_once()

    async def test_no_pool_in_tx(self, worker, rpc, registry):
        rpc.get_transaction.return_value = RawTransaction(signature=SIGNATURE, account_keys=[])
        assert await worker.process_signature(SIGNATURE) is None
        registry.add_sniper.assert_not_awaited()

    async def test_decode_error(self, worker, rpc, registry):
        rpc.get_account_data.return_value = None
        assert await worker.process_signature(SIGNATURE) is None
        assert worker.decode_errors == 1
        registry.add_sniper.assert_not_awaited()

    async def test_tx_unavailable(self, worker, rpc):
        rpc.get_transaction.side_effect = [None, RpcError("slow"), None]
        assert await worker.process_signature(SIGNATURE) is None
        assert rpc.get_transaction.await_count == 3

    async def test_tx_retried(self, worker, rpc, registry):
        rpc.get_transaction.side_effect = [None, _pool_tx()]
        assert await worker.process_signature(SIGNATURE) is not None

    async def test_buy_failure(self, worker, registry):
        registry.add_sniper.side_effect = SubmissionFailed("send failed")
        assert await worker.process_signature(SIGNATURE) is None
        assert worker.buy_failures == 1
        assert worker.pools_admitted == 0

    async def test_incomplete_record(self, worker, registry):
        registry.add_sniper.side_effect = IncompleteEvent(["market_bids"])
        assert await worker.process_signature(SIGNATURE) is None

    async def test_duplicate_pool(self, worker, registry):
        registry.add_sniper.return_value = None
        assert await worker.process_signature(SIGNATURE) is None
        assert worker.pools_admitted == 0
