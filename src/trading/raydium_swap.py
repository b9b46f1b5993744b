"""Raydium AMM v4 swap execution: build, sign, send, confirm, audit.

Pipeline:
  1. Build instructions: compute budget, idempotent ATAs, WSOL wrap,
     swapBaseIn, WSOL close
  2. Compile a v0 message with a fresh blockhash and sign
  3. sendTransaction
  4. Poll getSignatureStatuses with periodic resend until confirmed
  5. Append a swap_attempts row whatever the result

From the caller's side a swap either returns a SwapOutcome carrying a
signature or raises a SwapError. No silent partial success.
"""

from __future__ import annotations

import asyncio
import base64
import struct
from typing import TYPE_CHECKING

from loguru import logger
from solders.compute_budget import (  # type: ignore[import-untyped]
    set_compute_unit_limit,
    set_compute_unit_price,
)
from solders.hash import Hash  # type: ignore[import-untyped]
from solders.instruction import AccountMeta, Instruction  # type: ignore[import-untyped]
from solders.message import MessageV0  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]
from solders.system_program import TransferParams, transfer  # type: ignore[import-untyped]
from solders.transaction import VersionedTransaction  # type: ignore[import-untyped]

from src.parsers.raydium.constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    IX_SWAP_BASE_IN,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    WSOL_MINT,
)
from src.sniper.errors import (
    ConstructionFailed,
    Rejected,
    RpcError,
    SubmissionFailed,
    SwapError,
)
from src.sniper.models import SwapAttemptEntry, SwapDirection, SwapOutcome

if TYPE_CHECKING:
    from src.models.pool import PoolRecord
    from src.parsers.persistence import PoolStore
    from src.parsers.raydium.client import SolanaRpcClient
    from src.trading.price_oracle import PriceOracle
    from src.trading.wallet import SolanaWallet

# Account roles a pool record must carry for swapBaseIn to be built
REQUIRED_SWAP_ROLES = (
    "amm_id",
    "amm_authority",
    "amm_open_orders",
    "target_orders",
    "base_mint",
    "quote_mint",
    "base_vault",
    "quote_vault",
    "market_program_id",
    "market_id",
    "market_bids",
    "market_asks",
    "market_event_queue",
    "market_base_vault",
    "market_quote_vault",
    "market_authority",
)

# SPL token instruction tags
_TOKEN_IX_CLOSE_ACCOUNT = 9
_TOKEN_IX_SYNC_NATIVE = 17
# Associated token program: CreateIdempotent
_ATA_IX_CREATE_IDEMPOTENT = 1

CONFIRM_POLL_INTERVAL = 2.0  # seconds
RESEND_INTERVAL = 4.0  # seconds

_TOKEN_PROGRAM = Pubkey.from_string(TOKEN_PROGRAM_ID)
_ATA_PROGRAM = Pubkey.from_string(ASSOCIATED_TOKEN_PROGRAM_ID)
_SYSTEM_PROGRAM = Pubkey.from_string(SYSTEM_PROGRAM_ID)


def missing_swap_roles(record: object) -> list[str]:
    return [role for role in REQUIRED_SWAP_ROLES if not getattr(record, role, None)]


def _pk(value: str) -> Pubkey:
    return Pubkey.from_string(value)


def create_ata_idempotent_ix(payer: Pubkey, ata: Pubkey, owner: Pubkey, mint: Pubkey) -> Instruction:
    return Instruction(
        _ATA_PROGRAM,
        bytes([_ATA_IX_CREATE_IDEMPOTENT]),
        [
            AccountMeta(payer, is_signer=True, is_writable=True),
            AccountMeta(ata, is_signer=False, is_writable=True),
            AccountMeta(owner, is_signer=False, is_writable=False),
            AccountMeta(mint, is_signer=False, is_writable=False),
            AccountMeta(_SYSTEM_PROGRAM, is_signer=False, is_writable=False),
            AccountMeta(_TOKEN_PROGRAM, is_signer=False, is_writable=False),
        ],
    )


def sync_native_ix(account: Pubkey) -> Instruction:
    return Instruction(
        _TOKEN_PROGRAM,
        bytes([_TOKEN_IX_SYNC_NATIVE]),
        [AccountMeta(account, is_signer=False, is_writable=True)],
    )


def close_account_ix(account: Pubkey, destination: Pubkey, owner: Pubkey) -> Instruction:
    return Instruction(
        _TOKEN_PROGRAM,
        bytes([_TOKEN_IX_CLOSE_ACCOUNT]),
        [
            AccountMeta(account, is_signer=False, is_writable=True),
            AccountMeta(destination, is_signer=False, is_writable=True),
            AccountMeta(owner, is_signer=True, is_writable=False),
        ],
    )


def swap_base_in_ix(
    record: PoolRecord,
    *,
    user_source: Pubkey,
    user_destination: Pubkey,
    owner: Pubkey,
    amount_in: int,
    min_amount_out: int,
) -> Instruction:
    """Raydium AMM v4 swapBaseIn: tag 9, u64 amount_in, u64 min_amount_out."""
    data = struct.pack("<BQQ", IX_SWAP_BASE_IN, amount_in, min_amount_out)
    accounts = [
        AccountMeta(_TOKEN_PROGRAM, is_signer=False, is_writable=False),
        AccountMeta(_pk(record.amm_id), is_signer=False, is_writable=True),
        AccountMeta(_pk(record.amm_authority), is_signer=False, is_writable=False),
        AccountMeta(_pk(record.amm_open_orders), is_signer=False, is_writable=True),
        AccountMeta(_pk(record.target_orders), is_signer=False, is_writable=True),
        AccountMeta(_pk(record.base_vault), is_signer=False, is_writable=True),
        AccountMeta(_pk(record.quote_vault), is_signer=False, is_writable=True),
        AccountMeta(_pk(record.market_program_id), is_signer=False, is_writable=False),
        AccountMeta(_pk(record.market_id), is_signer=False, is_writable=True),
        AccountMeta(_pk(record.market_bids), is_signer=False, is_writable=True),
        AccountMeta(_pk(record.market_asks), is_signer=False, is_writable=True),
        AccountMeta(_pk(record.market_event_queue), is_signer=False, is_writable=True),
        AccountMeta(_pk(record.market_base_vault), is_signer=False, is_writable=True),
        AccountMeta(_pk(record.market_quote_vault), is_signer=False, is_writable=True),
        AccountMeta(_pk(record.market_authority), is_signer=False, is_writable=False),
        AccountMeta(user_source, is_signer=False, is_writable=True),
        AccountMeta(user_destination, is_signer=False, is_writable=True),
        AccountMeta(owner, is_signer=True, is_writable=False),
    ]
    return Instruction(_pk(record.program_id), data, accounts)


class RaydiumSwapExecutor:
    """Builds and submits Raydium swaps for a pool record and audits every attempt."""

    def __init__(
        self,
        *,
        rpc: SolanaRpcClient,
        wallet: SolanaWallet,
        store: PoolStore,
        oracle: PriceOracle | None = None,
        compute_unit_limit: int = 400_000,
        compute_unit_price: int = 100_000,
        min_amount_out: int = 0,
        confirm_timeout: float = 60.0,
        confirm_poll_interval: float = CONFIRM_POLL_INTERVAL,
        resend_interval: float = RESEND_INTERVAL,
    ) -> None:
        self._rpc = rpc
        self._wallet = wallet
        self._store = store
        self._oracle = oracle
        self._cu_limit = compute_unit_limit
        self._cu_price = compute_unit_price
        self._min_amount_out = min_amount_out
        self._confirm_timeout = confirm_timeout
        self._poll_interval = confirm_poll_interval
        self._resend_interval = resend_interval

    def build_instructions(
        self,
        record: PoolRecord,
        direction: SwapDirection,
        amount: int,
    ) -> list[Instruction]:
        """Full instruction list for one swap. Raises ValueError on bad input."""
        if amount <= 0:
            raise ValueError(f"Swap amount must be positive, got {amount}")
        missing = missing_swap_roles(record)
        if missing:
            raise ValueError(f"Pool record missing roles: {', '.join(missing)}")

        owner = self._wallet.pubkey
        if direction is SwapDirection.QUOTE_TO_BASE:
            input_mint, output_mint = record.quote_mint, record.base_mint
        else:
            input_mint, output_mint = record.base_mint, record.quote_mint

        source_ata = self._wallet.get_ata_address(input_mint)
        dest_ata = self._wallet.get_ata_address(output_mint)

        pre: list[Instruction] = [
            set_compute_unit_limit(self._cu_limit),
            set_compute_unit_price(self._cu_price),
            create_ata_idempotent_ix(owner, source_ata, owner, _pk(input_mint)),
            create_ata_idempotent_ix(owner, dest_ata, owner, _pk(output_mint)),
        ]
        post: list[Instruction] = []

        if input_mint == WSOL_MINT:
            pre.append(
                transfer(TransferParams(from_pubkey=owner, to_pubkey=source_ata, lamports=amount))
            )
            pre.append(sync_native_ix(source_ata))
            post.append(close_account_ix(source_ata, owner, owner))
        if output_mint == WSOL_MINT:
            post.append(close_account_ix(dest_ata, owner, owner))

        swap_ix = swap_base_in_ix(
            record,
            user_source=source_ata,
            user_destination=dest_ata,
            owner=owner,
            amount_in=amount,
            min_amount_out=self._min_amount_out,
        )
        return [*pre, swap_ix, *post]

    async def swap(
        self,
        record: PoolRecord,
        direction: SwapDirection,
        amount: int,
    ) -> SwapOutcome:
        """Execute one swap. ``amount`` is in the input token's smallest unit."""
        logger.info(
            f"[SWAP] {direction.value.upper()} {record.amm_id[:12]} amount={amount}"
        )
        try:
            outcome = await self._execute(record, direction, amount)
        except SwapError as e:
            outcome = e.outcome or SwapOutcome.failed(str(e))
            e.outcome = outcome
            await self._record_attempt(record, direction, amount, outcome)
            logger.warning(f"[SWAP] {direction.value.upper()} failed for {record.amm_id[:12]}: {e}")
            raise
        except asyncio.CancelledError:
            await self._record_attempt(
                record, direction, amount, SwapOutcome.failed("Cancelled before confirmation")
            )
            logger.warning(f"[SWAP] {direction.value.upper()} cancelled for {record.amm_id[:12]}")
            raise

        await self._record_attempt(record, direction, amount, outcome)
        logger.info(
            f"[SWAP] {direction.value.upper()} confirmed: {record.amm_id[:12]} "
            f"tx={outcome.signature} price={outcome.price}"
        )
        return outcome

    async def _execute(
        self,
        record: PoolRecord,
        direction: SwapDirection,
        amount: int,
    ) -> SwapOutcome:
        try:
            instructions = self.build_instructions(record, direction, amount)
            tx_b64, signature = await self._build_and_sign_tx(instructions)
        except Exception as e:
            raise ConstructionFailed(f"TX build/sign failed: {e}") from e

        try:
            sent = await self._rpc.send_transaction(tx_b64)
        except RpcError as e:
            raise SubmissionFailed(
                f"sendTransaction failed: {e}",
                SwapOutcome.failed(str(e), signature=signature),
            ) from e

        status = await self._wait_for_confirmation_with_resend(sent, tx_b64)
        if status is None:
            raise SubmissionFailed(
                f"Confirmation timeout ({self._confirm_timeout:.0f}s)",
                SwapOutcome.failed("confirmation timeout", signature=sent),
            )
        if status.get("err"):
            raise Rejected(
                f"TX {sent[:16]} failed on-chain: {status['err']}",
                SwapOutcome.failed(f"on-chain error: {status['err']}", signature=sent),
            )

        price = await self._oracle.sample(record.amm_id) if self._oracle else None
        return SwapOutcome.succeeded(sent, price=price)

    async def _build_and_sign_tx(self, instructions: list[Instruction]) -> tuple[str, str]:
        """Compile a v0 message with a fresh blockhash and sign it.

        Returns (tx_base64, signature).
        """
        blockhash = Hash.from_string(await self._rpc.get_latest_blockhash())
        keypair = self._wallet.keypair
        msg = MessageV0.try_compile(
            payer=keypair.pubkey(),
            instructions=instructions,
            address_lookup_table_accounts=[],
            recent_blockhash=blockhash,
        )
        tx = VersionedTransaction(msg, [keypair])
        tx_b64 = base64.b64encode(bytes(tx)).decode("ascii")
        logger.debug(
            f"[SWAP] TX built: {len(instructions)} instructions, blockhash={str(blockhash)[:16]}..."
        )
        return tx_b64, str(tx.signatures[0])

    async def _wait_for_confirmation_with_resend(self, signature: str, tx_b64: str) -> dict | None:
        """Poll signature status, re-sending the same signed TX every few seconds.

        Returns the status dict once confirmed/finalized or failed on-chain,
        None on timeout.
        """
        elapsed = 0.0
        last_resend = 0.0
        while elapsed < self._confirm_timeout:
            try:
                status = await self._rpc.get_signature_status(signature)
            except RpcError as e:
                logger.debug(f"[SWAP] Status poll failed for {signature[:16]}: {e}")
                status = None

            if status is not None:
                if status.get("err"):
                    return status
                if status.get("confirmationStatus") in ("confirmed", "finalized"):
                    logger.debug(f"[SWAP] TX {signature[:16]} confirmed in {elapsed:.1f}s")
                    return status

            if elapsed - last_resend >= self._resend_interval:
                try:
                    await self._rpc.send_transaction(tx_b64, max_retries=0)
                    last_resend = elapsed
                except RpcError as e:
                    logger.debug(f"[SWAP] Resend failed for {signature[:16]}: {e}")

            await asyncio.sleep(self._poll_interval)
            elapsed += self._poll_interval

        logger.warning(f"[SWAP] TX {signature[:16]} confirmation timeout after {self._confirm_timeout}s")
        return None

    async def _record_attempt(
        self,
        record: PoolRecord,
        direction: SwapDirection,
        amount: int,
        outcome: SwapOutcome,
    ) -> None:
        try:
            await self._store.append_swap_attempt(
                SwapAttemptEntry(
                    pool_id=record.id,
                    amm_id=record.amm_id,
                    amount=amount,
                    direction=direction,
                    outcome=outcome,
                )
            )
        except Exception as e:
            logger.error(f"[SWAP] Failed to record swap attempt for {record.amm_id[:12]}: {e}")
