"""Error taxonomy for the pool-lifecycle engine.

Decode and admission errors abort the operation that raised them with no
partial state. Swap and data errors are fatal for a campaign. A missing
price sample is never fatal.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.sniper.models import SwapOutcome


class SniperError(Exception):
    """Base class for every error raised by the sniper core."""


# ── Decoding ───────────────────────────────────────────────────────────


class DecodeError(SniperError):
    """A pool-creation instruction could not be turned into an event."""


class MalformedPayload(DecodeError):
    pass


class TruncatedAccountList(DecodeError):
    pass


class UnrecognizedProgram(DecodeError):
    pass


class MissingMarketData(DecodeError):
    """Market account lookup failed; swaps on this pool cannot be built."""


# ── Admission ──────────────────────────────────────────────────────────


class AdmissionError(SniperError):
    pass


class IncompleteEvent(AdmissionError):
    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Missing required account roles: {', '.join(missing)}")


class DuplicatePool(AdmissionError):
    """Pool already tracked. Registry treats this as a silent no-op."""


# ── Swaps ──────────────────────────────────────────────────────────────


class SwapError(SniperError):
    def __init__(self, message: str, outcome: SwapOutcome | None = None) -> None:
        self.outcome = outcome
        super().__init__(message)


class ConstructionFailed(SwapError):
    pass


class SubmissionFailed(SwapError):
    pass


class Rejected(SwapError):
    pass


# ── Data ───────────────────────────────────────────────────────────────


class DataError(SniperError):
    pass


class RecordUnavailable(DataError):
    pass


class SampleUnavailable(SniperError):
    """No price sample this round. Callers recover locally."""


# ── Transport ──────────────────────────────────────────────────────────


class RpcError(SniperError):
    """JSON-RPC transport failure (HTTP status, RPC error object, timeout)."""

    def __init__(
        self,
        message: str,
        *,
        http_status: int | None = None,
        rpc_error: dict | None = None,
    ) -> None:
        self.http_status = http_status
        self.rpc_error = rpc_error
        super().__init__(message)

    def __str__(self) -> str:
        detail = []
        if self.http_status is not None:
            detail.append(f"status={self.http_status}")
        if self.rpc_error:
            detail.append(f"error={self.rpc_error}")
        base = super().__str__()
        return f"{base} ({', '.join(detail)})" if detail else base
