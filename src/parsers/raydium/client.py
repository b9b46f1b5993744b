"""Async Solana JSON-RPC client used by the decoder, oracle, wallet and swaps.

Transport failures (HTTP status, JSON-RPC error object, timeouts) raise
RpcError. A missing account / transaction is not an error and returns None.
"""

import asyncio
import base64

import base58
import httpx
from loguru import logger

from src.parsers.raydium.models import CompiledInstruction, RawTransaction
from src.sniper.errors import RpcError


class RateLimiter:
    """Minimum spacing between requests, shared by all callers of one client."""

    def __init__(self, max_rps: float) -> None:
        self._min_interval = 1.0 / max_rps
        self._last_request = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            loop = asyncio.get_running_loop()
            wait = self._min_interval - (loop.time() - self._last_request)
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_request = loop.time()


class SolanaRpcClient:
    """JSON-RPC over httpx with a client-side rate limit."""

    def __init__(
        self,
        rpc_url: str,
        *,
        max_rps: float = 10.0,
        timeout: float = 15.0,
        commitment: str = "confirmed",
    ) -> None:
        if not rpc_url:
            raise ValueError("RPC URL is empty")
        self._rpc_url = rpc_url
        self._http = httpx.AsyncClient(timeout=timeout)
        self._rate_limiter = RateLimiter(max_rps)
        self._commitment = commitment
        self._request_id = 0

    async def _call(self, method: str, params: list) -> object:
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }
        await self._rate_limiter.acquire()
        try:
            resp = await self._http.post(self._rpc_url, json=payload)
        except httpx.HTTPError as e:
            raise RpcError(f"{method} transport failure: {type(e).__name__}") from e

        if resp.status_code != 200:
            raise RpcError(f"{method} failed", http_status=resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise RpcError(f"{method} returned invalid JSON", http_status=200) from e

        if "error" in data:
            raise RpcError(f"{method} RPC error", rpc_error=data["error"])
        return data.get("result")

    # ─── Accounts ────────────────────────────────────────────────────

    async def get_account_data(self, pubkey: str) -> bytes | None:
        """Raw account bytes, or None when the account does not exist."""
        result = await self._call(
            "getAccountInfo",
            [pubkey, {"encoding": "base64", "commitment": self._commitment}],
        )
        if not result or not result.get("value"):
            return None
        account_data = result["value"]["data"]
        b64_data = account_data[0] if isinstance(account_data, list) else account_data
        return base64.b64decode(b64_data)

    async def get_token_accounts_by_owner(self, owner: str, mint: str) -> list[dict]:
        result = await self._call(
            "getTokenAccountsByOwner",
            [owner, {"mint": mint}, {"encoding": "jsonParsed", "commitment": self._commitment}],
        )
        if not result:
            return []
        return result.get("value", []) or []

    # ─── Transactions ────────────────────────────────────────────────

    async def get_transaction(self, signature: str) -> RawTransaction | None:
        """Fetch a transaction and flatten it to account keys + instructions.

        v0 transactions append loaded addresses (writable, then readonly)
        after the static keys, matching how instruction indexes address them.
        """
        result = await self._call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "commitment": self._commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if not result:
            return None

        message = result.get("transaction", {}).get("message", {})
        account_keys: list[str] = list(message.get("accountKeys", []))
        loaded = (result.get("meta") or {}).get("loadedAddresses") or {}
        account_keys.extend(loaded.get("writable", []))
        account_keys.extend(loaded.get("readonly", []))

        instructions: list[CompiledInstruction] = []
        for ix in message.get("instructions", []):
            try:
                data = base58.b58decode(ix.get("data", ""))
            except ValueError:
                logger.debug(f"[RPC] Undecodable instruction data in {signature[:16]}")
                data = b""
            instructions.append(
                CompiledInstruction(
                    program_id_index=int(ix["programIdIndex"]),
                    accounts=[int(i) for i in ix.get("accounts", [])],
                    data=data,
                )
            )

        return RawTransaction(
            signature=signature,
            account_keys=account_keys,
            instructions=instructions,
        )

    async def get_latest_blockhash(self) -> str:
        result = await self._call("getLatestBlockhash", [{"commitment": "finalized"}])
        return result["value"]["blockhash"]

    async def send_transaction(self, tx_b64: str, *, max_retries: int = 5) -> str:
        result = await self._call(
            "sendTransaction",
            [tx_b64, {"encoding": "base64", "skipPreflight": True, "maxRetries": max_retries}],
        )
        if not result:
            raise RpcError("sendTransaction returned no signature")
        return str(result)

    async def get_signature_status(self, signature: str) -> dict | None:
        result = await self._call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        statuses = (result or {}).get("value") or []
        return statuses[0] if statuses else None

    async def close(self) -> None:
        await self._http.aclose()
