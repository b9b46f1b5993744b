"""WebSocket client for Raydium AMM v4 pool creation via Solana logsSubscribe.

logsSubscribe gives us: signature + log messages. A new pool is detected
from the "initialize2" log line; the worker then fetches the full
transaction and decodes the instruction.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from enum import Enum

import websockets
from loguru import logger

from src.parsers.raydium.constants import LOG_INITIALIZE2, RAYDIUM_AMM_V4_PROGRAM_ID


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ACTIVE = "active"


class RaydiumLogsClient:
    """Single-connection logsSubscribe listener for the AMM program.

    Auto-reconnects with exponential backoff (5s doubling to 60s).
    """

    def __init__(
        self,
        ws_url: str,
        program_id: str = RAYDIUM_AMM_V4_PROGRAM_ID,
        *,
        callback_timeout: float = 60.0,
        drain_timeout: float | None = None,
    ) -> None:
        self._ws_url = ws_url
        self._program_id = program_id
        self._callback_timeout = callback_timeout
        self._drain_timeout = callback_timeout if drain_timeout is None else drain_timeout
        self._ws: websockets.WebSocketClientProtocol | None = None
        self._state = ConnectionState.DISCONNECTED
        self._running = False
        self._reconnect_delay = 5.0
        self._max_reconnect_delay = 60.0
        self._message_count = 0
        self._subscription_id: int | None = None

        # Called with the creating transaction's signature
        self.on_new_pool: Callable[[str], Awaitable[object]] | None = None
        self._pending_tasks: set[asyncio.Task] = set()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def message_count(self) -> int:
        return self._message_count

    async def connect(self) -> None:
        """Connect and listen. Auto-reconnects on disconnect."""
        self._running = True
        while self._running:
            try:
                self._state = ConnectionState.CONNECTING
                async with websockets.connect(
                    self._ws_url,
                    ping_interval=30,
                    ping_timeout=10,
                    close_timeout=5,
                ) as ws:
                    self._ws = ws
                    self._state = ConnectionState.CONNECTED
                    self._reconnect_delay = 5.0
                    await self._subscribe()
                    self._state = ConnectionState.ACTIVE
                    logger.info("[AMM-WS] Solana WS connected, logsSubscribe active")
                    await self._listen()
            except (
                websockets.ConnectionClosed,
                ConnectionError,
                OSError,
                TimeoutError,
            ) as e:
                logger.warning(f"[AMM-WS] WS disconnected: {e}")
                self._state = ConnectionState.DISCONNECTED
                self._ws = None
                self._subscription_id = None
                if self._running:
                    logger.info(f"[AMM-WS] Reconnecting in {self._reconnect_delay:.0f}s...")
                    await asyncio.sleep(self._reconnect_delay)
                    self._reconnect_delay = min(
                        self._reconnect_delay * 2, self._max_reconnect_delay
                    )

    async def _subscribe(self) -> None:
        if not self._ws:
            return
        subscribe_msg = json.dumps({
            "jsonrpc": "2.0",
            "id": 1,
            "method": "logsSubscribe",
            "params": [
                {"mentions": [self._program_id]},
                {"commitment": "confirmed"},
            ],
        })
        await self._ws.send(subscribe_msg)
        try:
            response = await asyncio.wait_for(self._ws.recv(), timeout=10.0)
            data = json.loads(response)
            if "result" in data:
                self._subscription_id = data["result"]
                logger.debug(f"[AMM-WS] logsSubscribe id={self._subscription_id}")
        except (asyncio.TimeoutError, json.JSONDecodeError) as e:
            logger.warning(f"[AMM-WS] Subscribe confirmation failed: {e}")

    async def _listen(self) -> None:
        if not self._ws:
            return

        async for message in self._ws:
            self._message_count += 1
            self.handle_message(message)

    def handle_message(self, message: str | bytes) -> None:
        """Dispatch one raw logsNotification frame."""
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            return

        # {"method": "logsNotification", "params": {"result": {"value": {...}}}}
        params = data.get("params")
        if not params:
            return

        value = params.get("result", {}).get("value", {})
        signature = value.get("signature")
        logs = value.get("logs") or []
        if not signature or not logs:
            return
        if value.get("err"):
            return

        if any(LOG_INITIALIZE2 in line for line in logs) and self.on_new_pool:
            logger.debug(f"[AMM-WS] initialize2 seen in {signature[:16]}")
            task = asyncio.create_task(self._safe_callback(self.on_new_pool, signature))
            self._pending_tasks.add(task)
            task.add_done_callback(self._pending_tasks.discard)

    async def _safe_callback(
        self, callback: Callable[[str], Awaitable[object]], signature: str
    ) -> None:
        try:
            await asyncio.wait_for(callback(signature), timeout=self._callback_timeout)
        except asyncio.TimeoutError:
            logger.error(f"[AMM-WS] Callback timed out for {signature[:16]}")
        except Exception as e:
            logger.error(f"[AMM-WS] Callback error for {signature[:16]}: {e}")

    async def stop(self) -> None:
        """Close the socket, then let in-flight callbacks finish.

        Callbacks still running after ``drain_timeout`` are cancelled.
        """
        self._running = False
        if self._ws:
            await self._ws.close()
            self._ws = None
        self._state = ConnectionState.DISCONNECTED
        if not self._pending_tasks:
            return

        logger.info(f"[AMM-WS] Waiting for {len(self._pending_tasks)} in-flight callback(s)")
        _done, still_running = await asyncio.wait(
            set(self._pending_tasks), timeout=self._drain_timeout
        )
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(f"[AMM-WS] Cancelled {len(still_running)} callback(s) after drain timeout")
            await asyncio.gather(*still_running, return_exceptions=True)
