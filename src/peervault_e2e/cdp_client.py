"""Chrome DevTools Protocol client for one Obsidian vault window.

A ``CdpClient`` owns a single websocket to a page target. Outbound commands
get monotonically increasing ids and are matched to responses strictly by
id, so any number of calls may be in flight and finish in any order.
Notifications (console output) go to a bounded ``EventCollector``.

When the socket drops unexpectedly the client rejects every in-flight call
with ``CdpConnectionError`` and, if ``auto_reconnect`` is on, reconnects in
the background with a fixed delay between attempts. Console collection is
re-enabled after a successful reconnect. ``ensure_connected`` lets a caller
wait for that recovery, bounded by the attempt budget.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import aiohttp

from .config import CdpConfig
from .errors import (
    CdpConnectionError,
    CdpTimeoutError,
    EvaluationError,
    HarnessError,
    ReconnectExhausted,
)
from .events import CONSOLE_METHODS, ConsoleMessage, ConsoleType, EventCollector

logger = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    PERMANENTLY_CLOSED = "permanently_closed"


@dataclass
class PendingRequest:
    request_id: int
    method: str
    future: asyncio.Future
    timer: asyncio.TimerHandle


@dataclass(frozen=True)
class EvaluateResult:
    success: bool
    value: Any = None
    error: Optional[str] = None


def _exception_message(details: Any) -> str:
    if isinstance(details, dict):
        exception = details.get("exception")
        if isinstance(exception, dict) and exception.get("description"):
            return str(exception["description"])
        if details.get("text"):
            return str(details["text"])
    return "Evaluation error"


def _retrieve(future: asyncio.Future) -> None:
    if future.done():
        if not future.cancelled():
            future.exception()
    else:
        future.cancel()


class CdpClient:
    def __init__(
        self,
        ws_url: str,
        config: CdpConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.ws_url = ws_url
        self.config = config or CdpConfig()
        self.events = EventCollector(self.config.max_console_messages)
        self._session = session
        self._owns_session = session is None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._pending: dict[int, PendingRequest] = {}
        self._next_id = 0
        self._state = ConnectionState.DISCONNECTED
        self._console_enabled = False
        self._reconnecting = False
        self._reconnect_attempts = 0
        self._intentionally_closed = False

    def __repr__(self) -> str:
        return f"CdpClient({self.ws_url!r}, state={self._state.value})"

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed and self._state is ConnectionState.CONNECTED

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    async def connect(self) -> None:
        if self.is_connected:
            return
        self._intentionally_closed = False
        self._reconnect_attempts = 0
        await self._open()

    async def _open(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        if self._state is not ConnectionState.RECONNECTING:
            self._state = ConnectionState.CONNECTING

        try:
            ws = await asyncio.wait_for(
                self._session.ws_connect(self.ws_url, max_msg_size=0),
                timeout=self.config.connection_timeout_s,
            )
        except asyncio.TimeoutError as exc:
            self._mark_open_failed()
            raise CdpConnectionError(
                f"CDP connection timeout after {self.config.connection_timeout_s:.1f}s: {self.ws_url}"
            ) from exc
        except (aiohttp.ClientError, OSError) as exc:
            self._mark_open_failed()
            raise CdpConnectionError(f"CDP connection error: {self.ws_url}: {exc}") from exc

        if self._intentionally_closed:
            await ws.close()
            raise CdpConnectionError("CDP client was closed while connecting")

        self._ws = ws
        self._state = ConnectionState.CONNECTED
        self._reader_task = asyncio.create_task(self._read_loop(ws))

    def _mark_open_failed(self) -> None:
        if self._state is ConnectionState.CONNECTING:
            self._state = ConnectionState.DISCONNECTED

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._route_frame(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning("CDP websocket error on %s: %s", self.ws_url, ws.exception())
                    break
        except (aiohttp.ClientError, ConnectionError) as exc:
            logger.warning("CDP websocket read failed on %s: %s", self.ws_url, exc)
        finally:
            self._handle_closed(ws)

    def _route_frame(self, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except ValueError:
            logger.debug("Ignoring non-JSON CDP frame from %s", self.ws_url)
            return
        if not isinstance(frame, dict):
            return

        if frame.get("method") in CONSOLE_METHODS or frame.get("id") is None:
            if not self.events.handle_notification(frame):
                logger.debug("Ignoring CDP notification %s", frame.get("method"))
            return

        pending = self._pending.pop(frame["id"], None)
        if pending is None:
            logger.debug("No pending request for CDP response id=%s", frame["id"])
            return
        pending.timer.cancel()
        if pending.future.done():
            return

        error = frame.get("error")
        if error is not None:
            if isinstance(error, dict):
                code = error.get("code")
                pending.future.set_exception(
                    EvaluationError(
                        str(error.get("message") or "CDP error"),
                        code if isinstance(code, int) else None,
                    )
                )
            else:
                pending.future.set_exception(EvaluationError(str(error)))
        else:
            pending.future.set_result(frame.get("result"))

    def _expire(self, request_id: int, method: str, timeout_s: float) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None or pending.future.done():
            return
        pending.future.set_exception(CdpTimeoutError(method, timeout_s))

    def _reject_all(self, message: str) -> None:
        pending, self._pending = self._pending, {}
        for entry in pending.values():
            entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(CdpConnectionError(f"{message} (pending: {entry.method})"))

    def _discard(self, request_id: int) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is not None:
            pending.timer.cancel()

    def _handle_closed(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        if ws is not self._ws:
            return
        self._ws = None
        self._reader_task = None
        self._reject_all("CDP connection closed")
        if self._intentionally_closed:
            return
        self._state = ConnectionState.DISCONNECTED
        logger.warning("CDP connection to %s lost", self.ws_url)
        if self.config.auto_reconnect:
            self._start_reconnect()

    def _start_reconnect(self) -> asyncio.Task | None:
        if self._reconnecting or self._intentionally_closed:
            return self._reconnect_task
        if self._reconnect_attempts >= self.config.max_reconnect_attempts:
            logger.error(
                "Max CDP reconnect attempts (%d) reached for %s",
                self.config.max_reconnect_attempts,
                self.ws_url,
            )
            self._state = ConnectionState.DISCONNECTED
            return None
        self._reconnecting = True
        self._state = ConnectionState.RECONNECTING
        self._reconnect_task = asyncio.create_task(self._reconnect())
        return self._reconnect_task

    async def _reconnect(self) -> None:
        limit = self.config.max_reconnect_attempts
        try:
            while self._reconnect_attempts < limit:
                self._reconnect_attempts += 1
                logger.info("Attempting CDP reconnect %d/%d to %s", self._reconnect_attempts, limit, self.ws_url)
                await asyncio.sleep(self.config.reconnect_delay_s)
                if self._intentionally_closed:
                    return
                try:
                    await self._open()
                except CdpConnectionError as exc:
                    logger.warning("CDP reconnect attempt %d failed: %s", self._reconnect_attempts, exc)
                    continue

                # _reconnecting stays set until console collection is back on this socket.
                console = self._console_enabled
                if console:
                    self._console_enabled = False
                    try:
                        await self.enable_console()
                    except HarnessError as exc:
                        logger.warning("Could not re-enable console collection on %s: %s", self.ws_url, exc)
                if not self.is_connected:
                    if self._intentionally_closed:
                        return
                    logger.warning("CDP connection to %s lost again after reconnect", self.ws_url)
                    self._console_enabled = console
                    self._state = ConnectionState.RECONNECTING
                    continue

                self._reconnect_attempts = 0
                logger.info("CDP reconnected to %s", self.ws_url)
                return

            logger.error("Max CDP reconnect attempts (%d) reached for %s", limit, self.ws_url)
            if not self._intentionally_closed:
                self._state = ConnectionState.DISCONNECTED
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnecting = False

    async def ensure_connected(self) -> None:
        """Return once the channel is usable, waiting for a reconnect if needed.

        Raises ``CdpConnectionError`` for a client closed on purpose and
        ``ReconnectExhausted`` once a full round of attempts has failed.
        """

        if self.is_connected:
            return
        if self._intentionally_closed:
            raise CdpConnectionError("CDP client was closed intentionally")

        if not self._reconnecting:
            # A previous cycle may have used up the budget; a new caller gets a fresh one.
            if self._reconnect_attempts >= self.config.max_reconnect_attempts:
                self._reconnect_attempts = 0
            self._start_reconnect()

        attempts = self.config.max_reconnect_attempts
        max_wait = attempts * (self.config.reconnect_delay_s + self.config.connection_timeout_s)
        task = self._reconnect_task
        if task is not None and not task.done():
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=max_wait)
            except asyncio.TimeoutError:
                pass

        if not self.is_connected:
            raise ReconnectExhausted(attempts, max_wait)

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout_s: float | None = None,
    ) -> Any:
        """Send one CDP command and return its ``result`` payload."""

        await self.ensure_connected()
        ws = self._ws
        if ws is None or ws.closed:
            raise CdpConnectionError("CDP client not connected")

        loop = asyncio.get_running_loop()
        self._next_id += 1
        request_id = self._next_id
        timeout = self.config.evaluate_timeout_s if timeout_s is None else timeout_s
        future: asyncio.Future = loop.create_future()
        timer = loop.call_later(timeout, self._expire, request_id, method, timeout)
        self._pending[request_id] = PendingRequest(request_id, method, future, timer)

        frame: dict[str, Any] = {"id": request_id, "method": method}
        if params is not None:
            frame["params"] = params
        try:
            await ws.send_str(json.dumps(frame))
        except (ConnectionError, aiohttp.ClientError, RuntimeError) as exc:
            self._discard(request_id)
            _retrieve(future)
            raise CdpConnectionError(f"Failed to send {method}: {exc}") from exc

        try:
            return await future
        finally:
            self._discard(request_id)

    async def evaluate(self, expression: str, *, timeout_s: float | None = None) -> Any:
        """Evaluate JavaScript in the page and return the value by value."""

        result = await self.call(
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": True, "awaitPromise": True},
            timeout_s=timeout_s,
        )
        if not isinstance(result, dict):
            return None
        if result.get("exceptionDetails"):
            raise EvaluationError(_exception_message(result["exceptionDetails"]))
        remote = result.get("result")
        if not isinstance(remote, dict):
            return None
        return remote.get("value")

    async def evaluate_with_result(self, expression: str) -> EvaluateResult:
        try:
            value = await self.evaluate(expression)
        except HarnessError as exc:
            return EvaluateResult(success=False, error=str(exc))
        return EvaluateResult(success=True, value=value)

    async def enable_console(self) -> None:
        if self._console_enabled:
            return
        await self.call("Runtime.enable")
        await self.call("Console.enable")
        self._console_enabled = True

    def console_messages(
        self,
        *,
        types: Iterable[ConsoleType] | None = None,
        text_contains: str | None = None,
    ) -> list[ConsoleMessage]:
        return self.events.messages(types=types, text_contains=text_contains)

    def clear_console_messages(self) -> None:
        self.events.clear()

    async def drop_connection(self) -> None:
        """Close the socket as if the remote end went away; reconnect rules apply."""

        ws, reader = self._ws, self._reader_task
        if ws is None:
            return
        await ws.close()
        if reader is not None:
            await asyncio.gather(reader, return_exceptions=True)

    async def close(self) -> None:
        self._intentionally_closed = True
        self._state = ConnectionState.PERMANENTLY_CLOSED

        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._reconnecting = False

        self._reject_all("CDP client closed")
        self.events.clear()
        self._console_enabled = False

        ws, self._ws = self._ws, None
        reader, self._reader_task = self._reader_task, None
        if ws is not None:
            await ws.close()
        if reader is not None:
            await asyncio.gather(reader, return_exceptions=True)

        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()


async def create_cdp_client(ws_url: str, config: CdpConfig | None = None) -> CdpClient:
    """Connect to ``ws_url`` and start collecting console output."""

    client = CdpClient(ws_url, config)
    try:
        await client.connect()
        await client.enable_console()
    except BaseException:
        await client.close()
        raise
    return client
