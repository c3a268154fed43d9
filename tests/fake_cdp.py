"""In-process stand-in for an Obsidian DevTools endpoint.

Serves ``/json`` with a configurable target list and a page websocket that
answers each command through a per-method handler. A handler returning None
leaves the command unanswered.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Optional

from aiohttp import WSMsgType, web
from aiohttp.test_utils import TestServer

Handler = Callable[[dict], Awaitable[Optional[dict]]]


async def _empty_result(frame: dict) -> Optional[dict]:
    return {"result": {}}


def value_result(value: Any) -> dict:
    return {"result": {"result": {"type": type(value).__name__, "value": value}}}


class FakeCdp:
    def __init__(self) -> None:
        self.targets: list[dict] = []
        self.json_status = 200
        self.accepting = True
        self.hold_upgrades = False
        self.handlers: dict[str, Handler] = {}
        self.received: list[dict] = []
        self.responded: list[int] = []
        self.sockets: list[web.WebSocketResponse] = []
        self.connections = 0
        self.rejected = 0
        self._tasks: set[asyncio.Task] = set()
        self._release = asyncio.Event()
        app = web.Application()
        app.router.add_get("/json", self._json)
        app.router.add_get("/devtools/page/{target_id}", self._page)
        self.server = TestServer(app)

    async def start(self) -> "FakeCdp":
        await self.server.start_server()
        return self

    async def close(self) -> None:
        self._release.set()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.server.close()

    @property
    def port(self) -> int:
        return self.server.port

    def ws_url(self, target_id: str = "page1") -> str:
        return f"ws://{self.server.host}:{self.server.port}/devtools/page/{target_id}"

    def add_page(self, target_id: str, title: str, url: str = "app://obsidian.md/index.html", kind: str = "page") -> None:
        self.targets.append(
            {
                "id": target_id,
                "type": kind,
                "title": title,
                "url": url,
                "webSocketDebuggerUrl": self.ws_url(target_id),
            }
        )

    def methods(self) -> list[str]:
        return [frame["method"] for frame in self.received]

    async def push(self, frame: dict) -> None:
        for ws in self.sockets:
            if not ws.closed:
                await ws.send_str(json.dumps(frame))

    async def drop_all(self) -> None:
        sockets, self.sockets = self.sockets, []
        for ws in sockets:
            await ws.close()

    async def _json(self, request: web.Request) -> web.Response:
        if self.json_status != 200:
            return web.Response(status=self.json_status, text="unavailable")
        return web.json_response(self.targets)

    async def _page(self, request: web.Request) -> web.StreamResponse:
        if not self.accepting:
            self.rejected += 1
            return web.Response(status=503, text="not accepting")
        if self.hold_upgrades:
            # Accept TCP but never finish the handshake until close().
            await self._release.wait()
            return web.Response(status=503, text="upgrade abandoned")
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.connections += 1
        self.sockets.append(ws)
        async for msg in ws:
            if msg.type != WSMsgType.TEXT:
                continue
            frame = json.loads(msg.data)
            self.received.append(frame)
            task = asyncio.create_task(self._respond(ws, frame))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return ws

    async def _respond(self, ws: web.WebSocketResponse, frame: dict) -> None:
        handler = self.handlers.get(frame["method"], _empty_result)
        reply = await handler(frame)
        if reply is None or ws.closed:
            return
        self.responded.append(frame["id"])
        await ws.send_str(json.dumps({"id": frame["id"], **reply}))


async def wait_until(predicate: Callable[[], bool], timeout_s: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_s
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
