"""Shared fixtures: an in-process fake LED device served over HTTP."""

import asyncio
from typing import Any, Dict, List, Tuple

import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from shallapi import DeviceConfig, DeviceSession


STATUS = {
    "power": True,
    "brightness": 128,
    "hue": 180,
    "saturation": 200,
    "mode": "adaptive",
}


class FakeDevice:
    """Minimal stand-in for the LED firmware's JSON API.

    `overrides` maps a path to a canned answer: a dict is sent as JSON,
    a str as a plain text body, an int as a bare status code and a
    `web.Response` as is (single use).
    `delays` maps a path to seconds to wait before answering.
    """

    def __init__(self) -> None:
        self.state: Dict[str, Any] = dict(STATUS)
        self.overrides: Dict[str, Any] = {}
        self.delays: Dict[str, float] = {}
        self.requests: List[Tuple[str, str, Any, Dict[str, str]]] = []
        self.base_url = ""

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/api/status", self._status)
        for name in ("power", "brightness", "color", "mode"):
            app.router.add_post(f"/api/{name}", self._set)
        return app

    async def _status(self, request: web.Request) -> web.StreamResponse:
        self.requests.append(("GET", request.path, None, dict(request.headers)))
        return await self._answer(request.path, self.state)

    async def _set(self, request: web.Request) -> web.StreamResponse:
        body = await request.json()
        self.requests.append(("POST", request.path, body, dict(request.headers)))
        self.state.update(body)
        echo = {"success": True}
        echo.update(body)
        return await self._answer(request.path, echo)

    async def _answer(self, path: str, default: Dict[str, Any]) -> web.StreamResponse:
        if path in self.delays:
            await asyncio.sleep(self.delays[path])
        override = self.overrides.get(path, default)
        if isinstance(override, web.StreamResponse):
            return override
        if isinstance(override, int):
            return web.Response(status=override, text="error")
        if isinstance(override, str):
            return web.Response(text=override)
        return web.json_response(override)

    def posts(self, path: str) -> List[Any]:
        return [body for method, p, body, _ in self.requests if method == "POST" and p == path]


@pytest_asyncio.fixture
async def fake_device():
    device = FakeDevice()
    server = TestServer(device.app())
    await server.start_server()
    device.base_url = f"http://{server.host}:{server.port}"
    yield device
    await server.close()


@pytest_asyncio.fixture
async def device_session(fake_device):
    async with DeviceSession(DeviceConfig(base_url=fake_device.base_url)) as session:
        yield session
