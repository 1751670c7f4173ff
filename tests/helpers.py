"""In-process stand-ins for the transport and the clock."""
import asyncio
import json
import pathlib
from dataclasses import dataclass
from typing import Any

import httpx

FIX = pathlib.Path(__file__).parent / "fixtures"


def fixture(name: str) -> Any:
    return json.loads((FIX / name).read_text())


@dataclass
class Reply:
    status: int = 200
    body: Any = None
    wait: asyncio.Event | None = None


@dataclass
class Call:
    method: str
    path: str
    params: dict[str, Any] | None = None
    json: Any = None


class FakeTransport:
    """Answers calls from a list of replies in order; the last one repeats.

    A reply may also be an exception instance, which is raised as-is.
    """

    def __init__(self, *replies):
        self.replies = list(replies) or [Reply(200, [])]
        self.calls: list[Call] = []

    async def _call(self, method, path, params=None, json=None):
        self.calls.append(Call(method, path, params, json))
        reply = self.replies[min(len(self.calls), len(self.replies)) - 1]
        if isinstance(reply, Exception):
            raise reply
        if reply.wait is not None:
            await reply.wait.wait()
        request = httpx.Request(method, f"http://testserver/api{path}")
        response = httpx.Response(reply.status, json=reply.body, request=request)
        if reply.status >= 400:
            raise httpx.HTTPStatusError(f"{reply.status} error", request=request, response=response)
        return response

    async def get(self, path, params=None):
        return await self._call("GET", path, params=params)

    async def post(self, path, json=None):
        return await self._call("POST", path, json=json)

    async def put(self, path, json=None):
        return await self._call("PUT", path, json=json)

    async def delete(self, path):
        return await self._call("DELETE", path)


@dataclass
class FakeClock:
    now: float = 1_000_000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
