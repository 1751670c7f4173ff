"""Async HTTP transport for the clinic backend.
Attaches the stored bearer token to every request and drops it on a 401.
"""
from __future__ import annotations
import logging
import os
from typing import Any, Callable, Protocol
import httpx
from dotenv import load_dotenv
from .store import AUTH_TOKEN_KEY, REFRESH_TOKEN_KEY, TENANT_KEY, IdentityStore

load_dotenv()

logger = logging.getLogger(__name__)

_BASE_URL = os.getenv("CLINIC_API_URL", "http://localhost:5000/api")
_TIMEOUT = float(os.getenv("CLINIC_API_TIMEOUT", "30"))


class Transport(Protocol):
    async def get(self, path: str, params: dict[str, Any] | None = None) -> httpx.Response: ...

    async def post(self, path: str, json: Any = None) -> httpx.Response: ...

    async def put(self, path: str, json: Any = None) -> httpx.Response: ...

    async def delete(self, path: str) -> httpx.Response: ...


def _redirect_to_login() -> None:
    logger.warning("Session expired, login required")


class ApiClient:
    """httpx-based transport. Raises httpx.HTTPStatusError / httpx.RequestError on failure."""

    def __init__(
        self,
        store: IdentityStore,
        base_url: str = _BASE_URL,
        timeout: float = _TIMEOUT,
        on_unauthorized: Callable[[], None] = _redirect_to_login,
    ):
        self.store = store
        self.base_url = base_url
        self.timeout = timeout
        self.on_unauthorized = on_unauthorized

    async def _attach_credentials(self, request: httpx.Request) -> None:
        token = self.store.get(AUTH_TOKEN_KEY)
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        else:
            logger.warning("No auth token found for %s %s", request.method, request.url.path)
        tenant = self.store.get(TENANT_KEY)
        if tenant:
            request.headers["X-Tenant-ID"] = tenant

    async def _check_session(self, response: httpx.Response) -> None:
        if response.status_code == 401:
            self.store.remove(AUTH_TOKEN_KEY)
            self.store.remove(REFRESH_TOKEN_KEY)
            self.on_unauthorized()

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            http2=True,
            timeout=self.timeout,
            headers={"Accept": "application/json"},
            event_hooks={"request": [self._attach_credentials], "response": [self._check_session]},
        )

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        async with self._client() as client:
            resp = await client.request(method, path, **kwargs)
            resp.raise_for_status()
            return resp

    async def get(self, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Any = None) -> httpx.Response:
        return await self.request("POST", path, json=json)

    async def put(self, path: str, json: Any = None) -> httpx.Response:
        return await self.request("PUT", path, json=json)

    async def delete(self, path: str) -> httpx.Response:
        return await self.request("DELETE", path)
