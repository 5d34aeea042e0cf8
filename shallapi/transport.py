"""HTTP transport for the SHALL device API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional

from aiohttp import ClientError, ClientResponse, ClientSession, ClientTimeout

from .exceptions import MalformedResponse, NetworkUnreachable, RequestTimeout, ShallError
from .helpers import _exp_backoff, _schema_mismatch
from .model import TransportResult
from .resolver import AddressResolver

_LOGGER = logging.getLogger(__name__)


class Transport:
    """Issues single JSON requests against the resolver's base URL.

    Every failure is returned inside a `TransportResult`; nothing raises
    out of `request`.

    Usage:
        async with Transport(resolver) as transport:
            result = await transport.request("GET", "/api/status")
    """

    def __init__(
        self,
        resolver: AddressResolver,
        *,
        session: Optional[ClientSession] = None,
        timeout: Optional[float] = None,
        token: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> None:
        config = resolver.config
        self.resolver = resolver
        self.token = token if token is not None else config.token
        self._owned_session = session is None
        self._session: Optional[ClientSession] = session
        self._timeout = ClientTimeout(
            total=timeout if timeout is not None else config.timeout
        )
        retries = config.max_retries if max_retries is None else max_retries
        self._max_retries = max(0, int(retries))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def __aenter__(self) -> Transport:
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the session if it was created by this transport."""
        if self._owned_session and self._session and not self._session.closed:
            await self._session.close()

    def _ensure_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession(timeout=self._timeout)
            self._owned_session = True
        return self._session

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def request(
        self,
        method: str,
        path: str,
        json_data: Optional[Mapping[str, Any]] = None,
        *,
        schema: Optional[Mapping[str, type]] = None,
    ) -> TransportResult:
        """Send one request and decode the JSON answer.

        When `schema` is given, every key must be present with the mapped
        type or the result carries a `MalformedResponse`.
        """
        url = f"{self.resolver.base_url}{path}"
        try:
            data = await self._request(method, url, json_data=json_data)
        except ShallError as exc:
            _LOGGER.debug("%s %s failed: %s", method, url, exc)
            return TransportResult(error=exc)

        if schema is not None:
            mismatch = _schema_mismatch(data, schema)
            if mismatch:
                _LOGGER.debug("%s %s returned unexpected shape: %s", method, url, mismatch)
                return TransportResult(
                    error=MalformedResponse(f"Unexpected response from {path}: {mismatch}")
                )
        return TransportResult(data=data)

    async def get(self, path: str, **kwargs) -> TransportResult:
        return await self.request("GET", path, **kwargs)

    async def post(
        self, path: str, json_data: Mapping[str, Any], **kwargs
    ) -> TransportResult:
        return await self.request("POST", path, json_data, **kwargs)

    # ------------------------------------------------------------------
    # HTTP core
    # ------------------------------------------------------------------
    def _headers(self, has_body: bool) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if has_body:
            headers["Content-Type"] = "application/json"
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json_data: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        attempts = 0
        session = self._ensure_session()

        while True:
            attempts += 1
            try:
                async with session.request(
                    method,
                    url,
                    headers=self._headers(json_data is not None),
                    json=dict(json_data) if json_data is not None else None,
                    timeout=self._timeout,
                ) as resp:
                    return await self._handle_response(resp)

            except asyncio.TimeoutError as exc:
                error: ShallError = RequestTimeout(f"Request to {url} timed out")
                cause: BaseException = exc
            except (ClientError, OSError) as exc:
                error = NetworkUnreachable(f"Cannot reach {url}: {exc}")
                cause = exc
            except ValueError as exc:
                # Unresolvable host names (empty or oversized labels) fail in IDNA encoding
                error = NetworkUnreachable(f"Invalid device address in {url}: {exc}")
                cause = exc

            if attempts <= self._max_retries:
                delay = _exp_backoff(attempts - 1)
                _LOGGER.warning(
                    "Request failed (%s %s): %s. Retrying in %.2fs",
                    method,
                    url,
                    cause,
                    delay,
                )
                await asyncio.sleep(delay)
                continue
            raise error from cause

    async def _handle_response(self, resp: ClientResponse) -> Any:
        if resp.status != 200:
            text = await resp.text(errors="replace")
            raise NetworkUnreachable(f"HTTP {resp.status}: {text}")

        try:
            # The firmware does not always label its JSON
            return await resp.json(content_type=None)
        except ValueError as exc:
            raise MalformedResponse(f"Invalid JSON response: {exc}") from exc
