"""
BrokerAdapter — the authenticated HTTP client every brokerage implements.

The base class owns the request path once for all brokers: static provider
headers + bearer token, SessionManager refresh/replay, timeouts mapped to
NetworkError, non-2xx mapped to UpstreamError. Concrete adapters only map
domain operations onto endpoints and payloads, and implement authenticate()
and _refresh().

An httpx.AsyncClient can be injected (shared pool, tests); otherwise each
call opens a short-lived client.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, ClassVar

import httpx

from brokerlink.brokers.models import (
    Instrument,
    OperationStatus,
    OrderRequest,
    OrderResult,
    Position,
)
from brokerlink.brokers.session import RefreshHook, SessionManager, Token, now_ms
from brokerlink.config import get_config
from brokerlink.errors import NetworkError, UpstreamError, ValidationError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _http_client(client: httpx.AsyncClient | None, timeout: httpx.Timeout) -> AsyncIterator[httpx.AsyncClient]:
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=timeout) as owned:
        yield owned


async def send_request(
    client: httpx.AsyncClient | None,
    method: str,
    url: str,
    *,
    timeout: httpx.Timeout,
    provider: str = "",
    **kwargs: Any,
) -> httpx.Response:
    """One HTTP exchange. Transport failures become NetworkError, never retried here."""
    try:
        async with _http_client(client, timeout) as http:
            return await http.request(method, url, timeout=timeout, **kwargs)
    except httpx.TimeoutException as e:
        raise NetworkError(f"{provider.upper() or 'Upstream'} request timed out: {method} {url}", timeout=True) from e
    except httpx.TransportError as e:
        raise NetworkError(f"{provider.upper() or 'Upstream'} request failed: {method} {url}: {e}") from e


def parse_body(response: httpx.Response) -> Any:
    """JSON body, or None for an empty body, or text when not JSON."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def parse_token(
    response: httpx.Response,
    build: Callable[[dict[str, Any], int | None], Token],
    provider: str,
    issued_at_ms: int | None = None,
) -> Token:
    """Token from a 2xx auth response. A body without a usable token counts as a 502."""
    try:
        return build(response.json(), issued_at_ms)
    except (KeyError, TypeError, ValueError) as e:
        logger.warning("%s auth response had no usable token: %s", provider.upper(), e)
        raise UpstreamError(502, response.text[:500], provider) from e


def iso_day(value: date | str | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(value).isoformat()
    except ValueError as e:
        raise ValidationError(f"Invalid date {value!r}, expected YYYY-MM-DD") from e


def check_range(date_from: str | None, date_to: str | None) -> None:
    if date_from and date_to and date_from > date_to:
        raise ValidationError(f"date_from {date_from} is after date_to {date_to}")


class BrokerAdapter(ABC):
    """Session-aware client for one brokerage connection."""

    provider: ClassVar[str] = ""

    def __init__(
        self,
        token: Token | None,
        *,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        on_refresh: RefreshHook | None = None,
        buffer_seconds: int | None = None,
        clock_ms=now_ms,
    ):
        cfg = get_config()
        self.base_url = (base_url or self.default_base_url()).rstrip("/")
        self.timeout = httpx.Timeout(timeout if timeout is not None else cfg.http_timeout)
        self._client = client
        self._clock_ms = clock_ms
        self.session = SessionManager(
            token,
            self._refresh,
            provider=self.provider,
            buffer_seconds=buffer_seconds if buffer_seconds is not None else cfg.refresh_buffer_seconds,
            on_refresh=on_refresh,
            clock_ms=clock_ms,
        )

    # ── provider hooks ────────────────────────────────────────────────

    @classmethod
    @abstractmethod
    def default_base_url(cls) -> str: ...

    @classmethod
    @abstractmethod
    async def connect(cls, *args: Any, **kwargs: Any) -> BrokerAdapter:
        """Authenticate with the user's raw secret and return a ready adapter."""

    @classmethod
    @abstractmethod
    def from_credentials(cls, credentials: dict[str, Any], **kwargs: Any) -> BrokerAdapter:
        """Build an adapter from the decrypted stored credential dict."""

    @abstractmethod
    def export_credentials(self) -> dict[str, Any]:
        """Current credentials in the stored shape (after any refresh)."""

    @abstractmethod
    async def _refresh(self, token: Token) -> Token:
        """Exchange the refresh token. Raise UpstreamError on rejection."""

    def static_headers(self) -> dict[str, str]:
        return {}

    # ── request path ──────────────────────────────────────────────────

    @property
    def token(self) -> Token | None:
        return self.session.token

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        return await send_request(
            self._client,
            method,
            f"{self.base_url}{path}",
            timeout=self.timeout,
            provider=self.provider,
            **kwargs,
        )

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Authenticated call through the session. Returns the parsed body."""

        async def send(token: Token) -> httpx.Response:
            headers = {**self.static_headers(), "Authorization": f"Bearer {token.access_token}"}
            kwargs: dict[str, Any] = {"headers": headers}
            if params:
                kwargs["params"] = {k: v for k, v in params.items() if v is not None}
            if json is not None:
                kwargs["json"] = json
            return await self._send(method, path, **kwargs)

        response = await self.session.request(send)
        if not response.is_success:
            raise UpstreamError(response.status_code, response.text[:500], self.provider)
        return parse_body(response)

    # ── domain operations ─────────────────────────────────────────────

    @abstractmethod
    async def get_positions(self) -> list[Position]: ...

    @abstractmethod
    async def get_quote(self, instrument: Instrument) -> dict[str, Any]: ...

    @abstractmethod
    async def get_operations(
        self,
        status: OperationStatus = OperationStatus.COMPLETED,
        date_from: date | str | None = None,
        date_to: date | str | None = None,
    ) -> list[dict[str, Any]]: ...

    @abstractmethod
    async def place_order(self, order: OrderRequest) -> OrderResult: ...

    @abstractmethod
    async def cancel_order(self, order_id: int | str) -> OrderResult: ...

    @abstractmethod
    async def get_historical(
        self,
        instrument: Instrument,
        date_from: date | str,
        date_to: date | str,
    ) -> list[dict[str, Any]]: ...

    async def get_quotes(self, instruments: Iterable[Instrument]) -> dict[str, dict[str, Any] | None]:
        """Quote many instruments concurrently, keyed by upper-case symbol.

        A failing instrument maps to None (unavailable) instead of failing the
        batch. Session-level errors (expired, not connected) still propagate:
        they would fail every instrument the same way.
        """
        items = list(instruments)

        async def one(instrument: Instrument) -> dict[str, Any] | None:
            try:
                return await self.get_quote(instrument)
            except (UpstreamError, NetworkError, ValidationError) as e:
                logger.info("%s quote for %s unavailable: %s", self.provider.upper(), instrument.key, e)
                return None

        results = await asyncio.gather(*(one(i) for i in items))
        return {i.key: r for i, r in zip(items, results, strict=True)}
