"""
Token lifecycle for one brokerage connection.

    unauthenticated → valid → near_expiry → refreshing → valid
                                   any ─(refresh fails)→ reconnect_required

Proactive: a token inside the expiry buffer is refreshed before the request.
Reactive: a 401 triggers one refresh and exactly one replay. A second 401, a
rejected refresh, or a missing refresh token ends in reconnect_required and
SessionExpiredError. There is never a second refresh or a third send.

Refreshes are single-flight per session: concurrent requests that all see a
stale token wait on one lock and reuse the token the first one obtained.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum

import httpx

from brokerlink.errors import NotConnectedError, SessionExpiredError, UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_BUFFER_SECONDS = 5 * 60
# One original send plus one replay after a refresh
MAX_SENDS = 2


def now_ms() -> int:
    return int(time.time() * 1000)


class SessionState(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    VALID = "valid"
    NEAR_EXPIRY = "near_expiry"
    REFRESHING = "refreshing"
    RECONNECT_REQUIRED = "reconnect_required"


@dataclass
class Token:
    """Bearer credentials. Mutated in place on every successful refresh."""

    access_token: str
    refresh_token: str = ""
    expires_in_seconds: int | None = None  # None = provider does not say
    issued_at_ms: int | None = None

    @property
    def expires_at_ms(self) -> int | None:
        if self.expires_in_seconds is None or self.issued_at_ms is None:
            return None
        return self.issued_at_ms + self.expires_in_seconds * 1000

    def is_near_expiry(self, buffer_seconds: int = DEFAULT_REFRESH_BUFFER_SECONDS, at_ms: int | None = None) -> bool:
        if self.expires_in_seconds is None:
            return False
        if self.issued_at_ms is None:
            return True
        current = now_ms() if at_ms is None else at_ms
        return current > self.expires_at_ms - buffer_seconds * 1000

    def replace_with(self, other: Token) -> None:
        self.access_token = other.access_token
        self.refresh_token = other.refresh_token or self.refresh_token
        self.expires_in_seconds = other.expires_in_seconds
        self.issued_at_ms = other.issued_at_ms


Refresher = Callable[[Token], Awaitable[Token]]
Sender = Callable[[Token], Awaitable[httpx.Response]]
RefreshHook = Callable[[Token], Awaitable[None]]


class SessionManager:
    """Keeps one connection's token usable and bounds auth retries."""

    def __init__(
        self,
        token: Token | None,
        refresher: Refresher,
        *,
        provider: str = "",
        buffer_seconds: int = DEFAULT_REFRESH_BUFFER_SECONDS,
        on_refresh: RefreshHook | None = None,
        clock_ms: Callable[[], int] = now_ms,
    ):
        self.token = token
        self.provider = provider
        self.buffer_seconds = buffer_seconds
        self.on_refresh = on_refresh
        self.refresh_count = 0
        self._refresher = refresher
        self._clock_ms = clock_ms
        self._lock = asyncio.Lock()
        self._generation = 0
        self._refreshing = False
        self._reconnect_required = False

    @property
    def state(self) -> SessionState:
        if self._reconnect_required:
            return SessionState.RECONNECT_REQUIRED
        if self._refreshing:
            return SessionState.REFRESHING
        if self.token is None:
            return SessionState.UNAUTHENTICATED
        if self.is_near_expiry():
            return SessionState.NEAR_EXPIRY
        return SessionState.VALID

    def is_near_expiry(self) -> bool:
        if self.token is None:
            return False
        return self.token.is_near_expiry(self.buffer_seconds, at_ms=self._clock_ms())

    def _expire(self, reason: str) -> SessionExpiredError:
        self._reconnect_required = True
        logger.warning("%s session needs reconnect: %s", self.provider or "broker", reason)
        return SessionExpiredError(self.provider, reason)

    async def refresh(self, seen_generation: int | None = None) -> Token:
        """Obtain a new token. Coalesces with a refresh that already happened.

        seen_generation is the generation the caller used; if another
        coroutine has refreshed since, its token is returned without a call.
        """
        async with self._lock:
            if self._reconnect_required:
                raise SessionExpiredError(self.provider, "reconnect required")
            if self.token is None:
                raise NotConnectedError(self.provider)
            if seen_generation is not None and seen_generation != self._generation:
                return self.token
            if not self.token.refresh_token:
                raise self._expire("no refresh token stored")

            self._refreshing = True
            try:
                fresh = await self._refresher(self.token)
            except UpstreamError as e:
                raise self._expire(f"refresh rejected with {e.status}") from e
            finally:
                self._refreshing = False

            self.token.replace_with(fresh)
            self._generation += 1
            self.refresh_count += 1
            logger.info("%s token refreshed", self.provider or "broker")

        # Runs outside the lock; a failing hook propagates and the new token stays in memory
        if self.on_refresh is not None:
            await self.on_refresh(self.token)
        return self.token

    async def request(self, send: Sender) -> httpx.Response:
        """Send with a valid token, refreshing at most once."""
        if self.token is None:
            raise NotConnectedError(self.provider)
        if self._reconnect_required:
            raise SessionExpiredError(self.provider, "reconnect required")

        if self.is_near_expiry():
            logger.debug("%s token near expiry, refreshing before request", self.provider)
            await self.refresh(self._generation)

        for attempt in range(1, MAX_SENDS + 1):
            generation = self._generation
            response = await send(self.token)
            if response.status_code != 401:
                return response
            if attempt < MAX_SENDS:
                logger.info("%s returned 401, refreshing and replaying once", self.provider or "broker")
                await self.refresh(generation)

        raise self._expire("unauthorized after refresh")
