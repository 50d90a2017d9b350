"""
Root-level shared test fixtures.

Inherited by the vault, resilience and brokers suites as well as the
top-level tests/ directory. Upstream APIs are faked with
httpx.MockTransport: a Router maps (method, path) to a queue of responses
and records every request it sees.
"""

from __future__ import annotations

from collections import defaultdict, deque

import httpx
import pytest
import pytest_asyncio

from brokerlink.config import reset_config
from brokerlink.vault.crypto import KEY_ENV_VAR, generate_key


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, seconds: float) -> None:
        self.now_ms += int(seconds * 1000)


class Router:
    def __init__(self):
        self.routes: dict[tuple[str, str], deque] = defaultdict(deque)
        self.calls: list[httpx.Request] = []

    def add(self, method: str, path: str, *responses) -> Router:
        """Queue responses. The last one repeats once the queue drains.

        Each response is an httpx.Response, a (status, json) tuple, or an
        exception instance to raise.
        """
        self.routes[(method.upper(), path)].extend(responses)
        return self

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"message": f"no route {request.method} {request.url.path}"})
        item = queue.popleft() if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, httpx.Response):
            return item
        status, body = item
        return httpx.Response(status, json=body)

    def paths(self) -> list[str]:
        return [f"{r.method} {r.url.path}" for r in self.calls]


@pytest.fixture(autouse=True)
def _fresh_config():
    """Every test sees config re-read from its own environment."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove env vars that leak between tests."""
    for key in [
        KEY_ENV_VAR,
        "BROKERLINK_DB_HOST",
        "BROKERLINK_DB_PORT",
        "BROKERLINK_DB_NAME",
        "BROKERLINK_DB_USER",
        "BROKERLINK_DB_PASSWORD",
        "IOL_API_URL",
        "PPI_API_URL",
        "ALPHAVANTAGE_API_KEY",
        "ALPHAVANTAGE_DAILY_LIMIT",
        "ALPHAVANTAGE_RESERVE",
        "BROKERLINK_INSIGHTS_MODEL",
        "BROKERLINK_INSIGHTS_MAX_ATTEMPTS",
        "BROKERLINK_HTTP_TIMEOUT",
        "BROKERLINK_REFRESH_BUFFER_SECONDS",
    ]:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def encryption_key(monkeypatch) -> str:
    """A valid random key installed as $ENCRYPTION_KEY."""
    key = generate_key()
    monkeypatch.setenv(KEY_ENV_VAR, key)
    return key


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def router() -> Router:
    return Router()


@pytest_asyncio.fixture
async def http(router):
    async with httpx.AsyncClient(transport=httpx.MockTransport(router)) as client:
        yield client
