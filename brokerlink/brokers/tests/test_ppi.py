"""Tests for the Portfolio Personal Inversiones adapter."""

from __future__ import annotations

import json

import pytest

from brokerlink.brokers import get_adapter_class
from brokerlink.brokers.models import Instrument, OperationStatus, Settlement, build_order
from brokerlink.brokers.ppi import PPIAdapter, build_headers
from brokerlink.brokers.session import SessionState, Token
from brokerlink.errors import SessionExpiredError, UpstreamError, ValidationError

BASE = "https://ppi.test"

KEYS = {"authorized_client": "API_CLI", "client_key": "ppApp", "api_key": "pub", "api_secret": "sec"}

LOGIN_BODY = {
    "accessToken": "a-2",
    "refreshToken": "r-2",
    "creationDate": "2026-03-10T10:00:00",
    "expirationDate": "2026-03-10T10:15:00",
}


@pytest.fixture
def adapter(http, clock):
    return PPIAdapter(Token("a-1", "r-1"), account_number="1234", base_url=BASE, client=http, clock_ms=clock, **KEYS)


class TestHeaders:
    def test_secret_optional(self):
        assert "ApiSecret" not in build_headers("c", "k", "p")
        assert build_headers("c", "k", "p", "s")["ApiSecret"] == "s"

    @pytest.mark.asyncio
    async def test_static_headers_on_every_call(self, router, adapter):
        router.add("GET", "/api/1.0/Account/Accounts", (200, [{"accountNumber": "1234"}]))
        await adapter.get_accounts()
        headers = router.calls[0].headers
        assert headers["AuthorizedClient"] == "API_CLI"
        assert headers["ClientKey"] == "ppApp"
        assert headers["ApiKey"] == "pub"
        assert headers["ApiSecret"] == "sec"
        assert headers["Authorization"] == "Bearer a-1"


class TestLogin:
    @pytest.mark.asyncio
    async def test_connect(self, router, http, clock):
        router.add("POST", "/api/1.0/Account/LoginApi", (200, LOGIN_BODY))
        adapter = await PPIAdapter.connect(**KEYS, account_number="1234", client=http, base_url=BASE, clock_ms=clock)
        assert router.calls[0].headers["ApiKey"] == "pub"
        assert adapter.token.access_token == "a-2"
        assert adapter.token.expires_in_seconds == 900
        assert adapter.token.issued_at_ms == clock()

    @pytest.mark.asyncio
    async def test_lifetime_unknown_without_dates(self, router, http):
        router.add("POST", "/api/1.0/Account/LoginApi", (200, {"accessToken": "a", "refreshToken": "r"}))
        token = await PPIAdapter.authenticate("API_CLI", "ppApp", "pub", client=http, base_url=BASE)
        assert token.expires_in_seconds is None
        assert not token.is_near_expiry()

    @pytest.mark.asyncio
    async def test_missing_keys(self, router, http):
        with pytest.raises(ValidationError):
            await PPIAdapter.authenticate("API_CLI", "", "pub", client=http, base_url=BASE)
        assert router.calls == []

    @pytest.mark.asyncio
    async def test_login_body_without_token(self, router, http):
        router.add("POST", "/api/1.0/Account/LoginApi", (200, {"message": "ok"}))
        with pytest.raises(UpstreamError) as exc_info:
            await PPIAdapter.authenticate("API_CLI", "ppApp", "pub", client=http, base_url=BASE)
        assert exc_info.value.status == 502


class TestCredentials:
    def test_round_trip(self, clock):
        adapter = PPIAdapter(Token("a", "r", 900, clock()), account_number="1234", base_url=BASE, **KEYS)
        creds = adapter.export_credentials()
        assert creds == {
            "authorizedClient": "API_CLI",
            "clientKey": "ppApp",
            "apiKey": "pub",
            "apiSecret": "sec",
            "accountNumber": "1234",
            "accessToken": "a",
            "refreshToken": "r",
            "expiresIn": 900,
            "issuedAt": clock(),
        }
        again = PPIAdapter.from_credentials(creds, base_url=BASE)
        assert again.token == adapter.token
        assert again.static_headers() == adapter.static_headers()

    def test_registry(self):
        assert get_adapter_class("PPI") is PPIAdapter
        with pytest.raises(ValidationError):
            get_adapter_class("binance")


class TestSession:
    @pytest.mark.asyncio
    async def test_refresh_request_shape(self, router, adapter):
        router.add("GET", "/api/1.0/Account/Accounts", (401, None), (200, []))
        router.add("POST", "/api/1.0/Account/RefreshToken", (200, LOGIN_BODY))
        await adapter.get_accounts()
        refresh = router.calls[1]
        assert json.loads(refresh.content) == {"refreshToken": "r-1"}
        assert refresh.headers["ClientKey"] == "ppApp"
        assert router.calls[2].headers["Authorization"] == "Bearer a-2"
        assert adapter.session.state == SessionState.VALID

    @pytest.mark.asyncio
    async def test_replay_401_expires(self, router, adapter):
        router.add("GET", "/api/1.0/Account/Accounts", (401, None))
        router.add("POST", "/api/1.0/Account/RefreshToken", (200, LOGIN_BODY))
        with pytest.raises(SessionExpiredError, match="PPI"):
            await adapter.get_accounts()
        assert len(router.calls) == 3

    @pytest.mark.asyncio
    async def test_refresh_body_without_token_expires(self, router, adapter):
        router.add("GET", "/api/1.0/Account/Accounts", (401, None))
        router.add("POST", "/api/1.0/Account/RefreshToken", (200, {"accessToken": None}))
        with pytest.raises(SessionExpiredError):
            await adapter.get_accounts()
        assert len(router.calls) == 2
        assert adapter.session.state == SessionState.RECONNECT_REQUIRED


class TestData:
    @pytest.mark.asyncio
    async def test_positions(self, router, adapter):
        router.add(
            "GET",
            "/api/1.0/Account/BalancesAndPositions",
            (
                200,
                {
                    "Positions": [
                        {"Ticker": "al30", "Description": "Bono AL30", "Quantity": 100, "Currency": "Pesos", "Price": 60.5, "Amount": 6050},
                        {"Ticker": "GD30", "Quantity": 0},
                    ]
                },
            ),
        )
        positions = await adapter.get_positions()
        assert len(positions) == 1
        assert positions[0].ticker == "AL30"
        assert positions[0].current_value == 6050
        assert router.calls[0].url.params["accountNumber"] == "1234"

    @pytest.mark.asyncio
    async def test_quote_params(self, router, adapter):
        router.add("GET", "/api/1.0/MarketData/Current", (200, {"price": 100}))
        await adapter.get_quote(Instrument("GGAL", instrument_type="ACCIONES"))
        params = router.calls[0].url.params
        assert (params["ticker"], params["type"], params["settlement"]) == ("GGAL", "ACCIONES", "A-48HS")

    @pytest.mark.asyncio
    async def test_quote_needs_type(self, router, adapter):
        with pytest.raises(ValidationError):
            await adapter.get_quote(Instrument("GGAL"))

    @pytest.mark.asyncio
    async def test_historical(self, router, adapter):
        router.add("GET", "/api/1.0/MarketData/Search", (200, [{"price": 1}]))
        rows = await adapter.get_historical(Instrument("GGAL", instrument_type="ACCIONES"), "2026-01-01", "2026-01-31")
        assert rows == [{"price": 1}]
        assert router.calls[0].url.params["dateFrom"] == "2026-01-01"

    @pytest.mark.asyncio
    async def test_pending_operations(self, router, adapter):
        router.add("GET", "/api/1.0/Trading/ActiveOrders", (200, [{"id": 1}]))
        assert await adapter.get_operations(OperationStatus.PENDING) == [{"id": 1}]

    @pytest.mark.asyncio
    async def test_completed_operations_filtered(self, router, adapter):
        orders = [{"id": 1, "Status": "Executed"}, {"id": 2, "Status": "Cancelled"}, {"id": 3, "Status": "Pending"}]
        router.add("GET", "/api/1.0/Trading/Orders", (200, orders))
        assert [o["id"] for o in await adapter.get_operations()] == [1]
        assert [o["id"] for o in await adapter.get_operations(OperationStatus.CANCELLED)] == [2]
        assert len(await adapter.get_operations(OperationStatus.ALL)) == 3

    @pytest.mark.asyncio
    async def test_operations_need_account(self, http):
        adapter = PPIAdapter(Token("a", "r"), base_url=BASE, client=http, **KEYS)
        with pytest.raises(ValidationError, match="account"):
            await adapter.get_operations()


class TestTrading:
    @pytest.mark.asyncio
    async def test_place_order_body(self, router, adapter):
        router.add("POST", "/api/1.0/Trading/Order", (200, {"id": 99, "message": "OK"}))
        order = build_order(
            side="buy",
            market="BONOS",
            symbol="al30",
            quantity=100,
            price=60.5,
            settlement=Settlement.T0,
            valid_until="2026-03-10",
        )
        result = await adapter.place_order(order)
        assert (result.ok, result.order_id, result.message) == (True, 99, "OK")
        body = json.loads(router.calls[0].content)
        assert body["accountNumber"] == "1234"
        assert body["ticker"] == "AL30"
        assert body["instrumentType"] == "BONOS"
        assert body["operation"] == "BUY"
        assert body["operationType"] == "PRICE-LIMIT"
        assert body["settlement"] == "INMEDIATA"
        assert body["operationMaxDate"] == "2026-03-10"

    @pytest.mark.asyncio
    async def test_cancel(self, router, adapter):
        router.add("POST", "/api/1.0/Trading/CancelOrder", (200, {}))
        result = await adapter.cancel_order("99")
        assert result.ok
        assert json.loads(router.calls[0].content) == {"orderID": "99", "accountNumber": "1234"}
