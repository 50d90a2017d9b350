"""
Portfolio Personal Inversiones (PPI) adapter — API-key login, bearer tokens.

Every call carries the static key headers (AuthorizedClient, ClientKey,
ApiKey and, when present, ApiSecret) next to the bearer token.

Stored credential shape (JSON before encryption):
    {"authorizedClient", "clientKey", "apiKey", "apiSecret"?,
     "accessToken", "refreshToken", "accountNumber"?, "expiresIn"?, "issuedAt"?}
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

import httpx

from brokerlink.brokers.base import BrokerAdapter, check_range, iso_day, parse_token, send_request
from brokerlink.brokers.models import (
    Instrument,
    OperationStatus,
    OrderRequest,
    OrderResult,
    OrderSide,
    OrderType,
    Position,
    Settlement,
    currency_code,
)
from brokerlink.brokers.session import Token, now_ms
from brokerlink.config import get_config
from brokerlink.errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_SETTLEMENT = "A-48HS"

_SETTLEMENT = {
    Settlement.T0: "INMEDIATA",
    Settlement.T1: "A-24HS",
    Settlement.T2: "A-48HS",
}

# Order status labels PPI reports, grouped by the neutral filter
_STATUS_LABELS = {
    OperationStatus.COMPLETED: ("executed", "ejecutada", "completed", "filled"),
    OperationStatus.CANCELLED: ("cancelled", "canceled", "cancelada", "rejected", "rechazada"),
}


def build_headers(
    authorized_client: str,
    client_key: str,
    api_key: str,
    api_secret: str | None = None,
) -> dict[str, str]:
    """Static PPI headers. ApiSecret is only sent when configured."""
    headers = {
        "AuthorizedClient": authorized_client,
        "ClientKey": client_key,
        "ApiKey": api_key,
    }
    if api_secret:
        headers["ApiSecret"] = api_secret
    return headers


def _lifetime_seconds(data: dict[str, Any]) -> int | None:
    """Token lifetime from creationDate/expirationDate, if PPI sent both."""
    try:
        created = datetime.fromisoformat(data["creationDate"])
        expires = datetime.fromisoformat(data["expirationDate"])
    except (KeyError, TypeError, ValueError):
        return None
    seconds = int((expires - created).total_seconds())
    return seconds if seconds > 0 else None


def _token_from_login(data: dict[str, Any], issued_at_ms: int | None = None) -> Token:
    if not data["accessToken"]:
        raise ValueError("empty accessToken")
    return Token(
        access_token=data["accessToken"],
        refresh_token=data.get("refreshToken", ""),
        expires_in_seconds=_lifetime_seconds(data),
        issued_at_ms=issued_at_ms if issued_at_ms is not None else now_ms(),
    )


class PPIAdapter(BrokerAdapter):
    provider = "ppi"

    def __init__(
        self,
        token: Token | None,
        *,
        authorized_client: str,
        client_key: str,
        api_key: str,
        api_secret: str | None = None,
        account_number: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(token, **kwargs)
        self.authorized_client = authorized_client
        self.client_key = client_key
        self.api_key = api_key
        self.api_secret = api_secret
        self.account_number = account_number

    @classmethod
    def default_base_url(cls) -> str:
        return get_config().ppi.base_url

    def static_headers(self) -> dict[str, str]:
        return build_headers(self.authorized_client, self.client_key, self.api_key, self.api_secret)

    @classmethod
    async def authenticate(
        cls,
        authorized_client: str,
        client_key: str,
        api_key: str,
        api_secret: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> Token:
        """API-key login. Used once, when the user connects the account."""
        if not authorized_client or not client_key or not api_key:
            raise ValidationError("PPI authorized client, client key and API key are required")
        url = (base_url or cls.default_base_url()).rstrip("/")
        response = await send_request(
            client,
            "POST",
            f"{url}/api/1.0/Account/LoginApi",
            timeout=httpx.Timeout(timeout if timeout is not None else get_config().http_timeout),
            provider=cls.provider,
            headers=build_headers(authorized_client, client_key, api_key, api_secret),
        )
        if not response.is_success:
            raise UpstreamError(response.status_code, response.text[:500], cls.provider)
        logger.info("PPI authentication succeeded")
        return parse_token(response, _token_from_login, cls.provider)

    @classmethod
    async def connect(
        cls,
        authorized_client: str,
        client_key: str,
        api_key: str,
        api_secret: str | None = None,
        account_number: str | None = None,
        **kwargs: Any,
    ) -> PPIAdapter:
        token = await cls.authenticate(
            authorized_client,
            client_key,
            api_key,
            api_secret,
            client=kwargs.get("client"),
            base_url=kwargs.get("base_url"),
            timeout=kwargs.get("timeout"),
        )
        if "clock_ms" in kwargs:
            token.issued_at_ms = kwargs["clock_ms"]()
        return cls(
            token,
            authorized_client=authorized_client,
            client_key=client_key,
            api_key=api_key,
            api_secret=api_secret,
            account_number=account_number,
            **kwargs,
        )

    @classmethod
    def from_credentials(cls, credentials: dict[str, Any], **kwargs: Any) -> PPIAdapter:
        token = None
        if credentials.get("accessToken"):
            token = Token(
                access_token=credentials["accessToken"],
                refresh_token=credentials.get("refreshToken", ""),
                expires_in_seconds=credentials.get("expiresIn"),
                issued_at_ms=credentials.get("issuedAt"),
            )
        return cls(
            token,
            authorized_client=credentials.get("authorizedClient", ""),
            client_key=credentials.get("clientKey", ""),
            api_key=credentials.get("apiKey", ""),
            api_secret=credentials.get("apiSecret"),
            account_number=credentials.get("accountNumber"),
            **kwargs,
        )

    def export_credentials(self) -> dict[str, Any]:
        creds: dict[str, Any] = {
            "authorizedClient": self.authorized_client,
            "clientKey": self.client_key,
            "apiKey": self.api_key,
        }
        if self.api_secret:
            creds["apiSecret"] = self.api_secret
        if self.account_number:
            creds["accountNumber"] = self.account_number
        t = self.token
        if t is not None:
            creds["accessToken"] = t.access_token
            creds["refreshToken"] = t.refresh_token
            if t.expires_in_seconds is not None:
                creds["expiresIn"] = t.expires_in_seconds
                creds["issuedAt"] = t.issued_at_ms
        return creds

    async def _refresh(self, token: Token) -> Token:
        response = await self._send(
            "POST",
            "/api/1.0/Account/RefreshToken",
            headers=self.static_headers(),
            json={"refreshToken": token.refresh_token},
        )
        if not response.is_success:
            raise UpstreamError(response.status_code, response.text[:500], self.provider)
        return parse_token(response, _token_from_login, self.provider, self._clock_ms())

    def _account(self, override: str | None = None) -> str:
        account = override or self.account_number
        if not account:
            raise ValidationError("PPI account number is required for this operation")
        return account

    # ── account ───────────────────────────────────────────────────────

    async def get_accounts(self) -> list[dict[str, Any]]:
        return await self.request("GET", "/api/1.0/Account/Accounts") or []

    async def get_balances_and_positions(self) -> dict[str, Any]:
        params = {"accountNumber": self.account_number} if self.account_number else None
        return await self.request("GET", "/api/1.0/Account/BalancesAndPositions", params=params) or {}

    async def get_available_balance(self) -> dict[str, Any]:
        params = {"accountNumber": self.account_number} if self.account_number else None
        return await self.request("GET", "/api/1.0/Account/AvailableBalance", params=params) or {}

    async def get_positions(self) -> list[Position]:
        data = await self.get_balances_and_positions()
        positions = []
        for p in data.get("Positions") or []:
            ticker = p.get("Ticker")
            if not ticker or (p.get("Quantity") or 0) <= 0:
                continue
            positions.append(
                Position(
                    ticker=ticker.upper(),
                    name=p.get("Description") or ticker,
                    quantity=p["Quantity"],
                    currency=currency_code(p.get("Currency")),
                    average_price=p.get("AveragePrice") or 0.0,
                    current_price=p.get("Price") or 0.0,
                    current_value=p.get("Amount") or 0.0,
                    pnl=p.get("PnL") or 0.0,
                    pnl_percent=p.get("PnLPercentage") or 0.0,
                    instrument_type=p.get("InstrumentType") or "",
                    raw=p,
                )
            )
        return positions

    # ── market data ───────────────────────────────────────────────────

    async def get_quote(self, instrument: Instrument) -> dict[str, Any]:
        if not instrument.symbol or not instrument.instrument_type:
            raise ValidationError("PPI instruments need both ticker and instrument type")
        params = {
            "ticker": instrument.symbol,
            "type": instrument.instrument_type,
            "settlement": instrument.settlement or DEFAULT_SETTLEMENT,
        }
        return await self.request("GET", "/api/1.0/MarketData/Current", params=params)

    async def get_historical(
        self,
        instrument: Instrument,
        date_from: date | str,
        date_to: date | str,
    ) -> list[dict[str, Any]]:
        if not instrument.symbol or not instrument.instrument_type:
            raise ValidationError("PPI instruments need both ticker and instrument type")
        start, end = iso_day(date_from), iso_day(date_to)
        if not start or not end:
            raise ValidationError("Historical series need both date_from and date_to")
        check_range(start, end)
        params = {
            "ticker": instrument.symbol,
            "type": instrument.instrument_type,
            "settlement": instrument.settlement or DEFAULT_SETTLEMENT,
            "dateFrom": start,
            "dateTo": end,
        }
        return await self.request("GET", "/api/1.0/MarketData/Search", params=params) or []

    async def search_instruments(
        self,
        ticker: str,
        filter: str | None = None,
        market: str | None = None,
        instrument_type: str | None = None,
    ) -> list[dict[str, Any]]:
        if not ticker:
            raise ValidationError("ticker is required")
        params = {"ticker": ticker, "filter": filter, "market": market, "type": instrument_type}
        return await self.request("GET", "/api/1.0/MarketData/SearchInstrument", params=params) or []

    # ── trading ───────────────────────────────────────────────────────

    async def get_operations(
        self,
        status: OperationStatus = OperationStatus.COMPLETED,
        date_from: date | str | None = None,
        date_to: date | str | None = None,
    ) -> list[dict[str, Any]]:
        try:
            status = OperationStatus(status)
        except ValueError as e:
            raise ValidationError(f"Unknown operation status {status!r}") from e
        account = self._account()

        if status == OperationStatus.PENDING:
            return await self.request("GET", "/api/1.0/Trading/ActiveOrders", params={"accountNumber": account}) or []

        start, end = iso_day(date_from), iso_day(date_to)
        check_range(start, end)
        params = {"accountNumber": account, "dateFrom": start, "dateTo": end}
        orders = await self.request("GET", "/api/1.0/Trading/Orders", params=params) or []
        if status == OperationStatus.ALL:
            return orders
        labels = _STATUS_LABELS[status]
        return [o for o in orders if str(o.get("Status", "")).lower() in labels]

    async def place_order(self, order: OrderRequest) -> OrderResult:
        body = {
            "accountNumber": self._account(order.account),
            "ticker": order.symbol,
            "instrumentType": order.market,
            "quantity": order.quantity,
            "price": order.price,
            "quantityType": "PAPER-VALUE",
            "operationType": "PRICE-LIMIT" if order.order_type == OrderType.LIMIT else "MARKET",
            "operationTerm": "TILL-CANCEL",
            "operationMaxDate": order.valid_until,
            "operation": "BUY" if order.side == OrderSide.BUY else "SELL",
            "settlement": _SETTLEMENT[order.settlement],
        }
        result = await self.request("POST", "/api/1.0/Trading/Order", json=body) or {}
        logger.info("PPI %s order for %s x%s placed", order.side.value, order.symbol, order.quantity)
        return OrderResult(
            ok=True,
            order_id=result.get("id") or result.get("orderID"),
            message=result.get("message") or f"{order.side.value.capitalize()} order sent",
        )

    async def cancel_order(self, order_id: int | str) -> OrderResult:
        if not str(order_id).strip():
            raise ValidationError("order_id is required")
        body = {"orderID": order_id, "accountNumber": self._account()}
        await self.request("POST", "/api/1.0/Trading/CancelOrder", json=body)
        return OrderResult(ok=True, order_id=order_id, message=f"Order {order_id} cancelled")
