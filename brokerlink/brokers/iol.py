"""
InvertirOnline (IOL) adapter — password grant, expiring bearer tokens.

Stored credential shape (JSON before encryption):
    {"access_token", "refresh_token", "expires_in", "token_type", "issued_at"}
issued_at is epoch milliseconds stamped locally when the token was obtained.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
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
    currency_code,
)
from brokerlink.brokers.session import Token, now_ms
from brokerlink.config import get_config
from brokerlink.errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)

COUNTRIES = ("argentina", "estados_unidos")

_STATUS_FILTER = {
    OperationStatus.ALL: "todas",
    OperationStatus.PENDING: "pendientes",
    OperationStatus.CANCELLED: "canceladas",
    OperationStatus.COMPLETED: "terminadas",
}

_ORDER_TYPE = {
    OrderType.LIMIT: "precioLimite",
    OrderType.MARKET: "precioMercado",
}

# BCBA panels tried before the generic instruments endpoint for local stocks
STOCK_PANELS = ("Lideres", "General")


def _token_from_payload(data: dict[str, Any], issued_at_ms: int | None = None) -> Token:
    if not data["access_token"]:
        raise ValueError("empty access_token")
    return Token(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token", ""),
        expires_in_seconds=int(data["expires_in"]) if data.get("expires_in") is not None else None,
        issued_at_ms=issued_at_ms if issued_at_ms is not None else now_ms(),
    )


def _require(instrument: Instrument) -> None:
    if not instrument.symbol or not instrument.market:
        raise ValidationError("IOL instruments need both market and symbol")


class IOLAdapter(BrokerAdapter):
    provider = "iol"

    @classmethod
    def default_base_url(cls) -> str:
        return get_config().iol.base_url

    @classmethod
    async def authenticate(
        cls,
        username: str,
        password: str,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> Token:
        """Password grant. Used once, when the user connects the account."""
        if not username or not password:
            raise ValidationError("IOL username and password are required")
        url = (base_url or cls.default_base_url()).rstrip("/")
        response = await send_request(
            client,
            "POST",
            f"{url}/token",
            timeout=httpx.Timeout(timeout if timeout is not None else get_config().http_timeout),
            provider=cls.provider,
            data={"username": username, "password": password, "grant_type": "password"},
        )
        if not response.is_success:
            raise UpstreamError(response.status_code, response.text[:500], cls.provider)
        logger.info("IOL authentication succeeded")
        return parse_token(response, _token_from_payload, cls.provider)

    @classmethod
    async def connect(cls, username: str, password: str, **kwargs: Any) -> IOLAdapter:
        token = await cls.authenticate(
            username,
            password,
            client=kwargs.get("client"),
            base_url=kwargs.get("base_url"),
            timeout=kwargs.get("timeout"),
        )
        if "clock_ms" in kwargs:
            token.issued_at_ms = kwargs["clock_ms"]()
        return cls(token, **kwargs)

    @classmethod
    def from_credentials(cls, credentials: dict[str, Any], **kwargs: Any) -> IOLAdapter:
        token = None
        if credentials.get("access_token"):
            expires_in = credentials.get("expires_in")
            token = Token(
                access_token=credentials["access_token"],
                refresh_token=credentials.get("refresh_token", ""),
                expires_in_seconds=int(expires_in) if expires_in is not None else None,
                issued_at_ms=credentials.get("issued_at"),
            )
        return cls(token, **kwargs)

    def export_credentials(self) -> dict[str, Any]:
        t = self.token
        if t is None:
            return {}
        return {
            "access_token": t.access_token,
            "token_type": "bearer",
            "expires_in": t.expires_in_seconds,
            "refresh_token": t.refresh_token,
            "issued_at": t.issued_at_ms,
        }

    async def _refresh(self, token: Token) -> Token:
        response = await self._send(
            "POST",
            "/token",
            data={"refresh_token": token.refresh_token, "grant_type": "refresh_token"},
        )
        if not response.is_success:
            raise UpstreamError(response.status_code, response.text[:500], self.provider)
        return parse_token(response, _token_from_payload, self.provider, self._clock_ms())

    # ── portfolio & account ───────────────────────────────────────────

    async def get_portfolio(self, country: str = "argentina") -> dict[str, Any]:
        if country not in COUNTRIES:
            raise ValidationError(f"country must be one of {', '.join(COUNTRIES)}")
        return await self.request("GET", f"/api/v2/portafolio/{country}")

    async def get_all_portfolios(self) -> dict[str, dict[str, Any]]:
        argentina, us = await asyncio.gather(
            self.get_portfolio("argentina"),
            self.get_portfolio("estados_unidos"),
        )
        return {"argentina": argentina, "us": us}

    async def get_positions(self) -> list[Position]:
        portfolios = await self.get_all_portfolios()
        positions = []
        for portfolio in portfolios.values():
            for item in (portfolio or {}).get("activos") or []:
                titulo = item.get("titulo") or {}
                symbol = titulo.get("simbolo")
                if not symbol or (item.get("cantidad") or 0) <= 0:
                    continue
                positions.append(
                    Position(
                        ticker=symbol.upper(),
                        name=titulo.get("descripcion") or symbol,
                        quantity=item["cantidad"],
                        currency=currency_code(titulo.get("moneda")),
                        average_price=item.get("ppc") or 0.0,
                        current_price=item.get("ultimoPrecio") or 0.0,
                        current_value=item.get("valorizado") or 0.0,
                        pnl=item.get("gananciaDinero") or 0.0,
                        pnl_percent=item.get("gananciaPorcentaje") or 0.0,
                        instrument_type=titulo.get("tipo") or "",
                        raw=item,
                    )
                )
        return positions

    async def get_account_state(self) -> dict[str, Any]:
        return await self.request("GET", "/api/v2/estadocuenta")

    async def get_notifications(self) -> list[dict[str, Any]]:
        return await self.request("GET", "/api/v2/Notificacion") or []

    async def get_operations(
        self,
        status: OperationStatus = OperationStatus.COMPLETED,
        date_from: date | str | None = None,
        date_to: date | str | None = None,
    ) -> list[dict[str, Any]]:
        try:
            estado = _STATUS_FILTER[OperationStatus(status)]
        except ValueError as e:
            raise ValidationError(f"Unknown operation status {status!r}") from e
        start, end = iso_day(date_from), iso_day(date_to)
        check_range(start, end)
        params = {
            "filtro.estado": estado,
            "filtro.fechaDesde": start,
            "filtro.fechaHasta": end,
        }
        return await self.request("GET", "/api/v2/operaciones", params=params) or []

    # ── market data ───────────────────────────────────────────────────

    async def get_quote(self, instrument: Instrument) -> dict[str, Any]:
        _require(instrument)
        return await self.request("GET", f"/api/v2/{instrument.market}/Titulos/{instrument.symbol}/Cotizacion")

    async def get_security_details(self, instrument: Instrument) -> dict[str, Any]:
        _require(instrument)
        return await self.request("GET", f"/api/v2/{instrument.market}/Titulos/{instrument.symbol}")

    async def get_historical(
        self,
        instrument: Instrument,
        date_from: date | str,
        date_to: date | str,
        adjusted: bool = True,
    ) -> list[dict[str, Any]]:
        _require(instrument)
        start, end = iso_day(date_from), iso_day(date_to)
        if not start or not end:
            raise ValidationError("Historical series need both date_from and date_to")
        check_range(start, end)
        mode = "ajustada" if adjusted else "sinAjustar"
        path = f"/api/v2/{instrument.market}/Titulos/{instrument.symbol}/Cotizacion/seriehistorica/{start}/{end}/{mode}"
        return await self.request("GET", path) or []

    async def get_panel(self, panel: str) -> list[dict[str, Any]]:
        return await self.request("GET", f"/api/v2/Cotizaciones/acciones/argentina/{panel}") or []

    async def list_instruments(self, country: str = "argentina", instrument_type: str | None = None) -> list[dict[str, Any]]:
        """Instruments with quotes. Local stocks try the BCBA panels first."""
        if country == "argentina" and instrument_type == "acciones":
            for panel in STOCK_PANELS:
                try:
                    return await self.get_panel(panel)
                except UpstreamError as e:
                    logger.info("IOL panel %s unavailable (%s), trying next source", panel, e.status)
        # The instruments endpoint spells the US market with a capital U
        path_country = "estados_Unidos" if country == "estados_unidos" else country
        path = f"/api/v2/{path_country}/Titulos/Cotizacion/Instrumentos"
        if instrument_type:
            path = f"{path}/{instrument_type}"
        return await self.request("GET", path) or []

    # ── trading ───────────────────────────────────────────────────────

    async def place_order(self, order: OrderRequest) -> OrderResult:
        endpoint = "/api/v2/operar/Comprar" if order.side == OrderSide.BUY else "/api/v2/operar/Vender"
        body = {
            "mercado": order.market,
            "simbolo": order.symbol,
            "cantidad": order.quantity,
            "precio": order.price,
            "plazo": order.settlement.value,
            "validez": order.valid_until,
            "tipoOrden": _ORDER_TYPE[order.order_type],
        }
        result = await self.request("POST", endpoint, json=body) or {}
        default = "Buy order sent" if order.side == OrderSide.BUY else "Sell order sent"
        logger.info("IOL %s order for %s x%s placed", order.side.value, order.symbol, order.quantity)
        return OrderResult(
            ok=True,
            order_id=result.get("numeroOperacion"),
            message=result.get("mensaje") or default,
        )

    async def cancel_order(self, order_id: int | str) -> OrderResult:
        if not str(order_id).isdigit():
            raise ValidationError(f"IOL operation numbers are numeric, got {order_id!r}")
        await self.request("DELETE", f"/api/v2/operaciones/{order_id}")
        return OrderResult(ok=True, order_id=int(order_id), message=f"Order {order_id} cancelled")
