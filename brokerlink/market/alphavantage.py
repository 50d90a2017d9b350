"""
Alpha Vantage client — metered enrichment data, 25 calls per UTC day.

Every public method goes cache → daily budget → upstream and returns None
(or an empty list) instead of raising: this data is optional enrichment, a
spent budget or a failing upstream must never fail the surrounding request.

Usage:
    from brokerlink.market.alphavantage import AlphaVantageClient

    av = AlphaVantageClient()           # one per process
    rate = await av.get_exchange_rate("USD", "ARS")
    print(av.budget_status())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from brokerlink.config import AlphaVantageConfig, get_config
from brokerlink.errors import ConfigurationError, NetworkError, UpstreamError
from brokerlink.resilience.budget import BudgetStatus, RateBudgetCache

logger = logging.getLogger(__name__)

# TTLs in seconds
TTL_EXCHANGE_RATE = 30 * 60
TTL_QUOTE = 5 * 60
TTL_NEWS = 2 * 60 * 60
TTL_COMPANY = 24 * 60 * 60
TTL_MOVERS = 30 * 60

MOVERS_PER_LIST = 10

_SENTIMENT_LABELS = {
    "Bullish": "Bullish",
    "Somewhat-Bullish": "Somewhat-Bullish",
    "Somewhat_Bullish": "Somewhat-Bullish",
    "Neutral": "Neutral",
    "Somewhat-Bearish": "Somewhat-Bearish",
    "Somewhat_Bearish": "Somewhat-Bearish",
    "Bearish": "Bearish",
}


def _float(value: Any) -> float:
    try:
        return float(str(value).replace("%", ""))
    except (TypeError, ValueError):
        return 0.0


def _int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


@dataclass
class ExchangeRate:
    from_currency: str
    to_currency: str
    rate: float
    last_refreshed: str = ""
    bid_price: float = 0.0
    ask_price: float = 0.0


@dataclass
class GlobalQuote:
    symbol: str
    price: float
    open: float = 0.0
    high: float = 0.0
    low: float = 0.0
    volume: int = 0
    latest_trading_day: str = ""
    previous_close: float = 0.0
    change: float = 0.0
    change_percent: float = 0.0


@dataclass
class NewsItem:
    title: str
    url: str
    time_published: str = ""
    summary: str = ""
    source: str = ""
    sentiment_score: float = 0.0
    sentiment_label: str = "Neutral"
    ticker_sentiment: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class TopMovers:
    top_gainers: list[dict[str, str]] = field(default_factory=list)
    top_losers: list[dict[str, str]] = field(default_factory=list)
    most_actively_traded: list[dict[str, str]] = field(default_factory=list)


class AlphaVantageClient:
    """Budget-aware Alpha Vantage client. Create once per process and share."""

    def __init__(
        self,
        config: AlphaVantageConfig | None = None,
        *,
        budget: RateBudgetCache | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        self.config = config or get_config().alphavantage
        self.budget = budget or RateBudgetCache(
            self.config.daily_limit,
            self.config.reserve,
            self.config.warning_threshold,
            name="alphavantage",
        )
        self.timeout = timeout if timeout is not None else get_config().http_timeout
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.config.api_key)

    def budget_status(self) -> BudgetStatus:
        return self.budget.status()

    async def _metered(self, key: str, ttl_seconds: float, load, accept=bool):
        if not self.enabled:
            logger.debug("Alpha Vantage disabled, no API key configured")
            return None
        return await self.budget.fetch(key, ttl_seconds, load, accept=accept)

    async def _fetch(self, params: dict[str, str]) -> dict[str, Any]:
        if not self.config.api_key:
            raise ConfigurationError("ALPHAVANTAGE_API_KEY not configured")
        query = {"apikey": self.config.api_key, **params}
        try:
            if self._client is not None:
                resp = await self._client.get(self.config.base_url, params=query, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.get(self.config.base_url, params=query)
        except httpx.TimeoutException as e:
            raise NetworkError("Alpha Vantage request timed out", timeout=True) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Alpha Vantage request failed: {e}") from e

        if not resp.is_success:
            raise UpstreamError(resp.status_code, resp.text[:500], "alphavantage")
        data = resp.json()

        # Errors arrive as 200 responses with a message field
        if data.get("Error Message"):
            raise UpstreamError(400, data["Error Message"], "alphavantage")
        if data.get("Note"):
            raise UpstreamError(429, "Alpha Vantage rate limit reached", "alphavantage")
        if data.get("Information"):
            raise UpstreamError(429, data["Information"], "alphavantage")
        return data

    async def get_exchange_rate(self, from_currency: str, to_currency: str) -> ExchangeRate | None:
        """Currency pair rate, e.g. USD → ARS. Cached 30 minutes."""

        async def load() -> ExchangeRate | None:
            data = await self._fetch(
                {"function": "CURRENCY_EXCHANGE_RATE", "from_currency": from_currency, "to_currency": to_currency}
            )
            raw = data.get("Realtime Currency Exchange Rate")
            if not raw:
                return None
            return ExchangeRate(
                from_currency=raw.get("1. From_Currency Code") or from_currency,
                to_currency=raw.get("3. To_Currency Code") or to_currency,
                rate=_float(raw.get("5. Exchange Rate")),
                last_refreshed=raw.get("6. Last Refreshed", ""),
                bid_price=_float(raw.get("8. Bid Price")),
                ask_price=_float(raw.get("9. Ask Price")),
            )

        return await self._metered(
            f"av-fx-{from_currency}-{to_currency}", TTL_EXCHANGE_RATE, load, accept=lambda r: r.rate > 0
        )

    async def get_global_quote(self, symbol: str) -> GlobalQuote | None:
        """US stock quote. Cached 5 minutes."""

        async def load() -> GlobalQuote | None:
            data = await self._fetch({"function": "GLOBAL_QUOTE", "symbol": symbol})
            raw = data.get("Global Quote")
            if not raw or not raw.get("05. price"):
                return None
            return GlobalQuote(
                symbol=raw.get("01. symbol") or symbol,
                open=_float(raw.get("02. open")),
                high=_float(raw.get("03. high")),
                low=_float(raw.get("04. low")),
                price=_float(raw.get("05. price")),
                volume=_int(raw.get("06. volume")),
                latest_trading_day=raw.get("07. latest trading day", ""),
                previous_close=_float(raw.get("08. previous close")),
                change=_float(raw.get("09. change")),
                change_percent=_float(raw.get("10. change percent")),
            )

        return await self._metered(f"av-quote-{symbol}", TTL_QUOTE, load, accept=lambda q: q.price > 0)

    async def get_news_sentiment(self, tickers: list[str] | None = None, limit: int = 10) -> list[NewsItem]:
        """News with sentiment scores. Cached 2 hours. Empty list when unavailable."""
        ticker_key = ",".join(sorted(tickers)) if tickers else "general"

        async def load() -> list[NewsItem]:
            params = {"function": "NEWS_SENTIMENT", "limit": str(limit), "sort": "RELEVANCE"}
            if tickers:
                params["tickers"] = ",".join(tickers)
            data = await self._fetch(params)
            feed = data.get("feed")
            if not isinstance(feed, list):
                return []
            return [
                NewsItem(
                    title=str(item.get("title") or ""),
                    url=str(item.get("url") or ""),
                    time_published=str(item.get("time_published") or ""),
                    summary=str(item.get("summary") or ""),
                    source=str(item.get("source") or ""),
                    sentiment_score=_float(item.get("overall_sentiment_score")),
                    sentiment_label=_SENTIMENT_LABELS.get(str(item.get("overall_sentiment_label")), "Neutral"),
                    ticker_sentiment=[
                        {
                            "ticker": str(ts.get("ticker") or ""),
                            "relevance_score": _float(ts.get("relevance_score")),
                            "sentiment_score": _float(ts.get("ticker_sentiment_score")),
                            "sentiment_label": str(ts.get("ticker_sentiment_label") or "Neutral"),
                        }
                        for ts in item.get("ticker_sentiment") or []
                    ],
                )
                for item in feed[:limit]
            ]

        return await self._metered(f"av-news-{ticker_key}-{limit}", TTL_NEWS, load) or []

    async def get_company_overview(self, symbol: str) -> dict[str, Any] | None:
        """Company fundamentals. Cached 24 hours."""

        async def load() -> dict[str, Any] | None:
            data = await self._fetch({"function": "OVERVIEW", "symbol": symbol})
            if not data.get("Symbol"):
                return None
            return {
                "symbol": data["Symbol"],
                "name": data.get("Name", ""),
                "description": data.get("Description", ""),
                "exchange": data.get("Exchange", ""),
                "currency": data.get("Currency", "USD"),
                "sector": data.get("Sector", ""),
                "industry": data.get("Industry", ""),
                "market_cap": _int(data.get("MarketCapitalization")),
                "pe_ratio": _float(data.get("PERatio")),
                "peg_ratio": _float(data.get("PEGRatio")),
                "eps": _float(data.get("EPS")),
                "dividend_yield": _float(data.get("DividendYield")),
                "week52_high": _float(data.get("52WeekHigh")),
                "week52_low": _float(data.get("52WeekLow")),
                "analyst_target_price": _float(data.get("AnalystTargetPrice")),
                "beta": _float(data.get("Beta")),
                "profit_margin": _float(data.get("ProfitMargin")),
            }

        return await self._metered(f"av-company-{symbol}", TTL_COMPANY, load)

    async def get_top_movers(self) -> TopMovers | None:
        """Top gainers, losers and most traded. Cached 30 minutes."""

        def movers(items: Any) -> list[dict[str, str]]:
            if not isinstance(items, list):
                return []
            return [
                {
                    "ticker": i.get("ticker", ""),
                    "price": i.get("price", "0"),
                    "change_amount": i.get("change_amount", "0"),
                    "change_percentage": i.get("change_percentage", "0%"),
                    "volume": i.get("volume", "0"),
                }
                for i in items[:MOVERS_PER_LIST]
            ]

        async def load() -> TopMovers:
            data = await self._fetch({"function": "TOP_GAINERS_LOSERS"})
            return TopMovers(
                top_gainers=movers(data.get("top_gainers")),
                top_losers=movers(data.get("top_losers")),
                most_actively_traded=movers(data.get("most_actively_traded")),
            )

        return await self._metered("av-movers", TTL_MOVERS, load, accept=lambda m: bool(m.top_gainers))
