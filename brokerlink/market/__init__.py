"""Metered market data used to enrich broker views."""

from brokerlink.market.alphavantage import AlphaVantageClient, ExchangeRate, GlobalQuote, NewsItem, TopMovers

__all__ = ["AlphaVantageClient", "ExchangeRate", "GlobalQuote", "NewsItem", "TopMovers"]
