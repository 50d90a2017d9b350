"""
Centralized configuration for Brokerlink.

All configuration is loaded from environment variables with sensible defaults.
The credential encryption key is deliberately NOT part of this object: the
vault reads ENCRYPTION_KEY on every call so a missing key fails at first use.

Usage:
    from brokerlink.config import get_config
    cfg = get_config()
    print(cfg.iol.base_url)          # "https://api.invertironline.com"
    print(cfg.alphavantage.daily_limit)  # 25
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseConfig:
    """PostgreSQL connection parameters for the credential store."""

    host: str = ""  # empty = Unix socket
    port: int = 5432
    name: str = "brokerlink"
    user: str = "brokerlink"
    password: str = ""

    @property
    def dict(self) -> dict[str, str | int]:
        """Return a psycopg2.connect() kwargs dict."""
        d: dict[str, str | int] = {
            "dbname": self.name,
            "port": self.port,
        }
        if self.host:
            d["host"] = self.host
        if self.user:
            d["user"] = self.user
        if self.password:
            d["password"] = self.password
        return d


@dataclass(frozen=True)
class IOLConfig:
    """InvertirOnline (brokerage A) endpoint."""

    base_url: str = "https://api.invertironline.com"


@dataclass(frozen=True)
class PPIConfig:
    """Portfolio Personal Inversiones (brokerage B) endpoint."""

    base_url: str = "https://clientapi_sandbox.portfoliopersonal.com"


@dataclass(frozen=True)
class AlphaVantageConfig:
    """Metered market-data provider. Free tier allows 25 calls per UTC day."""

    api_key: str = ""
    base_url: str = "https://www.alphavantage.co/query"
    daily_limit: int = 25
    reserve: int = 1
    warning_threshold: int = 5


@dataclass(frozen=True)
class InsightsConfig:
    """AI analysis calls (litellm model id + retry envelope)."""

    model: str = "anthropic/claude-sonnet-4-20250514"
    max_tokens: int = 1500
    temperature: float = 0.3
    max_attempts: int = 3
    base_delay: float = 1.0


@dataclass(frozen=True)
class Config:
    """Top-level Brokerlink configuration."""

    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    iol: IOLConfig = field(default_factory=IOLConfig)
    ppi: PPIConfig = field(default_factory=PPIConfig)
    alphavantage: AlphaVantageConfig = field(default_factory=AlphaVantageConfig)
    insights: InsightsConfig = field(default_factory=InsightsConfig)

    # Per-call timeout for every outbound request (seconds)
    http_timeout: float = 15.0
    # Refresh tokens this long before they expire
    refresh_buffer_seconds: int = 300


# Singleton
_config: Config | None = None


def get_config() -> Config:
    """Get or create the singleton config from environment variables."""
    global _config
    if _config is not None:
        return _config
    _config = _load_from_env()
    return _config


def reset_config() -> None:
    """Drop the cached config (for testing)."""
    global _config
    _config = None


def _load_from_env() -> Config:
    """Load configuration from environment variables."""
    db = DatabaseConfig(
        host=os.environ.get("BROKERLINK_DB_HOST", ""),
        port=int(os.environ.get("BROKERLINK_DB_PORT", "5432")),
        name=os.environ.get("BROKERLINK_DB_NAME", "brokerlink"),
        user=os.environ.get("BROKERLINK_DB_USER", os.environ.get("USER", "brokerlink")),
        password=os.environ.get("BROKERLINK_DB_PASSWORD", ""),
    )

    alphavantage = AlphaVantageConfig(
        api_key=os.environ.get("ALPHAVANTAGE_API_KEY", ""),
        daily_limit=int(os.environ.get("ALPHAVANTAGE_DAILY_LIMIT", "25")),
        reserve=int(os.environ.get("ALPHAVANTAGE_RESERVE", "1")),
    )

    insights = InsightsConfig(
        model=os.environ.get("BROKERLINK_INSIGHTS_MODEL", "anthropic/claude-sonnet-4-20250514"),
        max_attempts=int(os.environ.get("BROKERLINK_INSIGHTS_MAX_ATTEMPTS", "3")),
    )

    return Config(
        db=db,
        iol=IOLConfig(base_url=os.environ.get("IOL_API_URL", "https://api.invertironline.com")),
        ppi=PPIConfig(
            base_url=os.environ.get("PPI_API_URL", "https://clientapi_sandbox.portfoliopersonal.com")
        ),
        alphavantage=alphavantage,
        insights=insights,
        http_timeout=float(os.environ.get("BROKERLINK_HTTP_TIMEOUT", "15")),
        refresh_buffer_seconds=int(os.environ.get("BROKERLINK_REFRESH_BUFFER_SECONDS", "300")),
    )
