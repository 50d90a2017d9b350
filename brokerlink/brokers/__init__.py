"""
Brokerage adapters.

Usage:
    from brokerlink.brokers import get_adapter_class

    adapter = await get_adapter_class("iol").connect(username, password)
    positions = await adapter.get_positions()
"""

from __future__ import annotations

from brokerlink.brokers.base import BrokerAdapter
from brokerlink.brokers.iol import IOLAdapter
from brokerlink.brokers.ppi import PPIAdapter
from brokerlink.brokers.session import SessionManager, SessionState, Token
from brokerlink.errors import ValidationError

ADAPTERS: dict[str, type[BrokerAdapter]] = {
    IOLAdapter.provider: IOLAdapter,
    PPIAdapter.provider: PPIAdapter,
}


def get_adapter_class(provider: str) -> type[BrokerAdapter]:
    try:
        return ADAPTERS[provider.lower()]
    except KeyError:
        raise ValidationError(f"Unknown provider {provider!r}, expected one of {', '.join(ADAPTERS)}") from None


__all__ = [
    "ADAPTERS",
    "BrokerAdapter",
    "IOLAdapter",
    "PPIAdapter",
    "SessionManager",
    "SessionState",
    "Token",
    "get_adapter_class",
]
