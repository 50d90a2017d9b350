"""
Broker-neutral domain types.

Adapters map provider payloads into Position and OrderResult; quotes,
operations and historical rows are passed through as provider dicts.
Order input is validated with pydantic before any network call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import pydantic
from pydantic import BaseModel, Field

from brokerlink.errors import ValidationError


class OrderSide(StrEnum):
    BUY = "buy"
    SELL = "sell"


class Settlement(StrEnum):
    T0 = "t0"
    T1 = "t1"
    T2 = "t2"


class OrderType(StrEnum):
    LIMIT = "limit"
    MARKET = "market"


class OperationStatus(StrEnum):
    ALL = "all"
    PENDING = "pending"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Instrument:
    """One tradeable security. Which fields matter depends on the broker."""

    symbol: str
    market: str = ""
    instrument_type: str = ""
    settlement: str = ""

    @property
    def key(self) -> str:
        return self.symbol.upper()


@dataclass
class Position:
    """A holding normalized across brokers."""

    ticker: str
    name: str
    quantity: float
    currency: str = "ARS"
    average_price: float = 0.0
    current_price: float = 0.0
    current_value: float = 0.0
    pnl: float = 0.0
    pnl_percent: float = 0.0
    instrument_type: str = ""
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class OrderResult:
    ok: bool
    order_id: int | str | None = None
    message: str = ""


class OrderRequest(BaseModel):
    """A buy or sell order, validated before it reaches the broker."""

    side: OrderSide
    market: str = Field(min_length=1)
    symbol: str = Field(min_length=1)
    quantity: float = Field(gt=0)
    price: float = Field(gt=0)
    settlement: Settlement = Settlement.T2
    valid_until: str = Field(min_length=1, description="YYYY-MM-DD")
    order_type: OrderType = OrderType.LIMIT
    account: str = ""

    @pydantic.field_validator("symbol")
    @classmethod
    def _upper_symbol(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("symbol is required")
        return v


def build_order(**data: Any) -> OrderRequest:
    """Create an OrderRequest, raising brokerlink's ValidationError on bad input."""
    try:
        return OrderRequest(**data)
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(f"Invalid order: {problems}") from e


def currency_code(raw: str | None) -> str:
    """Map broker currency labels ("dolar_Estadounidense", "USD MEP") to USD/ARS."""
    c = (raw or "").lower()
    if "usd" in c or "dolar" in c or "dollar" in c:
        return "USD"
    return "ARS"
