"""Tests for order validation and domain helpers."""

from __future__ import annotations

import pytest

from brokerlink.brokers.models import Instrument, OrderSide, OrderType, Settlement, build_order, currency_code
from brokerlink.errors import ValidationError

VALID = {"side": "buy", "market": "bCBA", "symbol": " ggal ", "quantity": 10, "price": 100.5, "valid_until": "2026-03-10"}


class TestBuildOrder:
    def test_defaults(self):
        order = build_order(**VALID)
        assert order.side == OrderSide.BUY
        assert order.symbol == "GGAL"
        assert order.settlement == Settlement.T2
        assert order.order_type == OrderType.LIMIT

    @pytest.mark.parametrize(
        "field,value",
        [
            ("quantity", 0),
            ("quantity", -5),
            ("price", 0),
            ("symbol", "   "),
            ("market", ""),
            ("side", "hold"),
            ("valid_until", ""),
        ],
    )
    def test_rejects_bad_input(self, field, value):
        with pytest.raises(ValidationError, match="Invalid order"):
            build_order(**{**VALID, field: value})

    def test_missing_field(self):
        data = dict(VALID)
        del data["price"]
        with pytest.raises(ValidationError, match="price"):
            build_order(**data)


def test_instrument_key_is_upper():
    assert Instrument("ggal", market="bCBA").key == "GGAL"


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("dolar_Estadounidense", "USD"),
        ("USD MEP", "USD"),
        ("peso_Argentino", "ARS"),
        (None, "ARS"),
    ],
)
def test_currency_code(raw, expected):
    assert currency_code(raw) == expected
