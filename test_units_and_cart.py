"""
Tests for money formatting, unit pricing and the session cart
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from cart import Cart
from currency import (
    format_currency, format_currency_value, format_with_currency,
    get_currency_symbol, quantize_money
)
from units import UnitNormalizer, product_unit_price, unit_price


def make_product(product_id, name, price, unit="each"):
    return SimpleNamespace(
        id=product_id, name=name, effective_price=Decimal(price), unit=unit, image_url=None
    )


# ============================================================================
# Currency
# ============================================================================

def test_format_currency():
    assert format_currency(1250) == "KSh 1,250"
    assert format_currency(Decimal("99.50")) == "KSh 100"
    assert format_currency(-50) == "-KSh 50"
    assert format_currency_value(1250.4) == "1,250"


def test_other_currencies():
    assert format_with_currency(10, "usd") == "$ 10"
    assert get_currency_symbol("KES") == "KSh"
    assert get_currency_symbol("xyz") == "XYZ"


def test_quantize_money_rounds_half_up():
    assert quantize_money(2.675) == Decimal("2.68")
    assert quantize_money("10") == Decimal("10.00")


# ============================================================================
# Unit pricing
# ============================================================================

def test_parse_unit():
    assert UnitNormalizer.parse_unit("500 g") == (500.0, "g")
    assert UnitNormalizer.parse_unit("1.5l") == (1.5, "l")
    assert UnitNormalizer.parse_unit("kg") == (1.0, "kg")
    assert UnitNormalizer.parse_unit("") is None
    assert UnitNormalizer.parse_unit("2 x 500g") is None


def test_identify_unit_type():
    assert UnitNormalizer.identify_unit_type("ML") == "volume"
    assert UnitNormalizer.identify_unit_type("grams") == "weight"
    assert UnitNormalizer.identify_unit_type("bunch") == "count"
    assert UnitNormalizer.identify_unit_type("furlong") is None


def test_unit_price_normalizes_to_base_unit():
    assert unit_price(120, 500, "g") == (Decimal("240.00"), "kg")
    assert unit_price(65, 500, "ml") == (Decimal("130.00"), "litre")
    assert unit_price(150, 1, "dozen") == (Decimal("12.50"), "each")


def test_unknown_unit_is_priced_each():
    assert unit_price(10, 1, "furlong") == (Decimal("10.00"), "each")


def test_product_unit_price():
    flour = make_product(7, "Maize Flour", "210", unit="2 kg")
    odd = make_product(8, "Gift Hamper", "1500", unit="2 x 500g")

    assert product_unit_price(flour) == (Decimal("105.00"), "kg")
    assert product_unit_price(odd) == (Decimal("1500.00"), "each")


# ============================================================================
# Cart
# ============================================================================

def test_adding_same_product_merges_lines():
    cart = Cart()
    tomatoes = make_product(1, "Tomatoes", "120")

    cart.add_item(tomatoes, 2)
    cart.add_item(tomatoes)

    assert len(cart.items) == 1
    assert cart.items[0].quantity == 3
    assert cart.item_count == 3
    assert cart.subtotal == Decimal("360.00")


def test_update_quantity_and_remove():
    cart = Cart()
    cart.add_item(make_product(1, "Tomatoes", "120"), 2)
    cart.add_item(make_product(2, "Sukuma Wiki", "30"), 4)

    cart.update_quantity(1, 5)
    assert cart.subtotal == Decimal("720.00")

    cart.update_quantity(2, 0)
    assert [item.product_id for item in cart.items] == [1]

    cart.remove_item(1)
    assert cart.is_empty()


def test_non_positive_quantity_rejected():
    with pytest.raises(ValueError):
        Cart().add_item(make_product(1, "Tomatoes", "120"), 0)


def test_clear():
    cart = Cart()
    cart.add_item(make_product(1, "Tomatoes", "120"))
    cart.clear()

    assert cart.is_empty()
    assert cart.subtotal == Decimal("0.00")
