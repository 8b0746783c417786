"""
Unit pricing for catalog products

Product units are free text such as "kg", "500 g", "1.5 l" or "each".
Prices are normalized to a metric base unit so shoppers can compare packs:
- Volume: all → litre
- Weight: all → kg
- Count: all → each
"""

import re
from decimal import Decimal
from typing import Optional, Tuple

from currency import quantize_money, to_decimal


class UnitNormalizer:
    """Normalizes product prices to price per base unit"""

    VOLUME_TO_LITRE = {
        'litre': 1.0,
        'liter': 1.0,
        'litres': 1.0,
        'l': 1.0,
        'ml': 0.001,
        'millilitre': 0.001,
        'milliliter': 0.001,
    }

    WEIGHT_TO_KG = {
        'kg': 1.0,
        'kgs': 1.0,
        'kilogram': 1.0,
        'kilograms': 1.0,
        'g': 0.001,
        'gm': 0.001,
        'gram': 0.001,
        'grams': 0.001,
    }

    COUNT_UNITS = {
        'each': 1.0,
        'piece': 1.0,
        'pc': 1.0,
        'pcs': 1.0,
        'unit': 1.0,
        'bunch': 1.0,
        'pack': 1.0,
        'packet': 1.0,
        'tray': 1.0,
        'bottle': 1.0,
        'tin': 1.0,
        'loaf': 1.0,
        'dozen': 12.0,
    }

    BASE_UNITS = {
        'volume': 'litre',
        'weight': 'kg',
        'count': 'each',
    }

    @staticmethod
    def parse_unit(text: Optional[str]) -> Optional[Tuple[float, str]]:
        """
        Split a unit label into quantity and unit.

        Examples:
        - "500 g" → (500.0, 'g')
        - "1.5l" → (1.5, 'l')
        - "kg" → (1.0, 'kg')
        """
        if not text:
            return None

        match = re.match(r'^\s*(\d+(?:\.\d+)?)?\s*([a-z]+)\s*$', text.lower())
        if not match:
            return None

        quantity_str, unit = match.groups()
        quantity = float(quantity_str) if quantity_str else 1.0
        return quantity, unit

    @staticmethod
    def identify_unit_type(unit: str) -> Optional[str]:
        """'volume', 'weight', 'count', or None if unknown"""
        unit_lower = unit.lower().strip()

        if unit_lower in UnitNormalizer.VOLUME_TO_LITRE:
            return 'volume'
        elif unit_lower in UnitNormalizer.WEIGHT_TO_KG:
            return 'weight'
        elif unit_lower in UnitNormalizer.COUNT_UNITS:
            return 'count'

        return None

    @staticmethod
    def conversion_factor(unit: str) -> float:
        unit_lower = unit.lower().strip()
        for table in (
            UnitNormalizer.VOLUME_TO_LITRE,
            UnitNormalizer.WEIGHT_TO_KG,
            UnitNormalizer.COUNT_UNITS,
        ):
            if unit_lower in table:
                return table[unit_lower]
        return 1.0


def unit_price(price, quantity: float = 1, unit: str = "each") -> Tuple[Decimal, str]:
    """
    Price per base unit.

    Args:
        price: Pack price
        quantity: Pack size in `unit` (e.g., 500 for a 500 g pack)
        unit: Unit of the pack size

    Returns:
        (price per base unit rounded to cents, base unit);
        unknown units fall back to (price, 'each')
    """
    unit_type = UnitNormalizer.identify_unit_type(unit)
    if unit_type is None or quantity <= 0:
        return quantize_money(price), 'each'

    base_quantity = to_decimal(quantity) * to_decimal(UnitNormalizer.conversion_factor(unit))
    if base_quantity <= 0:
        return quantize_money(price), UnitNormalizer.BASE_UNITS[unit_type]

    return quantize_money(to_decimal(price) / base_quantity), UnitNormalizer.BASE_UNITS[unit_type]


def product_unit_price(product) -> Tuple[Decimal, str]:
    """Unit price of a Product using its unit label"""
    parsed = UnitNormalizer.parse_unit(product.unit)
    if parsed is None:
        return quantize_money(product.effective_price), 'each'

    quantity, unit = parsed
    return unit_price(product.effective_price, quantity, unit)
