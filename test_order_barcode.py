"""
Tests for order barcodes and delivery stickers
"""

from datetime import datetime

import pytest

from order_barcode import (
    CODE128_PATTERNS, CODE128_STOP, code128_pattern, generate_barcode_svg,
    generate_delivery_sticker, generate_order_barcode, svg_to_data_url, to_base36
)


def test_code128_table_is_complete():
    assert len(CODE128_PATTERNS) == 106
    assert all(len(p) == 11 for p in CODE128_PATTERNS)


def test_base36():
    assert to_base36(0) == "0"
    assert to_base36(35) == "Z"
    assert to_base36(36) == "10"


def test_order_barcode_format():
    barcode = generate_order_barcode(42, datetime(2026, 3, 2, 10, 0))

    assert barcode.startswith("ORD00000042")
    assert len(barcode) == 15
    assert barcode == generate_order_barcode(42, datetime(2026, 3, 2, 10, 0))


def test_code128_includes_start_checksum_and_stop():
    pattern = code128_pattern("A")

    # start B (104) + 'A' (33) + checksum (104 + 33) % 103 = 34
    expected = CODE128_PATTERNS[104] + CODE128_PATTERNS[33] + CODE128_PATTERNS[34] + CODE128_STOP
    assert pattern == expected


def test_code128_rejects_non_ascii():
    with pytest.raises(ValueError):
        code128_pattern("ORDé")


def test_barcode_svg():
    svg = generate_barcode_svg("ORD00000042ABCD")

    assert svg.startswith("<svg")
    assert "ORD00000042ABCD" in svg
    assert svg_to_data_url(svg).startswith("data:image/svg+xml;base64,")


def test_delivery_sticker():
    sticker = generate_delivery_sticker(
        barcode="ORD00000042ABCD",
        customer_name="Jane <Wanjiku>",
        customer_phone="0712345678",
        address={"street": "Ngong Road", "city": "Nairobi", "postal_code": "00100", "lat": -1.3, "lng": 36.78},
        order_id=42,
        delivery_method="Express Delivery",
        order_date=datetime(2026, 3, 2, 10, 0),
    )

    assert "ORD00000042ABCD" in sticker
    assert "Jane &lt;Wanjiku&gt;" in sticker
    assert "Nairobi, 00100" in sticker
    assert "GPS: -1.3000, 36.7800" in sticker
    assert "#ef4444" in sticker
