"""
Package barcodes for packing and delivery verification

- Order barcode: "ORD" + 8-digit order id + last 4 base-36 digits of the
  millisecond timestamp (e.g. ORD00000042K3ZQ)
- Rendering: Code 128 (code set B) as SVG
- Delivery sticker: printable 4x6in HTML label
"""

import base64
import html
import string
import time
from datetime import datetime
from typing import Dict, Optional

# Code 128 symbol patterns by symbol value (0-102 data, 103-105 start codes)
CODE128_PATTERNS = [
    "11011001100", "11001101100", "11001100110", "10010011000", "10010001100",
    "10001001100", "10011001000", "10011000100", "10001100100", "11001001000",
    "11001000100", "11000100100", "10110011100", "10011011100", "10011001110",
    "10111001100", "10011101100", "10011100110", "11001110010", "11001011100",
    "11001001110", "11011100100", "11001110100", "11101101110", "11101001100",
    "11100101100", "11100100110", "11101100100", "11100110100", "11100110010",
    "11011011000", "11011000110", "11000110110", "10100011000", "10001011000",
    "10001000110", "10110001000", "10001101000", "10001100010", "11010001000",
    "11000101000", "11000100010", "10110111000", "10110001110", "10001101110",
    "10111011000", "10111000110", "10001110110", "11101110110", "11010001110",
    "11000101110", "11011101000", "11011100010", "11011101110", "11101011000",
    "11101000110", "11100010110", "11101101000", "11101100010", "11100011010",
    "11101111010", "11001000010", "11110001010", "10100110000", "10100001100",
    "10010110000", "10010000110", "10000101100", "10000100110", "10110010000",
    "10110000100", "10011010000", "10011000010", "10000110100", "10000110010",
    "11000010010", "11001010000", "11110111010", "11000010100", "10001111010",
    "10100111100", "10010111100", "10010011110", "10111100100", "10011110100",
    "10011110010", "11110100100", "11110010100", "11110010010", "11011011110",
    "11011110110", "11110110110", "10101111000", "10100011110", "10001011110",
    "10111101000", "10111100010", "11110101000", "11110100010", "10111011110",
    "10111101110", "11101011110", "11110101110", "11010000100", "11010010000",
    "11010011100",
]
CODE128_START_B = 104
CODE128_STOP = "1100011101011"

BASE36_DIGITS = string.digits + string.ascii_uppercase


def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def generate_order_barcode(order_id: int, now: Optional[datetime] = None) -> str:
    """Short unique barcode for an order's package"""
    millis = int(now.timestamp() * 1000) if now else int(time.time() * 1000)
    return f"ORD{order_id:08d}{to_base36(millis)[-4:]}"


def code128_pattern(text: str) -> str:
    """
    Bar/space pattern ('1' = bar) for text in Code 128 set B, including the
    start code, checksum and stop pattern.

    Raises:
        ValueError: If text contains characters outside printable ASCII
    """
    values = []
    for char in text:
        value = ord(char) - 32
        if not 0 <= value <= 94:
            raise ValueError(f"Character {char!r} cannot be encoded in Code 128 set B")
        values.append(value)

    checksum = CODE128_START_B
    for position, value in enumerate(values, start=1):
        checksum += value * position

    symbols = [CODE128_START_B] + values + [checksum % 103]
    return "".join(CODE128_PATTERNS[s] for s in symbols) + CODE128_STOP


def generate_barcode_svg(text: str, width: int = 300, height: int = 80) -> str:
    """SVG image of the Code 128 barcode with the text printed underneath"""
    pattern = code128_pattern(text)
    bar_width = width / len(pattern)

    parts = [
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{width}" height="{height}" '
        f'viewBox="0 0 {width} {height}">',
        f'<rect width="{width}" height="{height}" fill="white"/>',
    ]
    for index, bit in enumerate(pattern):
        if bit == "1":
            parts.append(
                f'<rect x="{index * bar_width:.3f}" y="5" width="{bar_width:.3f}" '
                f'height="{height - 25}" fill="black"/>'
            )
    parts.append(
        f'<text x="{width / 2}" y="{height - 5}" text-anchor="middle" '
        f'font-family="monospace" font-size="12" fill="black">{html.escape(text)}</text>'
    )
    parts.append("</svg>")
    return "".join(parts)


def svg_to_data_url(svg: str) -> str:
    encoded = base64.b64encode(svg.encode("utf-8")).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


STICKER_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Delivery Sticker - {barcode}</title>
  <style>
    @media print {{ body {{ margin: 0; padding: 0; }} .no-print {{ display: none !important; }} }}
    body {{ font-family: 'Segoe UI', sans-serif; margin: 0; padding: 20px; }}
    .sticker {{ width: 4in; height: 6in; border: 2px dashed #ccc; padding: 15px; box-sizing: border-box; }}
    .header {{ display: flex; justify-content: space-between; border-bottom: 2px solid #000; padding-bottom: 10px; }}
    .logo {{ font-weight: bold; font-size: 20px; }}
    .delivery-type {{ background: {badge_color}; color: white; padding: 5px 12px; border-radius: 4px;
                      font-weight: bold; font-size: 12px; text-transform: uppercase; }}
    .barcode-section {{ text-align: center; margin: 15px 0; padding: 10px; border: 1px solid #e5e7eb; }}
    .info-label {{ font-size: 10px; color: #666; text-transform: uppercase; }}
    .info-value {{ font-size: 14px; font-weight: 500; margin-bottom: 8px; }}
    .address-box {{ background: #f3f4f6; padding: 10px; border-radius: 6px; margin: 10px 0; }}
    .order-id {{ font-family: monospace; font-size: 11px; color: #666; text-align: center; }}
    .scan-instruction {{ background: #fef3c7; border: 1px solid #f59e0b; padding: 8px; font-size: 11px; text-align: center; }}
  </style>
</head>
<body>
  <div class="sticker">
    <div class="header">
      <div class="logo">{store_name}</div>
      <div class="delivery-type">{delivery_method}</div>
    </div>
    <div class="barcode-section"><img src="{barcode_src}" alt="Barcode" /></div>
    <div class="info-label">Customer</div>
    <div class="info-value">{customer_name}</div>
    <div class="info-label">Phone</div>
    <div class="info-value">{customer_phone}</div>
    <div class="address-box">
      <div class="info-label">Delivery Address</div>
      <div class="info-value">{street}</div>
      <div class="info-value">{city_line}</div>
      {gps_line}
    </div>
    <div class="scan-instruction">Scan barcode after packing &amp; at delivery to confirm</div>
    <div class="order-id">Order: #{order_id} | {order_date}</div>
  </div>
  <div class="no-print" style="margin-top: 20px; text-align: center;">
    <button onclick="window.print()">Print Sticker</button>
  </div>
</body>
</html>
"""


def generate_delivery_sticker(
    barcode: str,
    customer_name: str,
    customer_phone: str,
    address: Dict,
    order_id: int,
    delivery_method: str,
    order_date: datetime,
    store_name: str = "FreshCart"
) -> str:
    """Printable HTML delivery label for a packed order"""
    city_line = address.get("city", "")
    if address.get("postal_code"):
        city_line = f"{city_line}, {address['postal_code']}"

    gps_line = ""
    if address.get("lat") is not None and address.get("lng") is not None:
        gps_line = (
            f'<div style="font-size: 10px; color: #666;">GPS: '
            f'{float(address["lat"]):.4f}, {float(address["lng"]):.4f}</div>'
        )

    is_express = "express" in (delivery_method or "").lower()

    return STICKER_TEMPLATE.format(
        barcode=html.escape(barcode),
        badge_color="#ef4444" if is_express else "#22c55e",
        store_name=html.escape(store_name),
        delivery_method=html.escape(delivery_method or "Standard"),
        barcode_src=svg_to_data_url(generate_barcode_svg(barcode, 280, 70)),
        customer_name=html.escape(customer_name or "Customer"),
        customer_phone=html.escape(customer_phone or ""),
        street=html.escape(address.get("street", "")),
        city_line=html.escape(city_line),
        gps_line=gps_line,
        order_id=order_id,
        order_date=order_date.strftime("%d %b %Y") if order_date else "",
    )
