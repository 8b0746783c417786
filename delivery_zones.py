"""
Postal-code delivery zones for Nairobi

Zone selection:
- 100-199 → Zone A (CBD)
- 200-299 → Zone B (Suburbs)
- anything else, including invalid codes → Zone C (Outer Nairobi)
"""

import logging
from dataclasses import dataclass
from datetime import datetime, date
from decimal import Decimal
from typing import Dict, List, Optional

import pytz

from config import StorefrontConfig
from currency import quantize_money, to_decimal

logger = logging.getLogger(__name__)

BASE_WEIGHT_KG = 5
WEIGHT_SURCHARGE_PER_KG = Decimal("50")
ADVANCE_SCHEDULE_DISCOUNT = Decimal("0.9")
SAME_DAY_PREMIUM = Decimal("1.2")


@dataclass(frozen=True)
class DeliveryZone:
    name: str
    base_rate: Decimal
    express_rate: Decimal


DELIVERY_ZONES = [
    DeliveryZone("Zone A - Nairobi CBD", Decimal("250"), Decimal("450")),
    DeliveryZone("Zone B - Nairobi Suburbs", Decimal("350"), Decimal("650")),
    DeliveryZone("Zone C - Outer Nairobi", Decimal("450"), Decimal("850")),
]

# (slot id, label, hour after which the slot is no longer offered today)
TIME_SLOTS = [
    ("morning", "9:00 AM - 12:00 PM", 9),
    ("afternoon", "12:00 PM - 3:00 PM", 12),
    ("evening", "3:00 PM - 6:00 PM", 15),
]


def calculate_delivery_zone(postal_code) -> int:
    """Index into DELIVERY_ZONES for a postal code"""
    try:
        code = int(str(postal_code).strip())
    except (TypeError, ValueError):
        return 2

    if 100 <= code <= 199:
        return 0
    if 200 <= code <= 299:
        return 1
    return 2


def get_delivery_zone(postal_code) -> DeliveryZone:
    return DELIVERY_ZONES[calculate_delivery_zone(postal_code)]


def _local_now() -> datetime:
    return datetime.now(pytz.timezone(StorefrontConfig.STORE_TIMEZONE))


def calculate_delivery_cost(
    postal_code,
    weight: float = BASE_WEIGHT_KG,
    is_express: bool = False,
    scheduled_date: Optional[datetime] = None,
    now: Optional[datetime] = None
) -> Decimal:
    """
    Zone-based delivery cost.

    Args:
        postal_code: Delivery postal code (e.g., "00100")
        weight: Parcel weight in kg; 50 per kg above 5 kg
        is_express: Use the zone's express rate
        scheduled_date: Requested delivery time; ≥3 days ahead is 10% off,
            less than a day ahead is 20% more
        now: Reference time (defaults to the current store time)

    Returns:
        Cost rounded to cents
    """
    zone = get_delivery_zone(postal_code)
    cost = zone.express_rate if is_express else zone.base_rate

    if weight > BASE_WEIGHT_KG:
        cost += (to_decimal(weight) - BASE_WEIGHT_KG) * WEIGHT_SURCHARGE_PER_KG

    if scheduled_date is not None:
        now = now or _local_now()
        if scheduled_date.tzinfo is None and now.tzinfo is not None:
            now = now.replace(tzinfo=None)
        days_ahead = (scheduled_date - now).total_seconds() / 86400

        if days_ahead >= 3:
            cost *= ADVANCE_SCHEDULE_DISCOUNT
        elif days_ahead < 1:
            cost *= SAME_DAY_PREMIUM

    return quantize_money(cost)


def get_zone_delivery_options(postal_code, now: Optional[datetime] = None) -> List[Dict]:
    """Standard, express and same-day prices for a postal code"""
    now = now or _local_now()
    return [
        {
            "id": "standard",
            "name": "Standard Delivery",
            "price": calculate_delivery_cost(postal_code),
            "estimated_delivery": "2-3 business days",
        },
        {
            "id": "express",
            "name": "Express Delivery",
            "price": calculate_delivery_cost(postal_code, is_express=True),
            "estimated_delivery": "24 hours",
        },
        {
            "id": "same-day",
            "name": "Same-Day Delivery",
            "price": calculate_delivery_cost(
                postal_code, is_express=True, scheduled_date=now, now=now
            ),
            "estimated_delivery": "Today",
        },
    ]


def get_delivery_time_slots(delivery_date: date, now: Optional[datetime] = None) -> List[Dict[str, str]]:
    """
    Delivery time slots for a date.

    Slots whose start has passed are removed when the date is today.
    """
    now = now or _local_now()
    is_today = delivery_date == now.date()

    return [
        {"id": slot_id, "time": label}
        for slot_id, label, cutoff_hour in TIME_SLOTS
        if not (is_today and now.hour >= cutoff_hour)
    ]


def group_orders_by_zone(orders) -> Dict[str, list]:
    """Group orders by the zone of their delivery postal code"""
    groups: Dict[str, list] = {}
    for order in orders:
        address = order.delivery_address or {}
        zone = get_delivery_zone(address.get("postal_code"))
        groups.setdefault(zone.name, []).append(order)
    return groups
