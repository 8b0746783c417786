"""
Distance-based delivery fee calculation

Decision Logic:
- Distance: Haversine from the warehouse to the delivery location
- Fee: base_price + distance_km * price_per_km of the chosen delivery option
- Free delivery once the order total reaches the free-delivery threshold
- If settings or options cannot be read → default quote (5.99, "2-3 days")
"""

import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy.orm import Session

from config import StorefrontConfig
from currency import quantize_money, to_decimal
from errors import MapsUnavailableError

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371
DEFAULT_DELIVERY_FEE = Decimal("5.99")
DEFAULT_ESTIMATED_TIME = "2-3 days"


@dataclass
class DeliveryQuote:
    """Result of a delivery fee calculation"""
    distance_km: float
    delivery_fee: Decimal
    is_free_delivery: bool
    estimated_time: str


def default_quote() -> DeliveryQuote:
    return DeliveryQuote(
        distance_km=0.0,
        delivery_fee=DEFAULT_DELIVERY_FEE,
        is_free_delivery=False,
        estimated_time=DEFAULT_ESTIMATED_TIME,
    )


def calculate_distance(point1: Dict[str, float], point2: Dict[str, float]) -> float:
    """
    Great-circle distance between two {lat, lng} points.

    Returns:
        Distance in kilometers, rounded to 2 decimals
    """
    d_lat = math.radians(point2["lat"] - point1["lat"])
    d_lng = math.radians(point2["lng"] - point1["lng"])

    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(point1["lat"]))
        * math.cos(math.radians(point2["lat"]))
        * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return round(EARTH_RADIUS_KM * c, 2)


def estimate_delivery_time(distance_km: float, is_express: bool, estimated_days: int) -> str:
    """Human readable delivery estimate for a distance and option"""
    if is_express:
        return "Same day" if distance_km <= 10 else "1 day"

    if distance_km <= 5:
        return "1-2 days"
    if distance_km <= 15:
        return "2-3 days"
    return f"{estimated_days} days"


def get_delivery_settings(session: Session):
    """
    Read the delivery settings row.

    Falls back to StorefrontConfig values when the table is empty.
    """
    from models import DeliverySettings

    settings = session.query(DeliverySettings).order_by(DeliverySettings.id).first()
    if settings is not None:
        return settings

    logger.warning("No delivery settings row found, using configured defaults")
    return DeliverySettings(
        free_delivery_threshold=to_decimal(StorefrontConfig.FREE_DELIVERY_THRESHOLD),
        warehouse_lat=StorefrontConfig.WAREHOUSE_LAT,
        warehouse_lng=StorefrontConfig.WAREHOUSE_LNG,
    )


def calculate_delivery_fee(
    session: Session,
    location: Dict[str, float],
    order_total,
    option_id: Optional[int] = None
) -> DeliveryQuote:
    """
    Calculate delivery fee for a location and order total.

    Args:
        session: SQLAlchemy database session
        location: {"lat": ..., "lng": ...} of the delivery address
        order_total: Cart subtotal used for the free-delivery check
        option_id: Delivery option id; cheapest active option when omitted

    Returns:
        DeliveryQuote; the default quote when settings or options are unavailable
    """
    from models import DeliveryOption

    try:
        settings = get_delivery_settings(session)

        if option_id is not None:
            option = session.query(DeliveryOption).filter(
                DeliveryOption.id == option_id
            ).first()
        else:
            option = session.query(DeliveryOption).filter(
                DeliveryOption.active == True
            ).order_by(DeliveryOption.base_price).first()

        if option is None:
            logger.warning(f"Delivery option not found (id={option_id}), using default quote")
            return default_quote()

        warehouse = {"lat": settings.warehouse_lat, "lng": settings.warehouse_lng}
        distance = calculate_distance(warehouse, location)

        fee = to_decimal(option.base_price) + to_decimal(distance) * to_decimal(option.price_per_km or 0)
        is_free = to_decimal(order_total) >= to_decimal(settings.free_delivery_threshold)

        quote = DeliveryQuote(
            distance_km=distance,
            delivery_fee=Decimal("0.00") if is_free else quantize_money(fee),
            is_free_delivery=is_free,
            estimated_time=estimate_delivery_time(
                distance, bool(option.is_express), option.estimated_delivery_days
            ),
        )

        logger.info(
            f"Delivery quote: {distance} km via '{option.name}' → "
            f"{quote.delivery_fee} ({'free' if is_free else 'charged'})"
        )
        return quote

    except Exception as e:
        logger.error(f"Error calculating delivery fee: {e}")
        return default_quote()


def get_coordinates_from_address(address: str, maps_client) -> Dict[str, float]:
    """
    Geocode a delivery address through the Google Maps client.

    Raises:
        ServiceAreaError: If the address is outside the Nairobi delivery area
        MapsUnavailableError: If the Maps API is down or times out
    """
    from googlemaps.exceptions import ApiError, Timeout, TransportError

    try:
        location = maps_client.geocode_address(address)
    except (ApiError, TransportError, Timeout) as e:
        logger.error(f"Geocoding unavailable for '{address}': {e}")
        raise MapsUnavailableError("Could not reach Google Maps, enter the coordinates manually") from e
    return location.as_point()
