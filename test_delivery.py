"""
Tests for delivery fees, postal-code zones and delivery options
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from delivery_calculation import (
    DEFAULT_DELIVERY_FEE, calculate_delivery_fee, calculate_distance,
    estimate_delivery_time, get_coordinates_from_address, get_delivery_settings
)
from delivery_options import DeliveryOptionService
from delivery_zones import (
    calculate_delivery_cost, calculate_delivery_zone, get_delivery_time_slots,
    get_zone_delivery_options, group_orders_by_zone
)
from errors import StorefrontError
from models import DeliveryOption

WAREHOUSE = {"lat": -1.2921, "lng": 36.8219}
ELEVEN_KM_SOUTH = {"lat": -1.3921, "lng": 36.8219}


def _option(session, name):
    return session.query(DeliveryOption).filter(DeliveryOption.name == name).one()


# ============================================================================
# Distance and fee
# ============================================================================

def test_distance_one_degree_of_latitude():
    assert calculate_distance({"lat": 0, "lng": 0}, {"lat": 1, "lng": 0}) == 111.19


def test_distance_same_point_is_zero():
    assert calculate_distance(WAREHOUSE, WAREHOUSE) == 0.0


def test_estimate_delivery_time():
    assert estimate_delivery_time(3, False, 2) == "1-2 days"
    assert estimate_delivery_time(12, False, 2) == "2-3 days"
    assert estimate_delivery_time(40, False, 4) == "4 days"
    assert estimate_delivery_time(8, True, 0) == "Same day"
    assert estimate_delivery_time(25, True, 0) == "1 day"


def test_fee_is_base_plus_per_km(session):
    standard = _option(session, "Standard Delivery")

    quote = calculate_delivery_fee(session, ELEVEN_KM_SOUTH, 500, standard.id)

    assert quote.distance_km == 11.12
    assert quote.delivery_fee == Decimal("372.40")
    assert not quote.is_free_delivery
    assert quote.estimated_time == "2-3 days"


def test_free_delivery_at_threshold(session):
    standard = _option(session, "Standard Delivery")

    quote = calculate_delivery_fee(session, ELEVEN_KM_SOUTH, 3000, standard.id)

    assert quote.is_free_delivery
    assert quote.delivery_fee == Decimal("0.00")


def test_cheapest_active_option_used_by_default(session):
    quote = calculate_delivery_fee(session, WAREHOUSE, 100)
    assert quote.delivery_fee == Decimal("150.00")


def test_express_option_estimate(session):
    express = _option(session, "Express Delivery")
    quote = calculate_delivery_fee(session, ELEVEN_KM_SOUTH, 100, express.id)
    assert quote.estimated_time == "1 day"


def test_unknown_option_falls_back_to_default_quote(session):
    quote = calculate_delivery_fee(session, WAREHOUSE, 100, option_id=999)

    assert quote.delivery_fee == DEFAULT_DELIVERY_FEE
    assert quote.estimated_time == "2-3 days"


def test_lookup_failure_falls_back_to_default_quote(session):
    quote = calculate_delivery_fee(session, {"lat": None, "lng": None}, 100)
    assert quote.delivery_fee == DEFAULT_DELIVERY_FEE


def test_settings_fall_back_to_config_when_table_empty(db_manager):
    session = db_manager.get_session()
    settings = get_delivery_settings(session)

    assert settings.id is None
    assert settings.free_delivery_threshold == Decimal("50")
    session.close()


# ============================================================================
# Zones
# ============================================================================

def test_zone_selection():
    assert calculate_delivery_zone("00100") == 0
    assert calculate_delivery_zone("250") == 1
    assert calculate_delivery_zone("00500") == 2
    assert calculate_delivery_zone("not-a-code") == 2
    assert calculate_delivery_zone(None) == 2


def test_zone_cost_rates_and_weight():
    assert calculate_delivery_cost("00100") == Decimal("250.00")
    assert calculate_delivery_cost("00100", is_express=True) == Decimal("450.00")
    assert calculate_delivery_cost("00100", weight=7) == Decimal("350.00")


def test_zone_cost_scheduling_adjustments():
    now = datetime(2026, 3, 2, 10, 0)

    advance = calculate_delivery_cost("00200", scheduled_date=now + timedelta(days=4), now=now)
    same_day = calculate_delivery_cost("00200", scheduled_date=now + timedelta(hours=2), now=now)
    two_days = calculate_delivery_cost("00200", scheduled_date=now + timedelta(days=2), now=now)

    assert advance == Decimal("315.00")
    assert same_day == Decimal("420.00")
    assert two_days == Decimal("350.00")


def test_zone_delivery_options():
    options = get_zone_delivery_options("00100", now=datetime(2026, 3, 2, 10, 0))

    prices = {o["id"]: o["price"] for o in options}
    assert prices == {
        "standard": Decimal("250.00"),
        "express": Decimal("450.00"),
        "same-day": Decimal("540.00"),
    }


def test_past_time_slots_hidden_for_today():
    now = datetime(2026, 3, 2, 13, 0)

    today = get_delivery_time_slots(date(2026, 3, 2), now=now)
    tomorrow = get_delivery_time_slots(date(2026, 3, 3), now=now)

    assert [s["id"] for s in today] == ["evening"]
    assert len(tomorrow) == 3


def test_group_orders_by_zone():
    orders = [
        SimpleNamespace(id=1, delivery_address={"postal_code": "00100"}),
        SimpleNamespace(id=2, delivery_address={"postal_code": "00200"}),
        SimpleNamespace(id=3, delivery_address={"postal_code": "00150"}),
    ]

    groups = group_orders_by_zone(orders)

    assert [o.id for o in groups["Zone A - Nairobi CBD"]] == [1, 3]
    assert [o.id for o in groups["Zone B - Nairobi Suburbs"]] == [2]


# ============================================================================
# Delivery options admin
# ============================================================================

def test_options_listed_standard_first_cheapest_first(session):
    names = [o.name for o in DeliveryOptionService(session).list_options()]
    assert names == ["Standard Delivery", "Next Day Delivery", "Express Delivery"]


def test_inactive_options_hidden(session):
    service = DeliveryOptionService(session)
    service.update_option(_option(session, "Next Day Delivery").id, active=False)

    assert len(service.list_options()) == 2
    assert len(service.list_options(include_inactive=True)) == 3


def test_option_validation(session):
    service = DeliveryOptionService(session)

    with pytest.raises(StorefrontError):
        service.create_option("Broken", base_price=-1)
    with pytest.raises(StorefrontError):
        service.update_option(_option(session, "Standard Delivery").id, colour="red")


def test_update_settings(session):
    settings = DeliveryOptionService(session).update_settings(free_delivery_threshold=5000)

    assert settings.free_delivery_threshold == Decimal("5000")
    standard = _option(session, "Standard Delivery")
    assert not calculate_delivery_fee(session, WAREHOUSE, 3000, standard.id).is_free_delivery


# ============================================================================
# Geocoding
# ============================================================================

def _maps_client(lat, lng):
    from googlemaps_client import GoogleMapsClient

    with patch("googlemaps_client.googlemaps.Client") as client_cls:
        client_cls.return_value.geocode.return_value = [{
            "geometry": {"location": {"lat": lat, "lng": lng}},
            "formatted_address": "Ngong Road, Nairobi, Kenya",
        }]
        return GoogleMapsClient("maps-key")


def test_geocode_address_in_nairobi():
    point = get_coordinates_from_address("Ngong Road, Nairobi", _maps_client(-1.30, 36.78))

    assert point == {"lat": -1.30, "lng": 36.78}


def test_geocode_rejects_addresses_outside_service_area():
    from googlemaps_client import ServiceAreaError

    mombasa = _maps_client(-4.04, 39.67)

    with pytest.raises(ServiceAreaError):
        get_coordinates_from_address("Moi Avenue, Mombasa", mombasa)


def test_maps_client_needs_key():
    from googlemaps_client import GoogleMapsClient

    with pytest.raises(ValueError):
        GoogleMapsClient("")


def test_rider_leg_prefers_traffic_duration():
    from googlemaps_client import GoogleMapsClient

    with patch("googlemaps_client.googlemaps.Client") as client_cls:
        client_cls.return_value.distance_matrix.return_value = {"rows": [{"elements": [{
            "status": "OK",
            "distance": {"value": 5200},
            "duration": {"value": 900},
            "duration_in_traffic": {"value": 1500},
        }]}]}
        maps_client = GoogleMapsClient("maps-key")

    minutes = maps_client.leg_minutes({"lat": -1.29, "lng": 36.82}, {"lat": -1.30, "lng": 36.78})

    assert minutes == 25.0
    kwargs = maps_client.client.distance_matrix.call_args.kwargs
    assert kwargs["origins"] == ["-1.29,36.82"]


def test_rider_leg_without_route():
    from googlemaps_client import GoogleMapsClient

    with patch("googlemaps_client.googlemaps.Client") as client_cls:
        client_cls.return_value.distance_matrix.return_value = {
            "rows": [{"elements": [{"status": "ZERO_RESULTS"}]}]
        }
        maps_client = GoogleMapsClient("maps-key")

    with pytest.raises(ValueError):
        maps_client.rider_leg({"lat": -1.29, "lng": 36.82}, {"lat": -1.30, "lng": 36.78})


def test_maps_outage_during_geocoding():
    from googlemaps.exceptions import Timeout

    from errors import MapsUnavailableError
    from googlemaps_client import GoogleMapsClient

    with patch("googlemaps_client.googlemaps.Client") as client_cls:
        client_cls.return_value.geocode.side_effect = Timeout()
        maps_client = GoogleMapsClient("maps-key")

    with pytest.raises(MapsUnavailableError):
        get_coordinates_from_address("Ngong Road, Nairobi", maps_client)
