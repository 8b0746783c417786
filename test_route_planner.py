"""
Tests for rider route planning
"""

from datetime import datetime, timedelta
from types import SimpleNamespace

from route_planner import (
    estimate_arrival_times, estimate_stop_minutes, get_delivery_priority,
    optimize_delivery_route, order_to_stop
)

ORIGIN = {"lat": 0.0, "lng": 0.0}


def make_order(order_id, lng=None, method="Standard Delivery"):
    address = {"street": f"Street {order_id}", "city": "Nairobi", "full_name": f"Customer {order_id}"}
    if lng is not None:
        address.update({"lat": 0.0, "lng": lng})
    return SimpleNamespace(id=order_id, delivery_address=address, delivery_method=method, user=None)


def test_priority_by_delivery_method():
    assert get_delivery_priority("Express Delivery") == 10
    assert get_delivery_priority("Same Day") == 8
    assert get_delivery_priority("Standard Delivery") == 5
    assert get_delivery_priority("Scheduled") == 3
    assert get_delivery_priority(None) == 5


def test_stop_minutes_by_method():
    assert estimate_stop_minutes("Express Delivery") == 5
    assert estimate_stop_minutes("Standard Delivery") == 10
    assert estimate_stop_minutes("Next Day Delivery") == 8


def test_stop_reads_nested_location():
    order = SimpleNamespace(
        id=7,
        delivery_address={"street": "Moi Avenue", "location": {"lat": -1.28, "lng": 36.82}},
        delivery_method=None,
        user=SimpleNamespace(full_name="Jane Wanjiku"),
    )

    stop = order_to_stop(order)

    assert stop.location == {"lat": -1.28, "lng": 36.82}
    assert stop.customer_name == "Jane Wanjiku"
    assert stop.delivery_method == "Standard"


def test_nearest_neighbour_beats_priority_order():
    orders = [
        make_order(1, lng=0.1),
        make_order(2, lng=0.05),
        make_order(3, lng=0.2, method="Express Delivery"),
    ]

    route = optimize_delivery_route(orders, start=ORIGIN)

    assert [s.order_id for s in route.stops] == [2, 1, 3]
    assert route.total_distance_km == 22.2
    assert route.efficiency == 43
    # 25 handover minutes + 3 minutes per km
    assert route.total_minutes == 92


def test_stops_without_coordinates_go_last():
    orders = [make_order(1), make_order(2, lng=0.05)]

    route = optimize_delivery_route(orders, start=ORIGIN)

    assert [s.order_id for s in route.stops] == [2, 1]
    assert route.total_distance_km == 5.6


def test_empty_route():
    route = optimize_delivery_route([], start=ORIGIN)

    assert route.stops == []
    assert route.to_dict()["total_distance_km"] == 0.0


def test_arrival_times():
    start = datetime(2026, 3, 2, 9, 0)
    route = optimize_delivery_route([make_order(1), make_order(2)], start=ORIGIN)

    arrivals = estimate_arrival_times(route, start)

    assert arrivals[0]["estimated_arrival"] == start + timedelta(minutes=10)
    # unlocated leg (10) + handover (10)
    assert arrivals[1]["estimated_arrival"] == start + timedelta(minutes=30)


def test_arrival_times_use_city_speed():
    start = datetime(2026, 3, 2, 9, 0)
    route = optimize_delivery_route(
        [make_order(1, lng=0.0), make_order(2, lng=0.1)], start=ORIGIN
    )

    arrivals = estimate_arrival_times(route, start)
    leg = arrivals[1]["estimated_arrival"] - arrivals[0]["estimated_arrival"]

    # 11.12 km at 20 km/h is about 33 minutes, plus 10 minutes handover
    assert timedelta(minutes=43) < leg < timedelta(minutes=44)


def test_arrival_times_use_live_leg_minutes():
    from unittest.mock import MagicMock

    maps_client = MagicMock()
    maps_client.leg_minutes.return_value = 25.0
    start = datetime(2026, 3, 2, 9, 0)
    route = optimize_delivery_route(
        [make_order(1, lng=0.0), make_order(2, lng=0.1)], start=ORIGIN
    )

    arrivals = estimate_arrival_times(route, start, maps_client=maps_client)
    leg = arrivals[1]["estimated_arrival"] - arrivals[0]["estimated_arrival"]

    assert leg == timedelta(minutes=35)
    maps_client.leg_minutes.assert_called_once()
