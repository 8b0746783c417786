"""
Google Maps access for checkout and rider routes

Checkout geocodes the typed address into the {lat, lng} point the delivery
fee is priced on; riders get traffic-aware leg times between stops.
Only addresses inside the Nairobi box below are deliverable.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import googlemaps
from googlemaps.exceptions import ApiError

logger = logging.getLogger(__name__)


# Kikuyu/Ngong in the west to Ruai in the east, Ruiru down to Kitengela
NAIROBI_BOUNDS = {
    "north": -1.10,
    "south": -1.45,
    "west": 36.65,
    "east": 37.10,
}


class ServiceAreaError(Exception):
    """Address resolves to a point FreshCart does not deliver to"""
    pass


def in_service_area(lat: float, lng: float) -> bool:
    return (
        NAIROBI_BOUNDS["south"] <= lat <= NAIROBI_BOUNDS["north"]
        and NAIROBI_BOUNDS["west"] <= lng <= NAIROBI_BOUNDS["east"]
    )


@dataclass
class GeoLocation:
    latitude: float
    longitude: float
    address: Optional[str] = None

    def as_point(self) -> Dict[str, float]:
        """Shape stored on Order.delivery_address and used by fee/route maths"""
        return {"lat": self.latitude, "lng": self.longitude}


@dataclass
class RiderLeg:
    """Driving leg between two drop-offs"""
    distance_meters: int
    duration_seconds: int
    traffic_seconds: Optional[int] = None

    @property
    def minutes(self) -> float:
        return (self.traffic_seconds or self.duration_seconds) / 60.0


def _latlng(point: Dict[str, float]) -> str:
    return f"{point['lat']},{point['lng']}"


class GoogleMapsClient:
    """Geocoding and Distance Matrix calls, restricted to Nairobi"""

    def __init__(self, api_key: str):
        if not api_key:
            raise ValueError("GOOGLE_MAPS_API_KEY is not configured")

        self.client = googlemaps.Client(key=api_key)
        logger.info("✓ Google Maps client ready")

    def geocode_address(self, address: str) -> GeoLocation:
        """
        Resolve a customer's delivery address.

        Raises:
            ValueError: Google returned no match
            ServiceAreaError: The match lies outside NAIROBI_BOUNDS
            ApiError: The Geocoding API call failed
        """
        try:
            matches = self.client.geocode(address, region="ke", components={"country": "KE"})
        except ApiError as e:
            logger.error(f"Geocoding failed for '{address}': {e}")
            raise

        if not matches:
            raise ValueError(f"No location found for '{address}'")

        best = matches[0]
        lat = best["geometry"]["location"]["lat"]
        lng = best["geometry"]["location"]["lng"]

        if not in_service_area(lat, lng):
            raise ServiceAreaError(
                f"'{address}' ({lat:.4f}, {lng:.4f}) is outside our Nairobi delivery area"
            )

        logger.info(f"✓ {address} -> ({lat:.4f}, {lng:.4f})")
        return GeoLocation(latitude=lat, longitude=lng, address=best.get("formatted_address"))

    def rider_leg(self, origin: Dict[str, float], destination: Dict[str, float]) -> RiderLeg:
        """
        Driving distance and time between two {lat, lng} points, departing now.

        Raises:
            ValueError: No drivable route between the points
            ApiError: The Distance Matrix API call failed
        """
        try:
            matrix = self.client.distance_matrix(
                origins=[_latlng(origin)],
                destinations=[_latlng(destination)],
                mode="driving",
                departure_time="now",
                units="metric"
            )
        except ApiError as e:
            logger.error(f"Distance Matrix failed: {e}")
            raise

        element = matrix["rows"][0]["elements"][0]
        if element["status"] != "OK":
            raise ValueError(f"No route between stops: {element['status']}")

        traffic = element.get("duration_in_traffic", {}).get("value")
        return RiderLeg(
            distance_meters=element["distance"]["value"],
            duration_seconds=element["duration"]["value"],
            traffic_seconds=traffic
        )

    def leg_minutes(self, origin: Dict[str, float], destination: Dict[str, float]) -> float:
        return self.rider_leg(origin, destination).minutes
