# SPDX-License-Identifier: Apache-2.0

"""
Geographic calculations for rounds and cost estimates.

Pure functions: great-circle distances, geofence checks, route efficiency
analysis, display formatting and Google Maps link parsing.
"""

import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Dict, Any, Optional, Sequence, Tuple
from urllib.parse import unquote

EARTH_RADIUS_KM = 6371.0
DEFAULT_GEOFENCE_RADIUS_M = 50.0

_COORDS_PATTERN = re.compile(r'@(-?\d+\.?\d*),(-?\d+\.?\d*)')
_PLACE_PATTERN = re.compile(r'place/([^/]+)')


@dataclass(frozen=True)
class Coordinate:
    """Latitude/longitude pair in decimal degrees."""
    lat: float
    lng: float


@dataclass
class RouteEfficiency:
    """Straight-line versus travelled distance comparison."""
    efficiency: float
    detour_percentage: float
    rating: str


@dataclass
class MapsLocation:
    """Location extracted from a Google Maps link."""
    name: str
    address: str
    lat: float
    lng: float


def validate_coordinates(lat: float, lng: float) -> bool:
    """Check that latitude is within [-90, 90] and longitude within [-180, 180]."""
    return -90 <= lat <= 90 and -180 <= lng <= 180


def haversine_km(point1: Coordinate, point2: Coordinate) -> float:
    """
    Great-circle distance between two points.

    Args:
        point1: Origin coordinate
        point2: Destination coordinate

    Returns:
        Distance in kilometres
    """
    d_lat = math.radians(point2.lat - point1.lat)
    d_lng = math.radians(point2.lng - point1.lng)
    lat1 = math.radians(point1.lat)
    lat2 = math.radians(point2.lat)

    a = math.sin(d_lat / 2) ** 2 + math.sin(d_lng / 2) ** 2 * math.cos(lat1) * math.cos(lat2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def haversine_m(point1: Coordinate, point2: Coordinate) -> float:
    """Great-circle distance in metres."""
    return haversine_km(point1, point2) * 1000


def is_within_geofence(
    position: Coordinate,
    target: Coordinate,
    radius_m: Optional[float] = None
) -> Tuple[bool, float]:
    """
    Check whether a position lies inside a circular geofence.

    Args:
        position: Reported agent position
        target: Geofence centre
        radius_m: Accepted radius in metres (default 50 m)

    Returns:
        Tuple of (inside, distance in metres)
    """
    radius = radius_m if radius_m is not None else DEFAULT_GEOFENCE_RADIUS_M
    distance = haversine_m(position, target)
    return distance <= radius, distance


def route_distance_km(points: Sequence[Coordinate]) -> float:
    """Length of a GPS track as the sum of its Haversine legs."""
    return sum(
        haversine_km(points[i], points[i + 1])
        for i in range(len(points) - 1)
    )


def analyze_route_efficiency(straight_line_km: float, route_km: float) -> RouteEfficiency:
    """
    Compare a travelled route with the straight-line distance.

    Args:
        straight_line_km: Haversine distance between endpoints
        route_km: Distance actually travelled

    Returns:
        RouteEfficiency with values rounded to two decimals

    Raises:
        ValueError: If either distance is not positive
    """
    if route_km <= 0 or straight_line_km <= 0:
        raise ValueError("Distances must be greater than zero")

    efficiency = (straight_line_km / route_km) * 100
    detour = ((route_km - straight_line_km) / straight_line_km) * 100

    if efficiency >= 90:
        rating = "excellent"
    elif efficiency >= 80:
        rating = "good"
    elif efficiency >= 70:
        rating = "moderate"
    else:
        rating = "poor"

    return RouteEfficiency(
        efficiency=round(efficiency, 2),
        detour_percentage=round(detour, 2),
        rating=rating
    )


def routing_profile(vehicle_type: str) -> str:
    """Routing profile used for a vehicle type (walking for on-foot rounds)."""
    if vehicle_type == "on_foot":
        return "walking"
    return "driving"


def calculate_route_statistics(routes: List[Dict[str, float]]) -> Dict[str, float]:
    """
    Aggregate distance and duration over several routes.

    Args:
        routes: Items with ``distance`` and ``duration`` keys

    Returns:
        Totals, averages, shortest and longest distance; zeros for no routes
    """
    if not routes:
        return {
            "total_distance": 0.0,
            "total_duration": 0.0,
            "average_distance": 0.0,
            "average_duration": 0.0,
            "shortest_route": 0.0,
            "longest_route": 0.0
        }

    distances = [route["distance"] for route in routes]
    durations = [route["duration"] for route in routes]

    return {
        "total_distance": sum(distances),
        "total_duration": sum(durations),
        "average_distance": sum(distances) / len(distances),
        "average_duration": sum(durations) / len(durations),
        "shortest_route": min(distances),
        "longest_route": max(distances)
    }


def format_distance(meters: float) -> str:
    """Format metres as ``"850 m"`` or ``"1.25 km"``."""
    if meters < 1000:
        return f"{round(meters)} m"
    return f"{meters / 1000:.2f} km"


def format_duration(seconds: float) -> str:
    """Format seconds as ``"2h 15min"`` or ``"45min"``."""
    seconds = int(seconds)
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    if hours > 0:
        return f"{hours}h {minutes}min"
    return f"{minutes}min"


def format_cost(value: float) -> str:
    """Format a value in Brazilian Real, e.g. ``"R$ 1.234,56"``."""
    formatted = f"{abs(value):,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    sign = "-" if value < 0 else ""
    return f"{sign}R$ {formatted}"


def calculate_eta(duration_seconds: float, now: Optional[datetime] = None) -> datetime:
    """Estimated arrival time after ``duration_seconds``."""
    start = now or datetime.utcnow()
    return start + timedelta(seconds=duration_seconds)


def parse_google_maps_url(url: str) -> Optional[MapsLocation]:
    """
    Extract a location from a Google Maps link.

    ``@lat,lng`` segments provide coordinates and ``/place/<name>`` segments
    provide the place name. A place link without coordinates yields 0, 0.

    Args:
        url: Google Maps URL

    Returns:
        MapsLocation or None when the link carries neither form
    """
    coords_match = _COORDS_PATTERN.search(url)
    place_match = _PLACE_PATTERN.search(url)

    name = ""
    if place_match:
        name = unquote(place_match.group(1).replace("+", " "))

    if coords_match:
        lat = float(coords_match.group(1))
        lng = float(coords_match.group(2))
        if not validate_coordinates(lat, lng):
            return None
        return MapsLocation(name=name, address=name, lat=lat, lng=lng)

    if place_match:
        return MapsLocation(name=name, address=name, lat=0.0, lng=0.0)

    return None


def location_to_dict(location: MapsLocation) -> Dict[str, Any]:
    return {
        "name": location.name,
        "address": location.address,
        "lat": location.lat,
        "lng": location.lng
    }
