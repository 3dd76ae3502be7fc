# SPDX-License-Identifier: Apache-2.0

"""
Tests for geographic calculations.
"""

import pytest
from datetime import datetime

from sentinela.domain.geo import (
    Coordinate,
    validate_coordinates,
    haversine_km,
    haversine_m,
    is_within_geofence,
    route_distance_km,
    analyze_route_efficiency,
    routing_profile,
    calculate_route_statistics,
    format_distance,
    format_duration,
    format_cost,
    calculate_eta,
    parse_google_maps_url,
    location_to_dict
)

BASE = Coordinate(lat=-23.5505, lng=-46.6333)


class TestDistances:
    """Haversine distances."""

    def test_same_point_is_zero(self):
        assert haversine_km(BASE, BASE) == 0

    def test_one_degree_of_latitude(self):
        """One degree of latitude is about 111.19 km."""
        distance = haversine_km(Coordinate(0.0, 0.0), Coordinate(1.0, 0.0))
        assert distance == pytest.approx(111.19, abs=0.01)

    def test_metres_match_kilometres(self):
        other = Coordinate(lat=-23.56, lng=-46.64)
        assert haversine_m(BASE, other) == pytest.approx(haversine_km(BASE, other) * 1000)

    def test_distance_is_symmetric(self):
        other = Coordinate(lat=-22.9068, lng=-43.1729)
        assert haversine_km(BASE, other) == pytest.approx(haversine_km(other, BASE))

    def test_route_distance_sums_legs(self):
        points = [Coordinate(0.0, 0.0), Coordinate(1.0, 0.0), Coordinate(2.0, 0.0)]
        assert route_distance_km(points) == pytest.approx(2 * 111.19, abs=0.05)

    def test_route_distance_of_single_point(self):
        assert route_distance_km([BASE]) == 0
        assert route_distance_km([]) == 0


class TestGeofence:
    """Circular geofence checks."""

    def test_position_inside_default_radius(self):
        inside, distance = is_within_geofence(Coordinate(BASE.lat + 0.0003, BASE.lng), BASE)
        assert inside is True
        assert distance == pytest.approx(33.4, abs=0.5)

    def test_position_outside_default_radius(self):
        inside, distance = is_within_geofence(Coordinate(BASE.lat + 0.001, BASE.lng), BASE)
        assert inside is False
        assert distance > 100

    def test_custom_radius(self):
        inside, _ = is_within_geofence(Coordinate(BASE.lat + 0.001, BASE.lng), BASE, radius_m=150)
        assert inside is True


class TestCoordinates:

    @pytest.mark.parametrize("lat,lng,expected", [
        (0, 0, True),
        (90, 180, True),
        (-90, -180, True),
        (90.1, 0, False),
        (0, -180.5, False),
    ])
    def test_validate_coordinates(self, lat, lng, expected):
        assert validate_coordinates(lat, lng) is expected


class TestRouteEfficiency:
    """Straight-line versus travelled distance."""

    def test_excellent_route(self):
        result = analyze_route_efficiency(9.0, 10.0)
        assert result.efficiency == 90.0
        assert result.detour_percentage == 11.11
        assert result.rating == "excellent"

    def test_good_route(self):
        result = analyze_route_efficiency(8.0, 10.0)
        assert result.rating == "good"
        assert result.detour_percentage == 25.0

    def test_poor_route(self):
        assert analyze_route_efficiency(5.0, 10.0).rating == "poor"

    def test_zero_distance_rejected(self):
        with pytest.raises(ValueError):
            analyze_route_efficiency(0, 10.0)

    def test_routing_profile(self):
        assert routing_profile("on_foot") == "walking"
        assert routing_profile("car") == "driving"
        assert routing_profile("motorcycle") == "driving"


class TestRouteStatistics:

    def test_empty_routes(self):
        stats = calculate_route_statistics([])
        assert stats["total_distance"] == 0.0
        assert stats["longest_route"] == 0.0

    def test_aggregates(self):
        stats = calculate_route_statistics([
            {"distance": 10.0, "duration": 600.0},
            {"distance": 30.0, "duration": 1800.0}
        ])
        assert stats["total_distance"] == 40.0
        assert stats["average_duration"] == 1200.0
        assert stats["shortest_route"] == 10.0
        assert stats["longest_route"] == 30.0


class TestFormatting:
    """Display formatting helpers."""

    def test_format_distance(self):
        assert format_distance(850) == "850 m"
        assert format_distance(1250) == "1.25 km"

    def test_format_duration(self):
        assert format_duration(8100) == "2h 15min"
        assert format_duration(2700) == "45min"

    def test_format_cost(self):
        assert format_cost(1234.56) == "R$ 1.234,56"
        assert format_cost(-10) == "-R$ 10,00"

    def test_calculate_eta(self):
        now = datetime(2024, 1, 1, 10, 0, 0)
        assert calculate_eta(5400, now) == datetime(2024, 1, 1, 11, 30, 0)


class TestGoogleMapsParsing:
    """Location extraction from Google Maps links."""

    def test_place_with_coordinates(self):
        location = parse_google_maps_url(
            "https://www.google.com/maps/place/Shopping+Center/@-23.5505,-46.6333,17z"
        )
        assert location is not None
        assert location.name == "Shopping Center"
        assert location.lat == -23.5505
        assert location.lng == -46.6333

    def test_coordinates_only(self):
        location = parse_google_maps_url("https://www.google.com/maps/@-22.9068,-43.1729,15z")
        assert location.name == ""
        assert location.lat == -22.9068

    def test_place_without_coordinates(self):
        location = parse_google_maps_url("https://www.google.com/maps/place/Pra%C3%A7a+da+S%C3%A9")
        assert location.name == "Praça da Sé"
        assert (location.lat, location.lng) == (0.0, 0.0)

    def test_out_of_range_coordinates(self):
        assert parse_google_maps_url("https://www.google.com/maps/@95.0,10.0,15z") is None

    def test_unrelated_url(self):
        assert parse_google_maps_url("https://example.com/somewhere") is None

    def test_location_to_dict(self):
        location = parse_google_maps_url("https://www.google.com/maps/place/Base/@-23.5,-46.6,17z")
        assert location_to_dict(location) == {
            "name": "Base", "address": "Base", "lat": -23.5, "lng": -46.6
        }
