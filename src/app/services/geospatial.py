"""Geospatial helper functions."""

from __future__ import annotations

import math
from typing import Sequence

from shapely.geometry import LineString, Point
from shapely.ops import nearest_points

from ..models.domain import GeoPoint

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def distance_km(a: GeoPoint, b: GeoPoint) -> float:
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def planar_distance(a: GeoPoint, b: GeoPoint) -> float:
    """Euclidean distance in coordinate degrees.

    Degree distance is latitude dependent (a degree of longitude shrinks
    towards the poles); callers that compare it with a threshold accept that.
    """

    return math.hypot(a.latitude - b.latitude, a.longitude - b.longitude)


def _shape(points: Sequence[GeoPoint]) -> Point | LineString:
    # shapely works in (x, y) = (lon, lat)
    coords = [(p.longitude, p.latitude) for p in points]
    if len(coords) == 1:
        return Point(coords[0])
    return LineString(coords)


def distance_to_polyline(position: GeoPoint, points: Sequence[GeoPoint]) -> float:
    """Minimum distance, in coordinate degrees, from a point to a polyline."""

    if not points:
        raise ValueError("At least one route point is required.")
    return _shape(points).distance(Point(position.longitude, position.latitude))


def nearest_point_on_route(position: GeoPoint, points: Sequence[GeoPoint]) -> GeoPoint:
    if not points:
        raise ValueError("At least one route point is required.")
    _, nearest = nearest_points(Point(position.longitude, position.latitude), _shape(points))
    return GeoPoint(latitude=nearest.y, longitude=nearest.x)


def route_length_km(points: Sequence[GeoPoint]) -> float:
    return sum(distance_km(points[i], points[i + 1]) for i in range(len(points) - 1))


def insertion_cost_km(points: Sequence[GeoPoint], index: int, candidate: GeoPoint) -> float:
    """Added length when inserting ``candidate`` before ``points[index]``."""

    if not points:
        return 0.0
    if index <= 0:
        return distance_km(candidate, points[0])
    if index >= len(points):
        return distance_km(points[-1], candidate)
    before, after = points[index - 1], points[index]
    return distance_km(before, candidate) + distance_km(candidate, after) - distance_km(before, after)


def route_progress_pct(position: GeoPoint, points: Sequence[GeoPoint]) -> float:
    """Share of the route already covered, projecting the position onto it."""

    if len(points) < 2:
        return 0.0
    line = _shape(points)
    if line.length == 0:
        return 100.0
    projected = line.project(Point(position.longitude, position.latitude))
    return round(max(0.0, min(1.0, projected / line.length)) * 100.0, 1)


def eta_minutes(position: GeoPoint, destination: GeoPoint, average_speed_kmh: float) -> float:
    if average_speed_kmh <= 0:
        raise ValueError("Average speed must be positive.")
    return distance_km(position, destination) / average_speed_kmh * 60.0


def within_radius(point: GeoPoint, center: GeoPoint, radius_m: float) -> bool:
    return distance_km(point, center) <= radius_m / 1000.0
