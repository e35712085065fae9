"""HTTP client for the OSRM routing provider."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Sequence

import httpx

from ...config import settings
from ...models.domain import AlternativeRoute, GeoPoint
from ..geospatial import route_length_km

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RouteMetrics:
    distance_km: float
    duration_min: float
    source: str


class RoutingClient:
    def __init__(
        self,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
    ) -> None:
        self.base_url = base_url or settings.osrm_base_url
        if not self.base_url:
            raise ValueError("OSRM base URL is not configured.")
        self.profile = profile or settings.osrm_profile
        self.timeout = timeout if timeout is not None else settings.http_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.http_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.http_backoff_seconds

    def _get_client(self) -> httpx.Client:
        return httpx.Client(timeout=httpx.Timeout(self.timeout, connect=10.0))

    def _request_route(self, points: Sequence[GeoPoint], params: dict) -> dict:
        if len(points) < 2:
            raise ValueError("At least two coordinates are required for OSRM route.")

        # OSRM route endpoint expects coordinates as "lon,lat;lon,lat;..."
        coordinate_str = ";".join(f"{p.longitude},{p.latitude}" for p in points)
        url = f"{self.base_url}/route/v1/{self.profile}/{coordinate_str}"

        client = self._get_client()
        try:
            attempt = 0
            while True:
                try:
                    response = client.get(url, params=params)
                    response.raise_for_status()
                    data = response.json()
                    if data.get("code") != "Ok":
                        error_msg = data.get("message", "Unknown OSRM route error")
                        raise ValueError(f"OSRM route request failed: {error_msg}")
                    return data
                except (httpx.TimeoutException, httpx.ConnectError, httpx.NetworkError) as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise ConnectionError(
                            f"Failed to reach OSRM service at {self.base_url}: {e}"
                        ) from e
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"OSRM network error, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries}): {e}")
                    time.sleep(wait_time)
                except httpx.HTTPStatusError:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise
                    time.sleep(self.backoff_seconds * attempt)
        finally:
            client.close()

    def route(self, points: Sequence[GeoPoint]) -> RouteMetrics:
        """Distance and duration of the road route through ``points`` in order."""
        data = self._request_route(points, {"overview": "false", "steps": "false"})
        best = data["routes"][0]
        return RouteMetrics(
            distance_km=float(best["distance"]) / 1000.0,
            duration_min=float(best["duration"]) / 60.0,
            source="osrm",
        )

    def alternatives(self, origin: GeoPoint, destination: GeoPoint) -> list[AlternativeRoute]:
        data = self._request_route(
            [origin, destination],
            {"alternatives": "true", "overview": "full", "geometries": "polyline", "steps": "false"},
        )
        routes: list[AlternativeRoute] = []
        for index, item in enumerate(data.get("routes", [])):
            geometry = item.get("geometry")
            points = tuple(GeoPoint(lat, lon) for lat, lon in decode_polyline(geometry)) if geometry else ()
            routes.append(
                AlternativeRoute(
                    id=f"osrm-{index}",
                    name=item.get("summary") or None,
                    distance_km=float(item.get("distance", 0.0)) / 1000.0,
                    duration_min=float(item.get("duration", 0.0)) / 60.0,
                    points=points,
                )
            )
        return routes


def estimate_route_metrics(
    points: Sequence[GeoPoint],
    client: RoutingClient | None = None,
    average_speed_kmh: float | None = None,
) -> RouteMetrics:
    """Ask the routing provider, falling back to haversine distance at an average speed."""

    if client is not None and len(points) >= 2:
        try:
            return client.route(points)
        except (ConnectionError, ValueError, httpx.HTTPError) as e:
            logger.warning(f"OSRM route request failed: {e}. Using haversine fallback.")

    speed = average_speed_kmh or settings.average_speed_kmh
    distance = route_length_km(points)
    return RouteMetrics(distance_km=distance, duration_min=distance / speed * 60.0, source="haversine")


def decode_polyline(polyline: str) -> list[tuple[float, float]]:
    """Decode Google polyline string to list of (lat, lon) coordinates."""
    coordinates = []
    index = 0
    lat = 0
    lon = 0

    while index < len(polyline):
        deltas = []
        for _ in range(2):
            shift = 0
            result = 0
            while True:
                b = ord(polyline[index]) - 63
                index += 1
                result |= (b & 0x1f) << shift
                shift += 5
                if b < 0x20:
                    break
            deltas.append(~(result >> 1) if (result & 1) else (result >> 1))
        lat += deltas[0]
        lon += deltas[1]
        coordinates.append((lat / 1e5, lon / 1e5))

    return coordinates


def check_health(base_url: str | None = None) -> bool:
    """Check OSRM availability with a minimal two-point route request."""
    base = base_url or settings.osrm_base_url
    if not base:
        return False
    try:
        # Nairobi CBD to Westlands
        test_coords = "36.8219,-1.2921;36.8065,-1.2676"
        url = f"{base}/route/v1/{settings.osrm_profile}/{test_coords}"
        response = httpx.get(url, params={"overview": "false"}, timeout=5.0)
        response.raise_for_status()
        return response.json().get("code") == "Ok"
    except (httpx.HTTPError, ValueError):
        return False
