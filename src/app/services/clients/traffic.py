"""Async client for the traffic conditions provider."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ...config import settings
from ...models.domain import AlertType, GeoPoint, Severity, TrafficAlert
from ..cache import BoundedTTLCache
from ..traffic.aggregator import condition_message
from .booking_api import parse_point, parse_timestamp

logger = logging.getLogger(__name__)


def parse_condition(item: dict) -> Optional[TrafficAlert]:
    location = item.get("location") or {}
    point = parse_point(location)
    if point is None or not item.get("id"):
        return None
    try:
        alert_type = AlertType(str(item.get("type", "congestion")))
    except ValueError:
        alert_type = AlertType.CONGESTION
    try:
        severity = Severity(str(item.get("severity", "low")))
    except ValueError:
        severity = Severity.LOW
    address = location.get("address") if isinstance(location, dict) else None
    impact = item.get("impact") or {}
    duration = item.get("duration") or {}
    expires = duration.get("estimatedEnd") or item.get("expiresAt")
    return TrafficAlert(
        id=str(item["id"]),
        type=alert_type,
        severity=severity,
        location=point,
        message=item.get("message") or condition_message(alert_type, address),
        created_at=parse_timestamp(item.get("createdAt")),
        radius_m=float(location.get("radius", 0.0) if isinstance(location, dict) else 0.0),
        delay_min=float(impact.get("delay", 0.0) or 0.0),
        expires_at=parse_timestamp(expires) if expires else None,
        address=address,
    )


class TrafficClient:
    """Queries traffic conditions around a point, caching snapshots per area."""

    def __init__(
        self,
        base_url: str | None = None,
        radius_m: float | None = None,
        cache: BoundedTTLCache[list[TrafficAlert]] | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.traffic_api_base_url or "").rstrip("/")
        if not self.base_url:
            raise ValueError("Traffic provider base URL is not configured.")
        self.radius_m = radius_m or settings.traffic_radius_m
        self.cache = cache or BoundedTTLCache(
            max_entries=settings.traffic_cache_max_entries,
            ttl_seconds=settings.traffic_cache_ttl_seconds,
        )
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else settings.http_timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _cache_key(center: GeoPoint, radius_m: float) -> tuple[float, float, float]:
        # ~100 m buckets so consecutive ticks from a slow truck share a snapshot
        return (round(center.latitude, 3), round(center.longitude, 3), radius_m)

    async def conditions(self, center: GeoPoint, radius_m: float | None = None) -> list[TrafficAlert]:
        radius = radius_m or self.radius_m
        key = self._cache_key(center, radius)
        cached = self.cache.get(key)
        if cached is not None:
            return list(cached)

        response = await self._client.post(
            "/conditions",
            json={"center": {"latitude": center.latitude, "longitude": center.longitude}, "radius": radius},
        )
        response.raise_for_status()
        payload: Any = response.json()
        items = payload.get("conditions", []) if isinstance(payload, dict) else []
        alerts = [alert for alert in (parse_condition(item) for item in items if isinstance(item, dict)) if alert]
        self.cache.set(key, alerts)
        return list(alerts)

    async def alerts_for(self, trip_id: str, point: GeoPoint) -> list[TrafficAlert]:
        alerts = await self.conditions(point)
        logger.debug(f"{len(alerts)} traffic conditions near trip {trip_id}")
        return alerts
