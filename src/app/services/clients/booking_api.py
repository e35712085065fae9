"""Async client for the booking/trip backend."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from ...config import settings
from ...models.domain import BookingSnapshot, GeoPoint, TrackedPosition, TripStatus
from ...models.errors import TripNotFoundError

logger = logging.getLogger(__name__)

_PARTY_KEYS = {
    "customer": ("userId", "clientId", "customerId"),
    "driver": ("driverId", "assignedDriverId"),
    "company": ("transporterId", "companyId"),
    "broker": ("brokerId",),
}


def parse_point(value: Any) -> Optional[GeoPoint]:
    """Read a coordinate from the shapes the backend has used over time."""
    if value is None:
        return None
    try:
        if isinstance(value, (list, tuple)) and len(value) >= 2:
            point = GeoPoint(float(value[0]), float(value[1]))
        elif isinstance(value, dict):
            lat = value.get("latitude", value.get("lat"))
            lon = value.get("longitude", value.get("lng", value.get("lon")))
            if lat is None or lon is None:
                coords = value.get("coordinates")
                return parse_point(coords) if coords is not None else None
            point = GeoPoint(float(lat), float(lon))
        else:
            return None
    except (TypeError, ValueError):
        return None
    return point if point.is_valid else None


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, dict):
        seconds = value.get("_seconds", value.get("seconds"))
        if seconds is not None:
            return datetime.fromtimestamp(float(seconds), tz=timezone.utc)
    if isinstance(value, (int, float)):
        # epoch milliseconds from the JS clients
        seconds = value / 1000.0 if value > 1e11 else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        except ValueError:
            logger.debug(f"Unparseable timestamp '{value}', using current time")
    return datetime.now(timezone.utc)


def parse_booking(trip_id: str, payload: dict) -> BookingSnapshot:
    data = payload.get("booking", payload) if isinstance(payload, dict) else {}
    recipients: dict[str, str] = {}
    for audience, keys in _PARTY_KEYS.items():
        for key in keys:
            if data.get(key):
                recipients[audience] = str(data[key])
                break
    return BookingSnapshot(
        trip_id=str(data.get("bookingId") or data.get("id") or trip_id),
        status=TripStatus.parse(data.get("status", "pending")),
        pickup=parse_point(data.get("fromLocation") or data.get("pickup")),
        dropoff=parse_point(data.get("toLocation") or data.get("dropoff")),
        transporter_id=str(data["transporterId"]) if data.get("transporterId") else None,
        recipients=recipients,
    )


def parse_position(trip_id: str, payload: dict) -> Optional[TrackedPosition]:
    data = payload.get("location", payload) if isinstance(payload, dict) else {}
    point = parse_point(data)
    if point is None:
        return None
    return TrackedPosition(
        trip_id=trip_id,
        point=point,
        timestamp=parse_timestamp(data.get("timestamp")),
        speed_kmh=_optional_float(data.get("speed")),
        heading=_optional_float(data.get("heading")),
        accuracy_m=_optional_float(data.get("accuracy")),
    )


def _optional_float(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class BookingApiClient:
    """Reads booking state and positions; writes status transitions."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.booking_api_base_url or "").rstrip("/")
        if not self.base_url:
            raise ValueError("Booking API base URL is not configured.")
        token = token or settings.booking_api_token
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.max_retries = max_retries if max_retries is not None else settings.http_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.http_backoff_seconds
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout if timeout is not None else settings.http_timeout_seconds, connect=10.0),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_booking(self, trip_id: str) -> BookingSnapshot:
        response = await self._client.get(f"/bookings/{trip_id}")
        if response.status_code == 404:
            raise TripNotFoundError(f"Booking '{trip_id}' not found.")
        response.raise_for_status()
        return parse_booking(trip_id, response.json())

    async def latest_position(self, trip_id: str) -> Optional[TrackedPosition]:
        # Single attempt: the tracking loop's next tick is the retry.
        response = await self._client.get(f"/bookings/{trip_id}/location")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return parse_position(trip_id, response.json())

    async def trip_status(self, trip_id: str) -> Optional[TripStatus]:
        try:
            return (await self.get_booking(trip_id)).status
        except TripNotFoundError:
            return None

    async def update_status(self, trip_id: str, status: TripStatus) -> None:
        attempt = 0
        while True:
            try:
                response = await self._client.patch(f"/bookings/{trip_id}", json={"status": status.value})
                if response.status_code == 404:
                    raise TripNotFoundError(f"Booking '{trip_id}' not found.")
                response.raise_for_status()
                return
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                attempt += 1
                if attempt > self.max_retries:
                    raise ConnectionError(f"Failed to update booking {trip_id} at {self.base_url}: {e}") from e
                wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                logger.debug(f"Booking update failed, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries}): {e}")
                await asyncio.sleep(wait_time)
