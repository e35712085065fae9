"""Collaborator protocols for the tracking loop and the in-memory push feed."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from ...models.domain import GeoPoint, TrackedPosition, TrafficAlert, TripStatus

logger = logging.getLogger(__name__)


class PositionSource(Protocol):
    async def latest_position(self, trip_id: str) -> Optional[TrackedPosition]:
        ...


class TripStatusSource(Protocol):
    async def trip_status(self, trip_id: str) -> Optional[TripStatus]:
        ...


class TrafficSource(Protocol):
    async def alerts_for(self, trip_id: str, point: GeoPoint) -> list[TrafficAlert]:
        ...


class PositionFeed:
    """Latest position per trip, published by clients instead of polled."""

    def __init__(self) -> None:
        self._latest: dict[str, TrackedPosition] = {}

    def publish(self, position: TrackedPosition) -> bool:
        """Store ``position`` unless a newer one is already known."""
        current = self._latest.get(position.trip_id)
        if current is not None and current.timestamp > position.timestamp:
            return False
        self._latest[position.trip_id] = position
        return True

    async def latest_position(self, trip_id: str) -> Optional[TrackedPosition]:
        return self._latest.get(trip_id)

    def forget(self, trip_id: str) -> None:
        self._latest.pop(trip_id, None)


class NewestPositionSource:
    """Asks both the push feed and the poller; the more recent report wins.

    A failing poller does not hide a pushed report, and a pushed report never
    shadows a fresher polled one.
    """

    def __init__(self, feed: PositionFeed, poller: PositionSource) -> None:
        self.feed = feed
        self.poller = poller

    async def latest_position(self, trip_id: str) -> Optional[TrackedPosition]:
        pushed = await self.feed.latest_position(trip_id)
        try:
            polled = await self.poller.latest_position(trip_id)
        except Exception as e:
            if pushed is None:
                raise
            logger.warning(f"Polling position of trip {trip_id} failed, using pushed report: {e}")
            return pushed
        if pushed is None:
            return polled
        if polled is None or pushed.timestamp >= polled.timestamp:
            return pushed
        return polled

    def forget(self, trip_id: str) -> None:
        self.feed.forget(trip_id)
