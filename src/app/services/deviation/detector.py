"""Route deviation detection with edge-triggered hysteresis."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Optional

from ...config import settings
from ...models.domain import DeviationVerdict, GeoPoint, Route, RouteDeviationEvent
from ..geospatial import distance_km, distance_to_polyline, nearest_point_on_route, planar_distance

logger = logging.getLogger(__name__)

DeviationStrategy = Literal["endpoints", "polyline"]

NOT_DEVIATING = DeviationVerdict(is_deviating=False, distance_from_route=0.0)


class DeviationDetector:
    """Decides whether a reported position is off its planned route.

    Distances are measured in coordinate degrees. The ``endpoints`` strategy
    only looks at the route's start and end anchors and flags a deviation when
    the position is farther than the threshold from both. It is a known
    simplification kept for parity with the mobile clients; ``polyline``
    measures the true distance to the route geometry.
    """

    def __init__(
        self,
        threshold: float | None = None,
        strategy: DeviationStrategy | None = None,
    ) -> None:
        self.threshold = threshold if threshold is not None else settings.deviation_threshold
        if self.threshold <= 0:
            raise ValueError("Deviation threshold must be positive.")
        self.strategy = strategy or settings.deviation_strategy

    def evaluate(self, route: Optional[Route], position: Optional[GeoPoint]) -> DeviationVerdict:
        if route is None or route.is_empty or position is None or not position.is_valid:
            return NOT_DEVIATING
        points = [point for point in route.points if point.is_valid]
        if not points:
            return NOT_DEVIATING

        if self.strategy == "polyline":
            distance = distance_to_polyline(position, points)
            return DeviationVerdict(is_deviating=distance > self.threshold, distance_from_route=distance)

        to_start = planar_distance(position, points[0])
        to_end = planar_distance(position, points[-1])
        return DeviationVerdict(
            is_deviating=to_start > self.threshold and to_end > self.threshold,
            distance_from_route=min(to_start, to_end),
        )


@dataclass(slots=True)
class _TripDeviationState:
    is_deviating: bool = False
    since: Optional[datetime] = None


class DeviationTracker:
    """Per-trip deviation state that only reports transitions."""

    def __init__(self, detector: DeviationDetector | None = None) -> None:
        self.detector = detector or DeviationDetector()
        self._states: dict[str, _TripDeviationState] = {}

    def is_deviating(self, trip_id: str) -> bool:
        state = self._states.get(trip_id)
        return bool(state and state.is_deviating)

    def update(
        self,
        trip_id: str,
        route: Optional[Route],
        position: Optional[GeoPoint],
        *,
        at: datetime | None = None,
        reason: str = "unknown",
    ) -> Optional[RouteDeviationEvent]:
        verdict = self.detector.evaluate(route, position)
        state = self._states.setdefault(trip_id, _TripDeviationState())
        if verdict.is_deviating == state.is_deviating:
            return None

        detected_at = at or datetime.now(timezone.utc)
        state.is_deviating = verdict.is_deviating
        state.since = detected_at

        km = None
        if position is not None and route is not None and not route.is_empty:
            km = round(distance_km(position, nearest_point_on_route(position, route.points)), 3)

        if verdict.is_deviating:
            logger.info(
                f"Trip {trip_id} deviated from route "
                f"(distance={verdict.distance_from_route:.5f}, threshold={self.detector.threshold})"
            )
        else:
            logger.info(f"Trip {trip_id} back on route (distance={verdict.distance_from_route:.5f})")
            reason = "back_on_route"

        return RouteDeviationEvent(
            trip_id=trip_id,
            detected_at=detected_at,
            distance_from_route=verdict.distance_from_route,
            reason=reason,
            is_deviating=verdict.is_deviating,
            distance_km=km,
            location=position,
        )

    def reset(self, trip_id: str) -> None:
        self._states.pop(trip_id, None)
