"""Merge deviation events and provider traffic alerts into ranked per-trip alerts."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from ...config import settings
from ...models.domain import (
    AlertType,
    AlternativeRoute,
    GeoPoint,
    RankedAlternative,
    Route,
    RouteDeviationEvent,
    Severity,
    TrafficAlert,
)
from ..geospatial import within_radius

logger = logging.getLogger(__name__)

DEVIATION_REASON_MESSAGES = {
    "traffic": "Your transporter is taking an alternative route to avoid heavy traffic",
    "road_closure": "Your transporter is taking a detour due to a road closure",
    "accident": "Your transporter is taking an alternative route due to an accident ahead",
    "weather": "Your transporter is taking a safer route due to weather conditions",
    "driver_choice": "Your transporter is taking a more efficient route",
}
DEFAULT_DEVIATION_MESSAGE = "Your transporter is taking an alternative route for better delivery time"

CONDITION_RECOMMENDATIONS = {
    AlertType.CONGESTION: "Consider taking alternative route to avoid congestion",
    AlertType.ACCIDENT: "Accident reported - expect delays or take detour",
    AlertType.ROAD_CLOSURE: "Road closure detected - alternative route required",
    AlertType.CONSTRUCTION: "Construction zone - expect reduced speed and delays",
    AlertType.WEATHER: "Weather conditions may affect travel time",
}

BASE_SPEED_KMH = 50.0
MIN_SPEED_KMH = 10.0


def deviation_message(reason: str) -> str:
    return DEVIATION_REASON_MESSAGES.get(reason, DEFAULT_DEVIATION_MESSAGE)


def condition_message(alert_type: AlertType, place: str | None) -> str:
    """Client friendly wording for a provider traffic condition."""
    where = place or "your route"
    match alert_type:
        case AlertType.CONGESTION:
            return f"Heavy traffic on {where} - may cause delays"
        case AlertType.ACCIDENT:
            return f"Accident reported on {where} - expect delays"
        case AlertType.ROAD_CLOSURE:
            return f"Road closure on {where} - alternative route being used"
        case AlertType.CONSTRUCTION:
            return f"Road construction on {where} - reduced speed expected"
        case AlertType.WEATHER:
            return f"Weather conditions affecting {where} - delivery may be slower"
        case AlertType.EVENT:
            return f"Special event near {where} - traffic may be heavier"
        case _:
            return f"Traffic condition on {where} - may affect delivery time"


def rank_alerts(alerts: Iterable[TrafficAlert]) -> list[TrafficAlert]:
    """Most severe first, then most recent first."""
    return sorted(alerts, key=lambda alert: (alert.severity.rank, alert.created_at.timestamp()), reverse=True)


@dataclass(slots=True)
class _TripAlerts:
    history: "OrderedDict[str, TrafficAlert]"
    deviation_alert: Optional[TrafficAlert] = None


class AlertAggregator:
    """Owns the bounded alert history and active deviation alert of each trip."""

    def __init__(
        self,
        threshold: float | None = None,
        history_limit: int | None = None,
        high_severity_factor: float | None = None,
    ) -> None:
        self.threshold = threshold if threshold is not None else settings.deviation_threshold
        self.history_limit = history_limit or settings.alert_history_limit
        self.high_severity_factor = high_severity_factor or settings.high_severity_factor
        self._trips: dict[str, _TripAlerts] = {}

    def _state(self, trip_id: str) -> _TripAlerts:
        state = self._trips.get(trip_id)
        if state is None:
            state = _TripAlerts(history=OrderedDict())
            self._trips[trip_id] = state
        return state

    def deviation_severity(self, distance_from_route: float) -> Severity:
        if distance_from_route > self.high_severity_factor * self.threshold:
            return Severity.HIGH
        return Severity.MEDIUM

    def _deviation_alert(self, event: RouteDeviationEvent) -> TrafficAlert:
        return TrafficAlert(
            id=f"deviation:{event.trip_id}:{int(event.detected_at.timestamp())}",
            type=AlertType.ROUTE_DEVIATION,
            severity=self.deviation_severity(event.distance_from_route),
            location=event.location or GeoPoint(0.0, 0.0),
            message=deviation_message(event.reason),
            created_at=event.detected_at,
        )

    def aggregate(
        self,
        trip_id: str,
        deviation: Optional[RouteDeviationEvent],
        external_alerts: Sequence[TrafficAlert] = (),
        *,
        now: datetime | None = None,
    ) -> list[TrafficAlert]:
        now = now or datetime.now(timezone.utc)
        state = self._state(trip_id)

        if deviation is not None:
            if deviation.is_deviating:
                state.deviation_alert = self._deviation_alert(deviation)
            else:
                state.deviation_alert = None

        active = [alert for alert in external_alerts if alert.expires_at is None or alert.expires_at > now]
        if len(active) != len(external_alerts):
            logger.debug(f"Dropped {len(external_alerts) - len(active)} expired alerts for trip {trip_id}")
        if state.deviation_alert is not None:
            active.append(state.deviation_alert)

        for alert in active:
            self._remember(state, alert)
        return rank_alerts(active)

    def _remember(self, state: _TripAlerts, alert: TrafficAlert) -> None:
        state.history.pop(alert.id, None)
        state.history[alert.id] = alert
        while len(state.history) > self.history_limit:
            state.history.popitem(last=False)

    def history(self, trip_id: str) -> list[TrafficAlert]:
        state = self._trips.get(trip_id)
        return list(state.history.values()) if state else []

    def discard(self, trip_id: str) -> None:
        self._trips.pop(trip_id, None)


def rank_alternatives(
    baseline: AlternativeRoute,
    candidates: Sequence[AlternativeRoute],
) -> list[RankedAlternative]:
    """Order provider alternatives by duration, then distance, and describe trade-offs."""

    ordered = sorted(candidates, key=lambda route: (route.duration_min, route.distance_km, route.id))
    ranked: list[RankedAlternative] = []
    for position, route in enumerate(ordered, start=1):
        distance_delta = round(route.distance_km - baseline.distance_km, 2)
        duration_delta = round(route.duration_min - baseline.duration_min, 1)
        advantages: list[str] = []
        disadvantages: list[str] = []
        if duration_delta < 0:
            advantages.append(f"Saves {abs(duration_delta):.0f} min")
        elif duration_delta > 0:
            disadvantages.append(f"Adds {duration_delta:.0f} min")
        if distance_delta < 0:
            advantages.append(f"{abs(distance_delta):.1f} km shorter")
        elif distance_delta > 0:
            disadvantages.append(f"{distance_delta:.1f} km longer")
        if route.tolls and not baseline.tolls:
            disadvantages.append("Includes toll roads")
        elif baseline.tolls and not route.tolls:
            advantages.append("Avoids toll roads")
        if route.traffic_level == "low":
            advantages.append("Light traffic")
        elif route.traffic_level == "high":
            disadvantages.append("Heavy traffic")
        ranked.append(
            RankedAlternative(
                route=route,
                rank=position,
                distance_delta_km=distance_delta,
                duration_delta_min=duration_delta,
                advantages=tuple(advantages),
                disadvantages=tuple(disadvantages),
            )
        )
    return ranked


@dataclass(frozen=True, slots=True)
class TrafficImpact:
    total_delay_min: float
    average_speed_kmh: float
    severity: Severity
    affected_segments: int
    recommendations: tuple[str, ...]


def traffic_impact(route: Route, conditions: Sequence[TrafficAlert]) -> TrafficImpact:
    total_delay = 0.0
    affected = 0
    worst = Severity.LOW
    recommendations: list[str] = []
    for condition in conditions:
        on_route = any(within_radius(point, condition.location, condition.radius_m) for point in route.points)
        if not on_route:
            continue
        total_delay += condition.delay_min
        affected += 1
        if condition.severity.rank > worst.rank:
            worst = condition.severity
        recommendation = CONDITION_RECOMMENDATIONS.get(condition.type)
        if recommendation and recommendation not in recommendations:
            recommendations.append(recommendation)

    speed_reduction = min(total_delay * 0.5, 30.0)
    return TrafficImpact(
        total_delay_min=total_delay,
        average_speed_kmh=max(BASE_SPEED_KMH - speed_reduction, MIN_SPEED_KMH),
        severity=worst,
        affected_segments=affected,
        recommendations=tuple(recommendations),
    )
