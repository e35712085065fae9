"""Domain models for trips, positions, alerts, loads and consolidation plans."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

COORDINATE_EPSILON = 1e-6


class TripStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    STARTED = "started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: Any) -> "TripStatus":
        """Normalise a status coming from an external payload."""
        if isinstance(value, TripStatus):
            return value
        normalized = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
        normalized = STATUS_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError as exc:
            raise ValueError(f"Unknown trip status '{value}'.") from exc


# Statuses reported by the booking backend and the mobile clients over time.
STATUS_ALIASES = {
    "ongoing": "in_progress",
    "in_transit": "in_progress",
    "picked_up": "in_progress",
    "delivered": "completed",
    "canceled": "cancelled",
}


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class AlertType(str, Enum):
    CONGESTION = "congestion"
    ACCIDENT = "accident"
    ROAD_CLOSURE = "road_closure"
    CONSTRUCTION = "construction"
    WEATHER = "weather"
    EVENT = "event"
    ROUTE_DEVIATION = "route_deviation"


class WaypointKind(str, Enum):
    PICKUP = "pickup"
    DROPOFF = "dropoff"


@dataclass(frozen=True, slots=True)
class GeoPoint:
    """Immutable coordinate pair in decimal degrees."""

    latitude: float
    longitude: float

    @property
    def is_valid(self) -> bool:
        return (
            math.isfinite(self.latitude)
            and math.isfinite(self.longitude)
            and -90.0 <= self.latitude <= 90.0
            and -180.0 <= self.longitude <= 180.0
        )

    def almost_equals(self, other: "GeoPoint", epsilon: float = COORDINATE_EPSILON) -> bool:
        return (
            abs(self.latitude - other.latitude) <= epsilon
            and abs(self.longitude - other.longitude) <= epsilon
        )

    def as_tuple(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass(frozen=True, slots=True)
class Route:
    """Ordered planned path for a trip. Replaced wholesale, never edited."""

    points: tuple[GeoPoint, ...] = ()

    @classmethod
    def from_points(cls, points) -> "Route":
        return cls(points=tuple(points))

    @property
    def is_empty(self) -> bool:
        return not self.points

    @property
    def start(self) -> Optional[GeoPoint]:
        return self.points[0] if self.points else None

    @property
    def end(self) -> Optional[GeoPoint]:
        return self.points[-1] if self.points else None


@dataclass(frozen=True, slots=True)
class TrackedPosition:
    trip_id: str
    point: GeoPoint
    timestamp: datetime
    speed_kmh: Optional[float] = None
    heading: Optional[float] = None
    accuracy_m: Optional[float] = None


@dataclass(frozen=True, slots=True)
class DeviationVerdict:
    is_deviating: bool
    distance_from_route: float


@dataclass(frozen=True, slots=True)
class RouteDeviationEvent:
    """Emitted when a trip enters or leaves the deviating state."""

    trip_id: str
    detected_at: datetime
    distance_from_route: float
    reason: str
    is_deviating: bool = True
    distance_km: Optional[float] = None
    location: Optional[GeoPoint] = None


@dataclass(frozen=True, slots=True)
class TrafficAlert:
    id: str
    type: AlertType
    severity: Severity
    location: GeoPoint
    message: str
    created_at: datetime
    radius_m: float = 0.0
    delay_min: float = 0.0
    expires_at: Optional[datetime] = None
    address: Optional[str] = None


@dataclass(frozen=True, slots=True)
class AlternativeRoute:
    """Candidate route returned by the routing provider."""

    id: str
    distance_km: float
    duration_min: float
    points: tuple[GeoPoint, ...] = ()
    name: Optional[str] = None
    tolls: bool = False
    traffic_level: str = "low"


@dataclass(frozen=True, slots=True)
class RankedAlternative:
    route: AlternativeRoute
    rank: int
    distance_delta_km: float
    duration_delta_min: float
    advantages: tuple[str, ...]
    disadvantages: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class Load:
    """A shippable unit offered for consolidation."""

    id: str
    pickup: GeoPoint
    dropoff: GeoPoint
    weight_kg: float
    price: float
    urgency: str = "normal"
    special_requirements: tuple[str, ...] = ()
    consolidatable: bool = True


@dataclass(frozen=True, slots=True)
class Capacity:
    total_capacity: float


@dataclass(frozen=True, slots=True)
class PlanWaypoint:
    load_id: str
    point: GeoPoint
    kind: WaypointKind


@dataclass(slots=True)
class ConsolidatedRoutePlan:
    id: str
    trip_id: str
    load_ids: list[str]
    waypoints: list[PlanWaypoint]
    path: Route
    total_distance_km: float
    total_duration_min: float
    total_earnings: float
    used_capacity: float
    total_capacity: float
    skipped_load_ids: list[str] = field(default_factory=list)
    distance_source: str = "haversine"

    @property
    def is_empty(self) -> bool:
        return not self.load_ids

    @property
    def utilization_pct(self) -> float:
        if self.total_capacity <= 0:
            return 0.0
        return round(self.used_capacity / self.total_capacity * 100.0, 2)


@dataclass(frozen=True, slots=True)
class BookingSnapshot:
    """What the booking backend currently knows about a trip."""

    trip_id: str
    status: TripStatus
    pickup: Optional[GeoPoint] = None
    dropoff: Optional[GeoPoint] = None
    transporter_id: Optional[str] = None
    recipients: dict[str, str] = field(default_factory=dict)


class NotificationType(str, Enum):
    STATUS_CHANGED = "status_changed"
    ROUTE_DEVIATION = "route_deviation"
    ROUTE_RECOVERED = "route_recovered"
    TRAFFIC_ALERT = "traffic_alert"


class Audience(str, Enum):
    CUSTOMER = "customer"
    DRIVER = "driver"
    COMPANY = "company"
    BROKER = "broker"
    ADMIN = "admin"


class Channel(str, Enum):
    IN_APP = "in_app"
    EMAIL = "email"
    SMS = "sms"


@dataclass(frozen=True, slots=True)
class NotificationEvent:
    """A domain occurrence that may fan out into messages.

    ``payload`` carries ``status`` (the trip status at the time of the event),
    ``recipients`` (audience -> recipient reference) and any template fields.
    """

    type: NotificationType
    trip_id: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Message:
    channel: Channel
    audience: Audience
    recipient_ref: str
    subject: str
    body: str
