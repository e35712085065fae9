"""Tracking request/response schemas."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from ..models.domain import GeoPoint, TrackedPosition, TrafficAlert
from ..services.tracking.manager import SessionSnapshot


class PointModel(BaseModel):
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)

    def to_domain(self) -> GeoPoint:
        return GeoPoint(latitude=self.latitude, longitude=self.longitude)

    @classmethod
    def from_domain(cls, point: GeoPoint) -> "PointModel":
        return cls(latitude=point.latitude, longitude=point.longitude)


class StartTrackingRequest(BaseModel):
    owner_id: str = Field(..., description="User or service that owns the session.")
    route: Optional[List[PointModel]] = Field(
        default=None,
        description="Expected route. Defaults to the trip's current route.",
    )


class PositionReport(BaseModel):
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)
    timestamp: Optional[datetime] = None
    speed_kmh: Optional[float] = Field(None, ge=0)
    heading: Optional[float] = Field(None, ge=0, lt=360)
    accuracy_m: Optional[float] = Field(None, ge=0)

    def to_domain(self, trip_id: str) -> TrackedPosition:
        timestamp = self.timestamp or datetime.now(timezone.utc)
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return TrackedPosition(
            trip_id=trip_id,
            point=GeoPoint(self.latitude, self.longitude),
            timestamp=timestamp,
            speed_kmh=self.speed_kmh,
            heading=self.heading,
            accuracy_m=self.accuracy_m,
        )


class PositionModel(BaseModel):
    latitude: float
    longitude: float
    timestamp: datetime
    speed_kmh: Optional[float] = None
    heading: Optional[float] = None

    @classmethod
    def from_domain(cls, position: TrackedPosition) -> "PositionModel":
        return cls(
            latitude=position.point.latitude,
            longitude=position.point.longitude,
            timestamp=position.timestamp,
            speed_kmh=position.speed_kmh,
            heading=position.heading,
        )


class AlertModel(BaseModel):
    id: str
    type: str
    severity: str
    latitude: float
    longitude: float
    message: str
    created_at: datetime
    radius_m: float = 0.0
    delay_min: float = 0.0
    expires_at: Optional[datetime] = None
    address: Optional[str] = None

    @classmethod
    def from_domain(cls, alert: TrafficAlert) -> "AlertModel":
        return cls(
            id=alert.id,
            type=alert.type.value,
            severity=alert.severity.value,
            latitude=alert.location.latitude,
            longitude=alert.location.longitude,
            message=alert.message,
            created_at=alert.created_at,
            radius_m=alert.radius_m,
            delay_min=alert.delay_min,
            expires_at=alert.expires_at,
            address=alert.address,
        )


class SessionModel(BaseModel):
    trip_id: str
    owner_id: str
    state: str
    status: Optional[str] = None
    started_at: datetime
    last_update_time: Optional[datetime] = None
    latest_position: Optional[PositionModel] = None
    is_deviating: bool = False
    degraded: bool = False
    consecutive_failures: int = 0
    tick_count: int = 0
    alerts: List[AlertModel] = Field(default_factory=list)
    eta_min: Optional[float] = None
    progress_pct: Optional[float] = None

    @classmethod
    def from_snapshot(cls, snapshot: SessionSnapshot) -> "SessionModel":
        return cls(
            trip_id=snapshot.trip_id,
            owner_id=snapshot.owner_id,
            state=snapshot.state.value,
            status=snapshot.status.value if snapshot.status else None,
            started_at=snapshot.started_at,
            last_update_time=snapshot.last_update_time,
            latest_position=PositionModel.from_domain(snapshot.latest_position) if snapshot.latest_position else None,
            is_deviating=snapshot.is_deviating,
            degraded=snapshot.degraded,
            consecutive_failures=snapshot.consecutive_failures,
            tick_count=snapshot.tick_count,
            alerts=[AlertModel.from_domain(alert) for alert in snapshot.alerts],
            eta_min=snapshot.eta_min,
            progress_pct=snapshot.progress_pct,
        )
