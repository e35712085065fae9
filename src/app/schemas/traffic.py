"""Traffic alternatives and impact schemas."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from ..models.domain import AlertType, AlternativeRoute, GeoPoint, RankedAlternative, Severity, TrafficAlert
from ..services.traffic.aggregator import condition_message
from .tracking import PointModel


class AlternativeRouteModel(BaseModel):
    id: str
    distance_km: float = Field(..., ge=0)
    duration_min: float = Field(..., ge=0)
    name: Optional[str] = None
    tolls: bool = False
    traffic_level: str = "low"

    def to_domain(self) -> AlternativeRoute:
        return AlternativeRoute(
            id=self.id,
            distance_km=self.distance_km,
            duration_min=self.duration_min,
            name=self.name,
            tolls=self.tolls,
            traffic_level=self.traffic_level,
        )

    @classmethod
    def from_domain(cls, route: AlternativeRoute) -> "AlternativeRouteModel":
        return cls(
            id=route.id,
            distance_km=route.distance_km,
            duration_min=route.duration_min,
            name=route.name,
            tolls=route.tolls,
            traffic_level=route.traffic_level,
        )


class RankAlternativesRequest(BaseModel):
    baseline: Optional[AlternativeRouteModel] = Field(
        default=None,
        description="Route currently followed. Defaults to the provider's primary route.",
    )
    candidates: List[AlternativeRouteModel] = Field(default_factory=list)
    origin: Optional[PointModel] = Field(default=None, description="Used to ask OSRM when no candidates are given.")
    destination: Optional[PointModel] = None


class RankedAlternativeModel(BaseModel):
    rank: int
    route: AlternativeRouteModel
    distance_delta_km: float
    duration_delta_min: float
    advantages: List[str]
    disadvantages: List[str]

    @classmethod
    def from_domain(cls, ranked: RankedAlternative) -> "RankedAlternativeModel":
        return cls(
            rank=ranked.rank,
            route=AlternativeRouteModel.from_domain(ranked.route),
            distance_delta_km=ranked.distance_delta_km,
            duration_delta_min=ranked.duration_delta_min,
            advantages=list(ranked.advantages),
            disadvantages=list(ranked.disadvantages),
        )


class TrafficConditionModel(BaseModel):
    id: str
    type: AlertType = AlertType.CONGESTION
    severity: Severity = Severity.LOW
    location: PointModel
    radius_m: float = Field(0.0, ge=0)
    delay_min: float = Field(0.0, ge=0)
    message: Optional[str] = None
    address: Optional[str] = None

    def to_domain(self) -> TrafficAlert:
        return TrafficAlert(
            id=self.id,
            type=self.type,
            severity=self.severity,
            location=GeoPoint(self.location.latitude, self.location.longitude),
            message=self.message or condition_message(self.type, self.address),
            created_at=datetime.now(timezone.utc),
            radius_m=self.radius_m,
            delay_min=self.delay_min,
            address=self.address,
        )


class ImpactRequest(BaseModel):
    route: List[PointModel] = Field(..., min_length=1)
    conditions: List[TrafficConditionModel] = Field(default_factory=list)


class ImpactResponse(BaseModel):
    total_delay_min: float
    average_speed_kmh: float
    severity: str
    affected_segments: int
    recommendations: List[str]
