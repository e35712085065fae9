"""Consolidation request/response schemas."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from ..models.domain import ConsolidatedRoutePlan, Load
from .tracking import PointModel


class LoadModel(BaseModel):
    id: str
    pickup: PointModel
    dropoff: PointModel
    weight_kg: float = Field(..., ge=0)
    price: float
    urgency: str = "normal"
    special_requirements: List[str] = Field(default_factory=list)
    consolidatable: bool = True

    def to_domain(self) -> Load:
        return Load(
            id=self.id,
            pickup=self.pickup.to_domain(),
            dropoff=self.dropoff.to_domain(),
            weight_kg=self.weight_kg,
            price=self.price,
            urgency=self.urgency,
            special_requirements=tuple(self.special_requirements),
            consolidatable=self.consolidatable,
        )


class PlanRequest(BaseModel):
    trip_id: str
    total_capacity: float = Field(..., description="Vehicle capacity in kg.")
    candidates: List[LoadModel] = Field(default_factory=list)
    route: Optional[List[PointModel]] = Field(
        default=None,
        description="Current route. Defaults to the trip's current route.",
    )


class WaypointModel(BaseModel):
    load_id: str
    kind: str
    point: PointModel


class PlanResponse(BaseModel):
    id: str
    trip_id: str
    load_ids: List[str]
    waypoints: List[WaypointModel]
    path: List[PointModel]
    total_distance_km: float
    total_duration_min: float
    total_earnings: float
    used_capacity: float
    total_capacity: float
    utilization_pct: float
    skipped_load_ids: List[str]
    distance_source: str

    @classmethod
    def from_domain(cls, plan: ConsolidatedRoutePlan) -> "PlanResponse":
        return cls(
            id=plan.id,
            trip_id=plan.trip_id,
            load_ids=list(plan.load_ids),
            waypoints=[
                WaypointModel(load_id=w.load_id, kind=w.kind.value, point=PointModel.from_domain(w.point))
                for w in plan.waypoints
            ],
            path=[PointModel.from_domain(point) for point in plan.path.points],
            total_distance_km=plan.total_distance_km,
            total_duration_min=plan.total_duration_min,
            total_earnings=plan.total_earnings,
            used_capacity=plan.used_capacity,
            total_capacity=plan.total_capacity,
            utilization_pct=plan.utilization_pct,
            skipped_load_ids=list(plan.skipped_load_ids),
            distance_source=plan.distance_source,
        )


class AcceptPlanRequest(BaseModel):
    plan_id: str
