"""Load consolidation endpoints."""

from __future__ import annotations

from fastapi import APIRouter, status

from ...models.domain import Capacity, Route
from ...schemas.consolidation import AcceptPlanRequest, PlanRequest, PlanResponse
from ...schemas.trips import TripModel
from ...services.consolidation.planner import plan_consolidation
from ...services.runtime import get_runtime
from ..errors import to_http_exception

router = APIRouter(prefix="/consolidation", tags=["consolidation"])


@router.post("/plan", response_model=PlanResponse, status_code=status.HTTP_200_OK)
def build_plan(payload: PlanRequest) -> PlanResponse:
    runtime = get_runtime()
    try:
        if payload.route:
            route = Route.from_points(p.to_domain() for p in payload.route)
        else:
            route = runtime.trips.get(payload.trip_id).route
        plan = plan_consolidation(
            trip_id=payload.trip_id,
            current_route=route,
            candidates=[load.to_domain() for load in payload.candidates],
            capacity=Capacity(total_capacity=payload.total_capacity),
            route_metrics=runtime.routing_client.route if runtime.routing_client else None,
        )
        runtime.trips.remember_plan(plan)
        return PlanResponse.from_domain(plan)
    except Exception as exc:
        raise to_http_exception(exc, f"build consolidation plan for trip {payload.trip_id}") from exc


@router.post("/{trip_id}/accept", response_model=TripModel, status_code=status.HTTP_200_OK)
async def accept_plan(trip_id: str, payload: AcceptPlanRequest) -> TripModel:
    runtime = get_runtime()
    try:
        plan = runtime.trips.find_plan(payload.plan_id)
        record = await runtime.trips.accept_plan(trip_id, plan)
        return TripModel.from_record(record)
    except Exception as exc:
        raise to_http_exception(exc, f"accept plan {payload.plan_id} for trip {trip_id}") from exc
