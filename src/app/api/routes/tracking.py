"""Tracking session endpoints."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, HTTPException, status

from ...models.domain import Route
from ...schemas.tracking import AlertModel, PositionReport, SessionModel, StartTrackingRequest
from ...services.runtime import get_runtime
from ..errors import to_http_exception

router = APIRouter(prefix="/tracking", tags=["tracking"])


@router.post("/{trip_id}/start", response_model=SessionModel, status_code=status.HTTP_200_OK)
async def start_tracking(trip_id: str, payload: StartTrackingRequest) -> SessionModel:
    runtime = get_runtime()
    try:
        record = await runtime.trips.ensure(trip_id, payload.owner_id)
        route = Route.from_points(p.to_domain() for p in payload.route) if payload.route else record.route
        await runtime.manager.start(trip_id, payload.owner_id, route, recipients=record.recipients)
        return SessionModel.from_snapshot(runtime.manager.snapshot(trip_id))
    except Exception as exc:
        raise to_http_exception(exc, f"start tracking trip {trip_id}") from exc


@router.post("/{trip_id}/stop", status_code=status.HTTP_200_OK)
async def stop_tracking(trip_id: str) -> dict:
    stopped = await get_runtime().manager.stop(trip_id, reason="stopped by caller")
    return {"trip_id": trip_id, "stopped": stopped}


@router.get("", response_model=List[SessionModel], status_code=status.HTTP_200_OK)
def list_sessions() -> List[SessionModel]:
    manager = get_runtime().manager
    return [SessionModel.from_snapshot(manager.snapshot(trip_id)) for trip_id in manager.active_trip_ids()]


@router.get("/{trip_id}", response_model=SessionModel, status_code=status.HTTP_200_OK)
def get_session(trip_id: str) -> SessionModel:
    try:
        return SessionModel.from_snapshot(get_runtime().manager.snapshot(trip_id))
    except Exception as exc:
        raise to_http_exception(exc, f"read tracking session {trip_id}") from exc


@router.post("/{trip_id}/positions", status_code=status.HTTP_202_ACCEPTED)
def report_position(trip_id: str, payload: PositionReport) -> dict:
    """Push variant of the position source; the next tick picks the report up."""
    accepted = get_runtime().feed.publish(payload.to_domain(trip_id))
    if not accepted:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A newer position is already recorded for trip {trip_id}",
        )
    return {"trip_id": trip_id, "accepted": True}


@router.get("/{trip_id}/alerts", response_model=List[AlertModel], status_code=status.HTTP_200_OK)
def alert_history(trip_id: str) -> List[AlertModel]:
    try:
        return [AlertModel.from_domain(alert) for alert in get_runtime().manager.alert_history(trip_id)]
    except Exception as exc:
        raise to_http_exception(exc, f"read alerts for trip {trip_id}") from exc
