"""Trip registry and status endpoints."""

from __future__ import annotations

from fastapi import APIRouter, status

from ...models.domain import Route, TripStatus
from ...schemas.trips import CreateTripRequest, StatusChangeRequest, TripModel
from ...services.runtime import get_runtime
from ..errors import to_http_exception

router = APIRouter(prefix="/trips", tags=["trips"])


@router.post("", response_model=TripModel, status_code=status.HTTP_201_CREATED)
def create_trip(payload: CreateTripRequest) -> TripModel:
    try:
        record = get_runtime().trips.register(
            payload.trip_id,
            payload.owner_id,
            Route.from_points(p.to_domain() for p in payload.route),
            status=TripStatus.parse(payload.status),
            recipients=payload.recipients,
        )
        return TripModel.from_record(record)
    except Exception as exc:
        raise to_http_exception(exc, f"create trip {payload.trip_id}") from exc


@router.get("/{trip_id}", response_model=TripModel, status_code=status.HTTP_200_OK)
def get_trip(trip_id: str) -> TripModel:
    try:
        return TripModel.from_record(get_runtime().trips.get(trip_id))
    except Exception as exc:
        raise to_http_exception(exc, f"read trip {trip_id}") from exc


@router.post("/{trip_id}/status", response_model=TripModel, status_code=status.HTTP_200_OK)
async def change_status(trip_id: str, payload: StatusChangeRequest) -> TripModel:
    try:
        record = await get_runtime().trips.transition(trip_id, TripStatus.parse(payload.status), payload.reason)
        return TripModel.from_record(record)
    except Exception as exc:
        raise to_http_exception(exc, f"change status of trip {trip_id}") from exc
