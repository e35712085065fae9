"""Trip registry, status transitions and consolidation plan acceptance."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from ...config import settings
from ...models.domain import (
    ConsolidatedRoutePlan,
    NotificationEvent,
    NotificationType,
    Route,
    TripStatus,
)
from ...models.errors import InvalidPlanRequest, TripNotFoundError, TripStateError
from ..cache import BoundedTTLCache
from ..clients.booking_api import BookingApiClient
from ..notifications.dispatcher import NotificationSender, dispatch
from ..tracking.manager import TrackingSessionManager

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[TripStatus, frozenset[TripStatus]] = {
    TripStatus.PENDING: frozenset({TripStatus.ACCEPTED}),
    TripStatus.ACCEPTED: frozenset({TripStatus.STARTED, TripStatus.CANCELLED}),
    TripStatus.STARTED: frozenset({TripStatus.IN_PROGRESS, TripStatus.CANCELLED}),
    TripStatus.IN_PROGRESS: frozenset({TripStatus.COMPLETED}),
    TripStatus.COMPLETED: frozenset(),
    TripStatus.CANCELLED: frozenset(),
}


def can_transition(current: TripStatus, target: TripStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


@dataclass(slots=True)
class TripRecord:
    trip_id: str
    owner_id: str
    status: TripStatus
    route: Route
    recipients: dict[str, str] = field(default_factory=dict)
    accepted_plan_id: Optional[str] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class TripService:
    """Single writer of trip status and route.

    Status changes go to the booking backend first (when configured), then the
    local record, then notifications and the tracking session.
    """

    def __init__(
        self,
        manager: TrackingSessionManager,
        sender: NotificationSender,
        booking_client: BookingApiClient | None = None,
        plans: BoundedTTLCache[ConsolidatedRoutePlan] | None = None,
    ) -> None:
        self.manager = manager
        self.sender = sender
        self.booking_client = booking_client
        self.plans = plans or BoundedTTLCache(
            max_entries=settings.plan_cache_max_entries,
            ttl_seconds=settings.plan_ttl_seconds,
        )
        self._trips: dict[str, TripRecord] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, trip_id: str) -> asyncio.Lock:
        lock = self._locks.get(trip_id)
        if lock is None:
            lock = asyncio.Lock()
            record = self._trips.get(trip_id)
            # kept only for trips that can still change status
            if record is not None and ALLOWED_TRANSITIONS[record.status]:
                self._locks[trip_id] = lock
        return lock

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------
    def register(
        self,
        trip_id: str,
        owner_id: str,
        route: Route,
        status: TripStatus = TripStatus.PENDING,
        recipients: dict[str, str] | None = None,
    ) -> TripRecord:
        if trip_id in self._trips:
            raise TripStateError(f"Trip {trip_id} already exists.")
        record = TripRecord(
            trip_id=trip_id,
            owner_id=owner_id,
            status=status,
            route=route,
            recipients=dict(recipients or {}),
        )
        self._trips[trip_id] = record
        logger.info(f"Registered trip {trip_id} ({status.value}, {len(route.points)} route points)")
        return record

    def get(self, trip_id: str) -> TripRecord:
        record = self._trips.get(trip_id)
        if record is None:
            raise TripNotFoundError(f"Trip {trip_id} not found.")
        return record

    async def ensure(self, trip_id: str, owner_id: str | None = None) -> TripRecord:
        """Local record, loading it from the booking backend on first use."""
        record = self._trips.get(trip_id)
        if record is not None:
            return record
        if self.booking_client is None:
            raise TripNotFoundError(f"Trip {trip_id} not found.")
        snapshot = await self.booking_client.get_booking(trip_id)
        points = [point for point in (snapshot.pickup, snapshot.dropoff) if point is not None]
        return self.register(
            trip_id,
            owner_id or snapshot.transporter_id or "unknown",
            Route.from_points(points),
            status=snapshot.status,
            recipients=snapshot.recipients,
        )

    async def trip_status(self, trip_id: str) -> Optional[TripStatus]:
        record = self._trips.get(trip_id)
        return record.status if record else None

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------
    async def transition(self, trip_id: str, target: TripStatus, reason: str | None = None) -> TripRecord:
        async with self._lock(trip_id):
            record = self.get(trip_id)
            if record.status is target:
                return record
            if not can_transition(record.status, target):
                raise TripStateError(
                    f"Trip {trip_id} cannot move from {record.status.value} to {target.value}."
                )
            if self.booking_client is not None:
                await self.booking_client.update_status(trip_id, target)

            previous = record.status
            record.status = target
            record.updated_at = datetime.now(timezone.utc)
            logger.info(f"Trip {trip_id} moved from {previous.value} to {target.value}")
        if not ALLOWED_TRANSITIONS[target]:
            self._locks.pop(trip_id, None)

        await self.publish(
            NotificationEvent(
                type=NotificationType.STATUS_CHANGED,
                trip_id=trip_id,
                payload={
                    "status": target.value,
                    "previous_status": previous.value,
                    "recipients": dict(record.recipients),
                    "reason": reason,
                },
            )
        )
        await self.manager.notify_status(trip_id, target)
        return record

    async def publish(self, event: NotificationEvent) -> int:
        return await dispatch(event, self.sender)

    # ------------------------------------------------------------------
    # Consolidation plans
    # ------------------------------------------------------------------
    def remember_plan(self, plan: ConsolidatedRoutePlan) -> None:
        self.plans.set(plan.id, plan)

    def find_plan(self, plan_id: str) -> ConsolidatedRoutePlan:
        plan = self.plans.get(plan_id)
        if plan is None:
            raise TripNotFoundError(f"Plan {plan_id} not found or expired.")
        return plan

    async def accept_plan(self, trip_id: str, plan: ConsolidatedRoutePlan) -> TripRecord:
        if plan.trip_id != trip_id:
            raise InvalidPlanRequest(f"Plan {plan.id} belongs to trip {plan.trip_id}, not {trip_id}.")
        async with self._lock(trip_id):
            record = self.get(trip_id)
            if not self.manager.is_active(trip_id):
                raise TripStateError(f"Trip {trip_id} has no active tracking session.")
            self.manager.replace_route(trip_id, plan.path)
            record.route = plan.path
            record.accepted_plan_id = plan.id
            record.updated_at = datetime.now(timezone.utc)
        logger.info(f"Trip {trip_id} accepted plan {plan.id} with {len(plan.load_ids)} loads")
        return record
