import asyncio

import httpx
import pytest

from src.app.models.domain import Capacity, GeoPoint, Load, Route, TripStatus
from src.app.models.errors import InvalidPlanRequest, TripNotFoundError, TripStateError
from src.app.services.clients.booking_api import BookingApiClient
from src.app.services.consolidation.planner import plan_consolidation
from src.app.services.notifications.senders import LoggingNotificationSender
from src.app.services.tracking.manager import TrackingSessionManager
from src.app.services.tracking.sources import PositionFeed
from src.app.services.trips.service import ALLOWED_TRANSITIONS, TripService, can_transition

ROUTE = Route.from_points([GeoPoint(-1.2921, 36.8219), GeoPoint(-4.0435, 39.6682)])
RECIPIENTS = {"customer": "cust-1", "driver": "drv-1", "company": "co-1", "broker": "brk-1"}


def _service(booking_client=None) -> TripService:
    manager = TrackingSessionManager(PositionFeed(), interval_seconds=60.0, fetch_timeout_seconds=1.0)
    service = TripService(manager, LoggingNotificationSender(), booking_client=booking_client)
    manager.statuses = service
    manager.event_sink = service.publish
    return service


@pytest.mark.parametrize(
    "current, target, allowed",
    [
        (TripStatus.PENDING, TripStatus.ACCEPTED, True),
        (TripStatus.ACCEPTED, TripStatus.STARTED, True),
        (TripStatus.STARTED, TripStatus.IN_PROGRESS, True),
        (TripStatus.IN_PROGRESS, TripStatus.COMPLETED, True),
        (TripStatus.ACCEPTED, TripStatus.CANCELLED, True),
        (TripStatus.STARTED, TripStatus.CANCELLED, True),
        (TripStatus.PENDING, TripStatus.COMPLETED, False),
        (TripStatus.IN_PROGRESS, TripStatus.CANCELLED, False),
        (TripStatus.COMPLETED, TripStatus.STARTED, False),
        (TripStatus.CANCELLED, TripStatus.ACCEPTED, False),
    ],
)
def test_transition_table(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_terminal_statuses_have_no_exits():
    assert ALLOWED_TRANSITIONS[TripStatus.COMPLETED] == frozenset()
    assert ALLOWED_TRANSITIONS[TripStatus.CANCELLED] == frozenset()


def test_transition_notifies_every_audience():
    async def scenario():
        service = _service()
        service.register("T1", "owner-1", ROUTE, recipients=RECIPIENTS)
        record = await service.transition("T1", TripStatus.ACCEPTED)

        assert record.status is TripStatus.ACCEPTED
        sent = service.sender.sent
        # four parties plus the admin fallback, three channels each
        assert len(sent) == 15
        assert {m.audience.value for m in sent} == {"customer", "driver", "company", "broker", "admin"}

        again = await service.transition("T1", TripStatus.ACCEPTED)
        assert again is record
        assert len(service.sender.sent) == 15

    asyncio.run(scenario())


def test_illegal_transition_is_rejected():
    async def scenario():
        service = _service()
        service.register("T1", "owner-1", ROUTE)
        with pytest.raises(TripStateError):
            await service.transition("T1", TripStatus.COMPLETED)
        assert service.get("T1").status is TripStatus.PENDING
        assert service.sender.sent == []

    asyncio.run(scenario())


def test_unknown_and_duplicate_trips():
    service = _service()
    with pytest.raises(TripNotFoundError):
        service.get("missing")
    service.register("T1", "owner-1", ROUTE)
    with pytest.raises(TripStateError):
        service.register("T1", "owner-1", ROUTE)
    with pytest.raises(TripNotFoundError):
        asyncio.run(service.ensure("missing"))


def test_completion_stops_tracking():
    async def scenario():
        service = _service()
        service.register("T1", "owner-1", ROUTE, status=TripStatus.STARTED)
        await service.manager.start("T1", "owner-1", ROUTE)
        await service.transition("T1", TripStatus.IN_PROGRESS)
        assert service.manager.is_active("T1")

        await service.transition("T1", TripStatus.COMPLETED)
        assert not service.manager.is_active("T1")

    asyncio.run(scenario())


def _plan(trip_id: str = "T1"):
    load = Load(
        id="L1",
        pickup=GeoPoint(-1.45, 36.98),
        dropoff=GeoPoint(-3.39, 38.56),
        weight_kg=500,
        price=5000,
    )
    return plan_consolidation(trip_id=trip_id, current_route=ROUTE, candidates=[load], capacity=Capacity(1000))


def test_accept_plan_requires_active_session():
    async def scenario():
        service = _service()
        service.register("T1", "owner-1", ROUTE, status=TripStatus.ACCEPTED)
        with pytest.raises(TripStateError):
            await service.accept_plan("T1", _plan())
        assert service.get("T1").route == ROUTE

    asyncio.run(scenario())


def test_accept_plan_replaces_route_of_running_session():
    async def scenario():
        service = _service()
        service.register("T1", "owner-1", ROUTE, status=TripStatus.ACCEPTED)
        await service.manager.start("T1", "owner-1", ROUTE)
        plan = _plan()
        service.remember_plan(plan)

        record = await service.accept_plan("T1", service.find_plan(plan.id))

        assert record.route == plan.path
        assert record.accepted_plan_id == plan.id
        assert service.manager.get("T1").route == plan.path
        await service.manager.shutdown()

    asyncio.run(scenario())


def test_accept_plan_for_other_trip_is_invalid():
    async def scenario():
        service = _service()
        service.register("T1", "owner-1", ROUTE, status=TripStatus.ACCEPTED)
        with pytest.raises(InvalidPlanRequest):
            await service.accept_plan("T1", _plan(trip_id="T2"))

    asyncio.run(scenario())


def test_find_plan_unknown():
    with pytest.raises(TripNotFoundError):
        _service().find_plan("nope")


def test_transition_writes_through_booking_api_and_ensure_loads_trip():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append((request.method, request.url.path, request.content))
        if request.method == "GET":
            return httpx.Response(
                200,
                json={
                    "booking": {
                        "bookingId": "B7",
                        "status": "accepted",
                        "fromLocation": {"latitude": -1.2921, "longitude": 36.8219},
                        "toLocation": {"lat": -4.0435, "lng": 39.6682},
                        "userId": "cust-7",
                        "transporterId": "tr-7",
                    }
                },
            )
        return httpx.Response(200, json={"success": True})

    async def scenario():
        client = BookingApiClient(base_url="https://booking.test/api", transport=httpx.MockTransport(handler))
        service = _service(booking_client=client)
        record = await service.ensure("B7")
        assert record.owner_id == "tr-7"
        assert record.status is TripStatus.ACCEPTED
        assert record.recipients == {"customer": "cust-7", "company": "tr-7"}
        assert len(record.route.points) == 2

        await service.transition("B7", TripStatus.STARTED)
        await client.aclose()

    asyncio.run(scenario())
    assert requests[-1][0] == "PATCH"
    assert requests[-1][1] == "/api/bookings/B7"
    assert b'"started"' in requests[-1][2]


def test_trip_lock_is_released_once_trip_is_terminal():
    async def scenario():
        service = _service()
        service.register("T1", "owner-1", ROUTE, status=TripStatus.ACCEPTED)
        await service.transition("T1", TripStatus.STARTED)
        assert "T1" in service._locks

        await service.transition("T1", TripStatus.CANCELLED)
        assert "T1" not in service._locks

        await service.transition("T1", TripStatus.CANCELLED)
        with pytest.raises(TripStateError):
            await service.transition("T1", TripStatus.STARTED)
        assert "T1" not in service._locks

    asyncio.run(scenario())
