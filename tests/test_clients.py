import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from src.app.models.domain import AlertType, GeoPoint, Severity, TripStatus
from src.app.models.errors import TripNotFoundError
from src.app.services.cache import BoundedTTLCache
from src.app.services.clients import routing as routing_client
from src.app.services.clients.booking_api import (
    BookingApiClient,
    parse_booking,
    parse_point,
    parse_position,
    parse_timestamp,
)
from src.app.services.clients.traffic import TrafficClient, parse_condition


@pytest.mark.parametrize(
    "value, expected",
    [
        ({"latitude": -1.29, "longitude": 36.82}, GeoPoint(-1.29, 36.82)),
        ({"lat": "-1.29", "lng": "36.82"}, GeoPoint(-1.29, 36.82)),
        ({"coordinates": {"latitude": 1.0, "longitude": 2.0}}, GeoPoint(1.0, 2.0)),
        ([3.0, 4.0], GeoPoint(3.0, 4.0)),
        ({"latitude": 91.0, "longitude": 0.0}, None),
        ({"address": "Nairobi"}, None),
        ("nowhere", None),
        (None, None),
    ],
)
def test_parse_point_shapes(value, expected):
    assert parse_point(value) == expected


def test_parse_timestamp_shapes():
    expected = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert parse_timestamp("2024-05-01T12:00:00Z") == expected
    assert parse_timestamp({"_seconds": expected.timestamp()}) == expected
    assert parse_timestamp(expected.timestamp() * 1000) == expected
    assert parse_timestamp(expected.timestamp()) == expected
    assert parse_timestamp("not a date").tzinfo is not None


def test_parse_booking_tolerates_partial_payloads():
    snapshot = parse_booking(
        "B1",
        {"status": "in_transit", "driverId": "d-1", "brokerId": "b-1", "toLocation": {"lat": -4.0, "lng": 39.6}},
    )
    assert snapshot.trip_id == "B1"
    assert snapshot.status is TripStatus.IN_PROGRESS
    assert snapshot.pickup is None
    assert snapshot.dropoff == GeoPoint(-4.0, 39.6)
    assert snapshot.recipients == {"driver": "d-1", "broker": "b-1"}


def test_parse_position_reads_optional_fields():
    position = parse_position(
        "B1",
        {"location": {"latitude": -1.3, "longitude": 36.8, "speed": "42.5", "heading": None, "timestamp": 1714564800}},
    )
    assert position.point == GeoPoint(-1.3, 36.8)
    assert position.speed_kmh == 42.5
    assert position.heading is None
    assert parse_position("B1", {"location": {}}) is None


def _booking_client(handler, **kwargs) -> BookingApiClient:
    return BookingApiClient(
        base_url="https://booking.test",
        token="secret",
        transport=httpx.MockTransport(handler),
        backoff_seconds=0,
        **kwargs,
    )


def test_booking_client_sends_bearer_token_and_maps_404():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get("Authorization"))
        return httpx.Response(404, json={"message": "not found"})

    async def scenario():
        client = _booking_client(handler)
        with pytest.raises(TripNotFoundError):
            await client.get_booking("B1")
        assert await client.latest_position("B1") is None
        assert await client.trip_status("B1") is None
        await client.aclose()

    asyncio.run(scenario())
    assert seen and all(header == "Bearer secret" for header in seen)


def test_status_update_retries_network_errors():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request.method)
        if len(attempts) < 3:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"success": True})

    async def scenario():
        client = _booking_client(handler, max_retries=3)
        await client.update_status("B1", TripStatus.STARTED)
        await client.aclose()

    asyncio.run(scenario())
    assert attempts == ["PATCH", "PATCH", "PATCH"]


def test_status_update_gives_up_after_retries():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario():
        client = _booking_client(handler, max_retries=1)
        with pytest.raises(ConnectionError):
            await client.update_status("B1", TripStatus.STARTED)
        await client.aclose()

    asyncio.run(scenario())


def test_clients_require_base_url(monkeypatch):
    from src.app.config import settings

    monkeypatch.setattr(settings, "booking_api_base_url", None)
    monkeypatch.setattr(settings, "traffic_api_base_url", None)
    monkeypatch.setattr(settings, "osrm_base_url", None)
    with pytest.raises(ValueError):
        BookingApiClient()
    with pytest.raises(ValueError):
        TrafficClient()
    with pytest.raises(ValueError):
        routing_client.RoutingClient()


def test_parse_condition_defaults_message_and_unknown_enums():
    alert = parse_condition(
        {
            "id": "c1",
            "type": "sinkhole",
            "severity": "high",
            "location": {"latitude": -1.3, "longitude": 36.8, "radius": 800, "address": "Uhuru Highway"},
            "impact": {"delay": 12},
            "createdAt": "2024-05-01T12:00:00Z",
        }
    )
    assert alert.type is AlertType.CONGESTION
    assert alert.severity is Severity.HIGH
    assert alert.radius_m == 800
    assert alert.delay_min == 12
    assert alert.message == "Heavy traffic on Uhuru Highway - may cause delays"
    assert parse_condition({"location": {"latitude": 0, "longitude": 0}}) is None


def test_traffic_client_caches_per_area():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(
            200,
            json={
                "conditions": [
                    {"id": "c1", "type": "accident", "severity": "medium", "location": {"lat": -1.3, "lng": 36.8}},
                    {"id": "broken"},
                ]
            },
        )

    async def scenario():
        client = TrafficClient(
            base_url="https://traffic.test",
            cache=BoundedTTLCache(max_entries=8, ttl_seconds=300),
            transport=httpx.MockTransport(handler),
        )
        first = await client.alerts_for("T1", GeoPoint(-1.30001, 36.80001))
        second = await client.alerts_for("T1", GeoPoint(-1.30002, 36.80002))
        await client.aclose()
        return first, second

    first, second = asyncio.run(scenario())
    assert calls == ["/conditions"]
    assert [alert.id for alert in first] == ["c1"]
    assert first == second
    assert first is not second


def test_estimate_route_metrics_falls_back_to_haversine():
    class DownOSRM:
        def route(self, points):
            raise ConnectionError("OSRM unreachable")

    points = [GeoPoint(0.0, 0.0), GeoPoint(0.0, 1.0)]
    metrics = routing_client.estimate_route_metrics(points, client=DownOSRM(), average_speed_kmh=60.0)
    assert metrics.source == "haversine"
    assert metrics.duration_min == pytest.approx(metrics.distance_km)


def test_routing_client_parses_osrm_route(monkeypatch):
    class DummyResponse:
        def raise_for_status(self):
            return None

        def json(self):
            return {
                "code": "Ok",
                "routes": [
                    {"distance": 12000.0, "duration": 900.0, "summary": "A104", "geometry": "_p~iF~ps|U_ulLnnqC"},
                    {"distance": 15000.0, "duration": 840.0, "summary": "", "geometry": "_p~iF~ps|U"},
                ],
            }

    class DummyHTTPClient:
        def __init__(self, *args, **kwargs):
            pass

        def get(self, url, params=None):
            return DummyResponse()

        def close(self):
            pass

    monkeypatch.setattr(routing_client.httpx, "Client", DummyHTTPClient)
    client = routing_client.RoutingClient(base_url="http://osrm.test", max_retries=0)

    metrics = client.route([GeoPoint(0.0, 0.0), GeoPoint(0.0, 1.0)])
    assert metrics.distance_km == 12.0
    assert metrics.duration_min == 15.0
    assert metrics.source == "osrm"

    alternatives = client.alternatives(GeoPoint(0.0, 0.0), GeoPoint(0.0, 1.0))
    assert [route.id for route in alternatives] == ["osrm-0", "osrm-1"]
    assert alternatives[0].name == "A104"
    assert alternatives[1].name is None
    assert alternatives[0].points[0] == GeoPoint(38.5, -120.2)
    assert len(alternatives[0].points) == 2


def test_decode_polyline_reference_string():
    decoded = routing_client.decode_polyline("_p~iF~ps|U_ulLnnqC_mqNvxq`@")
    assert decoded == [(38.5, -120.2), (40.7, -120.95), (43.252, -126.453)]
