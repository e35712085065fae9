import pytest

from src.app.models.domain import GeoPoint
from src.app.services import geospatial

NAIROBI = GeoPoint(-1.2921, 36.8219)
MOMBASA = GeoPoint(-4.0435, 39.6682)


def test_haversine_between_nairobi_and_mombasa():
    distance = geospatial.distance_km(NAIROBI, MOMBASA)
    assert 420 < distance < 460


def test_distance_to_polyline_uses_segments_not_vertices():
    line = [GeoPoint(0.0, 0.0), GeoPoint(1.0, 0.0)]
    assert geospatial.distance_to_polyline(GeoPoint(0.5, 0.0), line) == pytest.approx(0.0)
    assert geospatial.distance_to_polyline(GeoPoint(0.5, 0.2), line) == pytest.approx(0.2)


def test_distance_to_polyline_single_point_route():
    assert geospatial.distance_to_polyline(GeoPoint(0.3, 0.4), [GeoPoint(0.0, 0.0)]) == pytest.approx(0.5)


def test_nearest_point_on_route_projects_onto_segment():
    nearest = geospatial.nearest_point_on_route(GeoPoint(0.5, 0.2), [GeoPoint(0.0, 0.0), GeoPoint(1.0, 0.0)])
    assert nearest.latitude == pytest.approx(0.5)
    assert nearest.longitude == pytest.approx(0.0)


def test_insertion_cost_is_zero_for_point_on_the_way():
    points = [GeoPoint(0.0, 0.0), GeoPoint(0.0, 1.0)]
    assert geospatial.insertion_cost_km(points, 1, GeoPoint(0.0, 0.5)) == pytest.approx(0.0, abs=1e-6)
    assert geospatial.insertion_cost_km(points, 1, GeoPoint(0.5, 0.5)) > 0


def test_insertion_cost_at_route_ends():
    points = [GeoPoint(0.0, 0.0), GeoPoint(0.0, 1.0)]
    candidate = GeoPoint(0.0, 2.0)
    assert geospatial.insertion_cost_km(points, 2, candidate) == pytest.approx(
        geospatial.distance_km(points[-1], candidate)
    )


def test_route_progress_and_eta():
    points = [GeoPoint(0.0, 0.0), GeoPoint(0.0, 1.0)]
    assert geospatial.route_progress_pct(GeoPoint(0.0, 0.5), points) == pytest.approx(50.0)
    eta = geospatial.eta_minutes(GeoPoint(0.0, 0.5), points[-1], average_speed_kmh=60.0)
    assert eta == pytest.approx(geospatial.distance_km(GeoPoint(0.0, 0.5), points[-1]))


def test_eta_rejects_non_positive_speed():
    with pytest.raises(ValueError):
        geospatial.eta_minutes(NAIROBI, MOMBASA, 0)


def test_within_radius():
    assert geospatial.within_radius(GeoPoint(0.0, 0.001), GeoPoint(0.0, 0.0), 500)
    assert not geospatial.within_radius(GeoPoint(0.0, 0.01), GeoPoint(0.0, 0.0), 500)


@pytest.mark.parametrize(
    "other, expected",
    [
        (GeoPoint(-1.2921, 36.8219), True),
        (GeoPoint(-1.2921005, 36.8218995), True),
        (GeoPoint(-1.2921 + 1e-5, 36.8219), False),
        (GeoPoint(-1.2921, 36.8219 - 1e-5), False),
    ],
)
def test_almost_equals_tolerates_float_noise_only(other, expected):
    assert NAIROBI.almost_equals(other) is expected


def test_almost_equals_with_custom_epsilon():
    assert NAIROBI.almost_equals(GeoPoint(-1.2931, 36.8229), epsilon=0.01)
    assert not NAIROBI.almost_equals(MOMBASA, epsilon=0.01)
