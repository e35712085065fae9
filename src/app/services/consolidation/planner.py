"""Greedy load consolidation onto an existing trip route.

The planner scores every candidate load by the detour it adds per unit of
revenue, admits loads in that order while capacity allows, and inserts each
admitted pickup and dropoff at its cheapest position in the working path.
There is no backtracking, so the result is a good plan, not an optimal one.
"""

from __future__ import annotations

import logging
import math
import uuid
from typing import Callable, Optional, Sequence

import httpx

from ...models.domain import Capacity, ConsolidatedRoutePlan, GeoPoint, Load, PlanWaypoint, Route, WaypointKind
from ...models.errors import InvalidPlanRequest, NoPlanPossibleError
from ..clients.routing import RouteMetrics, estimate_route_metrics
from ..geospatial import insertion_cost_km

logger = logging.getLogger(__name__)

RouteMetricsProvider = Callable[[Sequence[GeoPoint]], RouteMetrics]

# A stop in the working path: anchors of the original route carry no waypoint.
_Stop = tuple[GeoPoint, Optional[PlanWaypoint]]


def _insertion_bounds(length: int, closed: bool, after: int = 0) -> range:
    # Never insert before the trip origin; keep the destination last when the route has one.
    lo = max(after + 1, 1)
    hi = length - 1 if closed else length
    return range(lo, max(hi, lo) + 1)


def _best_insertion(points: Sequence[GeoPoint], candidate: GeoPoint, closed: bool, after: int = 0) -> tuple[int, float]:
    best_index, best_cost = -1, math.inf
    for index in _insertion_bounds(len(points), closed, after):
        cost = insertion_cost_km(points, index, candidate)
        if cost < best_cost - 1e-9:
            best_index, best_cost = index, cost
    return best_index, best_cost


def _insert_load(points: list[GeoPoint], load: Load, closed: bool) -> tuple[int, int, float]:
    """Cheapest pickup then dropoff positions for ``load``; returns (pickup, dropoff, added km)."""

    pickup_index, pickup_cost = _best_insertion(points, load.pickup, closed)
    with_pickup = points[:pickup_index] + [load.pickup] + points[pickup_index:]
    dropoff_index, dropoff_cost = _best_insertion(with_pickup, load.dropoff, closed, after=pickup_index)
    return pickup_index, dropoff_index, pickup_cost + dropoff_cost


def detour_score(route_points: Sequence[GeoPoint], load: Load) -> float:
    """Added kilometres per unit of revenue; unpriced loads sort last."""
    if load.price <= 0:
        return math.inf
    _, _, added = _insert_load(list(route_points), load, closed=len(route_points) >= 2)
    return added / load.price


def plan_consolidation(
    *,
    trip_id: str,
    current_route: Route,
    candidates: Sequence[Load],
    capacity: Capacity,
    route_metrics: RouteMetricsProvider | None = None,
    average_speed_kmh: float | None = None,
) -> ConsolidatedRoutePlan:
    if capacity.total_capacity <= 0:
        raise InvalidPlanRequest("Vehicle capacity must be positive.")
    if current_route is None or current_route.is_empty:
        raise InvalidPlanRequest(f"Trip {trip_id} has no route to consolidate onto.")
    if not candidates:
        raise NoPlanPossibleError(f"No candidate loads to consolidate onto trip {trip_id}.")

    anchors = list(current_route.points)
    closed = len(anchors) >= 2
    skipped: list[str] = []
    eligible: list[tuple[float, Load]] = []
    seen: set[str] = set()
    for load in candidates:
        if load.id in seen:
            logger.warning(f"Duplicate load {load.id} in candidate pool, ignoring")
            continue
        seen.add(load.id)
        if not load.consolidatable:
            logger.warning(f"Load {load.id} is not consolidatable, skipping")
            skipped.append(load.id)
            continue
        if load.weight_kg < 0 or not load.pickup.is_valid or not load.dropoff.is_valid:
            logger.warning(f"Load {load.id} has invalid weight or coordinates, skipping")
            skipped.append(load.id)
            continue
        eligible.append((detour_score(anchors, load), load))

    eligible.sort(key=lambda item: (item[0], -item[1].price, item[1].id))

    stops: list[_Stop] = [(point, None) for point in anchors]
    admitted: list[Load] = []
    used = 0.0
    for score, load in eligible:
        if used + load.weight_kg > capacity.total_capacity:
            logger.debug(
                f"Load {load.id} ({load.weight_kg} kg) exceeds remaining capacity "
                f"{capacity.total_capacity - used:.1f} kg"
            )
            skipped.append(load.id)
            continue
        points = [point for point, _ in stops]
        pickup_index, dropoff_index, _ = _insert_load(points, load, closed)
        stops.insert(pickup_index, (load.pickup, PlanWaypoint(load.id, load.pickup, WaypointKind.PICKUP)))
        stops.insert(dropoff_index, (load.dropoff, PlanWaypoint(load.id, load.dropoff, WaypointKind.DROPOFF)))
        used += load.weight_kg
        admitted.append(load)

    path = [point for point, _ in stops]
    metrics = _metrics(path, route_metrics, average_speed_kmh)
    plan = ConsolidatedRoutePlan(
        id=str(uuid.uuid4()),
        trip_id=trip_id,
        load_ids=[load.id for load in admitted],
        waypoints=[waypoint for _, waypoint in stops if waypoint is not None],
        path=Route.from_points(path),
        total_distance_km=round(metrics.distance_km, 3),
        total_duration_min=round(metrics.duration_min, 1),
        total_earnings=round(sum(load.price for load in admitted), 2),
        used_capacity=used,
        total_capacity=capacity.total_capacity,
        skipped_load_ids=skipped,
        distance_source=metrics.source,
    )
    logger.info(
        f"Consolidation plan {plan.id} for trip {trip_id}: {len(plan.load_ids)} loads, "
        f"{plan.utilization_pct}% capacity, {plan.total_distance_km} km ({plan.distance_source})"
    )
    return plan


def _metrics(
    path: Sequence[GeoPoint],
    provider: RouteMetricsProvider | None,
    average_speed_kmh: float | None,
) -> RouteMetrics:
    if provider is not None and len(path) >= 2:
        try:
            return provider(path)
        except (ConnectionError, ValueError, httpx.HTTPError) as e:
            logger.warning(f"Route metrics provider failed: {e}. Using haversine fallback.")
    return estimate_route_metrics(path, average_speed_kmh=average_speed_kmh)
