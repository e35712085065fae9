"""Route alternatives and traffic impact endpoints."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, HTTPException, status

from ...models.domain import Route
from ...schemas.traffic import ImpactRequest, ImpactResponse, RankAlternativesRequest, RankedAlternativeModel
from ...services.runtime import get_runtime
from ...services.traffic.aggregator import rank_alternatives, traffic_impact
from ..errors import to_http_exception

router = APIRouter(prefix="/traffic", tags=["traffic"])


@router.post("/alternatives/rank", response_model=List[RankedAlternativeModel], status_code=status.HTTP_200_OK)
def rank(payload: RankAlternativesRequest) -> List[RankedAlternativeModel]:
    try:
        candidates = [route.to_domain() for route in payload.candidates]
        if not candidates:
            routing_client = get_runtime().routing_client
            if routing_client is None or payload.origin is None or payload.destination is None:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Provide candidates, or origin and destination with OSRM configured.",
                )
            candidates = routing_client.alternatives(payload.origin.to_domain(), payload.destination.to_domain())
            if not candidates:
                return []
        baseline = payload.baseline.to_domain() if payload.baseline else candidates[0]
        return [RankedAlternativeModel.from_domain(item) for item in rank_alternatives(baseline, candidates)]
    except Exception as exc:
        raise to_http_exception(exc, "rank route alternatives") from exc


@router.post("/impact", response_model=ImpactResponse, status_code=status.HTTP_200_OK)
def impact(payload: ImpactRequest) -> ImpactResponse:
    route = Route.from_points(p.to_domain() for p in payload.route)
    result = traffic_impact(route, [condition.to_domain() for condition in payload.conditions])
    return ImpactResponse(
        total_delay_min=result.total_delay_min,
        average_speed_kmh=result.average_speed_kmh,
        severity=result.severity.value,
        affected_segments=result.affected_segments,
        recommendations=list(result.recommendations),
    )
