"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, status

from ...config import settings
from ...services.clients.routing import check_health
from ...services.runtime import get_runtime

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


@router.get("/health/routing", status_code=status.HTTP_200_OK)
def health_routing() -> dict:
    """Check OSRM availability and report which collaborators are configured."""
    runtime = get_runtime()
    return {
        "service": "osrm",
        "configured": bool(settings.osrm_base_url),
        "healthy": check_health() if settings.osrm_base_url else False,
        "booking_api": runtime.booking_client is not None,
        "traffic_provider": runtime.traffic_client is not None,
        "active_sessions": len(runtime.manager.active_trip_ids()),
    }
