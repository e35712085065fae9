"""Notification preview endpoint."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, status

from ...models.domain import NotificationEvent, NotificationType
from ...schemas.trips import MessageModel, NotificationPreviewRequest
from ...services.notifications import map_event
from ..errors import to_http_exception

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.post("/preview", response_model=List[MessageModel], status_code=status.HTTP_200_OK)
def preview(payload: NotificationPreviewRequest) -> List[MessageModel]:
    """Messages an event would produce, without delivering anything."""
    try:
        event = NotificationEvent(
            type=NotificationType(payload.type),
            trip_id=payload.trip_id,
            payload={**payload.payload, "status": payload.status, "recipients": payload.recipients},
        )
        return [MessageModel.from_domain(message) for message in map_event(event)]
    except Exception as exc:
        raise to_http_exception(exc, "preview notifications") from exc
