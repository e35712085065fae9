"""Trip and notification schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..models.domain import Message
from ..services.trips.service import TripRecord
from .tracking import PointModel


class CreateTripRequest(BaseModel):
    trip_id: str
    owner_id: str
    route: List[PointModel] = Field(..., min_length=1)
    status: str = "pending"
    recipients: Dict[str, str] = Field(
        default_factory=dict,
        description="Recipient reference per audience (customer, driver, company, broker, admin).",
    )


class StatusChangeRequest(BaseModel):
    status: str
    reason: Optional[str] = None


class TripModel(BaseModel):
    trip_id: str
    owner_id: str
    status: str
    route: List[PointModel]
    recipients: Dict[str, str]
    accepted_plan_id: Optional[str] = None
    updated_at: datetime

    @classmethod
    def from_record(cls, record: TripRecord) -> "TripModel":
        return cls(
            trip_id=record.trip_id,
            owner_id=record.owner_id,
            status=record.status.value,
            route=[PointModel.from_domain(point) for point in record.route.points],
            recipients=dict(record.recipients),
            accepted_plan_id=record.accepted_plan_id,
            updated_at=record.updated_at,
        )


class NotificationPreviewRequest(BaseModel):
    type: str = Field(..., description="status_changed, route_deviation, route_recovered or traffic_alert.")
    trip_id: str
    status: Optional[str] = None
    recipients: Dict[str, str] = Field(default_factory=dict)
    payload: Dict[str, Any] = Field(default_factory=dict)


class MessageModel(BaseModel):
    channel: str
    audience: str
    recipient_ref: str
    subject: str
    body: str

    @classmethod
    def from_domain(cls, message: Message) -> "MessageModel":
        return cls(
            channel=message.channel.value,
            audience=message.audience.value,
            recipient_ref=message.recipient_ref,
            subject=message.subject,
            body=message.body,
        )
