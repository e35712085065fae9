"""Audience-specific message templates."""

from __future__ import annotations

from typing import Any

from ...models.domain import Audience, Channel, NotificationType, TripStatus
from ..traffic.aggregator import deviation_message

SMS_MAX_LENGTH = 160

# (subject, body) per status; audience overrides fall back to the "*" entry.
STATUS_TEMPLATES: dict[TripStatus, dict[str, tuple[str, str]]] = {
    TripStatus.ACCEPTED: {
        "*": ("Booking Accepted", "Booking #{trip_id} has been accepted."),
        Audience.CUSTOMER.value: ("Booking Accepted", "Your booking #{trip_id} has been accepted by your transporter."),
        Audience.DRIVER.value: ("New Trip Assigned", "Trip #{trip_id} has been assigned to you."),
    },
    TripStatus.STARTED: {
        "*": ("Trip Started", "Trip #{trip_id} has started."),
        Audience.CUSTOMER.value: ("Trip Started", "Your trip #{trip_id} has started. Track progress in real-time."),
        Audience.DRIVER.value: ("Trip Started", "You have started trip #{trip_id}. Drive safely."),
    },
    TripStatus.IN_PROGRESS: {
        "*": ("Trip In Progress", "Trip #{trip_id} is currently in progress."),
        Audience.CUSTOMER.value: ("Trip In Progress", "Your trip #{trip_id} is currently in progress."),
    },
    TripStatus.COMPLETED: {
        "*": ("Trip Completed", "Trip #{trip_id} has been completed successfully."),
        Audience.CUSTOMER.value: ("Trip Completed", "Your trip #{trip_id} has been completed successfully."),
        Audience.DRIVER.value: ("Trip Completed", "Well done, trip #{trip_id} is complete."),
    },
    TripStatus.CANCELLED: {
        "*": ("Trip Cancelled", "Trip #{trip_id} has been cancelled. Reason: {reason}"),
        Audience.CUSTOMER.value: ("Booking Cancelled", "Your booking #{trip_id} has been cancelled. Reason: {reason}"),
    },
}

EVENT_TEMPLATES: dict[NotificationType, dict[str, tuple[str, str]]] = {
    NotificationType.ROUTE_DEVIATION: {
        "*": ("Route Deviation", "Trip #{trip_id} deviated from the planned route ({distance_km} km off)."),
        Audience.CUSTOMER.value: ("Route Update", "{reason_message}."),
    },
    NotificationType.ROUTE_RECOVERED: {
        "*": ("Back On Route", "Trip #{trip_id} is back on the planned route."),
        Audience.CUSTOMER.value: ("Route Update", "Your transporter is back on the planned route."),
    },
    NotificationType.TRAFFIC_ALERT: {
        "*": ("Traffic Alert", "{alert_message}"),
        Audience.DRIVER.value: ("Traffic Ahead", "{alert_message}. Consider an alternative route."),
    },
}


def _context(trip_id: str, payload: dict[str, Any]) -> dict[str, Any]:
    reason = payload.get("reason") or "not specified"
    distance = payload.get("distance_km")
    return {
        "trip_id": trip_id,
        "reason": reason,
        "reason_message": deviation_message(str(reason)),
        "distance_km": f"{distance:.1f}" if isinstance(distance, (int, float)) else "?",
        "alert_message": payload.get("alert_message") or "Traffic conditions may affect your trip",
    }


def render(
    event_type: NotificationType,
    status: TripStatus | None,
    audience: Audience,
    channel: Channel,
    trip_id: str,
    payload: dict[str, Any],
) -> tuple[str, str]:
    """Deterministic (subject, body) for one audience and channel."""

    if event_type is NotificationType.STATUS_CHANGED:
        table = STATUS_TEMPLATES.get(status) if status else None
    else:
        table = EVENT_TEMPLATES.get(event_type)
    if not table:
        raise ValueError(f"No template for {event_type.value} ({status.value if status else 'any status'}).")

    subject, body = table.get(audience.value, table["*"])
    body = body.format(**_context(trip_id, payload))
    if channel is Channel.SMS:
        text = f"{subject}: {body}"
        body = text if len(text) <= SMS_MAX_LENGTH else text[: SMS_MAX_LENGTH - 3] + "..."
    return subject, body
