"""Map domain events to per-audience, per-channel messages."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from ...config import settings
from ...models.domain import Audience, Channel, Message, NotificationEvent, NotificationType, TripStatus
from .templates import render

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DispatchRule:
    audiences: tuple[Audience, ...]
    channels: tuple[Channel, ...]


_EVERYONE = (Audience.CUSTOMER, Audience.DRIVER, Audience.COMPANY, Audience.BROKER, Audience.ADMIN)
_ALL_CHANNELS = (Channel.IN_APP, Channel.EMAIL, Channel.SMS)
_IN_APP = (Channel.IN_APP,)

# Keyed by (event type, trip status); a ``None`` status matches any status.
DISPATCH_TABLE: dict[tuple[NotificationType, Optional[TripStatus]], DispatchRule] = {
    (NotificationType.STATUS_CHANGED, TripStatus.ACCEPTED): DispatchRule(_EVERYONE, _ALL_CHANNELS),
    (NotificationType.STATUS_CHANGED, TripStatus.STARTED): DispatchRule(_EVERYONE, _ALL_CHANNELS),
    (NotificationType.STATUS_CHANGED, TripStatus.IN_PROGRESS): DispatchRule(
        (Audience.CUSTOMER, Audience.COMPANY, Audience.BROKER), _IN_APP
    ),
    (NotificationType.STATUS_CHANGED, TripStatus.COMPLETED): DispatchRule(_EVERYONE, _ALL_CHANNELS),
    (NotificationType.STATUS_CHANGED, TripStatus.CANCELLED): DispatchRule(_EVERYONE, _ALL_CHANNELS),
    (NotificationType.ROUTE_DEVIATION, None): DispatchRule(
        (Audience.CUSTOMER, Audience.COMPANY, Audience.BROKER, Audience.ADMIN), _IN_APP
    ),
    (NotificationType.ROUTE_RECOVERED, None): DispatchRule(
        (Audience.CUSTOMER, Audience.COMPANY, Audience.BROKER), _IN_APP
    ),
    (NotificationType.TRAFFIC_ALERT, None): DispatchRule((Audience.DRIVER, Audience.COMPANY), _IN_APP),
}


class NotificationSender(Protocol):
    def send(self, message: Message) -> Any:
        ...


def _event_status(event: NotificationEvent) -> Optional[TripStatus]:
    status = event.payload.get("status")
    if status is None:
        return None
    return TripStatus.parse(status)


def rule_for(event: NotificationEvent) -> Optional[DispatchRule]:
    status = _event_status(event)
    rule = DISPATCH_TABLE.get((event.type, status))
    if rule is None:
        rule = DISPATCH_TABLE.get((event.type, None))
    return rule


def _recipient(audience: Audience, recipients: dict[str, Any], admin_ref: str) -> Optional[str]:
    ref = recipients.get(audience.value)
    if ref:
        return str(ref)
    if audience is Audience.ADMIN:
        return admin_ref
    return None


def map_event(event: NotificationEvent, admin_recipient_ref: str | None = None) -> list[Message]:
    """Messages for ``event`` ordered by audience, then channel. Pure; never delivers."""

    rule = rule_for(event)
    if rule is None:
        logger.debug(f"No dispatch rule for {event.type.value} on trip {event.trip_id}")
        return []

    status = _event_status(event)
    recipients = event.payload.get("recipients") or {}
    admin_ref = admin_recipient_ref or settings.admin_recipient_ref
    messages: list[Message] = []
    for audience in rule.audiences:
        recipient = _recipient(audience, recipients, admin_ref)
        if recipient is None:
            logger.debug(f"No {audience.value} recipient for trip {event.trip_id}, skipping")
            continue
        for channel in rule.channels:
            subject, body = render(event.type, status, audience, channel, event.trip_id, event.payload)
            messages.append(
                Message(channel=channel, audience=audience, recipient_ref=recipient, subject=subject, body=body)
            )
    return messages


async def dispatch(event: NotificationEvent, sender: NotificationSender) -> int:
    """Hand every mapped message to ``sender``; returns how many were accepted."""

    delivered = 0
    for message in map_event(event):
        try:
            result = sender.send(message)
            if inspect.isawaitable(result):
                await result
            delivered += 1
        except Exception as e:
            logger.warning(
                f"Failed to deliver {message.channel.value} message to {message.audience.value} "
                f"for trip {event.trip_id}: {e}"
            )
    logger.info(f"Dispatched {event.type.value} for trip {event.trip_id}: {delivered} message(s)")
    return delivered
