import asyncio

import pytest

from src.app.models.domain import Audience, Channel, NotificationEvent, NotificationType
from src.app.services.notifications import (
    DISPATCH_TABLE,
    LoggingNotificationSender,
    dispatch,
    map_event,
)
from src.app.services.notifications.templates import SMS_MAX_LENGTH

RECIPIENTS = {
    "customer": "cust-1",
    "driver": "drv-1",
    "company": "co-1",
    "broker": "brk-1",
    "admin": "ops-team",
}


def _event(event_type: NotificationType, status: str | None = None, **payload) -> NotificationEvent:
    payload.setdefault("recipients", RECIPIENTS)
    return NotificationEvent(type=event_type, trip_id="T1", payload={"status": status, **payload})


@pytest.mark.parametrize("status", ["accepted", "started", "completed", "cancelled"])
def test_status_defining_events_reach_every_audience_on_every_channel(status):
    messages = map_event(_event(NotificationType.STATUS_CHANGED, status))

    assert len(messages) == 15
    assert {(m.audience, m.channel) for m in messages} == {
        (audience, channel) for audience in Audience for channel in Channel
    }
    assert {m.recipient_ref for m in messages} == set(RECIPIENTS.values())


def test_in_progress_is_in_app_only_for_customer_company_broker():
    messages = map_event(_event(NotificationType.STATUS_CHANGED, "in_progress"))

    assert {m.channel for m in messages} == {Channel.IN_APP}
    assert [m.audience for m in messages] == [Audience.CUSTOMER, Audience.COMPANY, Audience.BROKER]


def test_status_aliases_resolve_to_rules():
    assert map_event(_event(NotificationType.STATUS_CHANGED, "ongoing")) == map_event(
        _event(NotificationType.STATUS_CHANGED, "in_progress")
    )


def test_every_table_entry_includes_in_app():
    for rule in DISPATCH_TABLE.values():
        assert Channel.IN_APP in rule.channels


@pytest.mark.parametrize(
    "event_type, audiences",
    [
        (NotificationType.ROUTE_DEVIATION, [Audience.CUSTOMER, Audience.COMPANY, Audience.BROKER, Audience.ADMIN]),
        (NotificationType.ROUTE_RECOVERED, [Audience.CUSTOMER, Audience.COMPANY, Audience.BROKER]),
        (NotificationType.TRAFFIC_ALERT, [Audience.DRIVER, Audience.COMPANY]),
    ],
)
def test_tracking_events_are_in_app_only(event_type, audiences):
    messages = map_event(_event(event_type, "in_progress", reason="traffic", distance_km=2.4))
    assert [m.audience for m in messages] == audiences
    assert all(m.channel is Channel.IN_APP for m in messages)


def test_missing_recipients_are_skipped_and_admin_falls_back():
    event = _event(NotificationType.STATUS_CHANGED, "accepted", recipients={"customer": "cust-1"})
    messages = map_event(event, admin_recipient_ref="admins")

    assert {m.audience for m in messages} == {Audience.CUSTOMER, Audience.ADMIN}
    assert {m.recipient_ref for m in messages if m.audience is Audience.ADMIN} == {"admins"}


def test_mapping_is_deterministic():
    event = _event(NotificationType.STATUS_CHANGED, "cancelled", reason="customer request")
    assert map_event(event) == map_event(event)


def test_templates_fill_payload_fields():
    cancelled = map_event(_event(NotificationType.STATUS_CHANGED, "cancelled", reason="customer request"))
    customer_in_app = next(m for m in cancelled if m.audience is Audience.CUSTOMER and m.channel is Channel.IN_APP)
    assert "T1" in customer_in_app.body
    assert "customer request" in customer_in_app.body

    deviation = map_event(_event(NotificationType.ROUTE_DEVIATION, "in_progress", reason="road_closure"))
    customer = next(m for m in deviation if m.audience is Audience.CUSTOMER)
    assert "road closure" in customer.body


def test_sms_bodies_fit_one_message():
    messages = map_event(_event(NotificationType.STATUS_CHANGED, "cancelled", reason="x" * 300))
    sms = [m for m in messages if m.channel is Channel.SMS]
    assert sms
    assert all(len(m.body) <= SMS_MAX_LENGTH for m in sms)


def test_pending_and_unknown_events_produce_nothing():
    assert map_event(_event(NotificationType.STATUS_CHANGED, "pending")) == []
    with pytest.raises(ValueError):
        map_event(_event(NotificationType.STATUS_CHANGED, "teleported"))


def test_dispatch_absorbs_delivery_failures():
    class FlakySender(LoggingNotificationSender):
        def send(self, message):
            if message.channel is Channel.SMS:
                raise ConnectionError("sms gateway down")
            super().send(message)

    sender = FlakySender()
    delivered = asyncio.run(dispatch(_event(NotificationType.STATUS_CHANGED, "started"), sender))

    assert delivered == 10
    assert len(sender.sent) == 10
    assert all(m.channel is not Channel.SMS for m in sender.sent)


def test_dispatch_awaits_async_senders():
    class AsyncSender:
        def __init__(self):
            self.sent = []

        async def send(self, message):
            self.sent.append(message)

    sender = AsyncSender()
    delivered = asyncio.run(dispatch(_event(NotificationType.TRAFFIC_ALERT, "in_progress"), sender))
    assert delivered == 2
    assert [m.audience for m in sender.sent] == [Audience.DRIVER, Audience.COMPANY]
