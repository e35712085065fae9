"""Process-wide wiring of services from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from ..config import Settings, settings
from .clients.booking_api import BookingApiClient
from .clients.routing import RoutingClient
from .clients.traffic import TrafficClient
from .deviation.detector import DeviationDetector, DeviationTracker
from .notifications.dispatcher import NotificationSender
from .notifications.senders import LoggingNotificationSender, WebhookNotificationSender
from .tracking.manager import TrackingSessionManager
from .tracking.sources import NewestPositionSource, PositionFeed
from .traffic.aggregator import AlertAggregator
from .trips.service import TripService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    manager: TrackingSessionManager
    trips: TripService
    feed: PositionFeed
    sender: NotificationSender
    booking_client: Optional[BookingApiClient] = None
    traffic_client: Optional[TrafficClient] = None
    routing_client: Optional[RoutingClient] = None

    async def aclose(self) -> None:
        await self.manager.shutdown()
        for client in (self.booking_client, self.traffic_client, self.sender):
            aclose = getattr(client, "aclose", None)
            if aclose is not None:
                await aclose()


def build_runtime(config: Settings | None = None) -> Runtime:
    config = config or settings
    feed = PositionFeed()
    booking_client = (
        BookingApiClient(base_url=config.booking_api_base_url, token=config.booking_api_token)
        if config.booking_api_base_url
        else None
    )
    traffic_client = (
        TrafficClient(base_url=config.traffic_api_base_url, radius_m=config.traffic_radius_m)
        if config.traffic_api_base_url
        else None
    )
    routing_client = (
        RoutingClient(base_url=config.osrm_base_url, profile=config.osrm_profile) if config.osrm_base_url else None
    )
    sender: NotificationSender = (
        WebhookNotificationSender(config.notification_webhook_url) if config.notification_webhook_url else LoggingNotificationSender()
    )

    detector = DeviationDetector(threshold=config.deviation_threshold, strategy=config.deviation_strategy)
    manager = TrackingSessionManager(
        positions=NewestPositionSource(feed, booking_client) if booking_client else feed,
        traffic=traffic_client,
        deviations=DeviationTracker(detector),
        aggregator=AlertAggregator(
            threshold=config.deviation_threshold,
            history_limit=config.alert_history_limit,
            high_severity_factor=config.high_severity_factor,
        ),
        interval_seconds=config.tracking_interval_seconds,
        fetch_timeout_seconds=config.position_fetch_timeout_seconds,
        degraded_after=config.degraded_after_failures,
        trackable_statuses=config.trackable_statuses,
        average_speed_kmh=config.average_speed_kmh,
    )
    trips = TripService(manager, sender, booking_client=booking_client)
    manager.statuses = booking_client or trips
    manager.event_sink = trips.publish

    logger.info(
        f"Runtime ready (booking_api={'on' if booking_client else 'off'}, "
        f"traffic={'on' if traffic_client else 'off'}, osrm={'on' if routing_client else 'off'}, "
        f"sender={type(sender).__name__})"
    )
    return Runtime(
        manager=manager,
        trips=trips,
        feed=feed,
        sender=sender,
        booking_client=booking_client,
        traffic_client=traffic_client,
        routing_client=routing_client,
    )


@lru_cache(maxsize=1)
def get_runtime() -> Runtime:
    return build_runtime()


async def close_runtime() -> None:
    if get_runtime.cache_info().currsize:
        await get_runtime().aclose()
    get_runtime.cache_clear()
