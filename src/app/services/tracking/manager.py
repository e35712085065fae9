"""Per-trip tracking sessions driven by one asyncio task each."""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from ...config import settings
from ...models.domain import (
    AlertType,
    NotificationEvent,
    NotificationType,
    Route,
    RouteDeviationEvent,
    TrackedPosition,
    TrafficAlert,
    TripStatus,
)
from ...models.errors import TripNotFoundError, TripStateError
from ..deviation.detector import DeviationTracker
from ..geospatial import eta_minutes, route_progress_pct
from ..traffic.aggregator import AlertAggregator
from .sources import PositionSource, TrafficSource, TripStatusSource

logger = logging.getLogger(__name__)

Callback = Callable[..., Any]
EventSink = Callable[[NotificationEvent], Any]


class SessionState(str, Enum):
    ACTIVE = "active"
    STOPPED = "stopped"


@dataclass(slots=True)
class TrackingObserver:
    """Callbacks may be plain functions or coroutines; any of them may be omitted."""

    on_location_update: Optional[Callback] = None
    on_route_deviation: Optional[Callback] = None
    on_traffic_alert: Optional[Callback] = None
    on_degraded: Optional[Callback] = None
    on_stopped: Optional[Callback] = None


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    trip_id: str
    owner_id: str
    state: SessionState
    status: Optional[TripStatus]
    started_at: datetime
    last_update_time: Optional[datetime]
    latest_position: Optional[TrackedPosition]
    is_deviating: bool
    degraded: bool
    consecutive_failures: int
    tick_count: int
    alerts: tuple[TrafficAlert, ...]
    eta_min: Optional[float]
    progress_pct: Optional[float]


@dataclass(slots=True)
class TrackingSession:
    trip_id: str
    owner_id: str
    route: Route
    status: Optional[TripStatus] = None
    recipients: dict[str, str] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    state: SessionState = SessionState.ACTIVE
    last_update_time: Optional[datetime] = None
    latest_position: Optional[TrackedPosition] = None
    consecutive_failures: int = 0
    degraded: bool = False
    tick_count: int = 0
    alerts: tuple[TrafficAlert, ...] = ()
    notified_alert_ids: set[str] = field(default_factory=set)
    observers: dict[str, TrackingObserver] = field(default_factory=dict)
    task: Optional[asyncio.Task] = None

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE


class TrackingSessionManager:
    """Owns every live tracking session.

    Each active trip gets exactly one polling task. A tick fetches the latest
    position and trip status within a timebox, runs deviation detection and
    alert aggregation, then calls the subscribed observers in order. A tick
    is skipped when the fetch fails or brings no report newer than the last
    one; after ``degraded_after`` consecutive skips the observers get
    ``on_degraded``. Sessions end on ``stop``, on ``shutdown``
    or when the trip leaves the trackable statuses.
    """

    def __init__(
        self,
        positions: PositionSource,
        statuses: TripStatusSource | None = None,
        traffic: TrafficSource | None = None,
        *,
        deviations: DeviationTracker | None = None,
        aggregator: AlertAggregator | None = None,
        event_sink: EventSink | None = None,
        interval_seconds: float | None = None,
        fetch_timeout_seconds: float | None = None,
        degraded_after: int | None = None,
        trackable_statuses: Iterable[TripStatus | str] | None = None,
        average_speed_kmh: float | None = None,
    ) -> None:
        self.positions = positions
        self.statuses = statuses
        self.traffic = traffic
        self.deviations = deviations or DeviationTracker()
        self.aggregator = aggregator or AlertAggregator(threshold=self.deviations.detector.threshold)
        self.event_sink = event_sink
        self.interval_seconds = interval_seconds or settings.tracking_interval_seconds
        self.fetch_timeout_seconds = fetch_timeout_seconds or settings.position_fetch_timeout_seconds
        self.degraded_after = degraded_after or settings.degraded_after_failures
        self.trackable_statuses = frozenset(
            TripStatus.parse(value) for value in (trackable_statuses or settings.trackable_statuses)
        )
        self.average_speed_kmh = average_speed_kmh or settings.average_speed_kmh
        self._sessions: dict[str, TrackingSession] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def is_trackable(self, status: Optional[TripStatus]) -> bool:
        return status in self.trackable_statuses

    async def start(
        self,
        trip_id: str,
        owner_id: str,
        route: Route,
        *,
        status: TripStatus | None = None,
        recipients: dict[str, str] | None = None,
        observer: TrackingObserver | None = None,
    ) -> TrackingSession:
        existing = self._sessions.get(trip_id)
        if existing is not None and existing.is_active:
            if observer is not None:
                self.subscribe(trip_id, observer)
            return existing

        if route is None or route.is_empty:
            raise TripStateError(f"Trip {trip_id} has no route to track.")
        if status is None and self.statuses is not None:
            status = await self.statuses.trip_status(trip_id)
            # another caller may have started the trip while we awaited
            existing = self._sessions.get(trip_id)
            if existing is not None and existing.is_active:
                if observer is not None:
                    self.subscribe(trip_id, observer)
                return existing
        if status is None:
            raise TripNotFoundError(f"Trip {trip_id} not found.")
        if not self.is_trackable(status):
            raise TripStateError(f"Trip {trip_id} is {status.value} and cannot be tracked.")

        session = TrackingSession(
            trip_id=trip_id,
            owner_id=owner_id,
            route=route,
            status=status,
            recipients=dict(recipients or {}),
        )
        if observer is not None:
            session.observers[uuid.uuid4().hex] = observer
        self._sessions[trip_id] = session
        session.task = asyncio.create_task(self._run(session), name=f"tracking:{trip_id}")
        logger.info(f"Started tracking trip {trip_id} for {owner_id} (interval={self.interval_seconds}s)")
        return session

    async def stop(self, trip_id: str, reason: str = "stopped") -> bool:
        session = self._sessions.pop(trip_id, None)
        if session is None or not session.is_active:
            return False
        session.state = SessionState.STOPPED

        task = session.task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self.deviations.reset(trip_id)
        self.aggregator.discard(trip_id)
        forget = getattr(self.positions, "forget", None)
        if forget is not None:
            forget(trip_id)
        logger.info(f"Stopped tracking trip {trip_id}: {reason}")
        await self._emit(session, "on_stopped", self._snapshot(session), reason)
        return True

    async def shutdown(self) -> None:
        for trip_id in list(self._sessions):
            await self.stop(trip_id, reason="shutdown")

    async def notify_status(self, trip_id: str, status: TripStatus) -> None:
        """Apply a status pushed by the trip service or an external webhook."""
        session = self._sessions.get(trip_id)
        if session is None:
            return
        session.status = status
        if not self.is_trackable(status):
            await self.stop(trip_id, reason=f"trip {status.value}")

    def replace_route(self, trip_id: str, route: Route) -> None:
        session = self._sessions.get(trip_id)
        if session is None or not session.is_active:
            raise TripStateError(f"Trip {trip_id} has no active tracking session.")
        if route.is_empty:
            raise TripStateError(f"Cannot replace the route of trip {trip_id} with an empty route.")
        session.route = route
        logger.info(f"Replaced route of trip {trip_id} ({len(route.points)} points)")

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------
    def subscribe(self, trip_id: str, observer: TrackingObserver) -> str:
        session = self._sessions.get(trip_id)
        if session is None or not session.is_active:
            raise TripStateError(f"Trip {trip_id} has no active tracking session.")
        token = uuid.uuid4().hex
        session.observers[token] = observer
        return token

    def unsubscribe(self, trip_id: str, token: str) -> bool:
        session = self._sessions.get(trip_id)
        if session is None:
            return False
        return session.observers.pop(token, None) is not None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get(self, trip_id: str) -> Optional[TrackingSession]:
        return self._sessions.get(trip_id)

    def is_active(self, trip_id: str) -> bool:
        session = self._sessions.get(trip_id)
        return session is not None and session.is_active

    def active_trip_ids(self) -> list[str]:
        return sorted(trip_id for trip_id, session in self._sessions.items() if session.is_active)

    def snapshot(self, trip_id: str) -> SessionSnapshot:
        session = self._sessions.get(trip_id)
        if session is None:
            raise TripNotFoundError(f"Trip {trip_id} is not being tracked.")
        return self._snapshot(session)

    def alert_history(self, trip_id: str) -> list[TrafficAlert]:
        if trip_id not in self._sessions:
            raise TripNotFoundError(f"Trip {trip_id} is not being tracked.")
        return self.aggregator.history(trip_id)

    def _snapshot(self, session: TrackingSession) -> SessionSnapshot:
        eta = progress = None
        position = session.latest_position
        if position is not None and session.route.end is not None:
            eta = round(eta_minutes(position.point, session.route.end, self.average_speed_kmh), 1)
            progress = route_progress_pct(position.point, session.route.points)
        return SessionSnapshot(
            trip_id=session.trip_id,
            owner_id=session.owner_id,
            state=session.state,
            status=session.status,
            started_at=session.started_at,
            last_update_time=session.last_update_time,
            latest_position=position,
            is_deviating=self.deviations.is_deviating(session.trip_id),
            degraded=session.degraded,
            consecutive_failures=session.consecutive_failures,
            tick_count=session.tick_count,
            alerts=session.alerts,
            eta_min=eta,
            progress_pct=progress,
        )

    # ------------------------------------------------------------------
    # Polling loop
    # ------------------------------------------------------------------
    async def _run(self, session: TrackingSession) -> None:
        while session.is_active:
            await self._tick(session)
            if not session.is_active:
                break
            await asyncio.sleep(self.interval_seconds)

    async def _fetch(self, trip_id: str) -> tuple[Optional[TrackedPosition], Optional[TripStatus]]:
        position = await self.positions.latest_position(trip_id)
        status = await self.statuses.trip_status(trip_id) if self.statuses is not None else None
        return position, status

    async def _tick(self, session: TrackingSession) -> None:
        trip_id = session.trip_id
        try:
            position, status = await asyncio.wait_for(self._fetch(trip_id), timeout=self.fetch_timeout_seconds)
        except asyncio.TimeoutError:
            await self._record_failure(session, f"fetch timed out after {self.fetch_timeout_seconds}s")
            return
        except Exception as e:
            await self._record_failure(session, str(e) or type(e).__name__)
            return

        if status is not None:
            session.status = status
            if not self.is_trackable(status):
                await self.stop(trip_id, reason=f"trip {status.value}")
                return
        if position is None:
            await self._record_failure(session, "no position reported")
            return
        previous = session.latest_position
        if previous is not None and position.timestamp <= previous.timestamp:
            await self._record_failure(session, f"no new position since {previous.timestamp.isoformat()}")
            return

        if session.degraded:
            session.degraded = False
            logger.info(f"Tracking of trip {trip_id} recovered after {session.consecutive_failures} failures")
            session.consecutive_failures = 0
            await self._emit(session, "on_degraded", self._snapshot(session))
        session.consecutive_failures = 0

        event = self.deviations.update(trip_id, session.route, position.point, at=position.timestamp)
        external = await self._traffic_alerts(session, position)
        alerts = self.aggregator.aggregate(trip_id, event, external)

        session.latest_position = position
        session.alerts = tuple(alerts)
        session.last_update_time = datetime.now(timezone.utc)
        session.tick_count += 1
        logger.debug(f"Tick {session.tick_count} for trip {trip_id}: {len(alerts)} active alerts")

        await self._emit(session, "on_location_update", position)
        if event is not None:
            await self._emit(session, "on_route_deviation", event)
            await self._publish_deviation(session, event)
        if alerts:
            await self._emit(session, "on_traffic_alert", list(alerts))
        for alert in alerts:
            if alert.type is AlertType.ROUTE_DEVIATION or alert.id in session.notified_alert_ids:
                continue
            session.notified_alert_ids.add(alert.id)
            await self._publish_traffic_alert(session, alert)

    async def _traffic_alerts(self, session: TrackingSession, position: TrackedPosition) -> list[TrafficAlert]:
        if self.traffic is None:
            return []
        try:
            return await asyncio.wait_for(
                self.traffic.alerts_for(session.trip_id, position.point),
                timeout=self.fetch_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Traffic lookup for trip {session.trip_id} timed out")
        except Exception as e:
            logger.warning(f"Traffic lookup for trip {session.trip_id} failed: {e}")
        return []

    async def _record_failure(self, session: TrackingSession, reason: str) -> None:
        session.consecutive_failures += 1
        logger.warning(
            f"Tracking tick for trip {session.trip_id} skipped "
            f"({session.consecutive_failures} consecutive failures): {reason}"
        )
        if session.consecutive_failures == self.degraded_after:
            session.degraded = True
            logger.warning(f"Tracking of trip {session.trip_id} is degraded")
            await self._emit(session, "on_degraded", self._snapshot(session))

    async def _publish_deviation(self, session: TrackingSession, event: RouteDeviationEvent) -> None:
        await self._publish(
            session,
            NotificationType.ROUTE_DEVIATION if event.is_deviating else NotificationType.ROUTE_RECOVERED,
            reason=event.reason,
            distance_km=event.distance_km,
        )

    async def _publish_traffic_alert(self, session: TrackingSession, alert: TrafficAlert) -> None:
        await self._publish(
            session,
            NotificationType.TRAFFIC_ALERT,
            alert_id=alert.id,
            alert_type=alert.type.value,
            severity=alert.severity.value,
            alert_message=alert.message,
            delay_min=alert.delay_min,
        )

    async def _publish(self, session: TrackingSession, event_type: NotificationType, **details: Any) -> None:
        """Hand one event to the sink; an awaitable sink gets the fetch timeout."""
        if self.event_sink is None:
            return
        notification = NotificationEvent(
            type=event_type,
            trip_id=session.trip_id,
            payload={
                "status": session.status.value if session.status else None,
                "recipients": dict(session.recipients),
                **details,
            },
        )
        try:
            result = self.event_sink(notification)
            if inspect.isawaitable(result):
                await asyncio.wait_for(result, timeout=self.fetch_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                f"Publishing {event_type.value} for trip {session.trip_id} "
                f"exceeded {self.fetch_timeout_seconds}s and was abandoned"
            )
        except Exception:
            logger.exception(f"Failed to publish {event_type.value} for trip {session.trip_id}")

    async def _emit(self, session: TrackingSession, hook: str, *args: Any) -> None:
        for token, observer in list(session.observers.items()):
            callback = getattr(observer, hook)
            if callback is None:
                continue
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Observer {token[:8]} failed in {hook} for trip {session.trip_id}")
