"""
Navigation session registry

Keeps at most one live session per device and wires each session to the
shared pieces: the rerouter (with its global request semaphore), the safety
alert manager, the live review feed, the session store and whoever listens
for UI updates.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

from ..config import Settings, get_settings
from ..exceptions import InvalidSessionStateError, SessionNotFoundError
from ..models.domain import AlertAction, Coordinate, DangerZone, RoutePlan
from .navigation import NavigationProgress, NavigationSession, SessionState
from .position_stream import PositionChannel
from .rerouter import Rerouter, RerouteOutcome
from .review_feed import ReviewFeed, ReviewSubscription
from .route_cache import RouteCache
from .route_selector import RouteSelection, RouteSelector, plan_to_dict
from .safety_alerts import AlertDecision, AlertPrompt, SafetyAlertManager

logger = logging.getLogger(__name__)

Publisher = Callable[[str, str, Dict[str, Any]], Awaitable[None]]


@dataclass
class _LiveSession:
    session: NavigationSession
    stream: PositionChannel
    reviews: ReviewSubscription


class NavigationManager:
    def __init__(
        self,
        selector: RouteSelector,
        ledger,
        feed: ReviewFeed,
        store=None,
        publisher: Optional[Publisher] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.selector = selector
        self.feed = feed
        self.store = store
        self.publisher = publisher
        self.semaphore = asyncio.Semaphore(self.settings.max_concurrent_route_requests)
        self.rerouter = Rerouter(selector, self.semaphore, self.settings, on_result=self._on_reroute)
        self.alerts = SafetyAlertManager(ledger, self.rerouter, self.settings, on_prompt=self._on_prompt)
        # Plans handed out by /routes/plan, so a session can start on one of them
        self.plans = RouteCache(ttl_seconds=self.settings.route_cache_ttl_seconds, max_size=self.settings.route_cache_max_size)
        # Recently ended sessions, by id
        self.ended = RouteCache(ttl_seconds=self.settings.route_cache_ttl_seconds, max_size=self.settings.route_cache_max_size)
        self._sessions: Dict[str, _LiveSession] = {}
        self._by_device: Dict[str, str] = {}

    # ---------------------------------------------------------------- plans

    async def plan(
        self,
        origin: Coordinate,
        destination: Coordinate,
        hour: Optional[int] = None,
        zones: Sequence[DangerZone] = (),
    ) -> RouteSelection:
        selection = await self.selector.select(origin, destination, hour=hour, zones=zones)
        for plan in selection.plans:
            self.plans.set(plan.id, plan)
        return selection

    def find_plan(self, route_id: str) -> Optional[RoutePlan]:
        return self.plans.get(route_id)

    # ------------------------------------------------------------- sessions

    def get(self, session_id: str) -> NavigationSession:
        live = self._sessions.get(session_id)
        if live is not None:
            return live.session
        ended = self.ended.get(session_id)
        if ended is None:
            raise SessionNotFoundError(session_id)
        return ended

    def session_for_device(self, device_id: str) -> Optional[NavigationSession]:
        session_id = self._by_device.get(device_id)
        return self._sessions[session_id].session if session_id in self._sessions else None

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    async def start(
        self,
        device_id: str,
        route: Optional[RoutePlan],
        location_available: bool = True,
        utc_offset_minutes: int = 0,
        avoid_zones: Sequence[DangerZone] = (),
    ) -> NavigationSession:
        previous = self._by_device.get(device_id)
        if previous is not None:
            logger.info(f"Device {device_id} started a new session; ending {previous}")
            await self.end(previous)

        session = NavigationSession(
            device_id=device_id,
            destination=route.destination if route else None,
            utc_offset_minutes=utc_offset_minutes,
            avoid_zones=avoid_zones,
            settings=self.settings,
        )
        stream = PositionChannel(available=location_available)
        await session.start(route, stream)

        subscription = self.feed.subscribe()
        self._sessions[session.session_id] = _LiveSession(session, stream, subscription)
        self._by_device[device_id] = session.session_id

        session.add_listener(self._on_position)
        session.track(asyncio.create_task(self._pump_reviews(session, subscription)))

        if self.store is not None:
            await self.store.record_start(session)

        # Reviews posted between planning and starting still count
        for review in await self.feed.recent(route.created_at):
            await self.alerts.observe_review(session, review)
        return session

    async def push_position(self, session_id: str, position: Coordinate, wait: bool = True) -> NavigationProgress:
        live = self._sessions.get(session_id)
        if live is None:
            if self.ended.get(session_id) is not None:
                raise InvalidSessionStateError("Navigation has ended")
            raise SessionNotFoundError(session_id)
        if not live.stream.push(position):
            raise InvalidSessionStateError("Navigation has ended")
        live.session.positions_received += 1
        if wait:
            await live.session.wait_processed(live.session.positions_received)
        return live.session.progress()

    def pending_alert(self, session_id: str) -> Optional[AlertPrompt]:
        self.get(session_id)
        return self.alerts.pending_prompt(session_id)

    async def decide(self, session_id: str, action: AlertAction) -> AlertDecision:
        session = self.get(session_id)
        if session.state == SessionState.ENDED:
            raise InvalidSessionStateError("Navigation has ended")
        return await self.alerts.resolve(session, action)

    async def end(self, session_id: str) -> bool:
        live = self._sessions.pop(session_id, None)
        if live is None:
            return False
        session = live.session
        self.ended.set(session_id, session)
        if self._by_device.get(session.device_id) == session_id:
            del self._by_device[session.device_id]

        live.reviews.close()
        ended = await session.end()
        self.alerts.forget(session_id)
        self.rerouter.forget(session_id)

        if ended and self.store is not None:
            await self.store.record_end(session)
        await self._publish(session_id, "ended", session.progress().to_dict())
        return ended

    async def shutdown(self):
        for session_id in list(self._sessions):
            await self.end(session_id)

    # ------------------------------------------------------------ callbacks

    async def _on_position(self, session: NavigationSession, position: Coordinate):
        await self._publish(session.session_id, "progress", session.progress().to_dict())
        task = await self.rerouter.check(session, position)
        if task is None:
            await self.alerts.on_position(session, position)

    async def _pump_reviews(self, session: NavigationSession, subscription: ReviewSubscription):
        async for review in subscription:
            if session.state == SessionState.ENDED:
                break
            await self.alerts.observe_review(session, review)

    async def _on_reroute(self, session: NavigationSession, outcome: RerouteOutcome):
        if outcome.rerouted and outcome.route is not None:
            self.plans.set(outcome.route.id, outcome.route)
            if self.store is not None:
                await self.store.record_route(session, outcome.route)
            await self._publish(session.session_id, "rerouted", plan_to_dict(outcome.route))
        else:
            await self._publish(session.session_id, "reroute_failed", {"message": outcome.message})

    async def _on_prompt(self, session: NavigationSession, prompt: AlertPrompt):
        await self._publish(session.session_id, "safety_alert", prompt.to_dict())

    async def _publish(self, session_id: str, event: str, payload: Dict[str, Any]):
        if self.publisher is not None:
            await self.publisher(session_id, event, payload)

