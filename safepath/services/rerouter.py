import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from ..config import Settings, get_settings
from ..exceptions import SafePathError
from ..models.domain import Coordinate, RoutePlan
from ..utils.timezone import local_hour
from . import geomath
from .navigation import NavigationSession, SessionState

logger = logging.getLogger(__name__)

CONTINUE_ON_CURRENT_ROUTE = "Could not find a new route. Continue on current route."


@dataclass(frozen=True)
class RerouteOutcome:
    session_id: str
    rerouted: bool
    route: Optional[RoutePlan] = None
    message: Optional[str] = None
    discarded: bool = False


RerouteCallback = Callable[[NavigationSession, RerouteOutcome], Awaitable[None]]


class DeviationDetector:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def distance_off_route(self, session: NavigationSession, position: Coordinate) -> float:
        if session.route is None or not session.route.polyline:
            return 0.0
        return geomath.min_distance_to_polyline(position, session.route.polyline)

    def is_off_route(self, session: NavigationSession, position: Coordinate) -> bool:
        return self.distance_off_route(session, position) > self.settings.route_recalculation_threshold_meters


class Rerouter:
    """Requests a replacement route when the traveler leaves the corridor.

    At most one request per session is in flight, and the shared semaphore
    caps concurrent oracle calls across all sessions.
    """

    def __init__(
        self,
        selector,
        semaphore: Optional[asyncio.Semaphore] = None,
        settings: Optional[Settings] = None,
        on_result: Optional[RerouteCallback] = None,
    ):
        self.settings = settings or get_settings()
        self.selector = selector
        self.semaphore = semaphore or asyncio.Semaphore(self.settings.max_concurrent_route_requests)
        self.detector = DeviationDetector(self.settings)
        self.on_result = on_result
        self._pending: Dict[str, asyncio.Task] = {}

    def has_pending(self, session_id: str) -> bool:
        task = self._pending.get(session_id)
        return task is not None and not task.done()

    async def check(self, session: NavigationSession, position: Coordinate) -> Optional[asyncio.Task]:
        """Position listener: start a reroute when off route"""
        if session.state != SessionState.ACTIVE:
            return None
        if not self.detector.is_off_route(session, position):
            return None
        off_by = self.detector.distance_off_route(session, position)
        logger.info(f"Session {session.session_id} is {off_by:.0f}m off route")
        return self.request(session, position)

    def request(
        self, session: NavigationSession, position: Optional[Coordinate] = None, force: bool = False
    ) -> Optional[asyncio.Task]:
        """Start a reroute task; None if one is already running or the session is not active.

        force skips the off-route threshold (used when the traveler asks for a safer route).
        """
        if self.has_pending(session.session_id):
            return None
        origin = position or session.position
        if origin is None and session.route is not None:
            origin = session.route.origin
        if origin is None:
            return None
        if not force and not self.detector.is_off_route(session, origin):
            return None
        if not session.begin_reroute():
            return None

        task = session.track(asyncio.create_task(self._reroute(session, origin)))
        self._pending[session.session_id] = task
        return task

    async def _reroute(self, session: NavigationSession, origin: Coordinate) -> RerouteOutcome:
        try:
            try:
                async with self.semaphore:
                    selection = await self.selector.select(
                        origin,
                        session.destination,
                        hour=local_hour(utc_offset_minutes=session.utc_offset_minutes),
                        zones=session.avoid_zones,
                    )
            except (SafePathError, asyncio.TimeoutError) as e:
                logger.warning(f"Reroute failed for session {session.session_id}: {e}")
                resumed = await session.finish_reroute(None)
                outcome = RerouteOutcome(
                    session_id=session.session_id,
                    rerouted=False,
                    message=CONTINUE_ON_CURRENT_ROUTE,
                    discarded=not resumed,
                )
            else:
                applied = await session.finish_reroute(selection.best)
                if not applied:
                    logger.warning(f"Discarding reroute result for ended session {session.session_id}")
                outcome = RerouteOutcome(
                    session_id=session.session_id,
                    rerouted=applied,
                    route=selection.best if applied else None,
                    discarded=not applied,
                )
        finally:
            self._pending.pop(session.session_id, None)

        if self.on_result is not None and not outcome.discarded:
            await self.on_result(session, outcome)
        return outcome

    def forget(self, session_id: str):
        self._pending.pop(session_id, None)
