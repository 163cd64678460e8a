"""
Live navigation session

A session follows one RoutePlan at a time. A single consumer task applies
position updates in arrival order; route swaps and position processing share
one lock so a reroute never interleaves with a step advance.

States: idle -> active <-> rerouting, and active/rerouting -> ended.
"""

import asyncio
import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, Sequence, Set

from ..config import Settings, get_settings
from ..exceptions import InvalidSessionStateError, PositionUnavailableError
from ..models.domain import Coordinate, DangerZone, RoutePlan, RouteStep
from ..utils.timezone import now_utc
from . import geomath
from .position_stream import PositionChannel

logger = logging.getLogger(__name__)

PositionListener = Callable[["NavigationSession", Coordinate], Awaitable[None]]


class SessionState(enum.Enum):
    IDLE = "idle"
    ACTIVE = "active"
    REROUTING = "rerouting"
    ENDED = "ended"


@dataclass(frozen=True)
class NavigationProgress:
    session_id: str
    state: SessionState
    route_id: Optional[str]
    current_step_index: int
    current_instruction: str
    next_instruction: Optional[str]
    distance_to_turn_m: float
    remaining_distance_m: float
    remaining_minutes: float
    eta: Optional[datetime]
    position: Optional[Coordinate]
    arrived: bool = False

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "route_id": self.route_id,
            "current_step_index": self.current_step_index,
            "current_instruction": self.current_instruction,
            "next_instruction": self.next_instruction,
            "distance_to_turn_m": round(self.distance_to_turn_m, 1),
            "remaining_distance_m": round(self.remaining_distance_m, 1),
            "remaining_minutes": round(self.remaining_minutes, 1),
            "eta": self.eta.isoformat() if self.eta else None,
            "position": self.position.to_dict() if self.position else None,
            "arrived": self.arrived,
        }


class NavigationSession:
    def __init__(
        self,
        device_id: Optional[str] = None,
        destination: Optional[Coordinate] = None,
        utc_offset_minutes: int = 0,
        avoid_zones: Sequence[DangerZone] = (),
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.session_id = uuid.uuid4().hex
        self.device_id = device_id
        self.destination = destination
        self.utc_offset_minutes = utc_offset_minutes
        self.avoid_zones = tuple(avoid_zones)

        self.state = SessionState.IDLE
        self.route: Optional[RoutePlan] = None
        self.route_history: List[str] = []
        self.current_step_index = 0
        self.position: Optional[Coordinate] = None
        self.created_at = now_utc()
        self.ended_at: Optional[datetime] = None

        self.lock = asyncio.Lock()
        self._stream: Optional[PositionChannel] = None
        self._consumer: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[PositionListener] = []
        self.positions_received = 0
        self.positions_processed = 0
        self._processed = asyncio.Condition()

    @property
    def active_route_id(self) -> Optional[str]:
        return self.route.id if self.route else None

    @property
    def is_live(self) -> bool:
        return self.state in (SessionState.ACTIVE, SessionState.REROUTING)

    def add_listener(self, listener: PositionListener):
        self._listeners.append(listener)

    def track(self, task: asyncio.Task) -> asyncio.Task:
        """Keep a reference so end() can cancel it"""
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def start(self, route: Optional[RoutePlan], stream: Optional[PositionChannel]):
        if self.state != SessionState.IDLE:
            raise InvalidSessionStateError(f"Session {self.session_id} is already {self.state.value}")
        if route is None:
            raise InvalidSessionStateError("No route selected; plan a route before starting navigation")
        if stream is None or not stream.available or stream.closed:
            raise PositionUnavailableError("Location access is required for navigation")

        self.route = route
        self.route_history.append(route.id)
        self.destination = self.destination or route.destination
        self.current_step_index = 0
        self._stream = stream
        self.state = SessionState.ACTIVE
        self._consumer = self.track(asyncio.create_task(self._consume(stream)))
        logger.info(f"Navigation session {self.session_id} started on route {route.id}")

    async def _consume(self, stream: PositionChannel):
        async for position in stream:
            if self.state == SessionState.ENDED:
                break
            await self.update_position(position)
            for listener in list(self._listeners):
                if self.state == SessionState.ENDED:
                    break
                try:
                    await listener(self, position)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception(f"Position listener failed for session {self.session_id}")
            async with self._processed:
                self.positions_processed += 1
                self._processed.notify_all()

    async def wait_processed(self, count: int, timeout: float = 5.0) -> bool:
        """Wait until at least count positions went through update and listeners"""
        async with self._processed:
            try:
                await asyncio.wait_for(
                    self._processed.wait_for(lambda: self.positions_processed >= count or not self.is_live),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                return False
        return self.positions_processed >= count

    async def update_position(self, position: Coordinate) -> Optional[NavigationProgress]:
        async with self.lock:
            if not self.is_live or self.route is None:
                return None
            self.position = position
            self._maybe_advance_step(position)
            return self.progress()

    def _maybe_advance_step(self, position: Coordinate):
        steps = self.route.steps
        if not steps:
            return
        last = len(steps) - 1
        step = steps[min(self.current_step_index, last)]
        if geomath.distance(position, step.end_location) < self.settings.step_arrival_threshold_meters:
            self.current_step_index = min(self.current_step_index + 1, last)

    def progress(self) -> NavigationProgress:
        route = self.route
        steps: Sequence[RouteStep] = route.steps if route else ()
        index = min(self.current_step_index, max(0, len(steps) - 1))

        if not steps:
            return NavigationProgress(
                session_id=self.session_id,
                state=self.state,
                route_id=self.active_route_id,
                current_step_index=0,
                current_instruction="",
                next_instruction=None,
                distance_to_turn_m=0.0,
                remaining_distance_m=route.distance_m if route else 0.0,
                remaining_minutes=(route.duration_s / 60) if route else 0.0,
                eta=None,
                position=self.position,
            )

        step = steps[index]
        later = steps[index + 1:]

        if self.position is not None:
            partial = geomath.distance(self.position, step.end_location)
            fraction = min(1.0, partial / step.distance_m) if step.distance_m > 0 else 0.0
        else:
            partial = step.distance_m
            fraction = 1.0

        remaining_distance = partial + sum(s.distance_m for s in later)
        remaining_seconds = step.duration_s * fraction + sum(s.duration_s for s in later)

        arrived = (
            index == len(steps) - 1
            and self.position is not None
            and partial < self.settings.step_arrival_threshold_meters
        )

        return NavigationProgress(
            session_id=self.session_id,
            state=self.state,
            route_id=self.active_route_id,
            current_step_index=index,
            current_instruction=step.instruction,
            next_instruction=later[0].instruction if later else None,
            distance_to_turn_m=partial,
            remaining_distance_m=remaining_distance,
            remaining_minutes=remaining_seconds / 60,
            eta=now_utc() + timedelta(seconds=remaining_seconds),
            position=self.position,
            arrived=arrived,
        )

    def begin_reroute(self) -> bool:
        if self.state != SessionState.ACTIVE:
            return False
        self.state = SessionState.REROUTING
        logger.info(f"Session {self.session_id} rerouting")
        return True

    async def finish_reroute(self, new_route: Optional[RoutePlan]) -> bool:
        """Swap in the new route (or keep the old one on None) and resume.

        Returns False when the session ended while the request was in flight.
        """
        async with self.lock:
            if self.state == SessionState.ENDED:
                return False
            if new_route is not None:
                self.route = new_route
                self.route_history.append(new_route.id)
                self.current_step_index = 0
                logger.info(f"Session {self.session_id} switched to route {new_route.id}")
            self.state = SessionState.ACTIVE
            return True

    async def end(self) -> bool:
        """Stop navigation. Safe to call more than once."""
        if self.state == SessionState.ENDED:
            return False
        self.state = SessionState.ENDED
        self.ended_at = now_utc()
        if self._stream is not None:
            self._stream.close()

        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current and not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        async with self._processed:
            self._processed.notify_all()

        logger.info(f"Navigation session {self.session_id} ended")
        return True
