"""
Safety alerts during navigation

Low-rated reviews posted after the active route was planned, close to the
route, are surfaced to the traveler once per session. Decisions are written
to the alert ledger keyed by session, so a reroute (which changes the route
id) never resurfaces a review the traveler already handled.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Set

from ..config import Settings, get_settings
from ..exceptions import InvalidSessionStateError
from ..models.domain import AlertAction, AlertSeverity, Review, SafetyAlertHandled
from ..utils.timezone import ensure_utc, now_utc
from . import geomath
from .navigation import NavigationSession, SessionState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlertPrompt:
    prompt_id: str
    session_id: str
    route_id: str
    reviews: tuple
    severity: AlertSeverity
    title: str
    message: str

    @property
    def review_ids(self) -> List[str]:
        return [r.review_id for r in self.reviews]

    def to_dict(self) -> dict:
        return {
            "prompt_id": self.prompt_id,
            "session_id": self.session_id,
            "route_id": self.route_id,
            "severity": self.severity.value,
            "title": self.title,
            "message": self.message,
            "options": [AlertAction.REROUTE_ATTEMPTED.value, AlertAction.USER_CONTINUED.value],
            "reviews": [
                {
                    "review_id": r.review_id,
                    "location_name": r.location_name,
                    "safety_rating": r.safety_rating,
                    "location": r.coordinate.to_dict(),
                    "created_at": r.created_at.isoformat(),
                }
                for r in self.reviews
            ],
        }


@dataclass(frozen=True)
class AlertDecision:
    prompt: AlertPrompt
    action: AlertAction
    recorded: int
    already_recorded: int
    reroute_task: Optional[asyncio.Task] = None


PromptCallback = Callable[[NavigationSession, AlertPrompt], Awaitable[None]]


def severity_for(lowest_rating: float) -> AlertSeverity:
    if lowest_rating < 2.0:
        return AlertSeverity.CRITICAL
    elif lowest_rating < 2.5:
        return AlertSeverity.WARNING
    return AlertSeverity.NOTICE


class SafetyAlertManager:
    def __init__(
        self,
        ledger,
        rerouter=None,
        settings: Optional[Settings] = None,
        on_prompt: Optional[PromptCallback] = None,
    ):
        self.settings = settings or get_settings()
        self.ledger = ledger
        self.rerouter = rerouter
        self.on_prompt = on_prompt
        self._reviews: Dict[str, Dict[str, Review]] = {}
        self._prompts: Dict[str, AlertPrompt] = {}
        self._evaluating: Set[str] = set()

    def pending_prompt(self, session_id: str) -> Optional[AlertPrompt]:
        return self._prompts.get(session_id)

    def relevant_reviews(self, session: NavigationSession, reviews) -> List[Review]:
        """Low-rated reviews newer than the active route and inside its corridor"""
        route = session.route
        if route is None:
            return []
        route_created = ensure_utc(route.created_at)
        return [
            review for review in reviews
            if review.safety_rating < self.settings.alert_rating_threshold
            and ensure_utc(review.created_at) > route_created
            and geomath.within_corridor(review.coordinate, route.polyline, self.settings.alert_corridor_meters)
        ]

    async def observe_review(self, session: NavigationSession, review: Review) -> Optional[AlertPrompt]:
        self._reviews.setdefault(session.session_id, {})[review.review_id] = review
        return await self.evaluate(session)

    async def on_position(self, session: NavigationSession, position) -> Optional[AlertPrompt]:
        return await self.evaluate(session)

    async def evaluate(self, session: NavigationSession) -> Optional[AlertPrompt]:
        sid = session.session_id
        if session.state != SessionState.ACTIVE:
            return None
        if sid in self._prompts or sid in self._evaluating:
            return None

        candidates = self.relevant_reviews(session, self._reviews.get(sid, {}).values())
        if not candidates:
            return None

        self._evaluating.add(sid)
        try:
            handled = await self.ledger.handled_review_ids(sid)
            fresh = [r for r in candidates if r.review_id not in handled]
            if not fresh or session.state != SessionState.ACTIVE:
                return None
            prompt = self._build_prompt(session, fresh)
            self._prompts[sid] = prompt
        finally:
            self._evaluating.discard(sid)

        logger.info(
            f"Safety alert {prompt.prompt_id} for session {sid}: "
            f"{len(prompt.reviews)} review(s), {prompt.severity.value}"
        )
        if self.on_prompt is not None:
            await self.on_prompt(session, prompt)
        return prompt

    def _build_prompt(self, session: NavigationSession, reviews: List[Review]) -> AlertPrompt:
        reviews = sorted(reviews, key=lambda r: (r.safety_rating, r.review_id))
        names = [r.location_name for r in reviews if r.location_name]
        where = ", ".join(dict.fromkeys(names)) or "a location on your route"
        return AlertPrompt(
            prompt_id=uuid.uuid4().hex,
            session_id=session.session_id,
            route_id=session.active_route_id,
            reviews=tuple(reviews),
            severity=severity_for(reviews[0].safety_rating),
            title="Safety alert on your route",
            message=f"Safety concern just reported at: {where}. Would you like to find a safer route?",
        )

    async def resolve(self, session: NavigationSession, action: AlertAction) -> AlertDecision:
        """Record the traveler's decision for every review in the open prompt"""
        sid = session.session_id
        prompt = self._prompts.pop(sid, None)
        if prompt is None:
            raise InvalidSessionStateError("There is no safety alert waiting for a decision")

        # No new prompt for this session until the decision is in the ledger
        self._evaluating.add(sid)
        try:
            recorded = 0
            duplicates = 0
            handled_at = now_utc()
            for review in prompt.reviews:
                written = await self.ledger.append_if_absent(SafetyAlertHandled(
                    session_id=sid,
                    route_id=prompt.route_id,
                    review_id=review.review_id,
                    handled_at=handled_at,
                    action=action,
                    review_location=review.coordinate,
                    review_safety_rating=review.safety_rating,
                ))
                if written:
                    recorded += 1
                else:
                    duplicates += 1

            reroute_task = None
            if action == AlertAction.REROUTE_ATTEMPTED and self.rerouter is not None:
                reroute_task = self.rerouter.request(session, force=True)
        finally:
            self._evaluating.discard(sid)

        logger.info(
            f"Alert {prompt.prompt_id} resolved with {action.value} "
            f"({recorded} recorded, {duplicates} already recorded)"
        )
        return AlertDecision(
            prompt=prompt,
            action=action,
            recorded=recorded,
            already_recorded=duplicates,
            reroute_task=reroute_task,
        )

    def forget(self, session_id: str):
        self._reviews.pop(session_id, None)
        self._prompts.pop(session_id, None)
        self._evaluating.discard(session_id)
