import json
import logging
from typing import Optional

from ..database import AsyncSessionLocal
from ..models.database_models import NavigationSessionRecord, RoutePlanRecord, SessionStatus
from ..models.domain import RoutePlan
from .navigation import NavigationSession

logger = logging.getLogger(__name__)


class SessionStore:
    """Persists navigation sessions and every route plan they followed"""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or AsyncSessionLocal

    async def record_start(self, nav: NavigationSession):
        async with self.session_factory() as db:
            db.add(NavigationSessionRecord(
                id=nav.session_id,
                device_id=nav.device_id or "",
                active_route_id=nav.active_route_id,
                current_step_index=nav.current_step_index,
                status=SessionStatus.ACTIVE,
                created_at=nav.created_at,
            ))
            await db.flush()
            # A plan can be restarted on a new session; keep its first row
            if nav.route is not None and await db.get(RoutePlanRecord, nav.route.id) is None:
                db.add(_plan_record(nav.session_id, nav.route))
            await db.commit()

    async def record_route(self, nav: NavigationSession, plan: RoutePlan):
        async with self.session_factory() as db:
            if await db.get(RoutePlanRecord, plan.id) is None:
                db.add(_plan_record(nav.session_id, plan))
            row = await db.get(NavigationSessionRecord, nav.session_id)
            if row is not None:
                row.active_route_id = plan.id
                row.current_step_index = 0
            await db.commit()

    async def record_end(self, nav: NavigationSession):
        async with self.session_factory() as db:
            row = await db.get(NavigationSessionRecord, nav.session_id)
            if row is None:
                return
            row.status = SessionStatus.ENDED
            row.current_step_index = nav.current_step_index
            row.ended_at = nav.ended_at
            await db.commit()

    async def get_status(self, session_id: str) -> Optional[SessionStatus]:
        async with self.session_factory() as db:
            row = await db.get(NavigationSessionRecord, session_id)
            return row.status if row else None


def _plan_record(session_id: str, plan: RoutePlan) -> RoutePlanRecord:
    analysis = plan.safety_analysis
    return RoutePlanRecord(
        id=plan.id,
        session_id=session_id,
        polyline_json=json.dumps([[c.latitude, c.longitude] for c in plan.polyline]),
        distance_m=plan.distance_m,
        duration_s=plan.duration_s,
        overall_score=analysis.overall_score,
        classification=analysis.classification.value,
        confidence=analysis.confidence,
        alternative_rank=plan.alternative_rank,
        created_at=plan.created_at,
    )
