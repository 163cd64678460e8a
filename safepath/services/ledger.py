import asyncio
import logging
from typing import List, Optional, Set

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ..config import Settings, get_settings
from ..database import AsyncSessionLocal
from ..models.database_models import AlertActionType, SafetyAlertHandledRecord
from ..models.domain import AlertAction, Coordinate, SafetyAlertHandled
from ..utils.timezone import ensure_utc

logger = logging.getLogger(__name__)


class AlertLedger:
    """Append-only record of handled safety alerts, unique per (session, review)"""

    def __init__(self, session_factory=None, settings: Optional[Settings] = None):
        self.session_factory = session_factory or AsyncSessionLocal
        self.settings = settings or get_settings()

    async def _bounded(self, coro):
        return await asyncio.wait_for(coro, timeout=self.settings.request_timeout_ms / 1000)

    async def append_if_absent(self, entry: SafetyAlertHandled) -> bool:
        """True if written, False if the review was already handled in this session"""
        return await self._bounded(self._append(entry))

    async def _append(self, entry: SafetyAlertHandled) -> bool:
        async with self.session_factory() as session:
            session.add(SafetyAlertHandledRecord(
                session_id=entry.session_id,
                route_id=entry.route_id,
                review_id=entry.review_id,
                action=AlertActionType(entry.action.value),
                review_latitude=entry.review_location.latitude,
                review_longitude=entry.review_location.longitude,
                review_safety_rating=entry.review_safety_rating,
                handled_at=ensure_utc(entry.handled_at),
            ))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(f"Alert for review {entry.review_id} already recorded in session {entry.session_id}")
                return False
        return True

    async def handled_review_ids(self, session_id: str) -> Set[str]:
        return await self._bounded(self._handled_review_ids(session_id))

    async def _handled_review_ids(self, session_id: str) -> Set[str]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SafetyAlertHandledRecord.review_id).where(SafetyAlertHandledRecord.session_id == session_id)
            )
            return set(result.scalars().all())

    async def entries_for_session(self, session_id: str) -> List[SafetyAlertHandled]:
        return await self._bounded(self._entries_for_session(session_id))

    async def _entries_for_session(self, session_id: str) -> List[SafetyAlertHandled]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SafetyAlertHandledRecord)
                .where(SafetyAlertHandledRecord.session_id == session_id)
                .order_by(SafetyAlertHandledRecord.id)
            )
            return [
                SafetyAlertHandled(
                    session_id=row.session_id,
                    route_id=row.route_id,
                    review_id=row.review_id,
                    handled_at=ensure_utc(row.handled_at),
                    action=AlertAction(row.action.value),
                    review_location=Coordinate(row.review_latitude, row.review_longitude),
                    review_safety_rating=row.review_safety_rating,
                )
                for row in result.scalars().all()
            ]
