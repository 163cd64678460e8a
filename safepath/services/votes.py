import json
import logging
from dataclasses import asdict, dataclass
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ..database import AsyncSessionLocal
from ..models.database_models import PredictionVoteCountRecord, PredictionVoteRecord, VoteKind
from ..models.domain import UserDemographics, VoteType
from ..utils.timezone import now_utc

logger = logging.getLogger(__name__)

COUNT_FIELDS = {
    VoteType.ACCURATE: "accurate_count",
    VoteType.INACCURATE: "inaccurate_count",
}


@dataclass(frozen=True)
class PredictionVote:
    user_id: str
    vote_type: VoteType
    prediction_source: str
    predicted_safety_score: float
    location_id: Optional[str] = None
    google_place_id: Optional[str] = None
    demographic_type: Optional[str] = None
    demographic_value: Optional[str] = None
    user_demographics: Optional[UserDemographics] = None


class VoteService:
    """Accuracy votes on predictions.

    Repeating a vote removes it, voting the other way switches it.
    Counters are kept only for locations that exist in the store.
    """

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or AsyncSessionLocal

    async def cast(self, vote: PredictionVote) -> str:
        if not vote.location_id and not vote.google_place_id:
            raise ValueError("Either location_id or google_place_id is required")

        for attempt in range(2):
            async with self.session_factory() as session:
                try:
                    action = await self._toggle(session, vote)
                    await session.commit()
                    break
                except IntegrityError:
                    await session.rollback()
                    # A concurrent request inserted the same vote (or the same counter row) first
                    existing = await self._existing(session, vote)
                    if attempt or (existing is not None and existing.vote_type.value == vote.vote_type.value):
                        logger.info(
                            f"Prediction vote by {vote.user_id} for "
                            f"{vote.location_id or vote.google_place_id} already recorded"
                        )
                        return "already recorded"

        logger.info(f"Prediction vote {action} by {vote.user_id} for {vote.location_id or vote.google_place_id}")
        return action

    async def _existing(self, session, vote: PredictionVote) -> Optional[PredictionVoteRecord]:
        query = select(PredictionVoteRecord).where(PredictionVoteRecord.user_id == vote.user_id)
        if vote.location_id:
            query = query.where(PredictionVoteRecord.location_id == vote.location_id)
        else:
            query = query.where(PredictionVoteRecord.google_place_id == vote.google_place_id)
        return (await session.execute(query)).scalars().first()

    async def _toggle(self, session, vote: PredictionVote) -> str:
        existing = await self._existing(session, vote)

        if existing is None:
            session.add(PredictionVoteRecord(
                user_id=vote.user_id,
                location_id=vote.location_id,
                google_place_id=vote.google_place_id,
                vote_type=VoteKind(vote.vote_type.value),
                prediction_source=vote.prediction_source,
                predicted_safety_score=vote.predicted_safety_score,
                user_demographics=_dump_demographics(vote.user_demographics),
            ))
            await session.flush()
            await self._adjust(session, vote, vote.vote_type, +1)
            return "added"

        if existing.vote_type.value == vote.vote_type.value:
            await session.delete(existing)
            await self._adjust(session, vote, vote.vote_type, -1)
            return "removed"

        previous = VoteType(existing.vote_type.value)
        existing.vote_type = VoteKind(vote.vote_type.value)
        existing.prediction_source = vote.prediction_source
        existing.predicted_safety_score = vote.predicted_safety_score
        existing.user_demographics = _dump_demographics(vote.user_demographics)
        existing.updated_at = now_utc()
        await self._adjust(session, vote, previous, -1)
        await self._adjust(session, vote, vote.vote_type, +1)
        return "switched"

    async def _adjust(self, session, vote: PredictionVote, vote_type: VoteType, delta: int):
        if not vote.location_id:
            return
        demographic_type = vote.demographic_type or "overall"
        demographic_value = vote.demographic_value or ""

        result = await session.execute(
            select(PredictionVoteCountRecord).where(
                PredictionVoteCountRecord.location_id == vote.location_id,
                PredictionVoteCountRecord.demographic_type == demographic_type,
                PredictionVoteCountRecord.demographic_value == demographic_value,
            )
        )
        counter = result.scalars().first()
        if counter is None:
            counter = PredictionVoteCountRecord(
                location_id=vote.location_id,
                demographic_type=demographic_type,
                demographic_value=demographic_value,
                accurate_count=0,
                inaccurate_count=0,
            )
            session.add(counter)
            await session.flush()

        field = COUNT_FIELDS[vote_type]
        setattr(counter, field, max(0, (getattr(counter, field) or 0) + delta))

    async def counts(
        self, location_id: str, demographic_type: str = "overall", demographic_value: Optional[str] = None
    ) -> Dict[str, int]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(PredictionVoteCountRecord).where(
                    PredictionVoteCountRecord.location_id == location_id,
                    PredictionVoteCountRecord.demographic_type == demographic_type,
                    PredictionVoteCountRecord.demographic_value == (demographic_value or ""),
                )
            )
            counter = result.scalars().first()
        if counter is None:
            return {"accurate_count": 0, "inaccurate_count": 0}
        return {"accurate_count": counter.accurate_count, "inaccurate_count": counter.inaccurate_count}


def _dump_demographics(demographics: Optional[UserDemographics]) -> Optional[str]:
    return json.dumps(asdict(demographics)) if demographics is not None else None
