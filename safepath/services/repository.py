"""
Safety data store

Reads location profiles, reviews, neighborhood statistics and user
demographics from the database and converts rows into the domain types the
scoring services work on. Every call is bounded by the store timeout.
"""

import asyncio
import json
import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, delete, select

from ..config import Settings, get_settings
from ..database import AsyncSessionLocal
from ..models.database_models import (
    LocationRecord, NeighborhoodStatsRecord, ReviewRecord, SafetyScoreRecord,
    UserProfileRecord,
)
from ..models.domain import (
    AreaStatistics, Coordinate, DemographicTag, DemographicType,
    LocationSafetyProfile, Review, SafetyScore, UserDemographics,
)
from ..utils.timezone import ensure_utc
from . import geomath
from .signal_aggregator import SignalAggregator

logger = logging.getLogger(__name__)

BoundingBox = Tuple[float, float, float, float]


class SafetyRepository:
    def __init__(self, session_factory=None, settings: Optional[Settings] = None):
        self.session_factory = session_factory or AsyncSessionLocal
        self.settings = settings or get_settings()
        self.aggregator = SignalAggregator(self.settings)

    async def _bounded(self, coro):
        return await asyncio.wait_for(coro, timeout=self.settings.request_timeout_ms / 1000)

    # ------------------------------------------------------------ profiles

    async def get_profile(self, location_id: str) -> Optional[LocationSafetyProfile]:
        profiles = await self._bounded(self._load_profiles(LocationRecord.id == location_id))
        return profiles[0] if profiles else None

    async def profiles_in_box(self, bbox: BoundingBox) -> List[LocationSafetyProfile]:
        min_lat, min_lng, max_lat, max_lng = bbox
        return await self._bounded(self._load_profiles(and_(
            LocationRecord.latitude >= min_lat,
            LocationRecord.latitude <= max_lat,
            LocationRecord.longitude >= min_lng,
            LocationRecord.longitude <= max_lng,
        )))

    async def profiles_near(self, center: Coordinate, radius_meters: float) -> List[LocationSafetyProfile]:
        bbox = geomath.bounding_box([center], padding_meters=radius_meters)
        candidates = await self.profiles_in_box(bbox)
        return [p for p in candidates if geomath.distance(center, p.coordinate) <= radius_meters]

    async def profiles_by_place_type(
        self, place_type: str, exclude_id: Optional[str] = None
    ) -> List[LocationSafetyProfile]:
        condition = LocationRecord.place_type == place_type
        if exclude_id:
            condition = and_(condition, LocationRecord.id != exclude_id)
        profiles = await self._bounded(self._load_profiles(condition))
        return [p for p in profiles if p.overall is not None]

    async def area_statistics_near(self, center: Coordinate) -> Optional[AreaStatistics]:
        """Statistics of the closest location within the nearby radius that has any"""
        nearby = await self.profiles_near(center, self.settings.nearby_location_radius_meters)
        with_stats = [p for p in nearby if p.area_statistics is not None]
        if not with_stats:
            return None
        closest = min(with_stats, key=lambda p: geomath.distance(center, p.coordinate))
        return closest.area_statistics

    async def _load_profiles(self, condition) -> List[LocationSafetyProfile]:
        async with self.session_factory() as session:
            result = await session.execute(select(LocationRecord).where(condition))
            locations = result.scalars().all()
            if not locations:
                return []

            ids = [loc.id for loc in locations]
            score_result = await session.execute(
                select(SafetyScoreRecord).where(SafetyScoreRecord.location_id.in_(ids))
            )
            stats_result = await session.execute(
                select(NeighborhoodStatsRecord).where(NeighborhoodStatsRecord.location_id.in_(ids))
            )

            scores: Dict[str, List[SafetyScore]] = defaultdict(list)
            for row in score_result.scalars().all():
                scores[row.location_id].append(_score_from_row(row, self.settings.min_reviews_for_patterns))
            stats = {row.location_id: _stats_from_row(row) for row in stats_result.scalars().all()}

            return [
                LocationSafetyProfile(
                    location_id=loc.id,
                    coordinate=Coordinate(loc.latitude, loc.longitude),
                    place_type=loc.place_type or "other",
                    name=loc.name,
                    scores=tuple(sorted(scores.get(loc.id, []), key=lambda s: s.demographic_type != DemographicType.OVERALL)),
                    area_statistics=stats.get(loc.id),
                )
                for loc in locations
            ]

    # ------------------------------------------------------------- reviews

    async def reviews_near(self, center: Coordinate, radius_meters: float) -> List[Review]:
        bbox = geomath.bounding_box([center], padding_meters=radius_meters)
        min_lat, min_lng, max_lat, max_lng = bbox
        reviews = await self._bounded(self._load_reviews(and_(
            ReviewRecord.latitude >= min_lat,
            ReviewRecord.latitude <= max_lat,
            ReviewRecord.longitude >= min_lng,
            ReviewRecord.longitude <= max_lng,
        )))
        return [r for r in reviews if geomath.distance(center, r.coordinate) <= radius_meters]

    async def reviews_for_location(self, location_id: str) -> List[Review]:
        return await self._bounded(self._load_reviews(ReviewRecord.location_id == location_id))

    async def recent_reviews(self, since: datetime, limit: int = 200) -> List[Review]:
        reviews = await self._bounded(self._load_reviews(ReviewRecord.created_at >= ensure_utc(since)))
        return reviews[:limit]

    async def _load_reviews(self, condition) -> List[Review]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ReviewRecord).where(condition).order_by(ReviewRecord.created_at.desc())
            )
            return [_review_from_row(row) for row in result.scalars().all()]

    async def add_review(self, review: Review, place_type: str = "other") -> bool:
        """Store a review and refresh its location's safety scores.

        Returns False when the review id is already stored.
        """
        return await self._bounded(self._add_review(review, place_type))

    async def _add_review(self, review: Review, place_type: str) -> bool:
        async with self.session_factory() as session:
            existing = await session.get(ReviewRecord, review.review_id)
            if existing is not None:
                logger.info(f"Review {review.review_id} already recorded")
                return False

            location = await session.get(LocationRecord, review.location_id)
            if location is None:
                session.add(LocationRecord(
                    id=review.location_id,
                    name=review.location_name,
                    place_type=place_type,
                    latitude=review.coordinate.latitude,
                    longitude=review.coordinate.longitude,
                ))

            session.add(ReviewRecord(
                id=review.review_id,
                location_id=review.location_id,
                user_id=review.user_id,
                location_name=review.location_name,
                latitude=review.coordinate.latitude,
                longitude=review.coordinate.longitude,
                safety_rating=review.safety_rating,
                demographic_tags=json.dumps([
                    {"type": tag.demographic_type.value, "value": tag.value} for tag in review.tags
                ]),
                created_at=ensure_utc(review.created_at),
            ))
            await session.flush()

            result = await session.execute(
                select(ReviewRecord).where(ReviewRecord.location_id == review.location_id)
            )
            all_reviews = [_review_from_row(row) for row in result.scalars().all()]
            await self._replace_scores(session, review.location_id, all_reviews)

            await session.commit()
            logger.info(f"Stored review {review.review_id} for location {review.location_id}")
            return True

    async def _replace_scores(self, session, location_id: str, reviews: Sequence[Review]):
        await session.execute(delete(SafetyScoreRecord).where(SafetyScoreRecord.location_id == location_id))
        for row in self.aggregator.aggregate(location_id, reviews):
            session.add(SafetyScoreRecord(
                location_id=location_id,
                demographic_type=row.demographic_type.value,
                demographic_value=row.demographic_value,
                avg_overall_score=row.avg_overall_score,
                review_count=row.review_count,
            ))

    # ----------------------------------------------------------- locations

    async def add_location(
        self,
        location_id: str,
        coordinate: Coordinate,
        name: Optional[str] = None,
        place_type: str = "other",
        area_statistics: Optional[AreaStatistics] = None,
    ):
        async with self.session_factory() as session:
            session.add(LocationRecord(
                id=location_id,
                name=name,
                place_type=place_type,
                latitude=coordinate.latitude,
                longitude=coordinate.longitude,
            ))
            if area_statistics is not None:
                session.add(NeighborhoodStatsRecord(
                    location_id=location_id,
                    crime_rate_per_1000=area_statistics.crime_rate_per_1000,
                    hate_crime_incidents=area_statistics.hate_crime_incidents,
                    diversity_index=area_statistics.diversity_index,
                    data_point_count=area_statistics.data_point_count,
                ))
            await session.commit()

    # ---------------------------------------------------------------- users

    async def get_user_demographics(self, user_id: str) -> Optional[UserDemographics]:
        found = await self.get_demographics_for_users([user_id])
        return found.get(user_id)

    async def get_demographics_for_users(self, user_ids: Iterable[str]) -> Dict[str, UserDemographics]:
        ids = list(user_ids)
        if not ids:
            return {}
        return await self._bounded(self._load_users(ids))

    async def other_users_demographics(self, user_id: str) -> Dict[str, UserDemographics]:
        async with self.session_factory() as session:
            result = await session.execute(select(UserProfileRecord).where(UserProfileRecord.id != user_id))
            return {row.id: _demographics_from_row(row) for row in result.scalars().all()}

    async def _load_users(self, ids: List[str]) -> Dict[str, UserDemographics]:
        async with self.session_factory() as session:
            result = await session.execute(select(UserProfileRecord).where(UserProfileRecord.id.in_(ids)))
            return {row.id: _demographics_from_row(row) for row in result.scalars().all()}

    async def save_user_demographics(self, user_id: str, demographics: UserDemographics):
        async with self.session_factory() as session:
            row = await session.get(UserProfileRecord, user_id)
            if row is None:
                row = UserProfileRecord(id=user_id)
                session.add(row)
            row.race_ethnicity = json.dumps(demographics.race_ethnicity)
            row.gender = demographics.gender
            row.lgbtq_status = demographics.lgbtq_status
            row.disability_status = json.dumps(demographics.disability_status)
            row.religion = demographics.religion
            row.age_range = demographics.age_range
            await session.commit()


def _score_from_row(row: SafetyScoreRecord, min_reviews: int) -> SafetyScore:
    return SafetyScore(
        location_id=row.location_id,
        demographic_type=DemographicType(row.demographic_type),
        demographic_value=row.demographic_value,
        avg_overall_score=row.avg_overall_score,
        review_count=row.review_count or 0,
        low_confidence=(row.review_count or 0) < min_reviews,
    )


def _stats_from_row(row: NeighborhoodStatsRecord) -> AreaStatistics:
    return AreaStatistics(
        crime_rate_per_1000=row.crime_rate_per_1000,
        hate_crime_incidents=row.hate_crime_incidents or 0,
        diversity_index=row.diversity_index,
        data_point_count=row.data_point_count or 1,
    )


def _review_from_row(row: ReviewRecord) -> Review:
    tags = tuple(
        DemographicTag(DemographicType(tag["type"]), str(tag["value"]))
        for tag in json.loads(row.demographic_tags or "[]")
    )
    return Review(
        review_id=row.id,
        location_id=row.location_id,
        coordinate=Coordinate(row.latitude, row.longitude),
        safety_rating=row.safety_rating,
        created_at=ensure_utc(row.created_at),
        tags=tags,
        user_id=row.user_id,
        location_name=row.location_name,
    )


def _demographics_from_row(row: UserProfileRecord) -> UserDemographics:
    return UserDemographics(
        race_ethnicity=json.loads(row.race_ethnicity or "[]"),
        gender=row.gender,
        lgbtq_status=row.lgbtq_status,
        disability_status=json.loads(row.disability_status or "[]"),
        religion=row.religion,
        age_range=row.age_range,
    )
