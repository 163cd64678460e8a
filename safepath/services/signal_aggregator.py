"""
Community Signal Aggregation

Turns raw reviews (and, when reviews are missing, neighborhood statistics)
into SafetyScore rows: one row per (location, demographic slice), where the
``overall`` slice covers every review at the location.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from ..config import Settings, get_settings
from ..exceptions import InsufficientDataError
from ..models.domain import AreaStatistics, DemographicType, Review, SafetyScore
from ..utils.timezone import ensure_utc

logger = logging.getLogger(__name__)

TIME_BUCKETS = ("morning", "afternoon", "evening", "night")


@dataclass(frozen=True)
class OverallSignal:
    """Overall safety for one location plus how much data backs it"""
    location_id: str
    score: float
    confidence: float
    review_count: int
    source: str  # "reviews" | "statistics" | "neutral"


def time_bucket(hour: int) -> str:
    if 6 <= hour < 12:
        return "morning"
    elif 12 <= hour < 18:
        return "afternoon"
    elif 18 <= hour < 22:
        return "evening"
    return "night"


def data_confidence(settings: Settings, data_points: int) -> float:
    """Confidence from the amount of backing data, between the baseline floor and the cap"""
    confidence = min(data_points / settings.confidence_data_points_divisor, settings.location_confidence_max)
    return max(settings.min_confidence_baseline, confidence)


def area_statistics_score(stats: AreaStatistics) -> float:
    """
    Safety on the 1-5 scale from neighborhood statistics.
    Crime rate per 1000 residents is inverted; hate crimes weigh heavily.
    """
    crime_score = max(1.0, 5.0 - stats.crime_rate_per_1000 / 20.0)
    hate_impact = min(2.0, stats.hate_crime_incidents * 0.5)
    score = crime_score - hate_impact

    if stats.diversity_index is not None:
        diversity_score = 2.5 + (stats.diversity_index / 100.0) * 2.5  # Range: 2.5-5.0
        score = 0.75 * score + 0.25 * diversity_score

    return max(1.0, min(5.0, score))


class SignalAggregator:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def aggregate(
        self,
        location_id: str,
        reviews: Iterable[Review],
        since: Optional[datetime] = None,
    ) -> List[SafetyScore]:
        """
        Mean safety rating and review count for every demographic slice present.
        The overall row comes first; slices below MIN_REVIEWS_FOR_PATTERNS are
        kept and flagged low_confidence.
        """
        window_start = ensure_utc(since) if since else None
        ratings: Dict[Tuple[DemographicType, Optional[str]], List[float]] = defaultdict(list)

        for review in reviews:
            if review.location_id != location_id:
                continue
            if window_start and ensure_utc(review.created_at) < window_start:
                continue

            ratings[(DemographicType.OVERALL, None)].append(review.safety_rating)
            seen = set()
            for tag in review.tags:
                key = (tag.demographic_type, tag.value)
                if tag.demographic_type == DemographicType.OVERALL or key in seen:
                    continue
                seen.add(key)
                ratings[key].append(review.safety_rating)

        rows = []
        for (demographic_type, value), values in ratings.items():
            count = len(values)
            rows.append(SafetyScore(
                location_id=location_id,
                demographic_type=demographic_type,
                demographic_value=value,
                avg_overall_score=sum(values) / count,
                review_count=count,
                low_confidence=count < self.settings.min_reviews_for_patterns,
            ))

        rows.sort(key=lambda r: (r.demographic_type != DemographicType.OVERALL, r.demographic_type.value, r.demographic_value or ""))
        return rows

    def overall_signal(
        self,
        location_id: str,
        reviews: Iterable[Review],
        area_statistics: Optional[AreaStatistics] = None,
        required: bool = False,
    ) -> OverallSignal:
        """
        Overall score for a location. Falls back to area statistics, then to
        the neutral baseline; a required slice with neither raises.
        """
        rows = self.aggregate(location_id, reviews)
        overall = next((r for r in rows if r.demographic_type == DemographicType.OVERALL), None)

        if overall is not None:
            return OverallSignal(
                location_id=location_id,
                score=overall.avg_overall_score,
                confidence=data_confidence(self.settings, overall.review_count),
                review_count=overall.review_count,
                source="reviews",
            )

        if area_statistics is not None:
            return OverallSignal(
                location_id=location_id,
                score=area_statistics_score(area_statistics),
                confidence=data_confidence(self.settings, area_statistics.data_point_count),
                review_count=0,
                source="statistics",
            )

        if required:
            logger.warning(f"No overall data for required location {location_id}")
            raise InsufficientDataError(location_id)

        return OverallSignal(
            location_id=location_id,
            score=self.settings.neutral_score_baseline,
            confidence=self.settings.min_confidence_baseline,
            review_count=0,
            source="neutral",
        )

    def time_of_day_breakdown(self, reviews: Iterable[Review]) -> Dict[str, Tuple[float, int]]:
        """Average rating and count per time bucket (morning/afternoon/evening/night)"""
        buckets: Dict[str, List[float]] = defaultdict(list)
        for review in reviews:
            buckets[time_bucket(ensure_utc(review.created_at).hour)].append(review.safety_rating)

        return {
            bucket: (sum(values) / len(values), len(values))
            for bucket, values in buckets.items()
        }

