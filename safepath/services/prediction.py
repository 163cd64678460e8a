"""
Safety Prediction for locations without direct reviews

Three optional signals are considered in priority order:

1. community_reviews - ratings left nearby by demographically similar users
2. ml_prediction     - averages inferred from similar places / nearby places
3. statistics        - neighborhood crime and diversity statistics

The highest-priority signal with data wins; its data-point count sets the
confidence, and the prediction is pulled toward the neutral baseline in
proportion to how little data there is.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..config import Settings, get_settings
from ..models.domain import (
    Coordinate, DemographicType, LocationSafetyProfile, PredictionResult,
    PredictionSource, SafetyScore, UserDemographics,
)
from .signal_aggregator import OverallSignal, SignalAggregator, area_statistics_score, data_confidence
from .similarity import SimilarityCalculator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignalObservation:
    average: float
    data_points: int


class PredictionBlender:
    PRIORITY = (
        PredictionSource.COMMUNITY_REVIEWS,
        PredictionSource.ML_PREDICTION,
        PredictionSource.STATISTICS,
    )

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def confidence(self, data_points: int) -> float:
        return data_confidence(self.settings, data_points)

    def blend(self, observed: float, confidence: float) -> float:
        """Pull an observed average toward the neutral baseline"""
        baseline = self.settings.neutral_score_baseline
        return observed * confidence + baseline * (1 - confidence)

    def predict(
        self,
        community: Optional[SignalObservation] = None,
        ml: Optional[SignalObservation] = None,
        statistics: Optional[SignalObservation] = None,
    ) -> PredictionResult:
        signals = {
            PredictionSource.COMMUNITY_REVIEWS: community,
            PredictionSource.ML_PREDICTION: ml,
            PredictionSource.STATISTICS: statistics,
        }
        based_on = {
            source.value: (signal.data_points if signal else 0)
            for source, signal in signals.items()
        }

        for source in self.PRIORITY:
            signal = signals[source]
            if signal is None or signal.data_points < 1:
                continue

            confidence = self.confidence(signal.data_points)
            predicted = self.blend(signal.average, confidence)
            return PredictionResult(
                predicted_safety_score=round(max(0.0, min(5.0, predicted)), 4),
                confidence=round(confidence, 4),
                primary_source=source,
                based_on=based_on,
            )

        return PredictionResult(
            predicted_safety_score=self.settings.neutral_score_baseline,
            confidence=self.settings.fallback_confidence,
            primary_source=PredictionSource.NEUTRAL_BASELINE,
            based_on=based_on,
        )


class PredictionService:
    """Collects prediction signals from the store and blends them"""

    # Weight factors for inferred (ml_prediction) scores
    WEIGHTS = {
        'place_type_overall': 0.3,
        'demographic_matches': 0.7,
        'nearby_overall': 0.2,
        'nearby_demographic': 0.4,
    }

    def __init__(self, repository, settings: Optional[Settings] = None):
        self.repository = repository
        self.settings = settings or get_settings()
        self.blender = PredictionBlender(self.settings)
        self.similarity = SimilarityCalculator(self.settings)
        self.aggregator = SignalAggregator(self.settings)

    async def predict(
        self,
        location_id: Optional[str] = None,
        coordinate: Optional[Coordinate] = None,
        place_type: Optional[str] = None,
        user_id: Optional[str] = None,
        demographics: Optional[UserDemographics] = None,
    ) -> PredictionResult:
        if location_id is None and coordinate is None:
            raise ValueError("Either location_id or coordinates are required")

        profile: Optional[LocationSafetyProfile] = None
        if location_id:
            profile = await self.repository.get_profile(location_id)
            if profile is None:
                raise LookupError(f"Location {location_id} not found")
            coordinate = profile.coordinate
            place_type = profile.place_type

        if demographics is None and user_id:
            demographics = await self.repository.get_user_demographics(user_id)
        demographics = demographics or UserDemographics()

        if profile is not None and profile.overall is not None:
            return self._from_direct_reviews(profile, demographics)

        community = await self._community_signal(coordinate, user_id, demographics)
        ml = await self._ml_signal(coordinate, place_type or "other", location_id, demographics)
        statistics = await self._statistics_signal(profile, coordinate)

        result = self.blender.predict(community=community, ml=ml, statistics=statistics)
        logger.info(
            f"Prediction for {location_id or coordinate}: {result.predicted_safety_score} "
            f"({result.primary_source.value}, confidence {result.confidence})"
        )
        return result

    async def location_safety(
        self, location_id: str, required: bool = False
    ) -> Tuple[OverallSignal, List[SafetyScore]]:
        """
        Overall safety for a stored location plus its per-demographic rows,
        recomputed from the location's reviews. With required=True a location
        that has neither reviews nor area statistics raises InsufficientDataError.
        """
        profile = await self.repository.get_profile(location_id)
        if profile is None:
            raise LookupError(f"Location {location_id} not found")

        reviews = await self.repository.reviews_for_location(location_id)
        signal = self.aggregator.overall_signal(
            location_id, reviews, area_statistics=profile.area_statistics, required=required
        )
        return signal, self.aggregator.aggregate(location_id, reviews)

    def _from_direct_reviews(self, profile: LocationSafetyProfile, demographics: UserDemographics) -> PredictionResult:
        best = best_demographic_match(profile.scores, demographics) or profile.overall
        confidence = self.blender.confidence(best.review_count)
        return PredictionResult(
            predicted_safety_score=round(best.avg_overall_score, 4),
            confidence=round(confidence, 4),
            primary_source=PredictionSource.COMMUNITY_REVIEWS,
            based_on={"direct_reviews": best.review_count},
        )

    async def _community_signal(
        self, coordinate: Coordinate, user_id: Optional[str], demographics: UserDemographics
    ) -> Optional[SignalObservation]:
        reviews = await self.repository.reviews_near(coordinate, self.settings.nearby_location_radius_meters)
        reviewer_ids = {r.user_id for r in reviews if r.user_id and r.user_id != user_id}
        if not reviewer_ids:
            return None

        others = await self.repository.get_demographics_for_users(reviewer_ids)
        similar = set(self.similarity.similar_user_ids(demographics, others))
        ratings = [r.safety_rating for r in reviews if r.user_id in similar]
        if not ratings:
            return None
        return SignalObservation(average=sum(ratings) / len(ratings), data_points=len(ratings))

    async def _ml_signal(
        self,
        coordinate: Coordinate,
        place_type: str,
        location_id: Optional[str],
        demographics: UserDemographics,
    ) -> Optional[SignalObservation]:
        same_type = await self.repository.profiles_by_place_type(place_type, exclude_id=location_id)
        nearby = await self.repository.profiles_near(coordinate, self.settings.nearby_location_radius_meters)
        nearby = [p for p in nearby if p.location_id != location_id]

        weighted_sum = 0.0
        total_weight = 0.0
        contributing = set()

        for loc in same_type:
            for score in loc.scores:
                if score.demographic_type == DemographicType.OVERALL:
                    weight = self.WEIGHTS['place_type_overall']
                elif demographics.matches(score.demographic_type, score.demographic_value or ""):
                    weight = self.WEIGHTS['demographic_matches']
                else:
                    continue
                weighted_sum += score.avg_overall_score * weight
                total_weight += weight
                contributing.add(loc.location_id)

        for loc in nearby:
            for score in loc.scores:
                if score.demographic_type == DemographicType.OVERALL:
                    weight = self.WEIGHTS['nearby_overall']
                elif demographics.matches(score.demographic_type, score.demographic_value or ""):
                    weight = self.WEIGHTS['nearby_demographic']
                else:
                    continue
                weighted_sum += score.avg_overall_score * weight
                total_weight += weight
                contributing.add(loc.location_id)

        if total_weight == 0:
            return None
        return SignalObservation(average=weighted_sum / total_weight, data_points=len(contributing))

    async def _statistics_signal(
        self, profile: Optional[LocationSafetyProfile], coordinate: Coordinate
    ) -> Optional[SignalObservation]:
        stats = profile.area_statistics if profile else None
        if stats is None:
            stats = await self.repository.area_statistics_near(coordinate)
        if stats is None:
            return None
        return SignalObservation(average=area_statistics_score(stats), data_points=stats.data_point_count)


def best_demographic_match(scores: List[SafetyScore], demographics: UserDemographics) -> Optional[SafetyScore]:
    """Lowest-scoring slice that matches the user, so the prediction errs toward caution"""
    matches = [
        s for s in scores
        if s.demographic_type != DemographicType.OVERALL
        and s.review_count > 0
        and demographics.matches(s.demographic_type, s.demographic_value or "")
    ]
    if not matches:
        return None
    return min(matches, key=lambda s: s.avg_overall_score)


def prediction_to_dict(result: PredictionResult) -> Dict:
    return {
        "predicted_safety_score": result.predicted_safety_score,
        "confidence": result.confidence,
        "primary_source": result.primary_source.value,
        "based_on": result.based_on,
    }
