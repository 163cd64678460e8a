"""
Route Segment Scoring

Slices a route polyline into fixed-length segments and scores each one from
the community safety data of the locations around its midpoint, then applies
the time-of-day penalty.
"""

import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from ..config import Settings, get_settings
from ..models.domain import (
    Coordinate, DemographicType, LocationSafetyProfile, SegmentScore,
)
from . import geomath
from .prediction import PredictionBlender, SignalObservation
from .signal_aggregator import area_statistics_score

# Remainders shorter than this are float noise, not a segment
_MIN_SEGMENT_METERS = 1e-6


@dataclass(frozen=True)
class RouteSlice:
    index: int
    points: Tuple[Coordinate, ...]
    length_m: float

    @property
    def start(self) -> Coordinate:
        return self.points[0]

    @property
    def end(self) -> Coordinate:
        return self.points[-1]

    @property
    def midpoint(self) -> Coordinate:
        return geomath.point_along_polyline(self.points, self.length_m / 2)


def slice_polyline(polyline: Sequence[Coordinate], segment_length_m: float) -> List[RouteSlice]:
    """
    Cut the polyline every segment_length_m meters of cumulative distance,
    interpolating a boundary point inside long edges. The last slice may be
    shorter, so the count is ceil(length / segment_length_m).
    """
    if len(polyline) < 2:
        return []

    slices: List[RouteSlice] = []
    current: List[Coordinate] = [polyline[0]]
    current_length = 0.0

    for i in range(1, len(polyline)):
        start = polyline[i - 1]
        end = polyline[i]
        edge = geomath.distance(start, end)
        consumed = 0.0

        while edge - consumed > 0 and current_length + (edge - consumed) >= segment_length_m:
            needed = segment_length_m - current_length
            consumed += needed
            boundary = geomath.interpolate(start, end, consumed / edge)
            current.append(boundary)
            slices.append(RouteSlice(index=len(slices), points=tuple(current), length_m=segment_length_m))
            current = [boundary]
            current_length = 0.0

        leftover = edge - consumed
        if leftover > 0:
            current.append(end)
            current_length += leftover

    if current_length > _MIN_SEGMENT_METERS:
        slices.append(RouteSlice(index=len(slices), points=tuple(current), length_m=current_length))

    return slices


class SegmentScorer:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.blender = PredictionBlender(self.settings)

    def time_multiplier(self, hour: int) -> float:
        s = self.settings
        if hour >= s.night_start_hour or hour < s.morning_end_hour:
            return s.night_multiplier
        if hour >= s.evening_start_hour:
            return s.evening_multiplier
        return 1.0

    def apply_time_penalty(self, score: float, hour: int) -> float:
        """
        Amplify the penalty (distance from a perfect 5) at evening/night.
        Segments already at or above the safe threshold are left alone.
        """
        multiplier = self.time_multiplier(hour)
        if multiplier == 1.0 or score >= self.settings.safe_route_threshold:
            return score
        penalty = max(0.0, 5.0 - score)
        return max(0.0, 5.0 - penalty * multiplier)

    def nearby_profiles(
        self, center: Coordinate, profiles: Sequence[LocationSafetyProfile]
    ) -> List[LocationSafetyProfile]:
        radius = self.settings.scoring_radius_meters
        in_range = []
        for profile in profiles:
            d = geomath.distance(center, profile.coordinate)
            if d <= radius:
                in_range.append((d, profile))
        in_range.sort(key=lambda item: item[0])
        return [profile for _, profile in in_range[: self.settings.max_nearby_locations]]

    def location_score(
        self,
        profile: LocationSafetyProfile,
        place_type_averages: Dict[str, SignalObservation],
    ) -> Tuple[float, float]:
        """(score, confidence) for one location, predicting when it has no reviews"""
        overall = profile.overall
        if overall is not None:
            return overall.avg_overall_score, self.blender.confidence(overall.review_count)

        statistics = None
        if profile.area_statistics is not None:
            statistics = SignalObservation(
                average=area_statistics_score(profile.area_statistics),
                data_points=profile.area_statistics.data_point_count,
            )
        prediction = self.blender.predict(
            ml=place_type_averages.get(profile.place_type),
            statistics=statistics,
        )
        return prediction.predicted_safety_score, prediction.confidence

    def score_route(
        self,
        polyline: Sequence[Coordinate],
        profiles: Sequence[LocationSafetyProfile],
        hour: int,
    ) -> List[SegmentScore]:
        slices = slice_polyline(polyline, self.settings.segment_length_meters)
        place_type_averages = _place_type_averages(profiles)
        multiplier = self.time_multiplier(hour)

        results: List[SegmentScore] = []
        raw_scores: List[float] = []

        for route_slice in slices:
            nearby = self.nearby_profiles(route_slice.midpoint, profiles)
            risk_factors: List[str] = []

            if nearby:
                scored = [self.location_score(p, place_type_averages) for p in nearby]
                raw = sum(score for score, _ in scored) / len(scored)
                confidence = sum(conf for _, conf in scored) / len(scored)
            else:
                # Inherit the running average so one empty segment cannot sink the route
                raw = (sum(raw_scores) / len(raw_scores)) if raw_scores else self.settings.neutral_score_baseline
                confidence = self.settings.fallback_confidence
                risk_factors.append("Limited safety data - stay alert")

            raw_scores.append(raw)
            adjusted = self.apply_time_penalty(raw, hour)
            if adjusted != raw:
                risk_factors.append("Night travel time" if multiplier == self.settings.night_multiplier else "Evening travel time")

            results.append(SegmentScore(
                segment_index=route_slice.index,
                start_location=route_slice.start,
                end_location=route_slice.end,
                score=round(adjusted, 4),
                nearby_location_count=len(nearby),
                contributing_demographics=_demographic_labels(nearby),
                confidence=round(confidence, 4),
                distance_m=round(route_slice.length_m, 2),
                risk_factors=tuple(risk_factors),
            ))

        return results


def expected_segment_count(route_length_m: float, segment_length_m: float) -> int:
    return math.ceil(route_length_m / segment_length_m) if route_length_m > 0 else 0


def _place_type_averages(profiles: Sequence[LocationSafetyProfile]) -> Dict[str, SignalObservation]:
    totals: Dict[str, List[float]] = defaultdict(list)
    for profile in profiles:
        overall = profile.overall
        if overall is not None:
            totals[profile.place_type].append(overall.avg_overall_score)
    return {
        place_type: SignalObservation(average=sum(values) / len(values), data_points=len(values))
        for place_type, values in totals.items()
    }


def _demographic_labels(profiles: Sequence[LocationSafetyProfile]) -> Tuple[str, ...]:
    labels = {
        score.label
        for profile in profiles
        for score in profile.scores
        if score.demographic_type != DemographicType.OVERALL and score.review_count > 0
    }
    return tuple(sorted(labels))
