"""
Danger Zone Analysis

A location becomes a danger zone when some demographic group rates it very
differently from everyone else. The gap between the group's average and the
overall average (the disparity) sets the zone level, and the zone is drawn
as an octagon around the location for routes to avoid.
"""

import asyncio
import logging
import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..config import Settings, get_settings
from ..models.domain import (
    Coordinate, DangerLevel, DangerZone, DemographicType, LocationSafetyProfile,
    Review, SafetyScore, UserDemographics,
)
from .signal_aggregator import SignalAggregator

logger = logging.getLogger(__name__)

METERS_PER_MILE = 1609.344
MILES_PER_DEGREE = 69.0

LEVEL_ORDER = {DangerLevel.HIGH: 0, DangerLevel.MEDIUM: 1, DangerLevel.LOW: 2}


class DangerZoneAnalyzer:
    def __init__(self, repository=None, settings: Optional[Settings] = None):
        self.repository = repository
        self.settings = settings or get_settings()
        self.aggregator = SignalAggregator(self.settings)

    def level_for(self, disparity: float) -> Optional[DangerLevel]:
        s = self.settings
        if disparity >= s.pattern_disparity_high:
            return DangerLevel.HIGH
        elif disparity >= s.pattern_disparity_medium:
            return DangerLevel.MEDIUM
        elif disparity >= s.pattern_detection_default:
            return DangerLevel.LOW
        return None

    def polygon(self, center: Coordinate) -> Tuple[Coordinate, ...]:
        """Regular polygon around center; longitude offsets widen with latitude"""
        sides = self.settings.danger_zone_polygon_sides
        radius_deg = self.settings.danger_zone_polygon_radius_miles / MILES_PER_DEGREE
        cos_lat = max(0.01, math.cos(math.radians(center.latitude)))

        points = []
        for i in range(sides):
            angle = i * 2 * math.pi / sides
            points.append(Coordinate(
                latitude=center.latitude + math.sin(angle) * radius_deg,
                longitude=center.longitude + math.cos(angle) * radius_deg / cos_lat,
            ))
        return tuple(points)

    def disparities(
        self, scores: Sequence[SafetyScore], demographics: Optional[UserDemographics] = None
    ) -> List[Tuple[SafetyScore, float]]:
        overall = next(
            (s for s in scores if s.demographic_type == DemographicType.OVERALL and s.review_count > 0),
            None,
        )
        if overall is None:
            return []

        result = []
        for score in scores:
            if score.demographic_type == DemographicType.OVERALL or score.review_count == 0:
                continue
            if demographics is not None and not demographics.matches(score.demographic_type, score.demographic_value or ""):
                continue
            result.append((score, abs(score.avg_overall_score - overall.avg_overall_score)))
        return result

    def time_pattern(self, reviews: Iterable[Review]) -> Tuple[bool, Tuple[str, ...]]:
        """Evening/night buckets rated well below the daytime average"""
        breakdown = self.aggregator.time_of_day_breakdown(reviews)
        daytime = [breakdown[b] for b in ("morning", "afternoon") if b in breakdown]
        if not daytime:
            return False, ()

        day_count = sum(count for _, count in daytime)
        day_avg = sum(avg * count for avg, count in daytime) / day_count
        active = tuple(
            bucket for bucket in ("evening", "night")
            if bucket in breakdown
            and day_avg - breakdown[bucket][0] >= self.settings.time_discrimination_threshold
        )
        return bool(active), active

    def zone_for(
        self,
        profile: LocationSafetyProfile,
        demographics: Optional[UserDemographics] = None,
        reviews: Sequence[Review] = (),
    ) -> Optional[DangerZone]:
        disparities = self.disparities(profile.scores, demographics)
        if not disparities:
            return None

        worst = max(d for _, d in disparities)
        level = self.level_for(worst)
        if level is None:
            return None

        affected = []
        reasons = []
        for score, disparity in sorted(disparities, key=lambda item: -item[1]):
            if disparity < self.settings.pattern_detection_default:
                continue
            affected.append(score.label)
            if score.avg_overall_score < 2.0:
                reasons.append(f"Severe safety concerns for {score.demographic_value}")
            else:
                reasons.append(f"Reported discrimination against {score.demographic_value}")

        time_based, active_times = self.time_pattern(reviews)
        if time_based:
            reasons.append("Increased risk during certain times")

        return DangerZone(
            zone_id=f"zone_{profile.location_id}",
            location_id=profile.location_id,
            center=profile.coordinate,
            level=level,
            disparity=round(worst, 4),
            affected_demographics=tuple(affected),
            polygon=self.polygon(profile.coordinate),
            reasons=tuple(dict.fromkeys(reasons)),
            location_name=profile.name,
            time_based=time_based,
            active_times=active_times,
        )

    def analyze(
        self,
        profiles: Sequence[LocationSafetyProfile],
        demographics: Optional[UserDemographics] = None,
        reviews_by_location: Optional[Dict[str, Sequence[Review]]] = None,
    ) -> List[DangerZone]:
        reviews_by_location = reviews_by_location or {}
        zones = []
        for profile in profiles:
            zone = self.zone_for(profile, demographics, reviews_by_location.get(profile.location_id, ()))
            if zone is not None:
                zones.append(zone)
        zones.sort(key=lambda z: (LEVEL_ORDER[z.level], -z.disparity, z.zone_id))
        return zones

    async def zones_near(
        self,
        center: Coordinate,
        radius_miles: Optional[float] = None,
        demographics: Optional[UserDemographics] = None,
    ) -> List[DangerZone]:
        radius_miles = radius_miles or self.settings.danger_zone_search_radius_miles
        profiles = await self.repository.profiles_near(center, radius_miles * METERS_PER_MILE)

        # Reviews are only needed for locations that can become zones
        candidates = [p for p in profiles if self.disparities(p.scores, demographics)]
        reviews = {}
        for profile in candidates:
            reviews[profile.location_id] = await self.repository.reviews_for_location(profile.location_id)

        zones = await asyncio.to_thread(self.analyze, candidates, demographics, reviews)
        logger.info(f"Found {len(zones)} danger zone(s) within {radius_miles} miles of {center}")
        return zones


def zone_to_dict(zone: DangerZone) -> dict:
    return {
        "id": zone.zone_id,
        "location_id": zone.location_id,
        "location_name": zone.location_name,
        "center": zone.center.to_dict(),
        "danger_level": zone.level.value,
        "disparity": zone.disparity,
        "affected_demographics": list(zone.affected_demographics),
        "polygon_points": [c.to_dict() for c in zone.polygon],
        "reasons": list(zone.reasons),
        "time_based": zone.time_based,
        "active_times": list(zone.active_times),
    }
