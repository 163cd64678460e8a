import asyncio
import logging
import uuid
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..config import Settings, get_settings
from ..exceptions import RoutingOracleError
from ..models.domain import (
    CandidateRoute, Coordinate, DangerZone, LocationSafetyProfile,
    RouteClassification, RoutePlan, RouteSafetyAnalysis, SegmentScore,
)
from ..utils.timezone import local_hour, now_utc
from . import geomath
from .route_cache import RouteCache, route_cache_key
from .segment_scorer import SegmentScorer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouteSelection:
    """Ranked, scored alternatives; plans[0] is the recommendation"""
    plans: Tuple[RoutePlan, ...]
    discarded_for_detour: int = 0

    @property
    def best(self) -> RoutePlan:
        return self.plans[0]


class RouteSelector:
    def __init__(
        self,
        oracle,
        repository,
        cache: Optional[RouteCache] = None,
        settings: Optional[Settings] = None,
    ):
        self.oracle = oracle
        self.repository = repository
        self.settings = settings or get_settings()
        self.cache = cache or RouteCache(ttl_seconds=self.settings.route_cache_ttl_seconds)
        self.scorer = SegmentScorer(self.settings)

    # ------------------------------------------------------------------ pure

    def classify(self, score: float) -> RouteClassification:
        if score >= self.settings.safe_route_threshold:
            return RouteClassification.SAFE
        elif score >= self.settings.mixed_route_threshold:
            return RouteClassification.MIXED
        return RouteClassification.UNSAFE

    def analyze(
        self,
        segments: Sequence[SegmentScore],
        polyline: Sequence[Coordinate] = (),
        zones: Sequence[DangerZone] = (),
    ) -> RouteSafetyAnalysis:
        s = self.settings
        if segments:
            overall = sum(seg.score for seg in segments) / len(segments)
            confidence = sum(seg.confidence for seg in segments) / len(segments)
        else:
            overall = s.neutral_score_baseline
            confidence = s.fallback_confidence

        safe = sum(1 for seg in segments if seg.score >= s.safe_route_threshold)
        mixed = sum(1 for seg in segments if s.mixed_route_threshold <= seg.score < s.safe_route_threshold)
        unsafe = len(segments) - safe - mixed
        high_risk = sum(1 for seg in segments if seg.score < s.unsafe_route_threshold)
        intersected = sum(1 for zone in zones if geomath.polyline_intersects_polygon(polyline, zone.polygon))

        return RouteSafetyAnalysis(
            overall_score=round(overall, 4),
            classification=self.classify(overall),
            confidence=round(confidence, 4),
            low_confidence=confidence < s.min_confidence_for_recommendations,
            segment_scores=tuple(segments),
            safe_segments=safe,
            mixed_segments=mixed,
            unsafe_segments=unsafe,
            high_risk_segments=high_risk,
            danger_zones_intersected=intersected,
            notes=tuple(self._notes(segments, safe, unsafe, intersected)),
        )

    def _notes(self, segments: Sequence[SegmentScore], safe: int, unsafe: int, zones: int) -> List[str]:
        notes: List[str] = []
        total = len(segments)
        if total == 0:
            return ["Not enough route geometry to analyze"]

        safe_pct = round(safe / total * 100)
        unsafe_pct = round(unsafe / total * 100)
        if safe_pct >= 80:
            notes.append("This route is predominantly through safe areas")
        elif safe_pct >= 60:
            notes.append("This route has mostly safe areas with some mixed zones")
        elif unsafe_pct >= 30:
            notes.append("This route passes through several areas requiring caution")
        else:
            notes.append("This route has mixed safety characteristics")

        if unsafe > 0:
            notes.append(f"{unsafe} segment(s) require extra caution")
        if zones > 0:
            notes.append(f"Route intersects {zones} danger zone(s)")

        counts: Dict[str, int] = {}
        for seg in segments:
            for factor in seg.risk_factors:
                counts[factor] = counts.get(factor, 0) + 1
        frequent = [risk for risk, count in counts.items() if count >= max(1, -(-total * 3 // 10))]
        if frequent:
            notes.append(f"Common concerns: {', '.join(frequent[:2])}")

        return notes[:5]

    def within_detour_cap(self, candidates: Sequence[CandidateRoute]) -> List[CandidateRoute]:
        if not candidates:
            return []
        fastest = min(c.duration_s for c in candidates)
        cap = fastest * self.settings.max_detour_multiplier
        return [c for c in candidates if c.duration_s <= cap]

    def rank(self, plans: Sequence[RoutePlan]) -> List[RoutePlan]:
        """Highest safety first; equal scores prefer the shorter duration"""
        ordered = sorted(plans, key=lambda p: (-p.safety_analysis.overall_score, p.duration_s))
        return [_with_rank(plan, rank) for rank, plan in enumerate(ordered)]

    def build_plan(
        self,
        candidate: CandidateRoute,
        profiles: Sequence[LocationSafetyProfile],
        hour: int,
        origin: Coordinate,
        destination: Coordinate,
        zones: Sequence[DangerZone] = (),
    ) -> RoutePlan:
        segments = self.scorer.score_route(candidate.polyline, profiles, hour)
        return RoutePlan(
            id=uuid.uuid4().hex,
            polyline=candidate.polyline,
            steps=candidate.steps,
            distance_m=candidate.distance_m,
            duration_s=candidate.duration_s,
            safety_analysis=self.analyze(segments, candidate.polyline, zones),
            alternative_rank=0,
            created_at=now_utc(),
            origin=origin,
            destination=destination,
            summary=candidate.summary,
        )

    # ----------------------------------------------------------------- async

    async def fetch_candidates(
        self,
        origin: Coordinate,
        destination: Coordinate,
        avoid_polygons: Sequence[Sequence[Coordinate]] = (),
    ) -> List[CandidateRoute]:
        key = route_cache_key(origin, destination, avoid_polygons)

        async def _fetch() -> List[CandidateRoute]:
            return list(await self.oracle.fetch_routes(origin, destination, avoid_polygons or None))

        candidates = await self.cache.get_or_fetch(key, _fetch)
        return list(candidates)[: self.settings.max_alternative_routes]

    async def score_candidates(
        self,
        candidates: Sequence[CandidateRoute],
        origin: Coordinate,
        destination: Coordinate,
        hour: Optional[int] = None,
        zones: Sequence[DangerZone] = (),
    ) -> List[RoutePlan]:
        hour = local_hour() if hour is None else hour
        all_points = [pt for c in candidates for pt in c.polyline]
        bbox = geomath.bounding_box(all_points, padding_meters=self.settings.scoring_radius_meters)
        profiles = await self.repository.profiles_in_box(bbox) if bbox else []

        # Scoring is CPU-bound; keep it off the event loop
        return await asyncio.to_thread(
            lambda: [self.build_plan(c, profiles, hour, origin, destination, zones) for c in candidates]
        )

    async def select(
        self,
        origin: Coordinate,
        destination: Coordinate,
        hour: Optional[int] = None,
        zones: Sequence[DangerZone] = (),
    ) -> RouteSelection:
        avoid = [zone.polygon for zone in zones]
        candidates = await self.fetch_candidates(origin, destination, avoid)
        if not candidates:
            raise RoutingOracleError("No route found between origin and destination")

        eligible = self.within_detour_cap(candidates)
        plans = await self.score_candidates(eligible, origin, destination, hour, zones)
        ranked = self.rank(plans)

        best = ranked[0]
        logger.info(
            f"Selected route {best.id}: score {best.safety_analysis.overall_score} "
            f"({best.safety_analysis.classification.value}), "
            f"{len(ranked)} alternative(s), {len(candidates) - len(eligible)} over detour cap"
        )
        return RouteSelection(plans=tuple(ranked), discarded_for_detour=len(candidates) - len(eligible))


def _with_rank(plan: RoutePlan, rank: int) -> RoutePlan:
    return replace(plan, alternative_rank=rank)


def plan_to_dict(plan: RoutePlan) -> Dict[str, Any]:
    analysis = plan.safety_analysis
    return {
        "id": plan.id,
        "alternative_rank": plan.alternative_rank,
        "summary": plan.summary,
        "distance_m": plan.distance_m,
        "duration_s": plan.duration_s,
        "created_at": plan.created_at.isoformat(),
        "polyline": [c.to_dict() for c in plan.polyline],
        "steps": [
            {
                "start_location": step.start_location.to_dict(),
                "end_location": step.end_location.to_dict(),
                "distance_m": step.distance_m,
                "duration_s": step.duration_s,
                "instruction": step.instruction,
            }
            for step in plan.steps
        ],
        "safety_analysis": analysis_to_dict(analysis),
    }


def analysis_to_dict(analysis: RouteSafetyAnalysis) -> Dict[str, Any]:
    return {
        "overall_score": analysis.overall_score,
        "classification": analysis.classification.value,
        "confidence": analysis.confidence,
        "low_confidence": analysis.low_confidence,
        "safety_summary": {
            "safe_segments": analysis.safe_segments,
            "mixed_segments": analysis.mixed_segments,
            "unsafe_segments": analysis.unsafe_segments,
        },
        "high_risk_segments": analysis.high_risk_segments,
        "danger_zones_intersected": analysis.danger_zones_intersected,
        "notes": list(analysis.notes),
        "segment_scores": [
            {
                "segment_index": seg.segment_index,
                "start_location": seg.start_location.to_dict(),
                "end_location": seg.end_location.to_dict(),
                "score": seg.score,
                "confidence": seg.confidence,
                "nearby_location_count": seg.nearby_location_count,
                "contributing_demographics": list(seg.contributing_demographics),
                "distance_m": seg.distance_m,
                "risk_factors": list(seg.risk_factors),
            }
            for seg in analysis.segment_scores
        ],
    }
