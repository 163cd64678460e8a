"""Builders and in-memory fakes shared by the test modules."""

import asyncio
import math
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from safepath.exceptions import RoutingUnavailableError
from safepath.models.domain import (
    AreaStatistics, CandidateRoute, Coordinate, DemographicType,
    LocationSafetyProfile, Review, RouteClassification, RoutePlan,
    RouteSafetyAnalysis, RouteStep, SafetyScore, UserDemographics,
)
from safepath.services import geomath
from safepath.services.route_selector import RouteSelection

METERS_PER_DEGREE = 6371000.0 * math.pi / 180

ORIGIN = Coordinate(40.0, -74.0)
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def north(meters: float, start: Coordinate = ORIGIN) -> Coordinate:
    return Coordinate(start.latitude + meters / METERS_PER_DEGREE, start.longitude)


def east(meters: float, start: Coordinate = ORIGIN) -> Coordinate:
    per_degree = METERS_PER_DEGREE * math.cos(math.radians(start.latitude))
    return Coordinate(start.latitude, start.longitude + meters / per_degree)


def northbound_polyline(length_m: float, spacing_m: float = 100.0, start: Coordinate = ORIGIN) -> List[Coordinate]:
    points = []
    d = 0.0
    while d < length_m:
        points.append(north(d, start))
        d += spacing_m
    points.append(north(length_m, start))
    return points


def overall_score(location_id: str, score: float, count: int = 10) -> SafetyScore:
    return SafetyScore(location_id, DemographicType.OVERALL, None, score, count)


def make_profile(
    location_id: str,
    coordinate: Coordinate,
    score: Optional[float] = None,
    count: int = 10,
    place_type: str = "other",
    slices: Sequence[SafetyScore] = (),
    area_statistics: Optional[AreaStatistics] = None,
    name: Optional[str] = None,
) -> LocationSafetyProfile:
    scores = []
    if score is not None:
        scores.append(overall_score(location_id, score, count))
    scores.extend(slices)
    return LocationSafetyProfile(
        location_id=location_id,
        coordinate=coordinate,
        place_type=place_type,
        name=name or location_id,
        scores=tuple(scores),
        area_statistics=area_statistics,
    )


def make_review(
    review_id: str,
    coordinate: Coordinate,
    rating: float,
    created_at: datetime,
    location_id: Optional[str] = None,
    user_id: Optional[str] = None,
    tags=(),
    name: Optional[str] = None,
) -> Review:
    return Review(
        review_id=review_id,
        location_id=location_id or f"loc-{review_id}",
        coordinate=coordinate,
        safety_rating=rating,
        created_at=created_at,
        tags=tuple(tags),
        user_id=user_id,
        location_name=name or f"Place {review_id}",
    )


def two_step_candidate(length_m: float = 2000.0, duration_s: float = 1200.0, start: Coordinate = ORIGIN) -> CandidateRoute:
    half = length_m / 2
    steps = (
        RouteStep(start, north(half, start), half, duration_s / 2, "Head north"),
        RouteStep(north(half, start), north(length_m, start), half, duration_s / 2, "Continue north"),
    )
    return CandidateRoute(
        polyline=tuple(northbound_polyline(length_m, start=start)),
        steps=steps,
        distance_m=length_m,
        duration_s=duration_s,
        summary="North St",
    )


def make_plan(
    candidate: Optional[CandidateRoute] = None,
    created_at: datetime = T0,
    plan_id: Optional[str] = None,
    score: float = 4.0,
) -> RoutePlan:
    candidate = candidate or two_step_candidate()
    analysis = RouteSafetyAnalysis(
        overall_score=score,
        classification=RouteClassification.SAFE if score >= 4 else RouteClassification.MIXED,
        confidence=0.8,
        low_confidence=False,
        segment_scores=(),
    )
    return RoutePlan(
        id=plan_id or uuid.uuid4().hex,
        polyline=candidate.polyline,
        steps=candidate.steps,
        distance_m=candidate.distance_m,
        duration_s=candidate.duration_s,
        safety_analysis=analysis,
        alternative_rank=0,
        created_at=created_at,
        origin=candidate.polyline[0],
        destination=candidate.polyline[-1],
        summary=candidate.summary,
    )


class FakeOracle:
    def __init__(self, candidates: Sequence[CandidateRoute] = (), fail: bool = False, delay: float = 0.0):
        self.candidates = list(candidates)
        self.fail = fail
        self.delay = delay
        self.calls = 0

    async def fetch_routes(self, origin, destination, avoid_polygons=None):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RoutingUnavailableError("Directions API unavailable after 3 attempts")
        return list(self.candidates)


class FakeRepository:
    def __init__(
        self,
        profiles: Sequence[LocationSafetyProfile] = (),
        reviews: Sequence[Review] = (),
        users: Optional[Dict[str, UserDemographics]] = None,
    ):
        self.profiles = list(profiles)
        self.reviews = list(reviews)
        self.users = dict(users or {})

    async def get_profile(self, location_id):
        return next((p for p in self.profiles if p.location_id == location_id), None)

    async def profiles_in_box(self, bbox):
        min_lat, min_lng, max_lat, max_lng = bbox
        return [
            p for p in self.profiles
            if min_lat <= p.coordinate.latitude <= max_lat and min_lng <= p.coordinate.longitude <= max_lng
        ]

    async def profiles_near(self, center, radius_meters):
        return [p for p in self.profiles if geomath.distance(center, p.coordinate) <= radius_meters]

    async def profiles_by_place_type(self, place_type, exclude_id=None):
        return [
            p for p in self.profiles
            if p.place_type == place_type and p.location_id != exclude_id and p.overall is not None
        ]

    async def area_statistics_near(self, center):
        return None

    async def reviews_near(self, center, radius_meters):
        return [r for r in self.reviews if geomath.distance(center, r.coordinate) <= radius_meters]

    async def reviews_for_location(self, location_id):
        return [r for r in self.reviews if r.location_id == location_id]

    async def get_user_demographics(self, user_id):
        return self.users.get(user_id)

    async def get_demographics_for_users(self, user_ids):
        return {uid: self.users[uid] for uid in user_ids if uid in self.users}


class FakeSelector:
    """Stands in for RouteSelector in session tests; plans are handed out in order"""

    def __init__(self, fail: bool = False, gate: Optional[asyncio.Event] = None, created_at: datetime = T0):
        self.fail = fail
        self.gate = gate
        self.created_at = created_at
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def select(self, origin, destination, hour=None, zones=()):
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            if self.fail:
                raise RoutingUnavailableError("Directions API unavailable after 3 attempts")
            plan = make_plan(two_step_candidate(start=origin), created_at=self.created_at)
            return RouteSelection(plans=(plan,))
        finally:
            self.in_flight -= 1


def recent(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)
