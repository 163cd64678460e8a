"""In-memory value types shared by the scoring and navigation services.

These are plain dataclasses; the SQLAlchemy rows in ``database_models`` are
converted into them by the repositories so that the core algorithms never
touch a database session.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple


class DemographicType(enum.Enum):
    OVERALL = "overall"
    RACE_ETHNICITY = "race_ethnicity"
    GENDER = "gender"
    LGBTQ = "lgbtq"
    RELIGION = "religion"
    DISABILITY = "disability"
    AGE_RANGE = "age_range"


class PredictionSource(enum.Enum):
    COMMUNITY_REVIEWS = "community_reviews"
    ML_PREDICTION = "ml_prediction"
    STATISTICS = "statistics"
    NEUTRAL_BASELINE = "neutral_baseline"


class RouteClassification(enum.Enum):
    SAFE = "safe"
    MIXED = "mixed"
    UNSAFE = "unsafe"


class DangerLevel(enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AlertAction(enum.Enum):
    REROUTE_ATTEMPTED = "reroute_attempted"
    USER_CONTINUED = "user_continued"


class AlertSeverity(enum.Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    NOTICE = "notice"


class VoteType(enum.Enum):
    ACCURATE = "accurate"
    INACCURATE = "inaccurate"


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    def to_dict(self) -> Dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass(frozen=True)
class DemographicTag:
    demographic_type: DemographicType
    value: str

    @property
    def label(self) -> str:
        return f"{self.demographic_type.value}: {self.value}"


@dataclass(frozen=True)
class Review:
    review_id: str
    location_id: str
    coordinate: Coordinate
    safety_rating: float
    created_at: datetime
    tags: Tuple[DemographicTag, ...] = ()
    user_id: Optional[str] = None
    location_name: Optional[str] = None


@dataclass(frozen=True)
class AreaStatistics:
    crime_rate_per_1000: float
    hate_crime_incidents: int = 0
    diversity_index: Optional[float] = None
    data_point_count: int = 1


@dataclass
class UserDemographics:
    race_ethnicity: List[str] = field(default_factory=list)
    gender: Optional[str] = None
    lgbtq_status: Optional[bool] = None
    disability_status: List[str] = field(default_factory=list)
    religion: Optional[str] = None
    age_range: Optional[str] = None

    def matches(self, demographic_type: DemographicType, value: str) -> bool:
        if demographic_type == DemographicType.RACE_ETHNICITY:
            return value in self.race_ethnicity
        if demographic_type == DemographicType.GENDER:
            return self.gender is not None and value == self.gender
        if demographic_type == DemographicType.LGBTQ:
            return self.lgbtq_status is True and value == "true"
        if demographic_type == DemographicType.RELIGION:
            return self.religion is not None and value == self.religion
        if demographic_type == DemographicType.DISABILITY:
            return value in self.disability_status
        if demographic_type == DemographicType.AGE_RANGE:
            return self.age_range is not None and value == self.age_range
        return False


@dataclass(frozen=True)
class SafetyScore:
    location_id: str
    demographic_type: DemographicType
    demographic_value: Optional[str]
    avg_overall_score: float
    review_count: int
    low_confidence: bool = False

    @property
    def label(self) -> str:
        if self.demographic_type == DemographicType.OVERALL:
            return DemographicType.OVERALL.value
        return f"{self.demographic_type.value}: {self.demographic_value}"


@dataclass(frozen=True)
class LocationSafetyProfile:
    location_id: str
    coordinate: Coordinate
    place_type: str = "other"
    name: Optional[str] = None
    scores: Tuple[SafetyScore, ...] = ()
    area_statistics: Optional[AreaStatistics] = None

    @property
    def overall(self) -> Optional[SafetyScore]:
        for score in self.scores:
            if score.demographic_type == DemographicType.OVERALL and score.review_count > 0:
                return score
        return None


@dataclass(frozen=True)
class RouteStep:
    start_location: Coordinate
    end_location: Coordinate
    distance_m: float
    duration_s: float
    instruction: str = ""


@dataclass(frozen=True)
class CandidateRoute:
    """Raw routing-oracle output, before any safety scoring."""

    polyline: Tuple[Coordinate, ...]
    steps: Tuple[RouteStep, ...]
    distance_m: float
    duration_s: float
    summary: str = ""


@dataclass(frozen=True)
class SegmentScore:
    segment_index: int
    start_location: Coordinate
    end_location: Coordinate
    score: float
    nearby_location_count: int
    contributing_demographics: Tuple[str, ...] = ()
    confidence: float = 0.0
    distance_m: float = 0.0
    risk_factors: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RouteSafetyAnalysis:
    overall_score: float
    classification: RouteClassification
    confidence: float
    low_confidence: bool
    segment_scores: Tuple[SegmentScore, ...]
    safe_segments: int = 0
    mixed_segments: int = 0
    unsafe_segments: int = 0
    high_risk_segments: int = 0
    danger_zones_intersected: int = 0
    notes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RoutePlan:
    id: str
    polyline: Tuple[Coordinate, ...]
    steps: Tuple[RouteStep, ...]
    distance_m: float
    duration_s: float
    safety_analysis: RouteSafetyAnalysis
    alternative_rank: int
    created_at: datetime
    origin: Coordinate
    destination: Coordinate
    summary: str = ""


@dataclass(frozen=True)
class PredictionResult:
    predicted_safety_score: float
    confidence: float
    primary_source: PredictionSource
    based_on: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class SimilarityScore:
    other_user_id: str
    similarity_score: float
    shared_attributes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DangerZone:
    zone_id: str
    location_id: str
    center: Coordinate
    level: DangerLevel
    disparity: float
    affected_demographics: Tuple[str, ...]
    polygon: Tuple[Coordinate, ...]
    reasons: Tuple[str, ...] = ()
    location_name: Optional[str] = None
    time_based: bool = False
    active_times: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SafetyAlertHandled:
    session_id: str
    route_id: str
    review_id: str
    handled_at: datetime
    action: AlertAction
    review_location: Coordinate
    review_safety_rating: float
