from sqlalchemy import Column, Integer, String, DateTime, Float, Boolean, Text, Enum, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
import enum

Base = declarative_base()


class SessionStatus(enum.Enum):
    ACTIVE = "active"
    REROUTING = "rerouting"
    ENDED = "ended"


class AlertActionType(enum.Enum):
    REROUTE_ATTEMPTED = "reroute_attempted"
    USER_CONTINUED = "user_continued"


class VoteKind(enum.Enum):
    ACCURATE = "accurate"
    INACCURATE = "inaccurate"


class LocationRecord(Base):
    __tablename__ = "locations"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=True)
    google_place_id = Column(String, unique=True, nullable=True)
    place_type = Column(String, default="other")
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    safety_scores = relationship("SafetyScoreRecord", back_populates="location")


class SafetyScoreRecord(Base):
    __tablename__ = "safety_scores"
    __table_args__ = (
        UniqueConstraint("location_id", "demographic_type", "demographic_value", name="uq_safety_score_slice"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    location_id = Column(String, ForeignKey("locations.id"), nullable=False, index=True)
    demographic_type = Column(String, nullable=False, default="overall")
    demographic_value = Column(String, nullable=True)
    avg_overall_score = Column(Float, nullable=False)
    review_count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    location = relationship("LocationRecord", back_populates="safety_scores")


class ReviewRecord(Base):
    __tablename__ = "reviews"

    id = Column(String, primary_key=True)
    location_id = Column(String, ForeignKey("locations.id"), nullable=False, index=True)
    user_id = Column(String, nullable=True, index=True)
    location_name = Column(String, nullable=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    safety_rating = Column(Float, nullable=False)
    demographic_tags = Column(Text, nullable=True)  # JSON string: [{"type": ..., "value": ...}]
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)


class NeighborhoodStatsRecord(Base):
    __tablename__ = "neighborhood_stats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    location_id = Column(String, ForeignKey("locations.id"), unique=True, nullable=False)
    crime_rate_per_1000 = Column(Float, nullable=False)
    hate_crime_incidents = Column(Integer, default=0)
    diversity_index = Column(Float, nullable=True)
    data_point_count = Column(Integer, default=1)


class UserProfileRecord(Base):
    __tablename__ = "user_profiles"

    id = Column(String, primary_key=True)
    race_ethnicity = Column(Text, nullable=True)  # JSON list
    gender = Column(String, nullable=True)
    lgbtq_status = Column(Boolean, nullable=True)
    disability_status = Column(Text, nullable=True)  # JSON list
    religion = Column(String, nullable=True)
    age_range = Column(String, nullable=True)


class NavigationSessionRecord(Base):
    __tablename__ = "navigation_sessions"

    id = Column(String, primary_key=True)
    device_id = Column(String, nullable=False, index=True)
    active_route_id = Column(String, nullable=True)
    current_step_index = Column(Integer, default=0)
    status = Column(Enum(SessionStatus), default=SessionStatus.ACTIVE)
    created_at = Column(DateTime(timezone=True), nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=True)

    route_plans = relationship("RoutePlanRecord", back_populates="session")


class RoutePlanRecord(Base):
    __tablename__ = "route_plans"

    id = Column(String, primary_key=True)
    session_id = Column(String, ForeignKey("navigation_sessions.id"), nullable=True, index=True)
    polyline_json = Column(Text, nullable=False)
    distance_m = Column(Float, nullable=False)
    duration_s = Column(Float, nullable=False)
    overall_score = Column(Float, nullable=False)
    classification = Column(String, nullable=False)
    confidence = Column(Float, nullable=False)
    alternative_rank = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)

    session = relationship("NavigationSessionRecord", back_populates="route_plans")


class SafetyAlertHandledRecord(Base):
    """Append-only alert ledger. One row per (session, review), never updated."""
    __tablename__ = "safety_alerts_handled"
    __table_args__ = (
        UniqueConstraint("session_id", "review_id", name="uq_alert_session_review"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String, nullable=False, index=True)
    route_id = Column(String, nullable=False)
    review_id = Column(String, nullable=False)
    action = Column(Enum(AlertActionType), nullable=False)
    review_latitude = Column(Float, nullable=False)
    review_longitude = Column(Float, nullable=False)
    review_safety_rating = Column(Float, nullable=False)
    handled_at = Column(DateTime(timezone=True), nullable=False)


class PredictionVoteRecord(Base):
    __tablename__ = "prediction_votes"
    __table_args__ = (
        UniqueConstraint("user_id", "location_id", name="uq_vote_user_location"),
        UniqueConstraint("user_id", "google_place_id", name="uq_vote_user_place"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    location_id = Column(String, nullable=True)
    google_place_id = Column(String, nullable=True)
    vote_type = Column(Enum(VoteKind), nullable=False)
    prediction_source = Column(String, nullable=False)
    predicted_safety_score = Column(Float, nullable=False)
    user_demographics = Column(Text, nullable=True)  # JSON string
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class PredictionVoteCountRecord(Base):
    __tablename__ = "prediction_vote_counts"
    __table_args__ = (
        UniqueConstraint("location_id", "demographic_type", "demographic_value", name="uq_vote_count_slice"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    location_id = Column(String, nullable=False, index=True)
    demographic_type = Column(String, nullable=False, default="overall")
    demographic_value = Column(String, nullable=False, default="")
    accurate_count = Column(Integer, nullable=False, default=0)
    inaccurate_count = Column(Integer, nullable=False, default=0)


Index("idx_reviews_location_created", ReviewRecord.location_id, ReviewRecord.created_at)
