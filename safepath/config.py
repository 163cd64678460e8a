from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List, Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # Ignore extra fields in .env file
    )

    app_name: str = "SafePath Navigation API"
    app_env: str = "development"
    app_debug: bool = True
    api_prefix: str = "/api"

    database_url: str = Field(..., description="Async SQLAlchemy URL, e.g. postgresql+asyncpg://...")
    redis_url: Optional[str] = None

    google_maps_api_key: str = ""
    directions_base_url: str = "https://maps.googleapis.com/maps/api/directions/json"

    allowed_origins: Optional[str] = None

    # Segment scoring
    segment_length_meters: float = 1000.0
    scoring_radius_meters: float = 500.0
    max_nearby_locations: int = 20
    evening_start_hour: int = 18
    night_start_hour: int = 22
    morning_end_hour: int = 6
    evening_multiplier: float = 1.2
    night_multiplier: float = 1.5

    # Route classification and selection
    safe_route_threshold: float = 4.0
    mixed_route_threshold: float = 3.0
    unsafe_route_threshold: float = 2.0
    max_alternative_routes: int = 5
    max_detour_multiplier: float = 1.5
    min_confidence_for_recommendations: float = 0.6

    # Prediction blending
    neutral_score_baseline: float = 3.5
    fallback_confidence: float = 0.3
    min_confidence_baseline: float = 0.15
    location_confidence_max: float = 0.8
    confidence_data_points_divisor: float = 10.0
    min_reviews_for_patterns: int = 2
    nearby_location_radius_meters: float = 1000.0
    min_similarity_score: float = 0.5
    max_similar_users: int = 20

    # Danger zones
    pattern_disparity_high: float = 3.0
    pattern_disparity_medium: float = 2.0
    pattern_detection_default: float = 1.5
    danger_zone_polygon_radius_miles: float = 2.0
    danger_zone_polygon_sides: int = 8
    danger_zone_search_radius_miles: float = 50.0
    time_discrimination_threshold: float = 1.5

    # Navigation
    step_arrival_threshold_meters: float = 20.0
    route_recalculation_threshold_meters: float = 100.0
    alert_corridor_meters: float = 500.0
    alert_rating_threshold: float = 3.0

    # External calls
    route_request_timeout_ms: int = 10000
    request_timeout_ms: int = 5000
    retry_attempts: int = 3
    retry_backoff_seconds: float = 0.5
    max_concurrent_route_requests: int = 3
    route_cache_ttl_minutes: int = 15
    route_cache_max_size: int = 500

    @property
    def get_allowed_origins(self) -> List[str]:
        """Get CORS allowed origins, handling both single string and list"""
        if not self.allowed_origins:
            return ["*"]

        origins_str = self.allowed_origins.strip()

        # Remove brackets and quotes if present
        if origins_str.startswith('[') and origins_str.endswith(']'):
            origins_str = origins_str[1:-1]

        origins = []
        for origin in origins_str.split(','):
            clean_origin = origin.strip().strip('"').strip("'")
            if clean_origin:
                origins.append(clean_origin)
        return origins if origins else ["*"]

    @property
    def route_cache_ttl_seconds(self) -> int:
        return self.route_cache_ttl_minutes * 60


@lru_cache()
def get_settings() -> Settings:
    return Settings()  # type: ignore
