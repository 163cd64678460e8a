"""Process-wide service instances, handed to routers through Depends"""

from functools import lru_cache

from .config import get_settings
from .services.danger_zones import DangerZoneAnalyzer
from .services.ledger import AlertLedger
from .services.navigation_manager import NavigationManager
from .services.prediction import PredictionService
from .services.repository import SafetyRepository
from .services.review_feed import ReviewFeed
from .services.route_cache import RouteCache
from .services.route_selector import RouteSelector
from .services.routing_oracle import GoogleDirectionsOracle
from .services.session_store import SessionStore
from .services.similarity import SimilarityCalculator
from .services.votes import VoteService
from .services.websocket_manager import websocket_manager


@lru_cache()
def get_repository() -> SafetyRepository:
    return SafetyRepository(settings=get_settings())


@lru_cache()
def get_oracle() -> GoogleDirectionsOracle:
    return GoogleDirectionsOracle(get_settings())


@lru_cache()
def get_route_cache() -> RouteCache:
    settings = get_settings()
    return RouteCache(ttl_seconds=settings.route_cache_ttl_seconds, max_size=settings.route_cache_max_size)


@lru_cache()
def get_selector() -> RouteSelector:
    return RouteSelector(get_oracle(), get_repository(), get_route_cache(), get_settings())


@lru_cache()
def get_review_feed() -> ReviewFeed:
    return ReviewFeed(get_repository())


@lru_cache()
def get_navigation_manager() -> NavigationManager:
    return NavigationManager(
        selector=get_selector(),
        ledger=AlertLedger(settings=get_settings()),
        feed=get_review_feed(),
        store=SessionStore(),
        publisher=websocket_manager.publish,
        settings=get_settings(),
    )


@lru_cache()
def get_prediction_service() -> PredictionService:
    return PredictionService(get_repository(), get_settings())


@lru_cache()
def get_danger_zone_analyzer() -> DangerZoneAnalyzer:
    return DangerZoneAnalyzer(get_repository(), get_settings())


@lru_cache()
def get_similarity_calculator() -> SimilarityCalculator:
    return SimilarityCalculator(get_settings())


@lru_cache()
def get_vote_service() -> VoteService:
    return VoteService()
