from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..dependencies import get_review_feed
from ..models.domain import Coordinate, DemographicTag, DemographicType, Review
from ..utils.timezone import ensure_utc

router = APIRouter()


class DemographicTagIn(BaseModel):
    type: DemographicType
    value: str


class LiveReviewRequest(BaseModel):
    review_id: str
    location_id: str
    location_name: Optional[str] = None
    place_type: str = "other"
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    safety_rating: float = Field(..., ge=1, le=5)
    created_at: Optional[datetime] = None
    user_id: Optional[str] = None
    tags: List[DemographicTagIn] = []


@router.post("/reviews/live")
async def ingest_review(payload: LiveReviewRequest, feed=Depends(get_review_feed)):
    """Store a new review and push it to every navigating client"""
    review = Review(
        review_id=payload.review_id,
        location_id=payload.location_id,
        coordinate=Coordinate(payload.latitude, payload.longitude),
        safety_rating=payload.safety_rating,
        created_at=ensure_utc(payload.created_at),
        tags=tuple(DemographicTag(t.type, t.value) for t in payload.tags),
        user_id=payload.user_id,
        location_name=payload.location_name,
    )
    stored = await feed.ingest(review, place_type=payload.place_type)
    return {
        "review_id": review.review_id,
        "status": "stored" if stored else "already recorded",
        "delivered_to": feed.subscriber_count if stored else 0,
    }
