from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, model_validator

from ..dependencies import (
    get_danger_zone_analyzer, get_prediction_service, get_repository,
    get_similarity_calculator, get_vote_service,
)
from ..exceptions import SafePathError
from ..models.domain import Coordinate, DemographicType, VoteType
from ..services.danger_zones import zone_to_dict
from ..services.prediction import prediction_to_dict
from ..services.votes import PredictionVote
from ..utils.timezone import utc_isoformat
from .errors import http_error
from .schemas import DemographicsIn

router = APIRouter()


class PredictionRequest(BaseModel):
    location_id: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    place_type: Optional[str] = None
    user_id: Optional[str] = None
    demographics: Optional[DemographicsIn] = None

    @model_validator(mode="after")
    def check_target(self):
        has_coordinates = self.latitude is not None and self.longitude is not None
        if not self.location_id and not has_coordinates:
            raise ValueError("Either location_id or latitude/longitude is required")
        return self


class VoteRequest(BaseModel):
    user_id: str
    location_id: Optional[str] = None
    google_place_id: Optional[str] = None
    vote_type: VoteType
    prediction_source: str
    predicted_safety_score: float = Field(..., ge=0, le=5)
    demographic_type: Optional[str] = None
    demographic_value: Optional[str] = None
    user_demographics: Optional[DemographicsIn] = None

    @model_validator(mode="after")
    def check_target(self):
        if not self.location_id and not self.google_place_id:
            raise ValueError("Either location_id or google_place_id is required")
        return self


class DangerZoneRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    radius_miles: Optional[float] = Field(None, gt=0)
    user_id: Optional[str] = None
    demographics: Optional[DemographicsIn] = None


class SimilarityRequest(BaseModel):
    user_id: str
    limit: int = Field(10, ge=1, le=100)


@router.post("/predictions/location")
async def predict_location(payload: PredictionRequest, service=Depends(get_prediction_service)):
    """Safety prediction for a location, blended from the best available signal"""
    coordinate = None
    if payload.latitude is not None and payload.longitude is not None:
        coordinate = Coordinate(payload.latitude, payload.longitude)

    try:
        result = await service.predict(
            location_id=payload.location_id,
            coordinate=coordinate,
            place_type=payload.place_type,
            user_id=payload.user_id,
            demographics=payload.demographics.to_domain() if payload.demographics else None,
        )
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except SafePathError as e:
        raise http_error(e)

    return prediction_to_dict(result)


@router.get("/locations/{location_id}/safety")
async def location_safety(location_id: str, require_overall: bool = False, service=Depends(get_prediction_service)):
    """Overall and per-demographic safety for a stored location"""
    try:
        signal, rows = await service.location_safety(location_id, required=require_overall)
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except SafePathError as e:
        raise http_error(e)

    return {
        "location_id": location_id,
        "overall": {
            "score": round(signal.score, 4),
            "confidence": round(signal.confidence, 4),
            "review_count": signal.review_count,
            "source": signal.source,
        },
        "demographic_scores": [
            {
                "demographic": row.label,
                "avg_overall_score": round(row.avg_overall_score, 4),
                "review_count": row.review_count,
                "low_confidence": row.low_confidence,
            }
            for row in rows
            if row.demographic_type != DemographicType.OVERALL
        ],
    }


@router.post("/predictions/vote")
async def vote_prediction(payload: VoteRequest, votes=Depends(get_vote_service)):
    """Toggle an accuracy vote: same vote again removes it, opposite vote switches it"""
    action = await votes.cast(PredictionVote(
        user_id=payload.user_id,
        vote_type=payload.vote_type,
        prediction_source=payload.prediction_source,
        predicted_safety_score=payload.predicted_safety_score,
        location_id=payload.location_id,
        google_place_id=payload.google_place_id,
        demographic_type=payload.demographic_type,
        demographic_value=payload.demographic_value,
        user_demographics=payload.user_demographics.to_domain() if payload.user_demographics else None,
    ))
    return {"success": True, "action": action}


@router.post("/danger-zones")
async def danger_zones(
    payload: DangerZoneRequest,
    analyzer=Depends(get_danger_zone_analyzer),
    repository=Depends(get_repository),
):
    """Locations where some demographic group reports very different safety"""
    demographics = payload.demographics.to_domain() if payload.demographics else None
    if demographics is None and payload.user_id:
        demographics = await repository.get_user_demographics(payload.user_id)

    zones = await analyzer.zones_near(
        Coordinate(payload.latitude, payload.longitude),
        radius_miles=payload.radius_miles,
        demographics=demographics,
    )
    return {
        "danger_zones": [zone_to_dict(z) for z in zones],
        "total_zones": len(zones),
        "generated_at": utc_isoformat(),
    }


@router.post("/similarity")
async def similar_users(
    payload: SimilarityRequest,
    repository=Depends(get_repository),
    calculator=Depends(get_similarity_calculator),
):
    """Users most demographically similar to the given user"""
    target = await repository.get_user_demographics(payload.user_id)
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    others = await repository.other_users_demographics(payload.user_id)
    ranked = calculator.rank(target, others, limit=payload.limit)
    return {
        "target_user_id": payload.user_id,
        "similar_users": [
            {
                "user_id": s.other_user_id,
                "similarity_score": s.similarity_score,
                "shared_demographics": list(s.shared_attributes),
            }
            for s in ranked
        ],
        "calculation_timestamp": utc_isoformat(),
    }
