import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ..dependencies import get_danger_zone_analyzer, get_navigation_manager, get_repository, get_selector
from ..exceptions import SafePathError
from ..models.domain import CandidateRoute
from ..services import geomath
from ..services.route_selector import analysis_to_dict, plan_to_dict
from ..utils.timezone import local_hour
from .errors import http_error
from .schemas import DemographicsIn, LatLng

logger = logging.getLogger(__name__)
router = APIRouter()


class RoutePlanRequest(BaseModel):
    origin: LatLng
    destination: LatLng
    user_id: Optional[str] = None
    demographics: Optional[DemographicsIn] = None
    avoid_danger_zones: bool = True
    utc_offset_minutes: int = 0


class RouteScoreRequest(BaseModel):
    polyline: List[LatLng] = Field(..., min_length=2)
    hour: Optional[int] = Field(None, ge=0, le=23)
    utc_offset_minutes: int = 0


@router.post("/routes/plan")
async def plan_routes(
    payload: RoutePlanRequest,
    manager=Depends(get_navigation_manager),
    analyzer=Depends(get_danger_zone_analyzer),
    repository=Depends(get_repository),
):
    """Fetch alternatives, score them for safety and rank them"""
    origin = payload.origin.to_coordinate()
    destination = payload.destination.to_coordinate()

    demographics = payload.demographics.to_domain() if payload.demographics else None
    if demographics is None and payload.user_id:
        demographics = await repository.get_user_demographics(payload.user_id)

    try:
        zones = []
        if payload.avoid_danger_zones:
            zones = await analyzer.zones_near(origin, demographics=demographics)
        selection = await manager.plan(
            origin,
            destination,
            hour=local_hour(utc_offset_minutes=payload.utc_offset_minutes),
            zones=zones,
        )
    except SafePathError as e:
        raise http_error(e)

    return {
        "recommended_route_id": selection.best.id,
        "routes": [plan_to_dict(plan) for plan in selection.plans],
        "discarded_for_detour": selection.discarded_for_detour,
        "danger_zones_considered": len(zones),
    }


@router.post("/routes/score")
async def score_route(payload: RouteScoreRequest, selector=Depends(get_selector)):
    """Score a route geometry the client already has"""
    polyline = tuple(point.to_coordinate() for point in payload.polyline)
    candidate = CandidateRoute(
        polyline=polyline,
        steps=(),
        distance_m=geomath.polyline_length(polyline),
        duration_s=0.0,
    )
    hour = payload.hour if payload.hour is not None else local_hour(utc_offset_minutes=payload.utc_offset_minutes)

    try:
        plans = await selector.score_candidates([candidate], polyline[0], polyline[-1], hour=hour)
    except SafePathError as e:
        raise http_error(e)
    if not plans:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Route could not be scored")

    return {
        "distance_m": round(candidate.distance_m, 1),
        "hour": hour,
        "safety_analysis": analysis_to_dict(plans[0].safety_analysis),
    }
