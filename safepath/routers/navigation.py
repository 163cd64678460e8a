import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, Field, ValidationError

from ..dependencies import get_danger_zone_analyzer, get_navigation_manager
from ..exceptions import SafePathError
from ..models.domain import AlertAction, Coordinate
from ..services.navigation import SessionState
from ..services.route_selector import plan_to_dict
from ..services.websocket_manager import websocket_manager
from ..utils.timezone import local_hour
from .errors import http_error
from .schemas import LatLng

logger = logging.getLogger(__name__)
router = APIRouter()


class StartNavigationRequest(BaseModel):
    device_id: str
    route_id: Optional[str] = None
    origin: Optional[LatLng] = None
    destination: Optional[LatLng] = None
    location_available: bool = True
    avoid_danger_zones: bool = False
    utc_offset_minutes: int = 0


class PositionUpdate(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class AlertDecisionRequest(BaseModel):
    action: AlertAction


def _session_view(manager, session) -> dict:
    prompt = manager.alerts.pending_prompt(session.session_id)
    return {
        "session_id": session.session_id,
        "device_id": session.device_id,
        "state": session.state.value,
        "active_route_id": session.active_route_id,
        "route_history": list(session.route_history),
        "created_at": session.created_at.isoformat(),
        "ended_at": session.ended_at.isoformat() if session.ended_at else None,
        "progress": session.progress().to_dict(),
        "pending_alert": prompt.to_dict() if prompt else None,
    }


@router.post("/navigation/start")
async def start_navigation(
    payload: StartNavigationRequest,
    manager=Depends(get_navigation_manager),
    analyzer=Depends(get_danger_zone_analyzer),
):
    """Start navigating a planned route (by id) or plan one on the spot"""
    try:
        zones = []
        route = None
        if payload.route_id:
            route = manager.find_plan(payload.route_id)
            if route is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Route not found or expired; plan the route again",
                )
        elif payload.origin and payload.destination:
            if payload.avoid_danger_zones:
                zones = await analyzer.zones_near(payload.origin.to_coordinate())
            selection = await manager.plan(
                payload.origin.to_coordinate(),
                payload.destination.to_coordinate(),
                hour=local_hour(utc_offset_minutes=payload.utc_offset_minutes),
                zones=zones,
            )
            route = selection.best

        session = await manager.start(
            payload.device_id,
            route,
            location_available=payload.location_available,
            utc_offset_minutes=payload.utc_offset_minutes,
            avoid_zones=zones,
        )
    except SafePathError as e:
        raise http_error(e)

    view = _session_view(manager, session)
    view["route"] = plan_to_dict(session.route)
    return view


@router.post("/navigation/{session_id}/position")
async def push_position(session_id: str, payload: PositionUpdate, manager=Depends(get_navigation_manager)):
    try:
        await manager.push_position(session_id, Coordinate(payload.latitude, payload.longitude))
        session = manager.get(session_id)
    except SafePathError as e:
        raise http_error(e)
    return _session_view(manager, session)


@router.get("/navigation/{session_id}")
async def get_navigation(session_id: str, manager=Depends(get_navigation_manager)):
    try:
        session = manager.get(session_id)
    except SafePathError as e:
        raise http_error(e)
    return _session_view(manager, session)


@router.post("/navigation/{session_id}/alerts/decision")
async def decide_alert(session_id: str, payload: AlertDecisionRequest, manager=Depends(get_navigation_manager)):
    """Record the traveler's answer to the open safety alert"""
    try:
        decision = await manager.decide(session_id, payload.action)
    except SafePathError as e:
        raise http_error(e)
    return {
        "action": decision.action.value,
        "review_ids": decision.prompt.review_ids,
        "recorded": decision.recorded,
        "already_recorded": decision.already_recorded,
        "rerouting": decision.reroute_task is not None,
    }


@router.post("/navigation/{session_id}/end")
async def end_navigation(session_id: str, manager=Depends(get_navigation_manager)):
    ended = await manager.end(session_id)
    return {"session_id": session_id, "ended": ended}


@router.websocket("/navigation/{session_id}/ws")
async def navigation_socket(
    websocket: WebSocket,
    session_id: str,
    device_id: Optional[str] = None,
    manager=Depends(get_navigation_manager),
):
    """Progress, reroute and alert events out; positions and decisions in"""
    try:
        session = manager.get(session_id)
    except SafePathError:
        await websocket.close(code=4404)
        return
    if session.state == SessionState.ENDED:
        await websocket.close(code=4409)
        return

    await websocket_manager.connect(websocket, session_id, {"device_id": device_id or session.device_id})
    await websocket_manager.send_personal_message(
        {"event": "progress", "session_id": session_id, "data": session.progress().to_dict()}, websocket
    )

    try:
        while True:
            message = await websocket.receive_json()
            kind = message.get("type")
            try:
                if kind == "position":
                    update = PositionUpdate(**message)
                    await manager.push_position(session_id, Coordinate(update.latitude, update.longitude), wait=False)
                elif kind == "decision":
                    decision = await manager.decide(session_id, AlertDecisionRequest(**message).action)
                    await websocket_manager.send_personal_message(
                        {"event": "decision_recorded", "session_id": session_id,
                         "data": {"action": decision.action.value, "recorded": decision.recorded}},
                        websocket,
                    )
                elif kind == "end":
                    await manager.end(session_id)
                    break
                else:
                    await websocket_manager.send_personal_message(
                        {"event": "error", "session_id": session_id, "data": {"detail": f"Unknown message type: {kind}"}},
                        websocket,
                    )
            except (ValidationError, SafePathError) as e:
                await websocket_manager.send_personal_message(
                    {"event": "error", "session_id": session_id, "data": {"detail": str(e)}}, websocket
                )
    except WebSocketDisconnect:
        logger.info(f"Navigation socket closed for session {session_id}")
    finally:
        websocket_manager.disconnect(websocket)
