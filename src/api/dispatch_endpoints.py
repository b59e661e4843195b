"""API endpoints for the dispatch lifecycle."""
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from src.api.dependencies import get_orchestrator, to_http_exception, verify_api_key
from src.models.dispatch import Dispatch, DispatchFilter, DispatchState, GpsPing, Priority
from src.models.errors import DispatchError
from src.services.dispatch_orchestrator import DispatchOrchestrator, allowed_transitions

router = APIRouter(prefix="/api/dispatches", tags=["dispatches"], dependencies=[Depends(verify_api_key)])


class CreateDispatchRequest(BaseModel):
    origin_lat: float
    origin_lng: float
    origin_address: Optional[str] = None
    destination_lat: Optional[float] = None
    destination_lng: Optional[float] = None
    destination_address: Optional[str] = None
    request_id: Optional[int] = None
    incident_type: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    estimated_duration_min: Optional[float] = None
    notes: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)


class CreateDispatchWithPredictionRequest(CreateDispatchRequest):
    description: str
    severity_level: int


class TransitionRequest(BaseModel):
    target: DispatchState
    at: Optional[datetime] = None
    ambulance_id: Optional[int] = None
    reason: Optional[str] = None


class ReassignRequest(BaseModel):
    ambulance_id: int
    ambulance_type: Optional[str] = None
    severity_level: Optional[int] = None


class GpsPingRequest(BaseModel):
    lat: float
    lng: float
    speed: Optional[float] = None
    altitude: Optional[float] = None
    accuracy: Optional[float] = None


class FeedbackRequest(BaseModel):
    # Range is checked by the service so out-of-range ratings surface as a ValidationError
    rating: int
    comment: Optional[str] = None
    condition_tag: Optional[str] = None
    response_time_min: Optional[int] = None


def dispatch_view(dispatch: Dispatch) -> Dict[str, Any]:
    view = dispatch.to_api()
    view["allowedTransitions"] = [s.value for s in allowed_transitions(dispatch.state)]
    return view


def ping_view(ping: GpsPing) -> Dict[str, Any]:
    return ping.to_api()


@router.get("")
async def list_dispatches(
    state: Optional[DispatchState] = None,
    priority: Optional[Priority] = None,
    active_only: bool = False,
    limit: int = Query(20, gt=0, le=500),
    offset: int = Query(0, ge=0),
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator),
):
    """List dispatches filtered by state, priority or activity."""
    try:
        dispatches = await orchestrator.list_dispatches(
            DispatchFilter(state=state, priority=priority, active_only=active_only, limit=limit, offset=offset)
        )
        return {"status": "success", "count": len(dispatches), "dispatches": [dispatch_view(d) for d in dispatches]}
    except DispatchError as e:
        raise to_http_exception(e)


@router.post("", status_code=201)
async def create_dispatch(body: CreateDispatchRequest, orchestrator: DispatchOrchestrator = Depends(get_orchestrator)):
    try:
        dispatch = await orchestrator.create_dispatch(**body.model_dump())
        return dispatch_view(dispatch)
    except DispatchError as e:
        raise to_http_exception(e)


@router.post("/with-prediction", status_code=201)
async def create_dispatch_with_prediction(
    body: CreateDispatchWithPredictionRequest, orchestrator: DispatchOrchestrator = Depends(get_orchestrator)
):
    """Create a dispatch and return the pipeline recommendation for it. Nothing is auto-assigned."""
    try:
        created = await orchestrator.create_dispatch_with_prediction(**body.model_dump())
        return {
            "dispatch": dispatch_view(created.dispatch),
            "prediction": created.prediction.to_dict() if created.prediction else None,
            "predictionError": created.prediction_error,
            "degraded": created.degraded,
        }
    except DispatchError as e:
        raise to_http_exception(e)


@router.get("/recent")
async def recent_dispatches_by_state(
    hours: Optional[int] = Query(None, gt=0), orchestrator: DispatchOrchestrator = Depends(get_orchestrator)
):
    """Recent dispatches grouped by lifecycle state."""
    try:
        grouped = await orchestrator.get_recent_dispatches_by_state(hours)
        return {state: [dispatch_view(d) for d in items] for state, items in grouped.items()}
    except DispatchError as e:
        raise to_http_exception(e)


@router.get("/overview")
async def dispatch_overview(hours: Optional[int] = Query(None, gt=0), orchestrator: DispatchOrchestrator = Depends(get_orchestrator)):
    try:
        overview = await orchestrator.get_dispatch_overview(hours)
        return {
            "statistics": overview["statistics"].to_dict(),
            "dispatches": [dispatch_view(d) for d in overview["dispatches"]],
        }
    except DispatchError as e:
        raise to_http_exception(e)


@router.get("/{dispatch_id}")
async def get_dispatch(dispatch_id: int, orchestrator: DispatchOrchestrator = Depends(get_orchestrator)):
    try:
        return dispatch_view(await orchestrator.get_dispatch(dispatch_id))
    except DispatchError as e:
        raise to_http_exception(e)


@router.post("/{dispatch_id}/transition")
async def transition_dispatch(
    dispatch_id: int, body: TransitionRequest, orchestrator: DispatchOrchestrator = Depends(get_orchestrator)
):
    """
    Move a dispatch through its lifecycle.

    - **target**: assigned, en_route, on_scene, completed or cancelled
    - **ambulance_id**: required when assigning
    - **reason**: recorded in the notes when cancelling
    """
    try:
        dispatch = await orchestrator.transition(
            dispatch_id, body.target, body.at, ambulance_id=body.ambulance_id, reason=body.reason
        )
        return dispatch_view(dispatch)
    except DispatchError as e:
        raise to_http_exception(e)


@router.post("/{dispatch_id}/reassign")
async def reassign_dispatch(
    dispatch_id: int, body: ReassignRequest, orchestrator: DispatchOrchestrator = Depends(get_orchestrator)
):
    try:
        result = await orchestrator.reassign_ambulance(
            dispatch_id, body.ambulance_id, ambulance_type=body.ambulance_type, severity_level=body.severity_level
        )
        return {
            "dispatch": dispatch_view(result.dispatch),
            "previousAmbulanceId": result.previous_ambulance_id,
            "warnings": result.warnings,
        }
    except DispatchError as e:
        raise to_http_exception(e)


@router.post("/{dispatch_id}/optimize")
async def optimize_dispatch(dispatch_id: int, orchestrator: DispatchOrchestrator = Depends(get_orchestrator)):
    """Ask the optimizer for an ambulance recommendation. The assignment is never changed here."""
    try:
        suggestion = await orchestrator.suggest_optimization(dispatch_id)
        return suggestion.to_dict()
    except DispatchError as e:
        raise to_http_exception(e)


@router.post("/{dispatch_id}/gps", status_code=201)
async def record_gps_ping(
    dispatch_id: int, body: GpsPingRequest, orchestrator: DispatchOrchestrator = Depends(get_orchestrator)
):
    try:
        ping = await orchestrator.record_gps_ping(
            dispatch_id, body.lat, body.lng, speed=body.speed, altitude=body.altitude, accuracy=body.accuracy
        )
        return ping_view(ping)
    except DispatchError as e:
        raise to_http_exception(e)


@router.get("/{dispatch_id}/gps")
async def get_gps_track(dispatch_id: int, orchestrator: DispatchOrchestrator = Depends(get_orchestrator)):
    try:
        pings = await orchestrator.get_gps_track(dispatch_id)
        return {"dispatchId": dispatch_id, "count": len(pings), "pings": [ping_view(p) for p in pings]}
    except DispatchError as e:
        raise to_http_exception(e)


@router.post("/{dispatch_id}/feedback", status_code=201)
async def record_feedback(
    dispatch_id: int, body: FeedbackRequest, orchestrator: DispatchOrchestrator = Depends(get_orchestrator)
):
    try:
        feedback = await orchestrator.record_feedback(
            dispatch_id, body.rating, body.comment, body.condition_tag, body.response_time_min
        )
        return feedback.to_api()
    except DispatchError as e:
        raise to_http_exception(e)


@router.post("/{dispatch_id}/complete")
async def complete_dispatch(
    dispatch_id: int,
    body: Optional[FeedbackRequest] = None,
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator),
):
    """Complete a dispatch that is on scene, optionally recording feedback in the same call."""
    try:
        if body is None:
            dispatch = await orchestrator.complete(dispatch_id)
        else:
            dispatch = await orchestrator.complete_with_feedback(
                dispatch_id, body.rating, body.comment, body.condition_tag
            )
        return dispatch_view(dispatch)
    except DispatchError as e:
        raise to_http_exception(e)
