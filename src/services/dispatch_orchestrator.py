"""Dispatch lifecycle: state machine, optimization merge policy and telemetry writes.

The orchestrator keeps no mutable state of its own. Every operation reads
the latest dispatch from the store, decides, and issues at most one write.
State writes carry the state they were planned against so the store can
reject a writer that lost a race (StaleStateConflict); nothing here retries.
"""
import asyncio
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from loguru import logger

from ..configurations.config import Config
from ..models.dispatch import (
    Dispatch,
    DispatchCreation,
    DispatchFilter,
    DispatchState,
    Feedback,
    GpsPing,
    Location,
    Priority,
    ReassignmentResult,
    TIMESTAMP_FIELDS,
    ensure_utc,
    utc_now,
    validate_rating,
)
from ..models.errors import InvalidTransition, Unavailable, ValidationError
from ..models.prediction import OptimizationSuggestion, check_confidence, check_severity_level
from .dispatch_statistics import compute_dispatch_statistics, group_by_state
from .dispatch_store import DispatchStore
from .prediction_enrichment import get_required_ambulance_type
from .prediction_gateway import PredictionGateway
from .prediction_service import PredictionService

TRANSITIONS = {
    DispatchState.REQUESTED: {DispatchState.ASSIGNED, DispatchState.CANCELLED},
    DispatchState.ASSIGNED: {DispatchState.EN_ROUTE, DispatchState.CANCELLED},
    DispatchState.EN_ROUTE: {DispatchState.ON_SCENE, DispatchState.CANCELLED},
    DispatchState.ON_SCENE: {DispatchState.COMPLETED, DispatchState.CANCELLED},
    DispatchState.COMPLETED: set(),
    DispatchState.CANCELLED: set(),
}

# Timestamp each forward transition stamps
TRANSITION_TIMESTAMPS = {
    DispatchState.ASSIGNED: "assigned_at",
    DispatchState.EN_ROUTE: "en_route_at",
    DispatchState.ON_SCENE: "arrived_at",
    DispatchState.COMPLETED: "completed_at",
}

REASSIGNABLE_STATES = {DispatchState.ASSIGNED, DispatchState.EN_ROUTE}

EARTH_RADIUS_KM = 6371.0


def haversine_km(origin: Location, destination: Location) -> float:
    lat1, lng1, lat2, lng2 = map(math.radians, (origin.lat, origin.lng, destination.lat, destination.lng))
    dlat = lat2 - lat1
    dlng = lng2 - lng1
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def allowed_transitions(state: DispatchState) -> List[DispatchState]:
    return sorted(TRANSITIONS[DispatchState(state)], key=lambda s: list(DispatchState).index(s))


def validate_transition(source: DispatchState, target: DispatchState) -> None:
    source, target = DispatchState(source), DispatchState(target)
    if target not in TRANSITIONS[source]:
        raise InvalidTransition(source.value, target.value)


def _last_timestamp(dispatch: Dispatch) -> Optional[datetime]:
    stamps = [getattr(dispatch, name) for name in TIMESTAMP_FIELDS if getattr(dispatch, name)]
    return stamps[-1] if stamps else None


def plan_transition(
    dispatch: Dispatch,
    target: DispatchState,
    at: datetime,
    ambulance_id: Optional[int] = None,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    """Compute the field changes for moving `dispatch` to `target` at time `at`."""
    target = DispatchState(target)
    validate_transition(dispatch.state, target)
    at = ensure_utc(at)

    last = _last_timestamp(dispatch)
    if last and at < last:
        raise ValidationError(f"Transition time {at.isoformat()} precedes {last.isoformat()}")

    changes: Dict[str, Any] = {}

    if target == DispatchState.CANCELLED:
        if reason:
            note = f"Cancelled: {reason}"
            changes["notes"] = f"{dispatch.notes}\n{note}" if dispatch.notes else note
        return changes

    if target == DispatchState.ASSIGNED:
        if ambulance_id is None:
            raise ValidationError("Assigning a dispatch requires an ambulance id")
        changes["ambulance_id"] = ambulance_id

    changes[TRANSITION_TIMESTAMPS[target]] = at

    if target == DispatchState.COMPLETED and dispatch.assigned_at:
        elapsed = (at - dispatch.assigned_at).total_seconds() / 60
        changes["actual_duration_min"] = int(round(elapsed))

    return changes


class DispatchOrchestrator:
    def __init__(
        self,
        store: DispatchStore,
        gateway: PredictionGateway,
        settings=Config,
        prediction_service: Optional[PredictionService] = None,
    ):
        check_confidence(settings.OPTIMIZATION_FALLBACK_CONFIDENCE, "OPTIMIZATION_FALLBACK_CONFIDENCE")
        self.store = store
        self.gateway = gateway
        self.settings = settings
        self.prediction_service = prediction_service or PredictionService(gateway)

    # -------------------------
    # Lifecycle
    # -------------------------
    async def transition(
        self,
        dispatch_id: int,
        target: DispatchState,
        at: Optional[datetime] = None,
        ambulance_id: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Dispatch:
        dispatch = await self.store.fetch_dispatch(dispatch_id)
        changes = plan_transition(dispatch, target, at or utc_now(), ambulance_id=ambulance_id, reason=reason)
        updated = await self.store.set_dispatch_state(dispatch_id, dispatch.state, DispatchState(target), changes)
        logger.info(f"Dispatch {dispatch_id}: {dispatch.state.value} -> {updated.state.value}")
        return updated

    async def assign(self, dispatch_id: int, ambulance_id: int, at: Optional[datetime] = None) -> Dispatch:
        return await self.transition(dispatch_id, DispatchState.ASSIGNED, at, ambulance_id=ambulance_id)

    async def depart(self, dispatch_id: int, at: Optional[datetime] = None) -> Dispatch:
        return await self.transition(dispatch_id, DispatchState.EN_ROUTE, at)

    async def arrive(self, dispatch_id: int, at: Optional[datetime] = None) -> Dispatch:
        return await self.transition(dispatch_id, DispatchState.ON_SCENE, at)

    async def complete(self, dispatch_id: int, at: Optional[datetime] = None) -> Dispatch:
        return await self.transition(dispatch_id, DispatchState.COMPLETED, at)

    async def cancel(self, dispatch_id: int, reason: Optional[str] = None, at: Optional[datetime] = None) -> Dispatch:
        return await self.transition(dispatch_id, DispatchState.CANCELLED, at, reason=reason)

    async def complete_with_feedback(
        self,
        dispatch_id: int,
        rating: int,
        comment: Optional[str] = None,
        condition_tag: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Dispatch:
        validate_rating(rating)
        completed = await self.complete(dispatch_id, at)
        await self.record_feedback(
            dispatch_id, rating, comment, condition_tag, response_time_min=completed.actual_duration_min
        )
        return completed

    async def reassign_ambulance(
        self,
        dispatch_id: int,
        ambulance_id: int,
        ambulance_type: Optional[str] = None,
        severity_level: Optional[int] = None,
    ) -> ReassignmentResult:
        """Explicit operator reassignment. A vehicle-type mismatch is reported, never blocked."""
        dispatch = await self.store.fetch_dispatch(dispatch_id)
        if dispatch.state not in REASSIGNABLE_STATES:
            raise InvalidTransition(dispatch.state.value, "reassigned")

        warnings = []
        if ambulance_type and severity_level is not None:
            required = get_required_ambulance_type(severity_level)
            if ambulance_type != required:
                warnings.append(
                    f"Severity level {severity_level} calls for a {required} ambulance, "
                    f"ambulance {ambulance_id} is {ambulance_type}"
                )

        updated = await self.store.assign_ambulance(dispatch_id, ambulance_id, dispatch.state, dispatch.ambulance_id)
        logger.info(f"Dispatch {dispatch_id}: ambulance {dispatch.ambulance_id} -> {ambulance_id}")
        for warning in warnings:
            logger.warning(f"Dispatch {dispatch_id}: {warning}")
        return ReassignmentResult(dispatch=updated, previous_ambulance_id=dispatch.ambulance_id, warnings=warnings)

    # -------------------------
    # Optimization merge policy
    # -------------------------
    def _fallback(self, dispatch: Dispatch) -> OptimizationSuggestion:
        return OptimizationSuggestion(
            dispatch_id=dispatch.id,
            ambulance_id=dispatch.ambulance_id,
            confidence=self.settings.OPTIMIZATION_FALLBACK_CONFIDENCE,
            current_ambulance_id=dispatch.ambulance_id,
            reason=self.settings.OPTIMIZATION_FALLBACK_REASON,
            degraded=True,
        )

    async def suggest_optimization(self, dispatch_id: int) -> OptimizationSuggestion:
        """Ask the optimizer for the best ambulance; never reassigns.

        Any optimizer failure or timeout degrades to the current assignment.
        A caller cancelling mid-request gets CancelledError and nothing is written.
        """
        dispatch = await self.store.fetch_dispatch(dispatch_id)

        try:
            result = await asyncio.wait_for(
                self.gateway.request_optimization(dispatch_id),
                timeout=self.settings.OPTIMIZATION_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Optimization for dispatch {dispatch_id} timed out, keeping current assignment")
            return self._fallback(dispatch)
        except Exception as e:
            logger.warning(f"Optimization for dispatch {dispatch_id} unavailable ({e}), keeping current assignment")
            return self._fallback(dispatch)

        if result is None or result.ambulance_id is None:
            logger.warning(f"Optimizer returned no ambulance for dispatch {dispatch_id}, keeping current assignment")
            return self._fallback(dispatch)

        suggestion = OptimizationSuggestion(
            dispatch_id=dispatch.id,
            ambulance_id=result.ambulance_id,
            confidence=result.confidence,
            current_ambulance_id=dispatch.ambulance_id,
            reason=result.reason,
        )
        if suggestion.changes_assignment:
            logger.info(
                f"Optimizer recommends ambulance {result.ambulance_id} for dispatch {dispatch_id} "
                f"(current {dispatch.ambulance_id}, confidence {result.confidence:.2f})"
            )
        return suggestion

    # -------------------------
    # Creation and telemetry
    # -------------------------
    async def create_dispatch(
        self,
        origin_lat: float,
        origin_lng: float,
        origin_address: Optional[str] = None,
        destination_lat: Optional[float] = None,
        destination_lng: Optional[float] = None,
        destination_address: Optional[str] = None,
        request_id: Optional[int] = None,
        incident_type: Optional[str] = None,
        priority: Priority = Priority.MEDIUM,
        estimated_duration_min: Optional[float] = None,
        notes: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Dispatch:
        origin = Location(origin_lat, origin_lng, origin_address)
        destination = None
        if destination_lat is not None or destination_lng is not None:
            destination = Location(destination_lat, destination_lng, destination_address)
        try:
            priority = Priority(priority)
        except ValueError:
            raise ValidationError(f"Unknown priority: {priority!r}")

        fields = {
            "origin": origin,
            "destination": destination,
            "request_id": request_id,
            "incident_type": incident_type,
            "priority": priority,
            "estimated_duration_min": estimated_duration_min,
            "distance_km": round(haversine_km(origin, destination), 2) if destination else None,
            "notes": notes,
            "extra": dict(extra or {}),
            "requested_at": utc_now(),
        }
        return await self.store.create_dispatch(fields)

    async def create_dispatch_with_prediction(
        self,
        origin_lat: float,
        origin_lng: float,
        description: str,
        severity_level: int,
        destination_lat: Optional[float] = None,
        destination_lng: Optional[float] = None,
        **fields: Any,
    ) -> DispatchCreation:
        """Create a dispatch and ask the pipeline which ambulance, route and ETA it would pick.

        Nothing is assigned from the prediction. A prediction outage leaves the
        created dispatch in place and is reported on the result.
        """
        if not description or not description.strip():
            raise ValidationError("A description is required to predict the dispatch")
        check_severity_level(severity_level)

        extra = dict(fields.pop("extra", None) or {})
        extra.update({"description": description, "severityLevel": severity_level})
        dispatch = await self.create_dispatch(
            origin_lat,
            origin_lng,
            destination_lat=destination_lat,
            destination_lng=destination_lng,
            extra=extra,
            **fields,
        )

        # Without a destination the prediction is made for the pickup point
        target_lat = destination_lat if destination_lat is not None else origin_lat
        target_lng = destination_lng if destination_lng is not None else origin_lng
        try:
            prediction = await self.prediction_service.get_dispatch_prediction(
                origin_lat, origin_lng, description, severity_level, target_lat, target_lng
            )
        except Unavailable as e:
            logger.warning(f"Dispatch {dispatch.id} created without a prediction: {e}")
            return DispatchCreation(dispatch=dispatch, prediction_error=str(e))

        logger.info(
            f"Dispatch {dispatch.id}: pipeline suggests ambulance {prediction.ambulance_selection.ambulance_id} "
            f"(severity {prediction.severity.label}, {prediction.eta.time_range})"
        )
        return DispatchCreation(dispatch=dispatch, prediction=prediction)

    async def record_gps_ping(
        self,
        dispatch_id: int,
        lat: float,
        lng: float,
        speed: Optional[float] = None,
        altitude: Optional[float] = None,
        accuracy: Optional[float] = None,
    ) -> GpsPing:
        ping = GpsPing(dispatch_id, lat, lng, speed=speed, altitude=altitude, accuracy=accuracy)
        return await self.store.record_gps_ping(ping)

    async def record_feedback(
        self,
        dispatch_id: int,
        rating: int,
        comment: Optional[str] = None,
        condition_tag: Optional[str] = None,
        response_time_min: Optional[int] = None,
    ) -> Feedback:
        feedback = Feedback(dispatch_id, rating, comment, condition_tag, response_time_min)
        dispatch = await self.store.fetch_dispatch(dispatch_id)
        if dispatch.state != DispatchState.COMPLETED:
            raise ValidationError(
                f"Feedback can only be recorded for a completed dispatch, dispatch {dispatch_id} is {dispatch.state.value}"
            )
        recorded = await self.store.record_feedback(feedback)
        logger.info(f"Feedback {rating}/5 recorded for dispatch {dispatch_id}")
        return recorded

    # -------------------------
    # Reads
    # -------------------------
    async def get_dispatch(self, dispatch_id: int) -> Dispatch:
        return await self.store.fetch_dispatch(dispatch_id)

    async def list_dispatches(self, dispatch_filter: Optional[DispatchFilter] = None) -> List[Dispatch]:
        return await self.store.list_dispatches(dispatch_filter or DispatchFilter())

    async def get_gps_track(self, dispatch_id: int) -> List[GpsPing]:
        return await self.store.list_gps_pings(dispatch_id)

    async def get_recent_dispatches_by_state(self, hours: Optional[int] = None) -> Dict[str, List[Dispatch]]:
        hours = hours or self.settings.RECENT_WINDOW_HOURS
        dispatches = await self.store.get_recent_dispatches(hours, self.settings.OVERVIEW_LIMIT)
        return group_by_state(dispatches)

    async def get_dispatch_overview(self, hours: Optional[int] = None) -> Dict[str, Any]:
        hours = hours or self.settings.RECENT_WINDOW_HOURS
        dispatches = await self.store.get_recent_dispatches(hours, self.settings.OVERVIEW_LIMIT)
        return {"statistics": compute_dispatch_statistics(dispatches), "dispatches": dispatches}
