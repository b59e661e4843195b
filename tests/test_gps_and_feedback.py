"""Tests for GPS tracking, feedback and dispatch creation."""
from unittest.mock import AsyncMock

import pytest

from conftest import at, run
from src.models.dispatch import DispatchFilter, DispatchState, Feedback, GpsPing, Priority
from src.models.errors import NotFound, Unavailable, ValidationError
from src.models.prediction import (
    AmbulanceSelection,
    DispatchPrediction,
    EtaPrediction,
    RouteSummary,
    SeverityPrediction,
)
from src.services.dispatch_orchestrator import DispatchOrchestrator
from src.services.prediction_enrichment import enrich_dispatch_prediction


def test_pings_are_returned_in_arrival_order(orchestrator):
    route = [(4.7110, -74.0721), (4.7050, -74.0700), (4.6900, -74.0680), (4.6280, -74.0640)]
    for lat, lng in route:
        run(orchestrator.record_gps_ping(3, lat, lng, speed=42.0))
    track = run(orchestrator.get_gps_track(3))
    assert [(p.lat, p.lng) for p in track] == route


def test_duplicate_pings_are_kept(orchestrator):
    run(orchestrator.record_gps_ping(3, 4.70, -74.07))
    run(orchestrator.record_gps_ping(3, 4.70, -74.07))
    assert len(run(orchestrator.get_gps_track(3))) == 2


def test_ping_optional_fields():
    ping = GpsPing(3, 4.70, -74.07)
    assert ping.speed is None and ping.altitude is None and ping.accuracy is None
    assert ping.recorded_at is not None
    assert ping.to_api()["dispatchId"] == 3


@pytest.mark.parametrize("lat,lng", [(91, 0), (0, 181), (None, 0)])
def test_ping_rejects_bad_coordinates(orchestrator, lat, lng):
    with pytest.raises(ValidationError):
        run(orchestrator.record_gps_ping(3, lat, lng))


def test_ping_for_unknown_dispatch(orchestrator):
    with pytest.raises(NotFound):
        run(orchestrator.record_gps_ping(404, 4.7, -74.0))


@pytest.mark.parametrize("rating", [0, 6, 3.5, True])
def test_out_of_range_rating_never_reaches_store(gateway, settings, rating):
    store = AsyncMock()
    orchestrator = DispatchOrchestrator(store, gateway, settings)
    with pytest.raises(ValidationError):
        run(orchestrator.record_feedback(5, rating))
    store.record_feedback.assert_not_called()


@pytest.mark.parametrize("rating", [1, 5])
def test_boundary_ratings_are_accepted(orchestrator, store, rating):
    recorded = run(orchestrator.record_feedback(5, rating, comment="Fast response", condition_tag="stable"))
    assert recorded.rating == rating
    assert store.feedback_for(5) == [Feedback(5, rating, "Fast response", "stable")]


def test_feedback_payload_names():
    body = Feedback(5, 4, condition_tag="critical", response_time_min=12).to_api()
    assert body["conditionTag"] == "critical"
    assert body["responseTimeMinutes"] == 12


def test_complete_with_feedback_records_response_time(orchestrator, store):
    completed = run(orchestrator.complete_with_feedback(4, 5, comment="Great crew", at=at(10, 25)))
    assert completed.state == DispatchState.COMPLETED
    assert completed.actual_duration_min == 20
    [feedback] = store.feedback_for(4)
    assert feedback.response_time_min == 20


def test_complete_with_bad_rating_does_not_complete(orchestrator, store):
    with pytest.raises(ValidationError):
        run(orchestrator.complete_with_feedback(4, 9))
    assert run(store.fetch_dispatch(4)).state == DispatchState.ON_SCENE


def test_create_dispatch_starts_requested_with_distance(orchestrator):
    dispatch = run(orchestrator.create_dispatch(
        4.7110, -74.0721, "Cra 7 # 32-16",
        destination_lat=4.6280, destination_lng=-74.0640,
        incident_type="trauma", priority="critical",
    ))
    assert dispatch.id == 7
    assert dispatch.state == DispatchState.REQUESTED
    assert dispatch.priority == Priority.CRITICAL
    assert dispatch.requested_at is not None
    assert dispatch.assigned_at is None
    assert dispatch.distance_km == pytest.approx(9.27, abs=0.05)


def test_create_dispatch_rejects_unknown_priority(orchestrator):
    with pytest.raises(ValidationError):
        run(orchestrator.create_dispatch(4.7, -74.0, priority="urgent"))


@pytest.mark.parametrize("dispatch_id", [1, 4, 6])
def test_feedback_requires_completed_dispatch(orchestrator, store, dispatch_id):
    with pytest.raises(ValidationError):
        run(orchestrator.record_feedback(dispatch_id, 4))
    assert store.feedback_for(dispatch_id) == []


class StubPredictionService:
    def __init__(self, prediction=None, error=None):
        self.prediction = prediction
        self.error = error
        self.calls = []

    async def get_dispatch_prediction(self, *args):
        self.calls.append(args)
        if self.error:
            raise self.error
        return self.prediction


def pipeline_prediction():
    return enrich_dispatch_prediction(DispatchPrediction(
        severity=SeverityPrediction(level=1, confidence=0.97),
        ambulance_selection=AmbulanceSelection(ambulance_id=12, confidence=0.88, distance_km=2.4),
        route=RouteSummary(distance_km=3.1, eta_minutes=7.5),
        eta=EtaPrediction(estimated_minutes=7.5, lower_bound=6.0, upper_bound=9.0, confidence=0.75),
    ))


def test_create_with_prediction_recommends_without_assigning(store, gateway, settings):
    predictions = StubPredictionService(prediction=pipeline_prediction())
    orchestrator = DispatchOrchestrator(store, gateway, settings, predictions)

    created = run(orchestrator.create_dispatch_with_prediction(
        4.7110, -74.0721, "Unconscious, not breathing", 1, destination_lat=4.6280, destination_lng=-74.0640,
    ))

    assert created.prediction.ambulance_selection.ambulance_id == 12
    assert not created.degraded
    assert created.dispatch.state == DispatchState.REQUESTED
    assert created.dispatch.ambulance_id is None
    assert created.dispatch.extra == {"description": "Unconscious, not breathing", "severityLevel": 1}
    assert predictions.calls == [(4.7110, -74.0721, "Unconscious, not breathing", 1, 4.6280, -74.0640)]
    assert run(store.fetch_dispatch(created.dispatch.id)).state == DispatchState.REQUESTED


def test_create_with_prediction_uses_pickup_when_no_destination(store, gateway, settings):
    predictions = StubPredictionService(prediction=pipeline_prediction())
    orchestrator = DispatchOrchestrator(store, gateway, settings, predictions)
    run(orchestrator.create_dispatch_with_prediction(4.71, -74.07, "Fall at home", 3))
    assert predictions.calls[0][-2:] == (4.71, -74.07)


def test_prediction_outage_keeps_the_created_dispatch(store, gateway, settings):
    predictions = StubPredictionService(error=Unavailable("prediction service down"))
    orchestrator = DispatchOrchestrator(store, gateway, settings, predictions)

    created = run(orchestrator.create_dispatch_with_prediction(4.71, -74.07, "Chest pain", 2))

    assert created.degraded
    assert created.prediction is None
    assert "prediction service down" in created.prediction_error
    assert run(store.fetch_dispatch(created.dispatch.id)).state == DispatchState.REQUESTED


@pytest.mark.parametrize("description,level", [("   ", 2), ("Chest pain", 0), ("Chest pain", 6)])
def test_create_with_prediction_validates_before_creating(store, gateway, settings, description, level):
    predictions = StubPredictionService(prediction=pipeline_prediction())
    orchestrator = DispatchOrchestrator(store, gateway, settings, predictions)
    with pytest.raises(ValidationError):
        run(orchestrator.create_dispatch_with_prediction(4.71, -74.07, description, level))
    assert predictions.calls == []
    assert len(run(store.list_dispatches(DispatchFilter(limit=100)))) == 6
