"""Shared fixtures for the dispatch service tests."""
import asyncio
from datetime import datetime, timezone

import pytest

from src.configurations.config import Config
from src.models.dispatch import Dispatch, DispatchState, Location, Priority
from src.models.errors import Unavailable
from src.models.prediction import OptimizationResult
from src.services.dispatch_orchestrator import DispatchOrchestrator
from src.services.dispatch_store import InMemoryDispatchStore


class FastSettings(Config):
    OPTIMIZATION_TIMEOUT_SECONDS = 0.05
    OPTIMIZATION_FALLBACK_CONFIDENCE = 0.5
    OPTIMIZATION_FALLBACK_REASON = "Servicio ML no disponible, se mantiene la asignación actual"


class FakeGateway:
    """Stands in for PredictionGateway; only the optimizer is used by the orchestrator."""

    def __init__(self, result=None, error=None, delay: float = 0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = []

    async def request_optimization(self, dispatch_id):
        self.calls.append(dispatch_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


def at(hour: int, minute: int) -> datetime:
    return datetime(2025, 11, 5, hour, minute, tzinfo=timezone.utc)


BOGOTA = Location(4.7110, -74.0721, "Cra 7 # 32-16, Bogotá")
HOSPITAL = Location(4.6280, -74.0640, "Hospital San Ignacio")


def make_dispatch(dispatch_id: int = 1, state: DispatchState = DispatchState.REQUESTED, ambulance_id=None, **overrides):
    """Build a dispatch whose timestamps are consistent with `state`."""
    state = DispatchState(state)
    fields = {"requested_at": at(10, 0)}
    if state in (DispatchState.ASSIGNED, DispatchState.EN_ROUTE, DispatchState.ON_SCENE, DispatchState.COMPLETED):
        fields["assigned_at"] = at(10, 5)
        ambulance_id = ambulance_id if ambulance_id is not None else 1
    if state in (DispatchState.EN_ROUTE, DispatchState.ON_SCENE, DispatchState.COMPLETED):
        fields["en_route_at"] = at(10, 7)
    if state in (DispatchState.ON_SCENE, DispatchState.COMPLETED):
        fields["arrived_at"] = at(10, 12)
    if state == DispatchState.COMPLETED:
        fields["completed_at"] = at(10, 20)
        fields["actual_duration_min"] = 15
    fields.update(overrides)
    return Dispatch(
        id=dispatch_id,
        state=state,
        origin=BOGOTA,
        destination=HOSPITAL,
        ambulance_id=ambulance_id,
        priority=Priority.HIGH,
        incident_type="cardiac",
        **fields,
    )


@pytest.fixture
def settings():
    return FastSettings


@pytest.fixture
def store():
    return InMemoryDispatchStore([
        make_dispatch(1, DispatchState.REQUESTED),
        make_dispatch(2, DispatchState.ASSIGNED, ambulance_id=1),
        make_dispatch(3, DispatchState.EN_ROUTE, ambulance_id=2),
        make_dispatch(4, DispatchState.ON_SCENE, ambulance_id=3),
        make_dispatch(5, DispatchState.COMPLETED, ambulance_id=4),
        make_dispatch(6, DispatchState.CANCELLED, notes="Cancelled: duplicate call"),
    ])


@pytest.fixture
def gateway():
    return FakeGateway(result=OptimizationResult(ambulance_id=1, confidence=0.95, reason="Closest available unit"))


@pytest.fixture
def failing_gateway():
    return FakeGateway(error=Unavailable("connection refused"))


@pytest.fixture
def orchestrator(store, gateway, settings):
    return DispatchOrchestrator(store, gateway, settings)


def run(coro):
    return asyncio.run(coro)
