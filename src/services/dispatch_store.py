"""Persistence boundary for dispatch records, GPS pings and feedback."""
import asyncio
import itertools
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from loguru import logger

from ..models.dispatch import (
    Dispatch,
    DispatchFilter,
    DispatchState,
    Feedback,
    GpsPing,
    Location,
    utc_now,
)
from ..models.errors import NotFound, StaleStateConflict, Unavailable
from .api_client import ApiClient

# Python field name -> backend JSON name
FIELD_API_NAMES = {
    "request_id": "requestId",
    "ambulance_id": "ambulanceId",
    "origin": "origin",
    "destination": "destination",
    "requested_at": "requestedAt",
    "assigned_at": "assignedAt",
    "en_route_at": "enRouteAt",
    "arrived_at": "arrivedAt",
    "completed_at": "completedAt",
    "distance_km": "distanceKm",
    "estimated_duration_min": "estimatedDurationMin",
    "actual_duration_min": "actualDurationMin",
    "incident_type": "incidentType",
    "priority": "priority",
    "notes": "notes",
    "extra": "extra",
}


def fields_to_api(fields: Dict[str, Any]) -> Dict[str, Any]:
    payload = {}
    for name, value in fields.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Location):
            value = value.to_api()
        elif isinstance(value, Enum):
            value = value.value
        payload[FIELD_API_NAMES[name]] = value
    return payload


class DispatchStore(ABC):
    """Owns persistence of dispatches; state writes are compare-and-set on the prior state."""

    @abstractmethod
    async def fetch_dispatch(self, dispatch_id: int) -> Dispatch: ...

    @abstractmethod
    async def list_dispatches(self, dispatch_filter: DispatchFilter) -> List[Dispatch]: ...

    @abstractmethod
    async def create_dispatch(self, fields: Dict[str, Any]) -> Dispatch: ...

    @abstractmethod
    async def set_dispatch_state(
        self,
        dispatch_id: int,
        expected_state: DispatchState,
        target_state: DispatchState,
        changes: Dict[str, Any],
    ) -> Dispatch: ...

    @abstractmethod
    async def assign_ambulance(
        self,
        dispatch_id: int,
        ambulance_id: int,
        expected_state: DispatchState,
        expected_ambulance_id: Optional[int],
    ) -> Dispatch: ...

    @abstractmethod
    async def get_recent_dispatches(self, hours: int = 24, limit: int = 10) -> List[Dispatch]: ...

    @abstractmethod
    async def record_gps_ping(self, ping: GpsPing) -> GpsPing: ...

    @abstractmethod
    async def list_gps_pings(self, dispatch_id: int) -> List[GpsPing]: ...

    @abstractmethod
    async def record_feedback(self, feedback: Feedback) -> Feedback: ...


class HttpDispatchStore(DispatchStore):
    """Dispatch backend over REST; the backend enforces the optimistic check."""

    def __init__(self, client: ApiClient):
        self.client = client

    @staticmethod
    def _parse_list(data) -> List[Dict[str, Any]]:
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            for key in ("content", "data", "dispatches", "items"):
                if isinstance(data.get(key), list):
                    return data[key]
        raise Unavailable("Dispatch backend returned an unexpected list payload")

    async def fetch_dispatch(self, dispatch_id: int) -> Dispatch:
        try:
            data = await self.client.get(f"/dispatches/{dispatch_id}")
        except NotFound:
            raise NotFound("Dispatch", dispatch_id)
        return Dispatch.from_api(data)

    async def list_dispatches(self, dispatch_filter: DispatchFilter) -> List[Dispatch]:
        data = await self.client.get("/dispatches", dispatch_filter.to_params())
        return [Dispatch.from_api(item) for item in self._parse_list(data)]

    async def create_dispatch(self, fields: Dict[str, Any]) -> Dispatch:
        data = await self.client.post("/dispatches", fields_to_api(fields))
        dispatch = Dispatch.from_api(data)
        logger.success(f"Dispatch {dispatch.id} created")
        return dispatch

    async def set_dispatch_state(self, dispatch_id, expected_state, target_state, changes) -> Dispatch:
        payload = {
            "expectedState": DispatchState(expected_state).value,
            "state": DispatchState(target_state).value,
            "changes": fields_to_api(changes),
        }
        try:
            data = await self.client.patch(f"/dispatches/{dispatch_id}/state", payload)
        except NotFound:
            raise NotFound("Dispatch", dispatch_id)
        except StaleStateConflict as e:
            raise StaleStateConflict(dispatch_id, DispatchState(expected_state).value, e.actual)
        return Dispatch.from_api(data)

    async def assign_ambulance(self, dispatch_id, ambulance_id, expected_state, expected_ambulance_id) -> Dispatch:
        payload = {
            "ambulanceId": ambulance_id,
            "expectedState": DispatchState(expected_state).value,
            "expectedAmbulanceId": expected_ambulance_id,
        }
        try:
            data = await self.client.patch(f"/dispatches/{dispatch_id}/ambulance", payload)
        except NotFound:
            raise NotFound("Dispatch", dispatch_id)
        except StaleStateConflict as e:
            raise StaleStateConflict(
                dispatch_id,
                DispatchState(expected_state).value,
                e.actual,
                expected_ambulance_id=expected_ambulance_id,
                actual_ambulance_id=e.actual_ambulance_id,
            )
        return Dispatch.from_api(data)

    async def get_recent_dispatches(self, hours: int = 24, limit: int = 10) -> List[Dispatch]:
        data = await self.client.get("/dispatches/recent", {"hours": hours, "limit": limit})
        return [Dispatch.from_api(item) for item in self._parse_list(data)]

    async def record_gps_ping(self, ping: GpsPing) -> GpsPing:
        try:
            data = await self.client.post(f"/dispatches/{ping.dispatch_id}/gps", ping.to_api())
        except NotFound:
            raise NotFound("Dispatch", ping.dispatch_id)
        return GpsPing.from_api(data) if isinstance(data, dict) and "lat" in data else ping

    async def list_gps_pings(self, dispatch_id: int) -> List[GpsPing]:
        try:
            data = await self.client.get(f"/dispatches/{dispatch_id}/gps")
        except NotFound:
            raise NotFound("Dispatch", dispatch_id)
        return [GpsPing.from_api(item) for item in self._parse_list(data)]

    async def record_feedback(self, feedback: Feedback) -> Feedback:
        try:
            await self.client.post(f"/dispatches/{feedback.dispatch_id}/feedback", feedback.to_api())
        except NotFound:
            raise NotFound("Dispatch", feedback.dispatch_id)
        return feedback


class InMemoryDispatchStore(DispatchStore):
    """Process-local store. Records are copied in and out so callers never alias stored state."""

    def __init__(self, dispatches: Optional[List[Dispatch]] = None):
        self._dispatches: Dict[int, Dispatch] = {}
        self._pings: Dict[int, List[GpsPing]] = {}
        self._feedback: Dict[int, List[Feedback]] = {}
        self._lock = asyncio.Lock()
        for dispatch in dispatches or []:
            self._dispatches[dispatch.id] = dispatch.copy_with()
        self._ids = itertools.count(max(self._dispatches, default=0) + 1)

    def _get(self, dispatch_id: int) -> Dispatch:
        dispatch = self._dispatches.get(dispatch_id)
        if dispatch is None:
            raise NotFound("Dispatch", dispatch_id)
        return dispatch

    async def fetch_dispatch(self, dispatch_id: int) -> Dispatch:
        return self._get(dispatch_id).copy_with()

    async def list_dispatches(self, dispatch_filter: DispatchFilter) -> List[Dispatch]:
        matching = [d for d in sorted(self._dispatches.values(), key=lambda d: d.id) if dispatch_filter.matches(d)]
        window = matching[dispatch_filter.offset:dispatch_filter.offset + dispatch_filter.limit]
        return [d.copy_with() for d in window]

    async def create_dispatch(self, fields: Dict[str, Any]) -> Dispatch:
        async with self._lock:
            dispatch = Dispatch(id=next(self._ids), state=DispatchState.REQUESTED, **fields)
            self._dispatches[dispatch.id] = dispatch
        logger.success(f"Dispatch {dispatch.id} created")
        return dispatch.copy_with()

    async def set_dispatch_state(self, dispatch_id, expected_state, target_state, changes) -> Dispatch:
        async with self._lock:
            current = self._get(dispatch_id)
            if current.state != DispatchState(expected_state):
                raise StaleStateConflict(dispatch_id, DispatchState(expected_state).value, current.state.value)
            updated = current.copy_with(state=DispatchState(target_state), **changes)
            self._dispatches[dispatch_id] = updated
        return updated.copy_with()

    async def assign_ambulance(self, dispatch_id, ambulance_id, expected_state, expected_ambulance_id) -> Dispatch:
        async with self._lock:
            current = self._get(dispatch_id)
            if current.state != DispatchState(expected_state) or current.ambulance_id != expected_ambulance_id:
                raise StaleStateConflict(
                    dispatch_id,
                    DispatchState(expected_state).value,
                    current.state.value,
                    expected_ambulance_id=expected_ambulance_id,
                    actual_ambulance_id=current.ambulance_id,
                )
            updated = current.copy_with(ambulance_id=ambulance_id)
            self._dispatches[dispatch_id] = updated
        return updated.copy_with()

    async def get_recent_dispatches(self, hours: int = 24, limit: int = 10) -> List[Dispatch]:
        cutoff = utc_now() - timedelta(hours=hours)
        recent = [d for d in self._dispatches.values() if d.requested_at and d.requested_at >= cutoff]
        recent.sort(key=lambda d: d.requested_at, reverse=True)
        return [d.copy_with() for d in recent[:limit]]

    async def record_gps_ping(self, ping: GpsPing) -> GpsPing:
        self._get(ping.dispatch_id)
        self._pings.setdefault(ping.dispatch_id, []).append(ping)
        return ping

    async def list_gps_pings(self, dispatch_id: int) -> List[GpsPing]:
        self._get(dispatch_id)
        return list(self._pings.get(dispatch_id, []))

    async def record_feedback(self, feedback: Feedback) -> Feedback:
        self._get(feedback.dispatch_id)
        self._feedback.setdefault(feedback.dispatch_id, []).append(feedback)
        return feedback

    def feedback_for(self, dispatch_id: int) -> List[Feedback]:
        return list(self._feedback.get(dispatch_id, []))
