"""Data models for dispatch records, GPS pings and feedback."""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Any

from .errors import ValidationError
from .prediction import EnrichedDispatchPrediction


class DispatchState(str, Enum):
    REQUESTED = "requested"
    ASSIGNED = "assigned"
    EN_ROUTE = "en_route"
    ON_SCENE = "on_scene"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (DispatchState.COMPLETED, DispatchState.CANCELLED)


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Lifecycle timestamps in the order they must occur
TIMESTAMP_FIELDS = ["requested_at", "assigned_at", "en_route_at", "arrived_at", "completed_at"]

# Index into TIMESTAMP_FIELDS of the last timestamp a state may carry
STATE_TIMESTAMP_INDEX = {
    DispatchState.REQUESTED: 0,
    DispatchState.ASSIGNED: 1,
    DispatchState.EN_ROUTE: 2,
    DispatchState.ON_SCENE: 3,
    DispatchState.COMPLETED: 4,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC so lifecycle timestamps stay comparable."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_timestamp(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        return ensure_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        raise ValidationError(f"Invalid timestamp: {value!r}")


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _optional_float(value) -> Optional[float]:
    return None if value is None else float(value)


def _optional_int(value) -> Optional[int]:
    return None if value is None or value == "" else int(value)


def validate_coordinates(lat, lng) -> None:
    if lat is None or lng is None:
        raise ValidationError("Latitude and longitude are required")
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        raise ValidationError(f"Coordinates must be numeric, got ({lat!r}, {lng!r})")
    if not -90.0 <= lat <= 90.0:
        raise ValidationError(f"Latitude out of range: {lat}")
    if not -180.0 <= lng <= 180.0:
        raise ValidationError(f"Longitude out of range: {lng}")


@dataclass(frozen=True)
class Location:
    lat: float
    lng: float
    address: Optional[str] = None

    def __post_init__(self):
        validate_coordinates(self.lat, self.lng)

    @classmethod
    def from_api(cls, data: Optional[Dict[str, Any]]) -> Optional["Location"]:
        if not data:
            return None
        lat = data.get("lat", data.get("latitude"))
        lng = data.get("lng", data.get("longitude"))
        if lat is None or lng is None:
            return None
        return cls(lat=float(lat), lng=float(lng), address=data.get("address"))

    def to_api(self) -> Dict[str, Any]:
        return {"lat": self.lat, "lng": self.lng, "address": self.address}


@dataclass
class Dispatch:
    id: int
    state: DispatchState
    origin: Location
    request_id: Optional[int] = None
    ambulance_id: Optional[int] = None
    destination: Optional[Location] = None
    requested_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    en_route_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    distance_km: Optional[float] = None
    estimated_duration_min: Optional[float] = None
    actual_duration_min: Optional[int] = None
    incident_type: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    notes: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.id, int) or isinstance(self.id, bool):
            raise ValidationError("id must be an integer")
        self.state = DispatchState(self.state)
        self.priority = Priority(self.priority)
        for name in TIMESTAMP_FIELDS:
            setattr(self, name, ensure_utc(getattr(self, name)))
        self._check_timestamp_order()
        self._check_state_timestamps()

    def _check_timestamp_order(self):
        present = [(name, getattr(self, name)) for name in TIMESTAMP_FIELDS if getattr(self, name)]
        for (prev_name, prev), (name, current) in zip(present, present[1:]):
            if current < prev:
                raise ValidationError(f"{name} ({current.isoformat()}) precedes {prev_name} ({prev.isoformat()})")

    def _check_state_timestamps(self):
        if self.state == DispatchState.CANCELLED:
            if self.completed_at is not None:
                raise ValidationError("A cancelled dispatch cannot carry a completion timestamp")
            return

        last = STATE_TIMESTAMP_INDEX[self.state]
        for index, name in enumerate(TIMESTAMP_FIELDS):
            value = getattr(self, name)
            if index > last and value is not None:
                raise ValidationError(f"State '{self.state.value}' does not allow {name}")
            if 0 < index <= last and value is None:
                raise ValidationError(f"State '{self.state.value}' requires {name}")

        if last >= 1 and self.ambulance_id is None:
            raise ValidationError(f"State '{self.state.value}' requires an assigned ambulance")

    @property
    def is_active(self) -> bool:
        return not self.state.is_terminal

    def copy_with(self, **changes) -> "Dispatch":
        """Return a validated copy with the given fields replaced."""
        changes.setdefault("extra", dict(self.extra))
        return replace(self, **changes)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Dispatch":
        try:
            origin = Location.from_api(data.get("origin"))
            if origin is None:
                raise ValidationError("Dispatch payload is missing its origin")
            return cls(
                id=int(data["id"]),
                state=data.get("state", DispatchState.REQUESTED),
                origin=origin,
                destination=Location.from_api(data.get("destination")),
                request_id=_optional_int(data.get("requestId")),
                ambulance_id=_optional_int(data.get("ambulanceId")),
                requested_at=parse_timestamp(data.get("requestedAt")),
                assigned_at=parse_timestamp(data.get("assignedAt")),
                en_route_at=parse_timestamp(data.get("enRouteAt")),
                arrived_at=parse_timestamp(data.get("arrivedAt")),
                completed_at=parse_timestamp(data.get("completedAt")),
                distance_km=_optional_float(data.get("distanceKm")),
                estimated_duration_min=_optional_float(data.get("estimatedDurationMin")),
                actual_duration_min=_optional_int(data.get("actualDurationMin")),
                incident_type=data.get("incidentType"),
                priority=data.get("priority") or Priority.MEDIUM,
                notes=data.get("notes"),
                extra=dict(data.get("extra") or {}),
            )
        except ValidationError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed dispatch payload: {e}")

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state.value,
            "requestId": self.request_id,
            "ambulanceId": self.ambulance_id,
            "origin": self.origin.to_api(),
            "destination": self.destination.to_api() if self.destination else None,
            "requestedAt": format_timestamp(self.requested_at),
            "assignedAt": format_timestamp(self.assigned_at),
            "enRouteAt": format_timestamp(self.en_route_at),
            "arrivedAt": format_timestamp(self.arrived_at),
            "completedAt": format_timestamp(self.completed_at),
            "distanceKm": self.distance_km,
            "estimatedDurationMin": self.estimated_duration_min,
            "actualDurationMin": self.actual_duration_min,
            "incidentType": self.incident_type,
            "priority": self.priority.value,
            "notes": self.notes,
            "extra": dict(self.extra),
        }


@dataclass(frozen=True)
class GpsPing:
    dispatch_id: int
    lat: float
    lng: float
    speed: Optional[float] = None
    altitude: Optional[float] = None
    accuracy: Optional[float] = None
    recorded_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        validate_coordinates(self.lat, self.lng)
        if self.speed is not None and self.speed < 0:
            raise ValidationError("speed cannot be negative")
        if self.accuracy is not None and self.accuracy < 0:
            raise ValidationError("accuracy cannot be negative")

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "GpsPing":
        return cls(
            dispatch_id=int(data["dispatchId"]),
            lat=float(data["lat"]),
            lng=float(data["lng"]),
            speed=_optional_float(data.get("speed")),
            altitude=_optional_float(data.get("altitude")),
            accuracy=_optional_float(data.get("accuracy")),
            recorded_at=parse_timestamp(data.get("recordedAt")) or utc_now(),
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "dispatchId": self.dispatch_id,
            "lat": self.lat,
            "lng": self.lng,
            "speed": self.speed,
            "altitude": self.altitude,
            "accuracy": self.accuracy,
            "recordedAt": format_timestamp(self.recorded_at),
        }


@dataclass(frozen=True)
class Feedback:
    dispatch_id: int
    rating: int
    comment: Optional[str] = None
    condition_tag: Optional[str] = None
    response_time_min: Optional[int] = None

    def __post_init__(self):
        validate_rating(self.rating)

    def to_api(self) -> Dict[str, Any]:
        return {
            "dispatchId": self.dispatch_id,
            "rating": self.rating,
            "comment": self.comment,
            "conditionTag": self.condition_tag,
            "responseTimeMinutes": self.response_time_min,
        }


def validate_rating(rating) -> None:
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValidationError(f"Rating must be an integer, got {rating!r}")
    if not 1 <= rating <= 5:
        raise ValidationError(f"Rating must be between 1 and 5, got {rating}")


@dataclass
class DispatchFilter:
    state: Optional[DispatchState] = None
    priority: Optional[Priority] = None
    active_only: bool = False
    limit: int = 20
    offset: int = 0

    def __post_init__(self):
        if self.state is not None:
            self.state = DispatchState(self.state)
        if self.priority is not None:
            self.priority = Priority(self.priority)
        if self.limit <= 0:
            raise ValidationError("limit must be positive")
        if self.offset < 0:
            raise ValidationError("offset cannot be negative")

    def matches(self, dispatch: Dispatch) -> bool:
        if self.state is not None and dispatch.state != self.state:
            return False
        if self.priority is not None and dispatch.priority != self.priority:
            return False
        if self.active_only and not dispatch.is_active:
            return False
        return True

    def to_params(self) -> Dict[str, Any]:
        params = {"limit": self.limit, "offset": self.offset}
        if self.state is not None:
            params["state"] = self.state.value
        if self.priority is not None:
            params["priority"] = self.priority.value
        if self.active_only:
            params["activeOnly"] = "true"
        return params


@dataclass
class DispatchStatistics:
    total: int
    by_state: Dict[str, int]
    by_priority: Dict[str, int]
    completion_rate: float
    average_actual_duration_min: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "byState": dict(self.by_state),
            "byPriority": dict(self.by_priority),
            "completionRate": self.completion_rate,
            "averageActualDurationMin": self.average_actual_duration_min,
        }


@dataclass
class ReassignmentResult:
    dispatch: Dispatch
    previous_ambulance_id: Optional[int]
    warnings: List[str] = field(default_factory=list)


@dataclass
class DispatchCreation:
    """A new dispatch with the pipeline prediction made for it.

    The prediction is a recommendation only; the dispatch stays requested.
    `prediction` is None when the prediction service could not answer.
    """
    dispatch: Dispatch
    prediction: Optional[EnrichedDispatchPrediction] = None
    prediction_error: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.prediction is None
