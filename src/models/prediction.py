"""Data models for ML prediction results and their enriched read model."""
from dataclasses import dataclass
from typing import Dict, List, Optional, Any

from .errors import ValidationError


def check_confidence(value: float, name: str = "confidence") -> float:
    """Confidences travel as a 0-1 fraction; anything else is malformed."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be numeric, got {value!r}")
    if not 0.0 <= value <= 1.0:
        raise ValidationError(f"{name} must be between 0 and 1, got {value}")
    return value


def check_severity_level(level) -> int:
    if isinstance(level, bool) or not isinstance(level, int) or not 1 <= level <= 5:
        raise ValidationError(f"Severity level must be an integer between 1 and 5, got {level!r}")
    return level


# ---------------------------------------------------------------------------
# Raw gateway results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SeverityPrediction:
    level: int
    confidence: float
    category: Optional[str] = None
    recommendation: Optional[str] = None

    def __post_init__(self):
        check_severity_level(self.level)
        object.__setattr__(self, "confidence", check_confidence(self.confidence))

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "SeverityPrediction":
        return cls(
            level=int(data["level"]),
            confidence=data["confidence"],
            category=data.get("category"),
            recommendation=data.get("recommendation"),
        )


@dataclass(frozen=True)
class EtaPrediction:
    estimated_minutes: float
    lower_bound: float
    upper_bound: float
    confidence: float

    def __post_init__(self):
        object.__setattr__(self, "confidence", check_confidence(self.confidence))
        if self.lower_bound > self.upper_bound:
            raise ValidationError(
                f"ETA lower bound {self.lower_bound} exceeds upper bound {self.upper_bound}"
            )

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "EtaPrediction":
        return cls(
            estimated_minutes=float(data["estimatedMinutes"]),
            lower_bound=float(data["lowerBound"]),
            upper_bound=float(data["upperBound"]),
            confidence=data["confidence"],
        )


@dataclass(frozen=True)
class AmbulanceSelection:
    ambulance_id: Optional[int]
    confidence: float
    distance_km: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "confidence", check_confidence(self.confidence))

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "AmbulanceSelection":
        ambulance_id = data.get("ambulanceId")
        distance = data.get("distance", data.get("distanceKm"))
        return cls(
            ambulance_id=int(ambulance_id) if ambulance_id is not None else None,
            confidence=data.get("confidence", 0.0),
            distance_km=float(distance) if distance is not None else None,
        )


@dataclass(frozen=True)
class RouteSummary:
    distance_km: float
    eta_minutes: float

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RouteSummary":
        primary = data.get("primaryRoute", data)
        return cls(distance_km=float(primary["distanceKm"]), eta_minutes=float(primary["etaMinutes"]))


@dataclass(frozen=True)
class DispatchPrediction:
    severity: SeverityPrediction
    ambulance_selection: AmbulanceSelection
    route: RouteSummary
    eta: EtaPrediction
    pipeline_time_ms: Optional[float] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "DispatchPrediction":
        return cls(
            severity=SeverityPrediction.from_api(data["severity"]),
            ambulance_selection=AmbulanceSelection.from_api(data["ambulanceSelection"]),
            route=RouteSummary.from_api(data["route"]),
            eta=EtaPrediction.from_api(data["eta"]),
            pipeline_time_ms=data.get("pipelineTimeMs"),
        )


@dataclass(frozen=True)
class ModelStatus:
    loaded: bool
    version: Optional[str] = None
    prediction_count: Optional[int] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ModelStatus":
        return cls(
            loaded=bool(data.get("isLoaded", data.get("loaded", False))),
            version=data.get("version"),
            prediction_count=data.get("predictionCount"),
        )


@dataclass(frozen=True)
class AllModelsStatus:
    eta: ModelStatus
    severity: ModelStatus
    ambulance: ModelStatus
    route: ModelStatus

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "AllModelsStatus":
        return cls(
            eta=ModelStatus.from_api(data["eta"]),
            severity=ModelStatus.from_api(data["severity"]),
            ambulance=ModelStatus.from_api(data["ambulance"]),
            route=ModelStatus.from_api(data["route"]),
        )


@dataclass(frozen=True)
class ModelPerformance:
    total_predictions: int
    avg_prediction_time: float
    avg_confidence: float
    accuracy: float
    mae: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "avg_confidence", check_confidence(self.avg_confidence, "avg_confidence"))
        object.__setattr__(self, "accuracy", check_confidence(self.accuracy, "accuracy"))

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ModelPerformance":
        return cls(
            total_predictions=int(data["totalPredictions"]),
            avg_prediction_time=float(data["avgPredictionTime"]),
            avg_confidence=data["avgConfidence"],
            accuracy=data["accuracy"],
            mae=data.get("mae"),
        )


@dataclass(frozen=True)
class OptimizationResult:
    ambulance_id: Optional[int]
    confidence: float
    reason: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "confidence", check_confidence(self.confidence))

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "OptimizationResult":
        ambulance_id = data.get("ambulanceId")
        return cls(
            ambulance_id=int(ambulance_id) if ambulance_id is not None else None,
            confidence=data["confidence"],
            reason=data.get("reason"),
        )


# ---------------------------------------------------------------------------
# Enriched read model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SeverityCategory:
    label: str
    color: str
    description: str


@dataclass(frozen=True)
class EnrichedSeverity:
    level: int
    confidence: float
    confidence_percent: int
    label: str
    color: str
    description: str
    recommendation: str
    required_ambulance_type: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "confidence": self.confidence,
            "confidencePercent": self.confidence_percent,
            "label": self.label,
            "color": self.color,
            "description": self.description,
            "recommendation": self.recommendation,
            "requiredAmbulanceType": self.required_ambulance_type,
        }


@dataclass(frozen=True)
class EnrichedEta:
    estimated_minutes: float
    lower_bound: float
    upper_bound: float
    confidence: float
    confidence_percent: int
    time_range: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "estimatedMinutes": self.estimated_minutes,
            "lowerBound": self.lower_bound,
            "upperBound": self.upper_bound,
            "confidence": self.confidence,
            "confidencePercent": self.confidence_percent,
            "timeRange": self.time_range,
        }


@dataclass(frozen=True)
class EnrichedDispatchPrediction:
    severity: EnrichedSeverity
    eta: EnrichedEta
    ambulance_selection: AmbulanceSelection
    ambulance_confidence_percent: int
    route: RouteSummary
    performance_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.to_dict(),
            "eta": self.eta.to_dict(),
            "ambulanceSelection": {
                "ambulanceId": self.ambulance_selection.ambulance_id,
                "confidence": self.ambulance_selection.confidence,
                "confidencePercent": self.ambulance_confidence_percent,
                "distanceKm": self.ambulance_selection.distance_km,
            },
            "route": {"distanceKm": self.route.distance_km, "etaMinutes": self.route.eta_minutes},
            "performanceMs": self.performance_ms,
        }


@dataclass(frozen=True)
class ModelHealth:
    key: str
    name: str
    loaded: bool
    version: Optional[str] = None
    prediction_count: Optional[int] = None

    @property
    def healthy(self) -> bool:
        return self.loaded


@dataclass(frozen=True)
class ModelsHealthReport:
    models: List[ModelHealth]
    status: str

    @property
    def all_healthy(self) -> bool:
        return self.status == "healthy"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "allHealthy": self.all_healthy,
            "models": {
                m.key: {
                    "name": m.name,
                    "loaded": m.loaded,
                    "healthy": m.healthy,
                    "version": m.version,
                    "predictionCount": m.prediction_count,
                }
                for m in self.models
            },
        }


@dataclass(frozen=True)
class ModelPerformanceReport:
    model: str
    total_predictions: int
    prediction_time_ms: int
    confidence_percent: int
    accuracy_percent: int
    mae: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "totalPredictions": self.total_predictions,
            "predictionTimeMs": self.prediction_time_ms,
            "confidencePercent": self.confidence_percent,
            "accuracyPercent": self.accuracy_percent,
            "mae": self.mae,
        }


@dataclass(frozen=True)
class OptimizationSuggestion:
    """Advisory ambulance recommendation overlaid on a dispatch."""
    dispatch_id: int
    ambulance_id: Optional[int]
    confidence: float
    current_ambulance_id: Optional[int]
    reason: Optional[str] = None
    degraded: bool = False

    def __post_init__(self):
        object.__setattr__(self, "confidence", check_confidence(self.confidence))

    @property
    def changes_assignment(self) -> bool:
        return self.ambulance_id != self.current_ambulance_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dispatchId": self.dispatch_id,
            "ambulanceId": self.ambulance_id,
            "currentAmbulanceId": self.current_ambulance_id,
            "confidence": self.confidence,
            "reason": self.reason,
            "changesAssignment": self.changes_assignment,
            "degraded": self.degraded,
        }
