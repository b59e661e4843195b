"""Turns raw model output into operator-facing decisions.

Everything here is a pure function of its inputs. Confidences stay as
0-1 fractions on every enriched record; the rounded percentage is an
extra display field.
"""
from typing import Dict

from ..models.errors import ValidationError
from ..models.prediction import (
    AllModelsStatus,
    DispatchPrediction,
    EnrichedDispatchPrediction,
    EnrichedEta,
    EnrichedSeverity,
    EtaPrediction,
    ModelHealth,
    ModelPerformance,
    ModelPerformanceReport,
    ModelsHealthReport,
    SeverityCategory,
    SeverityPrediction,
    check_confidence,
)

SEVERITY_LEVELS: Dict[int, SeverityCategory] = {
    1: SeverityCategory("Critical", "#dc2626", "Life-threatening emergency"),
    2: SeverityCategory("High", "#f97316", "Urgent medical emergency"),
    3: SeverityCategory("Medium", "#eab308", "Serious medical condition"),
    4: SeverityCategory("Low", "#22c55e", "Non-emergency transport"),
    5: SeverityCategory("Info", "#3b82f6", "Administrative/routine"),
}

SEVERITY_RECOMMENDATIONS: Dict[int, str] = {
    1: "Activate advanced life support. Deploy best available ambulance immediately.",
    2: "Activate emergency protocols. Dispatch nearest ambulance with advanced equipment.",
    3: "Standard response. Dispatch available ambulance with medical equipment.",
    4: "Non-emergency transport. Standard ambulance sufficient.",
    5: "Administrative transport. Any available ambulance.",
}

AMBULANCE_TYPES = ("advanced", "standard", "basic")

# Display names for the four models behind the prediction service
MODEL_NAMES = {
    "eta": "ETA Model",
    "severity": "Severity Model",
    "ambulance": "Ambulance Selector",
    "route": "Route Optimizer",
}


def _known_level(level) -> int:
    if isinstance(level, bool) or not isinstance(level, int) or level not in SEVERITY_LEVELS:
        raise ValidationError(f"Unknown severity level: {level!r}")
    return level


def categorize_severity(level: int) -> SeverityCategory:
    return SEVERITY_LEVELS[_known_level(level)]


def get_severity_recommendation(level: int) -> str:
    return SEVERITY_RECOMMENDATIONS[_known_level(level)]


def get_required_ambulance_type(level: int) -> str:
    """Critical and high need advanced equipment, medium a standard unit, the rest basic."""
    level = _known_level(level)
    if level <= 2:
        return "advanced"
    if level == 3:
        return "standard"
    return "basic"


def confidence_percent(confidence: float) -> int:
    return int(round(check_confidence(confidence) * 100))


def format_eta_range(lower_bound: float, upper_bound: float) -> str:
    if lower_bound > upper_bound:
        raise ValidationError(f"ETA lower bound {lower_bound} exceeds upper bound {upper_bound}")
    return f"{round(lower_bound)} - {round(upper_bound)} minutes"


def enrich_severity(prediction: SeverityPrediction) -> EnrichedSeverity:
    category = categorize_severity(prediction.level)
    return EnrichedSeverity(
        level=prediction.level,
        confidence=prediction.confidence,
        confidence_percent=confidence_percent(prediction.confidence),
        label=category.label,
        color=category.color,
        description=category.description,
        recommendation=prediction.recommendation or get_severity_recommendation(prediction.level),
        required_ambulance_type=get_required_ambulance_type(prediction.level),
    )


def enrich_eta(prediction: EtaPrediction) -> EnrichedEta:
    return EnrichedEta(
        estimated_minutes=prediction.estimated_minutes,
        lower_bound=prediction.lower_bound,
        upper_bound=prediction.upper_bound,
        confidence=prediction.confidence,
        confidence_percent=confidence_percent(prediction.confidence),
        time_range=format_eta_range(prediction.lower_bound, prediction.upper_bound),
    )


def enrich_dispatch_prediction(prediction: DispatchPrediction) -> EnrichedDispatchPrediction:
    return EnrichedDispatchPrediction(
        severity=enrich_severity(prediction.severity),
        eta=enrich_eta(prediction.eta),
        ambulance_selection=prediction.ambulance_selection,
        ambulance_confidence_percent=confidence_percent(prediction.ambulance_selection.confidence),
        route=prediction.route,
        performance_ms=prediction.pipeline_time_ms,
    )


def aggregate_models_health(status: AllModelsStatus) -> ModelsHealthReport:
    """'healthy' only when all four models report loaded, otherwise 'degraded'."""
    models = [
        ModelHealth(
            key=key,
            name=name,
            loaded=getattr(status, key).loaded,
            version=getattr(status, key).version,
            prediction_count=getattr(status, key).prediction_count,
        )
        for key, name in MODEL_NAMES.items()
    ]
    all_loaded = all(m.loaded for m in models)
    return ModelsHealthReport(models=models, status="healthy" if all_loaded else "degraded")


def enrich_model_performance(model_name: str, performance: ModelPerformance) -> ModelPerformanceReport:
    return ModelPerformanceReport(
        model=model_name,
        total_predictions=performance.total_predictions,
        prediction_time_ms=int(round(performance.avg_prediction_time * 1000)),
        confidence_percent=confidence_percent(performance.avg_confidence),
        accuracy_percent=confidence_percent(performance.accuracy),
        mae=performance.mae,
    )
