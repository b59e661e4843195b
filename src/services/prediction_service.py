"""Prediction read path: gateway calls followed by enrichment."""
from typing import Optional

from loguru import logger

from ..models.prediction import (
    EnrichedDispatchPrediction,
    EnrichedEta,
    EnrichedSeverity,
    ModelPerformanceReport,
    ModelsHealthReport,
)
from .prediction_enrichment import (
    aggregate_models_health,
    enrich_dispatch_prediction,
    enrich_eta,
    enrich_model_performance,
    enrich_severity,
)
from .prediction_gateway import PredictionGateway


class PredictionService:
    """Unavailable from the gateway propagates: a raw prediction has no safe fallback."""

    def __init__(self, gateway: PredictionGateway):
        self.gateway = gateway

    async def predict_severity(self, description: str, age: Optional[int] = None) -> EnrichedSeverity:
        prediction = await self.gateway.predict_severity(description, age)
        return enrich_severity(prediction)

    async def predict_eta(
        self,
        origin_lat: float,
        origin_lon: float,
        destination_lat: float,
        destination_lon: float,
        traffic_level: Optional[float] = None,
    ) -> EnrichedEta:
        prediction = await self.gateway.predict_eta(
            origin_lat, origin_lon, destination_lat, destination_lon, traffic_level
        )
        return enrich_eta(prediction)

    async def get_dispatch_prediction(
        self,
        patient_lat: float,
        patient_lon: float,
        description: str,
        severity_level: int,
        destination_lat: float,
        destination_lon: float,
    ) -> EnrichedDispatchPrediction:
        prediction = await self.gateway.predict_dispatch(
            patient_lat, patient_lon, description, severity_level, destination_lat, destination_lon
        )
        return enrich_dispatch_prediction(prediction)

    async def get_models_health(self) -> ModelsHealthReport:
        status = await self.gateway.get_models_status()
        report = aggregate_models_health(status)
        if not report.all_healthy:
            unloaded = [m.name for m in report.models if not m.loaded]
            logger.warning(f"Prediction models degraded, not loaded: {', '.join(unloaded)}")
        return report

    async def get_model_performance(self, model_name: str, hours: int = 24) -> ModelPerformanceReport:
        performance = await self.gateway.get_model_performance(model_name, hours)
        return enrich_model_performance(model_name, performance)
