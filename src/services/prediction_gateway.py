"""Typed boundary over the ML prediction service."""
from typing import Any, Callable, Dict, Optional

from loguru import logger

from ..models.errors import NotFound, Unavailable, ValidationError
from ..models.prediction import (
    AllModelsStatus,
    DispatchPrediction,
    EtaPrediction,
    ModelPerformance,
    OptimizationResult,
    SeverityPrediction,
)
from .api_client import ApiClient


class PredictionGateway:
    def __init__(self, client: ApiClient):
        self.client = client

    async def _call(self, method: str, path: str, payload: Optional[Dict[str, Any]], parse: Callable):
        if method == "GET":
            data = await self.client.get(path, payload)
        else:
            data = await self.client.post(path, payload)
        if not isinstance(data, dict):
            raise Unavailable(f"Prediction service returned an unexpected payload for {path}")
        try:
            return parse(data)
        except (KeyError, TypeError, ValueError) as e:
            # Missing keys and out-of-range confidences land here
            logger.error(f"Malformed prediction payload from {path}: {e}")
            raise Unavailable(f"Malformed prediction payload from {path}: {e}")

    async def predict_severity(self, description: str, age: Optional[int] = None) -> SeverityPrediction:
        if not description or not description.strip():
            raise ValidationError("A description is required to predict severity")
        payload = {"description": description, "age": age}
        return await self._call("POST", "/predict/severity", payload, SeverityPrediction.from_api)

    async def predict_eta(
        self,
        origin_lat: float,
        origin_lon: float,
        destination_lat: float,
        destination_lon: float,
        traffic_level: Optional[float] = None,
    ) -> EtaPrediction:
        payload = {
            "originLat": origin_lat,
            "originLon": origin_lon,
            "destinationLat": destination_lat,
            "destinationLon": destination_lon,
            "trafficLevel": traffic_level,
        }
        return await self._call("POST", "/predict/eta", payload, EtaPrediction.from_api)

    async def predict_dispatch(
        self,
        patient_lat: float,
        patient_lon: float,
        description: str,
        severity_level: int,
        destination_lat: float,
        destination_lon: float,
    ) -> DispatchPrediction:
        payload = {
            "patientLat": patient_lat,
            "patientLon": patient_lon,
            "description": description,
            "severityLevel": severity_level,
            "destinationLat": destination_lat,
            "destinationLon": destination_lon,
        }
        return await self._call("POST", "/predict/dispatch", payload, DispatchPrediction.from_api)

    async def request_optimization(self, dispatch_id: int) -> OptimizationResult:
        try:
            result = await self._call(
                "POST", f"/optimize/dispatch/{dispatch_id}", None, OptimizationResult.from_api
            )
        except (NotFound, ValidationError) as e:
            # Optimizer-side rejections count as an unavailable suggestion
            raise Unavailable(f"Optimizer could not handle dispatch {dispatch_id}: {e}")
        if result.ambulance_id is None:
            raise Unavailable(f"Optimizer returned no ambulance for dispatch {dispatch_id}")
        return result

    async def get_models_status(self) -> AllModelsStatus:
        return await self._call("GET", "/models/status", None, AllModelsStatus.from_api)

    async def get_model_performance(self, model_name: str, hours: int = 24) -> ModelPerformance:
        return await self._call(
            "GET", f"/models/{model_name}/performance", {"hours": hours}, ModelPerformance.from_api
        )
