"""API endpoints for enriched ML predictions and model health."""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from src.api.dependencies import (
    get_prediction_service,
    get_scheduler_service,
    to_http_exception,
    verify_api_key,
)
from src.models.errors import DispatchError
from src.services.prediction_service import PredictionService
from src.services.scheduler_service import SchedulerService

router = APIRouter(prefix="/api/predictions", tags=["predictions"], dependencies=[Depends(verify_api_key)])


class SeverityRequest(BaseModel):
    description: str
    age: Optional[int] = None


class EtaRequest(BaseModel):
    origin_lat: float
    origin_lon: float
    destination_lat: float
    destination_lon: float
    traffic_level: Optional[float] = None


class DispatchPredictionRequest(BaseModel):
    patient_lat: float
    patient_lon: float
    description: str
    severity_level: int
    destination_lat: float
    destination_lon: float


@router.post("/severity")
async def predict_severity(body: SeverityRequest, service: PredictionService = Depends(get_prediction_service)):
    try:
        severity = await service.predict_severity(body.description, body.age)
        return severity.to_dict()
    except DispatchError as e:
        raise to_http_exception(e)


@router.post("/eta")
async def predict_eta(body: EtaRequest, service: PredictionService = Depends(get_prediction_service)):
    try:
        eta = await service.predict_eta(
            body.origin_lat, body.origin_lon, body.destination_lat, body.destination_lon, body.traffic_level
        )
        return eta.to_dict()
    except DispatchError as e:
        raise to_http_exception(e)


@router.post("/dispatch")
async def predict_dispatch(
    body: DispatchPredictionRequest, service: PredictionService = Depends(get_prediction_service)
):
    """Full pipeline prediction: severity, ambulance, route and ETA."""
    try:
        prediction = await service.get_dispatch_prediction(
            body.patient_lat,
            body.patient_lon,
            body.description,
            body.severity_level,
            body.destination_lat,
            body.destination_lon,
        )
        return prediction.to_dict()
    except DispatchError as e:
        raise to_http_exception(e)


@router.get("/models/health")
async def models_health(service: PredictionService = Depends(get_prediction_service)):
    try:
        report = await service.get_models_health()
        return report.to_dict()
    except DispatchError as e:
        raise to_http_exception(e)


@router.get("/models/{model_name}/performance")
async def model_performance(
    model_name: str,
    hours: int = Query(24, gt=0),
    service: PredictionService = Depends(get_prediction_service),
):
    try:
        report = await service.get_model_performance(model_name, hours)
        return report.to_dict()
    except DispatchError as e:
        raise to_http_exception(e)


@router.get("/monitor/status")
async def monitor_status(scheduler: SchedulerService = Depends(get_scheduler_service)):
    """Latest result of the periodic model health check."""
    return scheduler.get_scheduler_status()


@router.post("/monitor/trigger")
async def monitor_trigger(scheduler: SchedulerService = Depends(get_scheduler_service)):
    return await scheduler.trigger_manual_check()
