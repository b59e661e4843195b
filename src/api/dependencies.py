"""Service wiring and shared helpers for the API routers."""
from dataclasses import dataclass

import requests
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from loguru import logger

from src.configurations.config import Config
from src.models.errors import (
    DispatchError,
    InvalidTransition,
    NotFound,
    StaleStateConflict,
    Unavailable,
    ValidationError,
)
from src.services.api_client import ApiClient
from src.services.auth_service import AuthService
from src.services.dispatch_orchestrator import DispatchOrchestrator
from src.services.dispatch_store import DispatchStore, HttpDispatchStore, InMemoryDispatchStore
from src.services.prediction_gateway import PredictionGateway
from src.services.prediction_service import PredictionService
from src.services.scheduler_service import SchedulerService


@dataclass
class ServiceContainer:
    store: DispatchStore
    gateway: PredictionGateway
    orchestrator: DispatchOrchestrator
    prediction_service: PredictionService
    scheduler_service: SchedulerService
    auth_service: AuthService


def build_services(config=Config) -> ServiceContainer:
    """Build every collaborator once; they are handed down explicitly from here."""
    session = requests.Session()
    auth_service = AuthService(base_url=config.DISPATCH_API_BASE_URL, session=session)

    if config.STORE_BACKEND == "memory":
        store = InMemoryDispatchStore()
        logger.info("Using in-memory dispatch store")
    else:
        dispatch_client = ApiClient(
            config.DISPATCH_API_BASE_URL,
            session=session,
            timeout=config.REQUEST_TIMEOUT_SECONDS,
            token_provider=auth_service.get_valid_token,
            token_refresher=auth_service.refresh_token,
            name="dispatch",
        )
        store = HttpDispatchStore(dispatch_client)

    prediction_client = ApiClient(
        config.PREDICTION_API_BASE_URL,
        session=session,
        timeout=config.REQUEST_TIMEOUT_SECONDS,
        token_provider=auth_service.get_valid_token,
        token_refresher=auth_service.refresh_token,
        name="prediction",
    )
    gateway = PredictionGateway(prediction_client)
    prediction_service = PredictionService(gateway)

    return ServiceContainer(
        store=store,
        gateway=gateway,
        orchestrator=DispatchOrchestrator(store, gateway, config, prediction_service),
        prediction_service=prediction_service,
        scheduler_service=SchedulerService(prediction_service, config.HEALTH_POLL_MINUTES),
        auth_service=auth_service,
    )


# Security scheme
security = HTTPBearer()

def verify_api_key(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """Verify API key from Authorization header."""
    if credentials.credentials != Config.API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return credentials.credentials


def get_services(request: Request) -> ServiceContainer:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services are not initialized")
    return services


def get_orchestrator(services: ServiceContainer = Depends(get_services)) -> DispatchOrchestrator:
    return services.orchestrator


def get_prediction_service(services: ServiceContainer = Depends(get_services)) -> PredictionService:
    return services.prediction_service


def get_scheduler_service(services: ServiceContainer = Depends(get_services)) -> SchedulerService:
    return services.scheduler_service


def get_auth_service(services: ServiceContainer = Depends(get_services)) -> AuthService:
    return services.auth_service


def to_http_exception(error: DispatchError) -> HTTPException:
    """Map the dispatch error taxonomy onto HTTP status codes."""
    if isinstance(error, ValidationError):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, InvalidTransition):
        return HTTPException(
            status_code=409,
            detail={"error": "invalid_transition", "source": error.source, "target": error.target, "message": str(error)},
        )
    if isinstance(error, StaleStateConflict):
        return HTTPException(
            status_code=409,
            detail={
                "error": "stale_state",
                "message": "retry with fresh state",
                "expected": error.expected,
                "actual": error.actual,
                "expectedAmbulanceId": error.expected_ambulance_id,
                "actualAmbulanceId": error.actual_ambulance_id,
            },
        )
    if isinstance(error, NotFound):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, Unavailable):
        return HTTPException(status_code=503, detail=str(error))
    logger.error(f"Unmapped dispatch error: {error}")
    return HTTPException(status_code=500, detail=str(error))
