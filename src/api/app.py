"""FastAPI application for the ambulance dispatch lifecycle service."""
import os
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from loguru import logger

from src.api.auth_endpoints import router as auth_router
from src.api.dependencies import ServiceContainer, build_services
from src.api.dispatch_endpoints import router as dispatch_router
from src.api.prediction_endpoints import router as prediction_router
from src.configurations.config import Config
from src.configurations.logging_config import configure_logging


def create_app(services: Optional[ServiceContainer] = None, start_scheduler: bool = True) -> FastAPI:
    app = FastAPI(
        title="Ambulance Dispatch Lifecycle Service",
        description="Dispatch state tracking with ML-assisted ambulance assignment",
        version="1.0.0",
        openapi_tags=[
            {"name": "dispatches", "description": "Dispatch lifecycle, GPS tracking and feedback"},
            {"name": "predictions", "description": "Enriched ML predictions and model health"},
            {"name": "authentication", "description": "Dispatch backend token management"},
        ],
    )
    app.state.services = services

    app.include_router(dispatch_router)
    app.include_router(prediction_router)
    app.include_router(auth_router)

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def startup_event():
        logger.info("Starting dispatch lifecycle service...")
        if app.state.services is None:
            Config.validate()
            app.state.services = build_services(Config)
        if start_scheduler:
            app.state.services.scheduler_service.start_scheduler()
        logger.success("Dispatch lifecycle service startup complete")

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Shutting down dispatch lifecycle service...")
        services = app.state.services
        if services is not None and services.scheduler_service.is_running:
            services.scheduler_service.stop_scheduler()
        logger.info("Dispatch lifecycle service shutdown complete")

    @app.get("/")
    async def root():
        return HTMLResponse(content="""
        <html>
            <body>
                <h2>Ambulance Dispatch Lifecycle Service</h2>
                <p>Add to Authorization header: <code>Bearer &lt;API key&gt;</code></p>
                <h3>Available Endpoints:</h3>
                <ul>
                    <li><strong>GET /api/dispatches</strong> - List dispatches (state, priority, active_only)</li>
                    <li><strong>POST /api/dispatches</strong> - Create a dispatch</li>
                    <li><strong>POST /api/dispatches/with-prediction</strong> - Create a dispatch with a pipeline recommendation</li>
                    <li><strong>POST /api/dispatches/{id}/transition</strong> - Assign, depart, arrive, complete or cancel</li>
                    <li><strong>POST /api/dispatches/{id}/optimize</strong> - ML ambulance recommendation</li>
                    <li><strong>POST /api/dispatches/{id}/reassign</strong> - Explicit ambulance reassignment</li>
                    <li><strong>POST /api/dispatches/{id}/gps</strong> - Record a GPS ping</li>
                    <li><strong>POST /api/dispatches/{id}/feedback</strong> - Record feedback</li>
                    <li><strong>GET /api/predictions/models/health</strong> - Model health</li>
                </ul>
                <p><a href="/docs">API Documentation</a></p>
            </body>
        </html>
        """)

    return app


configure_logging()
app = create_app()

if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv('PORT', Config.PORT))
    uvicorn.run(app, host=Config.API_HOST, port=port)
