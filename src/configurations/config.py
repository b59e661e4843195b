"""Configuration settings for the dispatch lifecycle service."""
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

class Config:
    # Backend API Configuration
    DISPATCH_API_BASE_URL: str = os.getenv("DISPATCH_API_BASE_URL") or ""
    PREDICTION_API_BASE_URL: str = os.getenv("PREDICTION_API_BASE_URL") or ""

    # Operator credentials for the dispatch backend
    DISPATCH_USERNAME: str = os.getenv("DISPATCH_USERNAME") or ""
    DISPATCH_PASSWORD: str = os.getenv("DISPATCH_PASSWORD") or ""
    DISPATCH_TOKEN: str = os.getenv("DISPATCH_TOKEN") or ""

    # API key callers must present to this service
    API_KEY: str = os.getenv("DISPATCH_SERVICE_API_KEY", "dispatch-dev-key")

    # Server Configuration
    PORT: int = int(os.getenv("PORT", "8000"))
    API_HOST: str = os.getenv("API_HOST", "127.0.0.1")

    # "http" talks to the dispatch backend, "memory" keeps records in process
    STORE_BACKEND: str = os.getenv("STORE_BACKEND", "http")

    # Network timeouts
    REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "10"))
    OPTIMIZATION_TIMEOUT_SECONDS: float = float(os.getenv("OPTIMIZATION_TIMEOUT_SECONDS", "8"))

    # Optimization fallback used when the ML service cannot answer
    OPTIMIZATION_FALLBACK_CONFIDENCE: float = float(os.getenv("OPTIMIZATION_FALLBACK_CONFIDENCE", "0.5"))
    OPTIMIZATION_FALLBACK_REASON: str = os.getenv(
        "OPTIMIZATION_FALLBACK_REASON",
        "Servicio ML no disponible, se mantiene la asignación actual",
    )

    # Model health monitor
    HEALTH_POLL_MINUTES: int = int(os.getenv("HEALTH_POLL_MINUTES", "5"))

    # Recent-window defaults
    RECENT_WINDOW_HOURS: int = 24
    OVERVIEW_LIMIT: int = 100

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls):
        required = ["PREDICTION_API_BASE_URL"]
        if cls.STORE_BACKEND == "http":
            required.append("DISPATCH_API_BASE_URL")
        missing = [var for var in required if not getattr(cls, var)]
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")
        if cls.STORE_BACKEND not in ("http", "memory"):
            raise ValueError(f"STORE_BACKEND must be 'http' or 'memory', got {cls.STORE_BACKEND!r}")
        if not 0.0 <= cls.OPTIMIZATION_FALLBACK_CONFIDENCE <= 1.0:
            raise ValueError("OPTIMIZATION_FALLBACK_CONFIDENCE must be between 0 and 1")
