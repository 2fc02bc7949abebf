import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api.v1.router import api_v1_router
from app.core.config import settings, validate_settings_for_production
from app.core.logging import setup_logging
from app.core.metrics import PrometheusMiddleware, metrics_response
from app.core.middleware import RequestLoggingMiddleware
from app.core.rate_limit import limiter
from app.core.sentry import init_sentry
from app.tutor.preprocessor import configure_tesseract
from app.tutor.registry import ProviderRegistry
from app.tutor.service import TutorService

# Configure logging before anything else
setup_logging()
init_sentry()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    validate_settings_for_production()
    logger.info("Starting Exam Tutor API...")

    configure_tesseract(settings.tesseract_cmd)
    registry = ProviderRegistry.from_settings(settings)
    app.state.provider_registry = registry
    app.state.tutor_service = TutorService.from_settings(settings, registry=registry)

    if registry.ledger is not None and registry.ledger.rotation_enabled:
        stats = registry.ledger.get_stats()
        logger.info("Gemini key rotation enabled: %s", stats["combined_capacity"])

    yield

    # Shutdown
    logger.info("Exam Tutor API shut down")


app = FastAPI(
    title="Exam Tutor",
    description="JEE/NEET tutoring API with multi-provider AI fallback",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.app_debug else None,
    redoc_url="/api/redoc" if settings.app_debug else None,
)


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("Unhandled %s on %s %s:\n%s", type(exc).__name__, request.method, request.url.path, "".join(tb))
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Metrics + request logging
app.add_middleware(PrometheusMiddleware)
app.add_middleware(RequestLoggingMiddleware)

# CORS: parse allowed_origins from settings (comma-separated)
_origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=_origins != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

if not settings.api_token_set:
    logger.info("DEMO MODE enabled: no API_TOKENS configured, auth bypassed")

# API routes
app.include_router(api_v1_router)


@app.get("/api/v1/health")
async def health(request: Request):
    registry: ProviderRegistry = request.app.state.provider_registry
    return {
        "status": "ok",
        "providers": len(registry),
        "fallback_mode": len(registry) == 0,
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_response()
