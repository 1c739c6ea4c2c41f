"""
Feature management service entry point.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
import uvicorn

from flagservice.api import api_router
from flagservice.core.config import get_settings
from flagservice.core.errors import FlagConfigurationError, FlagStoreError
from flagservice.core.feature_management import (
    get_features_repository,
    get_opt_in_allowlist,
    seed_features,
)
from flagservice.utils.logging import setup_logging
from flagservice.utils.metrics import feature_management_requests_total

settings = get_settings()

setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting feature management service...")

    # Build the allowlist up front so a malformed file fails startup
    allowlist = get_opt_in_allowlist()
    logger.info(f"Opt-in allowlist ready ({len(allowlist)} features)")

    repository = get_features_repository()
    if settings.FEATURE_SEED_PATH:
        await seed_features(repository, settings.FEATURE_SEED_PATH)

    yield

    logger.info("Shutting down feature management service...")


app = FastAPI(
    title="Feature Management Service",
    description="Per-subject feature flags and opt-in rollout",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api")

if settings.METRICS_ENABLED:
    app.mount("/metrics", make_asgi_app())


@app.exception_handler(FlagStoreError)
async def flag_store_error_handler(request: Request, exc: FlagStoreError) -> JSONResponse:
    """Store failures surface as a single 503; nothing is retried or defaulted."""
    route = request.scope.get("route")
    feature_management_requests_total.labels(
        operation=getattr(route, "name", "unknown"), status="error"
    ).inc()
    return JSONResponse(status_code=503, content={"detail": exc.to_dict()})


@app.exception_handler(FlagConfigurationError)
async def flag_configuration_error_handler(
    request: Request, exc: FlagConfigurationError
) -> JSONResponse:
    return JSONResponse(status_code=500, content={"detail": exc.to_dict()})


@app.get("/")
async def root():
    return {
        "name": "Feature Management Service",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
        "health": "/api/v1/health",
    }


if __name__ == "__main__":
    uvicorn.run(
        "flagservice.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
