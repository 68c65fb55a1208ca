from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from rewardly_api.core.settings import settings
from rewardly_api.db.session import async_session
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .services.loyalty import SellerConfigCache
from .services.notifications import build_push_backend
from .workers import LoyaltyExpiryWorker


APP_VERSION = "0.1.0"
SERVICE_NAME = "rewardly-api"


def _session_factory():
    return async_session()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.seller_config_cache = SellerConfigCache()
    app.state.push_backend = build_push_backend()

    expiry_worker = LoyaltyExpiryWorker(
        session_factory=_session_factory,
        interval_seconds=settings.loyalty_expiry_interval_seconds,
        batch_size=settings.loyalty_expiry_batch_size,
    )
    app.state.loyalty_expiry_worker = expiry_worker

    expiry_enabled = settings.loyalty_expiry_worker_enabled
    if expiry_enabled:
        expiry_worker.start()
        logger.info(
            "Loyalty expiry worker enabled",
            interval_seconds=expiry_worker.interval_seconds,
            batch_size=settings.loyalty_expiry_batch_size,
        )
    else:
        logger.info(
            "Loyalty expiry worker disabled",
            reason="loyalty_expiry_worker_enabled is false",
        )

    try:
        yield
    finally:
        if expiry_enabled and expiry_worker.is_running:
            await expiry_worker.stop()


def create_app() -> FastAPI:
    """Application factory for the Rewardly loyalty service."""
    configure_logging(
        service_name=SERVICE_NAME,
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
    )

    app = FastAPI(
        title="Rewardly API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    if settings.cors_allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allowed_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    configure_tracing(
        app,
        service_name=SERVICE_NAME,
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
