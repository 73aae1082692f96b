"""FastAPI application factory"""

import asyncio
from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from card_router.api.middleware import RequestIDMiddleware, MetricsMiddleware
from card_router.api.v1 import decisions, instruments, webhook
from card_router.domain.instruments import InstrumentSelector, load_instrument_map
from card_router.infrastructure.observability.logging import setup_logging
from card_router.config import Settings, settings


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    Raises:
        UnconfiguredDefault: if the instrument mapping lacks a default entry
    """
    app_settings = app_settings or settings
    setup_logging(app_settings.log_level, app_settings.service_name)

    app = FastAPI(
        title="Card Router",
        description="Routes virtual card authorizations to real cards by merchant category",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.state.settings = app_settings

    # Validated once at startup, never per request
    app.state.instrument_selector = InstrumentSelector(load_instrument_map(app_settings))
    app.state.authorization_slots = asyncio.Semaphore(app_settings.max_concurrent_authorizations)

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {
            "status": "ok",
            "service": app_settings.service_name,
            "instruments": len(app.state.instrument_selector.snapshot().as_dict()),
        }

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(webhook.router, prefix="/v1", tags=["webhooks"])
    app.include_router(decisions.router, prefix="/v1", tags=["decisions"])
    app.include_router(instruments.router, prefix="/v1", tags=["instruments"])

    return app


app = create_app()
