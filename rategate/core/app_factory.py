"""Application factory for the FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers and the
admission service) to keep wiring out of the route modules.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from rategate.adapters.rate_limit.factory import build_group_registry, create_rate_limit_backend
from rategate.api.routes import admission_router, health_router
from rategate.core.config import settings
from rategate.core.exception_handlers import setup_exception_handlers
from rategate.core.logging import configure_logging
from rategate.core.middleware import request_id_middleware
from rategate.core.openapi import apply_openapi_customizations
from rategate.services.admission_service import AdmissionService


def build_admission_service() -> AdmissionService:
    """Build the admission service from settings.

    Raises:
        ConfigurationAppError: If the backend is unknown or Redis is unreachable.
    """
    registry = build_group_registry()
    limiter, blocker, client = create_rate_limit_backend(registry)
    return AdmissionService(registry=registry, limiter=limiter, blocker=blocker, redis_client=client)


def create_app(admission: AdmissionService | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        admission: Pre-built admission service (tests inject in-memory
            backends here). When omitted, one is built from settings at
            startup and closed on shutdown.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = getattr(app.state, "admission", None) is None
        if owned:
            app.state.admission = build_admission_service()
        try:
            yield
        finally:
            if owned:
                app.state.admission.close()
                app.state.admission = None

    app = FastAPI(
        title="rategate",
        description=(
            "Distributed rate limiting and cooldown blocking over a shared Redis "
            "store. Exposes admission dependencies for routes and an admin API "
            "for group policies, counters and blocks."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.admission = admission

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(admission_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
