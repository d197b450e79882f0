"""Application factory for the FastAPI app.

Centralizes app construction (middleware, handlers, routers) so tests can
build fresh instances with their own limiter.
"""

from __future__ import annotations

from fastapi import FastAPI

from ratewall.adapters.rate_limit.base import AbstractRateLimiter
from ratewall.api.routes import apis_router, health_router
from ratewall.core.config import settings
from ratewall.core.exception_handlers import setup_exception_handlers
from ratewall.core.logging import configure_logging
from ratewall.core.middleware import request_id_middleware
from ratewall.core.rate_limit import install_rate_limiter


def create_app(limiter: AbstractRateLimiter | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        limiter: Optional limiter overriding the one built from settings.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="ratewall",
        description="Fixed-window request rate limiting backed by a shared Redis counter store.",
        version="0.1.0",
    )

    # Last registered middleware runs first: request id wraps the limiter.
    install_rate_limiter(app, limiter)
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(apis_router, prefix="/v1")
    app.include_router(health_router)

    return app
