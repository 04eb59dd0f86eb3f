"""Application factory for the demo FastAPI app.

Centralizes app construction (logging, limiter, middleware, handlers,
routers) so tests can build an app from their own settings.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from starlette.requests import Request

from windowguard.api.routes import health_router, limits_router
from windowguard.core.config import Settings, limiter_options, settings
from windowguard.core.exception_handlers import setup_exception_handlers
from windowguard.core.limiter import RateLimiter
from windowguard.core.logging import configure_logging
from windowguard.core.middleware import RateLimitMiddleware

# Paths served without counting against any client's limit.
UNLIMITED_PATHS = frozenset({"/health"})


def _is_unlimited(request: Request) -> bool:
    return request.url.path in UNLIMITED_PATHS


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings to build from; defaults to the global settings.

    Returns:
        Configured FastAPI app with rate limiting, handlers and routers.
    """
    cfg = app_settings or settings

    # Logging first so the limiter's construction diagnostics are formatted
    configure_logging(cfg.log)

    limiter: RateLimiter | None = None
    if cfg.limiter.enabled:
        limiter = RateLimiter(skip=_is_unlimited, **limiter_options(cfg.limiter))

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        if limiter is not None:
            await limiter.shutdown()

    app = FastAPI(
        title="windowguard",
        description=(
            "Demo service for the windowguard rate limiter: every request is "
            "counted per client and rejected with 429 once the limit for the "
            "current window is exhausted."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.limiter = limiter

    # Middleware
    if limiter is not None:
        app.add_middleware(RateLimitMiddleware, limiter=limiter)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(limits_router, prefix="/v1")
    app.include_router(health_router)

    return app
