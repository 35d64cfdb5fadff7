"""FastAPI application factory with lifespan, CORS, and routers."""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from stockanalyzer import __version__
from stockanalyzer.config import Settings, get_settings
from stockanalyzer.services import Services, build_services

logger = logging.getLogger(__name__)

_start_time: float = 0.0


def get_uptime() -> float:
    return time.time() - _start_time if _start_time else 0.0


def get_services(request: Request) -> Services:
    return request.app.state.services


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    """Build the API.

    When ``services`` is given (the scheduler process, tests) the app uses
    and leaves it open; otherwise the lifespan builds and closes its own.
    """
    settings = settings or (services.settings if services else get_settings())

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        global _start_time
        _start_time = time.time()

        owned = services is None
        app.state.services = services if services is not None else await build_services(settings)
        logger.info("Stock Analyzer API v%s starting", __version__)
        try:
            yield
        finally:
            logger.info("Stock Analyzer API shutting down")
            if owned:
                await app.state.services.close()

    app = FastAPI(
        title="Stock Analyzer",
        description="Market data cache and quota-aware update service",
        version=__version__,
        lifespan=_lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    from stockanalyzer.api.routes import stocks, system, updates
    app.include_router(system.router, prefix="/api")
    app.include_router(stocks.router, prefix="/api")
    app.include_router(updates.router, prefix="/api")

    return app
