"""System endpoints — health, client config."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from stockanalyzer import __version__
from stockanalyzer.api.app import get_services, get_uptime
from stockanalyzer.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["system"])


@router.get("/health")
async def health(services: Services = Depends(get_services)):
    db_ok = False
    try:
        async with services.database.session() as session:
            await session.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError as exc:
        logger.warning("health: database unreachable: %s", exc)

    return {
        "status": "ok" if db_ok else "degraded",
        "version": __version__,
        "uptime_seconds": round(get_uptime(), 1),
        "components": {
            "db": db_ok,
            "events": services.notifier.enabled,
            "providers": services.gateway.enabled_providers,
        },
        "scheduler": services.worker.get_stats(),
    }


@router.get("/config")
async def client_config(services: Services = Depends(get_services)):
    settings = services.settings
    return {
        "default_symbol": settings.default_symbol,
        "providers": services.gateway.enabled_providers,
        "provider_order": settings.provider_order,
        "fibonacci_levels": settings.fibonacci_levels,
        "version": __version__,
    }
