"""Update endpoints — registration, queueing, immediate execution, intraday fetch, quota, events."""

from __future__ import annotations

import datetime as dt
import json
from contextlib import aclosing
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from stockanalyzer.analysis.fibonacci import freshness
from stockanalyzer.api.app import get_services
from stockanalyzer.api.routes.stocks import intraday_payload
from stockanalyzer.errors import AllProvidersExhausted, StoreWriteError
from stockanalyzer.marketdata.base import UpdateType
from stockanalyzer.services import Services
from stockanalyzer.updates.tracker import DEFAULT_PRIORITY, MAX_PRIORITY, MIN_PRIORITY, stamp_column
from stockanalyzer.utils import normalize_symbol

router = APIRouter(prefix="/update", tags=["updates"])


class RegisterRequest(BaseModel):
    symbol: str
    priority: int = Field(DEFAULT_PRIORITY, ge=MIN_PRIORITY, le=MAX_PRIORITY)


class QueueRequest(BaseModel):
    symbol: str
    update_type: UpdateType = UpdateType.DAILY
    priority: int = Field(DEFAULT_PRIORITY, ge=MIN_PRIORITY, le=MAX_PRIORITY)


class ExecuteRequest(BaseModel):
    symbol: str
    update_type: UpdateType = UpdateType.DAILY


class IntradayRequest(BaseModel):
    symbol: str
    date: dt.date


def _symbol(raw: str) -> str:
    try:
        return normalize_symbol(raw)
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc


@router.post("/register")
async def register(body: RegisterRequest, services: Services = Depends(get_services)):
    record = await services.tracker.register_symbol(_symbol(body.symbol), body.priority)
    return {"status": "registered", "tracking": record}


@router.post("/queue")
async def enqueue(body: QueueRequest, services: Services = Depends(get_services)):
    item = services.queue.enqueue(_symbol(body.symbol), body.update_type, body.priority)
    return {"status": "queued", "item": item.to_dict(), "queue_depth": len(services.queue)}


@router.get("/quota")
async def quota(services: Services = Depends(get_services)):
    return {
        "providers": await services.quota.status(),
        "enabled_providers": services.gateway.enabled_providers,
        "can_update": await services.gateway.has_headroom(),
        "queue": services.queue.snapshot(),
    }


@router.get("/status")
async def status(symbol: str = Query(..., min_length=1), services: Services = Depends(get_services)):
    symbol = _symbol(symbol)
    record = await services.tracker.get_status(symbol)
    if record is None:
        raise HTTPException(404, f"{symbol} is not registered for updates")
    record["freshness"] = {t.value: freshness(record[stamp_column(t)]) for t in UpdateType}
    record["scheduled"] = record["is_active"] and record["failure_count"] < services.settings.max_consecutive_failures
    return record


@router.post("/execute")
async def execute(body: ExecuteRequest, services: Services = Depends(get_services)):
    symbol = _symbol(body.symbol)
    try:
        result = await services.updates.update_now(symbol, body.update_type)
    except AllProvidersExhausted as exc:
        raise HTTPException(502, str(exc)) from exc
    except StoreWriteError as exc:
        raise HTTPException(500, f"Failed to store {body.update_type.value} data for {symbol}: {exc}") from exc
    return {"status": "updated", **result.to_dict()}


@router.post("/intraday")
async def intraday(body: IntradayRequest, services: Services = Depends(get_services)):
    """Serve cached five-minute bars for a day, fetching them on a miss."""
    symbol = _symbol(body.symbol)
    try:
        bars, source = await services.updates.load_intraday(symbol, body.date)
    except AllProvidersExhausted as exc:
        raise HTTPException(502, str(exc)) from exc
    except StoreWriteError as exc:
        raise HTTPException(500, f"Failed to store intraday data for {symbol}: {exc}") from exc
    return {"source": source, **intraday_payload(symbol, body.date, bars)}


@router.get("/events")
async def events(request: Request, services: Services = Depends(get_services)):
    """Server-sent stream of ``stock_updated`` events."""
    notifier = services.notifier
    if not notifier.enabled:
        raise HTTPException(503, "Event streaming requires redis_url")

    async def event_generator() -> AsyncGenerator[dict, None]:
        yield {"event": "connected", "data": json.dumps({"channel": notifier.channel})}
        async with aclosing(notifier.subscribe()) as stream:
            async for data in stream:
                if await request.is_disconnected():
                    break
                yield {"event": "stock_updated", "data": data}

    return EventSourceResponse(event_generator(), ping=15)
