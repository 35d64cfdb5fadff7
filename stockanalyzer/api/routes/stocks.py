"""Cached market data endpoints — symbols, daily and intraday bars, fundamentals, statements, Fibonacci."""

from __future__ import annotations

from dataclasses import asdict
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query

from stockanalyzer.analysis import fibonacci
from stockanalyzer.api.app import get_services
from stockanalyzer.marketdata.base import IntradayBar
from stockanalyzer.services import Services
from stockanalyzer.utils import normalize_symbol

router = APIRouter(tags=["stocks"])


def _symbol(raw: str) -> str:
    try:
        return normalize_symbol(raw)
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc


@router.get("/stocks")
async def list_stocks(services: Services = Depends(get_services)):
    symbols = sorted(await services.store.list_known_symbols())
    return {"symbols": symbols, "count": len(symbols)}


@router.get("/stocks/{symbol}/daily")
async def daily_bars(symbol: str, services: Services = Depends(get_services)):
    symbol = _symbol(symbol)
    bars = await services.store.get_price_bars(symbol)
    if not bars:
        raise HTTPException(404, f"No daily data cached for {symbol}")
    return {
        "symbol": symbol,
        "count": len(bars),
        "bars": [
            {
                "date": b.date.isoformat(),
                "open": b.open,
                "high": b.high,
                "low": b.low,
                "close": b.close,
                "volume": b.volume,
            }
            for b in bars
        ],
    }


def intraday_payload(symbol: str, day: date, bars: list[IntradayBar]) -> dict:
    return {
        "symbol": symbol,
        "date": day.isoformat(),
        "count": len(bars),
        "bars": [
            {
                "timestamp": b.timestamp.isoformat(),
                "open": b.open,
                "high": b.high,
                "low": b.low,
                "close": b.close,
                "volume": b.volume,
            }
            for b in bars
        ],
    }


@router.get("/stocks/{symbol}/intraday")
async def intraday_bars(
    symbol: str,
    day: date = Query(..., alias="date", description="Trading day (YYYY-MM-DD)"),
    services: Services = Depends(get_services),
):
    symbol = _symbol(symbol)
    bars = await services.store.get_intraday_bars(symbol, day)
    if not bars:
        raise HTTPException(404, f"No intraday data cached for {symbol} on {day.isoformat()}")
    return intraday_payload(symbol, day, bars)


@router.get("/stocks/{symbol}/overview")
async def overview(symbol: str, services: Services = Depends(get_services)):
    symbol = _symbol(symbol)
    snapshot = await services.store.get_fundamentals(symbol)
    if snapshot is None:
        raise HTTPException(404, f"No overview cached for {symbol}")
    data = asdict(snapshot)
    data["updated_at"] = snapshot.updated_at.isoformat() if snapshot.updated_at else None
    return data


@router.get("/stocks/{symbol}/income-statements")
async def income_statements(
    symbol: str,
    limit: int = Query(8, ge=1, le=40),
    services: Services = Depends(get_services),
):
    symbol = _symbol(symbol)
    periods = await services.store.get_income_statements(symbol, limit=limit)
    return {
        "symbol": symbol,
        "count": len(periods),
        "statements": [
            {**asdict(p), "fiscal_date_ending": p.fiscal_date_ending.isoformat()} for p in periods
        ],
    }


@router.get("/stocks/{symbol}/fibonacci")
async def fibonacci_levels(
    symbol: str,
    lookback: int | None = Query(None, ge=2, description="Use only the most recent N bars"),
    anchor: date | None = Query(None, description="Re-anchor one swing end at this bar's date"),
    services: Services = Depends(get_services),
):
    symbol = _symbol(symbol)
    bars = await services.store.get_price_bars(symbol)
    if lookback:
        bars = bars[-lookback:]
    if not bars:
        raise HTTPException(404, f"No daily data cached for {symbol}")

    ratios = services.settings.fibonacci_levels
    if anchor is None:
        result = fibonacci.calculate(bars, ratios=ratios)
    else:
        anchor_bar = next((b for b in bars if b.date == anchor), None)
        if anchor_bar is None:
            raise HTTPException(400, f"No bar on {anchor.isoformat()} in the selected range")
        result = fibonacci.recalculate_from_anchor(bars, anchor_bar, ratios=ratios)
    return {"symbol": symbol, "bars": len(bars), **result}
