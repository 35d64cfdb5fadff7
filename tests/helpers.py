from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any

import httpx

from stockanalyzer.errors import ProviderError
from stockanalyzer.marketdata.base import (
    FundamentalsSnapshot,
    IncomeStatementPeriod,
    IntradayBar,
    PriceBar,
    Provider,
)


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class ScriptedProvider(Provider):
    """Provider whose fetches return or raise whatever the test queued."""

    def __init__(self, name: str, *outcomes: Any, api_key: str = "test-key") -> None:
        self.name = name
        super().__init__(api_key, base_url="http://fake.invalid", client=httpx.AsyncClient())
        self.outcomes = list(outcomes)
        self.calls: list[tuple[str, str]] = []

    async def _next(self, kind: str, symbol: str) -> Any:
        self.calls.append((kind, symbol))
        outcome = self.outcomes.pop(0) if self.outcomes else ProviderError(self.name, "no scripted outcome")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def fetch_daily(self, symbol: str) -> list[PriceBar]:
        return await self._next("daily", symbol)

    async def fetch_overview(self, symbol: str) -> FundamentalsSnapshot:
        return await self._next("overview", symbol)

    async def fetch_income_statements(self, symbol: str) -> list[IncomeStatementPeriod]:
        return await self._next("financials", symbol)

    async def fetch_intraday(self, symbol: str, day: date) -> list[IntradayBar]:
        return await self._next("intraday", symbol)


def make_bars(symbol: str, n: int, start: date = date(2024, 1, 1), base: float = 100.0) -> list[PriceBar]:
    return [
        PriceBar(
            symbol=symbol,
            date=start + timedelta(days=i),
            open=base + i,
            high=base + i + 2,
            low=base + i - 2,
            close=base + i + 1,
            volume=1_000_000 + i,
        )
        for i in range(n)
    ]


def make_intraday(symbol: str, day: date, n: int, base: float = 100.0) -> list[IntradayBar]:
    """``n`` five-minute bars from the 14:30 UTC open of ``day``."""
    open_at = datetime.combine(day, time(14, 30), tzinfo=timezone.utc)
    return [
        IntradayBar(
            symbol=symbol,
            timestamp=open_at + timedelta(minutes=5 * i),
            open=base + i,
            high=base + i + 0.5,
            low=base + i - 0.5,
            close=base + i + 0.25,
            volume=10_000 + i,
        )
        for i in range(n)
    ]
