"""Normalized market-data records and the provider adapter interface."""

from __future__ import annotations

import abc
import enum
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Awaitable

import httpx

from stockanalyzer.errors import (
    TransportError,
    UpstreamAuthError,
    UpstreamRateLimitNotice,
    UpstreamShapeError,
)

logger = logging.getLogger(__name__)


class UpdateType(str, enum.Enum):
    DAILY = "daily"
    OVERVIEW = "overview"
    FINANCIALS = "financials"


@dataclass(frozen=True)
class PriceBar:
    symbol: str
    date: date
    open: float
    high: float
    low: float
    close: float
    volume: int


@dataclass(frozen=True)
class IntradayBar:
    symbol: str
    timestamp: datetime  # UTC
    open: float
    high: float
    low: float
    close: float
    volume: int


@dataclass
class FundamentalsSnapshot:
    symbol: str
    name: str | None = None
    market_cap: float | None = None  # whole dollars
    pe_ratio: float | None = None
    dividend_yield: float | None = None  # percent
    dividend_per_share: float | None = None
    week_52_high: float | None = None
    week_52_low: float | None = None
    beta: float | None = None
    eps: float | None = None
    book_value: float | None = None
    profit_margin: float | None = None
    operating_margin_ttm: float | None = None
    source: str | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class IncomeStatementPeriod:
    symbol: str
    fiscal_date_ending: date
    total_revenue: float | None = None
    operating_expenses: float | None = None
    net_income: float | None = None
    ebitda: float | None = None
    eps: float | None = None
    gross_profit: float | None = None


@dataclass
class FetchResult:
    """Outcome of one successful gateway fetch."""

    update_type: UpdateType
    symbol: str
    provider: str
    data: Any
    attempts: list[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        if isinstance(self.data, list):
            return len(self.data)
        return 1 if self.data is not None else 0


@dataclass
class IntradayFetch:
    symbol: str
    day: date
    provider: str
    bars: list[IntradayBar]
    attempts: list[str] = field(default_factory=list)


def safe_float(v: Any) -> float | None:
    """Parse provider numerics; placeholders like 'None' or '-' become None."""
    if v is None:
        return None
    if isinstance(v, str) and v.strip() in ("", "None", "-", "N/A", "NaN"):
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


class Provider(abc.ABC):
    """One upstream market-data API.

    Subclasses normalize their own payloads into ``PriceBar``,
    ``FundamentalsSnapshot`` and ``IncomeStatementPeriod`` and raise the
    ``ProviderError`` subclass that matches the failure.
    """

    name: str = ""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str,
        timeout: float = 15.0,
        history_years: int = 5,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = (api_key or "").strip()
        self._base_url = base_url.rstrip("/")
        self._history_years = history_years
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def enabled(self) -> bool:
        return bool(self._api_key) and self._api_key != "demo"

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch(self, update_type: UpdateType, symbol: str) -> Any:
        update_type = UpdateType(update_type)
        if update_type is UpdateType.DAILY:
            call = self.fetch_daily(symbol)
        elif update_type is UpdateType.OVERVIEW:
            call = self.fetch_overview(symbol)
        else:
            call = self.fetch_income_statements(symbol)
        return await self._parsed(update_type.value, call)

    async def fetch_intraday_day(self, symbol: str, day: date) -> list[IntradayBar]:
        return await self._parsed("intraday", self.fetch_intraday(symbol, day))

    async def _parsed(self, what: str, call: Awaitable[Any]) -> Any:
        """Await an adapter call; stray parse errors become ``UpstreamShapeError``."""
        try:
            return await call
        except (TypeError, ValueError, AttributeError, KeyError) as exc:
            raise UpstreamShapeError(self.name, f"malformed {what} payload: {exc!r}") from exc

    @abc.abstractmethod
    async def fetch_daily(self, symbol: str) -> list[PriceBar]:
        """Daily bars, oldest first."""

    @abc.abstractmethod
    async def fetch_overview(self, symbol: str) -> FundamentalsSnapshot:
        """Company fundamentals snapshot."""

    @abc.abstractmethod
    async def fetch_income_statements(self, symbol: str) -> list[IncomeStatementPeriod]:
        """Most recent income statement periods, newest first."""

    @abc.abstractmethod
    async def fetch_intraday(self, symbol: str, day: date) -> list[IntradayBar]:
        """Five-minute bars for one trading day, oldest first."""

    async def _get_json(self, url: str, params: dict[str, Any]) -> Any:
        try:
            resp = await self._client.get(url, params=params)
        except httpx.TimeoutException as exc:
            raise TransportError(self.name, f"timeout: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(self.name, f"transport failure: {exc}") from exc

        if resp.status_code == 429:
            raise UpstreamRateLimitNotice(self.name, "HTTP 429 Too Many Requests")
        if resp.status_code in (401, 403):
            raise UpstreamAuthError(self.name, f"HTTP {resp.status_code}")
        if resp.status_code != 200:
            raise TransportError(self.name, f"HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamShapeError(self.name, "response body is not JSON") from exc
