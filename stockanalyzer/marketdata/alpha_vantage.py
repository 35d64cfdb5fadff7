"""Alpha Vantage adapter (strict free tier: 25 calls/day, 5/minute)."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from stockanalyzer.errors import UpstreamRateLimitNotice, UpstreamShapeError
from stockanalyzer.marketdata.base import (
    FundamentalsSnapshot,
    IncomeStatementPeriod,
    IntradayBar,
    PriceBar,
    Provider,
    safe_float,
)

logger = logging.getLogger(__name__)

_SERIES_KEY = "Time Series (Daily)"
_INTRADAY_KEY = "Time Series (5min)"
_MAX_STATEMENTS = 8

# Intraday timestamps are exchange-local.
ET_TZ = ZoneInfo("America/New_York")


class AlphaVantageProvider(Provider):
    name = "alpha_vantage"

    def __init__(self, api_key: str, *, base_url: str = "https://www.alphavantage.co/query", **kwargs: Any) -> None:
        super().__init__(api_key, base_url=base_url, **kwargs)

    async def _query(self, function: str, symbol: str, **extra: str) -> dict[str, Any]:
        params = {"function": function, "symbol": symbol, "apikey": self._api_key, **extra}
        raw = await self._get_json(self._base_url, params)
        if not isinstance(raw, dict):
            raise UpstreamShapeError(self.name, f"{function}: expected a JSON object")
        self._raise_for_notices(function, raw)
        return raw

    def _raise_for_notices(self, function: str, raw: dict[str, Any]) -> None:
        if raw.get("Error Message"):
            raise UpstreamShapeError(self.name, f"{function}: {raw['Error Message']}")
        note = raw.get("Note") or raw.get("Information")
        if note:
            text = str(note)
            daily = "per day" in text.lower() or "daily" in text.lower()
            raise UpstreamRateLimitNotice(self.name, f"API rate limit: {text}", daily=daily)

    async def fetch_daily(self, symbol: str) -> list[PriceBar]:
        raw = await self._query("TIME_SERIES_DAILY", symbol, outputsize="full")
        series = raw.get(_SERIES_KEY)
        if not isinstance(series, dict):
            raise UpstreamShapeError(self.name, "Invalid API response: missing time series data")

        cutoff = date.today() - timedelta(days=365 * self._history_years)
        bars: list[PriceBar] = []
        for day, values in series.items():
            try:
                d = datetime.strptime(day, "%Y-%m-%d").date()
            except ValueError:
                continue
            if d <= cutoff or not isinstance(values, dict):
                continue
            o = safe_float(values.get("1. open"))
            h = safe_float(values.get("2. high"))
            lo = safe_float(values.get("3. low"))
            c = safe_float(values.get("4. close"))
            if None in (o, h, lo, c):
                continue
            bars.append(
                PriceBar(
                    symbol=symbol,
                    date=d,
                    open=o,
                    high=h,
                    low=lo,
                    close=c,
                    volume=int(safe_float(values.get("5. volume")) or 0),
                )
            )
        if not bars:
            raise UpstreamShapeError(self.name, f"no usable daily rows for {symbol}")
        bars.sort(key=lambda b: b.date)
        return bars

    async def fetch_intraday(self, symbol: str, day: date) -> list[IntradayBar]:
        raw = await self._query(
            "TIME_SERIES_INTRADAY",
            symbol,
            interval="5min",
            month=day.strftime("%Y-%m"),
            outputsize="full",
        )
        series = raw.get(_INTRADAY_KEY)
        if not isinstance(series, dict):
            raise UpstreamShapeError(self.name, "Invalid API response: missing intraday series")

        bars: list[IntradayBar] = []
        for stamp, values in series.items():
            try:
                local = datetime.strptime(stamp, "%Y-%m-%d %H:%M:%S").replace(tzinfo=ET_TZ)
            except ValueError:
                continue
            if local.date() != day or not isinstance(values, dict):
                continue
            o = safe_float(values.get("1. open"))
            h = safe_float(values.get("2. high"))
            lo = safe_float(values.get("3. low"))
            c = safe_float(values.get("4. close"))
            if None in (o, h, lo, c):
                continue
            bars.append(
                IntradayBar(
                    symbol=symbol,
                    timestamp=local.astimezone(timezone.utc),
                    open=o,
                    high=h,
                    low=lo,
                    close=c,
                    volume=int(safe_float(values.get("5. volume")) or 0),
                )
            )
        if not bars:
            raise UpstreamShapeError(self.name, f"no intraday rows for {symbol} on {day}")
        bars.sort(key=lambda b: b.timestamp)
        return bars

    async def fetch_overview(self, symbol: str) -> FundamentalsSnapshot:
        raw = await self._query("OVERVIEW", symbol)
        if not raw.get("Symbol"):
            raise UpstreamShapeError(self.name, "No overview data from Alpha Vantage")

        return FundamentalsSnapshot(
            symbol=str(raw["Symbol"]).upper(),
            name=raw.get("Name") or None,
            market_cap=safe_float(raw.get("MarketCapitalization")),
            pe_ratio=safe_float(raw.get("PERatio")),
            dividend_yield=safe_float(raw.get("DividendYield")),
            dividend_per_share=safe_float(raw.get("DividendPerShare")),
            week_52_high=safe_float(raw.get("52WeekHigh")),
            week_52_low=safe_float(raw.get("52WeekLow")),
            beta=safe_float(raw.get("Beta")),
            eps=safe_float(raw.get("EPS")),
            book_value=safe_float(raw.get("BookValue")),
            profit_margin=safe_float(raw.get("ProfitMargin")),
            operating_margin_ttm=safe_float(raw.get("OperatingMarginTTM")),
            source=self.name,
        )

    async def fetch_income_statements(self, symbol: str) -> list[IncomeStatementPeriod]:
        raw = await self._query("INCOME_STATEMENT", symbol)
        reports = raw.get("quarterlyReports")
        if not isinstance(reports, list) or not reports:
            raise UpstreamShapeError(self.name, "No income statement data from Alpha Vantage")

        out: list[IncomeStatementPeriod] = []
        for report in reports[:_MAX_STATEMENTS]:
            if not isinstance(report, dict):
                logger.warning("[alpha_vantage] skipping non-object income report for %s", symbol)
                continue
            try:
                period = datetime.strptime(str(report.get("fiscalDateEnding")), "%Y-%m-%d").date()
            except ValueError:
                logger.warning("[alpha_vantage] skipping report with bad fiscalDateEnding for %s", symbol)
                continue
            out.append(
                IncomeStatementPeriod(
                    symbol=symbol,
                    fiscal_date_ending=period,
                    total_revenue=safe_float(report.get("totalRevenue")),
                    operating_expenses=safe_float(report.get("operatingExpenses")),
                    net_income=safe_float(report.get("netIncome")),
                    ebitda=safe_float(report.get("ebitda")),
                    eps=None,  # not part of the income statement payload
                    gross_profit=safe_float(report.get("grossProfit")),
                )
            )
        if not out:
            raise UpstreamShapeError(self.name, "income statement reports had no usable periods")
        return out
