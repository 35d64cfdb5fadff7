"""Finnhub adapter (free tier: 60 calls/minute)."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterator

from stockanalyzer.errors import UpstreamAuthError, UpstreamRateLimitNotice, UpstreamShapeError
from stockanalyzer.marketdata.base import (
    FundamentalsSnapshot,
    IncomeStatementPeriod,
    IntradayBar,
    PriceBar,
    Provider,
    safe_float,
)
from stockanalyzer.utils import utc_now

logger = logging.getLogger(__name__)

_MAX_REPORTS = 8

# Ordered candidates; the first concept present in a report wins.
REVENUE_CONCEPTS = (
    "us-gaap_RevenueFromContractWithCustomerExcludingAssessedTax",
    "us-gaap_Revenues",
    "us-gaap_SalesRevenueNet",
)
OPERATING_EXPENSE_CONCEPTS = ("us-gaap_OperatingExpenses", "us-gaap_CostsAndExpenses")
NET_INCOME_CONCEPTS = ("us-gaap_NetIncomeLoss", "us-gaap_ProfitLoss")
EPS_CONCEPTS = ("us-gaap_EarningsPerShareDiluted", "us-gaap_EarningsPerShareBasic")
GROSS_PROFIT_CONCEPTS = ("us-gaap_GrossProfit",)


def find_gaap_value(lines: Any, concepts: tuple[str, ...]) -> float | None:
    """Value of the first concept in ``concepts`` reported in ``lines``."""
    if not isinstance(lines, list):
        return None
    by_concept = {
        entry.get("concept"): entry.get("value")
        for entry in lines
        if isinstance(entry, dict)
    }
    for concept in concepts:
        value = safe_float(by_concept.get(concept))
        if value is not None:
            return value
    return None


def _scaled(v: Any, factor: float) -> float | None:
    value = safe_float(v)
    return value * factor if value is not None else None


class FinnhubProvider(Provider):
    name = "finnhub"

    def __init__(self, api_key: str, *, base_url: str = "https://finnhub.io/api/v1", **kwargs: Any) -> None:
        super().__init__(api_key, base_url=base_url, **kwargs)

    async def _call(self, path: str, **params: Any) -> Any:
        raw = await self._get_json(f"{self._base_url}{path}", {**params, "token": self._api_key})
        if isinstance(raw, dict) and raw.get("error"):
            self._raise_for_error(path, str(raw["error"]))
        return raw

    def _raise_for_error(self, path: str, error: str) -> None:
        lowered = error.lower()
        if "access" in lowered or "permission" in lowered or "api key" in lowered:
            raise UpstreamAuthError(self.name, f"access denied on {path}: {error}")
        if "limit" in lowered:
            raise UpstreamRateLimitNotice(self.name, f"{path}: {error}")
        raise UpstreamShapeError(self.name, f"{path}: {error}")

    async def fetch_daily(self, symbol: str) -> list[PriceBar]:
        end = utc_now()
        start = end - timedelta(days=365 * self._history_years)
        raw = await self._call(
            "/stock/candle",
            symbol=symbol,
            resolution="D",
            **{"from": int(start.timestamp()), "to": int(end.timestamp())},
        )
        if not isinstance(raw, dict):
            raise UpstreamShapeError(self.name, "candle response is not an object")
        status = raw.get("s")
        if status == "no_data":
            raise UpstreamShapeError(self.name, f"no candle data for {symbol}")
        if status != "ok":
            raise UpstreamShapeError(self.name, f"unexpected candle status: {status}")

        bars: list[PriceBar] = []
        for instant, values, v in self._candle_rows(raw):
            bars.append(
                PriceBar(
                    symbol=symbol,
                    date=instant.date(),
                    open=values[0],
                    high=values[1],
                    low=values[2],
                    close=values[3],
                    volume=int(safe_float(v) or 0),
                )
            )
        if not bars:
            raise UpstreamShapeError(self.name, f"no usable candles for {symbol}")
        bars.sort(key=lambda b: b.date)
        return bars

    async def fetch_intraday(self, symbol: str, day: date) -> list[IntradayBar]:
        start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        raw = await self._call(
            "/stock/candle",
            symbol=symbol,
            resolution="5",
            **{"from": int(start.timestamp()), "to": int((start + timedelta(days=1)).timestamp()) - 1},
        )
        if not isinstance(raw, dict):
            raise UpstreamShapeError(self.name, "candle response is not an object")
        if raw.get("s") != "ok":
            raise UpstreamShapeError(self.name, f"no intraday candles for {symbol} on {day}")

        bars = [
            IntradayBar(
                symbol=symbol,
                timestamp=instant,
                open=values[0],
                high=values[1],
                low=values[2],
                close=values[3],
                volume=int(safe_float(v) or 0),
            )
            for instant, values, v in self._candle_rows(raw)
            if instant.date() == day
        ]
        if not bars:
            raise UpstreamShapeError(self.name, f"no usable intraday candles for {symbol} on {day}")
        bars.sort(key=lambda b: b.timestamp)
        return bars

    def _candle_rows(self, raw: dict[str, Any]) -> Iterator[tuple[datetime, list[float], Any]]:
        """Yield (instant, [o, h, l, c], volume) per candle, skipping unusable rows."""
        columns = [raw.get(k) or [] for k in ("t", "o", "h", "l", "c", "v")]
        if not all(isinstance(col, list) for col in columns):
            raise UpstreamShapeError(self.name, "candle fields are not arrays")
        if len({len(col) for col in columns}) != 1:
            raise UpstreamShapeError(self.name, "candle arrays have mismatched lengths")

        for ts, o, h, lo, c, v in zip(*columns):
            stamp = safe_float(ts)
            values = [safe_float(x) for x in (o, h, lo, c)]
            if stamp is None or None in values:
                continue
            try:
                instant = datetime.fromtimestamp(int(stamp), tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                logger.debug("[finnhub] dropping candle with bad timestamp %r", ts)
                continue
            yield instant, values, v

    async def fetch_overview(self, symbol: str) -> FundamentalsSnapshot:
        raw = await self._call("/stock/profile2", symbol=symbol)
        if not isinstance(raw, dict) or not raw:
            raise UpstreamShapeError(self.name, "No profile data from Finnhub")

        return FundamentalsSnapshot(
            symbol=str(raw.get("ticker") or symbol).upper(),
            name=raw.get("name") or None,
            market_cap=_scaled(raw.get("marketCapitalization"), 1_000_000),  # reported in millions
            pe_ratio=safe_float(raw.get("peNTM")),
            dividend_yield=_scaled(raw.get("dividendYield"), 100),  # fraction -> percent
            week_52_high=safe_float(raw.get("week52High")),
            week_52_low=safe_float(raw.get("week52Low")),
            beta=safe_float(raw.get("beta")),
            eps=safe_float(raw.get("eps")),
            source=self.name,
        )

    async def fetch_income_statements(self, symbol: str) -> list[IncomeStatementPeriod]:
        raw = await self._call("/stock/financials-reported", symbol=symbol)
        reports = raw.get("data") if isinstance(raw, dict) else None
        if not isinstance(reports, list) or not reports:
            raise UpstreamShapeError(self.name, "No financial data from Finnhub")

        out: list[IncomeStatementPeriod] = []
        for report in reports[:_MAX_REPORTS]:
            if not isinstance(report, dict):
                logger.warning("[finnhub] skipping non-object financials report for %s", symbol)
                continue
            sections = report.get("report")
            lines = sections.get("ic") if isinstance(sections, dict) else None
            end_date = str(report.get("endDate") or "").split(" ")[0]
            if not lines:
                logger.warning("[finnhub] no income statement lines for %s period %s", symbol, end_date)
                continue
            try:
                period = datetime.strptime(end_date, "%Y-%m-%d").date()
            except ValueError:
                logger.warning("[finnhub] bad endDate %r for %s", end_date, symbol)
                continue
            out.append(
                IncomeStatementPeriod(
                    symbol=symbol,
                    fiscal_date_ending=period,
                    total_revenue=find_gaap_value(lines, REVENUE_CONCEPTS),
                    operating_expenses=find_gaap_value(lines, OPERATING_EXPENSE_CONCEPTS),
                    net_income=find_gaap_value(lines, NET_INCOME_CONCEPTS),
                    ebitda=None,  # not a reported GAAP line
                    eps=find_gaap_value(lines, EPS_CONCEPTS),
                    gross_profit=find_gaap_value(lines, GROSS_PROFIT_CONCEPTS),
                )
            )
        if not out:
            raise UpstreamShapeError(self.name, "No valid quarterly/annual reports found in Finnhub data")
        return out
