"""Store facade: bulk upserts and reads over the market-data cache tables."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import date, datetime, time, timedelta, timezone
from typing import AsyncGenerator, Sequence

from sqlalchemy import func, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from stockanalyzer.db.database import Database
from stockanalyzer.db.models import CompanyOverview, DailyPrice, IncomeStatement, IntradayPrice
from stockanalyzer.errors import StoreWriteError
from stockanalyzer.marketdata.base import FundamentalsSnapshot, IncomeStatementPeriod, IntradayBar, PriceBar
from stockanalyzer.utils import as_utc, normalize_symbol, utc_now

logger = logging.getLogger(__name__)

_OVERVIEW_FIELDS = (
    "name",
    "market_cap",
    "pe_ratio",
    "dividend_yield",
    "dividend_per_share",
    "week_52_high",
    "week_52_low",
    "beta",
    "eps",
    "book_value",
    "profit_margin",
    "operating_margin_ttm",
    "source",
)

# Keeps each statement under SQLite's bound-parameter limit.
_CHUNK_ROWS = 500

_OHLCV_FIELDS = ("open", "high", "low", "close", "volume")

_STATEMENT_FIELDS = (
    "total_revenue",
    "operating_expenses",
    "net_income",
    "ebitda",
    "eps",
    "gross_profit",
)


class Store:
    """Reads and writes normalized rows.

    Write methods take an optional session so the update service can commit
    rows and the tracker stamp together; without one they open their own
    transaction.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    @property
    def database(self) -> Database:
        return self._db

    @asynccontextmanager
    async def _write_scope(self, session: AsyncSession | None) -> AsyncGenerator[AsyncSession, None]:
        if session is not None:
            yield session
            return
        async with self._db.session() as own:
            yield own

    # ── Price bars ────────────────────────────────────────────────────

    async def upsert_price_bars(
        self, symbol: str, bars: Sequence[PriceBar], session: AsyncSession | None = None
    ) -> int:
        symbol = normalize_symbol(symbol)
        if not bars:
            return 0
        rows = [{"symbol": symbol, "date": b.date, **_ohlcv(b)} for b in bars]
        await self._upsert_ohlcv(DailyPrice, "date", rows, session, f"daily bars for {symbol}")
        logger.debug("[store] upserted %d daily bars for %s", len(rows), symbol)
        return len(rows)

    async def get_price_bars(self, symbol: str) -> list[PriceBar]:
        symbol = normalize_symbol(symbol)
        async with self._db.session() as session:
            result = await session.execute(
                select(DailyPrice).where(DailyPrice.symbol == symbol).order_by(DailyPrice.date.asc())
            )
            return [
                PriceBar(
                    symbol=row.symbol,
                    date=row.date,
                    open=row.open,
                    high=row.high,
                    low=row.low,
                    close=row.close,
                    volume=row.volume,
                )
                for row in result.scalars()
            ]

    async def symbol_has_price_data(self, symbol: str) -> bool:
        symbol = normalize_symbol(symbol)
        async with self._db.session() as session:
            count = await session.scalar(
                select(func.count()).select_from(DailyPrice).where(DailyPrice.symbol == symbol)
            )
            return bool(count)

    async def list_known_symbols(self) -> set[str]:
        async with self._db.session() as session:
            result = await session.execute(select(DailyPrice.symbol).distinct())
            return set(result.scalars())

    # ── Intraday bars ─────────────────────────────────────────────────

    async def upsert_intraday_bars(
        self, symbol: str, bars: Sequence[IntradayBar], session: AsyncSession | None = None
    ) -> int:
        symbol = normalize_symbol(symbol)
        if not bars:
            return 0
        rows = [{"symbol": symbol, "timestamp": as_utc(b.timestamp), **_ohlcv(b)} for b in bars]
        await self._upsert_ohlcv(IntradayPrice, "timestamp", rows, session, f"intraday bars for {symbol}")
        logger.debug("[store] upserted %d intraday bars for %s", len(rows), symbol)
        return len(rows)

    async def get_intraday_bars(self, symbol: str, day: date) -> list[IntradayBar]:
        """Bars whose UTC timestamp falls on ``day``, oldest first."""
        symbol = normalize_symbol(symbol)
        async with self._db.session() as session:
            result = await session.execute(
                select(IntradayPrice)
                .where(IntradayPrice.symbol == symbol, *_on_day(day))
                .order_by(IntradayPrice.timestamp.asc())
            )
            return [
                IntradayBar(
                    symbol=row.symbol,
                    timestamp=row.timestamp,
                    open=row.open,
                    high=row.high,
                    low=row.low,
                    close=row.close,
                    volume=row.volume,
                )
                for row in result.scalars()
            ]

    async def has_intraday_data(self, symbol: str, day: date) -> bool:
        symbol = normalize_symbol(symbol)
        async with self._db.session() as session:
            count = await session.scalar(
                select(func.count())
                .select_from(IntradayPrice)
                .where(IntradayPrice.symbol == symbol, *_on_day(day))
            )
            return bool(count)

    # ── Fundamentals ──────────────────────────────────────────────────

    async def upsert_fundamentals(
        self, snapshot: FundamentalsSnapshot, session: AsyncSession | None = None
    ) -> int:
        symbol = normalize_symbol(snapshot.symbol)
        row = {k: getattr(snapshot, k) for k in _OVERVIEW_FIELDS}
        row["symbol"] = symbol
        row["updated_at"] = snapshot.updated_at or utc_now()
        stmt = insert(CompanyOverview).values(row)
        # Overwritten wholesale, including fields the new source left null.
        stmt = stmt.on_conflict_do_update(
            index_elements=["symbol"],
            set_={k: getattr(stmt.excluded, k) for k in (*_OVERVIEW_FIELDS, "updated_at")},
        )
        await self._execute_write([stmt], session, f"overview for {symbol}")
        return 1

    async def get_fundamentals(self, symbol: str) -> FundamentalsSnapshot | None:
        symbol = normalize_symbol(symbol)
        async with self._db.session() as session:
            row = await session.get(CompanyOverview, symbol)
            if row is None:
                return None
            return FundamentalsSnapshot(
                symbol=row.symbol,
                updated_at=row.updated_at,
                **{k: getattr(row, k) for k in _OVERVIEW_FIELDS},
            )

    # ── Income statements ─────────────────────────────────────────────

    async def upsert_income_statements(
        self,
        symbol: str,
        periods: Sequence[IncomeStatementPeriod],
        session: AsyncSession | None = None,
    ) -> int:
        symbol = normalize_symbol(symbol)
        if not periods:
            return 0
        rows = []
        for p in periods:
            row = asdict(p)
            row["symbol"] = symbol
            row["created_at"] = utc_now()
            rows.append(row)
        stmt = insert(IncomeStatement).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["symbol", "fiscal_date_ending"],
            set_={k: getattr(stmt.excluded, k) for k in _STATEMENT_FIELDS},
        )
        await self._execute_write([stmt], session, f"income statements for {symbol}")
        return len(rows)

    async def get_income_statements(self, symbol: str, limit: int = 8) -> list[IncomeStatementPeriod]:
        symbol = normalize_symbol(symbol)
        async with self._db.session() as session:
            result = await session.execute(
                select(IncomeStatement)
                .where(IncomeStatement.symbol == symbol)
                .order_by(IncomeStatement.fiscal_date_ending.desc())
                .limit(limit)
            )
            return [
                IncomeStatementPeriod(
                    symbol=row.symbol,
                    fiscal_date_ending=row.fiscal_date_ending,
                    **{k: getattr(row, k) for k in _STATEMENT_FIELDS},
                )
                for row in result.scalars()
            ]

    # ── internals ─────────────────────────────────────────────────────

    async def _upsert_ohlcv(
        self, model: type, key: str, rows: list[dict], session: AsyncSession | None, what: str
    ) -> None:
        stmts = []
        for start in range(0, len(rows), _CHUNK_ROWS):
            stmt = insert(model).values(rows[start : start + _CHUNK_ROWS])
            stmts.append(
                stmt.on_conflict_do_update(
                    index_elements=["symbol", key],
                    set_={k: getattr(stmt.excluded, k) for k in _OHLCV_FIELDS},
                )
            )
        await self._execute_write(stmts, session, what)

    async def _execute_write(self, stmts: list, session: AsyncSession | None, what: str) -> None:
        try:
            async with self._write_scope(session) as s:
                for stmt in stmts:
                    await s.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error("[store] write failed for %s: %s", what, exc)
            raise StoreWriteError(f"failed to write {what}: {exc}") from exc


def _ohlcv(bar: PriceBar | IntradayBar) -> dict:
    return {
        "open": bar.open,
        "high": bar.high,
        "low": bar.low,
        "close": bar.close,
        "volume": bar.volume,
        "created_at": utc_now(),
    }


def _on_day(day: date) -> tuple:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return IntradayPrice.timestamp >= start, IntradayPrice.timestamp < start + timedelta(days=1)
