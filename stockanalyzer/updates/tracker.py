"""Per-symbol update bookkeeping: freshness stamps, priority and failure breaker."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from stockanalyzer.db.database import Database
from stockanalyzer.db.models import UpdateTracking
from stockanalyzer.marketdata.base import UpdateType
from stockanalyzer.utils import normalize_symbol, utc_now

logger = logging.getLogger(__name__)

MIN_PRIORITY = 1
MAX_PRIORITY = 4
DEFAULT_PRIORITY = 3

_STAMP_COLUMNS = {
    UpdateType.DAILY: "last_daily_update",
    UpdateType.OVERVIEW: "last_overview_update",
    UpdateType.FINANCIALS: "last_financials_update",
}


def stamp_column(update_type: UpdateType | str) -> str:
    return _STAMP_COLUMNS[UpdateType(update_type)]


class UpdateTracker:
    """Decides which symbols are due for refresh.

    A symbol whose ``failure_count`` reaches ``max_failures`` drops out of
    automatic scheduling until it is re-registered or updated successfully.
    """

    def __init__(
        self,
        database: Database,
        max_failures: int = 3,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._db = database
        self._max_failures = max_failures
        self._clock = clock

    async def register_symbol(self, symbol: str, priority: int = DEFAULT_PRIORITY) -> dict[str, Any]:
        symbol = normalize_symbol(symbol)
        if not MIN_PRIORITY <= int(priority) <= MAX_PRIORITY:
            raise ValueError(f"priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}")
        now = self._clock()
        async with self._db.session() as session:
            row = await session.get(UpdateTracking, symbol)
            if row is None:
                row = UpdateTracking(symbol=symbol, created_at=now)
                session.add(row)
            row.priority = int(priority)
            row.is_active = True
            row.failure_count = 0
            row.last_error = None
            row.updated_at = now
            logger.info("[tracker] registered %s (priority %d)", symbol, row.priority)
            return self._to_dict(row)

    async def stamp_success(
        self,
        symbol: str,
        update_type: UpdateType | str,
        session: AsyncSession | None = None,
    ) -> None:
        symbol = normalize_symbol(symbol)
        if session is None:
            async with self._db.session() as own:
                await self._stamp_success(own, symbol, update_type)
        else:
            await self._stamp_success(session, symbol, update_type)

    async def _stamp_success(self, session: AsyncSession, symbol: str, update_type: UpdateType | str) -> None:
        now = self._clock()
        row = await session.get(UpdateTracking, symbol)
        if row is None:
            row = UpdateTracking(
                symbol=symbol,
                priority=DEFAULT_PRIORITY,
                is_active=True,
                created_at=now,
            )
            session.add(row)
        setattr(row, stamp_column(update_type), now)
        row.failure_count = 0
        row.last_error = None
        row.updated_at = now

    async def stamp_failure(self, symbol: str, error: str) -> int:
        """Increment the failure counter; returns the new count."""
        symbol = normalize_symbol(symbol)
        now = self._clock()
        async with self._db.session() as session:
            row = await session.get(UpdateTracking, symbol)
            if row is None:
                row = UpdateTracking(
                    symbol=symbol,
                    priority=DEFAULT_PRIORITY,
                    is_active=True,
                    failure_count=0,
                    created_at=now,
                )
                session.add(row)
            row.failure_count = (row.failure_count or 0) + 1
            row.last_error = str(error)[:2000]
            row.updated_at = now
            count = row.failure_count
        if count >= self._max_failures:
            logger.warning("[tracker] %s paused after %d consecutive failures", symbol, count)
        return count

    async def deactivate(self, symbol: str) -> bool:
        symbol = normalize_symbol(symbol)
        async with self._db.session() as session:
            row = await session.get(UpdateTracking, symbol)
            if row is None:
                return False
            row.is_active = False
            row.updated_at = self._clock()
            return True

    async def get_status(self, symbol: str) -> dict[str, Any] | None:
        symbol = normalize_symbol(symbol)
        async with self._db.session() as session:
            row = await session.get(UpdateTracking, symbol)
            return self._to_dict(row) if row is not None else None

    async def get_priority(self, symbol: str) -> int:
        status = await self.get_status(symbol)
        return status["priority"] if status else DEFAULT_PRIORITY

    async def find_symbols_needing_update(
        self,
        update_type: UpdateType | str,
        max_age_hours: float,
        limit: int = 20,
    ) -> list[str]:
        column = getattr(UpdateTracking, stamp_column(update_type))
        cutoff = self._clock() - timedelta(hours=max_age_hours)
        stmt = (
            select(UpdateTracking.symbol)
            .where(
                UpdateTracking.is_active.is_(True),
                UpdateTracking.failure_count < self._max_failures,
                or_(column.is_(None), column < cutoff),
            )
            .order_by(UpdateTracking.priority.asc(), column.asc().nulls_first(), UpdateTracking.symbol.asc())
            .limit(limit)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars())

    @staticmethod
    def _to_dict(row: UpdateTracking) -> dict[str, Any]:
        def iso(dt: datetime | None) -> str | None:
            return dt.isoformat() if dt else None

        return {
            "symbol": row.symbol,
            "priority": row.priority,
            "is_active": row.is_active,
            "failure_count": row.failure_count,
            "last_error": row.last_error,
            "last_daily_update": iso(row.last_daily_update),
            "last_overview_update": iso(row.last_overview_update),
            "last_financials_update": iso(row.last_financials_update),
            "created_at": iso(row.created_at),
            "updated_at": iso(row.updated_at),
        }
