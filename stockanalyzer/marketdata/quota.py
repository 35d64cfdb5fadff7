"""Per-provider call quotas with independent daily and minute windows.

State lives in the ``provider_quota`` table so counters survive restarts.
Every operation runs under one ``asyncio.Lock`` per tracker, which makes
``try_acquire`` an atomic check-and-increment within the process.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, time, timedelta, timezone
from typing import Any, Callable, Iterable, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from stockanalyzer.db.database import Database
from stockanalyzer.db.models import ProviderQuota
from stockanalyzer.utils import time_ago, utc_now

logger = logging.getLogger(__name__)

_DAY = timedelta(days=1)
_MINUTE = timedelta(seconds=60)


def next_utc_midnight(now: datetime) -> datetime:
    tomorrow = (now.astimezone(timezone.utc) + _DAY).date()
    return datetime.combine(tomorrow, time.min, tzinfo=timezone.utc)


def _advance(boundary: datetime, now: datetime, step: timedelta) -> datetime:
    """Move a window boundary forward by whole steps until it lies in the future."""
    if boundary > now:
        return boundary
    missed = (now - boundary) // step + 1
    return boundary + step * missed


class QuotaTracker:
    """Authorizes provider calls against configured daily/minute limits."""

    def __init__(
        self,
        database: Database,
        limits: Mapping[str, tuple[int, int]],
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._db = database
        self._limits = dict(limits)
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def providers(self) -> list[str]:
        return list(self._limits)

    async def seed(self) -> None:
        """Create missing rows; configured limits overwrite stored ones."""
        now = self._clock()
        async with self._lock, self._db.session() as session:
            for provider, (daily_limit, minute_limit) in self._limits.items():
                row = await session.get(ProviderQuota, provider)
                if row is None:
                    session.add(
                        ProviderQuota(
                            provider=provider,
                            calls_today=0,
                            calls_this_minute=0,
                            daily_reset_at=next_utc_midnight(now),
                            minute_reset_at=now + _MINUTE,
                            daily_limit=daily_limit,
                            minute_limit=minute_limit,
                        )
                    )
                    logger.info("[quota] seeded %s (%d/day, %d/min)", provider, daily_limit, minute_limit)
                else:
                    row.daily_limit = daily_limit
                    row.minute_limit = minute_limit

    async def reset_if_window_elapsed(self, provider: str) -> None:
        async with self._lock, self._db.session() as session:
            await self._load(session, provider)

    async def can_call(self, provider: str) -> bool:
        async with self._lock, self._db.session() as session:
            row = await self._load(session, provider)
            return self._has_room(row)

    async def record_call(self, provider: str) -> None:
        async with self._lock, self._db.session() as session:
            row = await self._load(session, provider)
            self._bump(row)

    async def try_acquire(self, provider: str) -> bool:
        """Reserve one call slot if both windows have room."""
        async with self._lock, self._db.session() as session:
            row = await self._load(session, provider)
            if not self._has_room(row):
                logger.debug(
                    "[quota] %s at limit (%d/%d today, %d/%d this minute)",
                    provider,
                    row.calls_today,
                    row.daily_limit,
                    row.calls_this_minute,
                    row.minute_limit,
                )
                return False
            self._bump(row)
            return True

    async def mark_exhausted(self, provider: str, daily: bool = False) -> None:
        """Saturate a window after the upstream reported a rate limit."""
        async with self._lock, self._db.session() as session:
            row = await self._load(session, provider)
            if daily:
                row.calls_today = max(row.calls_today, row.daily_limit)
            else:
                row.calls_this_minute = max(row.calls_this_minute, row.minute_limit)
        logger.warning("[quota] %s marked exhausted (%s window)", provider, "daily" if daily else "minute")

    async def has_headroom(self, providers: Iterable[str] | None = None) -> bool:
        for provider in providers if providers is not None else self._limits:
            if await self.can_call(provider):
                return True
        return False

    async def status(self) -> list[dict[str, Any]]:
        now = self._clock()
        out: list[dict[str, Any]] = []
        async with self._lock, self._db.session() as session:
            for provider in self._limits:
                row = await self._load(session, provider)
                out.append(
                    {
                        "provider": provider,
                        "daily_limit": row.daily_limit,
                        "minute_limit": row.minute_limit,
                        "calls_today": row.calls_today,
                        "calls_this_minute": row.calls_this_minute,
                        "daily_remaining": max(0, row.daily_limit - row.calls_today),
                        "minute_remaining": max(0, row.minute_limit - row.calls_this_minute),
                        "daily_reset_in_seconds": max(0, int((row.daily_reset_at - now).total_seconds())),
                        "minute_reset_in_seconds": max(0, int((row.minute_reset_at - now).total_seconds())),
                        "last_call_at": row.last_call_at.isoformat() if row.last_call_at else None,
                        "last_call_ago": time_ago(row.last_call_at, now) if row.last_call_at else None,
                        "can_call": self._has_room(row),
                    }
                )
        return out

    # ── internals (caller holds the lock) ─────────────────────────────

    async def _load(self, session: AsyncSession, provider: str) -> ProviderQuota:
        if provider not in self._limits:
            raise ValueError(f"unknown provider: {provider}")
        row = await session.get(ProviderQuota, provider)
        if row is None:
            now = self._clock()
            daily_limit, minute_limit = self._limits[provider]
            row = ProviderQuota(
                provider=provider,
                calls_today=0,
                calls_this_minute=0,
                daily_reset_at=next_utc_midnight(now),
                minute_reset_at=now + _MINUTE,
                daily_limit=daily_limit,
                minute_limit=minute_limit,
            )
            session.add(row)
            return row
        self._roll_windows(row)
        return row

    def _roll_windows(self, row: ProviderQuota) -> None:
        now = self._clock()
        if now >= row.daily_reset_at:
            row.calls_today = 0
            row.daily_reset_at = _advance(row.daily_reset_at, now, _DAY)
            logger.info("[quota] %s daily window reset", row.provider)
        if now >= row.minute_reset_at:
            row.calls_this_minute = 0
            row.minute_reset_at = _advance(row.minute_reset_at, now, _MINUTE)

    @staticmethod
    def _has_room(row: ProviderQuota) -> bool:
        return row.calls_today < row.daily_limit and row.calls_this_minute < row.minute_limit

    def _bump(self, row: ProviderQuota) -> None:
        row.calls_today += 1
        row.calls_this_minute += 1
        row.last_call_at = self._clock()
