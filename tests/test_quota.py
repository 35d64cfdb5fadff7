from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from stockanalyzer.db.models import ProviderQuota
from stockanalyzer.marketdata.quota import QuotaTracker, next_utc_midnight


async def _row(database, provider: str) -> ProviderQuota:  # noqa: ANN001
    async with database.session() as session:
        return await session.get(ProviderQuota, provider)


def test_next_utc_midnight() -> None:
    now = datetime(2026, 3, 2, 23, 59, 59, tzinfo=timezone.utc)
    assert next_utc_midnight(now) == datetime(2026, 3, 3, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_seed_sets_window_boundaries(database, clock) -> None:  # noqa: ANN001
    quota = QuotaTracker(database, {"alpha_vantage": (25, 5)}, clock=clock)
    await quota.seed()

    row = await _row(database, "alpha_vantage")
    assert row.calls_today == 0
    assert row.daily_reset_at == datetime(2026, 3, 3, tzinfo=timezone.utc)
    assert (row.minute_reset_at - clock.now).total_seconds() == 60


@pytest.mark.asyncio
async def test_minute_window_blocks_then_resets(database, clock) -> None:  # noqa: ANN001
    quota = QuotaTracker(database, {"alpha_vantage": (25, 5)}, clock=clock)
    await quota.seed()

    results = [await quota.try_acquire("alpha_vantage") for _ in range(6)]
    assert results == [True] * 5 + [False]
    assert await quota.can_call("alpha_vantage") is False

    clock.advance(seconds=61)
    assert await quota.can_call("alpha_vantage") is True
    row = await _row(database, "alpha_vantage")
    assert row.calls_this_minute == 0
    assert row.calls_today == 5


@pytest.mark.asyncio
async def test_daily_limit_survives_minute_reset(database, clock) -> None:  # noqa: ANN001
    quota = QuotaTracker(database, {"alpha_vantage": (3, 5)}, clock=clock)
    await quota.seed()

    for _ in range(3):
        assert await quota.try_acquire("alpha_vantage")
    clock.advance(minutes=5)
    assert await quota.try_acquire("alpha_vantage") is False

    clock.advance(hours=10)  # past 00:00 UTC
    assert await quota.try_acquire("alpha_vantage") is True


@pytest.mark.asyncio
async def test_reset_advances_by_whole_windows(database, clock) -> None:  # noqa: ANN001
    quota = QuotaTracker(database, {"finnhub": (10000, 60)}, clock=clock)
    await quota.seed()
    await quota.record_call("finnhub")

    clock.advance(days=3, hours=1)
    await quota.reset_if_window_elapsed("finnhub")

    row = await _row(database, "finnhub")
    assert row.calls_today == 0
    assert row.daily_reset_at == datetime(2026, 3, 6, tzinfo=timezone.utc)
    assert row.minute_reset_at > clock.now
    assert (row.minute_reset_at - clock.now).total_seconds() <= 60


@pytest.mark.asyncio
async def test_record_call_counts_unconditionally(database, clock) -> None:  # noqa: ANN001
    quota = QuotaTracker(database, {"alpha_vantage": (25, 1)}, clock=clock)
    await quota.seed()
    await quota.record_call("alpha_vantage")
    await quota.record_call("alpha_vantage")

    row = await _row(database, "alpha_vantage")
    assert row.calls_this_minute == 2
    assert row.last_call_at == clock.now


@pytest.mark.asyncio
async def test_mark_exhausted_minute_and_daily(database, clock) -> None:  # noqa: ANN001
    quota = QuotaTracker(database, {"alpha_vantage": (25, 5), "finnhub": (10000, 60)}, clock=clock)
    await quota.seed()

    await quota.mark_exhausted("finnhub")
    await quota.mark_exhausted("alpha_vantage", daily=True)
    assert await quota.has_headroom() is False

    clock.advance(seconds=61)
    assert await quota.can_call("finnhub") is True
    assert await quota.can_call("alpha_vantage") is False
    assert await quota.has_headroom(["alpha_vantage"]) is False


@pytest.mark.asyncio
async def test_concurrent_acquires_never_exceed_limit(database, clock) -> None:  # noqa: ANN001
    quota = QuotaTracker(database, {"alpha_vantage": (25, 5)}, clock=clock)
    await quota.seed()

    results = await asyncio.gather(*(quota.try_acquire("alpha_vantage") for _ in range(12)))
    assert sum(results) == 5


@pytest.mark.asyncio
async def test_seed_overwrites_limits_and_keeps_counters(database, clock) -> None:  # noqa: ANN001
    first = QuotaTracker(database, {"alpha_vantage": (25, 5)}, clock=clock)
    await first.seed()
    await first.record_call("alpha_vantage")

    second = QuotaTracker(database, {"alpha_vantage": (500, 75)}, clock=clock)
    await second.seed()
    row = await _row(database, "alpha_vantage")
    assert (row.daily_limit, row.minute_limit) == (500, 75)
    assert row.calls_today == 1


@pytest.mark.asyncio
async def test_unknown_provider_raises(database, clock) -> None:  # noqa: ANN001
    quota = QuotaTracker(database, {"alpha_vantage": (25, 5)}, clock=clock)
    with pytest.raises(ValueError, match="unknown provider"):
        await quota.can_call("polygon")


@pytest.mark.asyncio
async def test_status_reports_remaining_and_resets(database, clock) -> None:  # noqa: ANN001
    quota = QuotaTracker(database, {"alpha_vantage": (25, 5)}, clock=clock)
    await quota.seed()
    await quota.try_acquire("alpha_vantage")

    [status] = await quota.status()
    assert status["provider"] == "alpha_vantage"
    assert status["daily_remaining"] == 24
    assert status["minute_remaining"] == 4
    assert status["daily_reset_in_seconds"] == 9 * 3600 + 30 * 60
    assert status["minute_reset_in_seconds"] == 60
    assert status["can_call"] is True
