from __future__ import annotations

from datetime import date

import pytest
import pytest_asyncio

from helpers import ScriptedProvider, make_bars, make_intraday
from stockanalyzer.db.store import Store
from stockanalyzer.errors import AllProvidersExhausted, StoreWriteError, TransportError
from stockanalyzer.marketdata.base import FundamentalsSnapshot, PriceBar, UpdateType
from stockanalyzer.marketdata.gateway import MarketDataGateway
from stockanalyzer.marketdata.quota import QuotaTracker
from stockanalyzer.updates.service import UpdateService
from stockanalyzer.updates.tracker import UpdateTracker


class RecordingNotifier:
    def __init__(self) -> None:
        self.published: list = []

    async def publish_stock_updated(self, result) -> None:  # noqa: ANN001
        self.published.append(result)


@pytest_asyncio.fixture
async def parts(database, clock):  # noqa: ANN001
    quota = QuotaTracker(database, {"finnhub": (10000, 60)}, clock=clock)
    await quota.seed()
    provider = ScriptedProvider("finnhub")
    notifier = RecordingNotifier()
    store = Store(database)
    tracker = UpdateTracker(database, clock=clock)
    service = UpdateService(store, tracker, MarketDataGateway([provider], quota), notifier)
    return service, provider, store, tracker, notifier


@pytest.mark.asyncio
async def test_execute_writes_rows_and_stamps_success(parts) -> None:  # noqa: ANN001
    service, provider, store, tracker, notifier = parts
    await tracker.register_symbol("AAPL")
    provider.outcomes.append(make_bars("AAPL", 4))

    result = await service.execute("aapl", "daily")

    assert (result.symbol, result.update_type, result.provider, result.rows) == ("AAPL", UpdateType.DAILY, "finnhub", 4)
    assert len(await store.get_price_bars("AAPL")) == 4
    status = await tracker.get_status("AAPL")
    assert status["last_daily_update"] is not None
    assert status["failure_count"] == 0
    assert notifier.published == [result]


@pytest.mark.asyncio
async def test_overview_is_stored_under_requested_symbol(parts) -> None:  # noqa: ANN001
    service, provider, store, tracker, _ = parts
    provider.outcomes.append(FundamentalsSnapshot(symbol="BRK.B", name="Berkshire", market_cap=8.9e11, source="finnhub"))

    await service.execute("BRK-B", UpdateType.OVERVIEW)

    snap = await store.get_fundamentals("BRK-B")
    assert snap.name == "Berkshire"
    assert (await tracker.get_status("BRK-B"))["last_overview_update"] is not None


@pytest.mark.asyncio
async def test_exhausted_stamps_failure_and_reraises(parts) -> None:  # noqa: ANN001
    service, provider, store, tracker, notifier = parts
    await tracker.register_symbol("AAPL")
    provider.outcomes.append(TransportError("finnhub", "timeout"))

    with pytest.raises(AllProvidersExhausted):
        await service.execute("AAPL", "daily")

    status = await tracker.get_status("AAPL")
    assert status["failure_count"] == 1
    assert "All providers failed" in status["last_error"]
    assert status["last_daily_update"] is None
    assert notifier.published == []


@pytest.mark.asyncio
async def test_store_failure_is_never_stamped_success(parts) -> None:  # noqa: ANN001
    service, provider, store, tracker, notifier = parts
    await tracker.register_symbol("AAPL")
    broken = PriceBar(symbol="AAPL", date=date(2024, 6, 3), open=None, high=1.0, low=1.0, close=1.0, volume=0)
    provider.outcomes.append(make_bars("AAPL", 2) + [broken])

    with pytest.raises(StoreWriteError):
        await service.execute("AAPL", "daily")

    status = await tracker.get_status("AAPL")
    assert status["last_daily_update"] is None
    assert status["failure_count"] == 1
    assert await store.get_price_bars("AAPL") == []
    assert notifier.published == []


@pytest.mark.asyncio
async def test_update_now_registers_unknown_symbol_urgently(parts) -> None:  # noqa: ANN001
    service, provider, _, tracker, _ = parts
    provider.outcomes.append(make_bars("NVDA", 1))

    result = await service.update_now("nvda", "daily")

    assert result.rows == 1
    status = await tracker.get_status("NVDA")
    assert status["priority"] == 1
    assert status["last_daily_update"] is not None


@pytest.mark.asyncio
async def test_quota_deferrals_do_not_trip_the_breaker(database, clock) -> None:  # noqa: ANN001
    quota = QuotaTracker(database, {"finnhub": (10000, 60)}, clock=clock)
    await quota.seed()
    await quota.mark_exhausted("finnhub", daily=True)
    provider = ScriptedProvider("finnhub", make_bars("AAPL", 2))
    tracker = UpdateTracker(database, max_failures=3, clock=clock)
    service = UpdateService(Store(database), tracker, MarketDataGateway([provider], quota))

    for _ in range(3):
        with pytest.raises(AllProvidersExhausted):
            await service.update_now("AAPL", "daily")

    assert provider.calls == []
    assert (await tracker.get_status("AAPL"))["failure_count"] == 0

    clock.advance(days=1)
    assert await tracker.find_symbols_needing_update(UpdateType.DAILY, 24, 10) == ["AAPL"]
    result = await service.execute("AAPL", "daily")
    assert result.rows == 2


@pytest.mark.asyncio
async def test_load_intraday_fetches_once_then_serves_cache(parts) -> None:  # noqa: ANN001
    service, provider, store, tracker, _ = parts
    day = date(2026, 3, 2)
    provider.outcomes.append(make_intraday("aapl", day, 6))

    bars, source = await service.load_intraday("aapl", day)
    again, source_again = await service.load_intraday("AAPL", day)

    assert source == "finnhub"
    assert source_again == "cache"
    assert len(bars) == len(again) == 6
    assert [b.symbol for b in again] == ["AAPL"] * 6
    assert provider.calls == [("intraday", "AAPL")]
    assert await tracker.get_status("AAPL") is None


@pytest.mark.asyncio
async def test_load_intraday_exhaustion_is_not_a_tracker_failure(parts) -> None:  # noqa: ANN001
    service, provider, store, tracker, _ = parts
    await tracker.register_symbol("AAPL")
    provider.outcomes.append(TransportError("finnhub", "timeout"))

    with pytest.raises(AllProvidersExhausted):
        await service.load_intraday("AAPL", date(2026, 3, 2))

    assert (await tracker.get_status("AAPL"))["failure_count"] == 0
    assert await store.has_intraday_data("AAPL", date(2026, 3, 2)) is False
