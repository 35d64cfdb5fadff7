from __future__ import annotations

import pytest
import pytest_asyncio

from helpers import ScriptedProvider, make_bars
from stockanalyzer.config import Settings
from stockanalyzer.db.store import Store
from stockanalyzer.errors import UpstreamShapeError
from stockanalyzer.marketdata.base import UpdateType
from stockanalyzer.marketdata.gateway import MarketDataGateway
from stockanalyzer.marketdata.quota import QuotaTracker
from stockanalyzer.updates.queue import UpdateQueue
from stockanalyzer.updates.service import UpdateService
from stockanalyzer.updates.tracker import UpdateTracker
from stockanalyzer.workers.update_worker import UpdateWorker


@pytest_asyncio.fixture
async def rig(database, clock):  # noqa: ANN001
    settings = Settings(update_tick_seconds=0, max_retries=3, refill_batch_size=10, redis_url="")
    quota = QuotaTracker(database, {"finnhub": (10000, 60)}, clock=clock)
    await quota.seed()
    provider = ScriptedProvider("finnhub")
    gateway = MarketDataGateway([provider], quota)
    tracker = UpdateTracker(database, clock=clock)
    queue = UpdateQueue(max_retries=settings.max_retries)
    service = UpdateService(Store(database), tracker, gateway)
    worker = UpdateWorker(service, queue, tracker, gateway, settings)
    return worker, queue, tracker, quota, provider


@pytest.mark.asyncio
async def test_idle_when_nothing_is_stale(rig) -> None:  # noqa: ANN001
    worker, queue, *_ = rig
    assert await worker.tick() == "idle"
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_refills_from_tracker_and_processes_one_item(rig) -> None:  # noqa: ANN001
    worker, queue, tracker, _, provider = rig
    await tracker.register_symbol("AAPL", priority=2)
    provider.outcomes.append(make_bars("AAPL", 5))

    assert await worker.tick() == "succeeded"

    assert provider.calls == [("daily", "AAPL")]
    assert len(queue) == 2  # overview and financials still pending
    assert {item["priority"] for item in queue.snapshot()} == {2}
    assert worker.get_stats()["succeeded"] == 1


@pytest.mark.asyncio
async def test_skips_tick_without_popping_when_quota_is_exhausted(rig) -> None:  # noqa: ANN001
    worker, queue, _, quota, provider = rig
    queue.enqueue("AAPL", UpdateType.DAILY, 1)
    await quota.mark_exhausted("finnhub")

    assert await worker.tick() == "no_quota"
    assert await worker.tick() == "no_quota"

    assert len(queue) == 1
    assert queue.in_flight == 0
    assert provider.calls == []
    assert worker.get_stats()["skipped_no_quota"] == 2


@pytest.mark.asyncio
async def test_failure_requeues_with_decayed_priority(rig) -> None:  # noqa: ANN001
    worker, queue, tracker, _, provider = rig
    queue.enqueue("AAPL", UpdateType.DAILY, 2)
    provider.outcomes.append(UpstreamShapeError("finnhub", "no candles"))

    assert await worker.tick() == "requeued"

    [pending] = queue.snapshot()
    assert (pending["priority"], pending["retry_count"]) == (3, 1)
    assert (await tracker.get_status("AAPL"))["failure_count"] == 1


@pytest.mark.asyncio
async def test_drops_after_max_retries(rig) -> None:  # noqa: ANN001
    worker, queue, _, _, provider = rig
    queue.enqueue("AAPL", UpdateType.DAILY, 4)
    provider.outcomes.extend(UpstreamShapeError("finnhub", "bad") for _ in range(3))

    outcomes = [await worker.tick() for _ in range(3)]

    assert outcomes == ["requeued", "requeued", "dropped"]
    assert len(queue) == 0
    assert worker.get_stats()["dropped"] == 1


@pytest.mark.asyncio
async def test_busy_worker_does_not_start_another_item(rig) -> None:  # noqa: ANN001
    worker, queue, *_ = rig
    queue.enqueue("AAPL", UpdateType.DAILY, 1)
    queue.pop()

    assert await worker.tick() == "busy"


@pytest.mark.asyncio
async def test_run_once_ticks_a_single_time(rig) -> None:  # noqa: ANN001
    worker, *_ = rig
    await worker.run(once=True)
    assert worker.get_stats()["cycles"] == 1


@pytest.mark.asyncio
async def test_unexpected_error_counts_toward_the_breaker(rig, monkeypatch) -> None:  # noqa: ANN001
    worker, queue, tracker, _, _ = rig
    await tracker.register_symbol("AAPL", priority=1)
    queue.enqueue("AAPL", UpdateType.DAILY, 1)

    async def explode(symbol, update_type):  # noqa: ANN001, ANN202
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(worker._service, "execute", explode)

    with pytest.raises(RuntimeError):
        await worker.tick()

    status = await tracker.get_status("AAPL")
    assert status["failure_count"] == 1
    assert "disk on fire" in status["last_error"]
    assert len(queue) == 1
    assert queue.in_flight == 0
    assert worker.get_stats()["failed"] == 1
