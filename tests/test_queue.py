from __future__ import annotations

import pytest

from stockanalyzer.errors import InvalidTransition
from stockanalyzer.marketdata.base import UpdateType
from stockanalyzer.updates.queue import QueueItem, QueueItemState, UpdateQueue


def test_enqueue_dedupes_and_promotes() -> None:
    queue = UpdateQueue()
    first = queue.enqueue("aapl", "daily", 3)
    again = queue.enqueue("AAPL", UpdateType.DAILY, 1)
    queue.enqueue("AAPL", UpdateType.DAILY, 4)

    assert again is first
    assert len(queue) == 1
    assert first.priority == 1


def test_pop_prefers_urgency_then_fifo() -> None:
    queue = UpdateQueue()
    queue.enqueue("MSFT", "daily", 3)
    queue.enqueue("TSLA", "daily", 2)
    queue.enqueue("AAPL", "overview", 2)

    popped = [queue.pop() for _ in range(3)]
    assert [(i.symbol, i.update_type.value) for i in popped] == [
        ("TSLA", "daily"),
        ("AAPL", "overview"),
        ("MSFT", "daily"),
    ]
    assert all(i.state is QueueItemState.IN_FLIGHT for i in popped)
    assert queue.pop() is None


def test_retry_decays_priority_then_drops() -> None:
    queue = UpdateQueue(max_retries=3, lowest_priority=4)
    queue.enqueue("AAPL", "daily", 3)

    item = queue.pop()
    assert queue.fail(item) is True
    assert (item.retry_count, item.priority, item.state) == (1, 4, QueueItemState.PENDING)

    item = queue.pop()
    assert queue.fail(item) is True
    assert (item.retry_count, item.priority) == (2, 4)

    item = queue.pop()
    assert queue.fail(item) is False
    assert item.state is QueueItemState.FAILED_TERMINAL
    assert len(queue) == 0


def test_failed_item_merges_into_pending_duplicate() -> None:
    queue = UpdateQueue()
    queue.enqueue("AAPL", "daily", 3)
    in_flight = queue.pop()
    pending = queue.enqueue("AAPL", "daily", 1)

    assert queue.fail(in_flight) is True
    assert len(queue) == 1
    assert pending.priority == 1
    assert pending.retry_count == 1


def test_complete_removes_item() -> None:
    queue = UpdateQueue()
    queue.enqueue("AAPL", "daily", 2)
    item = queue.pop()
    assert queue.in_flight == 1

    queue.complete(item)
    assert item.state is QueueItemState.SUCCEEDED
    assert queue.in_flight == 0
    assert queue.snapshot() == []


def test_illegal_transitions_raise() -> None:
    item = QueueItem(symbol="AAPL", update_type=UpdateType.DAILY, priority=2)
    with pytest.raises(InvalidTransition):
        item.transition(QueueItemState.SUCCEEDED)

    item.transition(QueueItemState.IN_FLIGHT)
    item.transition(QueueItemState.SUCCEEDED)
    with pytest.raises(InvalidTransition):
        item.transition(QueueItemState.PENDING)


def test_complete_on_pending_item_is_rejected() -> None:
    queue = UpdateQueue()
    item = queue.enqueue("AAPL", "daily", 2)
    with pytest.raises(InvalidTransition):
        queue.complete(item)


def test_snapshot_lists_in_flight_first() -> None:
    queue = UpdateQueue()
    queue.enqueue("AAPL", "daily", 1)
    queue.enqueue("MSFT", "financials", 4)
    queue.pop()

    snap = queue.snapshot()
    assert [(s["symbol"], s["state"]) for s in snap] == [("AAPL", "in_flight"), ("MSFT", "pending")]
