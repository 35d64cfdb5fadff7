"""In-memory priority queue of pending updates with an explicit state machine."""

from __future__ import annotations

import enum
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from stockanalyzer.errors import InvalidTransition
from stockanalyzer.marketdata.base import UpdateType
from stockanalyzer.utils import normalize_symbol, utc_now

logger = logging.getLogger(__name__)


class QueueItemState(str, enum.Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_TERMINAL = "failed_terminal"


_TRANSITIONS: dict[QueueItemState, frozenset[QueueItemState]] = {
    QueueItemState.PENDING: frozenset({QueueItemState.IN_FLIGHT}),
    QueueItemState.IN_FLIGHT: frozenset(
        {QueueItemState.SUCCEEDED, QueueItemState.FAILED_RETRYABLE, QueueItemState.FAILED_TERMINAL}
    ),
    QueueItemState.FAILED_RETRYABLE: frozenset({QueueItemState.PENDING}),
    QueueItemState.SUCCEEDED: frozenset(),
    QueueItemState.FAILED_TERMINAL: frozenset(),
}

_seq = itertools.count()


@dataclass
class QueueItem:
    symbol: str
    update_type: UpdateType
    priority: int
    retry_count: int = 0
    enqueued_at: datetime = field(default_factory=utc_now)
    state: QueueItemState = QueueItemState.PENDING
    seq: int = field(default_factory=lambda: next(_seq))

    @property
    def key(self) -> tuple[str, UpdateType]:
        return (self.symbol, self.update_type)

    def transition(self, new_state: QueueItemState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"{self.symbol}/{self.update_type.value}: {self.state.value} -> {new_state.value}"
            )
        self.state = new_state

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "update_type": self.update_type.value,
            "priority": self.priority,
            "retry_count": self.retry_count,
            "enqueued_at": self.enqueued_at.isoformat(),
            "state": self.state.value,
        }


class UpdateQueue:
    """Pending updates keyed by (symbol, update_type).

    ``pop`` hands out the most urgent item (lowest priority number, then
    earliest enqueue). A failed item is retried with a decayed priority until
    ``max_retries`` attempts have failed.
    """

    def __init__(self, max_retries: int = 3, lowest_priority: int = 4) -> None:
        self.max_retries = max_retries
        self.lowest_priority = lowest_priority
        self._pending: dict[tuple[str, UpdateType], QueueItem] = {}
        self._in_flight: dict[tuple[str, UpdateType], QueueItem] = {}

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def enqueue(self, symbol: str, update_type: UpdateType | str, priority: int = 3) -> QueueItem:
        symbol = normalize_symbol(symbol)
        update_type = UpdateType(update_type)
        key = (symbol, update_type)
        existing = self._pending.get(key)
        if existing is not None:
            if priority < existing.priority:
                existing.priority = priority
            return existing
        item = QueueItem(symbol=symbol, update_type=update_type, priority=priority)
        self._pending[key] = item
        logger.debug("[queue] enqueued %s %s (priority %d)", symbol, update_type.value, priority)
        return item

    def pop(self) -> QueueItem | None:
        if not self._pending:
            return None
        item = min(self._pending.values(), key=lambda i: (i.priority, i.enqueued_at, i.seq))
        del self._pending[item.key]
        item.transition(QueueItemState.IN_FLIGHT)
        self._in_flight[item.key] = item
        return item

    def complete(self, item: QueueItem) -> None:
        item.transition(QueueItemState.SUCCEEDED)
        self._in_flight.pop(item.key, None)

    def fail(self, item: QueueItem) -> bool:
        """Record a failed attempt; returns True when the item was requeued."""
        item.retry_count += 1
        self._in_flight.pop(item.key, None)
        if item.retry_count >= self.max_retries:
            item.transition(QueueItemState.FAILED_TERMINAL)
            logger.warning(
                "[queue] dropping %s %s after %d attempts", item.symbol, item.update_type.value, item.retry_count
            )
            return False

        item.transition(QueueItemState.FAILED_RETRYABLE)
        item.priority = min(item.priority + 1, self.lowest_priority)
        item.transition(QueueItemState.PENDING)
        existing = self._pending.get(item.key)
        if existing is not None:
            existing.priority = min(existing.priority, item.priority)
            existing.retry_count = max(existing.retry_count, item.retry_count)
        else:
            self._pending[item.key] = item
        logger.info(
            "[queue] requeued %s %s (retry %d, priority %d)",
            item.symbol,
            item.update_type.value,
            item.retry_count,
            item.priority,
        )
        return True

    def snapshot(self) -> list[dict[str, Any]]:
        items = sorted(self._pending.values(), key=lambda i: (i.priority, i.enqueued_at, i.seq))
        return [i.to_dict() for i in list(self._in_flight.values()) + items]
