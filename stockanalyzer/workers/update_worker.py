"""Update scheduler.

Every ``update_tick_seconds`` the worker processes at most one queued update.
When the queue runs dry it refills from the tracker's stale symbols; when no
enabled provider has quota headroom it skips the tick without dequeuing.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from stockanalyzer.config import Settings
from stockanalyzer.errors import StockAnalyzerError
from stockanalyzer.marketdata.base import UpdateType
from stockanalyzer.marketdata.gateway import MarketDataGateway
from stockanalyzer.updates.queue import UpdateQueue
from stockanalyzer.updates.service import UpdateService
from stockanalyzer.updates.tracker import UpdateTracker

logger = logging.getLogger(__name__)


class UpdateWorker:
    """Drains the update queue one item per tick."""

    def __init__(
        self,
        service: UpdateService,
        queue: UpdateQueue,
        tracker: UpdateTracker,
        gateway: MarketDataGateway,
        settings: Settings,
    ) -> None:
        self._service = service
        self._queue = queue
        self._tracker = tracker
        self._gateway = gateway
        self._settings = settings
        self._interval = settings.update_tick_seconds
        self._busy = False
        self._quota_blocked = False

        self.cycles: int = 0
        self.processed: int = 0
        self.succeeded: int = 0
        self.failed: int = 0
        self.dropped: int = 0
        self.skipped_no_quota: int = 0
        self.last_cycle_at: str | None = None

    # ── Tick ──────────────────────────────────────────────────────────

    async def tick(self) -> str:
        """Run one scheduling step; returns what happened."""
        self.cycles += 1
        self.last_cycle_at = datetime.now(timezone.utc).isoformat()

        if self._busy or self._queue.in_flight:
            return "busy"

        if not len(self._queue):
            added = await self.refill()
            if not added:
                return "idle"

        if not await self._gateway.has_headroom():
            self.skipped_no_quota += 1
            if not self._quota_blocked:
                logger.warning("[update-worker] no provider has quota headroom; %d items waiting", len(self._queue))
                self._quota_blocked = True
            return "no_quota"
        self._quota_blocked = False

        item = self._queue.pop()
        if item is None:
            return "idle"

        self._busy = True
        self.processed += 1
        try:
            await self._service.execute(item.symbol, item.update_type)
        except StockAnalyzerError as exc:
            self.failed += 1
            requeued = self._queue.fail(item)
            if not requeued:
                self.dropped += 1
            logger.warning(
                "[update-worker] %s %s failed (retry %d, %s): %s",
                item.symbol,
                item.update_type.value,
                item.retry_count,
                "requeued" if requeued else "dropped",
                exc,
            )
            return "requeued" if requeued else "dropped"
        except Exception as exc:
            self.failed += 1
            if not self._queue.fail(item):
                self.dropped += 1
            await self._tracker.stamp_failure(item.symbol, f"unexpected error: {exc!r}")
            raise
        finally:
            self._busy = False

        self._queue.complete(item)
        self.succeeded += 1
        return "succeeded"

    async def refill(self) -> int:
        """Enqueue stale symbols for every update type; returns how many were added."""
        added = 0
        for update_type in UpdateType:
            symbols = await self._tracker.find_symbols_needing_update(
                update_type,
                self._settings.max_age_hours(update_type),
                self._settings.refill_batch_size,
            )
            for symbol in symbols:
                priority = await self._tracker.get_priority(symbol)
                self._queue.enqueue(symbol, update_type, priority)
                added += 1
        if added:
            logger.info("[update-worker] refilled queue with %d stale updates", added)
        return added

    # ── Main run loop ─────────────────────────────────────────────────

    async def run(self, once: bool = False) -> None:
        logger.info("[update-worker] started (interval=%.0fs)", self._interval)
        while True:
            try:
                outcome = await self.tick()
                logger.debug("[update-worker] tick %d: %s", self.cycles, outcome)
            except Exception:
                logger.error("[update-worker] tick failed", exc_info=True)
            if once:
                return
            await asyncio.sleep(self._interval)

    # ── Stats ─────────────────────────────────────────────────────────

    def get_stats(self) -> dict[str, Any]:
        return {
            "cycles": self.cycles,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "dropped": self.dropped,
            "skipped_no_quota": self.skipped_no_quota,
            "queue_depth": len(self._queue),
            "last_cycle_at": self.last_cycle_at,
            "interval_seconds": self._interval,
        }
