"""Process-wide wiring of the store, quota, gateway, tracker, queue and worker."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from stockanalyzer.config import Settings
from stockanalyzer.db.database import Database
from stockanalyzer.db.store import Store
from stockanalyzer.events import UpdateNotifier
from stockanalyzer.marketdata.base import Provider
from stockanalyzer.marketdata.gateway import MarketDataGateway, build_providers
from stockanalyzer.marketdata.quota import QuotaTracker
from stockanalyzer.updates.queue import UpdateQueue
from stockanalyzer.updates.service import UpdateService
from stockanalyzer.updates.tracker import MAX_PRIORITY, UpdateTracker
from stockanalyzer.workers.update_worker import UpdateWorker

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    database: Database
    store: Store
    quota: QuotaTracker
    gateway: MarketDataGateway
    tracker: UpdateTracker
    queue: UpdateQueue
    notifier: UpdateNotifier
    updates: UpdateService
    worker: UpdateWorker

    async def close(self) -> None:
        await self.gateway.close()
        await self.notifier.close()
        await self.database.dispose()


async def build_services(
    settings: Settings,
    *,
    providers: Sequence[Provider] | None = None,
    notifier: UpdateNotifier | None = None,
) -> Services:
    """Create tables, seed quotas and wire every component once."""
    database = Database.from_settings(settings)
    await database.init_db()

    quota = QuotaTracker(database, settings.provider_limits)
    await quota.seed()

    gateway = MarketDataGateway(providers if providers is not None else build_providers(settings), quota)
    store = Store(database)
    tracker = UpdateTracker(database, max_failures=settings.max_consecutive_failures)
    queue = UpdateQueue(max_retries=settings.max_retries, lowest_priority=MAX_PRIORITY)
    notifier = notifier or UpdateNotifier.from_url(settings.redis_url)
    updates = UpdateService(store, tracker, gateway, notifier)
    worker = UpdateWorker(updates, queue, tracker, gateway, settings)

    enabled = gateway.enabled_providers
    if not enabled:
        logger.warning("No market data provider has an API key; updates will fail until one is configured")
    else:
        logger.info("Market data providers enabled: %s", ", ".join(enabled))

    return Services(
        settings=settings,
        database=database,
        store=store,
        quota=quota,
        gateway=gateway,
        tracker=tracker,
        queue=queue,
        notifier=notifier,
        updates=updates,
        worker=worker,
    )
