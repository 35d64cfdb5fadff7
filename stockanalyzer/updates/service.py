"""One update attempt end to end: gateway -> store + tracker -> notification."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from stockanalyzer.db.store import Store
from stockanalyzer.errors import AllProvidersExhausted, StoreWriteError
from stockanalyzer.events import UpdateNotifier
from stockanalyzer.marketdata.base import FetchResult, IntradayBar, UpdateType
from stockanalyzer.marketdata.gateway import MarketDataGateway
from stockanalyzer.updates.tracker import UpdateTracker
from stockanalyzer.utils import normalize_symbol

logger = logging.getLogger(__name__)


@dataclass
class UpdateResult:
    symbol: str
    update_type: UpdateType
    provider: str
    rows: int
    attempts: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "update_type": self.update_type.value,
            "provider": self.provider,
            "rows": self.rows,
            "attempts": list(self.attempts),
        }


class UpdateService:
    def __init__(
        self,
        store: Store,
        tracker: UpdateTracker,
        gateway: MarketDataGateway,
        notifier: UpdateNotifier | None = None,
    ) -> None:
        self._store = store
        self._tracker = tracker
        self._gateway = gateway
        self._notifier = notifier or UpdateNotifier(None)

    async def execute(self, symbol: str, update_type: UpdateType | str) -> UpdateResult:
        """Fetch, persist and stamp one (symbol, update_type).

        Raises ``AllProvidersExhausted`` or ``StoreWriteError`` after recording
        the failure on the tracker; a failed attempt is never stamped as
        a success. A request no provider could take (quota, no key) is
        re-raised without counting against the symbol.
        """
        symbol = normalize_symbol(symbol)
        update_type = UpdateType(update_type)

        try:
            fetched = await self._gateway.fetch(update_type, symbol)
        except AllProvidersExhausted as exc:
            if exc.last_error is None:
                # Nothing was attempted: every provider was out of quota or disabled.
                logger.info("[update] %s %s deferred: %s", symbol, update_type.value, exc)
            else:
                await self._tracker.stamp_failure(symbol, str(exc))
                logger.warning("[update] %s %s failed: %s", symbol, update_type.value, exc)
            raise

        try:
            rows = await self._persist(fetched)
        except StoreWriteError as exc:
            await self._tracker.stamp_failure(symbol, str(exc))
            logger.error("[update] %s %s not stored: %s", symbol, update_type.value, exc)
            raise

        result = UpdateResult(
            symbol=symbol,
            update_type=update_type,
            provider=fetched.provider,
            rows=rows,
            attempts=fetched.attempts,
        )
        logger.info(
            "[update] %s %s: %d rows from %s", symbol, update_type.value, rows, fetched.provider
        )
        await self._notifier.publish_stock_updated(result)
        return result

    async def update_now(self, symbol: str, update_type: UpdateType | str) -> UpdateResult:
        """User-initiated update: bypasses the queue, not the quota gate."""
        symbol = normalize_symbol(symbol)
        if await self._tracker.get_status(symbol) is None:
            await self._tracker.register_symbol(symbol, priority=1)
        return await self.execute(symbol, update_type)

    async def load_intraday(self, symbol: str, day: date) -> tuple[list[IntradayBar], str]:
        """Cached five-minute bars for ``day``, fetched and stored on a miss.

        Returns the bars and where they came from (``cache`` or a provider name).
        """
        symbol = normalize_symbol(symbol)
        if await self._store.has_intraday_data(symbol, day):
            return await self._store.get_intraday_bars(symbol, day), "cache"

        fetched = await self._gateway.fetch_intraday(symbol, day)
        await self._store.upsert_intraday_bars(symbol, fetched.bars)
        logger.info(
            "[update] %s intraday %s: %d bars from %s", symbol, day, len(fetched.bars), fetched.provider
        )
        return await self._store.get_intraday_bars(symbol, day), fetched.provider

    async def _persist(self, fetched: FetchResult) -> int:
        """Write rows and the success stamp in a single transaction."""
        symbol = fetched.symbol
        try:
            async with self._store.database.session() as session:
                if fetched.update_type is UpdateType.DAILY:
                    rows = await self._store.upsert_price_bars(symbol, fetched.data, session=session)
                elif fetched.update_type is UpdateType.OVERVIEW:
                    fetched.data.symbol = symbol
                    rows = await self._store.upsert_fundamentals(fetched.data, session=session)
                else:
                    rows = await self._store.upsert_income_statements(symbol, fetched.data, session=session)
                await self._tracker.stamp_success(symbol, fetched.update_type, session=session)
        except SQLAlchemyError as exc:
            raise StoreWriteError(f"failed to commit {fetched.update_type.value} for {symbol}: {exc}") from exc
        return rows
