"""CLI: print provider quota state (calls used, remaining, window resets)."""

from __future__ import annotations

import asyncio
import json

from stockanalyzer.config import get_settings
from stockanalyzer.db.database import Database
from stockanalyzer.marketdata.quota import QuotaTracker


async def _amain() -> None:
    settings = get_settings()
    db = Database.from_settings(settings)
    try:
        await db.init_db()
        quota = QuotaTracker(db, settings.provider_limits)
        await quota.seed()
        print(json.dumps(await quota.status(), indent=2, default=str))
    finally:
        await db.dispose()


if __name__ == "__main__":
    asyncio.run(_amain())
