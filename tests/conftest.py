from __future__ import annotations

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from helpers import FakeClock
from stockanalyzer.db.database import Database


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 14, 30, tzinfo=timezone.utc))


@pytest_asyncio.fixture
async def database(tmp_path):  # noqa: ANN001
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'stock-data.db'}")
    await db.init_db()
    yield db
    await db.dispose()
