from __future__ import annotations

import json
from types import SimpleNamespace

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from stockanalyzer.config import Settings
from stockanalyzer.events import CHANNEL, UpdateNotifier
from stockanalyzer.marketdata.base import UpdateType, safe_float
from stockanalyzer.utils import normalize_symbol


class FakeRedis:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.published: list[tuple[str, str]] = []

    async def publish(self, channel: str, message: str) -> int:
        if self.fail:
            raise RedisConnectionError("connection refused")
        self.published.append((channel, message))
        return 1


RESULT = SimpleNamespace(symbol="AAPL", update_type=UpdateType.DAILY, provider="finnhub", rows=1260)


@pytest.mark.asyncio
async def test_publish_stock_updated_payload() -> None:
    redis = FakeRedis()
    notifier = UpdateNotifier(redis)

    await notifier.publish_stock_updated(RESULT)

    [(channel, message)] = redis.published
    assert channel == CHANNEL == "stockanalyzer:events"
    payload = json.loads(message)
    assert payload["event"] == "stock_updated"
    assert (payload["symbol"], payload["update_type"], payload["provider"], payload["rows"]) == (
        "AAPL",
        "daily",
        "finnhub",
        1260,
    )
    assert payload["at"]


@pytest.mark.asyncio
async def test_publish_without_redis_only_logs() -> None:
    notifier = UpdateNotifier.from_url("")
    assert notifier.enabled is False
    payload = await notifier.publish_stock_updated(RESULT)
    assert payload["symbol"] == "AAPL"


@pytest.mark.asyncio
async def test_publish_failure_does_not_raise() -> None:
    payload = await UpdateNotifier(FakeRedis(fail=True)).publish_stock_updated(RESULT)
    assert payload["provider"] == "finnhub"


def test_settings_defaults_and_helpers() -> None:
    settings = Settings(database_url="sqlite:///./x.db", _env_file=None)
    assert settings.async_database_url == "sqlite+aiosqlite:///./x.db"
    assert settings.provider_limits["alpha_vantage"] == (settings.alpha_vantage_daily_limit, settings.alpha_vantage_minute_limit)
    assert settings.max_age_hours(UpdateType.OVERVIEW) == settings.overview_max_age_hours
    assert settings.max_age_hours("financials") == settings.financials_max_age_hours
    with pytest.raises(ValueError):
        settings.max_age_hours("intraday")


def test_normalize_symbol() -> None:
    assert normalize_symbol(" $aapl ") == "AAPL"
    with pytest.raises(ValueError):
        normalize_symbol("  ")


@pytest.mark.parametrize("raw", [None, "", "None", "-", "N/A", "abc"])
def test_safe_float_placeholders(raw) -> None:  # noqa: ANN001
    assert safe_float(raw) is None


def test_safe_float_numbers() -> None:
    assert safe_float("6.08") == 6.08
    assert safe_float(3) == 3.0
