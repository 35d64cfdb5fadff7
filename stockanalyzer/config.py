"""Centralized configuration via pydantic-settings, loaded from .env."""

from __future__ import annotations

import functools

from pydantic_settings import BaseSettings, SettingsConfigDict

from stockanalyzer.marketdata.base import UpdateType


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Infrastructure ─────────────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///./stock-data.db"
    database_busy_timeout_seconds: float = 30.0
    redis_url: str = ""  # empty disables stock-updated event publishing

    # ── Providers ──────────────────────────────────────────────────────
    alpha_vantage_api_key: str = ""
    alpha_vantage_base_url: str = "https://www.alphavantage.co/query"
    finnhub_api_key: str = ""
    finnhub_base_url: str = "https://finnhub.io/api/v1"
    provider_order: list[str] = ["finnhub", "alpha_vantage"]
    provider_timeout_seconds: float = 15.0
    history_years: int = 5

    # ── Rate limits (free-tier defaults) ───────────────────────────────
    alpha_vantage_daily_limit: int = 25
    alpha_vantage_minute_limit: int = 5
    finnhub_daily_limit: int = 10000
    finnhub_minute_limit: int = 60

    # ── Update scheduling ──────────────────────────────────────────────
    update_tick_seconds: float = 15.0
    max_retries: int = 3
    max_consecutive_failures: int = 3
    refill_batch_size: int = 20
    daily_max_age_hours: float = 24.0
    overview_max_age_hours: float = 168.0
    financials_max_age_hours: float = 720.0

    # ── Client defaults ────────────────────────────────────────────────
    default_symbol: str = "AAPL"
    fibonacci_levels: list[float] = [0.0, 0.236, 0.382, 0.5, 0.618, 0.786, 1.0]

    # ── API Server ────────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 7070
    cors_origins: list[str] = ["*"]

    log_level: str = "INFO"

    # ── Computed helpers ───────────────────────────────────────────────
    @property
    def async_database_url(self) -> str:
        """Return the database URL, ensuring the aiosqlite driver."""
        url = self.database_url
        if url.startswith("sqlite://"):
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url

    @property
    def provider_limits(self) -> dict[str, tuple[int, int]]:
        """(daily_limit, minute_limit) per provider name."""
        return {
            "alpha_vantage": (self.alpha_vantage_daily_limit, self.alpha_vantage_minute_limit),
            "finnhub": (self.finnhub_daily_limit, self.finnhub_minute_limit),
        }

    def max_age_hours(self, update_type: UpdateType | str) -> float:
        return {
            UpdateType.DAILY: self.daily_max_age_hours,
            UpdateType.OVERVIEW: self.overview_max_age_hours,
            UpdateType.FINANCIALS: self.financials_max_age_hours,
        }[UpdateType(update_type)]


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton accessor for the global settings."""
    return Settings()
