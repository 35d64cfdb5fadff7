"""Market data gateway with quota-gated, ordered provider fallback.

Providers are attempted strictly in configured order. Each attempt first
reserves a quota slot; a reserved slot stays consumed whatever the outcome.
Only ``AllProvidersExhausted`` escapes ``fetch``; per-provider failures are
logged and recorded in the fallback chain.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Awaitable, Callable, Sequence

from stockanalyzer.errors import (
    AllProvidersExhausted,
    ProviderError,
    UpstreamRateLimitNotice,
    UpstreamShapeError,
)
from stockanalyzer.marketdata.alpha_vantage import AlphaVantageProvider
from stockanalyzer.marketdata.base import FetchResult, IntradayFetch, Provider, UpdateType
from stockanalyzer.marketdata.finnhub import FinnhubProvider
from stockanalyzer.marketdata.quota import QuotaTracker

logger = logging.getLogger(__name__)


class MarketDataGateway:
    def __init__(self, providers: Sequence[Provider], quota: QuotaTracker) -> None:
        self._providers = list(providers)
        self._quota = quota

    @property
    def providers(self) -> list[Provider]:
        return list(self._providers)

    @property
    def enabled_providers(self) -> list[str]:
        return [p.name for p in self._providers if p.enabled]

    async def close(self) -> None:
        for provider in self._providers:
            await provider.close()

    async def has_headroom(self) -> bool:
        """True when at least one enabled provider could take a call now."""
        enabled = self.enabled_providers
        if not enabled:
            return False
        return await self._quota.has_headroom(enabled)

    async def fetch(self, update_type: UpdateType | str, symbol: str) -> FetchResult:
        update_type = UpdateType(update_type)
        provider, data, chain = await self._first_success(
            update_type.value, symbol, lambda p: p.fetch(update_type, symbol)
        )
        return FetchResult(
            update_type=update_type,
            symbol=symbol,
            provider=provider,
            data=data,
            attempts=chain,
        )

    async def fetch_intraday(self, symbol: str, day: date) -> IntradayFetch:
        """Five-minute bars for one day, same quota gate and fallback order."""
        provider, bars, chain = await self._first_success(
            "intraday", symbol, lambda p: p.fetch_intraday_day(symbol, day)
        )
        return IntradayFetch(symbol=symbol, day=day, provider=provider, bars=bars, attempts=chain)

    async def _first_success(
        self, what: str, symbol: str, call: Callable[[Provider], Awaitable[Any]]
    ) -> tuple[str, Any, list[str]]:
        fallback_chain: list[str] = []
        last_error: ProviderError | None = None

        for provider in self._providers:
            if not provider.enabled:
                logger.debug("[gateway] %s disabled (no API key), skipping", provider.name)
                fallback_chain.append(f"{provider.name}:disabled")
                continue

            if not await self._quota.try_acquire(provider.name):
                logger.info("[gateway] %s quota exhausted, skipping %s %s", provider.name, what, symbol)
                fallback_chain.append(f"{provider.name}:quota_exceeded")
                continue

            try:
                data = await call(provider)
            except UpstreamRateLimitNotice as exc:
                await self._quota.mark_exhausted(provider.name, daily=exc.daily)
                fallback_chain.append(f"{provider.name}:{exc.code.lower()}")
                last_error = exc
                logger.warning("[gateway] %s rate limited: %s", provider.name, exc.message)
                continue
            except UpstreamShapeError as exc:
                fallback_chain.append(f"{provider.name}:{exc.code.lower()}")
                last_error = exc
                logger.warning(
                    "[gateway] %s returned an unexpected shape for %s %s (API contract change?): %s",
                    provider.name,
                    what,
                    symbol,
                    exc.message,
                )
                continue
            except ProviderError as exc:
                fallback_chain.append(f"{provider.name}:{exc.code.lower()}")
                last_error = exc
                logger.warning("[gateway] %s failed (%s): %s", provider.name, exc.code, exc.message)
                continue

            fallback_chain.append(f"{provider.name}:ok")
            logger.info("[gateway] %s %s served by %s", what, symbol, provider.name)
            return provider.name, data, fallback_chain

        raise AllProvidersExhausted(what, symbol, fallback_chain, last_error)


def build_providers(settings) -> list[Provider]:  # noqa: ANN001
    """Instantiate adapters in ``settings.provider_order``."""
    factories = {
        "alpha_vantage": lambda: AlphaVantageProvider(
            settings.alpha_vantage_api_key,
            base_url=settings.alpha_vantage_base_url,
            timeout=settings.provider_timeout_seconds,
            history_years=settings.history_years,
        ),
        "finnhub": lambda: FinnhubProvider(
            settings.finnhub_api_key,
            base_url=settings.finnhub_base_url,
            timeout=settings.provider_timeout_seconds,
            history_years=settings.history_years,
        ),
    }
    providers: list[Provider] = []
    for name in settings.provider_order:
        factory = factories.get(name)
        if factory is None:
            raise ValueError(f"unknown provider in provider_order: {name}")
        providers.append(factory())
    return providers
