"""Error taxonomy for provider calls, fallback, persistence and the update queue."""

from __future__ import annotations


class StockAnalyzerError(Exception):
    """Base class for all stockanalyzer errors."""


# ── Provider-level (caught inside the gateway) ────────────────────────

class ProviderError(StockAnalyzerError):
    """A single provider attempt failed."""

    code = "PROVIDER_ERROR"

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message


class QuotaExceeded(ProviderError):
    """The provider's minute or daily window is exhausted; not a provider fault."""

    code = "QUOTA_EXCEEDED"


class UpstreamShapeError(ProviderError):
    """Response is missing expected fields; may indicate an API contract change."""

    code = "SHAPE_ERROR"


class UpstreamRateLimitNotice(ProviderError):
    """The payload (or HTTP 429) says we are rate limited."""

    code = "RATE_LIMITED"

    def __init__(self, provider: str, message: str, *, daily: bool = False) -> None:
        super().__init__(provider, message)
        self.daily = daily


class UpstreamAuthError(ProviderError):
    """Credentials rejected or endpoint not available on the current plan."""

    code = "AUTH_FAIL"


class TransportError(ProviderError):
    """Network failure, timeout or unexpected HTTP status. Retryable."""

    code = "TRANSPORT_ERROR"


# ── Orchestration / persistence ───────────────────────────────────────

class AllProvidersExhausted(StockAnalyzerError):
    """Every enabled provider was skipped or failed for one request."""

    def __init__(
        self,
        update_type: str,
        symbol: str,
        attempts: list[str],
        last_error: ProviderError | None = None,
    ) -> None:
        self.update_type = update_type
        self.symbol = symbol
        self.attempts = list(attempts)
        self.last_error = last_error
        if last_error is not None:
            cause = str(last_error)
        elif attempts:
            cause = "all providers rate limited or disabled"
        else:
            cause = "no providers configured"
        super().__init__(f"All providers failed for {symbol} ({update_type}). Last error: {cause}")


class StoreWriteError(StockAnalyzerError):
    """A database write failed; the update attempt must not be stamped as a success."""


class InvalidTransition(StockAnalyzerError):
    """A queue item was moved between states the state machine does not allow."""
