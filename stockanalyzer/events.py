"""Stock-updated notifications over Redis pub/sub."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncGenerator

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from stockanalyzer.utils import utc_now

logger = logging.getLogger(__name__)

CHANNEL = "stockanalyzer:events"


class UpdateNotifier:
    """Publishes ``stock_updated`` events; without Redis it only logs them."""

    def __init__(self, redis_client: aioredis.Redis | None = None, channel: str = CHANNEL) -> None:
        self._redis = redis_client
        self.channel = channel

    @classmethod
    def from_url(cls, redis_url: str) -> UpdateNotifier:
        if not redis_url:
            return cls(None)
        return cls(aioredis.from_url(redis_url, decode_responses=True))

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()

    async def publish_stock_updated(self, result: Any) -> dict[str, Any]:
        payload = {
            "event": "stock_updated",
            "symbol": result.symbol,
            "update_type": getattr(result.update_type, "value", result.update_type),
            "provider": result.provider,
            "rows": result.rows,
            "at": utc_now().isoformat(),
        }
        if self._redis is None:
            logger.info("[events] %s %s updated via %s", payload["symbol"], payload["update_type"], payload["provider"])
            return payload
        try:
            await self._redis.publish(self.channel, json.dumps(payload))
        except RedisError as exc:
            # Rows are already committed at this point.
            logger.warning("[events] publish failed for %s: %s", payload["symbol"], exc)
        return payload

    async def subscribe(self) -> AsyncGenerator[str, None]:
        """Yield raw JSON payloads published on the channel."""
        if self._redis is None:
            raise RuntimeError("event streaming requires redis_url")
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self.channel)
        try:
            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message and message.get("data"):
                    data = message["data"]
                    yield data.decode("utf-8") if isinstance(data, bytes) else data
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()
