"""Notification requests raised by the usage monitor.

Delivery (templates, SMS, email) belongs to the notification system; this
layer only publishes a request describing what happened.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Protocol

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class NotificationRequester(Protocol):
    async def request(self, client_id, kind: str, data: dict) -> None: ...


class LoggingNotificationRequester:
    async def request(self, client_id, kind: str, data: dict) -> None:
        logger.info("Notification requested for client %s: %s %s", client_id, kind, data)


class RedisNotificationPublisher:
    """Appends notification requests to a Redis stream."""

    def __init__(self, redis_url: str, stream: str, maxlen: int = 10000):
        self.redis_url = redis_url
        self.stream = stream
        self.maxlen = maxlen
        self._redis: redis.Redis | None = None

    async def _client(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    async def request(self, client_id, kind: str, data: dict) -> None:
        client = await self._client()
        await client.xadd(
            self.stream,
            {
                "client_id": str(client_id),
                "kind": kind,
                "data": json.dumps(data, default=str),
                "requested_at": datetime.now(timezone.utc).isoformat(),
            },
            maxlen=self.maxlen,
            approximate=True,
        )
        logger.debug("Published %s notification request for client %s", kind, client_id)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.close()
            self._redis = None
