"""Short-lived JSON snapshots in Redis.

Only venue-independent market data lives here (recommended fee rates).
Session tokens go to Postgres and are never cached.
"""

from __future__ import annotations

import json
import os
from typing import Any

import redis.asyncio as redis

from runeswap.core.logging import get_logger

log = get_logger(__name__)

DEFAULT_TTL = 300
KEY_PREFIX = "runeswap:"


class RedisCache:
    """StateCache over one lazily created Redis connection.

    Every key is written with an expiry; a value that does not decode as
    JSON is reported as a miss and dropped.
    """

    def __init__(
        self,
        url: str | None = None,
        prefix: str = KEY_PREFIX,
        default_ttl: int = DEFAULT_TTL,
        timeout_seconds: float = 5.0,
    ) -> None:
        self._url = url or os.environ.get("REDIS_URL", "redis://localhost:6379/0")
        self._prefix = prefix
        self._default_ttl = default_ttl
        self._timeout = timeout_seconds
        self._client: redis.Redis | None = None

    def _key(self, key: str) -> str:
        return self._prefix + key

    def _connection(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.Redis.from_url(
                self._url,
                decode_responses=True,
                socket_timeout=self._timeout,
                socket_connect_timeout=self._timeout,
                retry_on_timeout=True,
            )
        return self._client

    async def ping(self) -> bool:
        try:
            return bool(await self._connection().ping())
        except (redis.RedisError, OSError) as exc:
            log.warning("redis_cache.ping_failed", error=str(exc))
            return False

    async def get(self, key: str) -> Any:
        full_key = self._key(key)
        raw = await self._connection().get(full_key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            log.warning("redis_cache.undecodable", key=full_key)
            await self._connection().delete(full_key)
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        expiry = ttl if ttl is not None and ttl > 0 else self._default_ttl
        await self._connection().set(self._key(key), json.dumps(value, default=str), ex=expiry)

    async def delete(self, key: str) -> None:
        await self._connection().delete(self._key(key))

    async def close(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        await client.aclose()
