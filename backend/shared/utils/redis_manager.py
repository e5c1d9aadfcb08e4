"""
Redis connection manager for the reconciliation engine.
Provides the async connection pool, the key-value contract the cache tier
relies on (get / put / forget), and the key namespaces shared by every worker.
"""
from __future__ import annotations

from typing import Any, Optional, Protocol

import redis.asyncio as aioredis
from redis.asyncio import Redis

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Key namespaces ──────────────────────────────────────────────────────
LIVE_MATCHES_KEY = "live_matches:{sport}:{league}"
LIVE_MATCHES_STALE_KEY = "live_matches_stale:{sport}:{league}"
PREMATCH_MATCHES_KEY = "prematch_matches:{sport}:{league}"
PREMATCH_MATCHES_STALE_KEY = "prematch_matches_stale:{sport}:{league}"
TEAM_RESOLUTION_KEY = "team_resolution:{provider}:{digest}"
CIRCUIT_BREAKER_KEY = "circuit_breaker:{name}"
PROGRESS_KEY = "reconcile_progress:{task}:{sport}"

UNKNOWN_LEAGUE = "unknown"


def fmt_key(template: str, **kwargs: Any) -> str:
    """Render a key template; a missing league renders as the literal 'unknown'."""
    if "league" in kwargs and kwargs["league"] is None:
        kwargs["league"] = UNKNOWN_LEAGUE
    return template.format(**kwargs)


class KeyValueStore(Protocol):
    """The cache-tier transport contract; last write wins, TTL bounds staleness."""

    async def get(self, key: str) -> Optional[str]: ...

    async def put(self, key: str, value: str, ttl_s: int) -> None: ...

    async def forget(self, key: str) -> None: ...


class RedisManager:
    """Manages the async Redis connection pool and implements KeyValueStore."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._pool: Optional[Redis] = None

    async def connect(self) -> None:
        """Initialize the connection pool."""
        self._pool = aioredis.from_url(
            self._settings.redis_url_str,
            max_connections=self._settings.redis_max_connections,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            socket_keepalive=True,
            retry_on_timeout=True,
        )
        await self._pool.ping()
        logger.info("redis_connected", url=self._settings.redis_url_str)

    async def disconnect(self) -> None:
        """Graceful shutdown."""
        if self._pool:
            await self._pool.aclose()
            logger.info("redis_disconnected")

    @property
    def client(self) -> Redis:
        if self._pool is None:
            raise RuntimeError("RedisManager not connected. Call connect() first.")
        return self._pool

    # ── Key-value contract ──────────────────────────────────────────────
    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def put(self, key: str, value: str, ttl_s: int) -> None:
        await self.client.set(key, value, ex=max(int(ttl_s), 1))

    async def forget(self, key: str) -> None:
        await self.client.delete(key)
