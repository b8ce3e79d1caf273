"""Redis cache backend shared across processes."""

import logging
from typing import Any

import redis

from defi_portfolio_tracker.cache.base import BaseCache

logger = logging.getLogger(__name__)


class RedisCache(BaseCache):
    """
    Cache stored in Redis; entries survive process restarts.

    Expiry is delegated to Redis (``SET ... PX``). Connection errors at run
    time degrade to cache misses rather than failing the caller.

    Parameters
    ----------
    client : redis.Redis
        Connected client
    prefix : str
        Prefix applied to every key
    default_ttl : float
        Default time-to-live in seconds

    """

    def __init__(self, client: Any, prefix: str = "defi-portfolio:", default_ttl: float = 300) -> None:
        super().__init__(default_ttl)
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(
        cls,
        url: str,
        prefix: str = "defi-portfolio:",
        default_ttl: float = 300,
        socket_timeout: float = 2.0,
    ) -> "RedisCache":
        """Create a cache from a ``redis://`` URL without connecting yet."""
        client = redis.Redis.from_url(url, socket_timeout=socket_timeout, socket_connect_timeout=socket_timeout)
        return cls(client, prefix=prefix, default_ttl=default_ttl)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def ping(self) -> bool:
        """Check connectivity; raises ``redis.RedisError`` when unreachable."""
        return bool(self._client.ping())

    def _read(self, key: str) -> bytes | None:
        try:
            raw = self._client.get(self._key(key))
        except redis.RedisError as e:
            logger.warning("Redis get failed for %s: %s", key, e)
            return None
        if raw is None:
            return None
        return raw.encode() if isinstance(raw, str) else raw

    def _write(self, key: str, payload: bytes, ttl: float) -> None:
        try:
            self._client.set(self._key(key), payload, px=max(int(ttl * 1000), 1))
        except redis.RedisError as e:
            logger.warning("Redis set failed for %s: %s", key, e)

    def _delete(self, key: str) -> None:
        try:
            self._client.delete(self._key(key))
        except redis.RedisError as e:
            logger.warning("Redis delete failed for %s: %s", key, e)

    def _contains(self, key: str) -> bool:
        try:
            return bool(self._client.exists(self._key(key)))
        except redis.RedisError as e:
            logger.warning("Redis exists failed for %s: %s", key, e)
            return False

    def close(self) -> None:
        """Close the Redis connection pool."""
        self._client.close()
