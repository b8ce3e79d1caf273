"""Cache backend selection."""

import logging

import redis

from defi_portfolio_tracker.cache.base import BaseCache
from defi_portfolio_tracker.cache.memory import MemoryCache
from defi_portfolio_tracker.cache.redis_cache import RedisCache
from defi_portfolio_tracker.config import Settings

logger = logging.getLogger(__name__)


def create_cache(settings: Settings) -> BaseCache:
    """
    Create the configured cache backend.

    Redis is used only if it answers a PING at startup; otherwise the
    process falls back to an in-memory cache.

    Parameters
    ----------
    settings : Settings
        Runtime settings

    Returns
    -------
    BaseCache
        Ready-to-use cache

    """
    default_ttl = settings.cache.default_ttl

    if settings.cache.backend == "redis":
        cache = RedisCache.from_url(
            settings.redis.url,
            prefix=settings.redis.key_prefix,
            default_ttl=default_ttl,
            socket_timeout=settings.redis.socket_timeout,
        )
        try:
            cache.ping()
        except redis.RedisError as e:
            logger.warning("Redis unreachable at startup (%s), falling back to memory cache", e)
            cache.close()
        else:
            logger.info("Using Redis cache with default TTL %ss", default_ttl)
            return cache

    logger.info("Using memory cache with default TTL %ss", default_ttl)
    return MemoryCache(default_ttl=default_ttl)
