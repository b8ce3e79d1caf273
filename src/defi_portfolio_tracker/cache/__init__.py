"""Cache-aside layer with in-memory and Redis backends."""

from defi_portfolio_tracker.cache.base import BaseCache
from defi_portfolio_tracker.cache.factory import create_cache
from defi_portfolio_tracker.cache.memory import CacheEntry, MemoryCache
from defi_portfolio_tracker.cache.redis_cache import RedisCache

__all__ = [
    "BaseCache",
    "CacheEntry",
    "MemoryCache",
    "RedisCache",
    "create_cache",
]
