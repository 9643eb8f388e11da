"""Core utilities for docgate."""

from docgate.app.core.background import BackgroundTaskRunner
from docgate.app.core.cache import (
    CacheBackend,
    InMemoryCache,
    RedisCache,
    get_cache,
    reset_cache,
)
from docgate.app.core.config import settings
from docgate.app.core.logging import get_logger, setup_logging

__all__ = [
    "BackgroundTaskRunner",
    "CacheBackend",
    "InMemoryCache",
    "RedisCache",
    "get_cache",
    "reset_cache",
    "settings",
    "get_logger",
    "setup_logging",
]
