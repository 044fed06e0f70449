"""
Tag Store Infrastructure Module

Backing stores for cached query results.

This module provides:
- MemoryTagStore: process-local store with lazy expiry
- RedisTagStore: Redis store with SCAN based wildcard deletion
- create_tag_store: builds a store from a StorageConfig descriptor
- The cache exception hierarchy
"""

import logging

from ...domain.cache.repository_interfaces import TagStore
from ...domain.cache.value_objects import StorageConfig
from .memory_store import MemoryTagStore
from .redis_store import RedisTagStore
from .exceptions import (
    CacheException,
    CacheUnavailableException,
    CacheSerializationException,
    StorageConnectionException,
    InvalidationException,
    CacheConfigurationException,
)

logger = logging.getLogger(__name__)

_REDIS_OPTIONS = ("client", "url", "max_connections", "scan_count", "socket_timeout")


def create_tag_store(storage: StorageConfig) -> TagStore:
    """
    Build a tag store from its descriptor.

    Raises:
        CacheConfigurationException: If the descriptor cannot produce a store
    """
    if storage.type == "memory":
        return MemoryTagStore()

    if storage.type == "redis":
        options = {k: v for k, v in storage.options.items() if k in _REDIS_OPTIONS}
        if options.get("client") is None and not options.get("url"):
            raise CacheConfigurationException(
                "Redis storage requires a 'client' or 'url' option",
                config_key="storage.options",
            )
        unknown = sorted(set(storage.options) - set(_REDIS_OPTIONS))
        if unknown:
            logger.warning(f"Ignoring unknown Redis storage options: {unknown}")
        return RedisTagStore(**options)

    raise CacheConfigurationException(
        f"Unsupported storage type: {storage.type}",
        config_key="storage.type",
        config_value=storage.type,
    )


__all__ = [
    "create_tag_store",
    "MemoryTagStore",
    "RedisTagStore",
    "CacheException",
    "CacheUnavailableException",
    "CacheSerializationException",
    "StorageConnectionException",
    "InvalidationException",
    "CacheConfigurationException",
]
