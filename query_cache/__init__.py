"""
query-cache

Read-through caching for relational data access. Query results are cached
per entity type and invalidated when that entity type, or one declared as
related, is written.
"""

from .constants import APP_VERSION as __version__
from .domain.cache.entities import InvalidationReport, ModelCacheBinding, Operation
from .domain.cache.repository_interfaces import QueryInterceptor, TagStore
from .domain.cache.value_objects import (
    CacheConfiguration,
    CacheDecision,
    InvalidationTag,
    ModelCacheRule,
    QueryAction,
    StorageConfig,
    Transformer,
)
from .infrastructure.storage import (
    CacheException,
    CacheUnavailableException,
    InvalidationException,
    MemoryTagStore,
    RedisTagStore,
)
from .repositories import CachedRepository
from .services.cache import QueryCachePipeline, create_query_cache

__all__ = [
    "__version__",
    "CacheConfiguration",
    "CacheDecision",
    "CachedRepository",
    "CacheException",
    "CacheUnavailableException",
    "create_query_cache",
    "InvalidationException",
    "InvalidationReport",
    "InvalidationTag",
    "MemoryTagStore",
    "ModelCacheBinding",
    "ModelCacheRule",
    "Operation",
    "QueryAction",
    "QueryCachePipeline",
    "QueryInterceptor",
    "RedisTagStore",
    "StorageConfig",
    "TagStore",
    "Transformer",
]
