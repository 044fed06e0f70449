"""Cache services: the interception pipeline."""

from .pipeline import QueryCachePipeline, create_query_cache

__all__ = ["QueryCachePipeline", "create_query_cache"]
