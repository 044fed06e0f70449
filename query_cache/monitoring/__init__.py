"""Cache metrics."""

from .cache_metrics import CacheMetrics

__all__ = ["CacheMetrics"]
