"""
Query Cache Metrics

Prometheus counters for cache outcomes, kept on a private registry so
several pipelines can live in one process.
"""

from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, generate_latest

from ..constants import TAG_SEPARATOR


def tag_key_of(key: str) -> str:
    """Tag key part of a stored key (``User~{...}`` -> ``User``)."""
    return key.split(TAG_SEPARATOR, 1)[0]


class CacheMetrics:
    """Hit/miss/dedupe/fallback/invalidation counters."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.prom_hits_total = Counter(
            "query_cache_hits_total",
            "Reads served from the tag store",
            ["tag_key"],
            registry=self.registry,
        )
        self.prom_misses_total = Counter(
            "query_cache_misses_total",
            "Reads that ran the real executor",
            ["tag_key"],
            registry=self.registry,
        )
        self.prom_dedupes_total = Counter(
            "query_cache_dedupes_total",
            "Reads that joined an identical in-flight read",
            ["tag_key"],
            registry=self.registry,
        )
        self.prom_errors_total = Counter(
            "query_cache_errors_total",
            "Cache layer errors",
            ["error_type"],
            registry=self.registry,
        )
        self.prom_fallbacks_total = Counter(
            "query_cache_fallbacks_total",
            "Reads served directly after a cache failure",
            ["model"],
            registry=self.registry,
        )
        self.prom_invalidations_total = Counter(
            "query_cache_invalidations_total",
            "Wildcard invalidations by outcome",
            ["model", "success"],
            registry=self.registry,
        )

    def record_hit(self, key: str) -> None:
        self.prom_hits_total.labels(tag_key=tag_key_of(key)).inc()

    def record_miss(self, key: str) -> None:
        self.prom_misses_total.labels(tag_key=tag_key_of(key)).inc()

    def record_dedupe(self, key: str) -> None:
        self.prom_dedupes_total.labels(tag_key=tag_key_of(key)).inc()

    def record_error(self, error: Exception) -> None:
        self.prom_errors_total.labels(error_type=type(error).__name__).inc()

    def record_fallback(self, model: str) -> None:
        self.prom_fallbacks_total.labels(model=model).inc()

    def record_invalidation(self, model: str, success: bool) -> None:
        self.prom_invalidations_total.labels(
            model=model, success=str(success).lower()
        ).inc()

    def value(self, name: str, labels: Dict[str, str]) -> float:
        """Current value of a counter sample, 0.0 when never incremented."""
        return self.registry.get_sample_value(name, labels) or 0.0

    def export(self) -> bytes:
        return generate_latest(self.registry)
