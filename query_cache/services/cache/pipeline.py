"""
Query Cache Pipeline

The single chokepoint every data-access operation passes through. Wires the
tag store, dedup engine, classifier, registry, and invalidation fan-out
together, and owns their lifecycle.
"""

from typing import Any, Dict, Optional

import structlog
from opentelemetry import trace

from ...core.config import get_settings
from ...domain.cache.domain_services import (
    InvalidationFanout,
    ModelCacheRegistry,
    OperationClassifier,
)
from ...domain.cache.entities import (
    InvalidationReport,
    ModelCacheBinding,
    Operation,
    QueryExecutor,
)
from ...domain.cache.repository_interfaces import QueryInterceptor, TagStore
from ...domain.cache.value_objects import CacheConfiguration, CacheDecision
from ...infrastructure.cache.dedupe import DedupeCache
from ...infrastructure.storage import create_tag_store
from ...infrastructure.storage.exceptions import (
    CacheConfigurationException,
    CacheException,
)
from ...monitoring.cache_metrics import CacheMetrics

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


class QueryCachePipeline(QueryInterceptor):
    """
    Read-through cache interceptor.

    Reads go through a per entity type binding and fall back to the real
    executor when the cache layer fails. Writes always hit the source of
    truth and, once they succeed, invalidate the entity type and its related
    types.
    """

    def __init__(
        self,
        config: CacheConfiguration,
        store: Optional[TagStore] = None,
        metrics: Optional[CacheMetrics] = None,
    ):
        if not isinstance(config, CacheConfiguration):
            raise CacheConfigurationException(
                f"Expected CacheConfiguration, got {type(config).__name__}"
            )

        self.config = config
        self.metrics = metrics or CacheMetrics()
        self.store = store if store is not None else create_tag_store(config.storage)
        self.engine = DedupeCache(
            self.store,
            ttl=config.cache_time,
            transformer=config.transformer,
            on_hit=self._on_hit,
            on_miss=self._on_miss,
            on_dedupe=self._on_dedupe,
            on_error=self._on_error,
        )
        self.classifier = OperationClassifier(config)
        self.registry = ModelCacheRegistry(config, self.engine)
        self.fanout = InvalidationFanout(self.engine, self.registry)

    # Hooks

    def _on_hit(self, key: str) -> None:
        self.metrics.record_hit(key)
        logger.debug("Cache hit", key=key)
        if self.config.on_hit:
            self.config.on_hit(key)

    def _on_miss(self, key: str) -> None:
        self.metrics.record_miss(key)
        logger.debug("Cache miss", key=key)
        if self.config.on_miss:
            self.config.on_miss(key)

    def _on_dedupe(self, key: str) -> None:
        self.metrics.record_dedupe(key)
        logger.debug("Cache dedupe", key=key)
        if self.config.on_dedupe:
            self.config.on_dedupe(key)

    def _on_error(self, error: Exception) -> None:
        self.metrics.record_error(error)
        if self.config.on_error:
            self.config.on_error(error)

    # Interception

    async def intercept(self, operation: Operation, proceed: QueryExecutor) -> Any:
        return await self.execute(operation, proceed)

    async def execute(self, operation: Operation, proceed: QueryExecutor) -> Any:
        """
        Run one operation through the cache layer.

        Args:
            operation: The intercepted operation
            proceed: Continuation running the real query with ``operation.args``

        Returns:
            The cached or freshly fetched result, unchanged in shape

        Raises:
            Whatever the real executor raises
        """
        with tracer.start_as_current_span("query_cache.execute") as span:
            span.set_attribute("cache.model", operation.model)
            span.set_attribute("cache.action", operation.action)

            decision = self.classifier.classify(operation)
            span.set_attribute("cache.decision", decision.value)

            if decision is CacheDecision.READ:
                binding = self.registry.get_or_create(operation.model)
                if binding is not None:
                    return await self._read_through(binding, operation, proceed)
                return await proceed(operation.args)

            # A failing write raises here and skips invalidation
            result = await proceed(operation.args)

            if decision is CacheDecision.WRITE:
                await self._invalidate(operation.model)

            return result

    async def _read_through(
        self, binding: ModelCacheBinding, operation: Operation, proceed: QueryExecutor
    ) -> Any:
        try:
            return await binding(operation, proceed)
        except CacheException as e:
            self.metrics.record_fallback(operation.model)
            logger.warning(
                "Cache unavailable, querying source directly",
                model=operation.model,
                action=operation.action,
                error=str(e),
                error_code=e.error_code,
            )
            trace.get_current_span().record_exception(e)
            return await proceed(operation.args)

    async def _invalidate(self, model: str) -> InvalidationReport:
        report = await self.fanout.invalidate(model)
        self.metrics.record_invalidation(model, report.succeeded)
        if not report.succeeded:
            logger.warning(
                "Cache invalidation incomplete",
                model=model,
                failed=report.failed,
            )
        return report

    async def invalidate_model(self, model: str) -> InvalidationReport:
        """Invalidate a model and its related types outside of a write."""
        return await self._invalidate(model)

    # Lifecycle

    def get_metrics(self) -> Dict[str, Any]:
        """Get pipeline state for diagnostics."""
        return {
            "bindings": {
                model: {"tag_key": binding.tag_key, "ttl": binding.ttl}
                for model, binding in self.registry.bindings.items()
            },
            "config": {
                "cache_time": self.config.cache_time,
                "exclude_models": sorted(self.config.exclude_models),
                "exclude_methods": sorted(self.config.exclude_methods),
                "cache_unconfigured_models": self.config.cache_unconfigured_models,
                "storage": self.config.storage.type,
            },
        }

    async def close(self) -> None:
        """Release the tag store connection."""
        await self.engine.close()
        logger.info("Query cache pipeline closed")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def create_query_cache(
    config: Optional[CacheConfiguration] = None, **overrides: Any
) -> QueryCachePipeline:
    """
    Build a pipeline from a configuration, or from environment settings.

    Args:
        config: Explicit configuration; when omitted it is built from
            ``get_settings()`` with ``overrides`` applied
    """
    if config is None:
        config = CacheConfiguration.from_settings(get_settings(), **overrides)
    elif overrides:
        config = CacheConfiguration.model_validate({**dict(config), **overrides})
    return QueryCachePipeline(config)
