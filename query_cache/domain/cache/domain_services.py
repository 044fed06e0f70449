"""
Cache Domain Services

Decision and registration logic of the query cache core: operation
classification, the per entity type binding registry, and invalidation
fan-out.
"""

import asyncio
import logging
from dataclasses import replace
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from opentelemetry import trace

from .entities import InvalidationReport, ModelCacheBinding, Operation, QueryExecutor
from .repository_interfaces import CacheEngine
from .value_objects import (
    CacheConfiguration,
    CacheDecision,
    InvalidationTag,
    ModelCacheRule,
    MUTATION_ACTIONS,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


async def _fetch_from_source(operation: Operation, proceed: QueryExecutor) -> Any:
    return await proceed(operation.args)


class OperationClassifier:
    """
    Decides whether an operation is skipped, cached, or invalidating.

    Pure decision table over configuration and operation metadata.
    """

    def __init__(self, config: CacheConfiguration):
        self.config = config
        self._rule_excludes: Dict[str, frozenset] = {}
        for rule in config.models:
            self._rule_excludes[rule.model] = (
                self._rule_excludes.get(rule.model, frozenset()) | rule.exclude_methods
            )

    @staticmethod
    def is_mutation(action: str) -> bool:
        return action in MUTATION_ACTIONS

    def is_excluded(self, operation: Operation) -> bool:
        """Check global and rule-level exclusions for the operation."""
        return (
            operation.model in self.config.exclude_models
            or operation.action in self.config.exclude_methods
            or operation.action in self._rule_excludes.get(operation.model, ())
        )

    def classify(self, operation: Operation) -> CacheDecision:
        # Exclusions only opt reads out of caching; every write invalidates
        if self.is_mutation(operation.action):
            return CacheDecision.WRITE
        if self.is_excluded(operation):
            return CacheDecision.SKIP
        return CacheDecision.READ


class ModelCacheRegistry:
    """
    Registry of cache bindings keyed by entity type.

    A binding is built the first time its entity type is read and reused for
    the lifetime of the pipeline. Building and installing a binding contains
    no suspension point, so interleaved coroutines always observe the same
    binding.
    """

    def __init__(self, config: CacheConfiguration, engine: CacheEngine):
        self.config = config
        self.engine = engine
        # Later rules for the same model replace earlier ones
        self._rules: Dict[str, ModelCacheRule] = {
            rule.model: rule for rule in config.models
        }
        self._bindings: Dict[str, ModelCacheBinding] = {}

    @property
    def bindings(self) -> Mapping[str, ModelCacheBinding]:
        return MappingProxyType(self._bindings)

    def rule_for(self, model: str) -> Optional[ModelCacheRule]:
        return self._rules.get(model)

    def is_excluded(self, model: str) -> bool:
        return model in self.config.exclude_models

    def tag_keys_for(self, model: str) -> List[str]:
        """Tag keys that may hold entries for model: its name and any override."""
        tag_keys = [model]
        rule = self.rule_for(model)
        if rule and rule.tag_key != model:
            tag_keys.append(rule.tag_key)
        return tag_keys

    def related_for(self, model: str) -> List[str]:
        """Entity types declared as related to model across all its rules."""
        related: List[str] = []
        for rule in self.config.models:
            if rule.model != model:
                continue
            for name in rule.invalidate_related:
                if name not in related:
                    related.append(name)
        return related

    def get(self, model: str) -> Optional[ModelCacheBinding]:
        return self._bindings.get(model)

    def get_or_create(self, model: str) -> Optional[ModelCacheBinding]:
        """
        Return the binding for model, creating it on first sight.

        Returns:
            The installed binding, or None when the model is excluded or has
            no rule while unconfigured models are not cached.
        """
        binding = self._bindings.get(model)
        if binding is not None:
            return binding

        if self.is_excluded(model):
            return None

        rule = self.rule_for(model)
        if rule is None and not self.config.cache_unconfigured_models:
            return None

        tag_key = rule.tag_key if rule else model
        ttl = (
            rule.cache_time
            if rule is not None and rule.cache_time is not None
            else self.config.cache_time
        )

        binding = ModelCacheBinding(model=model, tag_key=tag_key, ttl=ttl)
        function = self.engine.define(
            model,
            key=lambda operation, proceed: binding.tag_for(operation).value,
            func=_fetch_from_source,
            ttl=ttl,
        )
        installed = self._bindings.setdefault(model, replace(binding, function=function))

        logger.debug(
            f"Registered cache binding for {model}",
            extra={"model": model, "tag_key": tag_key, "ttl": ttl},
        )
        return installed


class InvalidationFanout:
    """
    Wipes cached entries for an entity type and its related types.

    Best effort: each wildcard deletion is attempted independently and a
    failure is logged and reported, never raised. Entries that survive a
    failed deletion expire through their ttl.
    """

    def __init__(self, engine: CacheEngine, registry: ModelCacheRegistry):
        self.engine = engine
        self.registry = registry

    async def invalidate(
        self, model: str, related: Optional[List[str]] = None
    ) -> InvalidationReport:
        """
        Invalidate all tags for model, then for each related type.

        Args:
            model: Entity type that was written
            related: Related entity types, defaults to those configured for model

        Returns:
            Report of deleted counts and failed patterns
        """
        with tracer.start_as_current_span("cache.invalidate_model") as span:
            span.set_attribute("cache.model", model)

            if related is None:
                related = self.registry.related_for(model)

            report = InvalidationReport(model=model)
            primary = [
                InvalidationTag.wildcard(tag_key)
                for tag_key in self.registry.tag_keys_for(model)
            ]
            for pattern in primary:
                await self._delete(pattern, report)

            related_patterns: List[str] = []
            for related_model in related:
                for tag_key in self.registry.tag_keys_for(related_model):
                    pattern = InvalidationTag.wildcard(tag_key)
                    if pattern not in primary and pattern not in related_patterns:
                        related_patterns.append(pattern)

            await asyncio.gather(
                *(self._delete(pattern, report) for pattern in related_patterns)
            )

            span.set_attribute("cache.invalidated_keys", report.total_deleted)
            if not report.succeeded:
                span.set_status(
                    trace.Status(
                        trace.StatusCode.ERROR,
                        f"{len(report.failed)} invalidation(s) failed",
                    )
                )

            logger.info(
                f"Invalidated cache for {model}",
                extra={
                    "model": model,
                    "related": related,
                    "deleted": report.total_deleted,
                    "failed": list(report.failed),
                },
            )
            return report

    async def _delete(self, pattern: str, report: InvalidationReport) -> None:
        try:
            count = await self.engine.invalidate_all(pattern)
            report.record(pattern, count)
        except Exception as e:
            logger.warning(
                f"Failed to invalidate cache pattern {pattern}: {e}",
                extra={"pattern": pattern, "model": report.model},
                exc_info=True,
            )
            report.record(pattern, error=e)
