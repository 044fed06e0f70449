"""
Unit tests for the query cache pipeline.

Covers read-through caching, write invalidation, fallback on store failure,
hooks and metrics, and pipeline construction.
"""

import asyncio
from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError

from query_cache.domain.cache.entities import Operation
from query_cache.domain.cache.value_objects import (
    CacheConfiguration,
    InvalidationTag,
    ModelCacheRule,
)
from query_cache.infrastructure.storage.exceptions import CacheConfigurationException
from query_cache.infrastructure.storage.memory_store import MemoryTagStore
from query_cache.services.cache.pipeline import QueryCachePipeline, create_query_cache
from tests.helpers import FailingTagStore, RecordingExecutor, keys_of

USERS = [{"id": 1, "name": "Ada"}]


def user_read(action="find_many", **args):
    return Operation("User", action, args or {"where": {"id": 1}})


class TestReadThrough:
    """Test read caching and write invalidation."""

    @pytest.mark.asyncio
    async def test_miss_hit_invalidate_miss(self, pipeline, store):
        """A write to User clears cached User reads."""
        reader = RecordingExecutor(result=USERS)
        writer = RecordingExecutor(result={"id": 1, "name": "Grace"})

        assert await pipeline.execute(user_read(), reader) == USERS
        assert reader.call_count == 1
        tag = InvalidationTag.for_call("User", "find_many", {"where": {"id": 1}})
        assert keys_of(store) == [tag.value]

        assert await pipeline.execute(user_read(), reader) == USERS
        assert reader.call_count == 1

        await pipeline.execute(
            Operation("User", "update", {"where": {"id": 1}, "data": {"name": "Grace"}}),
            writer,
        )
        assert writer.call_count == 1
        assert keys_of(store) == []

        await pipeline.execute(user_read(), reader)
        assert reader.call_count == 2

    @pytest.mark.asyncio
    async def test_executor_receives_operation_args(self, pipeline):
        reader = RecordingExecutor(result=USERS)
        await pipeline.execute(user_read(where={"id": 7}), reader)
        assert reader.calls == [{"where": {"id": 7}}]

    @pytest.mark.asyncio
    async def test_excluded_method_always_executes(self, store):
        """count is excluded: never cached, always executed."""
        config = CacheConfiguration(
            models=[ModelCacheRule(model="User", cache_time=300)],
            exclude_methods=["count"],
        )
        pipeline = QueryCachePipeline(config, store=store)
        counter = RecordingExecutor(result=3)

        for _ in range(3):
            assert await pipeline.execute(Operation("User", "count", {}), counter) == 3

        assert counter.call_count == 3
        assert keys_of(store) == []

    @pytest.mark.asyncio
    async def test_different_actions_do_not_collide(self, pipeline):
        args = {"where": {"id": 1}}
        finder = RecordingExecutor(result=USERS)
        counter = RecordingExecutor(result=1)

        assert await pipeline.execute(Operation("User", "find_many", args), finder) == USERS
        assert await pipeline.execute(Operation("User", "count", args), counter) == 1

    @pytest.mark.asyncio
    async def test_concurrent_reads_deduplicated(self, pipeline):
        reader = RecordingExecutor(result=USERS, delay=0.01)

        results = await asyncio.gather(
            *(pipeline.execute(user_read(), reader) for _ in range(10))
        )

        assert reader.call_count == 1
        assert all(result == USERS for result in results)

    @pytest.mark.asyncio
    async def test_failed_write_keeps_cached_reads(self, pipeline, store):
        """A write that raises leaves cached entries untouched."""
        await pipeline.execute(user_read(), RecordingExecutor(result=USERS))
        failure = ValueError("constraint violated")

        with pytest.raises(ValueError) as exc_info:
            await pipeline.execute(
                Operation("User", "delete", {"where": {"id": 1}}),
                RecordingExecutor(error=failure),
            )

        assert exc_info.value is failure
        assert len(keys_of(store)) == 1

    @pytest.mark.asyncio
    async def test_read_executor_error_propagates_without_retry(self, pipeline):
        failure = LookupError("table missing")
        reader = RecordingExecutor(error=failure)

        with pytest.raises(LookupError):
            await pipeline.execute(user_read(), reader)

        assert reader.call_count == 1

    @pytest.mark.asyncio
    async def test_write_result_returned(self, pipeline):
        created = {"id": 2, "name": "Linus"}
        result = await pipeline.execute(
            Operation("User", "create", {"data": {"name": "Linus"}}),
            RecordingExecutor(result=created),
        )
        assert result == created


class TestModelRules:
    """Test per-model rules through the pipeline."""

    @pytest.mark.asyncio
    async def test_related_types_invalidated(self, store):
        config = CacheConfiguration(
            cache_time=60,
            models=[
                ModelCacheRule(model="User"),
                ModelCacheRule(model="Post", invalidate_related=["User"]),
            ],
        )
        pipeline = QueryCachePipeline(config, store=store)
        await pipeline.execute(user_read(), RecordingExecutor(result=USERS))
        await pipeline.execute(Operation("Post", "find_many", {}), RecordingExecutor(result=[]))
        await pipeline.execute(Operation("Comment", "find_many", {}), RecordingExecutor(result=[]))

        await pipeline.execute(Operation("Post", "create", {"data": {}}), RecordingExecutor())

        assert [key.split("~")[0] for key in keys_of(store)] == ["Comment"]

    @pytest.mark.asyncio
    async def test_tag_key_override(self, store):
        """Post cached under Article is cleared by a Post write."""
        config = CacheConfiguration(
            models=[ModelCacheRule(model="Post", cache_time=60, cache_key="Article")]
        )
        pipeline = QueryCachePipeline(config, store=store)
        reader = RecordingExecutor(result=[{"id": 1}])

        await pipeline.execute(Operation("Post", "find_many", {}), reader)
        assert keys_of(store)[0].startswith("Article~")

        await pipeline.execute(Operation("Post", "update", {"data": {}}), RecordingExecutor())
        assert keys_of(store) == []

    @pytest.mark.asyncio
    async def test_unconfigured_model_uses_global_ttl(self, store):
        pipeline = QueryCachePipeline(CacheConfiguration(cache_time=60), store=store)
        reader = RecordingExecutor(result=[])

        await pipeline.execute(Operation("Comment", "find_many", {}), reader)
        await pipeline.execute(Operation("Comment", "find_many", {}), reader)

        assert reader.call_count == 1
        assert pipeline.registry.get("Comment").ttl == 60

    @pytest.mark.asyncio
    async def test_unconfigured_model_skipped_when_disabled(self, store):
        config = CacheConfiguration(cache_time=60, cache_unconfigured_models=False)
        pipeline = QueryCachePipeline(config, store=store)
        reader = RecordingExecutor(result=[])

        await pipeline.execute(Operation("Comment", "find_many", {}), reader)
        await pipeline.execute(Operation("Comment", "find_many", {}), reader)

        assert reader.call_count == 2
        assert keys_of(store) == []

    @pytest.mark.asyncio
    async def test_default_ttl_zero_stores_nothing(self, store):
        pipeline = QueryCachePipeline(CacheConfiguration(), store=store)
        reader = RecordingExecutor(result=[])

        await pipeline.execute(user_read(), reader)
        await pipeline.execute(user_read(), reader)

        assert reader.call_count == 2
        assert keys_of(store) == []

    @pytest.mark.asyncio
    async def test_excluded_model_write_still_invalidates(self):
        """Excluded models are never cached, but their writes still invalidate."""
        store = FailingTagStore()
        config = CacheConfiguration(cache_time=60, exclude_models=["AuditLog"])
        pipeline = QueryCachePipeline(config, store=store)

        await pipeline.execute(Operation("AuditLog", "create", {"data": {}}), RecordingExecutor())

        assert store.deleted_patterns == ["*AuditLog~*"]
        assert "AuditLog" not in pipeline.registry.bindings

    @pytest.mark.asyncio
    async def test_excluded_model_write_clears_related_type(self, store):
        config = CacheConfiguration(
            cache_time=60,
            exclude_models=["Comment"],
            models=[ModelCacheRule(model="Comment", invalidate_related=["Post"])],
        )
        pipeline = QueryCachePipeline(config, store=store)
        reader = RecordingExecutor(result=[{"id": 1}])
        await pipeline.execute(Operation("Post", "find_many", {}), reader)
        assert len(keys_of(store)) == 1

        await pipeline.execute(Operation("Comment", "create", {"data": {}}), RecordingExecutor())

        assert keys_of(store) == []
        await pipeline.execute(Operation("Post", "find_many", {}), reader)
        assert reader.call_count == 2


class TestFailureHandling:
    """Test fallback when the cache layer fails."""

    @pytest.mark.asyncio
    async def test_store_read_failure_falls_back(self, user_config):
        store = FailingTagStore(get_error=ConnectionResetError("store down"))
        pipeline = QueryCachePipeline(user_config, store=store)
        reader = RecordingExecutor(result=USERS)

        assert await pipeline.execute(user_read(), reader) == USERS
        assert reader.call_count == 1
        assert pipeline.metrics.value("query_cache_fallbacks_total", {"model": "User"}) == 1.0

    @pytest.mark.asyncio
    async def test_store_write_failure_returns_result(self, user_config):
        on_error = MagicMock()
        store = FailingTagStore(set_error=ConnectionResetError("store down"))
        config = user_config.model_copy(update={"on_error": on_error})
        pipeline = QueryCachePipeline(config, store=store)

        assert await pipeline.execute(user_read(), RecordingExecutor(result=USERS)) == USERS
        on_error.assert_called_once()

    @pytest.mark.asyncio
    async def test_invalidation_failure_does_not_fail_write(self, user_config):
        store = FailingTagStore(delete_error=lambda pattern: RuntimeError("down"))
        pipeline = QueryCachePipeline(user_config, store=store)

        result = await pipeline.execute(
            Operation("User", "update", {"data": {}}), RecordingExecutor(result="ok")
        )

        assert result == "ok"
        assert store.deleted_patterns == ["*User~*"]
        assert (
            pipeline.metrics.value(
                "query_cache_invalidations_total", {"model": "User", "success": "false"}
            )
            == 1.0
        )

    @pytest.mark.asyncio
    async def test_related_invalidation_failure_isolated(self):
        failing = FailingTagStore(
            delete_error=lambda pattern: RuntimeError("down") if pattern == "*User~*" else None
        )
        config = CacheConfiguration(
            cache_time=60,
            models=[ModelCacheRule(model="Post", invalidate_related=["User", "Comment"])],
        )
        pipeline = QueryCachePipeline(config, store=failing)
        await pipeline.execute(Operation("Comment", "find_many", {}), RecordingExecutor(result=[]))

        report = await pipeline.invalidate_model("Post")

        assert set(report.failed) == {"*User~*"}
        assert report.deleted["*Comment~*"] == 1
        assert keys_of(failing) == []


class TestHooksAndMetrics:
    """Test observer hooks and counters."""

    @pytest.mark.asyncio
    async def test_hooks_receive_tags(self, store):
        on_hit, on_miss = MagicMock(), MagicMock()
        config = CacheConfiguration(
            models=[ModelCacheRule(model="User", cache_time=300)],
            on_hit=on_hit,
            on_miss=on_miss,
        )
        pipeline = QueryCachePipeline(config, store=store)
        reader = RecordingExecutor(result=USERS)

        await pipeline.execute(user_read(), reader)
        await pipeline.execute(user_read(), reader)

        tag = InvalidationTag.for_call("User", "find_many", {"where": {"id": 1}}).value
        on_miss.assert_called_once_with(tag)
        on_hit.assert_called_once_with(tag)

    @pytest.mark.asyncio
    async def test_raising_hook_does_not_break_reads(self, store):
        def broken(key):
            raise RuntimeError("hook failed")

        config = CacheConfiguration(
            models=[ModelCacheRule(model="User", cache_time=300)], on_miss=broken
        )
        pipeline = QueryCachePipeline(config, store=store)

        assert await pipeline.execute(user_read(), RecordingExecutor(result=USERS)) == USERS

    @pytest.mark.asyncio
    async def test_counters(self, pipeline):
        reader = RecordingExecutor(result=USERS)
        await pipeline.execute(user_read(), reader)
        await pipeline.execute(user_read(), reader)
        await pipeline.execute(Operation("User", "delete", {}), RecordingExecutor())

        metrics = pipeline.metrics
        assert metrics.value("query_cache_misses_total", {"tag_key": "User"}) == 1.0
        assert metrics.value("query_cache_hits_total", {"tag_key": "User"}) == 1.0
        assert (
            metrics.value("query_cache_invalidations_total", {"model": "User", "success": "true"})
            == 1.0
        )
        assert b"query_cache_hits_total" in metrics.export()

    @pytest.mark.asyncio
    async def test_get_metrics(self, pipeline):
        await pipeline.execute(user_read(), RecordingExecutor(result=USERS))

        snapshot = pipeline.get_metrics()

        assert snapshot["bindings"] == {"User": {"tag_key": "User", "ttl": 300}}
        assert snapshot["config"]["storage"] == "memory"


class TestConstruction:
    """Test pipeline construction and lifecycle."""

    def test_rejects_non_configuration(self):
        with pytest.raises(CacheConfigurationException):
            QueryCachePipeline({"cache_time": 10})

    def test_builds_store_from_configuration(self):
        pipeline = QueryCachePipeline(CacheConfiguration())
        assert isinstance(pipeline.store, MemoryTagStore)

    def test_empty_store_is_kept(self, user_config):
        store = MemoryTagStore()
        assert QueryCachePipeline(user_config, store=store).store is store

    def test_create_from_settings(self):
        pipeline = create_query_cache(
            models=[ModelCacheRule(model="User", cache_time=30)]
        )
        assert pipeline.config.storage.type == "memory"
        assert pipeline.config.models[0].cache_time == 30

    def test_create_with_overrides_validates(self, user_config):
        pipeline = create_query_cache(user_config, cache_time=15)
        assert pipeline.config.cache_time == 15
        assert pipeline.config.models == user_config.models

        with pytest.raises(ValidationError):
            create_query_cache(user_config, cache_time=-1)

    @pytest.mark.asyncio
    async def test_context_manager_closes_store(self, user_config, store):
        async with QueryCachePipeline(user_config, store=store) as pipeline:
            await pipeline.execute(user_read(), RecordingExecutor(result=USERS))
            assert len(store) == 1

        assert len(store) == 0
