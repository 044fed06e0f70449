"""
Dedup/Memoization Engine

Named cache functions over a tag store. Concurrent identical calls share a
single in-flight computation; completed results are stored under the key
computed for the call and removed through wildcard invalidation.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from ...domain.cache.repository_interfaces import CacheEngine, CachedFunction, TagStore
from ...domain.cache.value_objects import Transformer
from ..storage.exceptions import (
    CacheConfigurationException,
    CacheException,
    CacheSerializationException,
    CacheUnavailableException,
    InvalidationException,
)

logger = logging.getLogger(__name__)

KeyHook = Optional[Callable[[str], Any]]
ErrorHook = Optional[Callable[[Exception], Any]]


class DedupeFunction(CachedFunction):
    """
    One memoized function.

    Store failures surface as CacheException subclasses. Exceptions raised
    by the wrapped function itself propagate unchanged.
    """

    def __init__(
        self,
        cache: "DedupeCache",
        name: str,
        key: Callable[..., str],
        func: Callable[..., Awaitable[Any]],
        ttl: int,
    ):
        self.cache = cache
        self.name = name
        self.ttl = ttl
        self._key = key
        self._func = func
        self._pending: Dict[str, "asyncio.Task[Any]"] = {}

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def __call__(self, *args: Any) -> Any:
        key = self._key(*args)

        inflight = self._pending.get(key)
        if inflight is not None:
            self.cache.emit(self.cache.on_dedupe, key)
            return await inflight

        task = asyncio.ensure_future(self._load(key, args))
        self._pending[key] = task
        task.add_done_callback(lambda _: self._forget(key, task))
        return await task

    def _forget(self, key: str, task: "asyncio.Task[Any]") -> None:
        if self._pending.get(key) is task:
            del self._pending[key]

    async def _load(self, key: str, args: tuple) -> Any:
        if self.ttl > 0:
            found, value = await self._read(key)
            if found:
                self.cache.emit(self.cache.on_hit, key)
                return value

        self.cache.emit(self.cache.on_miss, key)
        result = await self._func(*args)

        if self.ttl > 0:
            return await self._write(key, result)
        return result

    async def _read(self, key: str):
        try:
            raw = await self.cache.store.get(key)
        except CacheException as e:
            self.cache.emit(self.cache.on_error, e)
            raise
        except Exception as e:
            error = CacheUnavailableException(
                message=f"Failed to read {key}: {e}",
                key=key,
                operation="get",
                original_error=e,
            )
            self.cache.emit(self.cache.on_error, error)
            raise error from e

        if raw is None:
            return False, None

        try:
            return True, self.cache.transformer.deserialize(raw)
        except Exception as e:
            error = CacheSerializationException(key, "deserialize", original_error=e)
            self.cache.emit(self.cache.on_error, error)
            raise error from e

    async def _write(self, key: str, result: Any) -> Any:
        """Store result and return it as a later hit would.

        A failed store write is reported, not raised. A result the
        transformer cannot round-trip is returned as fetched and not stored.
        """
        transformer = self.cache.transformer
        try:
            serialized = transformer.serialize(result)
            value = transformer.deserialize(serialized)
        except Exception as e:
            error = CacheSerializationException(key, "serialize", original_error=e)
            self.cache.emit(self.cache.on_error, error)
            logger.warning(f"Not caching {key}: {error.message}")
            return result

        try:
            await self.cache.store.set(key, serialized, self.ttl)
        except Exception as e:
            self.cache.emit(self.cache.on_error, e)
            logger.warning(f"Failed to store {key}: {e}")
        return value


class DedupeCache(CacheEngine):
    """
    Registry of memoized functions sharing one tag store and one set of hooks.

    Hooks are observers: an exception raised inside a hook is logged and
    never changes the outcome of the call that triggered it.
    """

    def __init__(
        self,
        store: TagStore,
        ttl: int = 0,
        transformer: Optional[Transformer] = None,
        on_hit: KeyHook = None,
        on_miss: KeyHook = None,
        on_dedupe: KeyHook = None,
        on_error: ErrorHook = None,
    ):
        self.store = store
        self.ttl = ttl
        self.transformer = transformer or Transformer()
        self.on_hit = on_hit
        self.on_miss = on_miss
        self.on_dedupe = on_dedupe
        self.on_error = on_error
        self._functions: Dict[str, DedupeFunction] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._functions

    def __getitem__(self, name: str) -> DedupeFunction:
        return self._functions[name]

    def define(
        self,
        name: str,
        *,
        key: Callable[..., str],
        func: Callable[..., Awaitable[Any]],
        ttl: Optional[int] = None,
    ) -> DedupeFunction:
        if name in self._functions:
            raise CacheConfigurationException(
                f"Cache function already defined: {name}", config_key=name
            )
        function = DedupeFunction(
            self, name, key, func, self.ttl if ttl is None else ttl
        )
        self._functions[name] = function
        return function

    def get(self, name: str) -> Optional[DedupeFunction]:
        return self._functions.get(name)

    async def invalidate_all(self, pattern: str) -> int:
        try:
            return await self.store.delete_pattern(pattern)
        except InvalidationException as e:
            self.emit(self.on_error, e)
            raise
        except Exception as e:
            error = InvalidationException(pattern, original_error=e)
            self.emit(self.on_error, error)
            raise error from e

    async def close(self) -> None:
        await self.store.close()

    @staticmethod
    def emit(hook: Optional[Callable[[Any], Any]], value: Any) -> None:
        if hook is None:
            return
        try:
            hook(value)
        except Exception:
            logger.exception(f"Cache hook {getattr(hook, '__name__', hook)} failed")
