"""
Test doubles shared by unit and integration tests.
"""

import asyncio
from typing import Any, Callable, List, Optional

from query_cache.domain.cache.repository_interfaces import TagStore
from query_cache.infrastructure.storage.memory_store import MemoryTagStore


class RecordingExecutor:
    """Stand-in for a real data-access call that records every invocation."""

    def __init__(
        self,
        result: Any = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls: List[Any] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def __call__(self, args: Any) -> Any:
        self.calls.append(args)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if callable(self.result):
            return self.result(args)
        return self.result


class FailingTagStore(MemoryTagStore):
    """Memory store whose operations can be made to fail on demand."""

    def __init__(
        self,
        get_error: Optional[Exception] = None,
        set_error: Optional[Exception] = None,
        delete_error: Optional[Callable[[str], Optional[Exception]]] = None,
    ):
        super().__init__()
        self.get_error = get_error
        self.set_error = set_error
        self.delete_error = delete_error
        self.deleted_patterns: List[str] = []

    async def get(self, key: str) -> Optional[Any]:
        if self.get_error is not None:
            raise self.get_error
        return await super().get(key)

    async def set(self, key: str, value: Any, ttl: int) -> None:
        if self.set_error is not None:
            raise self.set_error
        await super().set(key, value, ttl)

    async def delete_pattern(self, pattern: str) -> int:
        self.deleted_patterns.append(pattern)
        if self.delete_error is not None:
            error = self.delete_error(pattern)
            if error is not None:
                raise error
        return await super().delete_pattern(pattern)


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def keys_of(store: TagStore) -> List[str]:
    return sorted(store.keys())
