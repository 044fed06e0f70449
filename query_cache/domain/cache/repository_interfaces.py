"""
Cache Interfaces

Abstract contracts between the query cache core and its collaborators:
the tag store below it, the dedup engine beside it, and the data-access
layer above it.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

from .entities import Operation, QueryExecutor


class TagStore(ABC):
    """
    Abstract key/value backing store.

    Keys are UTF-8 strings. Wildcard patterns use ``*`` as in Redis glob
    matching.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the stored value or None when absent or expired."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int) -> None:
        """Store value under key for ttl seconds."""
        pass

    @abstractmethod
    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching pattern and return how many were removed."""
        pass

    async def close(self) -> None:
        """Release connections held by the store."""
        return None


class CachedFunction(ABC):
    """A named function memoized by a cache engine."""

    name: str
    ttl: int

    @abstractmethod
    async def __call__(self, *args: Any) -> Any:
        pass


class CacheEngine(ABC):
    """
    Dedup/memoization engine contract.

    Given a named function and its arguments, returns a cached result or
    computes and stores it. Concurrent identical calls may share one
    computation.
    """

    @abstractmethod
    def define(
        self,
        name: str,
        *,
        key: Callable[..., str],
        func: Callable[..., Awaitable[Any]],
        ttl: Optional[int] = None,
    ) -> CachedFunction:
        """Register a cache function under name."""
        pass

    @abstractmethod
    def get(self, name: str) -> Optional[CachedFunction]:
        """Return the function registered under name, if any."""
        pass

    @abstractmethod
    async def invalidate_all(self, pattern: str) -> int:
        """Delete every stored entry whose tag matches pattern."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class QueryInterceptor(ABC):
    """
    Single extension point offered to the data-access layer.

    Invoked once per operation with a continuation that runs the real query.
    """

    @abstractmethod
    async def intercept(self, operation: Operation, proceed: QueryExecutor) -> Any:
        pass
