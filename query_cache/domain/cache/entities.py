"""
Cache Domain Entities

Core domain entities for query interception and invalidation.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .value_objects import InvalidationTag

# Continuation that runs the real data-access call with the given arguments
QueryExecutor = Callable[[Any], Awaitable[Any]]


@dataclass(frozen=True)
class Operation:
    """
    One intercepted data-access invocation.

    Created per call and consumed synchronously; never persisted. The
    executor travels next to it as a continuation, not inside it.
    """

    model: str
    action: str
    args: Any = None

    def __post_init__(self) -> None:
        if not self.model:
            raise ValueError("Operation model cannot be empty")
        if not self.action:
            raise ValueError("Operation action cannot be empty")


@dataclass(frozen=True)
class ModelCacheBinding:
    """
    Memoized cache function bound to one entity type.

    Holds no cached values itself; they live in the tag store. ``function``
    is the cache function registered with the dedup engine under ``model``.
    """

    model: str
    tag_key: str
    ttl: int
    function: Optional[Callable[..., Awaitable[Any]]] = field(
        default=None, compare=False, repr=False
    )

    def tag_for(self, operation: Operation) -> InvalidationTag:
        """Tag under which the result of ``operation`` is stored."""
        return InvalidationTag.for_call(self.tag_key, operation.action, operation.args)

    async def __call__(self, operation: Operation, proceed: QueryExecutor) -> Any:
        if self.function is None:
            raise RuntimeError(f"Binding for {self.model} has no cache function")
        return await self.function(operation, proceed)


@dataclass
class InvalidationReport:
    """Result of one fan-out: deleted counts per pattern and failures."""

    model: str
    deleted: Dict[str, int] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def total_deleted(self) -> int:
        return sum(self.deleted.values())

    @property
    def patterns(self) -> List[str]:
        return list(self.deleted) + list(self.failed)

    @property
    def succeeded(self) -> bool:
        return not self.failed

    def record(self, pattern: str, count: Optional[int] = None, error: Optional[Exception] = None) -> None:
        if error is not None:
            self.failed[pattern] = str(error)
        else:
            self.deleted[pattern] = count or 0
