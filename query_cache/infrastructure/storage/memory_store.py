"""
In-memory tag store.

Process-local store with lazy expiry, used for development, tests, and
single-process deployments.
"""

import fnmatch
import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

from ...domain.cache.repository_interfaces import TagStore

logger = logging.getLogger(__name__)


class MemoryTagStore(TagStore):
    """Dict-backed tag store with per-key expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}

    def __len__(self) -> int:
        self._purge_expired()
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self._live_value(key) is not None

    def keys(self):
        self._purge_expired()
        return list(self._entries)

    async def get(self, key: str) -> Optional[Any]:
        return self._live_value(key)

    async def set(self, key: str, value: Any, ttl: int) -> None:
        if ttl <= 0:
            return
        self._entries[key] = (value, self._clock() + ttl)

    async def delete_pattern(self, pattern: str) -> int:
        matched = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
        for key in matched:
            del self._entries[key]
        logger.debug(f"Deleted {len(matched)} keys matching {pattern}")
        return len(matched)

    async def close(self) -> None:
        self._entries.clear()

    def _live_value(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    def _purge_expired(self) -> None:
        now = self._clock()
        for key in [k for k, (_, exp) in self._entries.items() if now >= exp]:
            del self._entries[key]
