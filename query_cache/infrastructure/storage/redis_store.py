"""
Redis tag store.

Redis-backed implementation of the TagStore contract with pooled
connections and SCAN based wildcard invalidation.
"""

import logging
import time
from typing import Any, Optional

from redis.asyncio import Redis
from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    TimeoutError as RedisTimeoutError,
    RedisError,
)

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from ...domain.cache.repository_interfaces import TagStore
from .exceptions import (
    CacheUnavailableException,
    InvalidationException,
    StorageConnectionException,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class RedisTagStore(TagStore):
    """
    Tag store over ``redis.asyncio``.

    Either adopts a caller supplied client (left open on close) or builds
    its own pooled client from a URL.
    """

    def __init__(
        self,
        client: Optional[Redis] = None,
        url: Optional[str] = None,
        max_connections: int = 10,
        scan_count: int = 100,
        socket_timeout: float = 5.0,
    ):
        if client is None and not url:
            raise ValueError("RedisTagStore requires a client or a url")

        self.url = url
        self.scan_count = scan_count
        self._owns_client = client is None
        if client is None:
            client = Redis.from_url(
                url,
                encoding="utf-8",
                decode_responses=True,
                max_connections=max_connections,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
            )
        self._client = client

    @property
    def client(self) -> Redis:
        return self._client

    def _wrap(self, operation: str, key: str, error: Exception) -> CacheUnavailableException:
        if isinstance(error, (RedisConnectionError, RedisTimeoutError)):
            return StorageConnectionException(
                message=f"Redis {operation} failed for {key}: {error}",
                url=self.url,
                original_error=error,
            )
        return CacheUnavailableException(
            message=f"Redis {operation} failed for {key}: {error}",
            key=key,
            operation=operation,
            original_error=error,
        )

    async def get(self, key: str) -> Optional[Any]:
        try:
            return await self._client.get(key)
        except RedisError as e:
            logger.warning(f"Redis get failed for {key}: {e}")
            raise self._wrap("get", key, e) from e

    async def set(self, key: str, value: Any, ttl: int) -> None:
        if ttl <= 0:
            return
        try:
            await self._client.set(key, value, ex=ttl)
        except RedisError as e:
            logger.warning(f"Redis set failed for {key}: {e}")
            raise self._wrap("set", key, e) from e

    async def delete_pattern(self, pattern: str) -> int:
        """Delete keys matching pattern using cursor-based SCAN."""
        with tracer.start_as_current_span("redis.delete_pattern") as span:
            span.set_attribute("redis.pattern", pattern)
            start_time = time.time()
            deleted = 0

            try:
                cursor = 0
                while True:
                    cursor, keys = await self._client.scan(
                        cursor, match=pattern, count=self.scan_count
                    )
                    if keys:
                        deleted += await self._client.delete(*keys)
                    if cursor == 0:
                        break

            except RedisError as e:
                span.set_status(Status(StatusCode.ERROR, str(e)))
                logger.error(f"Failed to delete keys matching {pattern}: {e}")
                raise InvalidationException(pattern, original_error=e) from e

            execution_time = (time.time() - start_time) * 1000
            span.set_attribute("redis.deleted_keys", deleted)
            span.set_status(Status(StatusCode.OK))
            logger.debug(
                f"Deleted {deleted} keys matching {pattern}",
                extra={"pattern": pattern, "execution_time_ms": execution_time},
            )
            return deleted

    async def close(self) -> None:
        """Close the client when this store created it."""
        if self._owns_client:
            await self._client.aclose()
            logger.info("Redis tag store closed")
