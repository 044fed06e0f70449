"""
Query Cache Exceptions

Domain-specific exceptions for the cache layer and its tag stores.
Executor (data-access) errors are never wrapped in these types.
"""

from typing import Optional, Any, Dict


class CacheException(Exception):
    """Base exception for cache-layer errors.

    Everything raised by the tag store or the dedup engine is this type or
    one of its subclasses, so callers can tell cache failures apart from
    data-access failures.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        if original_error:
            self.details["original_error"] = str(original_error)
            self.details["original_error_type"] = type(original_error).__name__
        super().__init__(self.message)
        # Preserve exception context for debugging (exception chaining)
        if original_error:
            self.__cause__ = original_error


class CacheUnavailableException(CacheException):
    """Raised when the tag store cannot serve a read or write."""

    def __init__(
        self,
        message: str = "Cache store unavailable",
        key: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if key:
            details["key"] = key
        if operation:
            details["operation"] = operation

        super().__init__(
            message=message,
            error_code="CACHE_UNAVAILABLE",
            details=details,
            original_error=original_error,
        )


class CacheSerializationException(CacheUnavailableException):
    """Raised when a value cannot be serialized or deserialized."""

    def __init__(
        self,
        key: str,
        direction: str,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            message=f"Failed to {direction} cached value for {key}",
            key=key,
            operation=direction,
            original_error=original_error,
        )
        self.error_code = "CACHE_SERIALIZATION_ERROR"


class StorageConnectionException(CacheUnavailableException):
    """Raised when the backing store connection fails or is lost."""

    def __init__(
        self,
        message: str = "Cache storage connection failed",
        url: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message=message, original_error=original_error)
        self.error_code = "CACHE_STORAGE_CONNECTION_ERROR"
        if url:
            self.details["url"] = url


class InvalidationException(CacheException):
    """Raised when a wildcard deletion fails."""

    def __init__(self, pattern: str, original_error: Optional[Exception] = None):
        super().__init__(
            message=f"Failed to invalidate cache entries matching {pattern}",
            error_code="CACHE_INVALIDATION_ERROR",
            details={"pattern": pattern},
            original_error=original_error,
        )


class CacheConfigurationException(CacheException):
    """Raised when cache configuration is invalid."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key
        if config_value is not None:
            details["config_value"] = str(config_value)

        super().__init__(
            message=message, error_code="CACHE_CONFIGURATION_ERROR", details=details
        )
