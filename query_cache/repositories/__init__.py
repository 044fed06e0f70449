"""
Repository Layer

Data-access repositories that route every query through the cache
interceptor.
"""

from .base import CachedRepository

__all__ = ["CachedRepository"]
