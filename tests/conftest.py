"""
Main pytest configuration for query cache tests.

Fixtures, configuration, and utilities for unit and integration tests.
"""

import os

import pytest

# Set test environment variables before importing package modules
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["CACHE_STORAGE"] = "memory"

from query_cache.core.logging import configure_logging
from query_cache.domain.cache.value_objects import CacheConfiguration, ModelCacheRule
from query_cache.infrastructure.storage.memory_store import MemoryTagStore
from query_cache.services.cache.pipeline import QueryCachePipeline

configure_logging("DEBUG", json_logs=True)


@pytest.fixture
def store():
    """Fresh in-memory tag store."""
    return MemoryTagStore()


@pytest.fixture
def user_config():
    """Configuration caching User for five minutes."""
    return CacheConfiguration(models=[ModelCacheRule(model="User", cache_time=300)])


@pytest.fixture
def pipeline(user_config, store):
    """Pipeline over the in-memory store."""
    return QueryCachePipeline(user_config, store=store)


# Test markers and configuration
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "redis: marks tests as Redis-related")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


def pytest_collection_modifyitems(config, items):
    """Add markers based on test file location."""
    for item in items:
        if "redis" in item.nodeid:
            item.add_marker(pytest.mark.redis)
        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.integration)
