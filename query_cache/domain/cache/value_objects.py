"""
Cache Value Objects

Immutable value objects for the query cache domain.
Provides type safety for operation kinds, tags, and cache configuration.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ...constants import DEFAULT_CACHE_TIME, TAG_SEPARATOR, WILDCARD

logger = logging.getLogger(__name__)


class QueryAction(str, Enum):
    """Data-access operation kinds understood by the cache layer."""

    # Reads
    FIND_UNIQUE = "find_unique"
    FIND_UNIQUE_OR_THROW = "find_unique_or_throw"
    FIND_FIRST = "find_first"
    FIND_FIRST_OR_THROW = "find_first_or_throw"
    FIND_MANY = "find_many"
    COUNT = "count"
    AGGREGATE = "aggregate"
    GROUP_BY = "group_by"
    QUERY_RAW = "query_raw"

    # Writes
    CREATE = "create"
    CREATE_MANY = "create_many"
    UPDATE = "update"
    UPDATE_MANY = "update_many"
    UPSERT = "upsert"
    DELETE = "delete"
    DELETE_MANY = "delete_many"
    EXECUTE_RAW = "execute_raw"


READ_ACTIONS: FrozenSet[str] = frozenset(
    action.value
    for action in (
        QueryAction.FIND_UNIQUE,
        QueryAction.FIND_UNIQUE_OR_THROW,
        QueryAction.FIND_FIRST,
        QueryAction.FIND_FIRST_OR_THROW,
        QueryAction.FIND_MANY,
        QueryAction.COUNT,
        QueryAction.AGGREGATE,
        QueryAction.GROUP_BY,
        QueryAction.QUERY_RAW,
    )
)

# Closed set, intentionally not configurable
MUTATION_ACTIONS: FrozenSet[str] = frozenset(
    action.value
    for action in (
        QueryAction.CREATE,
        QueryAction.CREATE_MANY,
        QueryAction.UPDATE,
        QueryAction.UPDATE_MANY,
        QueryAction.UPSERT,
        QueryAction.DELETE,
        QueryAction.DELETE_MANY,
        QueryAction.EXECUTE_RAW,
    )
)


class CacheDecision(str, Enum):
    """Outcome of classifying an intercepted operation."""

    SKIP = "skip"
    READ = "read"
    WRITE = "write"


def serialize_call_key(action: str, args: Any) -> str:
    """Deterministic serialization of a read call.

    Keys are sorted and separators compact so that equal argument payloads
    always produce the same key regardless of dict ordering.
    """
    return json.dumps(
        {"action": action, "args": args},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )


@dataclass(frozen=True)
class InvalidationTag:
    """
    Immutable cache tag value object.

    The string form ``<tag_key>~<call_key>`` is both the store key and the
    unit matched by wildcard invalidation.
    """

    tag_key: str
    call_key: str

    def __post_init__(self) -> None:
        if not self.tag_key:
            raise ValueError("Tag key cannot be empty")
        if TAG_SEPARATOR in self.tag_key:
            raise ValueError(f"Tag key cannot contain '{TAG_SEPARATOR}'")

    @property
    def value(self) -> str:
        return f"{self.tag_key}{TAG_SEPARATOR}{self.call_key}"

    @classmethod
    def for_call(cls, tag_key: str, action: str, args: Any) -> "InvalidationTag":
        """Create the tag for one read call against an entity type."""
        return cls(tag_key, serialize_call_key(action, args))

    @staticmethod
    def wildcard(tag_key: str) -> str:
        """Pattern matching every tag stored for ``tag_key``."""
        return f"{WILDCARD}{tag_key}{TAG_SEPARATOR}{WILDCARD}"

    def __str__(self) -> str:
        return self.value


TYPE_MARKER = "__type__"

# Column types JSON cannot carry, stored as {"__type__": name, "value": text}
_TYPED_VALUES: Tuple[Tuple[str, type, Callable[[Any], str], Callable[[str], Any]], ...] = (
    ("datetime", datetime, datetime.isoformat, datetime.fromisoformat),
    ("date", date, date.isoformat, date.fromisoformat),
    ("time", time, time.isoformat, time.fromisoformat),
    ("decimal", Decimal, str, Decimal),
    ("uuid", uuid.UUID, str, uuid.UUID),
    ("bytes", bytes, bytes.hex, bytes.fromhex),
)
_DECODERS = {name: decode for name, _, _, decode in _TYPED_VALUES}


def _encode_value(value: Any) -> Any:
    for name, kind, encode, _ in _TYPED_VALUES:
        if isinstance(value, kind):
            return {TYPE_MARKER: name, "value": encode(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return list(value)
    return str(value)


def _decode_object(obj: Dict[str, Any]) -> Any:
    if len(obj) == 2 and obj.get(TYPE_MARKER) in _DECODERS and "value" in obj:
        return _DECODERS[obj[TYPE_MARKER]](obj["value"])
    return obj


def json_serialize(value: Any) -> str:
    """JSON with typed markers for datetime, date, time, Decimal, UUID and bytes."""
    return json.dumps(value, default=_encode_value)


def json_deserialize(raw: Any) -> Any:
    return json.loads(raw, object_hook=_decode_object)


@dataclass(frozen=True)
class Transformer:
    """
    Serialize/deserialize pair applied around the tag store.

    A fetched result is returned after the same round trip a cached one
    takes, so hits and misses hand back equal values.
    """

    serialize: Callable[[Any], Any] = json_serialize
    deserialize: Callable[[Any], Any] = json_deserialize


class StorageConfig(BaseModel):
    """Backing store descriptor."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    type: Literal["memory", "redis"] = "memory"
    options: Dict[str, Any] = Field(default_factory=dict)


def _drop_mutations(actions: FrozenSet[str]) -> FrozenSet[str]:
    mutations = sorted(actions & MUTATION_ACTIONS)
    if mutations:
        logger.warning(f"Ignoring mutation actions in exclude_methods: {mutations}")
    return actions - MUTATION_ACTIONS


class ModelCacheRule(BaseModel):
    """Per entity type cache rule."""

    model_config = ConfigDict(frozen=True)

    model: str = Field(..., min_length=1, description="Entity type name")
    cache_time: Optional[int] = Field(
        default=None, ge=0, description="TTL override in seconds"
    )
    cache_key: Optional[str] = Field(
        default=None, min_length=1, description="Tag key override"
    )
    exclude_methods: FrozenSet[str] = Field(default_factory=frozenset)
    invalidate_related: Tuple[str, ...] = Field(default_factory=tuple)

    @field_validator("cache_key")
    @classmethod
    def validate_cache_key(cls, v):
        """Tag keys must not contain the tag separator."""
        if v is not None and TAG_SEPARATOR in v:
            raise ValueError(f"cache_key cannot contain '{TAG_SEPARATOR}'")
        return v

    @field_validator("exclude_methods")
    @classmethod
    def validate_exclude_methods(cls, v):
        return _drop_mutations(v)

    @property
    def tag_key(self) -> str:
        return self.cache_key or self.model


class CacheConfiguration(BaseModel):
    """
    Global cache settings consumed when the pipeline is constructed.

    Frozen: the pipeline never observes a configuration change.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    models: Tuple[ModelCacheRule, ...] = Field(default_factory=tuple)
    exclude_models: FrozenSet[str] = Field(default_factory=frozenset)
    exclude_methods: FrozenSet[str] = Field(default_factory=frozenset)
    cache_time: int = Field(default=DEFAULT_CACHE_TIME, ge=0)
    cache_unconfigured_models: bool = Field(
        default=True,
        description="Create bindings with global defaults for models without a rule",
    )
    transformer: Optional[Transformer] = None
    on_hit: Optional[Callable[[str], Any]] = None
    on_miss: Optional[Callable[[str], Any]] = None
    on_dedupe: Optional[Callable[[str], Any]] = None
    on_error: Optional[Callable[[Exception], Any]] = None
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @field_validator("exclude_methods")
    @classmethod
    def validate_exclude_methods(cls, v):
        return _drop_mutations(v)

    @classmethod
    def from_settings(cls, settings, **overrides: Any) -> "CacheConfiguration":
        """Build a configuration from environment settings.

        Keyword overrides (models, hooks, ...) take precedence.
        """
        storage_options: Dict[str, Any] = {}
        if settings.CACHE_STORAGE == "redis":
            storage_options = {
                "url": settings.REDIS_URL,
                "max_connections": settings.REDIS_MAX_CONNECTIONS,
                "scan_count": settings.REDIS_SCAN_COUNT,
            }

        values: Dict[str, Any] = {
            "cache_time": settings.CACHE_TIME,
            "exclude_models": frozenset(settings.exclude_models_list),
            "exclude_methods": frozenset(settings.exclude_methods_list),
            "cache_unconfigured_models": settings.CACHE_UNCONFIGURED_MODELS,
            "storage": StorageConfig(
                type=settings.CACHE_STORAGE, options=storage_options
            ),
        }
        values.update(overrides)
        return cls(**values)
