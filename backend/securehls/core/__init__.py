"""Core module for configuration and utilities."""

from securehls.core.config import settings
from securehls.core.database import Base, get_db
from securehls.core.redis import (
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
    get_kv_store,
)

__all__ = [
    "settings",
    "Base",
    "get_db",
    "KeyValueStore",
    "RedisKeyValueStore",
    "InMemoryKeyValueStore",
    "get_kv_store",
]
