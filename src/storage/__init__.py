"""
Policy Engine Storage Package

Cache and tenant store implementations and abstractions.
"""

from .base import KeyValueCache, TenantStore
from .json_store import JSONFileTenantStore
from .memory import InMemoryCache, InMemoryTenantStore
from .redis_cache import RedisCache

__all__ = [
    "KeyValueCache",
    "TenantStore",
    "InMemoryCache",
    "InMemoryTenantStore",
    "JSONFileTenantStore",
    "RedisCache",
]
