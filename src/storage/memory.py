"""
In-Memory Storage

Process-local cache and tenant store, for tests and single-process development.
"""

import re
import time
from typing import Any, Callable, Optional

from src.models.tenants import POLICY_SECTION_KEY, Tenant
from src.security.exceptions import TenantNotFound

from .base import KeyValueCache, TenantStore


def _glob_to_regex(pattern: str) -> "re.Pattern[str]":
    """Compile a Redis-style glob (``*``, ``?``, ``[...]``, backslash escapes)."""
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if char == "\\" and i + 1 < len(pattern):
            parts.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        elif char == "[":
            close = pattern.find("]", i + 1)
            if close == -1:
                parts.append(re.escape(char))
            else:
                body = pattern[i + 1:close].replace("\\", "\\\\")
                parts.append(f"[{body}]")
                i = close + 1
                continue
        else:
            parts.append(re.escape(char))
        i += 1
    return re.compile("".join(parts), re.DOTALL)


class InMemoryCache(KeyValueCache):
    """
    Dictionary-backed cache honouring per-key TTL.

    Expired entries are dropped lazily on access.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """
        Initialize the cache.

        Args:
            clock: Monotonic time source, injectable for tests
        """
        self._entries: dict[str, tuple[str, Optional[float]]] = {}
        self._clock = clock

    def _expired(self, expires_at: Optional[float]) -> bool:
        return expires_at is not None and self._clock() >= expires_at

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._expired(expires_at):
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl is not None else None
        self._entries[key] = (value, expires_at)

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def delete_pattern(self, pattern: str) -> int:
        regex = _glob_to_regex(pattern)
        matching = [k for k in self._entries if regex.fullmatch(k)]
        for key in matching:
            del self._entries[key]
        return len(matching)

    def keys(self) -> list[str]:
        """Live keys, for inspection."""
        return [k for k, (_, exp) in self._entries.items() if not self._expired(exp)]


class InMemoryTenantStore(TenantStore):
    """Dictionary-backed tenant store."""

    def __init__(self, tenants: Optional[list[Tenant]] = None):
        self._tenants: dict[str, Tenant] = {t.id: t for t in tenants or []}

    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        tenant = self._tenants.get(tenant_id)
        return tenant.model_copy(deep=True) if tenant else None

    async def save_policy_section(self, tenant_id: str, section: dict[str, Any]) -> Tenant:
        tenant = self._tenants.get(tenant_id)
        if tenant is None:
            raise TenantNotFound(tenant_id)

        updated = Tenant(
            id=tenant.id,
            name=tenant.name,
            configuration={**tenant.configuration, POLICY_SECTION_KEY: section},
        )
        self._tenants[tenant_id] = updated
        return updated.model_copy(deep=True)

    async def create_tenant(self, tenant: Tenant) -> Tenant:
        self._tenants[tenant.id] = tenant.model_copy(deep=True)
        return tenant
