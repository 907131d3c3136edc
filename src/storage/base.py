"""
Storage Base Classes

Abstract interfaces for the key/value cache and the tenant store used by the
policy engine.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from src.models.tenants import Tenant


class KeyValueCache(ABC):
    """
    Abstract base class for cache implementations.

    The engine treats the cache as an untyped string store with per-key TTL.
    Implementations raise ``CacheUnavailable`` on any backend failure.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """
        Get a value.

        Args:
            key: Cache key

        Returns:
            The stored string, or None if absent or expired
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        """
        Store a value.

        Args:
            key: Cache key
            value: String value
            ttl: Time to live in seconds (None = no expiration)
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Delete a key.

        Returns:
            True if a key was removed
        """
        pass

    @abstractmethod
    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete every key matching a glob-style pattern.

        Returns:
            Number of keys removed
        """
        pass

    async def ping(self) -> bool:
        """Check backend connectivity."""
        return True

    async def close(self) -> None:
        """Release backend resources."""
        return None


class TenantStore(ABC):
    """
    Abstract base class for durable tenant configuration storage.

    Implementations raise ``StoreUnavailable`` on I/O failure and
    ``TenantNotFound`` when writing to an unknown tenant.
    """

    @abstractmethod
    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        """
        Load a tenant.

        Returns:
            The tenant, or None if it does not exist
        """
        pass

    @abstractmethod
    async def save_policy_section(self, tenant_id: str, section: dict[str, Any]) -> Tenant:
        """
        Replace the policy section of a tenant's configuration.

        The rest of the configuration is preserved.

        Returns:
            The updated tenant
        """
        pass

    @abstractmethod
    async def create_tenant(self, tenant: Tenant) -> Tenant:
        """Create or replace a tenant record."""
        pass

    async def tenant_exists(self, tenant_id: str) -> bool:
        return await self.get_tenant(tenant_id) is not None
