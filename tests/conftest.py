"""
Test Configuration and Fixtures

Shared fixtures for policy engine tests.
"""

import os
from typing import Any, Optional

import pytest

from src.models.tenants import Tenant
from src.security.exceptions import CacheUnavailable, StoreUnavailable
from src.storage.base import KeyValueCache, TenantStore

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "true"


VIEWER_POLICY = {
    "version": 1,
    "roles": {
        "VIEWER": {
            "permissions": {
                "Article": {
                    "resource": "Article",
                    "actions": ["read"],
                    "effect": "allow",
                    "scope": "all",
                },
            },
        },
        "EDITOR": {
            "permissions": {
                "Article": {
                    "resource": "Article",
                    "actions": ["read", "update"],
                    "effect": "allow",
                    "scope": "workspace",
                },
                "Logs": {
                    "resource": "Logs",
                    "actions": ["viewLogs"],
                    "effect": "deny",
                    "scope": "all",
                },
            },
        },
        "AUTHOR": {
            "permissions": {
                "Article": {
                    "resource": "Article",
                    "actions": ["delete"],
                    "effect": "allow",
                    "scope": "own",
                },
            },
        },
    },
    "rules": [
        {
            "id": "r-publish-deny",
            "effect": "deny",
            "subject": {"type": "role", "id": "VIEWER"},
            "action": "publish",
            "resource": "Article",
        },
        {
            "id": "r-publish-allow",
            "effect": "allow",
            "subject": {"type": "role", "id": "VIEWER"},
            "action": "publish",
            "resource": "Article",
        },
        {
            "id": "r-export",
            "effect": "allow",
            "subject": {"type": "user", "id": "u-42"},
            "action": "exportData",
            "resource": "Analytics",
        },
    ],
    "defaults": {"denyByDefault": True},
}


@pytest.fixture
def viewer_policy() -> dict[str, Any]:
    """Raw policy section with VIEWER, EDITOR and AUTHOR roles and three rules."""
    import copy
    return copy.deepcopy(VIEWER_POLICY)


@pytest.fixture
def policy_document(viewer_policy):
    """Validated policy document for tenant t1."""
    from src.models.policies import PolicyDocument
    return PolicyDocument.model_validate({**viewer_policy, "tenantId": "t1"})


@pytest.fixture
def context():
    """Request context for tenant t1 without a workspace."""
    from src.models.policies import PolicyContext
    return PolicyContext(tenant_id="t1", user_id="u-1", request_id="req-1")


@pytest.fixture
def workspace_context():
    """Request context for tenant t1 inside workspace w1."""
    from src.models.policies import PolicyContext
    return PolicyContext(tenant_id="t1", workspace_id="w1", user_id="u-1")


@pytest.fixture
def cache():
    """Process-local cache."""
    from src.storage.memory import InMemoryCache
    return InMemoryCache()


@pytest.fixture
def tenant_store(viewer_policy):
    """Tenant store with t1 (configured), t2 (no policy) and t3 (unsupported version)."""
    from src.storage.memory import InMemoryTenantStore

    return InMemoryTenantStore([
        Tenant(id="t1", name="Acme", configuration={"policyEngine": viewer_policy, "theme": "dark"}),
        Tenant(id="t2", name="Globex", configuration={}),
        Tenant(id="t3", name="Initech", configuration={"policyEngine": {"version": 2, "roles": {}}}),
    ])


@pytest.fixture
def audit_logger():
    """Audit logger keeping entries in memory only."""
    from src.security.audit import AuditLog, AuditLogger
    return AuditLogger(AuditLog(), enable_console=False)


@pytest.fixture
def policy_engine(cache, tenant_store, audit_logger):
    """Policy engine over in-memory collaborators."""
    from src.security.policies import PolicyEngine
    return PolicyEngine(cache=cache, tenant_store=tenant_store, audit_logger=audit_logger)


class FailingCache(KeyValueCache):
    """Cache whose every operation raises CacheUnavailable."""

    def __init__(self):
        self.calls: list[str] = []

    async def get(self, key: str) -> Optional[str]:
        self.calls.append("get")
        raise CacheUnavailable("get", key, ConnectionError("cache down"))

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        self.calls.append("set")
        raise CacheUnavailable("set", key, ConnectionError("cache down"))

    async def delete(self, key: str) -> bool:
        self.calls.append("delete")
        raise CacheUnavailable("delete", key, ConnectionError("cache down"))

    async def delete_pattern(self, pattern: str) -> int:
        self.calls.append("delete_pattern")
        raise CacheUnavailable("delete_pattern", pattern, ConnectionError("cache down"))

    async def ping(self) -> bool:
        return False


class FailingStore(TenantStore):
    """Tenant store whose reads and writes raise StoreUnavailable."""

    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        raise StoreUnavailable("read", tenant_id, OSError("disk gone"))

    async def save_policy_section(self, tenant_id: str, section: dict[str, Any]) -> Tenant:
        raise StoreUnavailable("write", tenant_id, OSError("disk gone"))

    async def create_tenant(self, tenant: Tenant) -> Tenant:
        raise StoreUnavailable("write", tenant.id, OSError("disk gone"))


@pytest.fixture
def failing_cache():
    """Cache that is always unreachable."""
    return FailingCache()


@pytest.fixture
def failing_store():
    """Tenant store that is always unreachable."""
    return FailingStore()
