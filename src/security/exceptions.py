"""
Policy Engine Exceptions

Error taxonomy for document access, caching, and storage failures.
"""

from typing import Optional


class PolicyEngineError(Exception):
    """Base class for all policy engine errors."""


class TenantNotFound(PolicyEngineError):
    """A document update targeted a tenant that does not exist."""

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Tenant not found: {tenant_id}")


class UnsupportedPolicyVersion(PolicyEngineError):
    """A stored policy document carries a version the engine cannot interpret."""

    def __init__(self, version: object):
        self.version = version
        super().__init__(f"Unsupported policy version: {version!r}")


class CacheUnavailable(PolicyEngineError):
    """A cache read, write, or delete failed."""

    def __init__(self, operation: str, key: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.key = key
        self.cause = cause
        super().__init__(f"Cache {operation} failed for key '{key}': {cause}")


class AuditUnavailable(PolicyEngineError):
    """An audit record could not be written."""

    def __init__(self, action: str, cause: Optional[BaseException] = None):
        self.action = action
        self.cause = cause
        super().__init__(f"Audit write failed for '{action}': {cause}")


class StoreUnavailable(PolicyEngineError):
    """The tenant store could not be read or written."""

    def __init__(self, operation: str, tenant_id: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.tenant_id = tenant_id
        self.cause = cause
        super().__init__(f"Tenant store {operation} failed for tenant '{tenant_id}': {cause}")
