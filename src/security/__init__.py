"""
Policy Engine Security Package

Role-Based Access Control (RBAC), Attribute-Based Access Control (ABAC),
the orchestrating PolicyEngine, and audit logging.
"""

from .exceptions import (
    AuditUnavailable,
    CacheUnavailable,
    PolicyEngineError,
    StoreUnavailable,
    TenantNotFound,
    UnsupportedPolicyVersion,
)
from .abac import ABACEngine
from .audit import AuditAction, AuditEntry, AuditLog, AuditLogger
from .cache_keys import PolicyCacheKeys, evaluation_fingerprint
from .policies import PolicyEngine, decode_policy_document
from .rbac import RBACEngine

__all__ = [
    "RBACEngine",
    "ABACEngine",
    "PolicyEngine",
    "decode_policy_document",
    "PolicyCacheKeys",
    "evaluation_fingerprint",
    "AuditAction",
    "AuditLogger",
    "AuditLog",
    "AuditEntry",
    "PolicyEngineError",
    "TenantNotFound",
    "UnsupportedPolicyVersion",
    "CacheUnavailable",
    "StoreUnavailable",
    "AuditUnavailable",
]
