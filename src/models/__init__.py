"""
Policy Engine Models Package

Pydantic models for policy documents, evaluation requests, and tenants.
"""

from .policies import (
    GeoLocation,
    Permission,
    PermissionScope,
    PolicyAction,
    PolicyContext,
    PolicyDefaults,
    PolicyDocument,
    PolicyEffect,
    PolicyResult,
    PolicyRule,
    PolicySubject,
    ResourceType,
    RolePermissionSet,
    RuleConditions,
    SubjectType,
    TimeWindow,
    default_policy_document,
)
from .tenants import Tenant

__all__ = [
    # Policies
    "PolicyDocument",
    "PolicyDefaults",
    "RolePermissionSet",
    "Permission",
    "PermissionScope",
    "PolicyRule",
    "RuleConditions",
    "TimeWindow",
    "PolicyEffect",
    "PolicyAction",
    "ResourceType",
    "default_policy_document",
    # Requests and decisions
    "PolicySubject",
    "SubjectType",
    "PolicyContext",
    "GeoLocation",
    "PolicyResult",
    # Tenants
    "Tenant",
]
