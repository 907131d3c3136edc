"""
API Dependencies

Construction of the policy engine and its collaborators, and dependency
injection for FastAPI routes.
"""

import asyncio
import secrets
from typing import Annotated, Any, Optional, Union

import structlog
from fastapi import Depends, Header, HTTPException, Request, status

from config import CacheBackend, Settings, get_settings
from src.models.policies import (
    PolicyAction,
    PolicyContext,
    PolicyResult,
    PolicySubject,
    ResourceType,
    as_name,
)
from src.security.audit import AuditLog, AuditLogger
from src.security.cache_keys import PolicyCacheKeys
from src.security.policies import PolicyEngine
from src.security.rbac import RBACEngine
from src.storage import (
    InMemoryCache,
    InMemoryTenantStore,
    JSONFileTenantStore,
    KeyValueCache,
    RedisCache,
    TenantStore,
)


logger = structlog.get_logger(__name__)


# ==========================================================================
# Construction
# ==========================================================================


def build_cache(settings: Settings) -> KeyValueCache:
    """Create the cache backend selected by settings."""
    match settings.cache_backend:
        case CacheBackend.REDIS:
            return RedisCache.from_url(settings.redis_url)
        case _:
            return InMemoryCache()


def build_tenant_store(settings: Settings) -> TenantStore:
    """Create the tenant store selected by settings."""
    if settings.tenant_store_path:
        return JSONFileTenantStore(settings.tenant_store_path)
    return InMemoryTenantStore()


def build_policy_engine(
    settings: Settings,
    cache: Optional[KeyValueCache] = None,
    tenant_store: Optional[TenantStore] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> PolicyEngine:
    """
    Create a policy engine wired from settings.

    Collaborators passed explicitly take precedence over settings.
    """
    return PolicyEngine(
        cache=cache or build_cache(settings),
        tenant_store=tenant_store or build_tenant_store(settings),
        audit_logger=audit_logger or AuditLogger(AuditLog(storage_path=settings.audit_log_path)),
        rbac=RBACEngine(enforce_resource_ownership=settings.enforce_resource_ownership),
        cache_keys=PolicyCacheKeys(prefix=settings.cache_key_prefix),
        document_ttl=settings.policy_cache_ttl_seconds,
        evaluation_ttl=settings.evaluation_cache_ttl_seconds,
    )


# ==========================================================================
# Injection
# ==========================================================================


def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with."""
    return getattr(request.app.state, "settings", None) or get_settings()


def get_policy_engine(request: Request) -> PolicyEngine:
    """Policy engine owned by the application."""
    return request.app.state.policy_engine


def get_audit_logger(
    engine: Annotated[PolicyEngine, Depends(get_policy_engine)],
) -> AuditLogger:
    """Audit logger used by the policy engine."""
    return engine.audit_logger


async def require_admin_key(
    settings: Annotated[Settings, Depends(get_app_settings)],
    x_api_key: Optional[str] = Header(None),
) -> None:
    """
    Guard for the administrative surface.

    Requires X-API-Key to match the configured key. Without a configured
    key the surface is open in debug mode and closed otherwise.
    """
    if settings.api_key is None:
        if settings.debug:
            return
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrative API is disabled",
        )

    if x_api_key is None or not secrets.compare_digest(x_api_key, settings.api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )


def get_request_subject(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> PolicySubject:
    """
    Subject for the current request.

    A role header yields a role subject; otherwise the user id header yields
    a user subject. Identity is established upstream by the session layer.
    """
    if x_user_role:
        return PolicySubject.role(x_user_role)
    if x_user_id:
        return PolicySubject.user(x_user_id)
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="User not authenticated",
    )


def get_request_context(
    request: Request,
    x_tenant_id: Optional[str] = Header(None),
    x_workspace_id: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
    x_device_id: Optional[str] = Header(None),
    x_session_id: Optional[str] = Header(None),
    x_request_id: Optional[str] = Header(None),
    user_agent: Optional[str] = Header(None),
) -> PolicyContext:
    """
    Policy context for the current request.

    Tenant and workspace path parameters take precedence over headers.
    """
    tenant_id = request.path_params.get("tenant_id") or x_tenant_id
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Tenant could not be determined for this request",
        )

    return PolicyContext(
        tenant_id=tenant_id,
        workspace_id=request.path_params.get("workspace_id") or x_workspace_id,
        user_id=x_user_id,
        request_id=x_request_id or getattr(request.state, "request_id", None),
        ip=request.client.host if request.client else None,
        user_agent=user_agent,
        device_id=x_device_id or x_session_id,
        session_id=x_session_id,
    )


def require_permission(
    action: Union[PolicyAction, str],
    resource: Union[ResourceType, str],
):
    """
    Dependency factory enforcing a policy decision.

    Args:
        action: Action the route performs
        resource: Resource type the route acts on

    Returns:
        Dependency that evaluates the policy and raises 403 on denial
    """
    action_name = as_name(action)
    resource_name = as_name(resource)

    async def permission_checker(
        request: Request,
        subject: Annotated[PolicySubject, Depends(get_request_subject)],
        context: Annotated[PolicyContext, Depends(get_request_context)],
        engine: Annotated[PolicyEngine, Depends(get_policy_engine)],
        settings: Annotated[Settings, Depends(get_app_settings)],
    ) -> PolicyResult:
        resource_attributes: dict[str, Any] = {}
        owner_id = request.headers.get("X-Resource-Owner-ID")
        if owner_id:
            resource_attributes["owner_id"] = owner_id

        try:
            result = await engine.evaluate(
                subject,
                action_name,
                resource_name,
                context,
                resource_attributes=resource_attributes or None,
                timeout=settings.evaluation_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                "policy_evaluation_timeout",
                tenant_id=context.tenant_id,
                action=action_name,
                resource=resource_name,
            )
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Policy evaluation timed out",
            )

        if not result.allowed:
            logger.warning(
                "policy_guard_denied",
                tenant_id=context.tenant_id,
                subject_id=subject.id,
                action=action_name,
                resource=resource_name,
                reason=result.reason,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=result.reason or "Access denied",
            )

        request.state.policy_result = result
        return result

    return permission_checker
