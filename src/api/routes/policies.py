"""
Policy Routes

Administrative endpoints for tenant policy documents, denial review, and
policy evaluation.
"""

from typing import Annotated, Any, Optional, Union

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, status
from pydantic import BaseModel, Field, ValidationError

from src.api.dependencies import get_audit_logger, get_policy_engine, require_admin_key
from src.models.policies import PolicyContext, PolicyDocument, PolicyResult, PolicySubject
from src.security.audit import AuditEntry, AuditLogger
from src.security.exceptions import (
    CacheUnavailable,
    StoreUnavailable,
    TenantNotFound,
    UnsupportedPolicyVersion,
)
from src.security.policies import PolicyEngine

router = APIRouter()


# Request/Response Models
class EvaluateRequest(BaseModel):
    """Policy evaluation request."""
    subject: Union[PolicySubject, str, dict[str, Any]] = Field(
        ...,
        description="Subject, role name, or {'role': ...}/{'user': ...} shorthand"
    )
    action: str = Field(..., min_length=1)
    resource: str = Field(..., min_length=1)
    resource_attributes: dict[str, Any] = Field(default_factory=dict)
    context: PolicyContext


class PolicyUpdateResponse(BaseModel):
    """Result of a policy document update."""
    tenant_id: str
    version: int
    roles: int
    rules: int


@router.get(
    "/tenants/{tenant_id}/policy",
    response_model=PolicyDocument,
    dependencies=[Depends(require_admin_key)],
)
async def get_policy(
    tenant_id: str,
    engine: Annotated[PolicyEngine, Depends(get_policy_engine)],
) -> PolicyDocument:
    """Get the effective policy document for a tenant."""
    return await engine.get_policy_document(tenant_id)


@router.put(
    "/tenants/{tenant_id}/policy",
    response_model=PolicyUpdateResponse,
    dependencies=[Depends(require_admin_key)],
)
async def update_policy(
    tenant_id: str,
    engine: Annotated[PolicyEngine, Depends(get_policy_engine)],
    document: dict[str, Any] = Body(...),
    x_user_id: Optional[str] = Header(None),
) -> PolicyUpdateResponse:
    """Replace a tenant's policy document (admin only)."""
    try:
        stored = await engine.update_policy_document(tenant_id, document, actor_id=x_user_id)
    except UnsupportedPolicyVersion as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.errors(include_url=False, include_context=False),
        )
    except TenantNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tenant not found",
        )
    except (StoreUnavailable, CacheUnavailable) as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Policy update failed: {e}",
        )

    return PolicyUpdateResponse(
        tenant_id=tenant_id,
        version=stored.version,
        roles=len(stored.roles),
        rules=len(stored.rules),
    )


@router.get(
    "/tenants/{tenant_id}/audit/denials",
    response_model=list[AuditEntry],
    dependencies=[Depends(require_admin_key)],
)
async def list_denials(
    tenant_id: str,
    audit_logger: Annotated[AuditLogger, Depends(get_audit_logger)],
    limit: int = Query(50, ge=1, le=1000),
) -> list[AuditEntry]:
    """Recent denial records for a tenant, most recent first."""
    return audit_logger.audit_log.get_policy_denials(tenant_id=tenant_id, limit=limit)


@router.post(
    "/policy/evaluate",
    response_model=PolicyResult,
    dependencies=[Depends(require_admin_key)],
)
async def evaluate_policy(
    request: EvaluateRequest,
    engine: Annotated[PolicyEngine, Depends(get_policy_engine)],
) -> PolicyResult:
    """Evaluate a request against the tenant's policy."""
    try:
        subject = PolicySubject.normalize(request.subject)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.errors(include_url=False, include_context=False),
        )

    return await engine.evaluate(
        subject,
        request.action,
        request.resource,
        request.context,
        resource_attributes=request.resource_attributes or None,
    )
