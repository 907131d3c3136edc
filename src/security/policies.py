"""
Policy Engine

Unified policy evaluation combining RBAC and ABAC, with a policy document
cache, an evaluation cache, and audit logging of every denial.
"""

import asyncio
from typing import Any, Mapping, Optional, Union

import structlog
from pydantic import ValidationError

from src.models.policies import (
    SUPPORTED_POLICY_VERSION,
    PolicyAction,
    PolicyContext,
    PolicyDocument,
    PolicyResult,
    PolicySubject,
    ResourceType,
    as_name,
    default_policy_document,
)
from src.storage.base import KeyValueCache, TenantStore

from .abac import ABACEngine
from .audit import AuditAction, AuditLogger
from .cache_keys import PolicyCacheKeys
from .exceptions import (
    AuditUnavailable,
    CacheUnavailable,
    StoreUnavailable,
    TenantNotFound,
    UnsupportedPolicyVersion,
)
from .rbac import RBACEngine


logger = structlog.get_logger(__name__)

DEFAULT_DENY_REASON = "denied by default"

DOCUMENT_CACHE_TTL_SECONDS = 300
EVALUATION_CACHE_TTL_SECONDS = 60

SubjectLike = Union[PolicySubject, str, dict]


def decode_policy_document(raw: Any, tenant_id: Optional[str] = None) -> PolicyDocument:
    """
    Strictly decode a stored policy section.

    Raises:
        UnsupportedPolicyVersion: The section omits its version or declares
            a version other than 1
        ValidationError: The section does not match the document schema
    """
    if isinstance(raw, Mapping):
        version = raw.get("version")
        if version != SUPPORTED_POLICY_VERSION:
            raise UnsupportedPolicyVersion(version)

    document = PolicyDocument.model_validate(raw)
    if document.tenant_id is None and tenant_id is not None:
        document = document.model_copy(update={"tenant_id": tenant_id})
    return document


class PolicyEngine:
    """
    Unified Policy Engine combining RBAC and ABAC.

    Decision precedence: RBAC deny, RBAC allow, ABAC deny, ABAC allow, then
    default deny. Every terminal decision is written to the evaluation cache
    and every denial to the audit sink.

    Cache and store failures never fail an evaluation: cache errors are
    bypassed and store errors fall back to the deny-by-default document.
    The engine holds no mutable state of its own; cache, store, and audit
    sink are injected.
    """

    def __init__(
        self,
        cache: KeyValueCache,
        tenant_store: TenantStore,
        audit_logger: Optional[AuditLogger] = None,
        rbac: Optional[RBACEngine] = None,
        abac: Optional[ABACEngine] = None,
        cache_keys: Optional[PolicyCacheKeys] = None,
        document_ttl: int = DOCUMENT_CACHE_TTL_SECONDS,
        evaluation_ttl: int = EVALUATION_CACHE_TTL_SECONDS,
    ):
        """
        Initialize the policy engine.

        Args:
            cache: Cache shared by policy documents and evaluation results
            tenant_store: Durable store of tenant configurations
            audit_logger: Audit sink for denials and policy updates
            rbac: RBAC evaluator
            abac: ABAC evaluator
            cache_keys: Cache key builder
            document_ttl: Policy document cache TTL in seconds
            evaluation_ttl: Evaluation result cache TTL in seconds
        """
        self.cache = cache
        self.tenant_store = tenant_store
        self.audit_logger = audit_logger or AuditLogger()
        self.rbac = rbac or RBACEngine()
        self.abac = abac or ABACEngine()
        self.cache_keys = cache_keys or PolicyCacheKeys()
        self.document_ttl = document_ttl
        self.evaluation_ttl = evaluation_ttl

    # ==========================================================================
    # Policy document access
    # ==========================================================================

    async def get_policy_document(self, tenant_id: str) -> PolicyDocument:
        """
        Get the policy document for a tenant.

        Reads through the document cache. Never raises for a missing or
        invalid configuration; the default document is returned instead and
        is not cached.
        """
        cache_key = self.cache_keys.document(tenant_id)

        cached = await self._cache_get(cache_key)
        if cached is not None:
            try:
                return PolicyDocument.model_validate_json(cached)
            except ValidationError as e:
                logger.warning("cached_policy_document_unreadable", tenant_id=tenant_id, error=str(e))

        document = await self._load_policy_document(tenant_id)
        if document is None:
            return default_policy_document(tenant_id)

        await self._cache_set(cache_key, document.model_dump_json(), self.document_ttl)
        return document

    async def _load_policy_document(self, tenant_id: str) -> Optional[PolicyDocument]:
        """Load and validate a tenant's document from the store, or None."""
        try:
            tenant = await self.tenant_store.get_tenant(tenant_id)
        except StoreUnavailable as e:
            logger.error("policy_store_unavailable", tenant_id=tenant_id, error=str(e))
            return None

        if tenant is None or tenant.policy_section is None:
            logger.warning("policy_document_not_configured", tenant_id=tenant_id)
            return None

        try:
            return decode_policy_document(tenant.policy_section, tenant_id)
        except UnsupportedPolicyVersion as e:
            logger.warning("unsupported_policy_version", tenant_id=tenant_id, version=e.version)
        except ValidationError as e:
            logger.warning(
                "invalid_policy_document",
                tenant_id=tenant_id,
                errors=e.error_count(),
                error=str(e),
            )
        return None

    async def invalidate_policy_document(self, tenant_id: str) -> None:
        """
        Drop the tenant's cached document and cached evaluation results.

        Raises:
            CacheUnavailable: The cache could not be reached
        """
        await self.cache.delete(self.cache_keys.document(tenant_id))
        removed = await self.cache.delete_pattern(self.cache_keys.tenant_evaluations(tenant_id))
        logger.debug(
            "policy_document_invalidated",
            tenant_id=tenant_id,
            evaluations_removed=removed,
        )

    async def update_policy_document(
        self,
        tenant_id: str,
        document: Union[PolicyDocument, Mapping[str, Any]],
        actor_id: Optional[Union[str, int]] = None,
    ) -> PolicyDocument:
        """
        Replace a tenant's policy document.

        Args:
            tenant_id: Target tenant
            document: The new document (validated if given as a mapping)
            actor_id: Administrator making the change

        Returns:
            The stored document

        Raises:
            TenantNotFound: The tenant does not exist
            StoreUnavailable: The store could not be read or written
            CacheUnavailable: The cached copy could not be invalidated
            ValidationError: The document does not match the schema
        """
        if not isinstance(document, PolicyDocument):
            document = decode_policy_document(document)
        document = document.model_copy(update={"tenant_id": tenant_id})

        if not await self.tenant_store.tenant_exists(tenant_id):
            raise TenantNotFound(tenant_id)

        await self.tenant_store.save_policy_section(
            tenant_id,
            document.model_dump(mode="json", by_alias=True),
        )

        # The stored document is live from here on; audit even if invalidation fails.
        try:
            await self.invalidate_policy_document(tenant_id)
        finally:
            await self.audit_logger.log_action(
                action=AuditAction.POLICY_UPDATE,
                resource="Policy",
                payload={"tenant_id": tenant_id, "policy_version": document.version},
                actor_id=actor_id,
                tenant_id=tenant_id,
            )

        logger.info(
            "policy_document_updated",
            tenant_id=tenant_id,
            actor_id=actor_id,
            roles=len(document.roles),
            rules=len(document.rules),
        )
        return document

    # ==========================================================================
    # Evaluation
    # ==========================================================================

    async def evaluate(
        self,
        subject: SubjectLike,
        action: Union[PolicyAction, str],
        resource: Union[ResourceType, str],
        context: Union[PolicyContext, Mapping[str, Any]],
        resource_attributes: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> PolicyResult:
        """
        Decide whether a subject may perform an action on a resource type.

        Args:
            subject: Subject, or a role name as shorthand
            action: Requested action
            resource: Resource type
            context: Request context (must carry the tenant id)
            resource_attributes: Attributes of the targeted resource
            timeout: Deadline in seconds for the whole evaluation

        Returns:
            A terminal PolicyResult: exactly one of allowed/denied is true

        Raises:
            asyncio.TimeoutError: The deadline passed before a decision
        """
        if timeout is not None:
            return await asyncio.wait_for(
                self._evaluate(subject, action, resource, context, resource_attributes),
                timeout=timeout,
            )
        return await self._evaluate(subject, action, resource, context, resource_attributes)

    async def is_allowed(
        self,
        subject: SubjectLike,
        action: Union[PolicyAction, str],
        resource: Union[ResourceType, str],
        context: Union[PolicyContext, Mapping[str, Any]],
        resource_attributes: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """Simple boolean check for access."""
        result = await self.evaluate(subject, action, resource, context, resource_attributes)
        return result.allowed

    async def _evaluate(
        self,
        subject: SubjectLike,
        action: Union[PolicyAction, str],
        resource: Union[ResourceType, str],
        context: Union[PolicyContext, Mapping[str, Any]],
        resource_attributes: Optional[Mapping[str, Any]],
    ) -> PolicyResult:
        normalized_subject = PolicySubject.normalize(subject)
        action_name = as_name(action)
        resource_name = as_name(resource)
        if not isinstance(context, PolicyContext):
            context = PolicyContext.model_validate(context)

        eval_key = self.cache_keys.evaluation(
            normalized_subject,
            action_name,
            resource_name,
            context,
            resource_owner=self._resource_owner(resource_attributes),
        )

        cached = await self._cache_get(eval_key)
        if cached is not None:
            try:
                return PolicyResult.model_validate_json(cached)
            except ValidationError as e:
                logger.warning("cached_evaluation_unreadable", key=eval_key, error=str(e))

        document = await self.get_policy_document(context.tenant_id)

        result = self.rbac.evaluate(
            normalized_subject, action_name, resource_name, context, document, resource_attributes
        )
        layer = "rbac"

        if not result.has_opinion:
            result = self.abac.evaluate(
                normalized_subject, action_name, resource_name, context, document
            )
            layer = "abac"

        if not result.has_opinion:
            result = PolicyResult.deny(DEFAULT_DENY_REASON)
            layer = "default"

        await self._cache_set(eval_key, result.model_dump_json(), self.evaluation_ttl)

        logger.debug(
            "policy_evaluated",
            tenant_id=context.tenant_id,
            subject_type=normalized_subject.type.value,
            subject_id=normalized_subject.id,
            action=action_name,
            resource=resource_name,
            layer=layer,
            allowed=result.allowed,
            matched_rule_id=result.matched_rule_id,
        )

        if result.denied:
            await self._audit_denial(
                normalized_subject, action_name, resource_name, context, result, resource_attributes
            )

        return result

    def _resource_owner(self, resource_attributes: Optional[Mapping[str, Any]]) -> Optional[str]:
        if not self.rbac.enforce_resource_ownership or not resource_attributes:
            return None
        owner_id = resource_attributes.get("owner_id")
        return str(owner_id) if owner_id is not None else None

    async def _audit_denial(
        self,
        subject: PolicySubject,
        action: str,
        resource: str,
        context: PolicyContext,
        result: PolicyResult,
        resource_attributes: Optional[Mapping[str, Any]],
    ) -> None:
        try:
            await self.audit_logger.log_policy_denial(
                subject=subject,
                action=action,
                resource=resource,
                context=context,
                reason=result.reason,
                matched_rule_id=result.matched_rule_id,
                resource_attributes=resource_attributes,
            )
        except AuditUnavailable as e:
            # The decision stands; a lost audit record is reported, not raised.
            logger.error(
                "policy_denial_audit_failed",
                tenant_id=context.tenant_id,
                subject_id=subject.id,
                action=action,
                resource=resource,
                error=str(e),
            )

    # ==========================================================================
    # Cache helpers
    # ==========================================================================

    async def _cache_get(self, key: str) -> Optional[str]:
        try:
            return await self.cache.get(key)
        except CacheUnavailable as e:
            logger.warning("policy_cache_unavailable", operation="get", key=key, error=str(e))
            return None

    async def _cache_set(self, key: str, value: str, ttl: int) -> None:
        try:
            await self.cache.set(key, value, ttl)
        except CacheUnavailable as e:
            logger.warning("policy_cache_unavailable", operation="set", key=key, error=str(e))
