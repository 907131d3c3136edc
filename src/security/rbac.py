"""
Role-Based Access Control (RBAC) Engine

Evaluates a role subject against the role permissions declared in a tenant's
policy document.
"""

from typing import Any, Mapping, Optional

from src.models.policies import (
    PermissionScope,
    PolicyContext,
    PolicyDocument,
    PolicyEffect,
    PolicyResult,
    PolicySubject,
)


class RBACEngine:
    """
    Role-Based Access Control Engine.

    Returns an explicit allow, an explicit deny, or "no opinion" (both flags
    false). An explicit deny here is final: the policy engine does not
    consult ABAC after it.
    """

    def __init__(self, enforce_resource_ownership: bool = False):
        """
        Initialize the RBAC engine.

        Args:
            enforce_resource_ownership: When True, "own" scope also requires
                the resource's ``owner_id`` attribute to equal the caller's
                user id. When False, "own" is checked like "workspace".
        """
        self.enforce_resource_ownership = enforce_resource_ownership

    def evaluate(
        self,
        subject: PolicySubject,
        action: str,
        resource: str,
        context: PolicyContext,
        document: PolicyDocument,
        resource_attributes: Optional[Mapping[str, Any]] = None,
    ) -> PolicyResult:
        """
        Evaluate role permissions for a request.

        Args:
            subject: The subject being evaluated
            action: Requested action
            resource: Resource type
            context: Request context
            document: The tenant's policy document
            resource_attributes: Attributes of the targeted resource

        Returns:
            PolicyResult; both flags false when RBAC has no opinion
        """
        if not subject.is_role:
            return PolicyResult.no_opinion("subject is not a role; RBAC not applicable")

        role = subject.id
        role_permissions = document.role_permissions(role)
        if role_permissions is None:
            return PolicyResult.no_opinion(f"role {role} not found in policy")

        permission = role_permissions.permission_for(resource)
        if permission is None:
            return PolicyResult.no_opinion(f"no permission defined for resource {resource}")

        if not permission.covers(action):
            return PolicyResult.no_opinion(
                f"action {action} not in permitted actions for resource {resource}"
            )

        if permission.effect == PolicyEffect.DENY:
            return PolicyResult.deny(f"deny effect for role {role} on {resource}")

        match permission.known_scope:
            case PermissionScope.OWN:
                return self._evaluate_own_scope(context, resource_attributes)
            case PermissionScope.WORKSPACE:
                if context.workspace_id:
                    return PolicyResult.allow("allow effect (scope: workspace)")
                return PolicyResult.deny(
                    "scope mismatch (workspace scope requires a workspace in context)"
                )
            case PermissionScope.ALL:
                return PolicyResult.allow("allow effect (scope: all)")
            case _:
                return PolicyResult.no_opinion(f"unknown scope: {permission.scope}")

    def _evaluate_own_scope(
        self,
        context: PolicyContext,
        resource_attributes: Optional[Mapping[str, Any]],
    ) -> PolicyResult:
        if not context.workspace_id:
            return PolicyResult.deny("scope mismatch (own scope requires a workspace in context)")

        if self.enforce_resource_ownership:
            owner_id = (resource_attributes or {}).get("owner_id")
            if owner_id is None or context.user_id is None or str(owner_id) != context.user_id:
                return PolicyResult.deny("scope mismatch (own scope requires resource ownership)")

        return PolicyResult.allow("allow effect (scope: own)")
