"""
Cache Key Construction

Centralized key derivation for the policy document cache and the evaluation
cache. All keys follow the pattern ``{prefix}:{kind}:{tenant_id}[:{fingerprint}]``
so that every entry is scoped to exactly one tenant.
"""

import hashlib
from dataclasses import dataclass
from typing import Optional

from src.models.policies import PolicyContext, PolicySubject


# Unit separator; cannot appear in identifiers taken from headers or JSON.
_FIELD_SEPARATOR = "\x1f"


def evaluation_fingerprint(
    subject: PolicySubject,
    action: str,
    resource: str,
    context: PolicyContext,
    resource_owner: Optional[str] = None,
) -> str:
    """
    Deterministic fingerprint of an evaluation request.

    Covers tenant, subject type, subject id, action, resource type, and the
    workspace scope (``global`` when no workspace is set), plus the acting
    user id because rule conditions may name it. Other context fields do
    not influence decisions and are left out. ``resource_owner`` is appended
    only when ownership checks make it decision-relevant.
    """
    fields = [
        context.tenant_id,
        subject.type.value,
        subject.id,
        action,
        resource,
        context.scope_key,
        context.user_id or "-",
    ]
    if resource_owner is not None:
        fields.append(f"owner={resource_owner}")
    return hashlib.sha256(_FIELD_SEPARATOR.join(fields).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class PolicyCacheKeys:
    """
    Cache key construction for the policy engine.

    Attributes:
        prefix: Key prefix (typically "policy").

    Example:
        keys = PolicyCacheKeys(prefix="policy")
        keys.document("acme")  # "policy:doc:acme"
    """

    prefix: str = "policy"

    def document(self, tenant_id: str) -> str:
        """Policy document key. Pattern: {prefix}:doc:{tenant_id}"""
        return f"{self.prefix}:doc:{tenant_id}"

    def evaluation(
        self,
        subject: PolicySubject,
        action: str,
        resource: str,
        context: PolicyContext,
        resource_owner: Optional[str] = None,
    ) -> str:
        """Evaluation result key. Pattern: {prefix}:eval:{tenant_id}:{fingerprint}"""
        fingerprint = evaluation_fingerprint(subject, action, resource, context, resource_owner)
        return f"{self.prefix}:eval:{context.tenant_id}:{fingerprint}"

    def tenant_evaluations(self, tenant_id: str) -> str:
        """Glob pattern matching every evaluation key of a tenant."""
        return f"{self.prefix}:eval:{_escape_glob(tenant_id)}:*"


def _escape_glob(value: str) -> str:
    """Escape glob metacharacters so a tenant id matches only itself."""
    escaped = []
    for char in value:
        if char in "*?[]\\":
            escaped.append("\\" + char)
        else:
            escaped.append(char)
    return "".join(escaped)
