"""
Policy Models

Defines the tenant policy document, role permissions, ABAC rules, and the
request/decision types exchanged with the policy engine.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


SUPPORTED_POLICY_VERSION = 1


class PolicyModel(BaseModel):
    """Base for policy models: snake_case attributes, camelCase accepted on input."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class PolicyEffect(str, Enum):
    """Effect of a permission or rule."""
    ALLOW = "allow"
    DENY = "deny"


class PermissionScope(str, Enum):
    """Breadth over which a role permission applies."""
    OWN = "own"
    WORKSPACE = "workspace"
    ALL = "all"


class SubjectType(str, Enum):
    """Kind of subject being evaluated."""
    ROLE = "role"
    USER = "user"


class PolicyAction(str, Enum):
    """Actions known to the platform. Evaluation accepts any action string."""
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    PUBLISH = "publish"
    RESTORE = "restore"
    BAN = "ban"
    ASSIGN_ROLE = "assignRole"
    ROTATE_KEY = "rotateKey"
    RUN_WORKFLOW = "runWorkflow"
    EXECUTE_PLUGIN = "executePlugin"
    VIEW_LOGS = "viewLogs"
    EXPORT_DATA = "exportData"
    MANAGE_USERS = "manageUsers"
    MANAGE_WORKSPACES = "manageWorkspaces"
    MANAGE_SETTINGS = "manageSettings"
    IMPERSONATE = "impersonate"


class ResourceType(str, Enum):
    """Resource types known to the platform. Evaluation accepts any resource string."""
    TENANT = "Tenant"
    WORKSPACE = "Workspace"
    USER = "User"
    ARTICLE = "Article"
    PLUGIN = "Plugin"
    WORKFLOW = "Workflow"
    FEATURE_FLAG = "FeatureFlag"
    EXPERIMENT = "Experiment"
    WEBHOOK = "Webhook"
    ANALYTICS = "Analytics"
    LOGS = "Logs"
    SETTINGS = "Settings"
    POLICY = "Policy"


def as_name(value: Union[str, Enum]) -> str:
    """Return the plain string form of an action or resource."""
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


# =============================================================================
# Subjects and request context
# =============================================================================


class PolicySubject(PolicyModel):
    """
    The party a decision is made for.

    A role subject carries a role name as its id, a user subject a user id.
    """

    model_config = ConfigDict(frozen=True)

    type: SubjectType = Field(..., description="Subject kind")
    id: str = Field(..., min_length=1, description="Role name or user id")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        """Accept numeric user ids."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @classmethod
    def role(cls, name: str) -> "PolicySubject":
        return cls(type=SubjectType.ROLE, id=name)

    @classmethod
    def user(cls, user_id: Union[str, int]) -> "PolicySubject":
        return cls(type=SubjectType.USER, id=str(user_id))

    @classmethod
    def normalize(cls, subject: Union["PolicySubject", str, dict]) -> "PolicySubject":
        """
        Turn shorthand into a subject.

        Accepts a subject, a role name, ``{"type": ..., "id": ...}``, or the
        single-key forms ``{"role": name}`` and ``{"user": id}``.
        """
        if isinstance(subject, PolicySubject):
            return subject
        if isinstance(subject, str):
            return cls.role(subject)
        if isinstance(subject, dict) and "type" not in subject and len(subject) == 1:
            (kind, value), = subject.items()
            if kind in (SubjectType.ROLE.value, SubjectType.USER.value):
                return cls(type=SubjectType(kind), id=value)
        return cls.model_validate(subject)

    @property
    def is_role(self) -> bool:
        return self.type == SubjectType.ROLE


class GeoLocation(PolicyModel):
    """Coarse request geolocation."""
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None


class PolicyContext(PolicyModel):
    """
    Per-request evaluation context.

    Assembled by the enforcement layer from the authenticated session and
    request metadata. Never persisted.
    """

    tenant_id: str = Field(..., min_length=1, description="Tenant the request belongs to")
    workspace_id: Optional[str] = Field(default=None, description="Workspace scope, if any")
    user_id: Optional[str] = Field(default=None, description="Acting user id")
    request_id: Optional[str] = Field(default=None)
    ip: Optional[str] = Field(default=None)
    user_agent: Optional[str] = Field(default=None)
    device_id: Optional[str] = Field(default=None)
    session_id: Optional[str] = Field(default=None)
    geo: Optional[GeoLocation] = Field(default=None)

    @field_validator("tenant_id", "workspace_id", "user_id", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Any:
        """Accept numeric identifiers."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @property
    def scope_key(self) -> str:
        """Workspace scope used in cache fingerprints."""
        return self.workspace_id or "global"


# =============================================================================
# RBAC: role permissions
# =============================================================================


class Permission(PolicyModel):
    """
    A role's permission on one resource type.

    ``scope`` is kept as a plain string so that documents carrying an
    unrecognised scope still decode; the RBAC evaluator treats such a scope
    as "no opinion".
    """

    resource: str = Field(..., min_length=1, description="Resource type")
    actions: list[str] = Field(default_factory=list, description="Actions covered")
    effect: PolicyEffect = Field(default=PolicyEffect.ALLOW)
    scope: str = Field(default=PermissionScope.ALL.value)

    @field_validator("actions", mode="before")
    @classmethod
    def dedupe_actions(cls, v: Any) -> Any:
        if isinstance(v, (list, tuple, set, frozenset)):
            seen: dict[str, None] = {}
            for action in v:
                seen[as_name(action)] = None
            return list(seen)
        return v

    @field_validator("scope", mode="before")
    @classmethod
    def scope_as_string(cls, v: Any) -> Any:
        if isinstance(v, Enum):
            return v.value
        return v

    def covers(self, action: str) -> bool:
        """Check if the permission lists the action."""
        return action in self.actions

    @property
    def known_scope(self) -> Optional[PermissionScope]:
        """The scope as an enum member, or None when unrecognised."""
        try:
            return PermissionScope(self.scope)
        except ValueError:
            return None


class RolePermissionSet(PolicyModel):
    """
    Permissions held by one role, keyed by resource type.

    Accepts either a mapping or a list of permissions; when a list names the
    same resource type twice, the last entry wins.
    """

    permissions: dict[str, Permission] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def index_by_resource(cls, data: Any) -> Any:
        if isinstance(data, list):
            data = {"permissions": data}
        if not isinstance(data, dict):
            return data

        raw = data.get("permissions")
        if isinstance(raw, list):
            indexed: dict[str, Any] = {}
            for permission in raw:
                resource = (
                    permission.resource if isinstance(permission, Permission)
                    else permission.get("resource") if isinstance(permission, dict)
                    else None
                )
                if resource is None:
                    raise ValueError("permission entry is missing 'resource'")
                indexed[as_name(resource)] = permission
            data = {**data, "permissions": indexed}
        elif isinstance(raw, dict):
            filled: dict[str, Any] = {}
            for resource, permission in raw.items():
                if isinstance(permission, dict) and "resource" not in permission:
                    permission = {**permission, "resource": resource}
                filled[resource] = permission
            data = {**data, "permissions": filled}
        return data

    @model_validator(mode="after")
    def keys_match_resources(self) -> "RolePermissionSet":
        for resource, permission in self.permissions.items():
            if permission.resource != resource:
                raise ValueError(
                    f"permission keyed '{resource}' targets resource '{permission.resource}'"
                )
        return self

    def permission_for(self, resource: str) -> Optional[Permission]:
        return self.permissions.get(resource)


# =============================================================================
# ABAC: rules
# =============================================================================


class TimeWindow(PolicyModel):
    """Inclusive time window; either bound may be omitted."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("start", "end")
    @classmethod
    def normalize_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v) if v is not None else None

    def contains(self, moment: datetime) -> bool:
        moment = _as_utc(moment)
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment > self.end:
            return False
        return True


class RuleConditions(PolicyModel):
    """Optional conditions of an ABAC rule. Every present condition must hold."""

    tenant_id: Optional[str] = None
    workspace_id: Optional[str] = None
    user_ids: list[str] = Field(default_factory=list)
    time: Optional[TimeWindow] = None

    @field_validator("tenant_id", "workspace_id", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("user_ids", mode="before")
    @classmethod
    def coerce_user_ids(cls, v: Any) -> Any:
        if isinstance(v, (list, tuple, set)):
            return [str(u) for u in v]
        return v

    def hold(self, context: PolicyContext, now: datetime) -> bool:
        """Evaluate all present conditions against the request context."""
        if self.tenant_id and self.tenant_id != context.tenant_id:
            return False
        if self.workspace_id and self.workspace_id != context.workspace_id:
            return False
        if self.user_ids and context.user_id not in self.user_ids:
            return False
        if self.time is not None and not self.time.contains(now):
            return False
        return True


class PolicyRule(PolicyModel):
    """
    An ABAC rule.

    The rule id is stable and reported with every decision it produces.
    """

    id: str = Field(..., min_length=1, description="Rule id, unique within a document")
    effect: PolicyEffect = Field(..., description="Allow or deny")
    subject: PolicySubject = Field(..., description="Role or user the rule targets")
    action: str = Field(..., min_length=1)
    resource: str = Field(..., min_length=1)
    conditions: Optional[RuleConditions] = Field(default=None)
    priority: int = Field(default=0, description="Informational; does not reorder rules")

    @field_validator("action", "resource", mode="before")
    @classmethod
    def names_as_strings(cls, v: Any) -> Any:
        if isinstance(v, Enum):
            return v.value
        return v

    def matches(
        self,
        subject: PolicySubject,
        action: str,
        resource: str,
        context: PolicyContext,
        now: datetime,
    ) -> bool:
        """Check whether the rule applies to a request."""
        if self.action != action or self.resource != resource:
            return False
        if self.subject.type != subject.type or self.subject.id != subject.id:
            return False
        if self.conditions is not None and not self.conditions.hold(context, now):
            return False
        return True


# =============================================================================
# Policy document
# =============================================================================


class PolicyDefaults(PolicyModel):
    """Document-wide defaults."""
    deny_by_default: bool = True


class PolicyDocument(PolicyModel):
    """
    A tenant's complete policy.

    Replaced wholesale on update; never mutated in place.
    """

    version: Literal[1] = Field(..., description="Schema version; only 1 is supported")
    tenant_id: Optional[str] = Field(default=None, description="Owning tenant")
    roles: dict[str, RolePermissionSet] = Field(default_factory=dict)
    rules: list[PolicyRule] = Field(default_factory=list)
    defaults: PolicyDefaults = Field(default_factory=PolicyDefaults)

    @model_validator(mode="after")
    def unique_rule_ids(self) -> "PolicyDocument":
        seen: set[str] = set()
        for rule in self.rules:
            if rule.id in seen:
                raise ValueError(f"duplicate rule id '{rule.id}'")
            seen.add(rule.id)
        return self

    def role_permissions(self, role: str) -> Optional[RolePermissionSet]:
        return self.roles.get(role)


def default_policy_document(tenant_id: Optional[str] = None) -> PolicyDocument:
    """The document used when a tenant has none configured."""
    return PolicyDocument(
        version=SUPPORTED_POLICY_VERSION,
        tenant_id=tenant_id,
        roles={},
        rules=[],
        defaults=PolicyDefaults(deny_by_default=True),
    )


# =============================================================================
# Decisions
# =============================================================================


class PolicyResult(PolicyModel):
    """
    Outcome of an evaluation.

    Both flags false means "no opinion"; that state only exists between the
    RBAC/ABAC layers and is never returned by the engine.
    """

    allowed: bool = False
    denied: bool = False
    reason: str = ""
    matched_rule_id: Optional[str] = None

    @model_validator(mode="after")
    def not_both(self) -> "PolicyResult":
        if self.allowed and self.denied:
            raise ValueError("a decision cannot be both allowed and denied")
        return self

    @classmethod
    def allow(cls, reason: str, matched_rule_id: Optional[str] = None) -> "PolicyResult":
        return cls(allowed=True, denied=False, reason=reason, matched_rule_id=matched_rule_id)

    @classmethod
    def deny(cls, reason: str, matched_rule_id: Optional[str] = None) -> "PolicyResult":
        return cls(allowed=False, denied=True, reason=reason, matched_rule_id=matched_rule_id)

    @classmethod
    def no_opinion(cls, reason: str) -> "PolicyResult":
        return cls(allowed=False, denied=False, reason=reason)

    @property
    def has_opinion(self) -> bool:
        return self.allowed or self.denied
