"""
Tests for the Policy Engine

Tests for decision precedence, document and evaluation caching, policy
updates, and failure handling.
"""

import asyncio

import pytest

from src.models.policies import (
    PolicyAction,
    PolicyContext,
    PolicyDocument,
    PolicyResult,
    PolicySubject,
    ResourceType,
)
from src.models.tenants import Tenant
from src.security.audit import AuditAction, AuditLog, AuditLogger
from src.security.cache_keys import PolicyCacheKeys
from src.security.exceptions import (
    CacheUnavailable,
    StoreUnavailable,
    TenantNotFound,
    UnsupportedPolicyVersion,
)
from src.security.policies import (
    DEFAULT_DENY_REASON,
    PolicyEngine,
    decode_policy_document,
)
from src.security.rbac import RBACEngine
from src.storage.memory import InMemoryCache, InMemoryTenantStore


class ManualClock:
    """Monotonic clock advanced by hand."""

    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestDecodePolicyDocument:
    """Tests for strict document decoding."""

    def test_unsupported_version(self):
        """Versions other than 1 raise UnsupportedPolicyVersion."""
        with pytest.raises(UnsupportedPolicyVersion) as exc_info:
            decode_policy_document({"version": 2})

        assert exc_info.value.version == 2

    def test_missing_version_rejected(self):
        """An omitted version is not assumed to be 1."""
        with pytest.raises(UnsupportedPolicyVersion) as exc_info:
            decode_policy_document({"roles": {}}, tenant_id="t1")

        assert exc_info.value.version is None

    def test_tenant_id_filled_in(self):
        """A document without a tenant id takes the one it was loaded for."""
        document = decode_policy_document({"version": 1, "roles": {}}, tenant_id="t1")

        assert document.version == 1
        assert document.tenant_id == "t1"

    @pytest.mark.asyncio
    async def test_versionless_section_falls_back(self, cache, audit_logger, viewer_policy):
        """A stored section without a version is treated as absent."""
        viewer_policy.pop("version")
        store = InMemoryTenantStore([Tenant(id="t1", configuration={"policyEngine": viewer_policy})])
        engine = PolicyEngine(cache=cache, tenant_store=store, audit_logger=audit_logger)

        result = await engine.evaluate("VIEWER", "read", "Article", PolicyContext(tenant_id="t1"))

        assert result.denied
        assert result.reason == DEFAULT_DENY_REASON
        assert "policy:doc:t1" not in cache.keys()

    @pytest.mark.asyncio
    async def test_versionless_update_rejected(self, policy_engine, tenant_store, viewer_policy):
        """Updates must declare their version."""
        with pytest.raises(UnsupportedPolicyVersion):
            await policy_engine.update_policy_document("t2", {"roles": {}})

        assert (await tenant_store.get_tenant("t2")).policy_section is None


class TestEvaluationPrecedence:
    """Tests for the RBAC > ABAC > default order."""

    @pytest.mark.asyncio
    async def test_rbac_allow(self, policy_engine, context):
        """An RBAC allow is final."""
        result = await policy_engine.evaluate("VIEWER", PolicyAction.READ, ResourceType.ARTICLE, context)

        assert result.allowed
        assert not result.denied

    @pytest.mark.asyncio
    async def test_rbac_deny_beats_abac_allow(self, policy_engine, context, cache, viewer_policy):
        """ABAC is not consulted after an RBAC deny."""
        viewer_policy["rules"].append({
            "id": "r-logs",
            "effect": "allow",
            "subject": {"type": "role", "id": "EDITOR"},
            "action": "viewLogs",
            "resource": "Logs",
        })
        await policy_engine.update_policy_document("t1", viewer_policy)

        result = await policy_engine.evaluate("EDITOR", "viewLogs", "Logs", context)

        assert result.denied
        assert result.matched_rule_id is None

    @pytest.mark.asyncio
    async def test_rbac_allow_beats_abac_deny(self, policy_engine, context, viewer_policy):
        """An RBAC allow ends evaluation before ABAC denies."""
        viewer_policy["rules"].append({
            "id": "r-no-read",
            "effect": "deny",
            "subject": {"type": "role", "id": "VIEWER"},
            "action": "read",
            "resource": "Article",
        })
        await policy_engine.update_policy_document("t1", viewer_policy)

        result = await policy_engine.evaluate("VIEWER", "read", "Article", context)

        assert result.allowed

    @pytest.mark.asyncio
    async def test_abac_deny_beats_abac_allow(self, policy_engine, context):
        """Matching deny and allow rules resolve to deny."""
        result = await policy_engine.evaluate("VIEWER", "publish", "Article", context)

        assert result.denied
        assert result.matched_rule_id == "r-publish-deny"

    @pytest.mark.asyncio
    async def test_abac_allow_for_user(self, policy_engine):
        """User subjects are decided by ABAC."""
        context = PolicyContext(tenant_id="t1", user_id="u-42")

        result = await policy_engine.evaluate(
            {"user": "u-42"}, PolicyAction.EXPORT_DATA, ResourceType.ANALYTICS, context
        )

        assert result.allowed
        assert result.matched_rule_id == "r-export"

    @pytest.mark.asyncio
    async def test_abac_deny_for_user(self, policy_engine, audit_logger, viewer_policy):
        """A user deny rule decides, names the rule, and is audited."""
        viewer_policy["rules"].append({
            "id": "r-no-delete-42",
            "effect": "deny",
            "subject": {"type": "user", "id": "42"},
            "action": "delete",
            "resource": "Article",
        })
        await policy_engine.update_policy_document("t1", viewer_policy)
        context = PolicyContext(tenant_id="t1", user_id=42)

        result = await policy_engine.evaluate({"user": 42}, "delete", "Article", context)

        assert result.denied
        assert not result.allowed
        assert result.matched_rule_id == "r-no-delete-42"
        denials = audit_logger.audit_log.get_policy_denials(tenant_id="t1")
        assert len(denials) == 1
        assert denials[0].action == AuditAction.POLICY_DENY
        assert denials[0].actor_id == "42"
        assert denials[0].payload["matched_rule_id"] == "r-no-delete-42"

    @pytest.mark.asyncio
    async def test_default_deny(self, policy_engine, context, audit_logger):
        """Nothing applicable means deny with the default reason."""
        result = await policy_engine.evaluate("VIEWER", "delete", "Article", context)

        assert result.denied
        assert result.reason == DEFAULT_DENY_REASON
        assert result.matched_rule_id is None

    @pytest.mark.asyncio
    async def test_result_is_terminal(self, policy_engine, context, workspace_context):
        """Every returned result has exactly one flag set."""
        requests = [
            ("VIEWER", "read", "Article", context),
            ("EDITOR", "update", "Article", context),
            ("EDITOR", "update", "Article", workspace_context),
            ("GHOST", "read", "Article", context),
            ({"user": "nobody"}, "read", "Article", context),
        ]
        for subject, action, resource, ctx in requests:
            result = await policy_engine.evaluate(subject, action, resource, ctx)
            assert result.allowed != result.denied

    @pytest.mark.asyncio
    async def test_context_mapping_accepted(self, policy_engine):
        """A plain mapping is accepted as context."""
        assert await policy_engine.is_allowed("VIEWER", "read", "Article", {"tenantId": "t1"})


class TestPolicyDocumentAccess:
    """Tests for document loading and fallback."""

    @pytest.mark.asyncio
    async def test_loads_and_caches(self, policy_engine, cache):
        """A valid document is cached under the tenant's key."""
        document = await policy_engine.get_policy_document("t1")

        assert document.tenant_id == "t1"
        assert "VIEWER" in document.roles
        assert cache.keys() == ["policy:doc:t1"]

    @pytest.mark.asyncio
    async def test_cache_hit_skips_store(self, policy_engine, tenant_store):
        """A cached document is served without reading the store."""
        first = await policy_engine.get_policy_document("t1")
        await tenant_store.create_tenant(Tenant(id="t1", configuration={}))

        second = await policy_engine.get_policy_document("t1")

        assert second == first

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tenant_id", ["t2", "t3", "missing"])
    async def test_fallback_not_cached(self, policy_engine, cache, tenant_id):
        """Missing, unconfigured and unsupported documents fall back without caching."""
        document = await policy_engine.get_policy_document(tenant_id)

        assert document.roles == {}
        assert document.rules == []
        assert document.defaults.deny_by_default is True
        assert cache.keys() == []

    @pytest.mark.asyncio
    async def test_invalid_document_falls_back(self, cache, audit_logger):
        """A schema-invalid section is treated as absent."""
        store = InMemoryTenantStore([
            Tenant(id="t1", configuration={"policyEngine": {"version": 1, "rules": [{"id": "x"}]}}),
        ])
        engine = PolicyEngine(cache=cache, tenant_store=store, audit_logger=audit_logger)

        result = await engine.evaluate("VIEWER", "read", "Article", PolicyContext(tenant_id="t1"))

        assert result.denied
        assert result.reason == DEFAULT_DENY_REASON

    @pytest.mark.asyncio
    async def test_unreadable_cached_document_is_a_miss(self, policy_engine, cache):
        """A corrupt cache entry is ignored and replaced."""
        await cache.set("policy:doc:t1", "{not json", 300)

        document = await policy_engine.get_policy_document("t1")

        assert "VIEWER" in document.roles
        assert PolicyDocument.model_validate_json(await cache.get("policy:doc:t1")) == document

    @pytest.mark.asyncio
    async def test_store_unavailable_falls_back(self, cache, failing_store, audit_logger, context):
        """An unreachable store yields default deny."""
        engine = PolicyEngine(cache=cache, tenant_store=failing_store, audit_logger=audit_logger)

        result = await engine.evaluate("VIEWER", "read", "Article", context)

        assert result.denied
        assert result.reason == DEFAULT_DENY_REASON


class TestEvaluationCache:
    """Tests for evaluation result caching."""

    @pytest.mark.asyncio
    async def test_result_cached_with_ttl(self, tenant_store, audit_logger, context):
        """Results are cached for the evaluation TTL."""
        clock = ManualClock()
        cache = InMemoryCache(clock=clock)
        engine = PolicyEngine(cache=cache, tenant_store=tenant_store, audit_logger=audit_logger)

        await engine.evaluate("VIEWER", "read", "Article", context)
        eval_keys = [k for k in cache.keys() if k.startswith("policy:eval:t1:")]
        assert len(eval_keys) == 1

        clock.advance(59)
        assert await cache.get(eval_keys[0]) is not None
        clock.advance(1)
        assert await cache.get(eval_keys[0]) is None

    @pytest.mark.asyncio
    async def test_repeated_evaluations_agree(self, tenant_store, audit_logger, context):
        """Decisions are stable across cache hits and after the entry expires."""
        clock = ManualClock()
        cache = InMemoryCache(clock=clock)
        engine = PolicyEngine(cache=cache, tenant_store=tenant_store, audit_logger=audit_logger)
        requests = [
            ("VIEWER", "read", "Article"),
            ("VIEWER", "publish", "Article"),
            ("VIEWER", "delete", "Article"),
        ]

        def outcome(result):
            return result.allowed, result.denied, result.matched_rule_id

        for subject, action, resource in requests:
            first = await engine.evaluate(subject, action, resource, context)
            cached = await engine.evaluate(subject, action, resource, context)
            clock.advance(61)
            fresh = await engine.evaluate(subject, action, resource, context)

            assert outcome(first) == outcome(cached) == outcome(fresh)

    @pytest.mark.asyncio
    async def test_document_ttl(self, tenant_store, audit_logger):
        """Documents are cached for the document TTL."""
        clock = ManualClock()
        cache = InMemoryCache(clock=clock)
        engine = PolicyEngine(cache=cache, tenant_store=tenant_store, audit_logger=audit_logger)

        await engine.get_policy_document("t1")
        clock.advance(299)
        assert await cache.get("policy:doc:t1") is not None
        clock.advance(1)
        assert await cache.get("policy:doc:t1") is None

    @pytest.mark.asyncio
    async def test_cached_result_returned(self, policy_engine, cache, context):
        """A cached result is returned as stored."""
        key = PolicyCacheKeys().evaluation(PolicySubject.role("VIEWER"), "delete", "Article", context)
        await cache.set(key, PolicyResult.allow("cached").model_dump_json(), 60)

        result = await policy_engine.evaluate("VIEWER", "delete", "Article", context)

        assert result.allowed
        assert result.reason == "cached"

    @pytest.mark.asyncio
    async def test_cached_denial_not_audited_again(self, policy_engine, audit_logger, context):
        """Only fresh denials are audited."""
        await policy_engine.evaluate("VIEWER", "delete", "Article", context)
        await policy_engine.evaluate("VIEWER", "delete", "Article", context)

        assert len(audit_logger.audit_log.get_policy_denials()) == 1

    @pytest.mark.asyncio
    async def test_tenants_do_not_share_entries(self, policy_engine):
        """The same request in two tenants is decided per tenant."""
        t1 = await policy_engine.evaluate("VIEWER", "read", "Article", PolicyContext(tenant_id="t1"))
        t2 = await policy_engine.evaluate("VIEWER", "read", "Article", PolicyContext(tenant_id="t2"))

        assert t1.allowed
        assert t2.denied

    @pytest.mark.asyncio
    async def test_workspace_scoped_entries(self, policy_engine, context, workspace_context):
        """Workspace scope is part of the cache key."""
        outside = await policy_engine.evaluate("EDITOR", "update", "Article", context)
        inside = await policy_engine.evaluate("EDITOR", "update", "Article", workspace_context)

        assert outside.denied
        assert inside.allowed

    @pytest.mark.asyncio
    async def test_user_condition_not_shared(self, policy_engine, viewer_policy):
        """Rules conditioned on user ids are not answered from another user's entry."""
        viewer_policy["rules"].append({
            "id": "r-staff",
            "effect": "allow",
            "subject": {"type": "role", "id": "VIEWER"},
            "action": "viewLogs",
            "resource": "Logs",
            "conditions": {"userIds": ["u-1"]},
        })
        await policy_engine.update_policy_document("t1", viewer_policy)

        staff = await policy_engine.evaluate(
            "VIEWER", "viewLogs", "Logs", PolicyContext(tenant_id="t1", user_id="u-1")
        )
        other = await policy_engine.evaluate(
            "VIEWER", "viewLogs", "Logs", PolicyContext(tenant_id="t1", user_id="u-2")
        )

        assert staff.allowed
        assert other.denied

    @pytest.mark.asyncio
    async def test_cache_unavailable_is_bypassed(
        self, failing_cache, tenant_store, audit_logger, context
    ):
        """Evaluation proceeds without a cache."""
        engine = PolicyEngine(cache=failing_cache, tenant_store=tenant_store, audit_logger=audit_logger)

        allowed = await engine.evaluate("VIEWER", "read", "Article", context)
        denied = await engine.evaluate("VIEWER", "delete", "Article", context)

        assert allowed.allowed
        assert denied.denied
        assert "get" in failing_cache.calls
        assert "set" in failing_cache.calls

    @pytest.mark.asyncio
    async def test_ownership_enforced_keys_include_owner(self, cache, tenant_store, audit_logger):
        """With ownership checks, results for different owners are cached apart."""
        engine = PolicyEngine(
            cache=cache,
            tenant_store=tenant_store,
            audit_logger=audit_logger,
            rbac=RBACEngine(enforce_resource_ownership=True),
        )
        context = PolicyContext(tenant_id="t1", workspace_id="w1", user_id="u-1")

        mine = await engine.evaluate("AUTHOR", "delete", "Article", context, {"owner_id": "u-1"})
        theirs = await engine.evaluate("AUTHOR", "delete", "Article", context, {"owner_id": "u-2"})

        assert mine.allowed
        assert theirs.denied


class TestUpdatePolicyDocument:
    """Tests for policy document updates."""

    @pytest.mark.asyncio
    async def test_update_replaces_document(self, policy_engine, tenant_store, context):
        """An update is visible to the next evaluation."""
        assert (await policy_engine.evaluate("VIEWER", "read", "Article", context)).allowed

        await policy_engine.update_policy_document("t1", {"version": 1, "roles": {}, "rules": []})

        result = await policy_engine.evaluate("VIEWER", "read", "Article", context)
        assert result.denied
        assert result.reason == DEFAULT_DENY_REASON

    @pytest.mark.asyncio
    async def test_update_preserves_other_configuration(self, policy_engine, tenant_store, viewer_policy):
        """Only the policy section is replaced."""
        await policy_engine.update_policy_document("t1", viewer_policy)

        tenant = await tenant_store.get_tenant("t1")
        assert tenant.configuration["theme"] == "dark"
        assert tenant.policy_section["tenantId"] == "t1"
        assert tenant.policy_section["defaults"] == {"denyByDefault": True}

    @pytest.mark.asyncio
    async def test_update_invalidates_caches(self, policy_engine, cache, context):
        """The tenant's document and evaluations are dropped; others are kept."""
        await policy_engine.evaluate("VIEWER", "read", "Article", context)
        await policy_engine.evaluate("VIEWER", "read", "Article", PolicyContext(tenant_id="t2"))
        assert "policy:doc:t1" in cache.keys()

        await policy_engine.update_policy_document("t1", {"version": 1})

        keys = cache.keys()
        assert "policy:doc:t1" not in keys
        assert not [k for k in keys if k.startswith("policy:eval:t1:")]
        assert [k for k in keys if k.startswith("policy:eval:t2:")]

    @pytest.mark.asyncio
    async def test_update_accepts_document_model(self, policy_engine, policy_document):
        """A document model is stored with the target tenant id."""
        stored = await policy_engine.update_policy_document(
            "t2", policy_document.model_copy(update={"tenant_id": "other"})
        )

        assert stored.tenant_id == "t2"
        assert (await policy_engine.get_policy_document("t2")).roles.keys() == {"VIEWER", "EDITOR", "AUTHOR"}

    @pytest.mark.asyncio
    async def test_update_audited(self, policy_engine, audit_logger):
        """Updates are written to the audit sink."""
        await policy_engine.update_policy_document("t2", {"version": 1}, actor_id=17)

        entries = audit_logger.audit_log.query(action=AuditAction.POLICY_UPDATE)
        assert len(entries) == 1
        assert entries[0].actor_id == "17"
        assert entries[0].resource == "Policy"
        assert entries[0].payload == {"tenant_id": "t2", "policy_version": 1}

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, policy_engine, tenant_store, audit_logger):
        """Updating a missing tenant raises TenantNotFound and writes nothing."""
        with pytest.raises(TenantNotFound) as exc_info:
            await policy_engine.update_policy_document("nope", {"version": 1})

        assert exc_info.value.tenant_id == "nope"
        assert await tenant_store.get_tenant("nope") is None
        assert len(audit_logger.audit_log) == 0

    @pytest.mark.asyncio
    async def test_unsupported_version_rejected(self, policy_engine, tenant_store, viewer_policy):
        """An update with another version is rejected before storing."""
        with pytest.raises(UnsupportedPolicyVersion):
            await policy_engine.update_policy_document("t1", {"version": 3})

        assert (await tenant_store.get_tenant("t1")).policy_section == viewer_policy

    @pytest.mark.asyncio
    async def test_cache_failure_surfaces(self, failing_cache, tenant_store, audit_logger):
        """A failed invalidation is reported to the caller."""
        engine = PolicyEngine(cache=failing_cache, tenant_store=tenant_store, audit_logger=audit_logger)

        with pytest.raises(CacheUnavailable):
            await engine.update_policy_document("t1", {"version": 1})

    @pytest.mark.asyncio
    async def test_update_audited_when_invalidation_fails(
        self, failing_cache, tenant_store, audit_logger
    ):
        """A stored update is audited even when the cache cannot be cleared."""
        engine = PolicyEngine(cache=failing_cache, tenant_store=tenant_store, audit_logger=audit_logger)

        with pytest.raises(CacheUnavailable):
            await engine.update_policy_document("t1", {"version": 1}, actor_id=7)

        assert (await tenant_store.get_tenant("t1")).policy_section["roles"] == {}
        entries = audit_logger.audit_log.query(action=AuditAction.POLICY_UPDATE)
        assert len(entries) == 1
        assert entries[0].actor_id == "7"
        assert entries[0].tenant_id == "t1"

    @pytest.mark.asyncio
    async def test_store_failure_surfaces(self, cache, failing_store, audit_logger):
        """A failed store read is reported to the caller."""
        engine = PolicyEngine(cache=cache, tenant_store=failing_store, audit_logger=audit_logger)

        with pytest.raises(StoreUnavailable):
            await engine.update_policy_document("t1", {"version": 1})


class TestAuditAndTimeout:
    """Tests for denial auditing and deadlines."""

    @pytest.mark.asyncio
    async def test_every_denial_audited(self, policy_engine, audit_logger, context):
        """Denials are audited; allows are not."""
        await policy_engine.evaluate("VIEWER", "read", "Article", context)
        await policy_engine.evaluate("VIEWER", "publish", "Article", context)
        await policy_engine.evaluate("VIEWER", "delete", "Article", context)

        denials = audit_logger.audit_log.get_policy_denials(tenant_id="t1")
        assert len(denials) == 2
        assert denials[0].payload["reason"] == DEFAULT_DENY_REASON
        assert denials[1].payload["matched_rule_id"] == "r-publish-deny"

    @pytest.mark.asyncio
    async def test_audit_failure_keeps_decision(self, cache, tenant_store, tmp_path, context):
        """A lost audit record does not change the decision."""
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        audit_logger = AuditLogger(AuditLog(storage_path=blocker / "a.jsonl"), enable_console=False)
        engine = PolicyEngine(cache=cache, tenant_store=tenant_store, audit_logger=audit_logger)

        result = await engine.evaluate("VIEWER", "delete", "Article", context)

        assert result.denied

    @pytest.mark.asyncio
    async def test_timeout(self, cache, audit_logger, context):
        """A slow store trips the deadline."""

        class SlowStore(InMemoryTenantStore):
            async def get_tenant(self, tenant_id):
                await asyncio.sleep(1)
                return await super().get_tenant(tenant_id)

        engine = PolicyEngine(cache=cache, tenant_store=SlowStore(), audit_logger=audit_logger)

        with pytest.raises(asyncio.TimeoutError):
            await engine.evaluate("VIEWER", "read", "Article", context, timeout=0.01)
