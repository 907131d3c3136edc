"""
Audit Logging

Audit trail for policy denials and administrative policy changes.
"""

import asyncio
import json
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional
from uuid import UUID, uuid4

import structlog
from pydantic import BaseModel, Field

from src.models.policies import PolicyContext, PolicySubject, SubjectType

from .exceptions import AuditUnavailable


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Authorization
    POLICY_DENY = "policy.deny"

    # Admin operations
    POLICY_UPDATE = "policy.update"


class AuditSeverity(str, Enum):
    """Severity levels for audit entries."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEntry(BaseModel):
    """
    An audit log entry.

    Mirrors the sink contract: an optional actor, the action, the resource,
    and a free-form payload.
    """

    id: UUID = Field(default_factory=uuid4, description="Unique entry ID")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    action: AuditAction = Field(..., description="Type of action")
    severity: AuditSeverity = Field(default=AuditSeverity.INFO)
    success: bool = Field(default=True, description="Whether the audited action was permitted")

    actor_id: Optional[str] = Field(default=None, description="Acting user ID")
    tenant_id: Optional[str] = Field(default=None)
    resource: str = Field(..., description="Audited resource, e.g. 'Policy:VIEWER'")
    request_id: Optional[str] = Field(default=None)

    payload: dict[str, Any] = Field(default_factory=dict, description="Event details")

    def to_log_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "audit_id": str(self.id),
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "severity": self.severity.value,
            "success": self.success,
            "actor_id": self.actor_id,
            "tenant_id": self.tenant_id,
            "resource": self.resource,
            "request_id": self.request_id,
        }


class AuditLog:
    """
    In-memory audit log with optional append-only file persistence.

    Provides query capabilities for compliance review.
    """

    def __init__(
        self,
        max_entries: int = 10000,
        storage_path: Optional[Path | str] = None
    ):
        """
        Initialize the audit log.

        Args:
            max_entries: Maximum entries to keep in memory
            storage_path: Optional JSONL file receiving every entry
        """
        self._entries: list[AuditEntry] = []
        self._max_entries = max_entries
        self._storage_path = Path(storage_path) if storage_path else None

    async def add(self, entry: AuditEntry) -> AuditEntry:
        """Add an entry to the log. File writes run in a worker thread."""
        if self._storage_path:
            await asyncio.to_thread(self._append_to_file, entry)
        self._remember(entry)
        return entry

    def _remember(self, entry: AuditEntry) -> None:
        self._entries.append(entry)
        if len(self._entries) > self._max_entries:
            self._entries = self._entries[-self._max_entries:]

    def _append_to_file(self, entry: AuditEntry) -> None:
        """Append entry to log file."""
        try:
            self._storage_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._storage_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry.model_dump(mode="json"), default=str) + "\n")
        except OSError as e:
            raise AuditUnavailable(entry.action.value, e) from e

    def query(
        self,
        action: Optional[AuditAction] = None,
        actor_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        success: Optional[bool] = None,
        limit: int = 100
    ) -> list[AuditEntry]:
        """
        Query audit entries with filters.

        Args:
            action: Filter by action type
            actor_id: Filter by actor ID
            tenant_id: Filter by tenant ID
            start_time: Filter by start time
            end_time: Filter by end time
            success: Filter by success status
            limit: Maximum entries to return

        Returns:
            List of matching audit entries, most recent first
        """
        results = []

        for entry in reversed(self._entries):
            if len(results) >= limit:
                break

            if action and entry.action != action:
                continue
            if actor_id and entry.actor_id != actor_id:
                continue
            if tenant_id and entry.tenant_id != tenant_id:
                continue
            if start_time and entry.timestamp < start_time:
                continue
            if end_time and entry.timestamp > end_time:
                continue
            if success is not None and entry.success != success:
                continue

            results.append(entry)

        return results

    def get_policy_denials(
        self,
        tenant_id: Optional[str] = None,
        limit: int = 50
    ) -> list[AuditEntry]:
        """Get recent denial records."""
        return self.query(action=AuditAction.POLICY_DENY, tenant_id=tenant_id, limit=limit)

    def __len__(self) -> int:
        return len(self._entries)


class AuditLogger:
    """
    High-level audit logging interface.

    This is the engine's audit sink: ``log_action`` for administrative
    changes and ``log_policy_denial`` for denied evaluations. Successful
    evaluations are not audited.
    """

    def __init__(
        self,
        audit_log: Optional[AuditLog] = None,
        enable_console: bool = True
    ):
        """
        Initialize the audit logger.

        Args:
            audit_log: Optional AuditLog instance for storage
            enable_console: Whether to also emit entries through structlog
        """
        self.audit_log = audit_log or AuditLog()
        self.enable_console = enable_console

        if enable_console:
            self._logger = structlog.get_logger("policy.audit")

    async def _log_entry(self, entry: AuditEntry) -> AuditEntry:
        """Log an entry to all configured destinations."""
        await self.audit_log.add(entry)

        if self.enable_console:
            log_method = getattr(self._logger, entry.severity.value, self._logger.info)
            log_method(entry.action.value, **entry.to_log_dict())

        return entry

    async def log_action(
        self,
        action: AuditAction,
        resource: str,
        payload: Optional[dict[str, Any]] = None,
        actor_id: Optional[str | int] = None,
        tenant_id: Optional[str] = None,
    ) -> AuditEntry:
        """Log an administrative action."""
        entry = AuditEntry(
            action=action,
            severity=AuditSeverity.WARNING,  # Policy changes are security-relevant
            success=True,
            actor_id=str(actor_id) if actor_id is not None else None,
            tenant_id=tenant_id,
            resource=resource,
            payload=payload or {},
        )
        return await self._log_entry(entry)

    async def log_policy_denial(
        self,
        subject: PolicySubject,
        action: str,
        resource: str,
        context: PolicyContext,
        reason: str,
        matched_rule_id: Optional[str] = None,
        resource_attributes: Optional[Mapping[str, Any]] = None,
    ) -> AuditEntry:
        """Log a denied evaluation."""
        payload: dict[str, Any] = {
            "subject": subject.model_dump(mode="json"),
            "action": action,
            "resource": resource,
            "context": context.model_dump(mode="json", exclude_none=True),
            "reason": reason,
            "matched_rule_id": matched_rule_id,
        }
        if resource_attributes:
            payload["resource_attributes"] = json.loads(
                json.dumps(dict(resource_attributes), default=str)
            )

        entry = AuditEntry(
            action=AuditAction.POLICY_DENY,
            severity=AuditSeverity.WARNING,
            success=False,
            actor_id=subject.id if subject.type == SubjectType.USER else context.user_id,
            tenant_id=context.tenant_id,
            resource=f"Policy:{subject.id}",
            request_id=context.request_id,
            payload=payload,
        )
        return await self._log_entry(entry)
