"""
Tenant Models

A tenant owns a free-form configuration blob; its policy document lives in
the ``policyEngine`` section of that blob.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


POLICY_SECTION_KEY = "policyEngine"


class Tenant(BaseModel):
    """A tenant record as held by the tenant store."""

    id: str = Field(..., min_length=1, description="Tenant ID")
    name: Optional[str] = Field(default=None, description="Display name")
    configuration: dict[str, Any] = Field(
        default_factory=dict,
        description="Tenant configuration; the policy document sits under 'policyEngine'"
    )
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def policy_section(self) -> Optional[Any]:
        """Raw, unvalidated policy section of the configuration."""
        return self.configuration.get(POLICY_SECTION_KEY)
