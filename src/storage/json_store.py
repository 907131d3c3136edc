"""
JSON File Tenant Store

File-backed tenant configuration storage.
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from src.models.tenants import POLICY_SECTION_KEY, Tenant
from src.security.exceptions import StoreUnavailable, TenantNotFound

from .base import TenantStore


class JSONFileTenantStore(TenantStore):
    """
    Tenant store persisted as a single JSON file.

    The file is re-read on every load so that updates written by another
    process are observed. Writes go to a temporary file that then replaces
    the original.
    """

    def __init__(self, storage_path: Path | str):
        """
        Initialize the store.

        Args:
            storage_path: Path of the JSON file (created on first write)
        """
        self._storage_path = Path(storage_path)

    def _load_from_file(self) -> dict[str, Tenant]:
        """Load all tenants from the storage file."""
        if not self._storage_path.exists():
            return {}

        with open(self._storage_path, encoding="utf-8") as f:
            data = json.load(f)

        tenants: dict[str, Tenant] = {}
        for tenant_data in data.get("tenants", []):
            tenant = Tenant.model_validate(tenant_data)
            tenants[tenant.id] = tenant
        return tenants

    def _save_to_file(self, tenants: dict[str, Tenant]) -> None:
        """Save all tenants to the storage file."""
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "tenants": [t.model_dump(mode="json") for t in tenants.values()]
        }

        tmp_path = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, default=str)
            os.replace(tmp_path, self._storage_path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

    def _read_tenants(self, tenant_id: str) -> dict[str, Tenant]:
        try:
            return self._load_from_file()
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise StoreUnavailable("read", tenant_id, e) from e

    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        tenants = await asyncio.to_thread(self._read_tenants, tenant_id)
        return tenants.get(tenant_id)

    def _replace_policy_section(self, tenant_id: str, section: dict[str, Any]) -> Tenant:
        tenants = self._read_tenants(tenant_id)
        tenant = tenants.get(tenant_id)
        if tenant is None:
            raise TenantNotFound(tenant_id)

        updated = Tenant(
            id=tenant.id,
            name=tenant.name,
            configuration={**tenant.configuration, POLICY_SECTION_KEY: section},
        )
        tenants[tenant_id] = updated

        try:
            self._save_to_file(tenants)
        except (OSError, TypeError, ValueError) as e:
            raise StoreUnavailable("write", tenant_id, e) from e
        return updated

    async def save_policy_section(self, tenant_id: str, section: dict[str, Any]) -> Tenant:
        return await asyncio.to_thread(self._replace_policy_section, tenant_id, section)

    def _put_tenant(self, tenant: Tenant) -> Tenant:
        tenants = self._read_tenants(tenant.id)
        tenants[tenant.id] = tenant
        try:
            self._save_to_file(tenants)
        except (OSError, TypeError, ValueError) as e:
            raise StoreUnavailable("write", tenant.id, e) from e
        return tenant

    async def create_tenant(self, tenant: Tenant) -> Tenant:
        return await asyncio.to_thread(self._put_tenant, tenant)
