import logging
from supabase import Client
from portal_access.core.exceptions import AccessDataError
from portal_access.modules.permissions.schemas import ModulePermissionDescriptor
from typing import List, Optional
from fastapi import HTTPException

logger = logging.getLogger(__name__)


class AccessRepository:
    """Supabase-backed AccessDataPort. RPC failures surface as AccessDataError."""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    def _rpc_bool(self, name: str, params: dict) -> bool:
        try:
            result = self.supabase.rpc(name, params).execute()
        except Exception as e:
            raise AccessDataError(f"RPC {name} failed: {e}", source=name)
        if not isinstance(result.data, bool):
            raise AccessDataError(f"RPC {name} returned non-boolean result: {result.data!r}", source=name)
        return result.data

    def has_module_access_level(self, user_id: str, org_id: str, module: str, level: str) -> bool:
        """Check a module grant at or above level via has_module_access_level"""
        return self._rpc_bool("has_module_access_level", {
            "_user_id": user_id,
            "_org_id": org_id,
            "_module": module,
            "_level": level
        })

    def can_manage_help(self, user_id: str) -> bool:
        """Check the can_manage_help capability via RPC"""
        return self._rpc_bool("can_manage_help", {"_user_id": user_id})


class ModulePermissionService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def list_permissions(self, module: Optional[str] = None) -> List[ModulePermissionDescriptor]:
        """List module permissions, optionally filtered by module"""
        try:
            query = self.supabase.table("module_permissions").select("*")
            if module:
                query = query.eq("module", module)
            result = query.order("name").execute()
            return [ModulePermissionDescriptor(**row) for row in result.data or []]
        except Exception as e:
            logger.error(f"Error listing module permissions: {e}")
            raise HTTPException(status_code=500, detail="Failed to list module permissions")
