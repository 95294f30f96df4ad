from fastapi import APIRouter, Depends, HTTPException, Query
from portal_access.config.permissions_config import get_permission_matrix
from portal_access.database.supabase_client import get_supabase
from portal_access.modules.auth.schemas import SessionSnapshot
from portal_access.modules.permissions import resolver
from portal_access.modules.permissions.resolver import PermissionResolver
from portal_access.modules.permissions.schemas import (
    AccessLevel, CapabilitiesResponse, Decision, DecisionResponse, ModulePermissionDescriptor,
    ModuleType, OrgRole, PlatformRole, WorkspaceAccessResponse,
)
from portal_access.modules.permissions.service import ModulePermissionService
from portal_access.core.dependencies import (
    get_active_session, get_permission_resolver, get_session, require_route,
)
from supabase import Client
from typing import List, Optional, Dict

router = APIRouter(prefix="/permissions", tags=["permissions"])


def get_module_permission_service(supabase: Client = Depends(get_supabase)) -> ModulePermissionService:
    return ModulePermissionService(supabase)


def _response(decision: Decision) -> DecisionResponse:
    return DecisionResponse(outcome=decision.outcome, reason=decision.reason, allowed=decision.allowed)


def _parse_roles(values: List[str]) -> list:
    roles = []
    for value in values:
        try:
            roles.append(PlatformRole(value))
        except ValueError:
            try:
                roles.append(OrgRole(value))
            except ValueError:
                raise HTTPException(status_code=422, detail=f"Unknown role: {value}")
    return roles


@router.get("/check/role", response_model=DecisionResponse)
async def check_role(
    roles: List[str] = Query(...),
    session: SessionSnapshot = Depends(get_session),
):
    """Does the caller hold one of roles (no platform_admin bypass)"""
    return _response(resolver.can_access_by_role(session, _parse_roles(roles)))


@router.get("/check/module", response_model=DecisionResponse)
async def check_module_permission(
    permission: str,
    org_id: Optional[str] = None,
    session: SessionSnapshot = Depends(get_session),
):
    """Module permission check for org_id (active organization when omitted)"""
    return _response(resolver.can_access_by_module_permission(session, org_id or session.active_org_id, permission))


@router.get("/check/context", response_model=DecisionResponse)
async def check_context(
    context: str,
    org_id: Optional[str] = None,
    session: SessionSnapshot = Depends(get_session),
):
    """Legacy business-context check for org_id (active organization when omitted)"""
    return _response(resolver.can_access_context(session, org_id or session.active_org_id, context))


@router.get("/check/module-access", response_model=DecisionResponse)
async def check_module_access_level(
    module: ModuleType,
    level: AccessLevel,
    org_id: str,
    session: SessionSnapshot = Depends(get_session),
    permission_resolver: PermissionResolver = Depends(get_permission_resolver),
):
    """Server-side confirmation of a module grant at or above level"""
    return _response(permission_resolver.check_module_access_level(session, org_id, module, level.value))


@router.get("/check/help", response_model=DecisionResponse)
async def check_help_management(
    session: SessionSnapshot = Depends(get_session),
    permission_resolver: PermissionResolver = Depends(get_permission_resolver),
):
    """Can the caller manage help content"""
    return _response(permission_resolver.check_help_management(session))


@router.get("/workspaces", response_model=WorkspaceAccessResponse)
async def get_workspaces(session: SessionSnapshot = Depends(get_active_session)):
    """Workspace tiles available to the caller"""
    return WorkspaceAccessResponse(**resolver.get_workspace_access(session))


@router.get("/capabilities", response_model=CapabilitiesResponse)
async def get_capabilities(
    org_id: Optional[str] = None,
    session: SessionSnapshot = Depends(get_active_session),
):
    """Resolved module permissions for one membership"""
    org_id = org_id or session.active_org_id
    if not org_id:
        raise HTTPException(status_code=404, detail="No active organization")
    capabilities = resolver.resolve_capabilities(session.membership_for(org_id))
    return CapabilitiesResponse(organization_id=org_id, permissions=sorted(p.value for p in capabilities))


@router.get("/module-permissions", response_model=List[ModulePermissionDescriptor])
async def list_module_permissions(
    module: Optional[ModuleType] = None,
    session: SessionSnapshot = Depends(get_active_session),
    service: ModulePermissionService = Depends(get_module_permission_service),
):
    """List module permissions, optionally filtered by module"""
    return service.list_permissions(module=module.value if module else None)


@router.get("/matrix")
async def get_matrix(session: SessionSnapshot = Depends(require_route("/admin"))) -> Dict:
    """Full capability matrix (administration only)"""
    return get_permission_matrix()
