from fastapi import APIRouter, Depends
from portal_access.modules.audit.service import AuditService
from portal_access.modules.auth.schemas import SessionSnapshot
from portal_access.modules.navigation.schemas import NavigationDecision, NavigationRequest
from portal_access.modules.navigation.service import NavigationService
from portal_access.modules.permissions.resolver import PermissionResolver
from portal_access.core.dependencies import get_audit_service, get_permission_resolver, get_session, get_tab_id

router = APIRouter(prefix="/navigation", tags=["navigation"])


def get_navigation_service(
    resolver: PermissionResolver = Depends(get_permission_resolver),
    audit: AuditService = Depends(get_audit_service),
) -> NavigationService:
    return NavigationService(resolver=resolver, audit=audit)


@router.post("/resolve", response_model=NavigationDecision)
async def resolve_navigation(
    request: NavigationRequest,
    session: SessionSnapshot = Depends(get_session),
    tab_id: str = Depends(get_tab_id),
    service: NavigationService = Depends(get_navigation_service),
):
    """Render, show loading, or redirect for one requested path"""
    return service.resolve(session, tab_id, request.path, request.org_id)
