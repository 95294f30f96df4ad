"""
Core dependencies for route protection and session resolution
"""

from fastapi import Depends, Header, HTTPException, Security, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from portal_access.database.supabase_client import get_supabase, get_service_supabase
from portal_access.modules.audit.service import AuditService
from portal_access.modules.auth.schemas import SessionSnapshot
from portal_access.modules.auth.service import AuthService
from portal_access.modules.auth.session_store import session_store
from portal_access.config.route_policies import ROUTE_POLICIES
from portal_access.modules.guards.guards import RouteGuard, build_guard
from portal_access.modules.guards.schemas import GuardAction
from portal_access.modules.permissions.resolver import PermissionResolver
from portal_access.modules.permissions.service import AccessRepository
from portal_access.modules.permissions.schemas import AccessState
from supabase import Client
from typing import Optional
import logging

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

DEFAULT_TAB_ID = "default"


def get_auth_service(supabase: Client = Depends(get_supabase)) -> AuthService:
    return AuthService(supabase)


def get_admin_auth_service(supabase: Client = Depends(get_service_supabase)) -> AuthService:
    """Auth service on the service role client, for token revocation"""
    return AuthService(supabase)


def get_audit_service(supabase: Client = Depends(get_service_supabase)) -> AuditService:
    return AuditService(supabase)


def get_permission_resolver(supabase: Client = Depends(get_supabase)) -> PermissionResolver:
    return PermissionResolver(AccessRepository(supabase))


def get_optional_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security)
) -> Optional[str]:
    return credentials.credentials if credentials else None


def get_current_token(token: Optional[str] = Depends(get_optional_token)) -> str:
    """Extract JWT token from Authorization header"""
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token


def get_tab_id(x_tab_id: Optional[str] = Header(None)) -> str:
    """Browser tab identity; tab storage and continuity state are keyed by (user, tab)"""
    return x_tab_id or DEFAULT_TAB_ID


def load_session(token: Optional[str], auth_service: AuthService) -> SessionSnapshot:
    """Cached or freshly built snapshot; anonymous for a revoked token"""
    if not token:
        return SessionSnapshot.anonymous()
    return session_store.get_or_refresh(
        token,
        lambda: auth_service.build_session(token, preferred_org_for=session_store.preferred_org),
    )


def get_session(
    token: Optional[str] = Depends(get_optional_token),
    auth_service: AuthService = Depends(get_auth_service),
) -> SessionSnapshot:
    """Session snapshot for the caller; anonymous when no bearer token is sent"""
    return load_session(token, auth_service)


def get_active_session(session: SessionSnapshot = Depends(get_session)) -> SessionSnapshot:
    """Session of a signed-in user with an active profile"""
    if session.access_state == AccessState.UNAUTHENTICATED:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if session.is_unavailable:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Session data unavailable")
    if session.is_loading:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session is loading",
            headers={"Retry-After": "1"},
        )
    if not session.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is not active")
    return session


def enforce_guard(guard: RouteGuard, session: SessionSnapshot, path: str, org_id: Optional[str] = None) -> SessionSnapshot:
    """Translate a guard result into the HTTP outcome for an API call"""
    result = guard.evaluate(session, path, org_id)
    if result.action == GuardAction.RENDER:
        return session
    if result.action == GuardAction.LOADING:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session is loading",
            headers={"Retry-After": "1"},
        )
    if result.action == GuardAction.ERROR:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Access data unavailable")
    if result.reason == "unauthenticated":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")


def require_route(route_prefix: str):
    """Factory function to protect an endpoint with the guard declared for route_prefix"""
    policy = ROUTE_POLICIES[route_prefix]

    def check_route(
        org_id: Optional[str] = None,
        session: SessionSnapshot = Depends(get_session),
        resolver: PermissionResolver = Depends(get_permission_resolver),
    ) -> SessionSnapshot:
        return enforce_guard(build_guard(policy, resolver), session, route_prefix, org_id)
    return check_route
