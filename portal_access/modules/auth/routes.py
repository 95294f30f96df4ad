from fastapi import APIRouter, Depends, HTTPException
from portal_access.modules.audit.schemas import AuditAction, AuditLabel
from portal_access.modules.audit.service import AuditService
from portal_access.modules.auth.schemas import (
    SignInRequest, MagicLinkRequest, TokenResponse, SessionResponse,
    SessionSnapshot, SetActiveOrganizationRequest,
)
from portal_access.modules.auth.service import AuthService
from portal_access.modules.auth.session_store import session_store
from portal_access.modules.continuity.broadcast import channel_hub
from portal_access.modules.continuity.service import continuity_registry
from portal_access.modules.permissions.resolver import is_active_member
from portal_access.modules.scopes.storage import tab_storage_registry
from portal_access.core.dependencies import (
    get_active_session, get_admin_auth_service, get_audit_service, get_auth_service, get_current_token,
    get_session, load_session,
)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/sign-in", response_model=TokenResponse)
async def sign_in(
    sign_in_data: SignInRequest,
    service: AuthService = Depends(get_auth_service),
    audit: AuditService = Depends(get_audit_service),
):
    """Sign in with email and password and get an access token"""
    token = service.sign_in(sign_in_data)
    session_store.invalidate_user(token.user_id)
    continuity_registry.drop_user(token.user_id)
    audit.record(AuditAction.LOGIN, AuditLabel.SIGNED_IN.value, record_type="session", record_id=token.user_id)
    return token


@router.post("/magic-link", status_code=202)
async def magic_link(
    request: MagicLinkRequest,
    service: AuthService = Depends(get_auth_service),
):
    """Send a one-time sign-in link"""
    service.send_magic_link(request)
    return {"message": "Sign-in link sent"}


@router.post("/sign-out", status_code=200)
async def sign_out(
    token: str = Depends(get_current_token),
    session: SessionSnapshot = Depends(get_session),
    service: AuthService = Depends(get_auth_service),
    admin_auth: AuthService = Depends(get_admin_auth_service),
    audit: AuditService = Depends(get_audit_service),
):
    """Sign out; the token reads as anonymous from now on"""
    service.sign_out(token)
    admin_auth.revoke(token)
    if session.user_id:
        session_store.revoke_user(session.user_id, token)
        continuity_registry.drop_user(session.user_id)
        tab_storage_registry.drop_user(session.user_id)
        channel_hub.release(session.user_id)
        audit.record(AuditAction.LOGOUT, AuditLabel.SIGNED_OUT.value, record_type="session", record_id=session.user_id)
    else:
        session_store.revoke(token)
    return {"message": "Signed out successfully"}


@router.get("/session", response_model=SessionResponse)
async def get_current_session(session: SessionSnapshot = Depends(get_session)):
    """Current session snapshot (anonymous when no token is sent)"""
    return SessionResponse.from_snapshot(session)


@router.post("/session/refresh", response_model=SessionResponse)
async def refresh_session(
    token: str = Depends(get_current_token),
    service: AuthService = Depends(get_auth_service),
):
    """Rebuild the snapshot after a profile, membership or grant change"""
    snapshot = session_store.refresh(
        token,
        lambda: service.build_session(token, preferred_org_for=session_store.preferred_org),
    )
    return SessionResponse.from_snapshot(snapshot)


@router.put("/session/active-organization", response_model=SessionResponse)
async def set_active_organization(
    request: SetActiveOrganizationRequest,
    token: str = Depends(get_current_token),
    session: SessionSnapshot = Depends(get_active_session),
    service: AuthService = Depends(get_auth_service),
):
    """Switch the organization the workspace operates on"""
    if not is_active_member(session, request.org_id):
        raise HTTPException(status_code=403, detail="Not an active member of this organization")
    session_store.set_preferred_org(session.user_id, request.org_id)
    return SessionResponse.from_snapshot(load_session(token, service))
