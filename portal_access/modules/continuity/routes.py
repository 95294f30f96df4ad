from fastapi import APIRouter, Depends
from portal_access.database.supabase_client import get_supabase
from portal_access.modules.audit.service import AuditService
from portal_access.modules.auth.schemas import SessionSnapshot
from portal_access.modules.auth.service import AuthService
from portal_access.modules.auth.session_store import session_store
from portal_access.modules.continuity.broadcast import channel_hub
from portal_access.modules.continuity.schemas import ActivityRequest, ContinuityStatus
from portal_access.modules.continuity.service import (
    PreferencesService, SessionContinuityGuard, continuity_registry,
)
from portal_access.modules.scopes.schemas import NavigationCommand
from portal_access.modules.scopes.storage import tab_storage_registry
from portal_access.core.dependencies import (
    get_active_session, get_admin_auth_service, get_audit_service, get_optional_token, get_tab_id,
)
from supabase import Client
from typing import Optional

router = APIRouter(prefix="/session-continuity", tags=["session-continuity"])


def get_continuity_guard(
    session: SessionSnapshot = Depends(get_active_session),
    tab_id: str = Depends(get_tab_id),
    supabase: Client = Depends(get_supabase),
    audit: AuditService = Depends(get_audit_service),
    token: Optional[str] = Depends(get_optional_token),
    admin_auth: AuthService = Depends(get_admin_auth_service),
) -> SessionContinuityGuard:
    user_id = session.user_id
    started_at = continuity_registry.session_started_at(user_id)

    def on_sign_out(reason) -> None:
        # signs out the whole account
        session_store.revoke_user(user_id, token)
        tab_storage_registry.drop_user(user_id)
        if token:
            admin_auth.revoke(token)

    def factory() -> SessionContinuityGuard:
        return SessionContinuityGuard(
            user_id=user_id,
            tab_id=tab_id,
            channel=channel_hub.channel_for(user_id),
            preferences=PreferencesService(supabase).get_preferences(user_id),
            sign_out=on_sign_out,
            audit=audit,
            session_started_at=started_at,
        )
    return continuity_registry.get_or_create(user_id, tab_id, factory)


@router.post("/activity", response_model=ContinuityStatus)
async def mark_activity(
    request: Optional[ActivityRequest] = None,
    guard: SessionContinuityGuard = Depends(get_continuity_guard),
):
    """User activity in this tab; shared with the account's other tabs"""
    guard.mark_activity(request.timestamp if request else None)
    return guard.status()


@router.post("/extend", response_model=ContinuityStatus)
async def extend_session(guard: SessionContinuityGuard = Depends(get_continuity_guard)):
    """Dismiss the idle warning and keep the session"""
    guard.extend_session()
    return guard.status()


@router.post("/tick", response_model=ContinuityStatus)
async def tick(guard: SessionContinuityGuard = Depends(get_continuity_guard)):
    """Advance idle and lifetime checks; redirect_to is set once expired"""
    guard.tick()
    return guard.status()


@router.post("/sign-out", response_model=NavigationCommand)
async def sign_out(guard: SessionContinuityGuard = Depends(get_continuity_guard)):
    """Manual sign-out, propagated to every tab of the account"""
    return guard.sign_out()


@router.get("/status", response_model=ContinuityStatus)
async def get_status(guard: SessionContinuityGuard = Depends(get_continuity_guard)):
    return guard.status()
