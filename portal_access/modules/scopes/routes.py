from fastapi import APIRouter, Depends, HTTPException
from portal_access.config.route_policies import SCOPE_LABELS
from portal_access.modules.auth.schemas import SessionSnapshot
from portal_access.modules.scopes.classifier import breadcrumbs, classify, match_route, normalize_path
from portal_access.modules.scopes.schemas import (
    ClassifyResponse, EnterOrganizationRequest, EntryIntent, NavigationCommand, Scope, SetIntentRequest,
)
from portal_access.modules.scopes.service import ScopeTransitionManager, can_access_scope, transition_label
from portal_access.modules.scopes.storage import PREVIOUS_PATH_KEY, tab_storage_registry
from portal_access.core.dependencies import get_session, get_tab_id
from typing import Optional

router = APIRouter(prefix="/scopes", tags=["scopes"])


def _manager(session: SessionSnapshot, tab_id: str, current_path: Optional[str] = None) -> ScopeTransitionManager:
    storage = tab_storage_registry.for_tab(session.user_id, tab_id)
    return ScopeTransitionManager(session, storage, current_path or storage.get(PREVIOUS_PATH_KEY) or "/")


@router.post("/intent", response_model=EntryIntent, status_code=201)
async def set_entry_intent(
    request: SetIntentRequest,
    session: SessionSnapshot = Depends(get_session),
    tab_id: str = Depends(get_tab_id),
):
    """Record a deliberate scope change immediately before navigating"""
    return _manager(session, tab_id).set_entry_intent(request.scope, normalize_path(request.target_path))


@router.delete("/intent", status_code=204)
async def clear_entry_intent(
    session: SessionSnapshot = Depends(get_session),
    tab_id: str = Depends(get_tab_id),
):
    _manager(session, tab_id).clear_entry_intent()
    return None


@router.post("/enter-system-console", response_model=NavigationCommand)
async def enter_system_console(
    session: SessionSnapshot = Depends(get_session),
    tab_id: str = Depends(get_tab_id),
):
    """Move from the workspace to the System Console"""
    if not can_access_scope(session, Scope.SYSTEM):
        raise HTTPException(status_code=403, detail="System Console is not available")
    return _manager(session, tab_id).enter_system_console()


@router.post("/enter-organization", response_model=NavigationCommand)
async def enter_organization(
    request: EnterOrganizationRequest,
    session: SessionSnapshot = Depends(get_session),
    tab_id: str = Depends(get_tab_id),
):
    """Move from the System Console into an organization workspace"""
    if not can_access_scope(session, Scope.ORGANIZATION):
        raise HTTPException(status_code=403, detail="Organization workspace is not available")
    if classify(request.path) != Scope.ORGANIZATION:
        raise HTTPException(status_code=422, detail="Path is not inside an organization workspace")
    return _manager(session, tab_id).enter_organization(request.path)


@router.post("/return", response_model=NavigationCommand)
async def return_to_last_scope(
    current_path: Optional[str] = None,
    session: SessionSnapshot = Depends(get_session),
    tab_id: str = Depends(get_tab_id),
):
    """Go back to the last scope this tab validly occupied"""
    return _manager(session, tab_id, current_path).return_to_last_scope()


@router.get("/classify", response_model=ClassifyResponse)
async def classify_path(path: str):
    """Scope, label and breadcrumbs for a path"""
    scope = classify(path)
    route, _ = match_route(path)
    return ClassifyResponse(
        path=normalize_path(path),
        scope=scope,
        label=SCOPE_LABELS[scope.value],
        route=route,
        breadcrumbs=breadcrumbs(path),
    )


@router.get("/transition-label")
async def get_transition_label(to_scope: Scope, from_scope: Optional[Scope] = None):
    """Call-to-action text for a scope switch"""
    return {"label": transition_label(from_scope, to_scope)}
