"""
Role / permission resolver.

Pure decision functions over a SessionSnapshot. Every function returns a
Decision (allow / deny / pending) and never raises for an ordinary denial.
A loading session always yields PENDING so callers render a loading state
instead of bouncing a user whose data has not arrived yet.
"""

import logging
from typing import Iterable, Optional, Protocol, Set, Union

from portal_access.config.permissions_config import (
    actions_for_access_level,
    actions_for_org_role,
)
from portal_access.core.exceptions import AccessDataError, UnknownPermissionError
from portal_access.modules.auth.schemas import OrganizationMembership, SessionSnapshot
from portal_access.modules.permissions.schemas import (
    Decision,
    ModulePermission,
    ModuleType,
    OrgRole,
    PlatformRole,
    PortalContext,
)

logger = logging.getLogger(__name__)

Role = Union[PlatformRole, OrgRole]

ORG_ADMIN_ROLES = {OrgRole.ORG_OWNER, OrgRole.ORG_ADMIN}


def parse_permission(key: Union[str, ModulePermission]) -> ModulePermission:
    """Map a raw key such as 'licensing.view' onto the closed permission set."""
    if isinstance(key, ModulePermission):
        return key
    try:
        return ModulePermission(key)
    except ValueError:
        raise UnknownPermissionError(str(key))


def _gate(session: SessionSnapshot) -> Optional[Decision]:
    """Common prelude: pending while loading, deny unless the session is active."""
    if session.is_loading:
        return Decision.wait()
    if session.is_unavailable:
        return Decision.deny("data_error")
    if not session.is_active:
        return Decision.deny(session.access_state.value)
    return None


def effective_roles(session: SessionSnapshot) -> Set[Role]:
    """Platform role plus org roles of active memberships (active org only, when one is selected)."""
    roles: Set[Role] = set()
    if session.platform_role:
        roles.add(session.platform_role)
    for membership in session.active_memberships():
        if session.active_org_id and membership.org_id != session.active_org_id:
            continue
        roles.add(membership.org_role)
    return roles


def can_access_by_role(
    session: SessionSnapshot,
    allowed_roles: Iterable[Role],
    platform_admin_bypass: bool = False,
) -> Decision:
    gate = _gate(session)
    if gate:
        return gate
    if platform_admin_bypass and session.platform_role == PlatformRole.PLATFORM_ADMIN:
        return Decision.allow("platform_admin_bypass")
    if effective_roles(session) & set(allowed_roles):
        return Decision.allow("role")
    return Decision.deny("role_not_allowed")


def resolve_capabilities(membership: Optional[OrganizationMembership]) -> Set[ModulePermission]:
    """Module grant permissions intersected with what the org role may exercise."""
    if membership is None or not membership.is_active:
        return set()
    capabilities: Set[ModulePermission] = set()
    for grant in membership.module_grants:
        module = grant.module.value
        granted = actions_for_access_level(module, grant.access_level.value)
        allowed = actions_for_org_role(module, membership.org_role.value)
        for action in granted & allowed:
            capabilities.add(ModulePermission(f"{module}.{action}"))
    return capabilities


def can_access_by_module_permission(
    session: SessionSnapshot,
    org_id: Optional[str],
    permission: Union[str, ModulePermission],
    platform_admin_bypass: bool = False,
) -> Decision:
    gate = _gate(session)
    if gate:
        return gate
    try:
        required = parse_permission(permission)
    except UnknownPermissionError as e:
        logger.warning(f"Denying access on malformed permission: {e}")
        return Decision.deny("unknown_permission")
    if platform_admin_bypass and session.platform_role == PlatformRole.PLATFORM_ADMIN:
        return Decision.allow("platform_admin_bypass")
    membership = session.membership_for(org_id)
    if membership is None:
        return Decision.deny("no_membership")
    if not membership.is_active:
        return Decision.deny(f"membership_{membership.status.value}")
    if required not in resolve_capabilities(membership):
        return Decision.deny("permission_not_granted")
    return Decision.allow("module_permission")


def can_access_context(
    session: SessionSnapshot,
    org_id: Optional[str],
    context: Union[str, PortalContext],
    platform_admin_bypass: bool = False,
) -> Decision:
    gate = _gate(session)
    if gate:
        return gate
    try:
        required = PortalContext(context)
    except ValueError:
        logger.warning(f"Denying access on unknown context: {context!r}")
        return Decision.deny("unknown_context")
    if platform_admin_bypass and session.platform_role == PlatformRole.PLATFORM_ADMIN:
        return Decision.allow("platform_admin_bypass")
    membership = session.membership_for(org_id)
    if membership is None:
        return Decision.deny("no_membership")
    if not membership.is_active:
        return Decision.deny(f"membership_{membership.status.value}")
    if required not in membership.allowed_contexts:
        return Decision.deny("context_not_allowed")
    return Decision.allow("context")


def is_active_member(session: SessionSnapshot, org_id: str) -> bool:
    membership = session.membership_for(org_id)
    return membership is not None and membership.is_active


def is_org_admin(session: SessionSnapshot, org_id: str) -> bool:
    membership = session.membership_for(org_id)
    return membership is not None and membership.is_active and membership.org_role in ORG_ADMIN_ROLES


def is_org_owner(session: SessionSnapshot, org_id: str) -> bool:
    membership = session.membership_for(org_id)
    return membership is not None and membership.is_active and membership.org_role == OrgRole.ORG_OWNER


def can_access_console(session: SessionSnapshot) -> bool:
    return session.is_platform_admin


def can_manage_help(session: SessionSnapshot) -> bool:
    """platform_admin always; platform_user only with the can_manage_help capability."""
    if not session.is_active:
        return False
    if session.platform_role == PlatformRole.PLATFORM_ADMIN:
        return True
    return session.platform_role == PlatformRole.PLATFORM_USER and bool(
        session.capabilities.get("can_manage_help")
    )


def has_module_access(session: SessionSnapshot, module: ModuleType) -> bool:
    """Workspace-tile check: any active membership (active org when selected) granting module."""
    if session.is_platform_admin:
        return True
    for membership in session.active_memberships():
        if session.active_org_id and membership.org_id != session.active_org_id:
            continue
        if any(g.module == module for g in membership.module_grants):
            return True
    return False


def get_workspace_access(session: SessionSnapshot) -> dict:
    return {
        "can_access_system_console": can_access_console(session),
        "can_access_help_workstation": can_manage_help(session),
        "can_access_portal_admin": has_module_access(session, ModuleType.PORTAL),
        "can_access_licensing": has_module_access(session, ModuleType.LICENSING),
    }


class AccessDataPort(Protocol):
    """Store-backed checks the resolver cannot answer from the snapshot alone."""

    def has_module_access_level(self, user_id: str, org_id: str, module: str, level: str) -> bool:
        ...

    def can_manage_help(self, user_id: str) -> bool:
        ...


class PermissionResolver:
    """Snapshot checks plus RPC-backed checks; store failures fail closed."""

    def __init__(self, data: AccessDataPort):
        self.data = data

    def check_role(self, session: SessionSnapshot, allowed_roles: Iterable[Role], platform_admin_bypass: bool = False) -> Decision:
        return can_access_by_role(session, allowed_roles, platform_admin_bypass)

    def check_module_permission(
        self,
        session: SessionSnapshot,
        org_id: Optional[str],
        permission: Union[str, ModulePermission],
        platform_admin_bypass: bool = False,
    ) -> Decision:
        return can_access_by_module_permission(session, org_id, permission, platform_admin_bypass)

    def check_context(
        self,
        session: SessionSnapshot,
        org_id: Optional[str],
        context: Union[str, PortalContext],
        platform_admin_bypass: bool = False,
    ) -> Decision:
        return can_access_context(session, org_id, context, platform_admin_bypass)

    def check_module_access_level(self, session: SessionSnapshot, org_id: str, module: ModuleType, level: str) -> Decision:
        """Server-side confirmation through the has_module_access_level RPC."""
        gate = _gate(session)
        if gate:
            return gate
        try:
            allowed = self.data.has_module_access_level(session.user_id, org_id, module.value, level)
        except AccessDataError as e:
            logger.error(f"Module access check failed for user {session.user_id}: {e}")
            return Decision.deny("data_error")
        return Decision.allow("module_access_level") if allowed else Decision.deny("access_level_not_granted")

    def check_help_management(self, session: SessionSnapshot) -> Decision:
        gate = _gate(session)
        if gate:
            return gate
        if session.platform_role == PlatformRole.PLATFORM_ADMIN:
            return Decision.allow("platform_admin")
        if session.platform_role != PlatformRole.PLATFORM_USER:
            return Decision.deny("not_internal_user")
        try:
            allowed = self.data.can_manage_help(session.user_id)
        except AccessDataError as e:
            logger.error(f"Help capability check failed for user {session.user_id}: {e}")
            return Decision.deny("data_error")
        return Decision.allow("can_manage_help") if allowed else Decision.deny("capability_missing")
