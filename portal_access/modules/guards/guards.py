"""
Route guards.

Each guard is a stateless evaluator that turns (session, requested path) into
a GuardResult. The shared contract:

- loading session -> LOADING, never content and never a redirect
- unauthenticated -> sign-in, with the requested path kept in return_to
- no-profile / suspended-profile -> auth error surface
- identity or store failure -> ERROR, never allow and never sign-in
- a denial redirects once, never to the requested path itself, and the
  redirect URL never carries the denial reason
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

from portal_access.config.route_policies import (
    AUTH_ERROR_PATH,
    NO_ACCESS_PATH,
    PENDING_PATH,
    RESTRICTED_PATH,
    SIGN_IN_PATH,
    SUSPENDED_PATH,
    UNAUTHORIZED_PATH,
)
from portal_access.core.exceptions import AccessDataError
from portal_access.modules.auth.schemas import SessionSnapshot
from portal_access.modules.guards.schemas import GuardResult
from portal_access.modules.permissions import resolver
from portal_access.modules.permissions.resolver import PermissionResolver, Role
from portal_access.modules.permissions.schemas import (
    AccessState,
    Decision,
    MembershipStanding,
    MembershipStatus,
    ModulePermission,
    OrgRole,
    PlatformRole,
    PortalContext,
)
from portal_access.modules.scopes.classifier import normalize_path

logger = logging.getLogger(__name__)


class RouteGuard(ABC):
    deny_location = UNAUTHORIZED_PATH

    def __init__(self, platform_admin_bypass: bool = False):
        self.platform_admin_bypass = platform_admin_bypass

    @abstractmethod
    def decide(self, session: SessionSnapshot, org_id: Optional[str]) -> Decision:
        """Allow or deny an active session; the lifecycle states are handled by evaluate"""

    def deny_target(self, session: SessionSnapshot, org_id: Optional[str], decision: Decision) -> str:
        return self.deny_location

    def evaluate(self, session: SessionSnapshot, path: str, org_id: Optional[str] = None) -> GuardResult:
        path = normalize_path(path)
        if session.is_loading:
            return GuardResult.loading()
        if session.is_unavailable:
            logger.error(f"{type(self).__name__} has no session data for {path}")
            return GuardResult.error(AUTH_ERROR_PATH)
        if session.access_state == AccessState.UNAUTHENTICATED:
            return GuardResult.redirect(SIGN_IN_PATH, "unauthenticated", return_to=path)
        if session.access_state in (AccessState.NO_PROFILE, AccessState.SUSPENDED_PROFILE):
            return GuardResult.redirect(self._safe(AUTH_ERROR_PATH, path), session.access_state.value)

        org_id = org_id or session.active_org_id
        try:
            decision = self.decide(session, org_id)
        except AccessDataError as e:
            logger.error(f"{type(self).__name__} could not load access data for {path}: {e}")
            return GuardResult.error(AUTH_ERROR_PATH)

        if decision.pending:
            return GuardResult.loading()
        if decision.allowed:
            return GuardResult.render(decision.reason)
        if decision.reason == "data_error":
            return GuardResult.error(AUTH_ERROR_PATH)
        logger.debug(f"{type(self).__name__} denied {path} for {session.user_id}: {decision.reason}")
        return GuardResult.redirect(self._safe(self.deny_target(session, org_id, decision), path), decision.reason)

    @staticmethod
    def _safe(location: str, path: str) -> str:
        """Loop protection: never bounce a user to the page they were denied."""
        return RESTRICTED_PATH if normalize_path(location) == path else location


class AuthenticatedGuard(RouteGuard):
    deny_location = SIGN_IN_PATH

    def decide(self, session, org_id):
        if session.is_active:
            return Decision.allow("authenticated")
        return Decision.deny(session.access_state.value)


class RoleGuard(RouteGuard):
    def __init__(self, allowed_roles: Iterable[Role], platform_admin_bypass: bool = False):
        super().__init__(platform_admin_bypass)
        self.allowed_roles = set(allowed_roles)

    def decide(self, session, org_id):
        return resolver.can_access_by_role(session, self.allowed_roles, self.platform_admin_bypass)


class ModulePermissionGuard(RouteGuard):
    deny_location = NO_ACCESS_PATH

    def __init__(self, permission, platform_admin_bypass: bool = False):
        super().__init__(platform_admin_bypass)
        self.permission = permission

    def decide(self, session, org_id):
        return resolver.can_access_by_module_permission(
            session, org_id, self.permission, self.platform_admin_bypass
        )


class OrganizationContextGuard(RouteGuard):
    deny_location = NO_ACCESS_PATH

    def __init__(self, context, platform_admin_bypass: bool = False):
        super().__init__(platform_admin_bypass)
        self.context = context

    def decide(self, session, org_id):
        return resolver.can_access_context(session, org_id, self.context, self.platform_admin_bypass)

    def deny_target(self, session, org_id, decision):
        membership = session.membership_for(org_id)
        if membership is not None:
            if membership.status == MembershipStatus.PENDING:
                return PENDING_PATH
            if membership.status != MembershipStatus.ACTIVE:
                return SUSPENDED_PATH
            return NO_ACCESS_PATH
        standing = session.membership_standing
        if standing == MembershipStanding.PENDING:
            return PENDING_PATH
        if standing == MembershipStanding.SUSPENDED:
            return SUSPENDED_PATH
        return NO_ACCESS_PATH


class AuditorGuard(RouteGuard):
    def decide(self, session, org_id):
        if session.is_external_auditor:
            return Decision.allow("external_auditor")
        if self.platform_admin_bypass and session.is_platform_admin:
            return Decision.allow("platform_admin_bypass")
        return Decision.deny("not_auditor")


class HelpManagementGuard(RouteGuard):
    deny_location = RESTRICTED_PATH

    def __init__(self, permission_resolver: Optional[PermissionResolver] = None):
        super().__init__(False)
        self.permission_resolver = permission_resolver

    def decide(self, session, org_id):
        if self.permission_resolver is not None:
            return self.permission_resolver.check_help_management(session)
        if resolver.can_manage_help(session):
            return Decision.allow("can_manage_help")
        return Decision.deny("capability_missing")


class PublicGuard(RouteGuard):
    def decide(self, session, org_id):
        return Decision.allow("public")

    def evaluate(self, session, path, org_id=None):
        return GuardResult.render("public")


def _role(value: str) -> Role:
    try:
        return PlatformRole(value)
    except ValueError:
        return OrgRole(value)


def build_guard(policy: Dict, permission_resolver: Optional[PermissionResolver] = None) -> RouteGuard:
    """Guard for one route policy entry; the bypass flag is read from the entry only."""
    kind = policy.get("guard", "public")
    bypass = bool(policy.get("platform_admin_bypass", False))
    if kind == "public":
        return PublicGuard()
    if kind == "authenticated":
        return AuthenticatedGuard()
    if kind == "role":
        return RoleGuard([_role(r) for r in policy.get("roles", [])], platform_admin_bypass=bypass)
    if kind == "module_permission":
        return ModulePermissionGuard(ModulePermission(policy["permission"]), platform_admin_bypass=bypass)
    if kind == "context":
        return OrganizationContextGuard(PortalContext(policy["context"]), platform_admin_bypass=bypass)
    if kind == "auditor":
        return AuditorGuard(platform_admin_bypass=bypass)
    if kind == "help":
        return HelpManagementGuard(permission_resolver)
    raise ValueError(f"Unknown guard type: {kind}")
