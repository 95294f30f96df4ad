"""
Scope transition manager.

Enforces the boundary between the System Console, Organization Workspace and
Account scopes. A move between system and organization scope is only valid
when the user deliberately asked for it through an entry intent: a
short-lived, single-use marker stored in tab-scoped storage immediately
before the navigation.

A manager is built per navigation. The previous path is captured from tab
storage at construction, so validating twice on one instance without a new
intent fails the second time.
"""

import logging
import time
from typing import Callable, Optional

from portal_access.config.route_policies import (
    ACCOUNT_PATH,
    AUDITOR_PATH,
    DEFAULT_ORGANIZATION_PATH,
    MODULE_ROOTS,
    ORGANIZATION_ROOTS,
    RESTRICTED_PATH,
    SIGN_IN_PATH,
    SYSTEM_CONSOLE_PATH,
)
from portal_access.config.settings import settings
from portal_access.modules.auth.schemas import SessionSnapshot
from portal_access.modules.permissions.schemas import AccessState, ModuleType
from portal_access.modules.scopes.classifier import classify, normalize_path, path_has_prefix
from portal_access.modules.scopes.schemas import (
    EntryIntent,
    NavigationCommand,
    Scope,
    ScopeValidation,
    UNGUARDED_SCOPES,
)
from portal_access.modules.scopes.storage import (
    ENTRY_INTENT_KEY,
    LAST_VALID_PATH_KEY,
    LAST_VALID_SCOPE_KEY,
    PREVIOUS_PATH_KEY,
    TabStorage,
)

logger = logging.getLogger(__name__)


def can_access_scope(session: SessionSnapshot, scope: Scope) -> bool:
    if scope in UNGUARDED_SCOPES:
        return True
    if scope == Scope.USER:
        return session.access_state not in (AccessState.LOADING, AccessState.UNAUTHENTICATED, AccessState.ERROR)
    if not session.is_active:
        return False
    if scope == Scope.SYSTEM:
        return session.is_platform_admin or session.is_external_auditor
    if scope == Scope.ORGANIZATION:
        return session.is_platform_admin or session.has_active_membership
    return False


def is_cross_scope(previous: Optional[Scope], current: Optional[Scope]) -> bool:
    """Only a move between system and organization scope is a scope crossing."""
    return {previous, current} == {Scope.SYSTEM, Scope.ORGANIZATION}


def transition_label(from_scope: Optional[Scope], to_scope: Scope) -> str:
    if to_scope == Scope.SYSTEM:
        return "Return to System Console"
    if from_scope == Scope.SYSTEM and to_scope == Scope.ORGANIZATION:
        return "Enter Workspace"
    if to_scope == Scope.ORGANIZATION:
        return "Return to Workspace"
    return "Return"


def organization_default_path(session: SessionSnapshot) -> str:
    """Landing path inside the workspace: membership default module, else first granted module."""
    memberships = session.active_memberships()
    preferred = session.membership_for(session.active_org_id)
    if preferred is not None and preferred.is_active:
        memberships = [preferred] + [m for m in memberships if m is not preferred]
    for membership in memberships:
        if membership.default_module is not None:
            return MODULE_ROOTS[membership.default_module.value]
    for membership in memberships:
        for module in (ModuleType.LICENSING, ModuleType.PORTAL):
            if any(g.module == module for g in membership.module_grants):
                return MODULE_ROOTS[module.value]
    return DEFAULT_ORGANIZATION_PATH


def scope_root_path(scope: Scope, session: SessionSnapshot, path: Optional[str] = None) -> str:
    if scope == Scope.SYSTEM:
        if session.is_external_auditor:
            return AUDITOR_PATH
        return SYSTEM_CONSOLE_PATH
    if scope == Scope.ORGANIZATION:
        if path:
            normalized = normalize_path(path)
            for root in sorted(ORGANIZATION_ROOTS, key=len, reverse=True):
                if path_has_prefix(normalized, root):
                    return root
        return organization_default_path(session)
    if scope == Scope.USER:
        return ACCOUNT_PATH
    if scope == Scope.AUTH:
        return SIGN_IN_PATH
    return "/"


class ScopeTransitionManager:
    def __init__(
        self,
        session: SessionSnapshot,
        storage: TabStorage,
        current_path: str,
        clock: Callable[[], float] = time.time,
        intent_ttl_seconds: Optional[float] = None,
    ):
        self.session = session
        self.storage = storage
        self.current_path = normalize_path(current_path)
        self.clock = clock
        self.intent_ttl_seconds = (
            settings.entry_intent_ttl_seconds if intent_ttl_seconds is None else intent_ttl_seconds
        )
        self.previous_path = storage.get(PREVIOUS_PATH_KEY)

    @property
    def current_scope(self) -> Scope:
        return classify(self.current_path)

    @property
    def previous_scope(self) -> Optional[Scope]:
        return classify(self.previous_path) if self.previous_path else None

    @property
    def last_valid_scope(self) -> Optional[Scope]:
        raw = self.storage.get(LAST_VALID_SCOPE_KEY)
        return Scope(raw) if raw else None

    def can_access_scope(self, scope: Scope) -> bool:
        return can_access_scope(self.session, scope)

    def set_entry_intent(self, scope: Scope, target_path: str) -> EntryIntent:
        intent = EntryIntent(scope=scope, target_path=target_path, created_at=self.clock())
        self.storage.set(ENTRY_INTENT_KEY, intent.model_dump(mode="json"))
        return intent

    def clear_entry_intent(self) -> None:
        self.storage.remove(ENTRY_INTENT_KEY)

    def peek_entry_intent(self) -> Optional[EntryIntent]:
        raw = self.storage.get(ENTRY_INTENT_KEY)
        return EntryIntent(**raw) if raw else None

    def _consume_entry_intent(self) -> Optional[EntryIntent]:
        """Single read-then-clear; an expired intent counts as absent."""
        raw = self.storage.pop(ENTRY_INTENT_KEY)
        if not raw:
            return None
        intent = EntryIntent(**raw)
        if intent.is_expired(self.clock(), self.intent_ttl_seconds):
            logger.debug(f"Discarding expired entry intent for {intent.scope.value}:{intent.target_path}")
            return None
        return intent

    def validate_scope_access(self, record: bool = True) -> ScopeValidation:
        """Check the current path against scope access and the entry intent.

        With record=False the caller commits the last valid scope itself through
        record_navigation() once the route guard has also allowed the page.
        """
        scope = self.current_scope
        previous = self.previous_scope
        if self.session.is_loading:
            return ScopeValidation(valid=False, scope=scope, reason="session_loading", previous_scope=previous)
        if scope in UNGUARDED_SCOPES:
            return ScopeValidation(valid=True, scope=scope, reason="unguarded", previous_scope=previous)

        if not self.can_access_scope(scope):
            self.clear_entry_intent()
            logger.info(f"Scope violation: user {self.session.user_id} cannot access {scope.value} at {self.current_path}")
            return ScopeValidation(
                valid=False, scope=scope, reason="scope_inaccessible",
                previous_scope=previous, command=self.return_to_last_scope(),
            )

        intent = self._consume_entry_intent()
        intent_matches = intent is not None and intent.matches(scope, self.current_path)
        if is_cross_scope(previous, scope) and not intent_matches:
            logger.info(
                f"Scope violation: user {self.session.user_id} crossed {previous.value} -> {scope.value} "
                f"at {self.current_path} without entry intent"
            )
            return ScopeValidation(
                valid=False, scope=scope, reason="cross_scope_without_intent",
                previous_scope=previous, command=self.return_to_last_scope(),
            )

        if record:
            self._remember_valid_scope()
        return ScopeValidation(
            valid=True, scope=scope, reason="intent" if intent_matches else "same_scope",
            previous_scope=previous, intent_consumed=intent_matches,
        )

    def _remember_valid_scope(self) -> None:
        scope = self.current_scope
        if scope in UNGUARDED_SCOPES:
            return
        self.storage.set(LAST_VALID_SCOPE_KEY, scope.value)
        self.storage.set(LAST_VALID_PATH_KEY, self.current_path)

    def record_navigation(self) -> None:
        """Commit a rendered navigation: last valid scope, and previous path for the next one in this tab."""
        self._remember_valid_scope()
        self.storage.set(PREVIOUS_PATH_KEY, self.current_path)

    def enter_system_console(self) -> NavigationCommand:
        root = scope_root_path(Scope.SYSTEM, self.session)
        self.set_entry_intent(Scope.SYSTEM, root)
        return NavigationCommand(path=root, reset_scroll=True)

    def enter_organization(self, path: str = DEFAULT_ORGANIZATION_PATH) -> NavigationCommand:
        path = normalize_path(path)
        self.set_entry_intent(Scope.ORGANIZATION, path)
        return NavigationCommand(path=path, reset_scroll=True)

    def default_destination(self) -> NavigationCommand:
        if self.session.is_platform_admin:
            return self.enter_system_console()
        if self.can_access_scope(Scope.ORGANIZATION):
            return self.enter_organization(organization_default_path(self.session))
        if self.can_access_scope(Scope.SYSTEM):
            return self.enter_system_console()
        if self.can_access_scope(Scope.USER):
            return NavigationCommand(path=ACCOUNT_PATH)
        return NavigationCommand(path=SIGN_IN_PATH)

    def return_to_last_scope(self) -> NavigationCommand:
        last_scope = self.last_valid_scope
        last_path = self.storage.get(LAST_VALID_PATH_KEY)
        if last_scope is None or not self.can_access_scope(last_scope):
            command = self.default_destination()
        elif last_scope == Scope.SYSTEM:
            target = last_path or scope_root_path(Scope.SYSTEM, self.session)
            self.set_entry_intent(Scope.SYSTEM, target)
            command = NavigationCommand(path=target)
        elif last_scope == Scope.ORGANIZATION:
            command = self.enter_organization(last_path or organization_default_path(self.session))
        elif last_scope == Scope.USER:
            command = NavigationCommand(path=last_path or ACCOUNT_PATH)
        else:
            command = NavigationCommand(path="/")

        if normalize_path(command.path) == self.current_path:
            self.clear_entry_intent()
            return NavigationCommand(path=RESTRICTED_PATH, replace=True)
        return NavigationCommand(path=command.path, replace=True, reset_scroll=True)
