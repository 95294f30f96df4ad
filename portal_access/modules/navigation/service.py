"""
Per-navigation decision pipeline.

Order of evaluation for one requested path:
  1. loading session -> LOADING, no navigation at all
  2. unauthenticated / broken profile / store failure -> guard's redirect or error
  3. scope validation (accessible scope, cross-scope entry intent)
  4. route guard denial
  5. render, committing the last valid scope for this tab
"""

import logging
import time
from typing import Callable, Optional

from portal_access.modules.audit.schemas import AuditAction, AuditLabel
from portal_access.modules.audit.service import AuditService
from portal_access.modules.auth.schemas import SessionSnapshot
from portal_access.modules.guards.guards import build_guard
from portal_access.modules.guards.schemas import GuardAction, GuardResult
from portal_access.modules.navigation.schemas import NavigationDecision
from portal_access.modules.permissions.resolver import PermissionResolver
from portal_access.modules.scopes.classifier import breadcrumbs, classify, match_route, normalize_path
from portal_access.modules.scopes.schemas import Scope
from portal_access.modules.scopes.service import ScopeTransitionManager
from portal_access.modules.scopes.storage import TabStorageRegistry, tab_storage_registry

logger = logging.getLogger(__name__)


class NavigationService:
    def __init__(
        self,
        resolver: Optional[PermissionResolver] = None,
        audit: Optional[AuditService] = None,
        storage: Optional[TabStorageRegistry] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.resolver = resolver
        self.audit = audit
        self.storage = storage or tab_storage_registry
        self.clock = clock

    def manager_for(self, session: SessionSnapshot, tab_id: str, path: str) -> ScopeTransitionManager:
        return ScopeTransitionManager(session, self.storage.for_tab(session.user_id, tab_id), path, clock=self.clock)

    def resolve(
        self,
        session: SessionSnapshot,
        tab_id: str,
        path: str,
        org_id: Optional[str] = None,
    ) -> NavigationDecision:
        path = normalize_path(path)
        scope = classify(path)
        _, policy = match_route(path)

        if session.is_loading:
            return self._decision(GuardResult.loading(), path, scope)

        guard = build_guard(policy, self.resolver)
        result = guard.evaluate(session, path, org_id)
        if result.action == GuardAction.LOADING:
            return self._decision(result, path, scope)
        if result.action == GuardAction.ERROR or (not session.is_active and not result.allowed):
            if result.action == GuardAction.REDIRECT:
                self._audit_denial(session, path, result.reason)
            return self._decision(result, path, scope)

        manager = self.manager_for(session, tab_id, path)
        validation = manager.validate_scope_access(record=False)
        if not validation.valid:
            self._audit(
                session, AuditLabel.SCOPE_VIOLATION, AuditAction.RECORD_VIEWED,
                {"path": path, "scope": scope.value, "reason": validation.reason,
                 "previous_scope": validation.previous_scope.value if validation.previous_scope else None},
            )
            command = validation.command
            return NavigationDecision(
                action=GuardAction.REDIRECT,
                path=path,
                scope=scope,
                location=command.path,
                reason=validation.reason,
                replace=command.replace,
                reset_scroll=command.reset_scroll,
            )

        if not result.allowed:
            self._audit_denial(session, path, result.reason)
            return self._decision(result, path, scope)

        manager.record_navigation()
        if validation.intent_consumed and scope in (Scope.SYSTEM, Scope.ORGANIZATION):
            self._audit(
                session, AuditLabel.SCOPE_ENTERED, AuditAction.ACCESS_GRANTED,
                {"path": path, "scope": scope.value,
                 "previous_scope": validation.previous_scope.value if validation.previous_scope else None},
            )
        decision = self._decision(result, path, scope)
        decision.reset_scroll = validation.intent_consumed
        decision.breadcrumbs = breadcrumbs(path)
        return decision

    @staticmethod
    def _decision(result: GuardResult, path: str, scope: Scope) -> NavigationDecision:
        return NavigationDecision(
            action=result.action,
            path=path,
            scope=scope,
            location=result.location,
            reason=result.reason,
            return_to=result.return_to,
            replace=result.action in (GuardAction.REDIRECT, GuardAction.ERROR),
        )

    def _audit_denial(self, session: SessionSnapshot, path: str, reason: Optional[str]) -> None:
        self._audit(session, AuditLabel.ACCESS_DENIED, AuditAction.RECORD_VIEWED, {"path": path, "reason": reason})

    def _audit(self, session: SessionSnapshot, label: AuditLabel, action: AuditAction, details: dict) -> None:
        if self.audit is None or not session.user_id:
            return
        self.audit.record(
            action,
            label.value,
            record_type="route",
            record_id=session.user_id,
            tenant_id=session.active_org_id,
            details=details,
        )
