"""
Tests for Scope Classification and Scope Transitions
====================================================

Classification totality, entry intent single use and expiry, cross-scope
violations and the return-to-last-scope fallback chain.
"""

import pytest

from portal_access.modules.permissions.schemas import AccessState, MembershipStatus, OrgRole, PlatformRole
from portal_access.modules.scopes.classifier import breadcrumbs, classify, match_route, normalize_path
from portal_access.modules.scopes.schemas import EntryIntent, Scope
from portal_access.modules.scopes.service import (
    ScopeTransitionManager,
    can_access_scope,
    is_cross_scope,
    scope_root_path,
    transition_label,
)
from portal_access.modules.scopes.storage import (
    ENTRY_INTENT_KEY,
    LAST_VALID_PATH_KEY,
    LAST_VALID_SCOPE_KEY,
    PREVIOUS_PATH_KEY,
    InMemoryTabStorage,
    TabStorageRegistry,
)
from tests.conftest import make_membership, make_session


class TestClassification:
    REPRESENTATIVE = {
        "/console/users": Scope.SYSTEM,
        "/licensing/requests": Scope.ORGANIZATION,
        "/account/profile": Scope.USER,
        "/auth/sign-in": Scope.AUTH,
        "/": Scope.PUBLIC,
    }

    def test_representative_paths_cover_every_scope(self):
        results = {path: classify(path) for path in self.REPRESENTATIVE}
        assert results == self.REPRESENTATIVE
        assert set(results.values()) == set(Scope)

    def test_deterministic(self):
        for path in self.REPRESENTATIVE:
            assert len({classify(path) for _ in range(5)}) == 1

    def test_longest_prefix_wins(self):
        assert classify("/app/licensing") == Scope.ORGANIZATION
        assert classify("/app/no-access") == Scope.PUBLIC
        assert classify("/app/restricted") == Scope.PUBLIC

    def test_whole_segments_only(self):
        assert classify("/administrator") == Scope.PUBLIC
        assert classify("/admin/users") == Scope.SYSTEM

    @pytest.mark.parametrize("path", ["", None, "/unknown", "/pricing?plan=pro"])
    def test_fallback_is_public(self, path):
        assert classify(path) == Scope.PUBLIC

    def test_normalization(self):
        assert normalize_path("//console///users/?tab=1#top") == "/console/users"
        assert classify("/console/?x=1") == Scope.SYSTEM

    def test_route_match_and_breadcrumbs(self):
        prefix, policy = match_route("/licensing/requests/new/draft")
        assert prefix == "/licensing/requests/new"
        assert policy["permission"] == "licensing.request"
        assert [c["label"] for c in breadcrumbs("/licensing/requests/new")] == ["Licensing", "Requests", "New Request"]


class TestScopeAccess:
    def test_system_scope(self, admin_session, auditor_session, licensing_session):
        assert can_access_scope(admin_session, Scope.SYSTEM)
        assert can_access_scope(auditor_session, Scope.SYSTEM)
        assert not can_access_scope(licensing_session, Scope.SYSTEM)

    def test_organization_scope_needs_active_membership(self, licensing_session, auditor_session):
        assert can_access_scope(licensing_session, Scope.ORGANIZATION)
        assert not can_access_scope(auditor_session, Scope.ORGANIZATION)
        pending = make_session(memberships=[make_membership(status=MembershipStatus.PENDING)])
        assert not can_access_scope(pending, Scope.ORGANIZATION)

    def test_user_scope(self):
        assert can_access_scope(make_session(access_state=AccessState.NO_PROFILE), Scope.USER)
        assert not can_access_scope(make_session(access_state=AccessState.UNAUTHENTICATED), Scope.USER)
        assert not can_access_scope(make_session(access_state=AccessState.ERROR), Scope.USER)

    def test_auth_and_public_always(self):
        anonymous = make_session(access_state=AccessState.UNAUTHENTICATED)
        assert can_access_scope(anonymous, Scope.AUTH)
        assert can_access_scope(anonymous, Scope.PUBLIC)

    def test_cross_scope_is_system_organization_only(self):
        assert is_cross_scope(Scope.SYSTEM, Scope.ORGANIZATION)
        assert is_cross_scope(Scope.ORGANIZATION, Scope.SYSTEM)
        assert not is_cross_scope(Scope.USER, Scope.SYSTEM)
        assert not is_cross_scope(None, Scope.ORGANIZATION)
        assert not is_cross_scope(Scope.SYSTEM, Scope.SYSTEM)


class TestLabelsAndRoots:
    def test_transition_labels(self):
        assert transition_label(Scope.ORGANIZATION, Scope.SYSTEM) == "Return to System Console"
        assert transition_label(Scope.SYSTEM, Scope.ORGANIZATION) == "Enter Workspace"
        assert transition_label(Scope.USER, Scope.ORGANIZATION) == "Return to Workspace"
        assert transition_label(Scope.ORGANIZATION, Scope.USER) == "Return"

    def test_scope_roots(self, admin_session, auditor_session, licensing_session):
        assert scope_root_path(Scope.SYSTEM, admin_session) == "/console"
        assert scope_root_path(Scope.SYSTEM, auditor_session) == "/auditor"
        assert scope_root_path(Scope.ORGANIZATION, licensing_session, "/app/publishing/catalog") == "/app/publishing"
        assert scope_root_path(Scope.ORGANIZATION, licensing_session) == "/licensing"
        assert scope_root_path(Scope.USER, licensing_session) == "/account"


class TestTabStorage:
    def test_pop_reads_then_clears(self):
        storage = InMemoryTabStorage()
        storage.set("k", 1)
        assert storage.pop("k") == 1
        assert storage.pop("k") is None

    def test_tabs_are_isolated(self):
        registry = TabStorageRegistry()
        registry.for_tab("user-1", "a").set("k", "A")
        assert registry.for_tab("user-1", "b").get("k") is None
        assert registry.for_tab("user-1", "a").get("k") == "A"
        registry.drop("user-1", "a")
        assert registry.for_tab("user-1", "a").get("k") is None

    def test_same_tab_id_is_per_account(self):
        registry = TabStorageRegistry()
        registry.for_tab("user-1", "default").set("k", "A")
        assert registry.for_tab("user-2", "default").get("k") is None
        assert registry.for_tab(None, "default").get("k") is None

    def test_drop_user_forgets_every_tab(self):
        registry = TabStorageRegistry()
        registry.for_tab("user-1", "a").set("k", "A")
        registry.for_tab("user-1", "b").set("k", "B")
        registry.for_tab("user-2", "a").set("k", "C")
        assert registry.drop_user("user-1") == 2
        assert len(registry) == 1
        assert registry.for_tab("user-2", "a").get("k") == "C"

    def test_idle_tabs_are_pruned(self, clock):
        registry = TabStorageRegistry(idle_seconds=600, clock=clock)
        registry.for_tab("user-1", "a").set("k", "A")
        clock.advance(300)
        registry.for_tab("user-2", "b")
        clock.advance(400)
        registry.for_tab("user-2", "b")
        assert len(registry) == 1
        assert registry.for_tab("user-1", "a").get("k") is None


class TestEntryIntent:
    def test_matches_scope_and_path_prefix(self):
        intent = EntryIntent(scope=Scope.ORGANIZATION, target_path="/licensing?tab=open", created_at=0)
        assert intent.matches(Scope.ORGANIZATION, "/licensing/requests")
        assert not intent.matches(Scope.SYSTEM, "/licensing")
        assert not intent.matches(Scope.ORGANIZATION, "/portal")

    def test_matches_whole_segments_only(self):
        intent = EntryIntent(scope=Scope.ORGANIZATION, target_path="/licensing", created_at=0)
        assert intent.matches(Scope.ORGANIZATION, "/licensing/")
        assert not intent.matches(Scope.ORGANIZATION, "/licensing-archive")

    def test_expiry(self):
        intent = EntryIntent(scope=Scope.SYSTEM, target_path="/console", created_at=100)
        assert not intent.is_expired(130, 30)
        assert intent.is_expired(130.5, 30)


class TestScopeTransitionManager:
    @pytest.fixture
    def storage(self):
        return InMemoryTabStorage()

    def manager(self, session, storage, path, clock):
        return ScopeTransitionManager(session, storage, path, clock=clock)

    def test_first_navigation_needs_no_intent(self, licensing_session, storage, clock):
        validation = self.manager(licensing_session, storage, "/licensing", clock).validate_scope_access()
        assert validation.valid
        assert storage.get(LAST_VALID_SCOPE_KEY) == "organization"
        assert storage.get(LAST_VALID_PATH_KEY) == "/licensing"

    def test_intent_is_single_use(self, admin_session, storage, clock):
        storage.set(PREVIOUS_PATH_KEY, "/console")
        manager = self.manager(admin_session, storage, "/licensing", clock)
        manager.set_entry_intent(Scope.ORGANIZATION, "/licensing")

        first = manager.validate_scope_access()
        assert first.valid
        assert first.intent_consumed
        assert storage.get(ENTRY_INTENT_KEY) is None

        second = manager.validate_scope_access()
        assert not second.valid
        assert second.reason == "cross_scope_without_intent"

    def test_intent_older_than_ttl_is_absent(self, admin_session, storage, clock):
        storage.set(PREVIOUS_PATH_KEY, "/console")
        manager = self.manager(admin_session, storage, "/licensing", clock)
        manager.set_entry_intent(Scope.ORGANIZATION, "/licensing")
        clock.advance(31)
        validation = manager.validate_scope_access()
        assert not validation.valid
        assert validation.reason == "cross_scope_without_intent"

    def test_intent_within_ttl_is_honoured(self, admin_session, storage, clock):
        storage.set(PREVIOUS_PATH_KEY, "/console")
        manager = self.manager(admin_session, storage, "/licensing/requests", clock)
        manager.set_entry_intent(Scope.ORGANIZATION, "/licensing")
        clock.advance(29)
        assert manager.validate_scope_access().valid

    def test_intent_for_other_path_does_not_count(self, admin_session, storage, clock):
        storage.set(PREVIOUS_PATH_KEY, "/console")
        manager = self.manager(admin_session, storage, "/licensing", clock)
        manager.set_entry_intent(Scope.ORGANIZATION, "/portal")
        validation = manager.validate_scope_access()
        assert not validation.valid
        # a stale or mismatched intent is cleared, then the bounce sets its own
        assert manager.peek_entry_intent().target_path == "/console"

    def test_same_scope_moves_need_no_intent(self, licensing_session, storage, clock):
        storage.set(PREVIOUS_PATH_KEY, "/licensing")
        assert self.manager(licensing_session, storage, "/portal", clock).validate_scope_access().valid

    def test_user_scope_is_not_a_crossing(self, admin_session, storage, clock):
        storage.set(PREVIOUS_PATH_KEY, "/console")
        assert self.manager(admin_session, storage, "/account", clock).validate_scope_access().valid

    def test_auth_and_public_are_never_recorded(self, licensing_session, storage, clock):
        manager = self.manager(licensing_session, storage, "/auth/sign-in", clock)
        assert manager.validate_scope_access().reason == "unguarded"
        manager.record_navigation()
        assert storage.get(LAST_VALID_SCOPE_KEY) is None
        assert storage.get(PREVIOUS_PATH_KEY) == "/auth/sign-in"

    def test_loading_is_not_a_violation(self, storage, clock):
        validation = self.manager(make_session(access_state=AccessState.LOADING), storage, "/console", clock).validate_scope_access()
        assert not validation.valid
        assert validation.reason == "session_loading"
        assert validation.command is None

    def test_record_false_leaves_last_scope_to_caller(self, licensing_session, storage, clock):
        manager = self.manager(licensing_session, storage, "/licensing", clock)
        assert manager.validate_scope_access(record=False).valid
        assert storage.get(LAST_VALID_SCOPE_KEY) is None
        manager.record_navigation()
        assert storage.get(LAST_VALID_SCOPE_KEY) == "organization"


class TestDeepLinkIntoSystemConsole:
    """A licensing-only member opening /console is bounced without seeing it."""

    def test_bounced_to_default_workspace(self, licensing_session, clock):
        storage = InMemoryTabStorage()
        validation = ScopeTransitionManager(licensing_session, storage, "/console", clock=clock).validate_scope_access()
        assert not validation.valid
        assert validation.reason == "scope_inaccessible"
        assert validation.command.path == "/licensing"
        assert validation.command.replace

    def test_bounced_to_last_valid_path(self, licensing_session, clock):
        storage = InMemoryTabStorage()
        storage.set(LAST_VALID_SCOPE_KEY, "organization")
        storage.set(LAST_VALID_PATH_KEY, "/licensing/requests")
        validation = ScopeTransitionManager(licensing_session, storage, "/console", clock=clock).validate_scope_access()
        assert validation.command.path == "/licensing/requests"


class TestEnterAndReturn:
    def test_enter_organization_then_bounce_back_from_console(self, admin_session, clock):
        storage = InMemoryTabStorage()
        storage.set(PREVIOUS_PATH_KEY, "/console")
        storage.set(LAST_VALID_SCOPE_KEY, "system")
        storage.set(LAST_VALID_PATH_KEY, "/console")

        command = ScopeTransitionManager(admin_session, storage, "/console", clock=clock).enter_organization("/licensing")
        assert command.path == "/licensing"
        assert command.reset_scroll

        at_licensing = ScopeTransitionManager(admin_session, storage, "/licensing", clock=clock)
        validation = at_licensing.validate_scope_access()
        assert validation.valid and validation.intent_consumed
        at_licensing.record_navigation()

        back_to_console = ScopeTransitionManager(admin_session, storage, "/console", clock=clock)
        violation = back_to_console.validate_scope_access()
        assert not violation.valid
        assert violation.reason == "cross_scope_without_intent"
        assert violation.command.path == "/licensing"

    def test_enter_system_console_sets_intent(self, admin_session, clock):
        storage = InMemoryTabStorage()
        storage.set(PREVIOUS_PATH_KEY, "/licensing")
        ScopeTransitionManager(admin_session, storage, "/licensing", clock=clock).enter_system_console()
        assert ScopeTransitionManager(admin_session, storage, "/console", clock=clock).validate_scope_access().valid

    def test_return_falls_back_when_last_scope_lost(self, clock):
        storage = InMemoryTabStorage()
        storage.set(LAST_VALID_SCOPE_KEY, "system")
        staff = make_session(memberships=[make_membership(org_role=OrgRole.ORG_STAFF, grants={"portal": "viewer"})])
        command = ScopeTransitionManager(staff, storage, "/account", clock=clock).return_to_last_scope()
        assert command.path == "/portal"

    def test_return_to_account_without_workspace(self, clock):
        no_orgs = make_session(platform_role=PlatformRole.PLATFORM_USER)
        command = ScopeTransitionManager(no_orgs, InMemoryTabStorage(), "/console", clock=clock).return_to_last_scope()
        assert command.path == "/account"

    def test_return_to_current_path_renders_restricted(self, licensing_session, clock):
        storage = InMemoryTabStorage()
        storage.set(LAST_VALID_SCOPE_KEY, "organization")
        storage.set(LAST_VALID_PATH_KEY, "/licensing")
        command = ScopeTransitionManager(licensing_session, storage, "/licensing", clock=clock).return_to_last_scope()
        assert command.path == "/app/restricted"
        assert storage.get(ENTRY_INTENT_KEY) is None

    def test_anonymous_return_goes_to_sign_in(self, clock):
        anonymous = make_session(access_state=AccessState.UNAUTHENTICATED)
        command = ScopeTransitionManager(anonymous, InMemoryTabStorage(), "/console", clock=clock).return_to_last_scope()
        assert command.path == "/auth/sign-in"
