"""
Portal Access Test Configuration
================================

Shared fixtures: an in-memory Supabase stand-in, a controllable clock,
session builders, and isolation of the process-wide registries.
"""

from typing import Any, Callable, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from portal_access.modules.auth import service as auth_service_module
from portal_access.modules.auth.schemas import ModuleGrant, OrganizationMembership, SessionSnapshot
from portal_access.modules.auth.session_store import session_store
from portal_access.modules.continuity.broadcast import channel_hub
from portal_access.modules.continuity.service import continuity_registry
from portal_access.modules.permissions.schemas import (
    AccessLevel,
    AccessState,
    MembershipStatus,
    ModuleType,
    OrgRole,
    PlatformRole,
    PortalContext,
)
from portal_access.modules.scopes.storage import tab_storage_registry


# ==================== Fake Supabase ====================


class FakeResponse:
    def __init__(self, data: Any):
        self.data = data


class FakeQuery:
    """Subset of the postgrest query builder used by the services."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.filters: List[Callable[[Dict], bool]] = []
        self.op = "select"
        self.payload: Any = None
        self.single_mode: Optional[str] = None
        self.order_by: Optional[tuple] = None
        self.limit_to: Optional[int] = None

    def select(self, *columns, **kwargs):
        self.op = "select"
        return self

    def insert(self, payload):
        self.op = "insert"
        self.payload = payload
        return self

    def update(self, payload):
        self.op = "update"
        self.payload = payload
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def is_(self, column, value):
        if value == "null":
            self.filters.append(lambda row: row.get(column) is None)
        else:
            self.filters.append(lambda row: row.get(column) == value)
        return self

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def limit(self, count):
        self.limit_to = count
        return self

    def maybe_single(self):
        self.single_mode = "maybe"
        return self

    def single(self):
        self.single_mode = "single"
        return self

    def _matches(self, row: Dict) -> bool:
        return all(f(row) for f in self.filters)

    def execute(self):
        self.db.calls.append((self.table_name, self.op))
        if self.table_name in self.db.failing_tables:
            raise Exception(f"relation {self.table_name} unavailable")
        rows = self.db.tables.setdefault(self.table_name, [])

        if self.op == "insert":
            new_rows = self.payload if isinstance(self.payload, list) else [self.payload]
            rows.extend(dict(r) for r in new_rows)
            return FakeResponse([dict(r) for r in new_rows])
        if self.op == "update":
            updated = []
            for row in rows:
                if self._matches(row):
                    row.update(self.payload)
                    updated.append(dict(row))
            return FakeResponse(updated)
        if self.op == "delete":
            kept = [r for r in rows if not self._matches(r)]
            removed = [r for r in rows if self._matches(r)]
            self.db.tables[self.table_name] = kept
            return FakeResponse(removed)

        matched = [dict(r) for r in rows if self._matches(r)]
        if self.order_by:
            column, desc = self.order_by
            matched.sort(key=lambda r: r.get(column) or "", reverse=desc)
        if self.limit_to is not None:
            matched = matched[: self.limit_to]
        if self.single_mode == "maybe":
            return FakeResponse(matched[0] if matched else None)
        if self.single_mode == "single":
            if len(matched) != 1:
                raise Exception("JSON object requested, multiple (or no) rows returned")
            return FakeResponse(matched[0])
        return FakeResponse(matched)


class FakeRpc:
    def __init__(self, db: "FakeSupabase", name: str, params: Dict):
        self.db = db
        self.name = name
        self.params = params

    def execute(self):
        self.db.rpc_calls.append((self.name, self.params))
        handler = self.db.rpc_handlers.get(self.name)
        if handler is None:
            raise Exception(f"function {self.name} does not exist")
        value = handler(self.params) if callable(handler) else handler
        return FakeResponse(value)


class FakeSupabase:
    def __init__(self):
        self.tables: Dict[str, List[Dict]] = {}
        self.failing_tables: set = set()
        self.rpc_handlers: Dict[str, Any] = {}
        self.rpc_calls: List[tuple] = []
        self.calls: List[tuple] = []
        self.auth = MagicMock()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: Dict) -> FakeRpc:
        return FakeRpc(self, name, params)


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


# ==================== Clock ====================


class FakeClock:
    """Wall-clock seconds under test control."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


# ==================== Session builders ====================


def make_membership(
    org_id: str = "org-1",
    org_role: OrgRole = OrgRole.ORG_STAFF,
    status: MembershipStatus = MembershipStatus.ACTIVE,
    grants: Optional[Dict[str, str]] = None,
    contexts: Optional[List[str]] = None,
    default_module: Optional[str] = None,
    user_id: str = "user-1",
) -> OrganizationMembership:
    return OrganizationMembership(
        org_id=org_id,
        user_id=user_id,
        org_role=org_role,
        status=status,
        org_name=f"{org_id} Music",
        module_grants=[
            ModuleGrant(module=ModuleType(m), access_level=AccessLevel(level))
            for m, level in (grants or {}).items()
        ],
        default_module=ModuleType(default_module) if default_module else None,
        allowed_contexts=[PortalContext(c) for c in (contexts or [])],
    )


def make_session(
    platform_role: Optional[PlatformRole] = None,
    memberships: Optional[List[OrganizationMembership]] = None,
    access_state: AccessState = AccessState.ACTIVE,
    active_org_id: Optional[str] = None,
    can_manage_help: bool = False,
    user_id: str = "user-1",
) -> SessionSnapshot:
    memberships = memberships or []
    if active_org_id is None:
        active = [m for m in memberships if m.is_active]
        active_org_id = active[0].org_id if active else None
    return SessionSnapshot(
        user_id=user_id if access_state != AccessState.UNAUTHENTICATED else None,
        email=f"{user_id}@example.com",
        platform_role=platform_role,
        memberships=memberships,
        capabilities={"can_manage_help": can_manage_help},
        access_state=access_state,
        active_org_id=active_org_id,
    )


@pytest.fixture
def admin_session():
    return make_session(platform_role=PlatformRole.PLATFORM_ADMIN)


@pytest.fixture
def auditor_session():
    return make_session(platform_role=PlatformRole.EXTERNAL_AUDITOR)


@pytest.fixture
def licensing_session():
    """Org staff with an editor licensing grant and the licensing context."""
    return make_session(memberships=[
        make_membership(grants={"licensing": "editor"}, contexts=["licensing"], default_module="licensing"),
    ])


NON_ACTIVE_STATES = [
    AccessState.LOADING,
    AccessState.UNAUTHENTICATED,
    AccessState.NO_PROFILE,
    AccessState.SUSPENDED_PROFILE,
    AccessState.ERROR,
]


# ==================== Isolation ====================


@pytest.fixture(autouse=True)
def reset_registries():
    """Process-wide stores must not leak state between tests."""
    session_store.clear()
    tab_storage_registry.clear()
    continuity_registry.clear()
    channel_hub.clear()
    auth_service_module._AUTH_USER_CACHE.clear()
    yield
    session_store.clear()
    tab_storage_registry.clear()
    continuity_registry.clear()
    channel_hub.clear()
    auth_service_module._AUTH_USER_CACHE.clear()
