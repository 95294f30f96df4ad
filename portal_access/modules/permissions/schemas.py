from enum import Enum
from pydantic import BaseModel
from typing import Optional, List


class PlatformRole(str, Enum):
    PLATFORM_ADMIN = "platform_admin"
    PLATFORM_USER = "platform_user"
    EXTERNAL_AUDITOR = "external_auditor"


class OrgRole(str, Enum):
    ORG_OWNER = "org_owner"
    ORG_ADMIN = "org_admin"
    ORG_STAFF = "org_staff"
    ORG_CLIENT = "org_client"


class PortalRole(str, Enum):
    """Legacy per-tenant roles that unlock business contexts."""
    TENANT_OWNER = "tenant_owner"
    PUBLISHING_ADMIN = "publishing_admin"
    LICENSING_USER = "licensing_user"
    READ_ONLY = "read_only"
    INTERNAL_ADMIN = "internal_admin"


class MembershipStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    REVOKED = "revoked"
    PENDING = "pending"
    DENIED = "denied"


class ModuleType(str, Enum):
    LICENSING = "licensing"
    PORTAL = "portal"


class AccessLevel(str, Enum):
    VIEWER = "viewer"
    EDITOR = "editor"
    MANAGER = "manager"
    APPROVER = "approver"


class PortalContext(str, Enum):
    LICENSING = "licensing"
    PUBLISHING = "publishing"


class AccessState(str, Enum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    NO_PROFILE = "no-profile"
    SUSPENDED_PROFILE = "suspended-profile"
    ACTIVE = "active"
    # identity or profile/membership data could not be loaded; inconclusive, never cached
    ERROR = "error"


class MembershipStanding(str, Enum):
    NONE = "none"
    PENDING = "pending"
    SUSPENDED = "suspended"
    ACTIVE = "active"


class ModulePermission(str, Enum):
    LICENSING_VIEW = "licensing.view"
    LICENSING_REQUEST = "licensing.request"
    LICENSING_MANAGE = "licensing.manage"
    LICENSING_APPROVE = "licensing.approve"
    PORTAL_VIEW = "portal.view"
    PORTAL_SUBMIT = "portal.submit"
    PORTAL_MANAGE = "portal.manage"
    PORTAL_APPROVE = "portal.approve"

    @property
    def module(self) -> ModuleType:
        return ModuleType(self.value.split(".", 1)[0])

    @property
    def action(self) -> str:
        return self.value.split(".", 1)[1]


class DecisionOutcome(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    PENDING = "pending"


class Decision(BaseModel):
    outcome: DecisionOutcome
    reason: str

    model_config = {"frozen": True}

    @property
    def allowed(self) -> bool:
        return self.outcome == DecisionOutcome.ALLOW

    @property
    def pending(self) -> bool:
        return self.outcome == DecisionOutcome.PENDING

    @classmethod
    def allow(cls, reason: str = "granted") -> "Decision":
        return cls(outcome=DecisionOutcome.ALLOW, reason=reason)

    @classmethod
    def deny(cls, reason: str) -> "Decision":
        return cls(outcome=DecisionOutcome.DENY, reason=reason)

    @classmethod
    def wait(cls) -> "Decision":
        return cls(outcome=DecisionOutcome.PENDING, reason="session_loading")


class DecisionResponse(BaseModel):
    outcome: DecisionOutcome
    reason: str
    allowed: bool


class WorkspaceAccessResponse(BaseModel):
    can_access_system_console: bool
    can_access_help_workstation: bool
    can_access_portal_admin: bool
    can_access_licensing: bool


class CapabilitiesResponse(BaseModel):
    organization_id: str
    permissions: List[str]


class ModulePermissionDescriptor(BaseModel):
    name: str
    module: str
    action: str
    description: Optional[str] = None
