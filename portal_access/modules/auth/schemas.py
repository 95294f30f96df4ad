from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List, Dict
from portal_access.modules.permissions.schemas import (
    AccessLevel, AccessState, MembershipStanding, MembershipStatus, ModuleType,
    OrgRole, PlatformRole, PortalContext, PortalRole,
)


class SignInRequest(BaseModel):
    email: EmailStr
    password: str


class MagicLinkRequest(BaseModel):
    email: EmailStr
    redirect_to: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str
    email: str


class ModuleGrant(BaseModel):
    module: ModuleType
    access_level: AccessLevel

    model_config = {"frozen": True}


class OrganizationMembership(BaseModel):
    id: Optional[str] = None
    org_id: str
    user_id: str
    org_role: OrgRole
    status: MembershipStatus
    org_name: Optional[str] = None
    module_grants: List[ModuleGrant] = Field(default_factory=list)
    default_module: Optional[ModuleType] = None
    portal_roles: List[PortalRole] = Field(default_factory=list)
    allowed_contexts: List[PortalContext] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def is_active(self) -> bool:
        return self.status == MembershipStatus.ACTIVE


class UserProfile(BaseModel):
    id: str
    email: str
    status: str = "active"  # active | suspended
    platform_role: Optional[PlatformRole] = None
    can_manage_help: bool = False
    default_org_id: Optional[str] = None

    model_config = {"frozen": True}


class SessionSnapshot(BaseModel):
    """Immutable client-facing projection of identity state for one render."""
    user_id: Optional[str] = None
    email: Optional[str] = None
    platform_role: Optional[PlatformRole] = None
    memberships: List[OrganizationMembership] = Field(default_factory=list)
    capabilities: Dict[str, bool] = Field(default_factory=dict)
    access_state: AccessState = AccessState.LOADING
    active_org_id: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def is_loading(self) -> bool:
        return self.access_state == AccessState.LOADING

    @property
    def is_active(self) -> bool:
        return self.access_state == AccessState.ACTIVE

    @property
    def is_unavailable(self) -> bool:
        return self.access_state == AccessState.ERROR

    @property
    def is_platform_admin(self) -> bool:
        return self.is_active and self.platform_role == PlatformRole.PLATFORM_ADMIN

    @property
    def is_external_auditor(self) -> bool:
        return self.is_active and self.platform_role == PlatformRole.EXTERNAL_AUDITOR

    def membership_for(self, org_id: Optional[str]) -> Optional[OrganizationMembership]:
        if not org_id:
            return None
        for membership in self.memberships:
            if membership.org_id == org_id:
                return membership
        return None

    def active_memberships(self) -> List[OrganizationMembership]:
        return [m for m in self.memberships if m.is_active]

    @property
    def has_active_membership(self) -> bool:
        return any(m.is_active for m in self.memberships)

    @property
    def membership_standing(self) -> MembershipStanding:
        statuses = {m.status for m in self.memberships}
        if MembershipStatus.ACTIVE in statuses:
            return MembershipStanding.ACTIVE
        if MembershipStatus.PENDING in statuses:
            return MembershipStanding.PENDING
        if statuses & {MembershipStatus.SUSPENDED, MembershipStatus.REVOKED, MembershipStatus.DENIED}:
            return MembershipStanding.SUSPENDED
        return MembershipStanding.NONE

    @classmethod
    def loading(cls) -> "SessionSnapshot":
        return cls(access_state=AccessState.LOADING)

    @classmethod
    def anonymous(cls) -> "SessionSnapshot":
        return cls(access_state=AccessState.UNAUTHENTICATED)

    @classmethod
    def unavailable(cls, user_id: Optional[str] = None) -> "SessionSnapshot":
        return cls(user_id=user_id, access_state=AccessState.ERROR)


class MembershipResponse(BaseModel):
    org_id: str
    org_name: Optional[str] = None
    org_role: OrgRole
    status: MembershipStatus
    modules: List[str]
    allowed_contexts: List[str]


class SessionResponse(BaseModel):
    user_id: Optional[str] = None
    email: Optional[str] = None
    platform_role: Optional[PlatformRole] = None
    access_state: AccessState
    membership_standing: MembershipStanding
    active_org_id: Optional[str] = None
    memberships: List[MembershipResponse]
    capabilities: Dict[str, bool]

    @classmethod
    def from_snapshot(cls, snapshot: SessionSnapshot) -> "SessionResponse":
        return cls(
            user_id=snapshot.user_id,
            email=snapshot.email,
            platform_role=snapshot.platform_role,
            access_state=snapshot.access_state,
            membership_standing=snapshot.membership_standing,
            active_org_id=snapshot.active_org_id,
            memberships=[
                MembershipResponse(
                    org_id=m.org_id,
                    org_name=m.org_name,
                    org_role=m.org_role,
                    status=m.status,
                    modules=[g.module.value for g in m.module_grants],
                    allowed_contexts=[c.value for c in m.allowed_contexts],
                )
                for m in snapshot.memberships
            ],
            capabilities=dict(snapshot.capabilities),
        )


class SetActiveOrganizationRequest(BaseModel):
    org_id: str
