import hashlib
import logging
import time
from datetime import datetime, timezone
from supabase import Client
from portal_access.modules.auth.schemas import (
    SignInRequest, MagicLinkRequest, TokenResponse,
    ModuleGrant, OrganizationMembership, UserProfile, SessionSnapshot,
)
from portal_access.modules.permissions.schemas import (
    AccessLevel, AccessState, MembershipStatus, ModuleType, OrgRole, PlatformRole,
    PortalContext, PortalRole,
)
from portal_access.config.permissions_config import PORTAL_ROLE_CONTEXTS
from portal_access.config.settings import settings
from portal_access.core.exceptions import AccessDataError, AuthenticationError
from fastapi import HTTPException
from typing import Callable, Dict, Any, List, Optional

logger = logging.getLogger(__name__)

# In-memory cache for get_user to reduce Supabase auth calls (many parallel navigations with same token)
_AUTH_USER_CACHE: Dict[str, tuple] = {}


def token_key(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _is_rejected_token(error: Exception) -> bool:
    """The auth server answered and refused the token, as opposed to not answering at all"""
    if getattr(error, "status", None) in (401, 403):
        return True
    message = str(error)
    return "JWT" in message or "expired" in message.lower() or "invalid" in message.lower()


def compute_access_state(loading: bool, authenticated: bool, profile: Optional[UserProfile]) -> AccessState:
    """Pure function of (auth result, profile row); recomputed on every snapshot build."""
    if loading:
        return AccessState.LOADING
    if not authenticated:
        return AccessState.UNAUTHENTICATED
    if profile is None:
        return AccessState.NO_PROFILE
    if profile.status != "active":
        return AccessState.SUSPENDED_PROFILE
    return AccessState.ACTIVE


def select_active_org(
    memberships: List[OrganizationMembership],
    preferred_org_id: Optional[str],
    default_org_id: Optional[str],
) -> Optional[str]:
    """Stored preference, then profile default, then first active membership."""
    active = [m for m in memberships if m.is_active]
    for candidate in (preferred_org_id, default_org_id):
        if candidate and any(m.org_id == candidate for m in active):
            return candidate
    return active[0].org_id if active else None


class AuthService:
    """Identity provider: Supabase Auth plus the profile/membership projection."""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    def sign_in(self, sign_in_data: SignInRequest) -> TokenResponse:
        """Authenticate user using Supabase Auth"""
        try:
            auth_response = self.supabase.auth.sign_in_with_password({
                "email": sign_in_data.email,
                "password": sign_in_data.password
            })

            if not auth_response.user or not auth_response.session:
                raise HTTPException(status_code=401, detail="Invalid credentials")

            self._touch_last_login(auth_response.user.id)
            return TokenResponse(
                access_token=auth_response.session.access_token,
                token_type="bearer",
                user_id=auth_response.user.id,
                email=auth_response.user.email or sign_in_data.email
            )
        except HTTPException:
            raise
        except Exception as e:
            error_message = str(e)
            if "invalid" in error_message.lower() or "credentials" in error_message.lower():
                raise HTTPException(status_code=401, detail="Invalid email or password")
            logger.error(f"Sign-in failed: {error_message}")
            raise HTTPException(status_code=500, detail="Sign-in failed")

    def send_magic_link(self, request: MagicLinkRequest) -> bool:
        """Send a one-time sign-in link"""
        try:
            options = {"email_redirect_to": request.redirect_to} if request.redirect_to else {}
            self.supabase.auth.sign_in_with_otp({"email": request.email, "options": options})
            return True
        except Exception as e:
            logger.error(f"Magic link request failed: {e}")
            raise HTTPException(status_code=500, detail="Could not send sign-in link")

    def sign_out(self, token: str) -> bool:
        """Sign out with Supabase Auth and drop the cached user"""
        _AUTH_USER_CACHE.pop(token_key(token), None)
        try:
            self.supabase.auth.sign_out()
            return True
        except Exception as e:
            logger.warning(f"Supabase sign-out failed: {e}")
            return False

    def revoke(self, token: str) -> bool:
        """Invalidate the token at Supabase Auth; needs the service role client"""
        _AUTH_USER_CACHE.pop(token_key(token), None)
        try:
            self.supabase.auth.admin.sign_out(token)
            return True
        except Exception as e:
            logger.warning(f"Token revocation failed: {e}")
            return False

    def get_user(self, token: str) -> Dict[str, Any]:
        """Get auth user from a Supabase access token. Uses short TTL cache to reduce auth API calls."""
        cache_key = token_key(token)
        now = time.monotonic()
        if cache_key in _AUTH_USER_CACHE:
            user_data, expiry = _AUTH_USER_CACHE[cache_key]
            if now < expiry:
                return user_data
            del _AUTH_USER_CACHE[cache_key]
        try:
            user_response = self.supabase.auth.get_user(jwt=token)
        except Exception as e:
            if _is_rejected_token(e):
                raise AuthenticationError("Invalid or expired token")
            logger.error(f"Identity lookup failed: {e}")
            raise AccessDataError("Identity provider unavailable", source="auth")
        if not user_response or not user_response.user:
            raise AuthenticationError("Invalid or expired token")
        user = user_response.user
        user_data = {
            "id": user.id,
            "email": user.email,
            "app_metadata": user.app_metadata or {},
        }
        if len(_AUTH_USER_CACHE) < settings.session_cache_max_size:
            _AUTH_USER_CACHE[cache_key] = (user_data, now + settings.session_cache_ttl_seconds)
        return user_data

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        """Fetch the profile row; None only when the row is absent, a failed query raises"""
        try:
            result = self.supabase.table("user_profiles")\
                .select("id, email, status, platform_role, can_manage_help, default_org_id")\
                .eq("id", user_id)\
                .is_("deleted_at", "null")\
                .maybe_single()\
                .execute()
        except Exception as e:
            logger.error(f"Error fetching profile for {user_id}: {e}")
            raise AccessDataError(f"Profile lookup failed for {user_id}", source="user_profiles")
        if result is None or not result.data:
            return None
        row = result.data
        try:
            platform_role = PlatformRole(row["platform_role"]) if row.get("platform_role") else None
        except ValueError:
            logger.warning(f"Unknown platform role {row.get('platform_role')!r} for user {user_id}")
            platform_role = None
        return UserProfile(
            id=row["id"],
            email=row.get("email") or "",
            status=row.get("status") or "suspended",
            platform_role=platform_role,
            can_manage_help=bool(row.get("can_manage_help")),
            default_org_id=row.get("default_org_id"),
        )

    def get_memberships(self, user_id: str) -> List[OrganizationMembership]:
        """All memberships in any status, with module grants and legacy contexts"""
        try:
            result = self.supabase.table("tenant_memberships")\
                .select("id, tenant_id, status, org_role, default_module, tenants(legal_name), membership_roles(role)")\
                .eq("user_id", user_id)\
                .is_("deleted_at", "null")\
                .execute()
            grants_result = self.supabase.table("module_access")\
                .select("organization_id, module, access_level")\
                .eq("user_id", user_id)\
                .is_("revoked_at", "null")\
                .execute()
        except Exception as e:
            logger.error(f"Error fetching memberships for {user_id}: {e}")
            raise AccessDataError(f"Membership lookup failed for {user_id}", source="tenant_memberships")

        context_map = self._context_permission_map()
        grants_by_org: Dict[str, List[ModuleGrant]] = {}
        for row in grants_result.data or []:
            try:
                grant = ModuleGrant(module=ModuleType(row["module"]), access_level=AccessLevel(row["access_level"]))
            except ValueError:
                logger.warning(f"Skipping unrecognised module grant {row!r}")
                continue
            grants_by_org.setdefault(row["organization_id"], []).append(grant)

        memberships = []
        for row in result.data or []:
            try:
                org_role = OrgRole(row["org_role"])
                status = MembershipStatus(row["status"])
            except (KeyError, ValueError):
                logger.warning(f"Skipping malformed membership row {row.get('id')}")
                continue
            portal_roles = []
            for mr in row.get("membership_roles") or []:
                try:
                    portal_roles.append(PortalRole(mr["role"]))
                except (KeyError, ValueError):
                    continue
            contexts = []
            for role in portal_roles:
                for ctx in context_map.get(role.value, []):
                    if ctx not in contexts:
                        contexts.append(ctx)
            default_module = row.get("default_module")
            memberships.append(OrganizationMembership(
                id=row.get("id"),
                org_id=row["tenant_id"],
                user_id=user_id,
                org_role=org_role,
                status=status,
                org_name=(row.get("tenants") or {}).get("legal_name"),
                module_grants=grants_by_org.get(row["tenant_id"], []),
                default_module=ModuleType(default_module) if default_module in ("licensing", "portal") else None,
                portal_roles=portal_roles,
                allowed_contexts=contexts,
            ))
        return memberships

    def _context_permission_map(self) -> Dict[str, List[PortalContext]]:
        """Role -> contexts from context_permissions, falling back to the static defaults"""
        mapping: Dict[str, List[PortalContext]] = {
            role: [PortalContext(c) for c in contexts] for role, contexts in PORTAL_ROLE_CONTEXTS.items()
        }
        try:
            result = self.supabase.table("context_permissions")\
                .select("role, context, allowed")\
                .eq("allowed", True)\
                .execute()
        except Exception as e:
            logger.warning(f"Using default context permissions: {e}")
            return mapping
        if result.data:
            mapping = {}
            for perm in result.data:
                try:
                    mapping.setdefault(perm["role"], []).append(PortalContext(perm["context"]))
                except ValueError:
                    continue
        return mapping

    def build_session(
        self,
        token: Optional[str],
        preferred_org_id: Optional[str] = None,
        preferred_org_for: Optional[Callable[[str], Optional[str]]] = None,
    ) -> SessionSnapshot:
        """
        Resolve a token into a fresh SessionSnapshot; never raises.

        A rejected token is anonymous. An identity or data fetch that fails is
        an error snapshot, never anonymous, no-profile or membership-less.
        """
        if not token:
            return SessionSnapshot.anonymous()
        try:
            user = self.get_user(token)
        except AuthenticationError:
            return SessionSnapshot.anonymous()
        except AccessDataError:
            return SessionSnapshot.unavailable()

        if preferred_org_id is None and preferred_org_for is not None:
            preferred_org_id = preferred_org_for(user["id"])
        try:
            profile = self.get_profile(user["id"])
            memberships = self.get_memberships(user["id"]) if profile is not None else []
        except AccessDataError as e:
            logger.error(f"Session for {user['id']} is unavailable: {e}")
            return SessionSnapshot.unavailable(user["id"])

        access_state = compute_access_state(False, True, profile)
        if profile is None:
            return SessionSnapshot(user_id=user["id"], email=user.get("email"), access_state=access_state)

        return SessionSnapshot(
            user_id=user["id"],
            email=profile.email or user.get("email"),
            platform_role=profile.platform_role,
            memberships=memberships,
            capabilities={"can_manage_help": profile.can_manage_help},
            access_state=access_state,
            active_org_id=select_active_org(memberships, preferred_org_id, profile.default_org_id),
        )

    def _touch_last_login(self, user_id: str) -> None:
        try:
            self.supabase.table("user_profiles")\
                .update({"last_login_at": datetime.now(timezone.utc).isoformat()})\
                .eq("id", user_id)\
                .execute()
        except Exception as e:
            logger.warning(f"Could not update last_login_at for {user_id}: {e}")
