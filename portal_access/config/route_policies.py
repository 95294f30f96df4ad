"""
Route Policies Configuration
Central declaration of navigational scopes and of the guard protecting each
route prefix. This table is the only place where a platform_admin bypass may
be granted; guards never infer one on their own.
"""

# (prefix, scope) pairs. Evaluated longest-prefix-first on whole path segments.
SCOPE_PREFIXES = [
    ("/console", "system"),
    ("/admin", "system"),
    ("/auditor", "system"),
    ("/help-workstation", "system"),
    ("/licensing", "organization"),
    ("/portal", "organization"),
    ("/app", "organization"),
    # Denial surfaces must stay reachable whatever scope the user lacks
    ("/app/restricted", "public"),
    ("/app/no-access", "public"),
    ("/app/pending", "public"),
    ("/app/suspended", "public"),
    ("/account", "user"),
    ("/workspaces", "user"),
    ("/auth", "auth"),
    ("/sign-in", "auth"),
]

FALLBACK_SCOPE = "public"

SCOPE_LABELS = {
    "system": "System Console",
    "organization": "Organization",
    "user": "Account",
    "auth": "Authentication",
    "public": "Public",
}

# Organization workspace roots, longest first wins
ORGANIZATION_ROOTS = ["/licensing", "/portal", "/app/licensing", "/app/publishing", "/app"]

MODULE_ROOTS = {
    "licensing": "/licensing",
    "portal": "/portal",
}

SIGN_IN_PATH = "/auth/sign-in"
AUTH_ERROR_PATH = "/auth/error"
UNAUTHORIZED_PATH = "/auth/unauthorized"
NO_ACCESS_PATH = "/app/no-access"
PENDING_PATH = "/app/pending"
SUSPENDED_PATH = "/app/suspended"
RESTRICTED_PATH = "/app/restricted"
SYSTEM_CONSOLE_PATH = "/console"
AUDITOR_PATH = "/auditor"
DEFAULT_ORGANIZATION_PATH = "/app"
ACCOUNT_PATH = "/account"

ORG_ROLES = ["org_owner", "org_admin", "org_staff", "org_client"]

# Route prefix -> guard declaration. Longest matching prefix wins.
# guard: public | authenticated | role | module_permission | context | auditor | help
ROUTE_POLICIES = {
    "/": {"label": "Home", "parent": None, "guard": "public"},
    "/auth": {"label": "Authentication", "parent": None, "guard": "public"},
    "/sign-in": {"label": "Sign In", "parent": None, "guard": "public"},
    "/app/restricted": {"label": "Restricted", "parent": None, "guard": "public"},
    "/app/no-access": {"label": "No Access", "parent": None, "guard": "public"},
    "/app/pending": {"label": "Pending Approval", "parent": None, "guard": "public"},
    "/app/suspended": {"label": "Suspended", "parent": None, "guard": "public"},

    # System Console: external auditors by role, platform admins by explicit bypass
    "/console": {
        "label": "System Console", "parent": None, "guard": "role",
        "roles": ["external_auditor"], "platform_admin_bypass": True,
    },
    "/console/users": {
        "label": "Active Users", "parent": "/console", "guard": "role",
        "roles": [], "platform_admin_bypass": True,
    },
    "/console/security": {
        "label": "Security", "parent": "/console", "guard": "role",
        "roles": [], "platform_admin_bypass": True,
    },
    "/admin": {
        "label": "Administration", "parent": None, "guard": "role",
        "roles": [], "platform_admin_bypass": True,
    },
    "/auditor": {"label": "Auditor Portal", "parent": None, "guard": "auditor", "platform_admin_bypass": True},
    "/help-workstation": {"label": "Help Workstation", "parent": None, "guard": "help"},

    # Organization modules
    "/licensing": {
        "label": "Licensing", "parent": None, "guard": "module_permission",
        "permission": "licensing.view", "platform_admin_bypass": True,
    },
    "/licensing/requests": {
        "label": "Requests", "parent": "/licensing", "guard": "module_permission",
        "permission": "licensing.view", "platform_admin_bypass": True,
    },
    "/licensing/requests/new": {
        "label": "New Request", "parent": "/licensing/requests", "guard": "module_permission",
        "permission": "licensing.request",
    },
    "/licensing/approvals": {
        "label": "Approvals", "parent": "/licensing", "guard": "module_permission",
        "permission": "licensing.approve",
    },
    "/portal": {
        "label": "Client Portal", "parent": None, "guard": "module_permission",
        "permission": "portal.view", "platform_admin_bypass": True,
    },
    "/portal/submissions": {
        "label": "Submissions", "parent": "/portal", "guard": "module_permission",
        "permission": "portal.submit",
    },
    "/portal/settings": {
        "label": "Settings", "parent": "/portal", "guard": "module_permission",
        "permission": "portal.manage",
    },
    "/app": {
        "label": "Workspace", "parent": None, "guard": "role",
        "roles": ORG_ROLES, "platform_admin_bypass": True,
    },
    "/app/licensing": {
        "label": "Licensing", "parent": None, "guard": "context",
        "context": "licensing", "platform_admin_bypass": True,
    },
    "/app/publishing": {
        "label": "Publishing", "parent": None, "guard": "context",
        "context": "publishing", "platform_admin_bypass": True,
    },
    "/app/members": {
        "label": "Members", "parent": "/app", "guard": "role",
        "roles": ["org_owner", "org_admin"],
    },

    # Account
    "/account": {"label": "Account", "parent": None, "guard": "authenticated"},
    "/workspaces": {"label": "Workspaces", "parent": None, "guard": "authenticated"},
}
