"""
Module Capabilities Configuration
This config defines the capability matrix for every organization-scoped module.
A membership's effective capabilities for a module are the intersection of what
its module grant (access level) implies and what its organization role implies.
Used by the permission resolver and by the seed script that mirrors the matrix
into the module_permissions table.
"""

# Define modules and the actions that can be granted inside them
MODULES = {
    "licensing": {
        "module": "licensing",
        "actions": ["view", "request", "manage", "approve"],
        "description": "Licensing requests and agreements"
    },
    "portal": {
        "module": "portal",
        "actions": ["view", "submit", "manage", "approve"],
        "description": "Client portal for publishing administration"
    }
}

# Access levels granted per module (module_access.access_level), lowest first.
# Each level implies every action of the levels below it.
ACCESS_LEVELS = {
    "viewer": {
        "rank": 0,
        "actions": ["view"],
        "description": "Read-only access"
    },
    "editor": {
        "rank": 1,
        "actions": ["view", "request", "submit"],
        "description": "Can create and edit records"
    },
    "manager": {
        "rank": 2,
        "actions": ["view", "request", "submit", "manage"],
        "description": "Can manage workflows"
    },
    "approver": {
        "rank": 3,
        "actions": ["view", "request", "submit", "manage", "approve"],
        "description": "Can approve or reject items"
    }
}

# Actions each organization role may ever exercise, regardless of grants
ORG_ROLE_ACTIONS = {
    "org_owner": ["view", "request", "submit", "manage", "approve"],
    "org_admin": ["view", "request", "submit", "manage", "approve"],
    "org_staff": ["view", "request", "submit", "manage"],
    "org_client": ["view", "request", "submit"]
}

# Legacy portal roles -> business contexts they unlock (context_permissions defaults)
PORTAL_ROLE_CONTEXTS = {
    "tenant_owner": ["licensing", "publishing"],
    "internal_admin": ["licensing", "publishing"],
    "publishing_admin": ["publishing"],
    "licensing_user": ["licensing"],
    "read_only": []
}

MODULE_SPECIFIC_DESCRIPTIONS = {
    "licensing": {
        "request": "Submit licensing requests",
        "approve": "Approve or reject licensing requests"
    },
    "portal": {
        "submit": "Submit works and documents through the portal",
        "approve": "Approve client submissions"
    }
}


def permission_name(module: str, action: str) -> str:
    return f"{module}.{action}"


def actions_for_access_level(module: str, access_level: str) -> set:
    """Actions a grant at access_level confers inside module (unknown level -> none)"""
    level = ACCESS_LEVELS.get(access_level)
    if level is None or module not in MODULES:
        return set()
    return {a for a in level["actions"] if a in MODULES[module]["actions"]}


def actions_for_org_role(module: str, org_role: str) -> set:
    """Actions an organization role may exercise inside module (unknown role -> none)"""
    if module not in MODULES:
        return set()
    return {a for a in ORG_ROLE_ACTIONS.get(org_role, []) if a in MODULES[module]["actions"]}


# Generate permission matrix
def get_permission_matrix():
    """
    Returns a dictionary with all module permissions and the role/level implications
    Format: {
        "permissions": [
            {"name": "licensing.view", "module": "licensing", "action": "view", "description": "..."},
            ...
        ],
        "access_levels": {"viewer": ["licensing.view", "portal.view"], ...},
        "org_roles": {"org_client": ["licensing.request", ...], ...}
    }
    """
    permissions = []
    access_levels = {}
    org_roles = {}

    for module_name, module_config in MODULES.items():
        for action in module_config["actions"]:
            description = f"{action.capitalize()} {module_name}"
            if action in MODULE_SPECIFIC_DESCRIPTIONS.get(module_name, {}):
                description = MODULE_SPECIFIC_DESCRIPTIONS[module_name][action]

            permissions.append({
                "name": permission_name(module_name, action),
                "module": module_name,
                "action": action,
                "description": description
            })

    for level in ACCESS_LEVELS:
        access_levels[level] = sorted(
            permission_name(m, a) for m in MODULES for a in actions_for_access_level(m, level)
        )

    for role in ORG_ROLE_ACTIONS:
        org_roles[role] = sorted(
            permission_name(m, a) for m in MODULES for a in actions_for_org_role(m, role)
        )

    return {
        "permissions": permissions,
        "access_levels": access_levels,
        "org_roles": org_roles
    }


# Export the matrix for use in seed scripts
PERMISSION_MATRIX = get_permission_matrix()
