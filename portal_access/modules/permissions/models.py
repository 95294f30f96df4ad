# Supabase tables: module_access, module_permissions, context_permissions
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py and auth/service.py

"""
Expected Supabase table structure:

module_permissions:
- id: uuid (primary key)
- name: text (not null, unique) - e.g., "licensing.view", "portal.submit"
- module: text (not null) - "licensing" | "portal"
- action: text (not null) - e.g., "view", "request", "manage", "approve"
- description: text (nullable)
- created_at: timestamp (default: now())

module_access:
- id: uuid (primary key)
- user_id: uuid (foreign key to auth.users.id, not null)
- organization_id: uuid (foreign key to tenants.id, not null)
- module: text (not null) - "licensing" | "portal"
- access_level: text (not null) - viewer | editor | manager | approver
- granted_at: timestamp (default: now())
- revoked_at: timestamp (nullable) - grants are revoked, never deleted

context_permissions:
- role: text (not null) - legacy portal role, e.g. "licensing_user"
- context: text (not null) - "licensing" | "publishing"
- allowed: boolean (not null)

RPCs consumed (SECURITY DEFINER, opaque to this service):
- has_module_access_level(_user_id, _org_id, _module, _level) -> boolean
- can_manage_help(_user_id) -> boolean
"""
