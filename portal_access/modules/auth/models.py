# Supabase Auth plus the identity projection tables
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Supabase Auth provides:
- auth.sign_in_with_password() - Authenticate users
- auth.sign_in_with_otp() - Magic link sign-in
- auth.get_user() - Get current user from JWT token
- auth.sign_out() - Logout users

Expected Supabase table structure:

user_profiles:
- id: uuid (primary key, references auth.users.id)
- email: text (not null)
- status: text (not null) - "active" | "suspended"
- platform_role: text (nullable) - platform_admin | platform_user | external_auditor
- can_manage_help: boolean (default: false)
- default_org_id: uuid (nullable, references tenants.id)
- last_login_at: timestamp (nullable)
- deleted_at: timestamp (nullable)

tenants:
- id: uuid (primary key)
- legal_name: text (not null)

tenant_memberships:
- id: uuid (primary key)
- tenant_id: uuid (references tenants.id)
- user_id: uuid (references auth.users.id)
- org_role: text - org_owner | org_admin | org_staff | org_client
- status: text - active | suspended | revoked | pending | denied (soft transitions only)
- default_module: text (nullable) - licensing | portal
- deleted_at: timestamp (nullable)

membership_roles:
- membership_id: uuid (references tenant_memberships.id)
- role: text - legacy portal role (tenant_owner, publishing_admin, licensing_user, read_only, internal_admin)

user_preferences:
- user_id: uuid (primary key)
- inactivity_timeout_minutes: integer - 15 | 30 | 60 | 120
- session_guard_enabled: boolean
- ui_density_mode: text - comfortable | compact
"""
