# Supabase tables: audit_logs, access_logs
# Both tables are append-only; rows are only ever written through SECURITY DEFINER RPCs.

"""
Expected Supabase table structure:

audit_logs:
- id: uuid (primary key)
- actor_id: uuid (auth.uid() of the caller)
- actor_email: text
- actor_type: text
- action: audit_action enum - login, logout, access_granted, access_revoked, record_viewed, ...
- action_label: text - e.g. "scope.entered", "auth.session_signed_out_idle"
- record_id: uuid (nullable)
- record_type: text (nullable) - e.g. "session", "route", "tenant_membership"
- tenant_id: uuid (nullable)
- details: jsonb
- correlation_id: text (nullable)
- created_at: timestamp (default: now())

access_logs:
- id: uuid (primary key)
- user_id: uuid
- user_email: text
- record_id: uuid
- record_type: text
- access_type: text - "view" | "download" | "export" | "denied"
- tenant_id: uuid (nullable)
- created_at: timestamp (default: now())

RPCs consumed:
- log_audit_event(_action, _action_label, _record_id, _record_type, _tenant_id, _details) -> uuid
- log_access_event(_record_id, _record_type, _access_type, _tenant_id) -> uuid
- generate_correlation_id() -> text  (format CORR-YYYYMMDD-HHMMSS-XXXXXXXX)
"""
