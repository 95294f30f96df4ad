from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any


class AuditAction(str, Enum):
    """Values of the audit_action database enum used by this service."""
    LOGIN = "login"
    LOGOUT = "logout"
    ACCESS_GRANTED = "access_granted"
    ACCESS_REVOKED = "access_revoked"
    RECORD_VIEWED = "record_viewed"


class AuditLabel(str, Enum):
    SIGNED_IN = "auth.signed_in"
    SIGNED_OUT = "auth.signed_out"
    ACCESS_DENIED = "access.denied"
    SCOPE_ENTERED = "scope.entered"
    SCOPE_VIOLATION = "scope.violation"
    SESSION_WARNING_SHOWN = "auth.session_idle_warning_shown"
    SESSION_SIGNED_OUT_IDLE = "auth.session_signed_out_idle"
    SESSION_SIGNED_OUT_MAX_DURATION = "auth.session_signed_out_max_duration"
    SESSION_SIGNED_OUT_MANUAL = "auth.session_signed_out_manual"


class AuditEvent(BaseModel):
    action: AuditAction
    action_label: str
    record_id: Optional[str] = None
    record_type: Optional[str] = None
    tenant_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
