from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional


INACTIVITY_TIMEOUT_OPTIONS = (15, 30, 60, 120)


class ContinuityState(str, Enum):
    INACTIVE = "inactive"
    DISABLED = "disabled"
    ACTIVE = "active"
    WARNING = "warning"
    EXPIRED = "expired"


class LogoutReason(str, Enum):
    IDLE = "idle"
    MAX_SESSION = "max-session"
    MANUAL = "manual"
    SESSION_LIMIT = "session-limit"


class MessageType(str, Enum):
    ACTIVITY = "activity"
    LOGOUT = "logout"
    EXTEND_SESSION = "extend-session"


class BroadcastMessage(BaseModel):
    type: MessageType
    timestamp: float
    sender: Optional[str] = None  # tab id of the publisher
    reason: Optional[LogoutReason] = None

    model_config = {"frozen": True}


class SessionPreferences(BaseModel):
    inactivity_timeout_minutes: int = 30
    session_guard_enabled: bool = True
    ui_density_mode: str = "comfortable"  # comfortable | compact


class ContinuityStatus(BaseModel):
    state: ContinuityState
    seconds_remaining: Optional[int] = None
    show_warning: bool = False
    reason: Optional[LogoutReason] = None
    policy_label: str
    redirect_to: Optional[str] = None


class ActivityRequest(BaseModel):
    timestamp: Optional[float] = Field(None, description="Client wall-clock seconds; server time when omitted")
