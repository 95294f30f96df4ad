from enum import Enum
from pydantic import BaseModel
from typing import Optional


class GuardAction(str, Enum):
    RENDER = "render"
    LOADING = "loading"
    REDIRECT = "redirect"
    ERROR = "error"


class GuardResult(BaseModel):
    action: GuardAction
    location: Optional[str] = None
    reason: Optional[str] = None
    # Where to resume after sign-in; kept out of the redirect URL
    return_to: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def allowed(self) -> bool:
        return self.action == GuardAction.RENDER

    @classmethod
    def render(cls, reason: str = "granted") -> "GuardResult":
        return cls(action=GuardAction.RENDER, reason=reason)

    @classmethod
    def loading(cls) -> "GuardResult":
        return cls(action=GuardAction.LOADING, reason="session_loading")

    @classmethod
    def redirect(cls, location: str, reason: str, return_to: Optional[str] = None) -> "GuardResult":
        return cls(action=GuardAction.REDIRECT, location=location, reason=reason, return_to=return_to)

    @classmethod
    def error(cls, location: str, reason: str = "data_error") -> "GuardResult":
        return cls(action=GuardAction.ERROR, location=location, reason=reason)
