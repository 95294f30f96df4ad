from enum import Enum
from pydantic import BaseModel
from typing import Optional


class Scope(str, Enum):
    SYSTEM = "system"
    ORGANIZATION = "organization"
    USER = "user"
    AUTH = "auth"
    PUBLIC = "public"


# Scopes that are never recorded as a last valid scope and never need an intent
UNGUARDED_SCOPES = {Scope.AUTH, Scope.PUBLIC}


class EntryIntent(BaseModel):
    scope: Scope
    target_path: str
    created_at: float  # wall-clock seconds

    model_config = {"frozen": True}

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        return now - self.created_at > ttl_seconds

    def matches(self, scope: Scope, path: str) -> bool:
        from portal_access.modules.scopes.classifier import normalize_path, path_has_prefix

        return self.scope == scope and path_has_prefix(normalize_path(path), normalize_path(self.target_path))


class NavigationCommand(BaseModel):
    """Navigation effect for the front end to perform."""
    path: str
    replace: bool = False
    reset_scroll: bool = True


class ScopeValidation(BaseModel):
    valid: bool
    scope: Scope
    reason: str
    previous_scope: Optional[Scope] = None
    intent_consumed: bool = False
    command: Optional[NavigationCommand] = None


class SetIntentRequest(BaseModel):
    scope: Scope
    target_path: str


class EnterOrganizationRequest(BaseModel):
    path: str = "/app"


class ClassifyResponse(BaseModel):
    path: str
    scope: Scope
    label: str
    route: str
    breadcrumbs: list
