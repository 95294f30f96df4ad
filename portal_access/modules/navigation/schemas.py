from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from portal_access.modules.guards.schemas import GuardAction
from portal_access.modules.scopes.schemas import Scope


class NavigationRequest(BaseModel):
    path: str = Field(..., min_length=1)
    org_id: Optional[str] = None


class NavigationDecision(BaseModel):
    action: GuardAction
    path: str
    scope: Scope
    location: Optional[str] = None
    reason: Optional[str] = None
    return_to: Optional[str] = None
    replace: bool = False
    reset_scroll: bool = False
    breadcrumbs: List[Dict[str, str]] = Field(default_factory=list)
