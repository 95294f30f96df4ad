"""
Access-control exception hierarchy.

Ordinary denials are return values, never exceptions. These types cover
malformed input and collaborator failures, which callers classify as deny.
"""

from typing import Any, Dict, Optional


class AccessControlError(Exception):
    """
    Base exception for access-control failures.

    Attributes:
        message: Human-readable error description
        code: Optional error code for programmatic handling
        details: Optional dict with additional context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


class UnknownPermissionError(AccessControlError):
    """Permission key is not part of the module capability matrix."""

    def __init__(self, key: str):
        super().__init__(f"Unknown permission key: {key!r}", code="unknown_permission", details={"key": key})
        self.key = key


class AccessDataError(AccessControlError):
    """A query or RPC backing an access decision failed or returned garbage."""

    def __init__(self, message: str, source: Optional[str] = None, **kwargs):
        super().__init__(message, code=kwargs.pop("code", "data_error"), **kwargs)
        self.source = source


class AuthenticationError(AccessControlError):
    """Credentials were rejected or the session token is no longer valid."""

    def __init__(self, message: str = "Invalid or expired session", **kwargs):
        super().__init__(message, code=kwargs.pop("code", "unauthenticated"), **kwargs)
