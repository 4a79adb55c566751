"""
auth/exceptions.py -- Error taxonomy for the identity core.

Components raise these; AuthService (auth/service.py) is the boundary that
turns them into AuthResult failures. Each class carries a machine-readable
code and a message that is safe to show to the end user.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional


class IdentityError(Exception):
    code = "INTERNAL_ERROR"
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None) -> None:
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        super().__init__(self.message)


class ValidationError(IdentityError):
    """Bad input shape. field names the offending input when there is one."""

    code = "INVALID_INPUT"
    default_message = "Invalid input"

    def __init__(self, message: Optional[str] = None, field: Optional[str] = None, code: Optional[str] = None) -> None:
        super().__init__(message, code)
        self.field = field


class AuthenticationError(IdentityError):
    """Wrong credentials. The message never says which half was wrong."""

    code = "INVALID_CREDENTIALS"
    default_message = "Invalid credentials"


class AuthorizationError(IdentityError):
    """Blocked, disabled, unverified or insufficient role."""

    code = "FORBIDDEN"
    default_message = "You are not allowed to perform this action"


class RateLimitError(IdentityError):
    code = "RATE_LIMIT"
    default_message = "Too many requests. Try again later."

    def __init__(self, message: Optional[str] = None, retry_after: int = 60, code: Optional[str] = None) -> None:
        super().__init__(message, code)
        self.retry_after = retry_after


class TokenError(IdentityError):
    """Invalid, expired or already-used token -- deliberately undifferentiated."""

    code = "INVALID_TOKEN"
    default_message = "Invalid or expired token"


class StorageError(IdentityError):
    """Record store unavailable or a write failed. Details stay in the log."""


class DependencyError(IdentityError):
    """An outbound collaborator (mail relay) is unavailable."""


class AccountLockedError(AuthorizationError):
    code = "USER_BLOCKED"
    default_message = "Account temporarily locked after too many failed attempts"

    def __init__(self, locked_until: datetime, message: Optional[str] = None) -> None:
        super().__init__(message)
        self.locked_until = locked_until
