"""
auth/models.py -- Domain dataclasses for identity entities.

Pattern: Data class (pure data containers, almost no logic). Dataclasses own
the domain shape; auth/store.py maps rows into them and the components do
the work.

AccountView is the single read model handed to callers (session verification,
admin listings, exports). Its field names are fixed; nothing outside the
store's row mappers ever looks at raw row keys.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Role(str, Enum):
    """Account tier. Declaration order is the privilege order."""

    TRIAL = "Trial"
    PERSONAL = "Personal"
    EMPRESA = "Empresa"
    ADMINISTRATOR = "Administrator"


_ROLE_RANK: dict[Role, int] = {role: rank for rank, role in enumerate(Role)}

DEFAULT_ROLE = Role.TRIAL


def role_at_least(role: Role | str, minimum: Role) -> bool:
    """Return True if role is minimum or above it in the hierarchy.

    Every role gate in the code base goes through this function. Unknown role
    strings rank below everything.
    """
    parsed = parse_role(role)
    if parsed is None:
        return False
    return _ROLE_RANK[parsed] >= _ROLE_RANK[minimum]


def parse_role(value: Role | str | None) -> Optional[Role]:
    """Return the Role for value, or None if it is not a known role name."""
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        return None


class TokenType(str, Enum):
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


class SessionState(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CLOSED = "closed"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class Account:
    """A registered identity. email is lower-cased and is the primary key.

    locked_until is only set while failed_attempts >= the lockout threshold;
    a successful login or password reset clears both.
    """

    email: str
    password_hash: str
    given_name: str
    family_name: str
    role: Role = DEFAULT_ROLE
    company: Optional[str] = None
    phone: Optional[str] = None
    active: bool = True
    email_verified: bool = False
    failed_attempts: int = 0
    locked_until: Optional[datetime] = None
    connected: bool = False
    last_activity: Optional[datetime] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now


@dataclass
class Session:
    """One authenticated browser/device context.

    token_hash is HMAC-SHA256 of the opaque client token; the raw token is
    never persisted.
    """

    token_hash: str
    email: str
    address: str
    device: str
    created_at: datetime
    expires_at: datetime
    active: bool = True
    ended_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None

    def state(self, now: datetime) -> SessionState:
        if not self.active:
            return SessionState.CLOSED
        if self.expires_at <= now:
            return SessionState.EXPIRED
        return SessionState.ACTIVE


@dataclass
class OneTimeToken:
    """Single-use proof of mailbox ownership. Valid iff not used and not expired."""

    token_hash: str
    email: str
    token_type: TokenType
    expires_at: datetime
    used: bool = False
    created_at: Optional[datetime] = None


@dataclass
class AccessLogEntry:
    """Append-only audit record."""

    email: str
    action: str
    success: bool = True
    address: str = "unknown"
    device: str = "unknown"
    detail: Optional[str] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None


@dataclass
class AccountStats:
    """Denormalised per-account aggregate, maintained incrementally."""

    email: str
    login_count: int = 0
    total_minutes: int = 0
    longest_minutes: int = 0
    average_minutes: int = 0
    updated_at: Optional[datetime] = None


@dataclass
class AccountView:
    """Canonical read model of an account joined with its statistics."""

    email: str
    given_name: str
    family_name: str
    role: Role
    company: Optional[str] = None
    phone: Optional[str] = None
    active: bool = True
    email_verified: bool = False
    connected: bool = False
    failed_attempts: int = 0
    locked_until: Optional[datetime] = None
    last_login: Optional[datetime] = None
    last_activity: Optional[datetime] = None
    created_at: Optional[datetime] = None
    login_count: int = 0
    total_minutes: int = 0
    longest_minutes: int = 0
    average_minutes: int = 0
    idle_minutes: Optional[int] = None

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now


@dataclass
class Alert:
    """One system-health alert for the admin console."""

    level: str  # "info", "warning", "error"
    title: str
    message: str
    count: int = 0


@dataclass
class ClientContext:
    """Originating address and device signature of the current request."""

    address: str = "unknown"
    device: str = "unknown"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class AuthResult:
    """Structured outcome of every orchestrator operation.

    code is machine-readable (e.g. "USER_BLOCKED"); message is human-readable.
    Failures never carry storage details.
    """

    success: bool
    message: str
    code: Optional[str] = None
    session_token: Optional[str] = None
    account: Optional[AccountView] = None
    retry_after: Optional[int] = None
    locked_until: Optional[datetime] = None
    field: Optional[str] = None
    data: dict[str, Any] = dataclasses.field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, **kwargs: Any) -> "AuthResult":
        return cls(success=True, message=message, **kwargs)

    @classmethod
    def fail(cls, code: str, message: str, **kwargs: Any) -> "AuthResult":
        return cls(success=False, message=message, code=code, **kwargs)


@dataclass
class RateLimitDecision:
    allowed: bool
    retry_after: int = 0


@dataclass
class IssuedSession:
    """A freshly created session. token is the raw value for the client."""

    token: str
    email: str
    expires_at: datetime
    max_age: int
