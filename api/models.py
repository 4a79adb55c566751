"""
API request and response models for the identity REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models only check shape (types, lengths). The real credential rules
(email syntax, password policy, name characters) live in auth/validator.py so
that the CLI and the HTTP surface enforce exactly the same policy.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import AccessLogEntry, AccountView, Alert, Session

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    trial = "Trial"
    personal = "Personal"
    empresa = "Empresa"
    administrator = "Administrator"


class AccountStateEnum(str, Enum):
    active = "active"
    disabled = "disabled"
    locked = "locked"
    unverified = "unverified"
    connected = "connected"


class OrderEnum(str, Enum):
    created_desc = "created_desc"
    created_asc = "created_asc"
    email = "email"
    last_login = "last_login"
    connection_time = "connection_time"


class ExportFormatEnum(str, Enum):
    json = "json"
    csv = "csv"


# ---------------------------------------------------------------------------
# Request models -- self-service
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=254)
    password: str = Field(max_length=128)
    given_name: str = Field(max_length=100)
    family_name: str = Field(max_length=100)
    company: Optional[str] = Field(default=None, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=32)
    role: Optional[RoleEnum] = None


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(max_length=254)
    password: str = Field(max_length=128)
    remember_me: bool = False


class TokenRequest(BaseModel):
    """Request body for POST /api/v1/auth/verify-email."""

    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(max_length=128)


class EmailRequest(BaseModel):
    """Request body for resend-verification and password-reset/request."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=254)


class PasswordResetComplete(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(max_length=128)
    new_password: str = Field(max_length=128)


class PasswordChange(BaseModel):
    current_password: str = Field(max_length=128)
    new_password: str = Field(max_length=128)


class PasswordStrengthRequest(BaseModel):
    password: str = Field(max_length=128)


# ---------------------------------------------------------------------------
# Request models -- administration
# ---------------------------------------------------------------------------


class StatusUpdate(BaseModel):
    """Request body for PATCH /api/v1/admin/accounts/{email}/status."""

    active: bool


class RoleUpdate(BaseModel):
    role: RoleEnum


class BulkStatusRequest(BaseModel):
    """Request body for POST /api/v1/admin/accounts/bulk. Max 50 per request."""

    model_config = ConfigDict(str_strip_whitespace=True)

    emails: list[str] = Field(min_length=1, max_length=50)
    active: bool


class NotifyRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=254)
    subject: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=5000)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public view of an account. The password hash never leaves auth/."""

    model_config = ConfigDict(frozen=True)

    email: str
    given_name: str
    family_name: str
    role: str
    company: Optional[str] = None
    phone: Optional[str] = None
    active: bool
    email_verified: bool
    connected: bool
    locked: bool = False
    locked_until: Optional[datetime] = None
    last_login: Optional[datetime] = None
    last_activity: Optional[datetime] = None
    created_at: Optional[datetime] = None
    login_count: int = 0
    total_minutes: int = 0
    longest_minutes: int = 0
    average_minutes: int = 0
    idle_minutes: Optional[int] = None

    @classmethod
    def from_view(cls, view: AccountView, now: Optional[datetime] = None) -> "AccountResponse":
        return cls(
            email=view.email,
            given_name=view.given_name,
            family_name=view.family_name,
            role=view.role.value,
            company=view.company,
            phone=view.phone,
            active=view.active,
            email_verified=view.email_verified,
            connected=view.connected,
            locked=view.is_locked(now) if now is not None else view.locked_until is not None,
            locked_until=view.locked_until,
            last_login=view.last_login,
            last_activity=view.last_activity,
            created_at=view.created_at,
            login_count=view.login_count,
            total_minutes=view.total_minutes,
            longest_minutes=view.longest_minutes,
            average_minutes=view.average_minutes,
            idle_minutes=view.idle_minutes,
        )


class MessageResponse(BaseModel):
    """Generic success envelope: a human-readable message plus optional data."""

    model_config = ConfigDict(frozen=True)

    message: str
    data: dict = Field(default_factory=dict)


class AuthResponse(BaseModel):
    """Response for register, login, verify-email and rotate.

    The raw session token travels only in the httpOnly cookie; API clients
    that cannot use cookies read it from session_token on login and rotate.
    """

    model_config = ConfigDict(frozen=True)

    message: str
    account: Optional[AccountResponse] = None
    session_token: Optional[str] = None
    expires_at: Optional[str] = None
    data: dict = Field(default_factory=dict)


class SessionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str
    device: str
    created_at: datetime
    expires_at: datetime

    @classmethod
    def from_session(cls, session: Session) -> "SessionResponse":
        return cls(
            address=session.address,
            device=session.device,
            created_at=session.created_at,
            expires_at=session.expires_at,
        )


class PasswordStrengthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int
    suggestions: list[str]


class AlertResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: str
    title: str
    message: str
    count: int

    @classmethod
    def from_alert(cls, alert: Alert) -> "AlertResponse":
        return cls(level=alert.level, title=alert.title, message=alert.message, count=alert.count)


class AccessLogResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: str
    success: bool
    address: str
    device: str
    detail: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_entry(cls, entry: AccessLogEntry) -> "AccessLogResponse":
        return cls(
            action=entry.action,
            success=entry.success,
            address=entry.address,
            device=entry.device,
            detail=entry.detail,
            created_at=entry.created_at,
        )


class AccountDetailResponse(BaseModel):
    """GET /admin/accounts/{email}: the account, its recent log and its live sessions."""

    model_config = ConfigDict(frozen=True)

    account: AccountResponse
    recent_logs: list[AccessLogResponse]
    active_sessions: list[SessionResponse]
    session_count: int


class ActivityRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: str
    logins_ok: int
    logins_failed: int
    registrations: int
    logouts: int
    unique_accounts: int


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"
