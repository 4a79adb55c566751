"""
api/routes/v1/auth.py -- Self-service identity endpoints.

Routes:
  POST /api/v1/auth/register                  -- create account, send verification link
  POST /api/v1/auth/login                     -- password login; sets session cookie
  POST /api/v1/auth/logout                    -- closes the session, clears cookie; always 200
  GET  /api/v1/auth/me                        -- current account (requires auth)
  POST /api/v1/auth/verify-email              -- consume a verification token
  POST /api/v1/auth/resend-verification       -- new verification link (success-shaped)
  POST /api/v1/auth/password-reset/request    -- send reset link (success-shaped)
  POST /api/v1/auth/password-reset/complete   -- consume reset token, set new password
  POST /api/v1/auth/change-password           -- requires auth; closes every session
  POST /api/v1/auth/session/rotate            -- requires auth; new token, old one closed
  GET  /api/v1/auth/sessions                  -- requires auth; live sessions of the caller
  POST /api/v1/auth/password-strength         -- public score + suggestions

Security:
  POST /login is rate-limited to LOGIN_RATE_LIMIT (default 10/minute) per IP
  on top of the per-account lockout enforced by the service.
  Cache-Control: no-store on every response that carries a session token.
  The cookie is written only after AuthService.login() has committed the
  session row, so a client never holds a token the store does not know.
  Reset and resend responses are identical for known and unknown emails.

Handlers are plain `def`: AuthService does bcrypt and SQLite work, so FastAPI
runs them in its worker threadpool instead of on the event loop.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AccountResponse,
    AuthResponse,
    EmailRequest,
    LoginRequest,
    MessageResponse,
    PasswordChange,
    PasswordResetComplete,
    PasswordStrengthRequest,
    PasswordStrengthResponse,
    RegisterRequest,
    SessionResponse,
    TokenRequest,
)
from api.results import error_response, raise_for_result
from auth.dependencies import client_context, get_auth_service, get_current_account, session_token_from_request
from auth.models import AccountView, AuthResult
from auth.tokens import clear_session_cookie, set_session_cookie
from core.config import get_settings

# Auth policy:
# - register, login, logout, verify-email, resend-verification,
#   password-reset/*, password-strength:   public
# - me, change-password, session/rotate, sessions:   requires auth (get_current_account)
router = APIRouter()


def _login_limit() -> str:
    return get_settings().login_rate_limit


def _session_response(result: AuthResult) -> JSONResponse:
    """200 with the session cookie set from result.data["max_age"]."""
    settings = get_settings()
    body = AuthResponse(
        message=result.message,
        account=AccountResponse.from_view(result.account) if result.account else None,
        session_token=result.session_token,
        expires_at=result.data.get("expires_at"),
    )
    resp = JSONResponse(status_code=200, content=body.model_dump(mode="json"))
    set_session_cookie(
        resp,
        result.session_token,
        max_age=result.data["max_age"],
        cookie_name=settings.session_cookie_name,
        secure=settings.secure_cookies,
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _signed_out(message: str, data: dict | None = None) -> JSONResponse:
    settings = get_settings()
    resp = JSONResponse(content=MessageResponse(message=message, data=data or {}).model_dump())
    clear_session_cookie(resp, settings.session_cookie_name, settings.secure_cookies)
    return resp


# ---------------------------------------------------------------------------
# Registration and verification
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> AuthResponse:
    """Create a Trial/Personal/Empresa account. Administrator is refused here."""
    result = get_auth_service(request).register(
        body.email,
        body.password,
        body.given_name,
        body.family_name,
        company=body.company,
        phone=body.phone,
        role=body.role.value if body.role else None,
        client=client_context(request),
    )
    raise_for_result(result)
    return AuthResponse(
        message=result.message,
        account=AccountResponse.from_view(result.account) if result.account else None,
        data=result.data,
    )


@router.post("/auth/verify-email", response_model=AuthResponse)
def verify_email(request: Request, body: TokenRequest) -> AuthResponse:
    result = raise_for_result(get_auth_service(request).verify_email(body.token, client_context(request)))
    return AuthResponse(
        message=result.message,
        account=AccountResponse.from_view(result.account) if result.account else None,
    )


@router.post("/auth/resend-verification", response_model=MessageResponse)
def resend_verification(request: Request, body: EmailRequest) -> MessageResponse:
    result = raise_for_result(get_auth_service(request).resend_verification(body.email, client_context(request)))
    return MessageResponse(message=result.message)


# ---------------------------------------------------------------------------
# Login / logout / sessions
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(_login_limit)  # brute-force mitigation; must sit BELOW @router so the registered endpoint is the wrapper
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie.

    Unknown email and wrong password both return INVALID_CREDENTIALS with the
    same message. Locked (423), disabled and unverified (403) are reported
    distinctly because they are not secrets.
    """
    result = get_auth_service(request).login(
        body.email, body.password, remember_me=body.remember_me, client=client_context(request)
    )
    if not result.success:
        resp = error_response(result)
        resp.headers["Cache-Control"] = "no-store"
        return resp
    return _session_response(result)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Close the presented session (if any) and clear the cookie."""
    result = get_auth_service(request).logout(session_token_from_request(request), client_context(request))
    return _signed_out(result.message)


@router.get("/auth/me", response_model=AccountResponse)
def me(account: AccountView = Depends(get_current_account)) -> AccountResponse:
    return AccountResponse.from_view(account)


@router.post("/auth/session/rotate", response_model=AuthResponse)
def rotate_session(request: Request, account: AccountView = Depends(get_current_account)) -> JSONResponse:
    """Swap the current token for a fresh one; the old token stops working."""
    result = get_auth_service(request).rotate_session(session_token_from_request(request), client_context(request))
    if not result.success:
        return error_response(result)
    return _session_response(result)


@router.get("/auth/sessions", response_model=list[SessionResponse])
def list_sessions(request: Request, account: AccountView = Depends(get_current_account)) -> list[SessionResponse]:
    """Live sessions of the caller. Token digests are never returned."""
    return [SessionResponse.from_session(s) for s in get_auth_service(request).active_sessions(account.email)]


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


@router.post("/auth/password-reset/request", response_model=MessageResponse)
def request_password_reset(request: Request, body: EmailRequest) -> MessageResponse:
    result = raise_for_result(get_auth_service(request).request_password_reset(body.email, client_context(request)))
    return MessageResponse(message=result.message)


@router.post("/auth/password-reset/complete", response_model=MessageResponse)
def complete_password_reset(request: Request, body: PasswordResetComplete) -> JSONResponse:
    """Set a new password from a reset token. Every session of the account is closed."""
    result = raise_for_result(
        get_auth_service(request).complete_password_reset(body.token, body.new_password, client_context(request))
    )
    return _signed_out(result.message, result.data)


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: PasswordChange,
    account: AccountView = Depends(get_current_account),
) -> JSONResponse:
    """Change the caller's password. Closes every session, including this one."""
    result = raise_for_result(
        get_auth_service(request).change_password(
            account.email, body.current_password, body.new_password, client_context(request)
        )
    )
    return _signed_out(result.message, result.data)


@router.post("/auth/password-strength", response_model=PasswordStrengthResponse)
def password_strength(request: Request, body: PasswordStrengthRequest) -> PasswordStrengthResponse:
    return PasswordStrengthResponse(**get_auth_service(request).password_strength(body.password))
