"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two credential carriers are checked in priority order:
  1. Session cookie (Settings.session_cookie_name) -- set by POST /auth/login.
  2. Authorization: Bearer <token> header -- API clients that cannot keep
     cookies send the same opaque session token here.

Both converge on SessionAuthority.verify() through AuthService.verify_session,
which also slides the expiry and enforces the address binding. The request's
ClientContext (peer address + User-Agent) is built once here so every route
hands the same device signature to the service.

try_get_current_account() is the soft variant (returns None on failure).
get_current_account() wraps it and raises HTTP 401 if unauthenticated.
require_role() builds a dependency that raises HTTP 403 below a minimum role;
require_admin is the Administrator instance of it.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from typing import Callable

from fastapi import HTTPException, Request

from auth.models import AccountView, ClientContext, Role, role_at_least
from auth.service import AuthService
from core.config import get_settings

_MAX_DEVICE_LENGTH = 255


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth


def client_context(request: Request) -> ClientContext:
    """Peer address and device signature of the current request."""
    address = request.client.host if request.client else "unknown"
    device = request.headers.get("User-Agent", "")[:_MAX_DEVICE_LENGTH] or "unknown"
    return ClientContext(address=address, device=device)


def session_token_from_request(request: Request) -> str | None:
    token = request.cookies.get(get_settings().session_cookie_name)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


def try_get_current_account(request: Request) -> AccountView | None:
    """Authenticate the request via cookie or Bearer header.

    Returns the AccountView on success, None on any failure. Never raises --
    callers that need a hard 401 should use get_current_account().
    """
    token = session_token_from_request(request)
    if not token:
        return None
    return get_auth_service(request).verify_session(token, client_context(request))


def get_current_account(request: Request) -> AccountView:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(account: AccountView = Depends(get_current_account)): ...
    """
    account = try_get_current_account(request)
    if account is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "UNAUTHORIZED", "message": "Authentication required."},
        )
    return account


def require_role(minimum: Role) -> Callable[[Request], AccountView]:
    """Build a dependency that requires at least `minimum` in the role order."""

    def dependency(request: Request) -> AccountView:
        account = get_current_account(request)
        if not role_at_least(account.role, minimum):
            raise HTTPException(
                status_code=403,
                detail={"code": "FORBIDDEN", "message": f"{minimum.value} role required."},
            )
        return account

    return dependency


require_admin = require_role(Role.ADMINISTRATOR)
