"""
api/routes/v1/admin.py -- Administrative endpoints (Administrator role only).

Routes:
  GET   /api/v1/admin/accounts                 -- filtered listing (state, role, company, created range, order)
  GET   /api/v1/admin/accounts/{email}         -- one account with its recent log and live sessions
  PATCH /api/v1/admin/accounts/{email}/status  -- enable / disable; disabling closes every session
  PATCH /api/v1/admin/accounts/{email}/role    -- change role
  POST  /api/v1/admin/accounts/bulk            -- enable / disable up to 50 accounts
  GET   /api/v1/admin/accounts/{email}/logs    -- access log of one account
  GET   /api/v1/admin/alerts                   -- system-health alerts
  GET   /api/v1/admin/stats                    -- aggregate counts
  GET   /api/v1/admin/online                   -- connected accounts
  GET   /api/v1/admin/activity                 -- per-day login/registration activity
  GET   /api/v1/admin/export                   -- JSON or CSV export (formula-safe CSV)
  POST  /api/v1/admin/maintenance              -- run housekeeping now
  POST  /api/v1/admin/notify                   -- send a message to one account

Every route depends on require_admin, and every write goes through an
AuthService method that re-checks the acting account's role against the
store, so a role change takes effect on the very next request.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response

from api.models import (
    AccessLogResponse,
    AccountDetailResponse,
    AccountResponse,
    AccountStateEnum,
    ActivityRow,
    AlertResponse,
    BulkStatusRequest,
    ExportFormatEnum,
    MessageResponse,
    NotifyRequest,
    OrderEnum,
    RoleEnum,
    RoleUpdate,
    SessionResponse,
    StatusUpdate,
)
from api.results import raise_for_result
from auth.dependencies import client_context, get_auth_service, require_admin
from auth.models import AccountView, Role

router = APIRouter()

_EXPORT_MEDIA_TYPES = {
    ExportFormatEnum.json: "application/json",
    ExportFormatEnum.csv: "text/csv; charset=utf-8",
}


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _filters(
    state: Optional[AccountStateEnum],
    role: Optional[RoleEnum],
    company: Optional[str],
    created_from: Optional[datetime],
    created_to: Optional[datetime],
    order: OrderEnum,
) -> dict:
    return {
        "state": state.value if state else None,
        "role": Role(role.value) if role else None,
        "company": company or None,
        "created_from": _as_utc(created_from),
        "created_to": _as_utc(created_to),
        "order": order.value,
    }


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@router.get("/admin/accounts", response_model=list[AccountResponse])
def list_accounts(
    request: Request,
    state: Optional[AccountStateEnum] = None,
    role: Optional[RoleEnum] = None,
    company: Optional[str] = Query(default=None, max_length=200),
    created_from: Optional[datetime] = None,
    created_to: Optional[datetime] = None,
    order: OrderEnum = OrderEnum.created_desc,
    limit: int = Query(default=100, ge=1, le=1000),
    admin: AccountView = Depends(require_admin),
) -> list[AccountResponse]:
    service = get_auth_service(request)
    views = service.get_accounts_status(
        limit=limit, **_filters(state, role, company, created_from, created_to, order)
    )
    now = service.now()
    return [AccountResponse.from_view(v, now) for v in views]


@router.get("/admin/accounts/{email}", response_model=AccountDetailResponse)
def account_detail(request: Request, email: str, admin: AccountView = Depends(require_admin)) -> AccountDetailResponse:
    service = get_auth_service(request)
    result = raise_for_result(service.account_detail(email, admin.email))
    return AccountDetailResponse(
        account=AccountResponse.from_view(result.account, service.now()),
        recent_logs=[AccessLogResponse.from_entry(e) for e in result.data["recent_logs"]],
        active_sessions=[SessionResponse.from_session(s) for s in result.data["active_sessions"]],
        session_count=result.data["session_count"],
    )


@router.patch("/admin/accounts/{email}/status", response_model=MessageResponse)
def set_account_status(
    request: Request,
    email: str,
    body: StatusUpdate,
    admin: AccountView = Depends(require_admin),
) -> MessageResponse:
    """Enable or disable an account. Disabling your own account is refused."""
    result = raise_for_result(
        get_auth_service(request).toggle_account_status(email, body.active, admin.email, client_context(request))
    )
    return MessageResponse(message=result.message, data=result.data)


@router.patch("/admin/accounts/{email}/role", response_model=AccountResponse)
def set_account_role(
    request: Request,
    email: str,
    body: RoleUpdate,
    admin: AccountView = Depends(require_admin),
) -> AccountResponse:
    result = raise_for_result(
        get_auth_service(request).set_role(email, body.role.value, admin.email, client_context(request))
    )
    return AccountResponse.from_view(result.account)


@router.post("/admin/accounts/bulk", response_model=MessageResponse)
def bulk_status(
    request: Request,
    body: BulkStatusRequest,
    admin: AccountView = Depends(require_admin),
) -> MessageResponse:
    """Each account commits on its own; failures are reported per email in data.failed."""
    result = raise_for_result(
        get_auth_service(request).bulk_toggle(body.emails, body.active, admin.email, client_context(request))
    )
    return MessageResponse(message=result.message, data=result.data)


@router.get("/admin/accounts/{email}/logs", response_model=list[AccessLogResponse])
def account_logs(
    request: Request,
    email: str,
    action: Optional[str] = Query(default=None, max_length=50),
    limit: int = Query(default=50, ge=1, le=500),
    admin: AccountView = Depends(require_admin),
) -> list[AccessLogResponse]:
    entries = get_auth_service(request).account_logs(email, limit=limit, action=action)
    return [AccessLogResponse.from_entry(e) for e in entries]


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------


@router.get("/admin/alerts", response_model=list[AlertResponse])
def alerts(request: Request, admin: AccountView = Depends(require_admin)) -> list[AlertResponse]:
    return [AlertResponse.from_alert(a) for a in get_auth_service(request).get_system_alerts()]


@router.get("/admin/stats")
def stats(request: Request, admin: AccountView = Depends(require_admin)) -> dict:
    return get_auth_service(request).general_stats()


@router.get("/admin/online", response_model=list[AccountResponse])
def online(request: Request, admin: AccountView = Depends(require_admin)) -> list[AccountResponse]:
    service = get_auth_service(request)
    now = service.now()
    return [AccountResponse.from_view(v, now) for v in service.online_accounts()]


@router.get("/admin/activity", response_model=list[ActivityRow])
def activity(
    request: Request,
    days: int = Query(default=7, ge=1, le=90),
    admin: AccountView = Depends(require_admin),
) -> list[ActivityRow]:
    return [ActivityRow(**row) for row in get_auth_service(request).activity_stats(days)]


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


@router.get("/admin/export")
def export_accounts(
    request: Request,
    format: ExportFormatEnum = ExportFormatEnum.json,
    state: Optional[AccountStateEnum] = None,
    role: Optional[RoleEnum] = None,
    company: Optional[str] = Query(default=None, max_length=200),
    created_from: Optional[datetime] = None,
    created_to: Optional[datetime] = None,
    order: OrderEnum = OrderEnum.created_desc,
    admin: AccountView = Depends(require_admin),
) -> Response:
    """Download the filtered account listing as an attachment."""
    result = raise_for_result(
        get_auth_service(request).export_accounts(
            format.value,
            admin.email,
            client_context(request),
            **_filters(state, role, company, created_from, created_to, order),
        )
    )
    return Response(
        content=result.data["content"],
        media_type=_EXPORT_MEDIA_TYPES[format],
        headers={
            "Content-Disposition": f'attachment; filename="accounts.{format.value}"',
            "Cache-Control": "no-store",
        },
    )


@router.post("/admin/maintenance", response_model=MessageResponse)
def maintenance(request: Request, admin: AccountView = Depends(require_admin)) -> MessageResponse:
    result = raise_for_result(get_auth_service(request).perform_maintenance(acting_admin=admin.email))
    return MessageResponse(message=result.message, data=result.data)


@router.post("/admin/notify", response_model=MessageResponse)
def notify(request: Request, body: NotifyRequest, admin: AccountView = Depends(require_admin)) -> MessageResponse:
    result = raise_for_result(
        get_auth_service(request).send_notification(
            body.email, body.subject, body.message, admin.email, client_context(request)
        )
    )
    return MessageResponse(message=result.message)
