"""
api/results.py -- Map AuthResult failures onto HTTP errors.

AuthService never raises; it returns AuthResult with a machine-readable code.
Route handlers either call raise_for_result() and let the HTTPException
handler in api/main.py render the standard {"error": {...}} envelope, or build
the envelope directly with error_response() when they must attach extra
headers (Cache-Control on login). The code is passed through unchanged so API
clients switch on the same values the CLI prints.
"""

from __future__ import annotations

from fastapi import HTTPException
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse
from auth.models import AuthResult

STATUS_BY_CODE: dict[str, int] = {
    "INVALID_INPUT": 400,
    "INVALID_TOKEN": 400,
    "SAME_PASSWORD": 400,
    "BULK_LIMIT_EXCEEDED": 400,
    "CANNOT_DISABLE_SELF": 400,
    "INVALID_CURRENT_PASSWORD": 400,
    "INVALID_CREDENTIALS": 401,
    "ACCOUNT_DISABLED": 403,
    "EMAIL_NOT_VERIFIED": 403,
    "FORBIDDEN": 403,
    "NOT_FOUND": 404,
    "EMAIL_EXISTS": 409,
    "ALREADY_VERIFIED": 409,
    "USER_BLOCKED": 423,
    "RATE_LIMIT": 429,
    "INTERNAL_ERROR": 500,
}


def status_for(code: str | None) -> int:
    return STATUS_BY_CODE.get(code or "", 400)


def _error_parts(result: AuthResult) -> tuple[ErrorDetail, dict[str, str]]:
    detail: str | None = result.field
    if result.locked_until is not None:
        detail = result.locked_until.isoformat()
    headers: dict[str, str] = {}
    if result.retry_after:
        headers["Retry-After"] = str(result.retry_after)
    return ErrorDetail(code=result.code or "ERROR", message=result.message, detail=detail), headers


def raise_for_result(result: AuthResult) -> AuthResult:
    """Return result unchanged on success, else raise the matching HTTPException."""
    if result.success:
        return result
    error, headers = _error_parts(result)
    raise HTTPException(status_code=status_for(result.code), detail=error.model_dump(), headers=headers or None)


def error_response(result: AuthResult) -> JSONResponse:
    error, headers = _error_parts(result)
    return JSONResponse(
        status_code=status_for(result.code),
        content=ErrorResponse(error=error).model_dump(),
        headers=headers or None,
    )
