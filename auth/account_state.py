"""
auth/account_state.py -- Account State Manager: lifecycle fields and admin views.

Owns the mutable lifecycle columns of an account (active, lockout counters,
connected) and derives the read-side views used by administrative tooling:
filtered listings, system-health alerts, aggregate statistics, per-day
activity and exports.

Disabling an account is a compensating transaction. The active flag, the
closing of every session and the audit entry commit together or not at all.

Export security: CSV cells that start with a formula trigger (=, +, -, @)
are prefixed with a tab so spreadsheet applications read them as text
(CWE-1236).

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from collections import defaultdict
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.engine import Connection

from auth.exceptions import AuthorizationError, IdentityError, ValidationError
from auth.models import AccessLogEntry, AccountView, Alert, ClientContext, Role
from auth.sessions import SessionAuthority
from auth.store import ACCOUNT_STATES, IdentityStore
from auth.token_service import TokenService
from core.config import utc_now

logger = logging.getLogger("identity.accounts")

EXPORT_FIELDS = (
    "email",
    "given_name",
    "family_name",
    "company",
    "phone",
    "role",
    "active",
    "email_verified",
    "connected",
    "failed_attempts",
    "locked_until",
    "last_login",
    "last_activity",
    "created_at",
    "login_count",
    "total_minutes",
    "longest_minutes",
    "average_minutes",
)

_FORMULA_PREFIXES = ("=", "+", "-", "@")

ACTIVITY_ACTIONS = ["login", "register_success", "logout"]


def _sanitize_csv_cell(value) -> str:
    if value is None:
        return ""
    text = value.value if isinstance(value, Role) else str(value)
    if text.startswith(_FORMULA_PREFIXES):
        return "\t" + text
    return text


def _export_row(view: AccountView) -> dict:
    row = asdict(view)
    out = {}
    for name in EXPORT_FIELDS:
        value = row[name]
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Role):
            value = value.value
        out[name] = value
    return out


class AccountStateManager:
    def __init__(
        self,
        store: IdentityStore,
        sessions: SessionAuthority,
        tokens: TokenService,
        max_login_attempts: int = 5,
        lockout_duration: int = 900,
        failed_login_alert_threshold: int = 10,
        long_session_alert_hours: int = 12,
        unverified_alert_hours: int = 24,
        access_log_retention_days: int = 180,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self.tokens = tokens
        self.max_login_attempts = max_login_attempts
        self.lockout_duration = lockout_duration
        self.failed_login_alert_threshold = failed_login_alert_threshold
        self.long_session_alert_hours = long_session_alert_hours
        self.unverified_alert_hours = unverified_alert_hours
        self.access_log_retention_days = access_log_retention_days
        self._clock = clock

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def audit(
        self,
        email: str,
        action: str,
        success: bool = True,
        client: Optional[ClientContext] = None,
        detail: Optional[str] = None,
        conn: Optional[Connection] = None,
    ) -> None:
        client = client or ClientContext()
        entry = AccessLogEntry(
            email=email,
            action=action,
            success=success,
            address=client.address,
            device=client.device,
            detail=detail,
        )
        self.store.append_log(entry, self._clock(), conn=conn)

    # ------------------------------------------------------------------
    # Lockout and connection state
    # ------------------------------------------------------------------

    def record_failed_login(
        self, email: str, client: Optional[ClientContext] = None, conn: Optional[Connection] = None
    ) -> tuple[int, Optional[datetime]]:
        """Count one wrong password. Returns (attempts, locked_until).

        Reaching the threshold also writes an account_locked audit entry.
        """
        lock_until = self._clock() + timedelta(seconds=self.lockout_duration)
        with self.store.transaction(conn) as c:
            attempts, locked_until = self.store.record_failed_attempt(
                email, self.max_login_attempts, lock_until, conn=c
            )
            if attempts >= self.max_login_attempts:
                self.audit(
                    email,
                    "account_locked",
                    success=False,
                    client=client,
                    detail=f"{attempts} failed attempts; locked until {locked_until.isoformat()}",
                    conn=c,
                )
        if attempts >= self.max_login_attempts:
            logger.warning("Account %s locked until %s after %d failed attempts", email, locked_until, attempts)
        else:
            logger.warning("Failed login for %s (%d/%d)", email, attempts, self.max_login_attempts)
        return attempts, locked_until

    def record_successful_login(self, email: str, conn: Optional[Connection] = None) -> None:
        self.store.mark_logged_in(email, self._clock(), conn=conn)

    def clear_lockout(self, email: str, conn: Optional[Connection] = None) -> None:
        self.store.clear_lockout(email, conn=conn)

    # ------------------------------------------------------------------
    # Administrative writes
    # ------------------------------------------------------------------

    def set_active(
        self,
        email: str,
        active: bool,
        acting_admin: str,
        client: Optional[ClientContext] = None,
        conn: Optional[Connection] = None,
    ) -> int:
        """Enable or disable an account. Returns the number of sessions closed.

        Disabling closes every session of the account in the same transaction
        as the flag change and the audit entry.
        """
        if not active and email == acting_admin:
            raise AuthorizationError("You cannot disable your own account", code="CANNOT_DISABLE_SELF")
        with self.store.transaction(conn) as c:
            if not self.store.update_account(email, conn=c, active=active):
                raise IdentityError("Account not found", code="NOT_FOUND")
            closed = 0 if active else self.sessions.destroy_all(email, conn=c)
            self.audit(
                email,
                "account_enabled" if active else "account_disabled",
                client=client,
                detail=f"by {acting_admin}; sessions closed: {closed}",
                conn=c,
            )
        logger.info("Account %s %s by %s", email, "enabled" if active else "disabled", acting_admin)
        return closed

    def set_role(
        self,
        email: str,
        role: Role,
        acting_admin: str,
        client: Optional[ClientContext] = None,
        conn: Optional[Connection] = None,
    ) -> None:
        if email == acting_admin and role != Role.ADMINISTRATOR:
            raise AuthorizationError("You cannot demote your own account", code="FORBIDDEN")
        with self.store.transaction(conn) as c:
            if not self.store.update_account(email, conn=c, role=role):
                raise IdentityError("Account not found", code="NOT_FOUND")
            self.audit(email, "role_changed", client=client, detail=f"{role.value} by {acting_admin}", conn=c)
        logger.info("Role of %s set to %s by %s", email, role.value, acting_admin)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def get_accounts_status(
        self,
        state: Optional[str] = None,
        role: Optional[Role] = None,
        company: Optional[str] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        order: str = "created_desc",
        limit: Optional[int] = None,
    ) -> list[AccountView]:
        if state is not None and state not in ACCOUNT_STATES:
            raise ValidationError(f"Unknown state filter: {state}", field="state")
        try:
            return self.store.list_accounts(
                self._clock(),
                state=state,
                role=role,
                company=company,
                created_from=created_from,
                created_to=created_to,
                order=order,
                limit=limit,
            )
        except ValueError as exc:
            raise ValidationError(str(exc), field="order") from exc

    def online_accounts(self) -> list[AccountView]:
        return self.store.list_accounts(self._clock(), state="connected", order="last_login")

    def accounts_by_connection_time(self, descending: bool = True, limit: int = 10) -> list[AccountView]:
        views = self.store.list_accounts(self._clock(), order="connection_time")
        if not descending:
            views.reverse()
        return views[:limit]

    def account_logs(self, email: str, limit: int = 50, action: Optional[str] = None) -> list[AccessLogEntry]:
        return self.store.list_logs(email=email, action=action, limit=limit)

    def system_alerts(self) -> list[Alert]:
        """Health checks for the admin console. An empty list means all clear."""
        now = self._clock()
        alerts: list[Alert] = []

        locked = self.store.count_locked(now)
        if locked > 0:
            alerts.append(Alert("warning", "Locked accounts", f"{locked} account(s) are currently locked", locked))

        failed = self.store.count_logs("login", now - timedelta(hours=1), success=False)
        if failed > self.failed_login_alert_threshold:
            alerts.append(
                Alert("error", "Failed login spike", f"{failed} failed login attempts in the last hour", failed)
            )

        unverified = self.store.count_unverified_before(now - timedelta(hours=self.unverified_alert_hours))
        if unverified > 0:
            alerts.append(
                Alert(
                    "info",
                    "Unverified accounts",
                    f"{unverified} account(s) unverified for more than {self.unverified_alert_hours}h",
                    unverified,
                )
            )

        long_running = self.store.session_counts(now, now - timedelta(hours=self.long_session_alert_hours))[
            "long_running"
        ]
        if long_running > 0:
            alerts.append(
                Alert(
                    "warning",
                    "Long sessions",
                    f"{long_running} session(s) open for more than {self.long_session_alert_hours}h",
                    long_running,
                )
            )
        return alerts

    def general_stats(self) -> dict:
        now = self._clock()
        since = now - timedelta(hours=24)
        counts = self.store.account_counts(now, since)
        sessions = self.store.session_counts(now, now - timedelta(hours=self.long_session_alert_hours))
        return {
            "accounts": counts,
            "sessions": sessions,
            "logins_last_24h": self.store.count_logs("login", since, success=True),
            "failed_logins_last_24h": self.store.count_logs("login", since, success=False),
            "generated_at": now.isoformat(),
        }

    def activity_stats(self, days: int = 7) -> list[dict]:
        """One row per day with login outcomes, registrations, logouts and unique accounts."""
        since = self._clock() - timedelta(days=days)
        per_day: dict[str, dict] = defaultdict(
            lambda: {"logins_ok": 0, "logins_failed": 0, "registrations": 0, "logouts": 0, "unique_accounts": 0}
        )
        for row in self.store.activity_by_day(since, ACTIVITY_ACTIONS):
            bucket = per_day[row["day"]]
            if row["action"] == "login":
                if row["success"]:
                    bucket["logins_ok"] += row["count"]
                    bucket["unique_accounts"] = row["accounts"]
                else:
                    bucket["logins_failed"] += row["count"]
            elif row["action"] == "register_success":
                bucket["registrations"] += row["count"]
            elif row["action"] == "logout":
                bucket["logouts"] += row["count"]
        return [{"date": day, **values} for day, values in sorted(per_day.items())]

    def export_accounts(self, fmt: str = "json", **filters) -> str:
        views = self.get_accounts_status(**filters)
        rows = [_export_row(v) for v in views]
        if fmt == "json":
            return json.dumps(rows, indent=2)
        if fmt == "csv":
            buf = io.StringIO()
            writer = csv.writer(buf)
            writer.writerow(EXPORT_FIELDS)
            for row in rows:
                writer.writerow([_sanitize_csv_cell(row[name]) for name in EXPORT_FIELDS])
            return buf.getvalue()
        raise ValidationError(f"Unsupported export format: {fmt}", field="format")

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def perform_maintenance(self) -> dict:
        """Idempotent housekeeping; safe to run alongside live traffic.

        Each step commits on its own so one failing step does not undo the
        others.
        """
        now = self._clock()
        report = {
            "expired_sessions": self.sessions.sweep_expired(),
            "expired_tokens": self.tokens.purge_expired(),
            "old_log_entries": self.store.delete_logs_before(now - timedelta(days=self.access_log_retention_days)),
            "disconnected_accounts": self.store.disconnect_idle_accounts(now),
        }
        logger.info("Maintenance finished: %s", report)
        return report
