"""
auth/service.py -- Auth Orchestrator: the public contract of the identity core.

AuthService composes the Credential Validator, Token Service, Rate Limiter,
Session Authority and Account State Manager into the use cases callers see:
register, login, logout, verify-email, password reset, change-password and
the administrative operations.

Error boundary:
  Every public method returns an AuthResult and never raises. Components
  raise auth.exceptions errors; @_boundary converts them to typed failures
  with their machine-readable code. SQLAlchemyError and anything unexpected
  is logged with a stack trace and surfaces as a generic INTERNAL_ERROR, so a
  storage detail never reaches the caller.

Transactions:
  Writes that must be consistent run under one store.transaction() and pass
  its conn to every component call:
    register        account + stats row + first verification token + audit
    login success   lockout reset + connected + login count + session row
    password reset  token burn + new hash + lockout clear + all sessions closed
  The post-login audit entry and every notification are best-effort and run
  after commit.

Login state machine:
  SUBMITTED -> VALIDATED -> ACCOUNT_FOUND -> NOT_LOCKED -> ACTIVE
            -> PASSWORD_OK -> VERIFIED (when required) -> SESSION_ISSUED
  "Unknown email" and "wrong password" share INVALID_CREDENTIALS and the same
  bcrypt cost. Blocked, disabled and unverified are distinguishable.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import functools
import html
import logging
from concurrent.futures import Executor, Future
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.account_state import AccountStateManager
from auth.exceptions import (
    AccountLockedError,
    AuthenticationError,
    AuthorizationError,
    IdentityError,
    DependencyError,
    RateLimitError,
    StorageError,
    TokenError,
    ValidationError,
)
from auth.limiter import RateLimiter
from auth.models import (
    AccessLogEntry,
    Account,
    AccountView,
    Alert,
    AuthResult,
    ClientContext,
    Role,
    Session,
    TokenType,
    role_at_least,
)
from auth.sessions import SessionAuthority
from auth.store import IdentityStore
from auth.token_service import TokenService
from auth.tokens import burn_password_check, hash_password, verify_password
from auth.validator import CredentialValidator, password_strength, password_suggestions, sanitize_email
from core.config import Settings, utc_now
from notify.dispatcher import NotificationDispatcher
from notify.messages import admin_message, password_reset_message, verification_message, welcome_message
from notify.sender import HttpMailSender, LogSender, Notification, NotificationSender

logger = logging.getLogger("identity.service")

MAX_BULK_ACCOUNTS = 50
DETAIL_LOG_LIMIT = 20
_GENERIC_RESET_MESSAGE = "If an account exists for this email, a password reset link has been sent."
_GENERIC_RESEND_MESSAGE = "If an unverified account exists for this email, a new verification link has been sent."


def _boundary(operation: str):
    """Convert everything raised inside a use case into an AuthResult."""

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(self, *args, **kwargs) -> AuthResult:
            try:
                return fn(self, *args, **kwargs)
            except RateLimitError as e:
                return AuthResult.fail(e.code, e.message, retry_after=e.retry_after)
            except AccountLockedError as e:
                return AuthResult.fail(e.code, e.message, locked_until=e.locked_until)
            except ValidationError as e:
                return AuthResult.fail(e.code, e.message, field=e.field)
            except IdentityError as e:
                if e.code == "INTERNAL_ERROR":
                    logger.error("%s failed: %s", operation, e.message)
                    return AuthResult.fail("INTERNAL_ERROR", "Internal server error")
                return AuthResult.fail(e.code, e.message)
            except SQLAlchemyError:
                logger.exception("Storage failure during %s", operation)
                return AuthResult.fail("INTERNAL_ERROR", "Internal server error")
            except Exception:
                logger.exception("Unexpected failure during %s", operation)
                return AuthResult.fail("INTERNAL_ERROR", "Internal server error")

        return wrapper

    return decorator


def _display_name(account: Account | AccountView) -> str:
    # Names are stored HTML-escaped; message builders escape again.
    return html.unescape(account.given_name)


class AuthService:
    def __init__(
        self,
        settings: Settings,
        store: IdentityStore,
        validator: CredentialValidator,
        tokens: TokenService,
        limiter: RateLimiter,
        sessions: SessionAuthority,
        accounts: AccountStateManager,
        notifier: NotificationDispatcher,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings
        self.store = store
        self.validator = validator
        self.tokens = tokens
        self.limiter = limiter
        self.sessions = sessions
        self.accounts = accounts
        self.notifier = notifier
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Best-effort side effects
    # ------------------------------------------------------------------

    def _audit(
        self,
        email: str,
        action: str,
        success: bool = True,
        client: Optional[ClientContext] = None,
        detail: Optional[str] = None,
    ) -> None:
        try:
            self.accounts.audit(email, action, success=success, client=client, detail=detail)
        except SQLAlchemyError:
            logger.exception("Could not write audit entry %s for %s", action, email)

    def _notify(self, message: Notification) -> bool | Future:
        """Hand message to the dispatcher. False only when inline delivery failed."""
        try:
            return self.notifier.dispatch(message)
        except Exception:
            logger.exception("Could not dispatch '%s' to %s", message.subject, message.to)
            return False

    def _throttle(self, action: str, actor: str, limit_per_minute: int) -> None:
        decision = self.limiter.check_and_record(action, actor, limit_per_minute)
        if not decision.allowed:
            raise RateLimitError(retry_after=decision.retry_after)

    def _require_admin(self, acting_admin: str) -> Account:
        admin = self.store.get_account(sanitize_email(acting_admin or ""))
        if admin is None or not admin.active or not role_at_least(admin.role, Role.ADMINISTRATOR):
            logger.warning("Administrative action refused for %s", acting_admin)
            raise AuthorizationError("Administrator role required", code="FORBIDDEN")
        return admin

    # ------------------------------------------------------------------
    # Registration and verification
    # ------------------------------------------------------------------

    @_boundary("register")
    def register(
        self,
        email: Optional[str],
        password: Optional[str],
        given_name: Optional[str],
        family_name: Optional[str],
        company: Optional[str] = None,
        phone: Optional[str] = None,
        role: Role | str | None = None,
        client: Optional[ClientContext] = None,
        allow_admin: bool = False,
    ) -> AuthResult:
        """Create an unverified account and send its verification link.

        Self-registration may pick any tier below Administrator; the operator
        CLI passes allow_admin=True.
        """
        client = client or ClientContext()
        data = self.validator.validate_registration(email, password, given_name, family_name, company, phone, role)
        if data.role == Role.ADMINISTRATOR and not allow_admin:
            raise ValidationError("Invalid role", field="role")

        if self.store.account_exists(data.email):
            raise IdentityError("An account with this email already exists", code="EMAIL_EXISTS")

        now = self._clock()
        recent = self.store.count_logs("register_success", now - timedelta(hours=1), address=client.address)
        if recent >= self.settings.registration_limit_per_ip_per_hour:
            logger.warning("Registration limit reached for %s", client.address)
            raise RateLimitError("Too many registrations from this address. Try again later.", retry_after=3600)

        verified = not self.settings.require_email_verification
        account = Account(
            email=data.email,
            password_hash=hash_password(data.password),
            given_name=data.given_name,
            family_name=data.family_name,
            company=data.company,
            phone=data.phone,
            role=data.role,
            email_verified=verified,
        )
        try:
            with self.store.transaction() as conn:
                self.store.create_account(account, now, conn=conn)
                token = self.tokens.issue(data.email, TokenType.EMAIL_VERIFICATION, conn=conn)
                self.accounts.audit(data.email, "register_success", client=client, conn=conn)
        except IntegrityError:
            # A concurrent registration for the same email committed first.
            raise IdentityError("An account with this email already exists", code="EMAIL_EXISTS") from None

        if not verified:
            self._notify(
                verification_message(
                    data.email, _display_name(account), token, self.settings.app_name, self.settings.app_url
                )
            )
        logger.info("Registered %s as %s", data.email, data.role.value)
        return AuthResult.ok(
            "Registration successful. Check your email to verify your account."
            if not verified
            else "Registration successful.",
            account=self.store.get_account_view(data.email, now),
            data={"verification_required": not verified},
        )

    @_boundary("verify_email")
    def verify_email(self, token: Optional[str], client: Optional[ClientContext] = None) -> AuthResult:
        token = self.validator.validate_token(token)
        with self.store.transaction() as conn:
            email = self.tokens.consume(token, TokenType.EMAIL_VERIFICATION, conn=conn)
            account = self.store.get_account(email, conn=conn)
            if account is None:
                raise TokenError()
            if account.email_verified:
                raise IdentityError("Email already verified", code="ALREADY_VERIFIED")
            self.store.update_account(email, conn=conn, email_verified=True)
            self.accounts.audit(email, "email_verified", client=client, conn=conn)

        self._notify(welcome_message(email, _display_name(account), self.settings.app_name, self.settings.app_url))
        logger.info("Email verified for %s", email)
        return AuthResult.ok("Email verified. You can now sign in.", account=self.store.get_account_view(email))

    @_boundary("resend_verification")
    def resend_verification(self, email: Optional[str], client: Optional[ClientContext] = None) -> AuthResult:
        """Issue a fresh verification link, superseding the old one.

        Success-shaped for unknown and already-verified emails alike.
        """
        email = self.validator.check_email_format(email)
        self._throttle("resend_verification", email, self.settings.resend_verification_limit_per_minute)
        account = self.store.get_account(email)
        if account is not None and account.active and not account.email_verified:
            token = self.tokens.issue(email, TokenType.EMAIL_VERIFICATION)
            self._notify(
                verification_message(
                    email, _display_name(account), token, self.settings.app_name, self.settings.app_url
                )
            )
            self._audit(email, "verification_resent", client=client)
        return AuthResult.ok(_GENERIC_RESEND_MESSAGE)

    # ------------------------------------------------------------------
    # Login / logout / sessions
    # ------------------------------------------------------------------

    @_boundary("login")
    def login(
        self,
        email: Optional[str],
        password: Optional[str],
        remember_me: bool = False,
        client: Optional[ClientContext] = None,
    ) -> AuthResult:
        client = client or ClientContext()
        email, password = self.validator.validate_login(email, password)
        now = self._clock()

        account = self.store.get_account(email)
        if account is None:
            # Same bcrypt cost as a real check: no timing oracle for unknown emails.
            burn_password_check(password)
            self._audit(email, "login", success=False, client=client, detail="unknown account")
            logger.warning("Login rejected for unknown email %s", email)
            raise AuthenticationError()

        if account.is_locked(now):
            self._audit(email, "login", success=False, client=client, detail="locked")
            raise AccountLockedError(account.locked_until)

        if not account.active:
            self._audit(email, "login", success=False, client=client, detail="disabled")
            raise AuthorizationError("This account has been disabled", code="ACCOUNT_DISABLED")

        if not verify_password(password, account.password_hash):
            self.accounts.record_failed_login(email, client=client)
            self._audit(email, "login", success=False, client=client, detail="wrong password")
            raise AuthenticationError()

        if self.settings.require_email_verification and not account.email_verified:
            self._audit(email, "login", success=False, client=client, detail="unverified")
            raise AuthorizationError("Verify your email address before signing in", code="EMAIL_NOT_VERIFIED")

        with self.store.transaction() as conn:
            self.accounts.record_successful_login(email, conn=conn)
            issued = self.sessions.create(email, remember_me=remember_me, client=client, conn=conn)

        view = self.store.get_account_view(email, now)
        if view is None:
            raise StorageError(f"Account {email} missing after login commit")
        self._audit(email, "login", client=client, detail="remember_me" if remember_me else None)
        logger.info("Login succeeded for %s from %s", email, client.address)
        return AuthResult.ok(
            "Login successful",
            session_token=issued.token,
            account=view,
            data={"expires_at": issued.expires_at.isoformat(), "max_age": issued.max_age},
        )

    def verify_session(self, token: Optional[str], client: Optional[ClientContext] = None) -> AccountView | None:
        """AccountView for a live session, else None. Never raises."""
        return self.sessions.verify(token, client)

    @_boundary("logout")
    def logout(self, token: Optional[str], client: Optional[ClientContext] = None) -> AuthResult:
        email = self.sessions.destroy(token)
        if email is not None:
            self._audit(email, "logout", client=client)
        return AuthResult.ok("Logged out")

    @_boundary("rotate_session")
    def rotate_session(self, token: Optional[str], client: Optional[ClientContext] = None) -> AuthResult:
        issued = self.sessions.rotate(token, client)
        if issued is None:
            raise TokenError("Session is invalid or expired")
        self._audit(issued.email, "session_rotated", client=client)
        return AuthResult.ok(
            "Session renewed",
            session_token=issued.token,
            data={"expires_at": issued.expires_at.isoformat(), "max_age": issued.max_age},
        )

    def active_sessions(self, email: str) -> list[Session]:
        return self.sessions.active_sessions(email)

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    @_boundary("request_password_reset")
    def request_password_reset(self, email: Optional[str], client: Optional[ClientContext] = None) -> AuthResult:
        """Always success-shaped so the response cannot reveal registration."""
        email = self.validator.check_email_format(email)
        self._throttle("password_reset", email, self.settings.password_reset_limit_per_minute)
        account = self.store.get_account(email)
        if account is None or not account.active:
            logger.info("Password reset requested for unknown or disabled account %s", email)
            return AuthResult.ok(_GENERIC_RESET_MESSAGE)

        token = self.tokens.issue(email, TokenType.PASSWORD_RESET)
        self._notify(
            password_reset_message(email, _display_name(account), token, self.settings.app_name, self.settings.app_url)
        )
        self._audit(email, "password_reset_requested", client=client)
        return AuthResult.ok(_GENERIC_RESET_MESSAGE)

    @_boundary("complete_password_reset")
    def complete_password_reset(
        self, token: Optional[str], new_password: Optional[str], client: Optional[ClientContext] = None
    ) -> AuthResult:
        """Burn the token, set the hash, clear lockout, close every session.

        One transaction: if any step fails the token is not burned.
        """
        token = self.validator.validate_token(token)
        new_password = self.validator.validate_password(new_password, field="new_password")
        new_hash = hash_password(new_password)
        with self.store.transaction() as conn:
            email = self.tokens.consume(token, TokenType.PASSWORD_RESET, conn=conn)
            account = self.store.get_account(email, conn=conn)
            if account is None:
                raise TokenError()
            if verify_password(new_password, account.password_hash):
                raise ValidationError(
                    "New password must differ from the current one", field="new_password", code="SAME_PASSWORD"
                )
            self.store.update_account(email, conn=conn, password_hash=new_hash)
            self.accounts.clear_lockout(email, conn=conn)
            closed = self.sessions.destroy_all(email, conn=conn)
            self.accounts.audit(email, "password_reset", client=client, detail=f"sessions closed: {closed}", conn=conn)
        logger.info("Password reset completed for %s", email)
        return AuthResult.ok("Password updated. Sign in with your new password.", data={"sessions_closed": closed})

    @_boundary("change_password")
    def change_password(
        self,
        email: str,
        current_password: Optional[str],
        new_password: Optional[str],
        client: Optional[ClientContext] = None,
    ) -> AuthResult:
        """Change a password with proof of the current one. Closes every session."""
        email = sanitize_email(email or "")
        account = self.store.get_account(email)
        if account is None:
            raise IdentityError("Account not found", code="NOT_FOUND")
        if not current_password or not verify_password(current_password, account.password_hash):
            self._audit(email, "password_change", success=False, client=client, detail="wrong current password")
            raise AuthenticationError("Current password is incorrect", code="INVALID_CURRENT_PASSWORD")
        new_password = self.validator.validate_password(new_password, field="new_password")
        if verify_password(new_password, account.password_hash):
            raise ValidationError(
                "New password must differ from the current one", field="new_password", code="SAME_PASSWORD"
            )
        new_hash = hash_password(new_password)
        with self.store.transaction() as conn:
            self.store.update_account(email, conn=conn, password_hash=new_hash)
            closed = self.sessions.destroy_all(email, conn=conn)
            self.accounts.audit(email, "password_change", client=client, detail=f"sessions closed: {closed}", conn=conn)
        logger.info("Password changed for %s", email)
        return AuthResult.ok("Password changed. Sign in again.", data={"sessions_closed": closed})

    def password_strength(self, password: str) -> dict:
        return {"score": password_strength(password), "suggestions": password_suggestions(password)}

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    @_boundary("toggle_account_status")
    def toggle_account_status(
        self, email: str, active: bool, acting_admin: str, client: Optional[ClientContext] = None
    ) -> AuthResult:
        admin = self._require_admin(acting_admin)
        self._throttle("admin_toggle", admin.email, self.settings.admin_toggle_limit_per_minute)
        email = sanitize_email(email)
        closed = self.accounts.set_active(email, active, admin.email, client=client)
        return AuthResult.ok(
            f"Account {'enabled' if active else 'disabled'}",
            account=self.store.get_account_view(email, self._clock()),
            data={"sessions_closed": closed},
        )

    @_boundary("bulk_toggle")
    def bulk_toggle(
        self, emails: Iterable[str], active: bool, acting_admin: str, client: Optional[ClientContext] = None
    ) -> AuthResult:
        """Enable or disable up to 50 accounts; each one commits on its own."""
        admin = self._require_admin(acting_admin)
        targets = list(dict.fromkeys(sanitize_email(e) for e in emails if e and e.strip()))
        if not targets:
            raise ValidationError("No accounts given", field="emails")
        if len(targets) > MAX_BULK_ACCOUNTS:
            raise ValidationError(
                f"At most {MAX_BULK_ACCOUNTS} accounts per bulk action", field="emails", code="BULK_LIMIT_EXCEEDED"
            )
        self._throttle("admin_bulk", admin.email, self.settings.admin_bulk_limit_per_minute)

        updated: list[str] = []
        failed: dict[str, str] = {}
        for email in targets:
            try:
                self.accounts.set_active(email, active, admin.email, client=client)
                updated.append(email)
            except IdentityError as e:
                failed[email] = e.code
        message = f"{len(updated)} account(s) {'enabled' if active else 'disabled'}"
        if failed:
            message += f", {len(failed)} skipped"
        return AuthResult.ok(message, data={"updated": updated, "failed": failed})

    @_boundary("set_role")
    def set_role(
        self, email: str, role: Role | str, acting_admin: str, client: Optional[ClientContext] = None
    ) -> AuthResult:
        admin = self._require_admin(acting_admin)
        parsed = self.validator.validate_role(role)
        self._throttle("admin_toggle", admin.email, self.settings.admin_toggle_limit_per_minute)
        email = sanitize_email(email)
        self.accounts.set_role(email, parsed, admin.email, client=client)
        return AuthResult.ok(
            f"Role set to {parsed.value}", account=self.store.get_account_view(email, self._clock())
        )

    @_boundary("send_notification")
    def send_notification(
        self, email: str, subject: str, message: str, acting_admin: str, client: Optional[ClientContext] = None
    ) -> AuthResult:
        admin = self._require_admin(acting_admin)
        if not subject or not subject.strip():
            raise ValidationError("Subject is required", field="subject")
        if not message or not message.strip():
            raise ValidationError("Message is required", field="message")
        self._throttle("admin_notification", admin.email, self.settings.admin_notification_limit_per_minute)
        email = sanitize_email(email)
        account = self.store.get_account(email)
        if account is None:
            raise IdentityError("Account not found", code="NOT_FOUND")
        delivered = self._notify(
            admin_message(email, _display_name(account), subject.strip(), message, self.settings.app_name)
        )
        if delivered is False:
            raise DependencyError(f"Notification to {email} could not be delivered")
        self._audit(email, "admin_notification", client=client, detail=f"by {admin.email}: {subject.strip()[:100]}")
        return AuthResult.ok("Notification sent")

    @_boundary("perform_maintenance")
    def perform_maintenance(self, acting_admin: Optional[str] = None) -> AuthResult:
        """Run housekeeping. acting_admin=None is the scheduler / CLI path."""
        if acting_admin is not None:
            admin = self._require_admin(acting_admin)
            self._throttle("admin_maintenance", admin.email, self.settings.admin_maintenance_limit_per_minute)
        report = self.accounts.perform_maintenance()
        return AuthResult.ok("Maintenance completed", data=report)

    @_boundary("export_accounts")
    def export_accounts(
        self, fmt: str, acting_admin: str, client: Optional[ClientContext] = None, **filters
    ) -> AuthResult:
        admin = self._require_admin(acting_admin)
        self._throttle("admin_export", admin.email, self.settings.admin_export_limit_per_minute)
        content = self.accounts.export_accounts(fmt, **filters)
        self._audit(admin.email, "accounts_exported", client=client, detail=fmt)
        return AuthResult.ok("Export ready", data={"format": fmt, "content": content})

    @_boundary("account_detail")
    def account_detail(self, email: str, acting_admin: str) -> AuthResult:
        """One account with its recent access log and live sessions."""
        self._require_admin(acting_admin)
        email = sanitize_email(email)
        account = self.store.get_account_view(email, self._clock())
        if account is None:
            raise IdentityError("Account not found", code="NOT_FOUND")
        sessions = self.sessions.active_sessions(email)
        return AuthResult.ok(
            "Account detail",
            account=account,
            data={
                "recent_logs": self.accounts.account_logs(email, limit=DETAIL_LOG_LIMIT),
                "active_sessions": sessions,
                "session_count": len(sessions),
            },
        )

    def get_accounts_status(self, **filters) -> list[AccountView]:
        return self.accounts.get_accounts_status(**filters)

    def get_system_alerts(self) -> list[Alert]:
        return self.accounts.system_alerts()

    def general_stats(self) -> dict:
        return self.accounts.general_stats()

    def online_accounts(self) -> list[AccountView]:
        return self.accounts.online_accounts()

    def accounts_by_connection_time(self, descending: bool = True, limit: int = 10) -> list[AccountView]:
        return self.accounts.accounts_by_connection_time(descending=descending, limit=limit)

    def activity_stats(self, days: int = 7) -> list[dict]:
        return self.accounts.activity_stats(days)

    def account_logs(self, email: str, limit: int = 50, action: Optional[str] = None) -> list[AccessLogEntry]:
        return self.accounts.account_logs(sanitize_email(email), limit=limit, action=action)


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------


def build_sender(settings: Settings) -> NotificationSender:
    if settings.mail_relay_url:
        return HttpMailSender(settings.mail_relay_url, settings.mail_from, token=settings.mail_relay_token or None)
    return LogSender()


def build_auth_service(
    settings: Settings,
    sender: Optional[NotificationSender] = None,
    clock: Callable[[], datetime] = utc_now,
    executor: Optional[Executor] = None,
    store: Optional[IdentityStore] = None,
    limiter: Optional[RateLimiter] = None,
) -> AuthService:
    """Wire every component from Settings. The caller owns store.close()."""
    store = store or IdentityStore(settings.database_url)
    tokens = TokenService(
        store,
        settings.secret_key,
        {
            TokenType.EMAIL_VERIFICATION: settings.email_verification_ttl_seconds,
            TokenType.PASSWORD_RESET: settings.password_reset_ttl_seconds,
        },
        clock=clock,
    )
    sessions = SessionAuthority(
        store,
        settings.secret_key,
        session_duration=settings.session_duration_seconds,
        remember_me_duration=settings.remember_me_duration_seconds,
        strict_ip_checking=settings.strict_ip_checking,
        ipv4_prefix=settings.ipv4_subnet_prefix,
        ipv6_prefix=settings.ipv6_subnet_prefix,
        clock=clock,
    )
    accounts = AccountStateManager(
        store,
        sessions,
        tokens,
        max_login_attempts=settings.max_login_attempts,
        lockout_duration=settings.lockout_duration_seconds,
        failed_login_alert_threshold=settings.failed_login_alert_threshold,
        long_session_alert_hours=settings.long_session_alert_hours,
        unverified_alert_hours=settings.unverified_alert_hours,
        access_log_retention_days=settings.access_log_retention_days,
        clock=clock,
    )
    validator = CredentialValidator(
        password_min_length=settings.password_min_length,
        require_strong=settings.require_strong_passwords,
        check_deliverability=settings.check_email_deliverability,
    )
    notifier = NotificationDispatcher(
        sender or build_sender(settings),
        attempts=settings.notification_retry_attempts,
        delay=settings.notification_retry_delay_seconds,
        executor=executor,
    )
    return AuthService(
        settings,
        store,
        validator,
        tokens,
        limiter or RateLimiter(settings.rate_limit_storage_uri),
        sessions,
        accounts,
        notifier,
        clock=clock,
    )
