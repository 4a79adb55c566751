"""
auth/sessions.py -- Session Authority: issue, verify, renew and destroy sessions.

State machine per session row:

    ACTIVE --(expires_at passes)--> EXPIRED --(sweep)--> closed row
    ACTIVE --(logout / rotate / password change / admin disable)--> CLOSED

Nothing leaves CLOSED or EXPIRED. find_live_session() filters on
active=1 AND expires_at > now AND account.active=1, so a closed, expired or
disabled-account session can never authenticate.

Closing a session always does three things in one transaction: flip the row
to inactive with end time and duration, fold the duration into the account's
running statistics, and recompute the account's connected flag.

Address binding: the address seen at login is stored on the session. verify()
compares the current address at subnet granularity (CIDR-aware, /24 for IPv4
and /64 for IPv6 by default). A change is logged and tolerated; with
strict_ip_checking any change at all destroys the session.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import ipaddress
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from auth.models import AccountView, ClientContext, IssuedSession, Session, SessionState
from auth.store import IdentityStore
from auth.tokens import generate_token, hash_token, token_prefix
from auth.validator import is_token_shaped
from core.config import utc_now

logger = logging.getLogger("identity.sessions")


def same_subnet(first: str, second: str, ipv4_prefix: int = 24, ipv6_prefix: int = 64) -> bool:
    """True if both addresses fall in the same network of the given prefix.

    Unparseable addresses (e.g. "unknown") only match themselves.
    """
    try:
        a = ipaddress.ip_address(first)
        b = ipaddress.ip_address(second)
    except ValueError:
        return first == second
    if a.version != b.version:
        return False
    prefix = ipv4_prefix if a.version == 4 else ipv6_prefix
    return b in ipaddress.ip_network(f"{a}/{prefix}", strict=False)


def _duration_minutes(start: datetime, end: datetime) -> int:
    return max(0, round((end - start).total_seconds() / 60))


class SessionAuthority:
    """Owns the sessions table. Everything else only reads it."""

    def __init__(
        self,
        store: IdentityStore,
        secret_key: str,
        session_duration: int = 86400,
        remember_me_duration: int = 2592000,
        strict_ip_checking: bool = False,
        ipv4_prefix: int = 24,
        ipv6_prefix: int = 64,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self._secret_key = secret_key
        self.session_duration = session_duration
        self.remember_me_duration = remember_me_duration
        self.strict_ip_checking = strict_ip_checking
        self.ipv4_prefix = ipv4_prefix
        self.ipv6_prefix = ipv6_prefix
        self._clock = clock

    def _hash(self, token: str) -> str:
        return hash_token(token, self._secret_key)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(
        self,
        email: str,
        remember_me: bool = False,
        client: Optional[ClientContext] = None,
        conn: Optional[Connection] = None,
    ) -> IssuedSession:
        """Persist a new session and return the raw token for the client.

        The account's already-expired sessions are swept first so stale rows
        never pile up. All-or-nothing: if the insert fails nothing is
        returned and the caller must not set a cookie.
        """
        client = client or ClientContext()
        now = self._clock()
        duration = self.remember_me_duration if remember_me else self.session_duration
        raw = generate_token()
        session = Session(
            token_hash=self._hash(raw),
            email=email,
            address=client.address,
            device=client.device,
            created_at=now,
            expires_at=now + timedelta(seconds=duration),
        )
        with self.store.transaction(conn) as c:
            self._sweep(now, email=email, conn=c)
            self.store.insert_session(session, conn=c)
        logger.info("Session %s created for %s (remember_me=%s)", token_prefix(raw), email, remember_me)
        return IssuedSession(token=raw, email=email, expires_at=session.expires_at, max_age=duration)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, token: Optional[str], client: Optional[ClientContext] = None) -> AccountView | None:
        """Return the session's account view, or None. Never raises.

        On success the expiry slides forward (never backward) and the
        account's last_activity is stamped.
        """
        if not token or not is_token_shaped(token):
            return None
        token = token.lower()
        try:
            return self._verify(token, client)
        except SQLAlchemyError:
            logger.exception("Session verification failed for %s", token_prefix(token))
            return None

    def _verify(self, token: str, client: Optional[ClientContext]) -> AccountView | None:
        now = self._clock()
        token_hash = self._hash(token)
        found = self.store.find_live_session(token_hash, now)
        if found is None:
            return None
        session, view = found

        if client is not None and not self._address_ok(session, client.address, token):
            self.destroy(token)
            return None

        renewed = max(session.expires_at, now + timedelta(seconds=self.session_duration))
        with self.store.transaction() as c:
            self.store.extend_session(token_hash, renewed, conn=c)
            self.store.update_account(session.email, conn=c, last_activity=now, connected=True)
        view.last_activity = now
        view.connected = True
        view.idle_minutes = 0
        return view

    def _address_ok(self, session: Session, address: str, token: str) -> bool:
        if address == session.address:
            return True
        if self.strict_ip_checking:
            logger.warning(
                "Address changed for session %s (%s): %s -> %s, destroying",
                token_prefix(token),
                session.email,
                session.address,
                address,
            )
            return False
        if not same_subnet(session.address, address, self.ipv4_prefix, self.ipv6_prefix):
            logger.warning(
                "Subnet changed for session %s (%s): %s -> %s",
                token_prefix(token),
                session.email,
                session.address,
                address,
            )
        return True

    # ------------------------------------------------------------------
    # Destroy
    # ------------------------------------------------------------------

    def _close(self, session: Session, now: datetime, conn: Connection) -> bool:
        if session.state(now) is SessionState.CLOSED:
            return False
        # An expired session stops counting at its expiry, not at sweep time.
        minutes = _duration_minutes(session.created_at, min(now, session.expires_at))
        if not self.store.close_session(session.token_hash, now, minutes, conn=conn):
            return False
        self.store.fold_session_duration(session.email, minutes, now, conn=conn)
        return True

    def destroy(self, token: Optional[str], conn: Optional[Connection] = None) -> Optional[str]:
        """Close one session and return its owner's email.

        None if the session did not exist or was already closed.
        """
        if not token:
            return None
        now = self._clock()
        with self.store.transaction(conn) as c:
            session = self.store.get_session(self._hash(token.lower()), conn=c)
            if session is None or not self._close(session, now, c):
                return None
            self.store.refresh_connected(session.email, now, conn=c)
        logger.info("Session %s closed for %s", token_prefix(token), session.email)
        return session.email

    def destroy_all(self, email: str, conn: Optional[Connection] = None) -> int:
        """Close every session still flagged active for email, expired or not."""
        now = self._clock()
        closed = 0
        with self.store.transaction(conn) as c:
            for session in self.store.list_sessions(email, active_only=True, conn=c):
                if self._close(session, now, c):
                    closed += 1
            self.store.update_account(email, conn=c, connected=False)
        logger.info("Closed %d sessions for %s", closed, email)
        return closed

    # ------------------------------------------------------------------
    # Renewal and housekeeping
    # ------------------------------------------------------------------

    def rotate(self, token: Optional[str], client: Optional[ClientContext] = None) -> IssuedSession | None:
        """Swap a live session for a fresh token. None if token is not live.

        The old session is closed and the new one created in one transaction;
        a remember-me session stays remember-me.
        """
        view = self.verify(token, client)
        if view is None:
            return None
        now = self._clock()
        with self.store.transaction() as c:
            old = self.store.get_session(self._hash(token.lower()), conn=c)
            remember_me = old is not None and (old.expires_at - now).total_seconds() > self.session_duration
            if old is not None:
                self._close(old, now, c)
            issued = self.create(view.email, remember_me=remember_me, client=client or ClientContext(), conn=c)
            self.store.update_account(view.email, conn=c, connected=True)
        logger.info("Session %s rotated to %s", token_prefix(token), token_prefix(issued.token))
        return issued

    def _sweep(self, now: datetime, email: Optional[str] = None, conn: Optional[Connection] = None) -> int:
        swept = 0
        with self.store.transaction(conn) as c:
            for session in self.store.list_expired_open_sessions(now, email=email, conn=c):
                if self._close(session, now, c):
                    swept += 1
        return swept

    def sweep_expired(self, conn: Optional[Connection] = None) -> int:
        """Close every expired-but-active session. Idempotent."""
        swept = self._sweep(self._clock(), conn=conn)
        if swept:
            logger.info("Swept %d expired sessions", swept)
        return swept

    def active_sessions(self, email: str) -> list[Session]:
        return self.store.list_sessions(email, now=self._clock(), active_only=True)

    def time_remaining(self, token: Optional[str]) -> int:
        """Seconds until the session expires; 0 when it is not live."""
        if not token or not is_token_shaped(token):
            return 0
        now = self._clock()
        found = self.store.find_live_session(self._hash(token.lower()), now)
        if found is None:
            return 0
        return max(0, int((found[0].expires_at - now).total_seconds()))
