"""
auth/store.py -- SQLAlchemy Core record store for identity entities.

Pattern: Repository + Data Mapper.
IdentityStore is the repository; the _row_to_* functions are the mappers and
the only place that knows column names. Components never touch SQL directly.

Transactions:
  Every method takes an optional conn. With conn=None the method runs in its
  own engine.begin() block (commit on exit, rollback on exception). Passing a
  conn joins the caller's transaction, which is how AuthService composes
  multi-component writes (register = account + stats + token) atomically:

      with store.transaction() as conn:
          store.create_account(account, conn=conn)
          tokens.issue(email, TokenType.EMAIL_VERIFICATION, conn=conn)

Timestamps:
  Stored as UTC ISO-8601 strings with microsecond precision. Fixed width and
  a fixed offset mean string order is time order on every engine, so the
  store never needs dialect-specific date functions.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Session and token primary keys are HMAC digests (auth/tokens.py).

Errors:
  sqlalchemy.exc.SQLAlchemyError propagates. AuthService is the boundary that
  logs it and converts it to an INTERNAL_ERROR result.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    and_,
    case,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine

from auth.models import (
    DEFAULT_ROLE,
    AccessLogEntry,
    Account,
    AccountStats,
    AccountView,
    OneTimeToken,
    Role,
    Session,
    TokenType,
    parse_role,
)
from auth.validator import sanitize_string

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("email", String(255), primary_key=True),
    Column("password_hash", Text, nullable=False),
    Column("given_name", String(50), nullable=False),
    Column("family_name", String(50), nullable=False),
    Column("company", String(255)),
    Column("phone", String(20)),
    Column("role", String(30), nullable=False, server_default=DEFAULT_ROLE.value),
    Column("active", Integer, nullable=False, server_default="1"),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("failed_attempts", Integer, nullable=False, server_default="0"),
    Column("locked_until", String(32)),
    Column("connected", Integer, nullable=False, server_default="0"),
    Column("last_activity", String(32)),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("token_hash", String(64), primary_key=True),  # HMAC-SHA256 hex
    Column("email", String(255), nullable=False, index=True),
    Column("address", String(45), nullable=False),
    Column("device", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("active", Integer, nullable=False, server_default="1"),
    Column("ended_at", String(32)),
    Column("duration_minutes", Integer),
)

_tokens = Table(
    "tokens",
    _metadata,
    Column("token_hash", String(64), primary_key=True),  # HMAC-SHA256 hex
    Column("email", String(255), nullable=False, index=True),
    Column("token_type", String(30), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("used", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_access_log = Table(
    "access_log",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, index=True),
    Column("action", String(50), nullable=False),
    Column("success", Integer, nullable=False, server_default="1"),
    Column("address", String(45), nullable=False),
    Column("device", Text, nullable=False),
    Column("detail", Text),
    Column("created_at", String(32), nullable=False, index=True),
)

_stats = Table(
    "account_stats",
    _metadata,
    Column("email", String(255), primary_key=True),
    Column("login_count", Integer, nullable=False, server_default="0"),
    Column("total_minutes", Integer, nullable=False, server_default="0"),
    Column("longest_minutes", Integer, nullable=False, server_default="0"),
    Column("average_minutes", Integer, nullable=False, server_default="0"),
    Column("updated_at", String(32)),
)

# Columns that update_account() accepts. Everything else has a dedicated
# method with its own invariants (lockout, connection, stats).
_MUTABLE_ACCOUNT_FIELDS = {
    "password_hash",
    "given_name",
    "family_name",
    "company",
    "phone",
    "role",
    "active",
    "email_verified",
    "connected",
    "last_activity",
}

_BOOL_COLUMNS = {"active", "email_verified", "connected", "used", "success"}

# Filter values accepted by list_accounts(state=...).
ACCOUNT_STATES = ("active", "disabled", "locked", "unverified", "connected")

_ORDERINGS = {
    "created_desc": _accounts.c.created_at.desc(),
    "created_asc": _accounts.c.created_at.asc(),
    "email": _accounts.c.email.asc(),
    "last_login": _accounts.c.last_login.desc(),
    "connection_time": _stats.c.total_minutes.desc(),
}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _db_values(fields: dict) -> dict:
    out = {}
    for key, value in fields.items():
        if key in _BOOL_COLUMNS:
            value = 1 if value else 0
        elif isinstance(value, datetime):
            value = to_iso(value)
        elif isinstance(value, Role):
            value = value.value
        out[key] = value
    return out


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for accounts, sessions, tokens, the access log and stats.

    Usage:
        store = IdentityStore("sqlite:///identity.db")
        with store.transaction() as conn:
            store.create_account(account, now, conn=conn)
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    @contextmanager
    def transaction(self, conn: Optional[Connection] = None) -> Iterator[Connection]:
        """Yield conn unchanged, or a fresh connection inside engine.begin()."""
        if conn is not None:
            yield conn
            return
        with self.engine.begin() as new_conn:
            yield new_conn

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(select(1)).scalar()
        return True

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(self, account: Account, now: datetime, conn: Optional[Connection] = None) -> None:
        """Insert an account and its zeroed stats row.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers treat that as EMAIL_EXISTS (a concurrent registration won).
        """
        with self.transaction(conn) as c:
            c.execute(
                _accounts.insert().values(
                    **_db_values(
                        {
                            "email": account.email,
                            "password_hash": account.password_hash,
                            "given_name": account.given_name,
                            "family_name": account.family_name,
                            "company": account.company,
                            "phone": account.phone,
                            "role": account.role,
                            "active": account.active,
                            "email_verified": account.email_verified,
                            "failed_attempts": 0,
                            "connected": False,
                            "created_at": now,
                        }
                    )
                )
            )
            c.execute(_stats.insert().values(email=account.email, updated_at=to_iso(now)))

    def get_account(self, email: str, conn: Optional[Connection] = None) -> Account | None:
        with self.transaction(conn) as c:
            row = c.execute(_accounts.select().where(_accounts.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def account_exists(self, email: str, conn: Optional[Connection] = None) -> bool:
        with self.transaction(conn) as c:
            found = c.execute(select(_accounts.c.email).where(_accounts.c.email == email)).fetchone()
        return found is not None

    def update_account(self, email: str, conn: Optional[Connection] = None, **fields) -> bool:
        """Update whitelisted account columns. Returns True if a row changed.

        Unknown keys raise ValueError rather than being silently ignored.
        """
        unknown = set(fields) - _MUTABLE_ACCOUNT_FIELDS
        if unknown:
            raise ValueError(f"Unknown account fields: {unknown!r}")
        if not fields:
            return False
        with self.transaction(conn) as c:
            result = c.execute(_accounts.update().where(_accounts.c.email == email).values(**_db_values(fields)))
        return result.rowcount > 0

    def record_failed_attempt(
        self, email: str, max_attempts: int, lock_until: datetime, conn: Optional[Connection] = None
    ) -> tuple[int, Optional[datetime]]:
        """Atomically increment the failure counter, locking at the threshold.

        One UPDATE statement: the SET expressions read the pre-update row, so
        two concurrent failures can never both observe "below threshold".
        Returns (failed_attempts, locked_until) after the update.
        """
        new_count = _accounts.c.failed_attempts + 1
        with self.transaction(conn) as c:
            c.execute(
                _accounts.update()
                .where(_accounts.c.email == email)
                .values(
                    failed_attempts=new_count,
                    locked_until=case((new_count >= max_attempts, to_iso(lock_until)), else_=_accounts.c.locked_until),
                )
            )
            row = c.execute(
                select(_accounts.c.failed_attempts, _accounts.c.locked_until).where(_accounts.c.email == email)
            ).fetchone()
        if row is None:
            return 0, None
        return row.failed_attempts, from_iso(row.locked_until)

    def clear_lockout(self, email: str, conn: Optional[Connection] = None) -> None:
        with self.transaction(conn) as c:
            c.execute(_accounts.update().where(_accounts.c.email == email).values(failed_attempts=0, locked_until=None))

    def mark_logged_in(self, email: str, now: datetime, conn: Optional[Connection] = None) -> None:
        """Successful login: reset the lockout state, mark connected, bump the login count."""
        stamp = to_iso(now)
        with self.transaction(conn) as c:
            c.execute(
                _accounts.update()
                .where(_accounts.c.email == email)
                .values(failed_attempts=0, locked_until=None, connected=1, last_login=stamp, last_activity=stamp)
            )
            c.execute(
                _stats.update()
                .where(_stats.c.email == email)
                .values(login_count=_stats.c.login_count + 1, updated_at=stamp)
            )

    def disconnect_idle_accounts(self, now: datetime, conn: Optional[Connection] = None) -> int:
        """Mark connected accounts with no live session as disconnected."""
        live = (
            select(_sessions.c.token_hash)
            .where(
                and_(
                    _sessions.c.email == _accounts.c.email,
                    _sessions.c.active == 1,
                    _sessions.c.expires_at > to_iso(now),
                )
            )
            .exists()
        )
        with self.transaction(conn) as c:
            result = c.execute(_accounts.update().where(and_(_accounts.c.connected == 1, ~live)).values(connected=0))
        return result.rowcount

    def refresh_connected(self, email: str, now: datetime, conn: Optional[Connection] = None) -> None:
        """Set connected from whether the account still has a live session."""
        with self.transaction(conn) as c:
            live = c.execute(
                select(func.count())
                .select_from(_sessions)
                .where(
                    and_(_sessions.c.email == email, _sessions.c.active == 1, _sessions.c.expires_at > to_iso(now))
                )
            ).scalar()
            c.execute(_accounts.update().where(_accounts.c.email == email).values(connected=1 if live else 0))

    # ------------------------------------------------------------------
    # Account views
    # ------------------------------------------------------------------

    def _view_select(self):
        return select(
            _accounts,
            _stats.c.login_count,
            _stats.c.total_minutes,
            _stats.c.longest_minutes,
            _stats.c.average_minutes,
        ).select_from(_accounts.outerjoin(_stats, _stats.c.email == _accounts.c.email))

    def get_account_view(
        self, email: str, now: Optional[datetime] = None, conn: Optional[Connection] = None
    ) -> AccountView | None:
        with self.transaction(conn) as c:
            row = c.execute(self._view_select().where(_accounts.c.email == email)).fetchone()
        return _row_to_view(row, now) if row is not None else None

    def list_accounts(
        self,
        now: datetime,
        state: Optional[str] = None,
        role: Optional[Role] = None,
        company: Optional[str] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        order: str = "created_desc",
        limit: Optional[int] = None,
        conn: Optional[Connection] = None,
    ) -> list[AccountView]:
        """Filtered account listing. Unknown state/order values raise ValueError."""
        query = self._view_select()
        stamp = to_iso(now)
        if state is not None:
            if state not in ACCOUNT_STATES:
                raise ValueError(f"Unknown account state: {state!r}")
            if state == "active":
                query = query.where(_accounts.c.active == 1)
            elif state == "disabled":
                query = query.where(_accounts.c.active == 0)
            elif state == "locked":
                query = query.where(and_(_accounts.c.locked_until.is_not(None), _accounts.c.locked_until > stamp))
            elif state == "unverified":
                query = query.where(_accounts.c.email_verified == 0)
            elif state == "connected":
                query = query.where(and_(_accounts.c.connected == 1, _accounts.c.active == 1))
        if role is not None:
            query = query.where(_accounts.c.role == Role(role).value)
        if company and company.strip():
            # Stored companies are HTML-escaped, so the search term is escaped the same way.
            query = query.where(_accounts.c.company.icontains(sanitize_string(company), autoescape=True))
        if created_from is not None:
            query = query.where(_accounts.c.created_at >= to_iso(created_from))
        if created_to is not None:
            query = query.where(_accounts.c.created_at <= to_iso(created_to))
        if order not in _ORDERINGS:
            raise ValueError(f"Unknown ordering: {order!r}")
        query = query.order_by(_ORDERINGS[order], _accounts.c.email)
        if limit is not None:
            query = query.limit(limit)
        with self.transaction(conn) as c:
            rows = c.execute(query).fetchall()
        return [_row_to_view(r, now) for r in rows]

    def account_counts(self, now: datetime, since: datetime, conn: Optional[Connection] = None) -> dict:
        """Aggregate account counts by state, plus new and recently active since `since`."""
        stamp = to_iso(now)
        cutoff = to_iso(since)

        def flag(condition):
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        query = select(
            func.count().label("total"),
            flag(_accounts.c.active == 1).label("active"),
            flag(_accounts.c.active == 0).label("disabled"),
            flag(_accounts.c.email_verified == 1).label("verified"),
            flag(_accounts.c.email_verified == 0).label("unverified"),
            flag(and_(_accounts.c.connected == 1, _accounts.c.active == 1)).label("connected"),
            flag(and_(_accounts.c.locked_until.is_not(None), _accounts.c.locked_until > stamp)).label("locked"),
            flag(_accounts.c.created_at >= cutoff).label("new_since"),
            flag(_accounts.c.last_activity >= cutoff).label("active_since"),
        ).select_from(_accounts)
        with self.transaction(conn) as c:
            row = c.execute(query).fetchone()
            by_role = c.execute(select(_accounts.c.role, func.count()).group_by(_accounts.c.role)).fetchall()
        counts = {key: int(value or 0) for key, value in row._mapping.items()}
        counts["by_role"] = {r[0]: int(r[1]) for r in by_role}
        return counts

    def count_locked(self, now: datetime, conn: Optional[Connection] = None) -> int:
        with self.transaction(conn) as c:
            return c.execute(
                select(func.count())
                .select_from(_accounts)
                .where(and_(_accounts.c.locked_until.is_not(None), _accounts.c.locked_until > to_iso(now)))
            ).scalar() or 0

    def count_unverified_before(self, cutoff: datetime, conn: Optional[Connection] = None) -> int:
        with self.transaction(conn) as c:
            return c.execute(
                select(func.count())
                .select_from(_accounts)
                .where(and_(_accounts.c.email_verified == 0, _accounts.c.created_at < to_iso(cutoff)))
            ).scalar() or 0

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self, email: str, conn: Optional[Connection] = None) -> AccountStats | None:
        with self.transaction(conn) as c:
            row = c.execute(_stats.select().where(_stats.c.email == email)).fetchone()
        return _row_to_stats(row) if row is not None else None

    def fold_session_duration(
        self, email: str, minutes: int, now: datetime, conn: Optional[Connection] = None
    ) -> None:
        """Incrementally fold one closed session into the account aggregate.

        total += minutes; longest = max(longest, minutes);
        average = total / login_count (login_count is bumped at login time).
        """
        new_total = _stats.c.total_minutes + minutes
        with self.transaction(conn) as c:
            c.execute(
                _stats.update()
                .where(_stats.c.email == email)
                .values(
                    total_minutes=new_total,
                    longest_minutes=case(
                        (_stats.c.longest_minutes < minutes, minutes), else_=_stats.c.longest_minutes
                    ),
                    average_minutes=case(
                        (_stats.c.login_count > 0, new_total // _stats.c.login_count), else_=new_total
                    ),
                    updated_at=to_iso(now),
                )
            )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def insert_session(self, session: Session, conn: Optional[Connection] = None) -> None:
        with self.transaction(conn) as c:
            c.execute(
                _sessions.insert().values(
                    **_db_values(
                        {
                            "token_hash": session.token_hash,
                            "email": session.email,
                            "address": session.address,
                            "device": session.device,
                            "created_at": session.created_at,
                            "expires_at": session.expires_at,
                            "active": session.active,
                        }
                    )
                )
            )

    def get_session(self, token_hash: str, conn: Optional[Connection] = None) -> Session | None:
        with self.transaction(conn) as c:
            row = c.execute(_sessions.select().where(_sessions.c.token_hash == token_hash)).fetchone()
        return _row_to_session(row) if row is not None else None

    def find_live_session(
        self, token_hash: str, now: datetime, conn: Optional[Connection] = None
    ) -> tuple[Session, AccountView] | None:
        """Active, unexpired session joined with its active account, or None."""
        query = (
            select(
                _sessions,
                _accounts.c.given_name,
                _accounts.c.family_name,
                _accounts.c.company,
                _accounts.c.phone,
                _accounts.c.role,
                _accounts.c.active.label("account_active"),
                _accounts.c.email_verified,
                _accounts.c.connected,
                _accounts.c.failed_attempts,
                _accounts.c.locked_until,
                _accounts.c.last_login,
                _accounts.c.last_activity,
                _accounts.c.created_at.label("account_created_at"),
                _stats.c.login_count,
                _stats.c.total_minutes,
                _stats.c.longest_minutes,
                _stats.c.average_minutes,
            )
            .select_from(
                _sessions.join(_accounts, _accounts.c.email == _sessions.c.email).outerjoin(
                    _stats, _stats.c.email == _sessions.c.email
                )
            )
            .where(
                and_(
                    _sessions.c.token_hash == token_hash,
                    _sessions.c.active == 1,
                    _sessions.c.expires_at > to_iso(now),
                    _accounts.c.active == 1,
                )
            )
        )
        with self.transaction(conn) as c:
            row = c.execute(query).fetchone()
        if row is None:
            return None
        return _row_to_session(row), _joined_row_to_view(row, now)

    def extend_session(self, token_hash: str, expires_at: datetime, conn: Optional[Connection] = None) -> None:
        with self.transaction(conn) as c:
            c.execute(
                _sessions.update()
                .where(and_(_sessions.c.token_hash == token_hash, _sessions.c.active == 1))
                .values(expires_at=to_iso(expires_at))
            )

    def close_session(
        self, token_hash: str, ended_at: datetime, duration_minutes: int, conn: Optional[Connection] = None
    ) -> bool:
        """Close an active session. False if it was already closed (someone else won)."""
        with self.transaction(conn) as c:
            result = c.execute(
                _sessions.update()
                .where(and_(_sessions.c.token_hash == token_hash, _sessions.c.active == 1))
                .values(active=0, ended_at=to_iso(ended_at), duration_minutes=duration_minutes)
            )
        return result.rowcount == 1

    def list_sessions(
        self,
        email: str,
        now: Optional[datetime] = None,
        active_only: bool = True,
        conn: Optional[Connection] = None,
    ) -> list[Session]:
        """Sessions for one account, newest first.

        With active_only and now given, only live sessions are returned; with
        active_only and no now, every row still flagged active is returned.
        """
        query = _sessions.select().where(_sessions.c.email == email)
        if active_only:
            query = query.where(_sessions.c.active == 1)
            if now is not None:
                query = query.where(_sessions.c.expires_at > to_iso(now))
        with self.transaction(conn) as c:
            rows = c.execute(query.order_by(_sessions.c.created_at.desc())).fetchall()
        return [_row_to_session(r) for r in rows]

    def list_expired_open_sessions(
        self, now: datetime, email: Optional[str] = None, conn: Optional[Connection] = None
    ) -> list[Session]:
        query = _sessions.select().where(and_(_sessions.c.active == 1, _sessions.c.expires_at <= to_iso(now)))
        if email is not None:
            query = query.where(_sessions.c.email == email)
        with self.transaction(conn) as c:
            rows = c.execute(query).fetchall()
        return [_row_to_session(r) for r in rows]

    def session_counts(self, now: datetime, long_since: datetime, conn: Optional[Connection] = None) -> dict:
        """Live session count, average live age in minutes, and sessions started before long_since."""
        stamp = to_iso(now)
        live = and_(_sessions.c.active == 1, _sessions.c.expires_at > stamp)
        with self.transaction(conn) as c:
            rows = c.execute(select(_sessions.c.created_at).where(live)).fetchall()
            long_running = c.execute(
                select(func.count())
                .select_from(_sessions)
                .where(and_(live, _sessions.c.created_at < to_iso(long_since)))
            ).scalar()
        ages = [(now - from_iso(r.created_at)).total_seconds() / 60 for r in rows]
        return {
            "live": len(rows),
            "average_age_minutes": int(sum(ages) / len(ages)) if ages else 0,
            "long_running": int(long_running or 0),
        }

    # ------------------------------------------------------------------
    # One-time tokens
    # ------------------------------------------------------------------

    def invalidate_tokens(self, email: str, token_type: TokenType, conn: Optional[Connection] = None) -> int:
        """Mark every unconsumed token of this type for this account as used."""
        with self.transaction(conn) as c:
            result = c.execute(
                _tokens.update()
                .where(
                    and_(_tokens.c.email == email, _tokens.c.token_type == token_type.value, _tokens.c.used == 0)
                )
                .values(used=1)
            )
        return result.rowcount

    def insert_token(self, token: OneTimeToken, now: datetime, conn: Optional[Connection] = None) -> None:
        with self.transaction(conn) as c:
            c.execute(
                _tokens.insert().values(
                    token_hash=token.token_hash,
                    email=token.email,
                    token_type=token.token_type.value,
                    expires_at=to_iso(token.expires_at),
                    used=1 if token.used else 0,
                    created_at=to_iso(now),
                )
            )

    def consume_token(
        self, token_hash: str, token_type: TokenType, now: datetime, conn: Optional[Connection] = None
    ) -> Optional[str]:
        """Burn a token and return its owner's email, or None.

        The conditional UPDATE is the validity check: only a row that is still
        unused, unexpired and of the right type is touched, so of two
        concurrent redemptions exactly one sees rowcount == 1.
        """
        with self.transaction(conn) as c:
            result = c.execute(
                _tokens.update()
                .where(
                    and_(
                        _tokens.c.token_hash == token_hash,
                        _tokens.c.token_type == token_type.value,
                        _tokens.c.used == 0,
                        _tokens.c.expires_at > to_iso(now),
                    )
                )
                .values(used=1)
            )
            if result.rowcount != 1:
                return None
            return c.execute(select(_tokens.c.email).where(_tokens.c.token_hash == token_hash)).scalar()

    def get_token(self, token_hash: str, conn: Optional[Connection] = None) -> OneTimeToken | None:
        with self.transaction(conn) as c:
            row = c.execute(_tokens.select().where(_tokens.c.token_hash == token_hash)).fetchone()
        return _row_to_token(row) if row is not None else None

    def list_tokens(
        self, email: str, token_type: Optional[TokenType] = None, conn: Optional[Connection] = None
    ) -> list[OneTimeToken]:
        query = _tokens.select().where(_tokens.c.email == email)
        if token_type is not None:
            query = query.where(_tokens.c.token_type == token_type.value)
        with self.transaction(conn) as c:
            rows = c.execute(query.order_by(_tokens.c.created_at)).fetchall()
        return [_row_to_token(r) for r in rows]

    def delete_expired_tokens(self, now: datetime, conn: Optional[Connection] = None) -> int:
        with self.transaction(conn) as c:
            result = c.execute(_tokens.delete().where(_tokens.c.expires_at <= to_iso(now)))
        return result.rowcount

    # ------------------------------------------------------------------
    # Access log
    # ------------------------------------------------------------------

    def append_log(self, entry: AccessLogEntry, now: datetime, conn: Optional[Connection] = None) -> None:
        with self.transaction(conn) as c:
            c.execute(
                _access_log.insert().values(
                    email=entry.email,
                    action=entry.action,
                    success=1 if entry.success else 0,
                    address=entry.address,
                    device=entry.device,
                    detail=entry.detail,
                    created_at=to_iso(now),
                )
            )

    def list_logs(
        self,
        email: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 50,
        conn: Optional[Connection] = None,
    ) -> list[AccessLogEntry]:
        query = _access_log.select()
        if email is not None:
            query = query.where(_access_log.c.email == email)
        if action is not None:
            query = query.where(_access_log.c.action == action)
        query = query.order_by(_access_log.c.created_at.desc(), _access_log.c.id.desc()).limit(limit)
        with self.transaction(conn) as c:
            rows = c.execute(query).fetchall()
        return [_row_to_log(r) for r in rows]

    def count_logs(
        self,
        action: str,
        since: datetime,
        success: Optional[bool] = None,
        address: Optional[str] = None,
        conn: Optional[Connection] = None,
    ) -> int:
        query = (
            select(func.count())
            .select_from(_access_log)
            .where(and_(_access_log.c.action == action, _access_log.c.created_at >= to_iso(since)))
        )
        if success is not None:
            query = query.where(_access_log.c.success == (1 if success else 0))
        if address is not None:
            query = query.where(_access_log.c.address == address)
        with self.transaction(conn) as c:
            return c.execute(query).scalar() or 0

    def activity_by_day(self, since: datetime, actions: list[str], conn: Optional[Connection] = None) -> list[dict]:
        """Per-day counts of the given actions split by success, plus distinct accounts."""
        day = func.substr(_access_log.c.created_at, 1, 10).label("day")
        query = (
            select(
                day,
                _access_log.c.action,
                _access_log.c.success,
                func.count().label("n"),
                func.count(func.distinct(_access_log.c.email)).label("accounts"),
            )
            .where(and_(_access_log.c.created_at >= to_iso(since), _access_log.c.action.in_(actions)))
            .group_by(day, _access_log.c.action, _access_log.c.success)
            .order_by(day)
        )
        with self.transaction(conn) as c:
            rows = c.execute(query).fetchall()
        return [
            {"day": r.day, "action": r.action, "success": bool(r.success), "count": r.n, "accounts": r.accounts}
            for r in rows
        ]

    def delete_logs_before(self, cutoff: datetime, conn: Optional[Connection] = None) -> int:
        with self.transaction(conn) as c:
            result = c.execute(_access_log.delete().where(_access_log.c.created_at < to_iso(cutoff)))
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _role(value: str) -> Role:
    return parse_role(value) or DEFAULT_ROLE


def _idle_minutes(last_activity: Optional[datetime], now: Optional[datetime]) -> Optional[int]:
    if now is None or last_activity is None:
        return None
    return max(0, int((now - last_activity).total_seconds() // 60))


def _row_to_account(row) -> Account:
    return Account(
        email=row.email,
        password_hash=row.password_hash,
        given_name=row.given_name,
        family_name=row.family_name,
        company=row.company,
        phone=row.phone,
        role=_role(row.role),
        active=bool(row.active),
        email_verified=bool(row.email_verified),
        failed_attempts=row.failed_attempts,
        locked_until=from_iso(row.locked_until),
        connected=bool(row.connected),
        last_activity=from_iso(row.last_activity),
        last_login=from_iso(row.last_login),
        created_at=from_iso(row.created_at),
    )


def _row_to_view(row, now: Optional[datetime] = None) -> AccountView:
    last_activity = from_iso(row.last_activity)
    return AccountView(
        email=row.email,
        given_name=row.given_name,
        family_name=row.family_name,
        company=row.company,
        phone=row.phone,
        role=_role(row.role),
        active=bool(row.active),
        email_verified=bool(row.email_verified),
        connected=bool(row.connected),
        failed_attempts=row.failed_attempts,
        locked_until=from_iso(row.locked_until),
        last_login=from_iso(row.last_login),
        last_activity=last_activity,
        created_at=from_iso(row.created_at),
        login_count=row.login_count or 0,
        total_minutes=row.total_minutes or 0,
        longest_minutes=row.longest_minutes or 0,
        average_minutes=row.average_minutes or 0,
        idle_minutes=_idle_minutes(last_activity, now),
    )


def _joined_row_to_view(row, now: Optional[datetime] = None) -> AccountView:
    # Session-joined rows label the colliding account columns explicitly.
    last_activity = from_iso(row.last_activity)
    return AccountView(
        email=row.email,
        given_name=row.given_name,
        family_name=row.family_name,
        company=row.company,
        phone=row.phone,
        role=_role(row.role),
        active=bool(row.account_active),
        email_verified=bool(row.email_verified),
        connected=bool(row.connected),
        failed_attempts=row.failed_attempts,
        locked_until=from_iso(row.locked_until),
        last_login=from_iso(row.last_login),
        last_activity=last_activity,
        created_at=from_iso(row.account_created_at),
        login_count=row.login_count or 0,
        total_minutes=row.total_minutes or 0,
        longest_minutes=row.longest_minutes or 0,
        average_minutes=row.average_minutes or 0,
        idle_minutes=_idle_minutes(last_activity, now),
    )


def _row_to_session(row) -> Session:
    return Session(
        token_hash=row.token_hash,
        email=row.email,
        address=row.address,
        device=row.device,
        created_at=from_iso(row.created_at),
        expires_at=from_iso(row.expires_at),
        active=bool(row.active),
        ended_at=from_iso(row.ended_at),
        duration_minutes=row.duration_minutes,
    )


def _row_to_token(row) -> OneTimeToken:
    return OneTimeToken(
        token_hash=row.token_hash,
        email=row.email,
        token_type=TokenType(row.token_type),
        expires_at=from_iso(row.expires_at),
        used=bool(row.used),
        created_at=from_iso(row.created_at),
    )


def _row_to_log(row) -> AccessLogEntry:
    return AccessLogEntry(
        id=row.id,
        email=row.email,
        action=row.action,
        success=bool(row.success),
        address=row.address,
        device=row.device,
        detail=row.detail,
        created_at=from_iso(row.created_at),
    )


def _row_to_stats(row) -> AccountStats:
    return AccountStats(
        email=row.email,
        login_count=row.login_count,
        total_minutes=row.total_minutes,
        longest_minutes=row.longest_minutes,
        average_minutes=row.average_minutes,
        updated_at=from_iso(row.updated_at),
    )
