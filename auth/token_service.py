"""
auth/token_service.py -- Token Service: single-use, typed, expiring tokens.

Issuance supersedes: before a new token is stored, every unconsumed token of
the same type for the same account is marked used, so at most one live token
exists per (account, type).

Consumption is one conditional UPDATE in the store. The caller learns only
"here is the owner" or "invalid"; not-found, expired, already-used and
wrong-type all look the same.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.engine import Connection

from auth.exceptions import TokenError
from auth.models import OneTimeToken, TokenType
from auth.store import IdentityStore
from auth.tokens import generate_token, hash_token, token_prefix
from core.config import utc_now

logger = logging.getLogger("identity.tokens")


class TokenService:
    def __init__(
        self,
        store: IdentityStore,
        secret_key: str,
        ttls: dict[TokenType, int],
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self._secret_key = secret_key
        self._ttls = ttls
        self._clock = clock

    def issue(self, email: str, token_type: TokenType, conn: Optional[Connection] = None) -> str:
        """Create a token for email and return the raw value to send out.

        Runs in the caller's transaction when conn is given, so an account and
        its first verification token commit together.
        """
        now = self._clock()
        raw = generate_token()
        record = OneTimeToken(
            token_hash=hash_token(raw, self._secret_key),
            email=email,
            token_type=token_type,
            expires_at=now + timedelta(seconds=self._ttls[token_type]),
        )
        with self.store.transaction(conn) as c:
            superseded = self.store.invalidate_tokens(email, token_type, conn=c)
            self.store.insert_token(record, now, conn=c)
        logger.info(
            "Issued %s token %s for %s (superseded %d)", token_type.value, token_prefix(raw), email, superseded
        )
        return raw

    def consume(self, raw: str, token_type: TokenType, conn: Optional[Connection] = None) -> str:
        """Burn the token and return its owner's email.

        Raises TokenError for every kind of invalid token. Inside a caller's
        transaction a later failure rolls the burn back as well.
        """
        email = self.store.consume_token(hash_token(raw, self._secret_key), token_type, self._clock(), conn=conn)
        if email is None:
            logger.warning("Rejected %s token %s", token_type.value, token_prefix(raw))
            raise TokenError()
        logger.info("Consumed %s token %s for %s", token_type.value, token_prefix(raw), email)
        return email

    def purge_expired(self, conn: Optional[Connection] = None) -> int:
        removed = self.store.delete_expired_tokens(self._clock(), conn=conn)
        if removed:
            logger.info("Purged %d expired tokens", removed)
        return removed
