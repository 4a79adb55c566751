"""
auth/tokens.py -- Password hashing, opaque token generation and digest helpers.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). The _DUMMY_HASH
       constant enables timing equalization in the login flow so response
       time does not reveal whether an email is registered.

  Session and one-time tokens: secrets.token_hex(32) gives 256 bits of
       entropy as 64 lowercase hex characters. Only HMAC-SHA256(SECRET_KEY,
       raw) is persisted; a stolen database cannot be replayed as cookies or
       reset links without also knowing SECRET_KEY. The digest is
       deterministic, so lookup is a primary-key hit. bcrypt's intentional
       slowness is unnecessary for 256-bit random values.

  Logging: a raw token is never logged in full. Use token_prefix().

Layer rule: no imports from api/ or notify/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

import bcrypt

TOKEN_BYTES = 32
TOKEN_HEX_LENGTH = TOKEN_BYTES * 2

# bcrypt only looks at the first 72 bytes; bcrypt>=5 raises instead of
# truncating, so the cut is made here for both hashing and checking.
_BCRYPT_MAX_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def _password_bytes(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(_password_bytes(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(_password_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. Always call verify_password() even when the
# email is unknown.
_DUMMY_HASH: str = hash_password("identity_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run one bcrypt comparison against the dummy hash and discard the result."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Opaque tokens
# ---------------------------------------------------------------------------


def generate_token() -> str:
    """Return a new 64-character hex token (256 bits from the OS CSPRNG)."""
    return secrets.token_hex(TOKEN_BYTES)


def hash_token(raw: str, secret_key: str) -> str:
    """Return HMAC-SHA256(secret_key, raw) as a hex string."""
    return hmac.new(secret_key.encode(), raw.encode(), hashlib.sha256).hexdigest()


def token_prefix(raw: str | None) -> str:
    """Loggable stand-in for a token: its first 8 characters."""
    if not raw:
        return "<none>"
    return f"{raw[:8]}..."


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str, max_age: int, cookie_name: str, secure: bool) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="strict": never sent on cross-site requests.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the session window so both expire together.

    Call only after the session row has been committed.
    """
    response.set_cookie(
        cookie_name,
        value=token,
        httponly=True,
        samesite="strict",
        secure=secure,
        max_age=max_age,
        path="/",
    )


def clear_session_cookie(response, cookie_name: str, secure: bool) -> None:
    response.delete_cookie(cookie_name, path="/", httponly=True, samesite="strict", secure=secure)
