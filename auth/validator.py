"""
auth/validator.py -- Credential Validator: input checks and normalization.

Pure and stateless: nothing here touches the store, the clock or the network,
except the optional MX/A deliverability lookup that email-validator performs
when check_deliverability is on.

Every validate_* method returns the sanitized value on success and raises
auth.exceptions.ValidationError(message, field) on failure. AuthService turns
that into an INVALID_INPUT result carrying the field name.

Sanitization policy: string fields are trimmed, internal whitespace is
collapsed, control characters are stripped and the result is HTML-escaped
before it reaches the store. Passwords are never sanitized; they go to bcrypt
exactly as typed.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import html
import re
import unicodedata
from dataclasses import dataclass
from typing import Optional

from email_validator import EmailNotValidError, validate_email as _check_email

from auth.exceptions import ValidationError
from auth.models import DEFAULT_ROLE, Role, parse_role
from auth.tokens import TOKEN_HEX_LENGTH

# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

EMAIL_MAX_LENGTH = 255
PASSWORD_MAX_LENGTH = 128
NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50
COMPANY_MAX_LENGTH = 255

DISPOSABLE_DOMAINS = frozenset(
    {
        "10minutemail.com",
        "guerrillamail.com",
        "mailinator.com",
        "yopmail.com",
        "tempmail.org",
        "throwaway.email",
    }
)

# Rejected on exact match or as a substring (case-insensitive).
COMMON_PASSWORDS = (
    "password",
    "123456",
    "123456789",
    "qwerty",
    "abc123",
    "password123",
    "admin",
    "letmein",
    "welcome",
    "monkey",
    "1234567890",
    "password1",
    "admin123",
)

_NAME_RE = re.compile(r"^[a-zA-ZáéíóúÁÉÍÓÚñÑüÜ\s\-'\.]+$")
_NAME_FILLER_RE = re.compile(r"^[\s\-]+$")
_COMPANY_RE = re.compile(r"^[a-zA-ZáéíóúÁÉÍÓÚñÑüÜ0-9\s\-&\.,\(\)]+$")
_PHONE_RE = re.compile(r"^\+?[0-9\s\-\(\)\.]{7,20}$")
_TOKEN_RE = re.compile(rf"^[0-9a-fA-F]{{{TOKEN_HEX_LENGTH}}}$")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_WHITESPACE_RE = re.compile(r"\s+")
_REPEAT_RE = re.compile(r"(.)\1{2,}")


# ---------------------------------------------------------------------------
# Sanitizers
# ---------------------------------------------------------------------------


def sanitize_email(email: str) -> str:
    """Lookup key for an address: NFC form, trimmed, lower-cased."""
    return unicodedata.normalize("NFC", email.strip()).lower()


def sanitize_string(value: str) -> str:
    value = _WHITESPACE_RE.sub(" ", value.strip())
    value = _CONTROL_RE.sub("", value)
    return html.escape(value, quote=True)


def is_token_shaped(token: str) -> bool:
    return _TOKEN_RE.match(token) is not None


# ---------------------------------------------------------------------------
# Password scoring
# ---------------------------------------------------------------------------


def _is_common(password: str) -> bool:
    lowered = password.lower()
    return any(common in lowered for common in COMMON_PASSWORDS)


def password_strength(password: str) -> int:
    """Score a password from 0 to 100. Advisory only; never used to reject."""
    score = 0
    length = len(password)
    if length >= 8:
        score += 25
    if length >= 12:
        score += 15
    if length >= 16:
        score += 10
    if re.search(r"[a-z]", password):
        score += 10
    if re.search(r"[A-Z]", password):
        score += 10
    if re.search(r"[0-9]", password):
        score += 10
    if re.search(r"[^a-zA-Z0-9]", password):
        score += 15
    if password.lower() in COMMON_PASSWORDS:
        score -= 50
    if _REPEAT_RE.search(password):
        score -= 20
    return max(0, min(100, score))


def password_suggestions(password: str) -> list[str]:
    suggestions = []
    if len(password) < 8:
        suggestions.append("Use at least 8 characters")
    if not re.search(r"[a-z]", password):
        suggestions.append("Include lowercase letters")
    if not re.search(r"[A-Z]", password):
        suggestions.append("Include uppercase letters")
    if not re.search(r"[0-9]", password):
        suggestions.append("Include numbers")
    if not re.search(r"[^a-zA-Z0-9]", password):
        suggestions.append("Include special characters")
    if password.lower() in COMMON_PASSWORDS:
        suggestions.append("Avoid common passwords")
    return suggestions


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------


@dataclass
class RegistrationInput:
    """Sanitized registration data, ready to persist."""

    email: str
    password: str
    given_name: str
    family_name: str
    company: Optional[str] = None
    phone: Optional[str] = None
    role: Role = DEFAULT_ROLE


class CredentialValidator:
    """Validates and normalizes registration and login input.

    Args:
        password_min_length:  Minimum password length (floor of 8 is typical).
        require_strong:       Also require upper + lower + digit.
        check_deliverability: Ask email-validator for an MX/A record lookup.
    """

    def __init__(
        self,
        password_min_length: int = 8,
        require_strong: bool = False,
        check_deliverability: bool = True,
    ) -> None:
        self.password_min_length = password_min_length
        self.require_strong = require_strong
        self.check_deliverability = check_deliverability

    def validate_email(self, email: Optional[str]) -> str:
        if not email or not email.strip():
            raise ValidationError("Email is required", field="email")
        candidate = sanitize_email(email)
        if len(candidate) > EMAIL_MAX_LENGTH:
            raise ValidationError(f"Email must be at most {EMAIL_MAX_LENGTH} characters", field="email")
        try:
            info = _check_email(candidate, check_deliverability=self.check_deliverability)
        except EmailNotValidError as exc:
            raise ValidationError(f"Invalid email: {exc}", field="email") from exc
        normalized = info.normalized.lower()
        domain = normalized.rsplit("@", 1)[1]
        if domain in DISPOSABLE_DOMAINS:
            raise ValidationError("Disposable email addresses are not allowed", field="email")
        if "." not in domain:
            raise ValidationError("Invalid email domain", field="email")
        return normalized

    def validate_password(self, password: Optional[str], field: str = "password") -> str:
        if not password:
            raise ValidationError("Password is required", field=field)
        if len(password) < self.password_min_length:
            raise ValidationError(f"Password must be at least {self.password_min_length} characters", field=field)
        if len(password) > PASSWORD_MAX_LENGTH:
            raise ValidationError(f"Password must be at most {PASSWORD_MAX_LENGTH} characters", field=field)
        if _is_common(password):
            raise ValidationError("Password is too common. Choose a stronger one", field=field)
        if self.require_strong and not (
            re.search(r"[a-z]", password) and re.search(r"[A-Z]", password) and re.search(r"[0-9]", password)
        ):
            raise ValidationError(
                "Password must contain an uppercase letter, a lowercase letter and a digit", field=field
            )
        if password.isalpha() or password.isdigit():
            raise ValidationError("Password must mix letters with numbers or symbols", field=field)
        return password

    def validate_name(self, name: Optional[str], field: str = "given_name") -> str:
        label = field.replace("_", " ")
        if name is None or not name.strip():
            raise ValidationError(f"{label.capitalize()} is required", field=field)
        name = name.strip()
        if len(name) < NAME_MIN_LENGTH or len(name) > NAME_MAX_LENGTH:
            raise ValidationError(
                f"{label.capitalize()} must be {NAME_MIN_LENGTH}-{NAME_MAX_LENGTH} characters", field=field
            )
        if not _NAME_RE.match(name) or _NAME_FILLER_RE.match(name):
            raise ValidationError(f"{label.capitalize()} contains invalid characters", field=field)
        return sanitize_string(name)

    def validate_company(self, company: Optional[str]) -> Optional[str]:
        if company is None or not company.strip():
            return None
        company = company.strip()
        if len(company) > COMPANY_MAX_LENGTH:
            raise ValidationError(f"Company must be at most {COMPANY_MAX_LENGTH} characters", field="company")
        if not _COMPANY_RE.match(company):
            raise ValidationError("Company contains invalid characters", field="company")
        return sanitize_string(company)

    def validate_phone(self, phone: Optional[str]) -> Optional[str]:
        if phone is None or not phone.strip():
            return None
        phone = phone.strip()
        if not _PHONE_RE.match(phone):
            raise ValidationError("Invalid phone number", field="phone")
        return sanitize_string(phone)

    def validate_role(self, role: Role | str | None) -> Role:
        if role is None or role == "":
            return DEFAULT_ROLE
        parsed = parse_role(role)
        if parsed is None:
            raise ValidationError("Invalid role", field="role")
        return parsed

    def validate_registration(
        self,
        email: Optional[str],
        password: Optional[str],
        given_name: Optional[str],
        family_name: Optional[str],
        company: Optional[str] = None,
        phone: Optional[str] = None,
        role: Role | str | None = None,
    ) -> RegistrationInput:
        """Run every registration rule in order; the first failure raises."""
        return RegistrationInput(
            email=self.validate_email(email),
            password=self.validate_password(password),
            given_name=self.validate_name(given_name, "given_name"),
            family_name=self.validate_name(family_name, "family_name"),
            company=self.validate_company(company),
            phone=self.validate_phone(phone),
            role=self.validate_role(role),
        )

    def validate_login(self, email: Optional[str], password: Optional[str]) -> tuple[str, str]:
        """Shape check only. No deliverability lookup, no strength rules."""
        if not password:
            raise ValidationError("Password is required", field="password")
        return self.check_email_format(email), password

    def check_email_format(self, email: Optional[str]) -> str:
        """Syntax-only email check for lookups (login, reset and resend requests)."""
        if not email or not email.strip():
            raise ValidationError("Email is required", field="email")
        candidate = sanitize_email(email)
        try:
            info = _check_email(candidate, check_deliverability=False)
        except EmailNotValidError as exc:
            raise ValidationError("Invalid email format", field="email") from exc
        return info.normalized.lower()

    def validate_token(self, token: Optional[str]) -> str:
        """Reject anything that is not 64 hex characters before a store lookup."""
        if not token or not is_token_shaped(token):
            raise ValidationError("Invalid or expired token", field="token", code="INVALID_TOKEN")
        return token.lower()
