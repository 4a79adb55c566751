"""
tests/test_validator.py -- Unit tests for auth/validator.py.

Pure functions: no database, no clock, no network (deliverability off).
"""

from __future__ import annotations

import unicodedata

import pytest

from auth.exceptions import ValidationError
from auth.models import Role
from auth.validator import (
    CredentialValidator,
    is_token_shaped,
    password_strength,
    password_suggestions,
    sanitize_email,
    sanitize_string,
)


@pytest.fixture
def validator() -> CredentialValidator:
    return CredentialValidator(check_deliverability=False)


class TestEmail:
    def test_normalizes_case_and_whitespace(self, validator: CredentialValidator) -> None:
        assert validator.validate_email("  Ana.Lopez@Example.COM ") == "ana.lopez@example.com"

    @pytest.mark.parametrize("email", ["", "   ", None, "not-an-email", "a@@b.com", "ana@"])
    def test_rejects_malformed(self, validator: CredentialValidator, email) -> None:
        with pytest.raises(ValidationError) as exc:
            validator.validate_email(email)
        assert exc.value.field == "email"
        assert exc.value.code == "INVALID_INPUT"

    def test_rejects_disposable_domain(self, validator: CredentialValidator) -> None:
        with pytest.raises(ValidationError, match="Disposable"):
            validator.validate_email("someone@mailinator.com")

    def test_rejects_overlong_address(self, validator: CredentialValidator) -> None:
        with pytest.raises(ValidationError):
            validator.validate_email("a" * 250 + "@b.com")

    def test_format_check_skips_policy(self, validator: CredentialValidator) -> None:
        # Lookups must still find accounts on domains that are later blocked.
        assert validator.check_email_format("Someone@Mailinator.com") == "someone@mailinator.com"

    def test_lookup_and_registration_share_one_form(self, validator: CredentialValidator) -> None:
        decomposed = unicodedata.normalize("NFD", " Jos\u00e9@Example.com ")
        registered = validator.validate_email(decomposed)
        assert registered == "jos\u00e9@example.com"
        assert validator.check_email_format(decomposed) == registered
        assert sanitize_email(decomposed) == registered


class TestPassword:
    def test_accepts_reasonable_password(self, validator: CredentialValidator) -> None:
        assert validator.validate_password("Passw0rd1") == "Passw0rd1"

    def test_password_is_not_sanitized(self, validator: CredentialValidator) -> None:
        assert validator.validate_password("  <Tr1cky> ") == "  <Tr1cky> "

    @pytest.mark.parametrize(
        "password",
        ["", None, "Sh0rt", "x" * 129],
    )
    def test_rejects_bad_length(self, validator: CredentialValidator, password) -> None:
        with pytest.raises(ValidationError) as exc:
            validator.validate_password(password)
        assert exc.value.field == "password"

    @pytest.mark.parametrize("password", ["password", "MyPassword99", "qwerty#2024", "xx123456xx"])
    def test_rejects_common_passwords_as_substring(self, validator: CredentialValidator, password) -> None:
        with pytest.raises(ValidationError, match="too common"):
            validator.validate_password(password)

    @pytest.mark.parametrize("password", ["onlyletters", "98765432101"])
    def test_rejects_single_character_class(self, validator: CredentialValidator, password) -> None:
        with pytest.raises(ValidationError, match="mix"):
            validator.validate_password(password)

    def test_strong_mode_requires_mixed_case_and_digit(self) -> None:
        strict = CredentialValidator(require_strong=True, check_deliverability=False)
        with pytest.raises(ValidationError):
            strict.validate_password("lowercase-only-9")
        assert strict.validate_password("Mixed-Case-9") == "Mixed-Case-9"

    def test_field_name_is_carried(self, validator: CredentialValidator) -> None:
        with pytest.raises(ValidationError) as exc:
            validator.validate_password("short", field="new_password")
        assert exc.value.field == "new_password"


class TestProfileFields:
    def test_name_is_trimmed_and_escaped(self, validator: CredentialValidator) -> None:
        assert validator.validate_name("  María   José ", "given_name") == "María José"
        assert validator.validate_name("O'Brien", "family_name") == "O&#x27;Brien"

    @pytest.mark.parametrize("name", ["A", "x" * 51, "Ana<script>", "---", "R2D2"])
    def test_name_rejects(self, validator: CredentialValidator, name: str) -> None:
        with pytest.raises(ValidationError) as exc:
            validator.validate_name(name, "family_name")
        assert exc.value.field == "family_name"

    def test_optional_fields_blank_to_none(self, validator: CredentialValidator) -> None:
        assert validator.validate_company("   ") is None
        assert validator.validate_phone(None) is None

    def test_company_and_phone(self, validator: CredentialValidator) -> None:
        assert validator.validate_company("Acme & Sons, S.A.") == "Acme &amp; Sons, S.A."
        assert validator.validate_phone("+34 600-123-456") == "+34 600-123-456"
        with pytest.raises(ValidationError):
            validator.validate_phone("call me maybe")
        with pytest.raises(ValidationError):
            validator.validate_company("=HYPERLINK()")

    def test_role_defaults_to_trial(self, validator: CredentialValidator) -> None:
        assert validator.validate_role(None) == Role.TRIAL
        assert validator.validate_role("") == Role.TRIAL
        assert validator.validate_role("Empresa") == Role.EMPRESA
        with pytest.raises(ValidationError):
            validator.validate_role("root")


class TestRegistrationAndTokens:
    def test_first_failure_wins(self, validator: CredentialValidator) -> None:
        with pytest.raises(ValidationError) as exc:
            validator.validate_registration("bad", "short", "", "")
        assert exc.value.field == "email"

    def test_complete_registration(self, validator: CredentialValidator) -> None:
        data = validator.validate_registration(
            "A@B.com", "Passw0rd1", "Ana", "Lopez", company="Acme", phone=None, role="Personal"
        )
        assert data.email == "a@b.com"
        assert data.role == Role.PERSONAL
        assert data.company == "Acme"
        assert data.phone is None

    def test_login_requires_password(self, validator: CredentialValidator) -> None:
        with pytest.raises(ValidationError) as exc:
            validator.validate_login("a@b.com", "")
        assert exc.value.field == "password"

    def test_token_shape(self, validator: CredentialValidator) -> None:
        good = "ab" * 32
        assert is_token_shaped(good)
        assert validator.validate_token(good.upper()) == good
        for bad in (None, "", "ab" * 31, "zz" * 32, good + "0"):
            with pytest.raises(ValidationError) as exc:
                validator.validate_token(bad)
            assert exc.value.code == "INVALID_TOKEN"


class TestScoring:
    def test_sanitize_string_strips_controls(self) -> None:
        assert sanitize_string("a\x00b\x07c") == "abc"

    def test_strength_is_bounded_and_monotonic(self) -> None:
        assert password_strength("") == 0
        assert password_strength("password") == 0
        weak = password_strength("abcdefgh")
        strong = password_strength("Correct-Horse-Battery-9")
        assert 0 < weak < strong <= 100

    def test_repeats_are_penalized(self) -> None:
        assert password_strength("Aaaa-1234-xyz") < password_strength("Abcd-1234-xyz")

    def test_suggestions(self) -> None:
        assert password_suggestions("Correct-Horse-9") == []
        suggestions = password_suggestions("abc")
        assert "Use at least 8 characters" in suggestions
        assert "Include uppercase letters" in suggestions
        assert "Include numbers" in suggestions
