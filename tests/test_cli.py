"""
tests/test_cli.py -- Operator CLI commands against the fixture service.

Commands are called directly with a parsed Namespace so no real database or
environment is touched.
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

import main as cli
from auth.models import Role


def _run(service, *argv: str) -> None:
    args = cli.build_parser().parse_args(list(argv))
    args.func(service, args)


def test_create_admin_is_verified(service, capsys) -> None:
    with patch("main.getpass.getpass", side_effect=["Passw0rd1", "Passw0rd1"]):
        _run(service, "create-admin", "Root@Corp.com", "--given", "Ada", "--family", "Lovelace")
    assert "Administrator root@corp.com created." in capsys.readouterr().out
    account = service.store.get_account("root@corp.com")
    assert account.role == Role.ADMINISTRATOR
    assert account.email_verified
    assert service.login("root@corp.com", "Passw0rd1").success


def test_create_admin_password_mismatch(service, capsys) -> None:
    with patch("main.getpass.getpass", side_effect=["Passw0rd1", "Passw0rd2"]):
        with pytest.raises(SystemExit) as exc:
            _run(service, "create-admin", "root@corp.com", "--given", "Ada", "--family", "Lovelace")
    assert exc.value.code == 1
    assert "Passwords do not match." in capsys.readouterr().err
    assert not service.store.account_exists("root@corp.com")


def test_accounts_listing(service, make_account, capsys) -> None:
    make_account("a@b.com")
    make_account("new@b.com", verified=False)
    _run(service, "accounts", "--state", "unverified")
    out = capsys.readouterr().out
    assert "new@b.com" in out
    assert "a@b.com" not in out
    assert "[unverified]" in out


def test_accounts_unknown_role(service) -> None:
    with pytest.raises(SystemExit):
        _run(service, "accounts", "--role", "Overlord")


def test_maintenance_and_alerts(service, capsys) -> None:
    _run(service, "maintenance")
    assert "expired sessions" in capsys.readouterr().out
    _run(service, "alerts")
    assert "All clear" in capsys.readouterr().out


def test_stats_and_export(service, make_account, capsys) -> None:
    make_account("a@b.com")
    _run(service, "stats")
    assert json.loads(capsys.readouterr().out)["accounts"]["total"] == 1
    _run(service, "export", "--format", "csv")
    assert capsys.readouterr().out.startswith("email,given_name")
