#!/usr/bin/env python3
"""
Identity service operator CLI.

Runs against the same database and settings as the API (DATABASE_URL,
SECRET_KEY or DEBUG=true, etc. from the environment or .env).

Usage:
  python main.py create-admin admin@example.com --given Ada --family Lovelace
  python main.py maintenance
  python main.py alerts
  python main.py accounts --state locked
  python main.py accounts --role Empresa --limit 20
  python main.py stats
  python main.py activity --days 14
  python main.py export --format csv > accounts.csv

create-admin is the only way to obtain an Administrator: self-registration
refuses that role. The password is read with getpass, never from argv.
"""

import argparse
import getpass
import json
import sys
from typing import Optional

from auth.exceptions import IdentityError
from auth.models import AccountView, Role, parse_role
from auth.service import AuthService, build_auth_service
from core.config import get_settings


def _fail(message: str) -> None:
    print(f"  [!] {message}", file=sys.stderr)
    sys.exit(1)


def _read_password() -> str:
    password = getpass.getpass("Password: ")
    confirm = getpass.getpass("Confirm password: ")
    if password != confirm:
        _fail("Passwords do not match.")
    return password


def _format_account(view: AccountView) -> str:
    flags = []
    if not view.active:
        flags.append("disabled")
    if not view.email_verified:
        flags.append("unverified")
    if view.locked_until is not None:
        flags.append(f"locked until {view.locked_until:%Y-%m-%d %H:%M}")
    if view.connected:
        flags.append("online")
    last = f"{view.last_login:%Y-%m-%d %H:%M}" if view.last_login else "never"
    suffix = f"  [{', '.join(flags)}]" if flags else ""
    return f"  {view.email:<40} {view.role.value:<14} logins={view.login_count:<5} last={last}{suffix}"


def cmd_create_admin(service: AuthService, args: argparse.Namespace) -> None:
    password = _read_password()
    result = service.register(
        args.email,
        password,
        args.given,
        args.family,
        company=args.company,
        role=Role.ADMINISTRATOR,
        allow_admin=True,
    )
    if not result.success:
        _fail(f"{result.code}: {result.message}")
    # The operator is present at the terminal; no verification mail round trip.
    service.store.update_account(result.account.email, email_verified=True)
    print(f"Administrator {result.account.email} created.")


def cmd_maintenance(service: AuthService, args: argparse.Namespace) -> None:
    result = service.perform_maintenance()
    if not result.success:
        _fail(result.message)
    for key, value in result.data.items():
        print(f"  {key.replace('_', ' '):<24} {value}")


def cmd_alerts(service: AuthService, args: argparse.Namespace) -> None:
    alerts = service.get_system_alerts()
    if not alerts:
        print("No alerts. All clear.")
        return
    for alert in alerts:
        print(f"  [{alert.level.upper():<7}] {alert.title}: {alert.message}")


def cmd_accounts(service: AuthService, args: argparse.Namespace) -> None:
    role: Optional[Role] = None
    if args.role:
        role = parse_role(args.role)
        if role is None:
            _fail(f"Unknown role '{args.role}'. Choose from: {', '.join(r.value for r in Role)}")
    views = service.get_accounts_status(state=args.state, role=role, order=args.order, limit=args.limit)
    if not views:
        print("No matching accounts.")
        return
    for view in views:
        print(_format_account(view))
    print(f"\n  {len(views)} account(s).")


def cmd_stats(service: AuthService, args: argparse.Namespace) -> None:
    print(json.dumps(service.general_stats(), indent=2))


def cmd_activity(service: AuthService, args: argparse.Namespace) -> None:
    rows = service.activity_stats(args.days)
    if not rows:
        print(f"No activity in the last {args.days} day(s).")
        return
    print(f"  {'date':<12} {'ok':>6} {'failed':>7} {'new':>5} {'logout':>7} {'unique':>7}")
    for row in rows:
        print(
            f"  {row['date']:<12} {row['logins_ok']:>6} {row['logins_failed']:>7} "
            f"{row['registrations']:>5} {row['logouts']:>7} {row['unique_accounts']:>7}"
        )


def cmd_export(service: AuthService, args: argparse.Namespace) -> None:
    try:
        content = service.accounts.export_accounts(args.format, state=args.state)
    except IdentityError as e:
        _fail(e.message)
    sys.stdout.write(content)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="main.py",
        description="Identity service operator CLI.",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("create-admin", help="Create a verified Administrator account.")
    p.add_argument("email")
    p.add_argument("--given", required=True, help="Given name.")
    p.add_argument("--family", required=True, help="Family name.")
    p.add_argument("--company", default=None)
    p.set_defaults(func=cmd_create_admin)

    p = sub.add_parser("maintenance", help="Sweep expired sessions/tokens and prune old logs.")
    p.set_defaults(func=cmd_maintenance)

    p = sub.add_parser("alerts", help="Show system-health alerts.")
    p.set_defaults(func=cmd_alerts)

    p = sub.add_parser("accounts", help="List accounts.")
    p.add_argument("--state", choices=["active", "disabled", "locked", "unverified", "connected"], default=None)
    p.add_argument("--role", default=None, help="Trial, Personal, Empresa or Administrator.")
    p.add_argument(
        "--order",
        choices=["created_desc", "created_asc", "email", "last_login", "connection_time"],
        default="created_desc",
    )
    p.add_argument("--limit", type=int, default=None)
    p.set_defaults(func=cmd_accounts)

    p = sub.add_parser("stats", help="Print aggregate statistics as JSON.")
    p.set_defaults(func=cmd_stats)

    p = sub.add_parser("activity", help="Per-day login and registration activity.")
    p.add_argument("--days", type=int, default=7)
    p.set_defaults(func=cmd_activity)

    p = sub.add_parser("export", help="Export accounts as JSON or CSV to stdout.")
    p.add_argument("--format", choices=["json", "csv"], default="json")
    p.add_argument("--state", choices=["active", "disabled", "locked", "unverified", "connected"], default=None)
    p.set_defaults(func=cmd_export)
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        settings = get_settings()
    except ValueError as e:
        _fail(str(e))
    service = build_auth_service(settings)
    try:
        args.func(service, args)
    finally:
        service.store.close()


if __name__ == "__main__":
    main()
