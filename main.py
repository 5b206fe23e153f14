#!/usr/bin/env python3
"""
PassGate -- Administrative command line for the PassGate auth service.

Usage:
  python main.py create-admin --email ops@example.com --name "Ops"
  python main.py create-admin --email ops@example.com --name "Ops" --password 's3cret!' --force
  python main.py list-users
  python main.py purge

Environment variables:
  AUTH_DB_URL   SQLAlchemy URL of the auth database. Defaults to auth/passgate_auth.db.
  SECRET_KEY    Required unless DEBUG=true (read through core.config).
"""

import argparse
import getpass
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.otp import OtpLedger
from auth.sessions import SessionRegistry
from auth.store import DEFAULT_DB_URL, UserStore
from auth.tokens import hash_password
from core.config import get_settings

_MIN_PASSWORD = 6
_MAX_PASSWORD = 64


def _resolve_db_url(explicit: Optional[str]) -> str:
    return explicit or get_settings().auth_db_url or DEFAULT_DB_URL


def _prompt_password() -> Optional[str]:
    """Prompt twice without echo. Returns None if the entries differ."""
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Confirm password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return None
    return first


def cmd_create_admin(args: argparse.Namespace) -> int:
    password = args.password if args.password is not None else _prompt_password()
    if password is None:
        return 1
    if not _MIN_PASSWORD <= len(password) <= _MAX_PASSWORD:
        print(f"  [!] Password must be {_MIN_PASSWORD}-{_MAX_PASSWORD} characters.")
        return 1

    store = UserStore(_resolve_db_url(args.db_url))
    try:
        candidate = User(
            id="",
            email=args.email,
            name=args.name,
            role="admin",
            password_hash=hash_password(password),
        )
        try:
            admin = store.create(candidate) if args.force else store.create_first_admin(candidate)
        except IntegrityError:
            print(f"  [!] An account with email '{args.email}' already exists.")
            return 1
        if admin is None:
            print("  [!] An admin account already exists. Use --force to add another.")
            return 1
        print(f"  Admin created: {admin.email} (id {admin.id})")
        return 0
    finally:
        store.close()


def cmd_list_users(args: argparse.Namespace) -> int:
    store = UserStore(_resolve_db_url(args.db_url))
    try:
        users = store.list_all()
    finally:
        store.close()
    if not users:
        print("  No users.")
        return 0
    for user in users:
        print(f"  {user.id}  {user.email:<40} {user.role}")
    print(f"\n  {len(users)} user(s).")
    return 0


def cmd_purge(args: argparse.Namespace) -> int:
    settings = get_settings()
    db_url = _resolve_db_url(args.db_url)
    registry = SessionRegistry(db_url, ttl=timedelta(hours=settings.session_ttl_hours))
    ledger = OtpLedger(db_url, max_attempts=settings.otp_max_attempts)
    try:
        sessions = registry.purge_expired()
        otps = ledger.purge_expired()
    finally:
        registry.close()
        ledger.close()
    print(f"  Purged {sessions} expired session(s) and {otps} expired OTP record(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="passgate",
        description="Administrative commands for the PassGate auth service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --email ops@example.com --name "Ops"
  python main.py list-users
  AUTH_DB_URL=sqlite:////var/lib/passgate/auth.db python main.py purge
        """,
    )
    parser.add_argument(
        "--db-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: AUTH_DB_URL or auth/passgate_auth.db)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-admin", help="Create an admin account")
    create.add_argument("--email", required=True, help="Login email for the admin")
    create.add_argument("--name", required=True, help="Display name")
    create.add_argument(
        "--password",
        default=None,
        help="Password (prompted without echo when omitted)",
    )
    create.add_argument(
        "--force",
        action="store_true",
        help="Create the admin even if another admin already exists",
    )
    create.set_defaults(func=cmd_create_admin)

    listing = sub.add_parser("list-users", help="Print id, email and role for every user")
    listing.set_defaults(func=cmd_list_users)

    purge = sub.add_parser("purge", help="Delete expired sessions and OTP records")
    purge.set_defaults(func=cmd_purge)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 1
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
