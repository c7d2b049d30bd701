#!/usr/bin/env python3
"""
Barcomp CMS -- administrative command line.

Usage:
  python main.py create-superadmin --email admin@barcomp.id --full-name "Super Admin"
  python main.py create-superadmin --email admin@barcomp.id --full-name "Super Admin" --username root
  python main.py purge-sessions

create-superadmin prompts for the password unless --password is given.
It is idempotent on email: an existing account is reported, never modified.

Environment variables:
  SECRET_KEY    Signing key (required unless DEBUG=true).
  DATABASE_URL  SQLAlchemy URL of the auth database. Defaults to ./barcomp.db.
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.models import Role, User, UserStatus
from auth.passwords import MAX_PASSWORD_BYTES, hash_password, password_too_long
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import Settings, get_settings

_MIN_PASSWORD_LENGTH = 8


def create_superadmin(
    store: UserStore,
    email: str,
    password: str,
    full_name: str,
    username: Optional[str] = None,
) -> tuple[int, bool]:
    """Create a super admin unless the email is already registered.

    Returns (user_id, created).
    """
    existing = store.get_by_email(email)
    if existing is not None:
        return existing.id, False
    user_id = store.create_user(
        User(
            email=email,
            username=username,
            full_name=full_name,
            hashed_password=hash_password(password),
            role=Role.SUPER_ADMIN,
            status=UserStatus.ACTIVE,
            email_verified=True,
        )
    )
    return user_id, True


def _cmd_create_superadmin(args: argparse.Namespace, settings: Settings) -> int:
    password = args.password or getpass.getpass("Password: ")
    if len(password) < _MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
        return 1
    if password_too_long(password):
        print(f"  [!] Password must be at most {MAX_PASSWORD_BYTES} bytes.")
        return 1

    store = UserStore(settings.database_url)
    try:
        user_id, created = create_superadmin(store, args.email, password, args.full_name, args.username)
    finally:
        store.close()

    if created:
        print(f"  Super admin created: {args.email.strip().lower()} (id {user_id})")
    else:
        print(f"  [!] A user with email {args.email.strip().lower()} already exists (id {user_id}). Nothing changed.")
    return 0


def _cmd_purge_sessions(args: argparse.Namespace, settings: Settings) -> int:
    sessions = SessionStore(settings.database_url, settings.secret_key)
    try:
        removed = sessions.purge_expired()
    finally:
        sessions.close()
    print(f"  Purged {removed} expired session(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="barcomp", description="Barcomp CMS administration")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-superadmin", help="Create the first super admin account")
    create.add_argument("--email", required=True)
    create.add_argument("--full-name", required=True, dest="full_name")
    create.add_argument("--username", default=None)
    create.add_argument("--password", default=None, help="Omit to be prompted (keeps it out of shell history)")
    create.set_defaults(func=_cmd_create_superadmin)

    purge = sub.add_parser("purge-sessions", help="Delete expired login sessions")
    purge.set_defaults(func=_cmd_purge_sessions)

    return parser


def main(argv: Optional[list[str]] = None, settings: Optional[Settings] = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args, settings or get_settings())


if __name__ == "__main__":
    sys.exit(main())
