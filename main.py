#!/usr/bin/env python3
"""
setu-auth -- out-of-band account administration.

Admin accounts cannot be self-registered and mentors wait for approval, so an
operator needs a path that does not go through the public API.

Usage:
  python main.py create-admin --email admin@example.com --name "Ada Admin"
  python main.py set-status --email mentor@example.com --status ACTIVE
  python main.py set-status --email spam@example.com --status DELETED

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the auth database (see core/config.py).
"""

from __future__ import annotations

import argparse
import getpass
import sys
from datetime import datetime, timezone

from auth.models import Account, AccountStatus, Role, TokenKind
from auth.passwords import hash_password, validate_password_strength
from auth.service import FULL_NAME_MAX_LEN, FULL_NAME_MIN_LEN, is_valid_email, normalize_email
from auth.store import AuthStore
from core.config import get_settings


def create_admin(store: AuthStore, email: str, full_name: str, password: str) -> int:
    """Create an ACTIVE admin account. Returns a process exit code."""
    email = normalize_email(email)
    full_name = full_name.strip()
    if not is_valid_email(email):
        print("Invalid email address.", file=sys.stderr)
        return 1
    if not FULL_NAME_MIN_LEN <= len(full_name) <= FULL_NAME_MAX_LEN:
        print(f"Full name must be {FULL_NAME_MIN_LEN}-{FULL_NAME_MAX_LEN} characters.", file=sys.stderr)
        return 1
    strength = validate_password_strength(password)
    if not strength.is_valid:
        for err in strength.errors:
            print(f"  [!] {err}", file=sys.stderr)
        return 1
    if store.get_account_by_email(email) is not None:
        print(f"Account '{email}' already exists.", file=sys.stderr)
        return 1

    account_id = store.create_account(
        Account(
            email=email,
            full_name=full_name,
            password_hash=hash_password(password),
            role=Role.ADMIN,
            status=AccountStatus.ACTIVE,
            email_verified=True,
        )
    )
    print(f"Created admin '{email}' ({account_id}).")
    return 0


def set_status(store: AuthStore, email: str, status: AccountStatus) -> int:
    """Move an account to status. DELETED soft-deletes and signs out every session."""
    email = normalize_email(email)
    account = store.get_account_by_email(email)
    if account is None:
        print(f"No live account for '{email}'.", file=sys.stderr)
        return 1
    now = datetime.now(timezone.utc)
    store.update_status(account.id, status, now=now)
    if status is AccountStatus.DELETED:
        revoked = store.revoke_tokens(account.id, TokenKind.REFRESH, now)
        print(f"Revoked {revoked} refresh token(s).")
    print(f"'{email}': {account.status.value} -> {status.value}")
    return 0


def _read_password() -> str | None:
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Confirm password: "):
        print("Passwords do not match.", file=sys.stderr)
        return None
    return password


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="setu-auth",
        description="Administer setu-auth accounts outside the public API.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-admin", help="Create an ACTIVE admin account (password prompted)")
    create.add_argument("--email", required=True)
    create.add_argument("--name", required=True, help="Full name")

    status = sub.add_parser("set-status", help="Approve, suspend or soft-delete an account")
    status.add_argument("--email", required=True)
    status.add_argument(
        "--status",
        required=True,
        choices=[s.value for s in AccountStatus],
        metavar="STATUS",
        help=", ".join(s.value for s in AccountStatus),
    )

    args = parser.parse_args(argv)
    store = AuthStore(get_settings().database_url)
    try:
        if args.command == "create-admin":
            password = _read_password()
            if password is None:
                return 1
            return create_admin(store, args.email, args.name, password)
        return set_status(store, args.email, AccountStatus(args.status))
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
