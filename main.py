#!/usr/bin/env python3
"""
Piscicola Admin -- operator CLI for the fish-farm administration backend.

Usage:
  python main.py init-db
  python main.py create-user --name "Ana Torres" --email ana@granja.pe --role SUPERADMIN
  python main.py create-user --name "Luis" --email luis@granja.pe --password s3creto

The HTTP API itself runs under uvicorn:
  uvicorn api.main:app --host 0.0.0.0 --port 8000

Environment variables (see core/config.py):
  DATABASE_URL  SQLAlchemy URL. Defaults to piscicola.db next to this file.
  SECRET_KEY    Required unless DEBUG=true.
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from core.database import create_db_engine
from core.errors import AppError

# Imported for their side effect: registering tables on the shared metadata.
import approvals.store  # noqa: F401
import farm.store  # noqa: F401

MIN_PASSWORD_LENGTH = 6


def _read_password(given: Optional[str]) -> Optional[str]:
    """Return the password from --password or an interactive prompt (asked twice)."""
    if given:
        return given
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return None
    return first


def cmd_init_db(store: UserStore) -> int:
    print(f"  Schema ready at {store.engine.url.render_as_string(hide_password=True)}")
    if not store.has_users():
        print("  No users yet. Create the first one with:")
        print('    python main.py create-user --name "..." --email ... --role SUPERADMIN')
    return 0


def cmd_create_user(store: UserStore, args: argparse.Namespace) -> int:
    password = _read_password(args.password)
    if password is None:
        return 1
    if len(password) < MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {MIN_PASSWORD_LENGTH} characters.")
        return 1
    user = User(
        name=args.name,
        email=args.email.strip().lower(),
        role=Role(args.role),
        hashed_password=hash_password(password),
    )
    try:
        user_id = store.create_user(user)
    except AppError as exc:
        print(f"  [!] {exc.msg}")
        return 1
    print(f"  Created {user.role.value} {user.email} (id {user_id}).")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="piscicola-admin",
        description="Administration commands for the fish-farm backend.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init-db
  python main.py create-user --name "Ana Torres" --email ana@granja.pe --role SUPERADMIN
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.add_parser("init-db", help="Create every table that does not exist yet")
    create = sub.add_parser("create-user", help="Create a user (prompts for the password)")
    create.add_argument("--name", required=True, help="Display name")
    create.add_argument("--email", required=True, help="Login email (stored lowercased)")
    create.add_argument(
        "--role",
        choices=[r.value for r in Role],
        default=Role.OPERADOR.value,
        help="SUPERADMIN or OPERADOR (default: OPERADOR)",
    )
    create.add_argument("--password", help="Password; omit to be prompted")
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    engine = create_db_engine(get_settings().database_url)
    store = UserStore(engine)
    try:
        if args.command == "init-db":
            return cmd_init_db(store)
        return cmd_create_user(store, args)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
