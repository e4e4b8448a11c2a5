#!/usr/bin/env python3
"""
AuthKeep -- operator commands for the credential and session service.

Usage:
  python main.py init-db
  python main.py cleanup
  python main.py deactivate user@example.com
  python main.py activate user@example.com
  python main.py cleanup --database-url sqlite:////var/lib/authkeep/auth.db

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the auth database (default: ./authkeep.db).
  JWT_SECRET / JWT_REFRESH_SECRET are read through core.config like the API
  does; set DEBUG=true to run without them on a development machine.

cleanup is the scheduled garbage-collection task: it deletes expired one-time
codes and expired refresh tokens. Run it from cron when the API's in-process
purge loop is not enough (for example, several API workers sharing one DB).
"""

import argparse
import logging
import sys
from typing import Optional

from auth.db import create_auth_engine
from auth.engine import build_session_engine
from core.config import get_settings
from notify.senders import LogNotifier

logger = logging.getLogger("authkeep.cli")


def _cmd_init_db(args: argparse.Namespace) -> int:
    engine = create_auth_engine(args.database_url)
    engine.dispose()
    print(f"  Database ready at {engine.url.render_as_string(hide_password=True)}")
    return 0


def _cmd_cleanup(args: argparse.Namespace) -> int:
    db_engine = create_auth_engine(args.database_url)
    try:
        session_engine = build_session_engine(db_engine, get_settings().engine_config(), LogNotifier())
        result = session_engine.purge_expired()
    finally:
        db_engine.dispose()
    print(f"  Removed {result.codes_deleted} expired code(s) and {result.refresh_tokens_deleted} expired refresh token(s).")
    return 0


def _cmd_set_active(args: argparse.Namespace, active: bool) -> int:
    db_engine = create_auth_engine(args.database_url)
    try:
        session_engine = build_session_engine(db_engine, get_settings().engine_config(), LogNotifier())
        user = session_engine.users.find_by_email(args.email)
        if user is None:
            print(f"  [!] No user with email '{args.email}'.")
            return 1
        session_engine.users.set_active(user.id, active)
        if not active:
            # A deactivated account must not keep refreshing old sessions.
            session_engine.refresh_tokens.revoke_all(user.id)
    finally:
        db_engine.dispose()
    print(f"  User {user.email} {'activated' if active else 'deactivated'}.")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="authkeep",
        description="Operator commands for the AuthKeep credential service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init-db
  python main.py cleanup
  python main.py deactivate user@example.com
        """,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL from the environment)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log at DEBUG level",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.add_parser("init-db", help="Create the auth tables if they do not exist")
    sub.add_parser("cleanup", help="Delete expired one-time codes and refresh tokens")
    deactivate = sub.add_parser("deactivate", help="Deactivate an account and revoke its sessions")
    deactivate.add_argument("email")
    activate = sub.add_parser("activate", help="Re-activate a deactivated account")
    activate.add_argument("email")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 2

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if args.database_url is None:
        args.database_url = get_settings().database_url

    if args.command == "init-db":
        return _cmd_init_db(args)
    if args.command == "cleanup":
        return _cmd_cleanup(args)
    return _cmd_set_active(args, active=args.command == "activate")


if __name__ == "__main__":
    sys.exit(main())
