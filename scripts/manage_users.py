"""
Out-of-band account administration. Run from project root:
  python -m scripts.manage_users list
  python -m scripts.manage_users promote EMAIL [--role admin|user]
  python -m scripts.manage_users unlock EMAIL

This is how the first admin is created: register through the web UI, then
promote the account here. Every role change is written to the role_changes
audit table with actor "cli:<os user>", same as changes made on /admin.
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from auth.errors import AuthError, PersistenceError
from auth.models import ROLE_ADMIN, ROLES
from auth.service import AuthService
from auth.sessions import SessionStore
from auth.store import UserStore

logger = logging.getLogger("userportal.cli")


def _actor() -> str:
    try:
        return f"cli:{getpass.getuser()}"
    except OSError:
        return "cli:unknown"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage UserPortal accounts from the command line.")
    parser.add_argument("--db-url", default=None, help="Override DATABASE_URL")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List all accounts")

    promote = sub.add_parser("promote", help="Change an account's role (default: admin)")
    promote.add_argument("email")
    promote.add_argument("--role", default=ROLE_ADMIN, choices=list(ROLES))

    unlock = sub.add_parser("unlock", help="Clear a lockout after repeated failed logins")
    unlock.add_argument("email")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)-5s %(name)s %(message)s")
    args = _build_parser().parse_args(argv)

    users = UserStore(args.db_url)
    sessions = SessionStore(args.db_url)
    service = AuthService(users, sessions)
    try:
        if args.command == "list":
            for user in users.list_users():
                status = "locked" if user.is_locked else "active"
                print(f"{user.id}\t{user.email}\t{user.username}\t{user.role}\t{status}")
            return 0

        user = users.get_by_email(args.email.strip())
        if user is None:
            print(f"No account with email '{args.email}'.", file=sys.stderr)
            return 1

        if args.command == "promote":
            change = service.promote_user(_actor(), user.id, args.role)
            if change is None:
                print(f"'{user.email}' already has role '{args.role}'.")
            else:
                print(f"'{user.email}' is now '{change.new_role}' (was '{change.old_role}').")
            return 0

        service.unlock_user(_actor(), user.id)
        print(f"'{user.email}' unlocked.")
        return 0
    except PersistenceError as exc:
        logger.exception("Database error")
        print(f"Database error: {exc.message}", file=sys.stderr)
        return 2
    except AuthError as exc:
        print(exc.message, file=sys.stderr)
        return 1
    finally:
        sessions.close()
        users.close()


if __name__ == "__main__":
    sys.exit(main())
