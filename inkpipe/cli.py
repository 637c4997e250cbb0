"""Operator commands for inkpipe.

Usage::

    inkpipe-admin issue-token alice --label "alice's phone"
    inkpipe-admin revoke-token <token>

The token is printed once and never stored in clear text; hand it to the
client, which sends it as ``Authorization: Bearer <token>``.
"""

import argparse
import logging
import sys
from typing import List, Optional

from inkpipe.auth import issue_token, revoke_token
from inkpipe.config import settings
from inkpipe.database import SessionLocal, init_db
from inkpipe.utils.logging import configure_logging

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="inkpipe-admin", description="Manage inkpipe API tokens.")
    subparsers = parser.add_subparsers(dest="command")

    issue = subparsers.add_parser("issue-token", help="Create a bearer token for a user.")
    issue.add_argument("user_id", help="Owner id the token authenticates as.")
    issue.add_argument("--label", default=None, help="Free-form note, e.g. the device name.")

    revoke = subparsers.add_parser("revoke-token", help="Revoke a bearer token.")
    revoke.add_argument("token", help="The token as issued.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging(settings.log_level)

    if args.command is None:
        parser.print_help()
        return 1

    init_db()
    with SessionLocal() as db:
        if args.command == "issue-token":
            print(issue_token(db, args.user_id, label=args.label))
            return 0

        if revoke_token(db, args.token):
            print("Token revoked")
            return 0
        print("Error: unknown or already revoked token", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
