#!/usr/bin/env python3
"""
Identity operator CLI -- administrative account transitions and token introspection.

Usage:
  python main.py show 42
  python main.py block 42
  python main.py unblock 42
  python main.py require-reset 42
  python main.py peek <token>

Reads the same environment / .env as the API (DATABASE_URL, ACCESS_TOKEN_SECRET,
REFRESH_TOKEN_SECRET, ...). `peek` decodes WITHOUT verifying: it is for
looking at a token, never for deciding whether to trust it.
"""

import argparse
import json
import sys

from auth.service import IdentityService
from core.config import get_settings


def _print_result(result) -> int:
    if not result.ok:
        print(f"  [!] {result.error.code}: {result.error.message}")
        return 1
    print(json.dumps(result.value.public_view(), indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Identity operator tool.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)
    for name, help_text in (
        ("show", "Print an account (no credential hash, no code)."),
        ("block", "Move an account to BLOCKED (terminal)."),
        ("unblock", "Lift a temporary block."),
        ("require-reset", "Force an ACTIVE account to reset its password."),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("account_id", type=int)
    peek = sub.add_parser("peek", help="Decode a token without verifying it.")
    peek.add_argument("token")

    args = parser.parse_args(argv)
    service = IdentityService.from_settings(get_settings())
    try:
        if args.command == "peek":
            claims = service.tokens.peek(args.token)
            if claims is None:
                print("  [!] Not a readable token.")
                return 1
            print(f"  subject={claims.subject_id} role={claims.role} type={claims.token_type}")
            print(f"  issued={claims.issued_at.isoformat()} expires={claims.expires_at.isoformat()}")
            print(f"  expired={service.tokens.is_expired(args.token)} (unverified)")
            return 0
        actions = {
            "show": service.get_account,
            "block": service.block,
            "unblock": service.unblock,
            "require-reset": service.require_password_reset,
        }
        return _print_result(actions[args.command](args.account_id))
    finally:
        service.store.close()


if __name__ == "__main__":
    sys.exit(main())
