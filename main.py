#!/usr/bin/env python3
"""
SessionGuard -- access/refresh token service.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  python main.py purge-expired
  python main.py purge-expired --grace-days 30
  python main.py revoke-all user@example.com

Environment variables:
  SECRET_KEY     Signing key for access tokens and refresh-token hashes (>= 32 chars).
  DEBUG          Set to true to auto-generate SECRET_KEY for local development.
  DATABASE_URL   SQLAlchemy URL of the auth database.
"""

import argparse
import os
from typing import Optional

from auth.store import RefreshTokenStore, UserStore, create_store_engine
from core.config import get_settings


def _serve(args: argparse.Namespace) -> int:
    """Run the API. --database-url is handed to the app through DATABASE_URL."""
    import uvicorn

    # The reloader child re-reads the environment; the in-process app reads the
    # settings cache, so both need the override.
    os.environ["DATABASE_URL"] = args.database_url
    get_settings.cache_clear()
    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _purge_expired(args: argparse.Namespace) -> int:
    """Delete refresh-token rows that expired or were revoked before the grace window."""
    engine = create_store_engine(args.database_url)
    try:
        removed = RefreshTokenStore(engine).purge_expired(grace_seconds=args.grace_days * 24 * 60 * 60)
    finally:
        engine.dispose()
    print(f"  Purged {removed} expired or revoked refresh token(s).")
    return 0


def _revoke_all(args: argparse.Namespace) -> int:
    """Operator-side logout-all for one account, looked up by email."""
    engine = create_store_engine(args.database_url)
    try:
        user = UserStore(engine).get_by_email(args.email)
        if user is None:
            print(f"  [!] No account found for '{args.email}'.")
            return 1
        revoked = RefreshTokenStore(engine).revoke_all(user.id)
    finally:
        engine.dispose()
    print(f"  Revoked {revoked} session(s) for {user.email}.")
    print("  Access tokens already issued stay valid until they expire.")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog="sessionguard",
        description="Issue, rotate and revoke access/refresh tokens.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py purge-expired --grace-days 7
  python main.py revoke-all user@example.com
        """,
    )
    parser.add_argument(
        "--database-url",
        default=settings.database_url,
        metavar="URL",
        help="SQLAlchemy database URL (default: DATABASE_URL or the bundled SQLite file)",
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = commands.add_parser("serve", help="Run the HTTP API under uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")
    serve.set_defaults(handler=_serve)

    purge = commands.add_parser("purge-expired", help="Delete expired and revoked refresh tokens")
    purge.add_argument(
        "--grace-days",
        type=int,
        default=0,
        metavar="DAYS",
        help="Keep rows that expired or were revoked within the last DAYS days (default: 0)",
    )
    purge.set_defaults(handler=_purge_expired)

    revoke = commands.add_parser("revoke-all", help="Log an account out of every session")
    revoke.add_argument("email", help="Email address of the account")
    revoke.set_defaults(handler=_revoke_all)

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0
    return args.handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
