"""
Brokerlink CLI — operator entry point.

Usage:
    brokerlink version                  # Show version
    brokerlink keygen                   # Print a fresh ENCRYPTION_KEY
    brokerlink check-key                # Validate ENCRYPTION_KEY in the environment
    brokerlink budget                   # Alpha Vantage daily budget for this process
    brokerlink migrate [--dry-run]      # Create the user_connections table
    brokerlink status iol <owner-id>    # Stored connection state for one owner
"""

from __future__ import annotations

import argparse
import logging
import os


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="brokerlink",
        description="Brokerlink — brokerage credential vault and session-aware API clients.",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("version", help="Show version")
    subparsers.add_parser("keygen", help="Generate a 256-bit encryption key (64 hex chars)")
    subparsers.add_parser("check-key", help="Validate ENCRYPTION_KEY")
    subparsers.add_parser("budget", help="Show the metered market-data budget")

    migrate_parser = subparsers.add_parser("migrate", help="Run database migrations")
    migrate_parser.add_argument("--dry-run", action="store_true", help="Print SQL without executing")

    status_parser = subparsers.add_parser("status", help="Show a stored connection's state")
    status_parser.add_argument("provider", help="Provider id (iol, ppi)")
    status_parser.add_argument("owner", help="Owner (user) id")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.version or args.command == "version":
        from brokerlink import __version__

        print(f"brokerlink {__version__}")
        return 0

    if args.command == "keygen":
        return _cmd_keygen()
    elif args.command == "check-key":
        return _cmd_check_key()
    elif args.command == "budget":
        return _cmd_budget()
    elif args.command == "migrate":
        return _cmd_migrate(args)
    elif args.command == "status":
        return _cmd_status(args)
    else:
        parser.print_help()
        return 0


def _cmd_keygen() -> int:
    from brokerlink.vault.crypto import generate_key

    print(generate_key())
    return 0


def _cmd_check_key() -> int:
    from brokerlink.errors import ConfigurationError
    from brokerlink.vault.crypto import KEY_ENV_VAR, CredentialVault, parse_key

    try:
        parse_key(os.environ.get(KEY_ENV_VAR))
        vault = CredentialVault()
        if vault.decrypt(vault.encrypt("ok")) != b"ok":
            print("Error: encryption round trip failed")
            return 1
    except ConfigurationError as e:
        print(f"Error: {e}")
        print("Generate one with: brokerlink keygen")
        return 1
    print(f"{KEY_ENV_VAR} is valid.")
    return 0


def _cmd_budget() -> int:
    from brokerlink.market.alphavantage import AlphaVantageClient

    av = AlphaVantageClient()
    status = av.budget_status()
    print(f"Alpha Vantage:  {'configured' if av.enabled else 'no API key (ALPHAVANTAGE_API_KEY)'}")
    print(f"  used:       {status.used}/{status.limit}")
    print(f"  remaining:  {status.remaining}")
    if status.is_exhausted:
        print("  EXHAUSTED — calls skipped until the next UTC day")
    elif status.is_warning:
        print("  WARNING — budget running low")
    return 0


def _find_migration_sql() -> str | None:
    """Find the migration SQL file bundled with the package."""
    from pathlib import Path

    bundled = Path(__file__).parent / "migrations" / "001_user_connections.sql"
    if bundled.exists():
        return bundled.read_text()
    return None


def _cmd_migrate(args: argparse.Namespace) -> int:
    sql = _find_migration_sql()
    if sql is None:
        print("Error: Migration SQL not found.")
        return 1

    if args.dry_run:
        print("-- Dry run: the following SQL would be executed --")
        print(sql)
        return 0

    import psycopg2

    from brokerlink.config import get_config

    cfg = get_config().db
    try:
        print(f"Connecting to {cfg.host or 'localhost'}:{cfg.port}/{cfg.name}...")
        conn = psycopg2.connect(**cfg.dict, connect_timeout=5)
        conn.autocommit = True
        try:
            with conn.cursor() as cur:
                cur.execute(sql)
        finally:
            conn.close()
    except psycopg2.Error as e:
        print(f"Error: Migration failed: {e}")
        print("Check BROKERLINK_DB_* environment variables and ensure PostgreSQL is running.")
        return 1
    print("Migration completed successfully.")
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    import psycopg2

    from brokerlink.connections import ConnectionService
    from brokerlink.errors import BrokerlinkError

    try:
        state = ConnectionService().status(args.provider, args.owner)
    except (BrokerlinkError, psycopg2.Error) as e:
        print(f"Error: {e}")
        return 1
    print(f"{args.provider.lower()} / {args.owner}: {state}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
