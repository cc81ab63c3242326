"""
Secret Keeper CLI: entry point for all operations.

Usage:
    keeper migrate          # Create the vaults / vault_events tables
    keeper serve            # Start the daemon (bot + scheduler + web app)
    keeper reconcile        # Run one reconciliation sweep now
    keeper list             # Print every vault (id, status, owner contact)
    keeper version          # Show version
"""

from __future__ import annotations

import argparse
import asyncio
import sys


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="keeper",
        description="Secret Keeper: dead-man's-switch document escrow.",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")

    subparsers = parser.add_subparsers(dest="command")

    # migrate
    migrate_parser = subparsers.add_parser("migrate", help="Create database tables")
    migrate_parser.add_argument(
        "--dry-run", action="store_true", help="Print SQL without executing"
    )

    # serve
    subparsers.add_parser("serve", help="Start the daemon")

    # reconcile
    subparsers.add_parser("reconcile", help="Run one reconciliation sweep now")

    # list
    list_parser = subparsers.add_parser("list", help="List every vault")
    list_parser.add_argument("--status", choices=["ACTIVE", "DEACTIVATED", "ACTIVATED"])

    # version
    subparsers.add_parser("version", help="Show version")

    args = parser.parse_args(argv)

    if args.version or args.command == "version":
        from keeper import __version__

        print(f"keeper {__version__}")
        return 0

    if args.command == "migrate":
        return _cmd_migrate(args)
    elif args.command == "serve":
        return _cmd_serve()
    elif args.command == "reconcile":
        return _cmd_reconcile()
    elif args.command == "list":
        return _cmd_list(args)
    else:
        parser.print_help()
        return 0


def _cmd_migrate(args: argparse.Namespace) -> int:
    from keeper.vault.dal import SCHEMA_SQL, apply_schema

    if args.dry_run:
        print("-- Dry run: the following SQL would be executed --")
        print(SCHEMA_SQL)
        return 0

    from keeper.config import get_config
    from keeper.errors import StoreUnavailableError

    cfg = get_config().db
    print(f"Connecting to {cfg.host or 'local socket'}:{cfg.port}/{cfg.name}...")
    try:
        apply_schema()
    except StoreUnavailableError as e:
        print(f"Error: {e}")
        print("Check KEEPER_DB_* environment variables and ensure PostgreSQL is running.")
        return 1
    print("Migration completed successfully.")
    return 0


def _cmd_serve() -> int:
    from keeper.engine.daemon import run

    run()
    return 0


def _cmd_reconcile() -> int:
    from keeper.config import get_config
    from keeper.engine.daemon import build_engine, configure_logging
    from keeper.engine.dedup import RECONCILE_KEY, run_exclusive
    from keeper.errors import StoreUnavailableError

    configure_logging()
    config = get_config()
    components = build_engine(config)

    async def _sweep():
        try:
            return await run_exclusive(RECONCILE_KEY, components.engine.reconcile)
        finally:
            if components.drive is not None:
                await components.drive.close()

    try:
        ran, report = asyncio.run(_sweep())
    except StoreUnavailableError as e:
        print(f"Error: {e}")
        return 1

    if not ran or report is None:
        print("Reconciliation already running.")
        return 1
    print(
        f"Scanned {report.scanned}: {report.reminded} reminded, "
        f"{report.activated} activated, {report.owner_notified} owner notified, "
        f"{report.errors} error(s)"
    )
    return 1 if report.errors else 0


def _cmd_list(args: argparse.Namespace) -> int:
    from keeper.errors import StoreUnavailableError
    from keeper.vault.dal import PostgresVaultStore

    try:
        vaults = PostgresVaultStore().scan_all()
    except StoreUnavailableError as e:
        print(f"Error: {e}")
        return 1

    if args.status:
        vaults = [v for v in vaults if v.status.value == args.status]
    if not vaults:
        print("No vaults.")
        return 0

    print(f"{'VAULT ID':<44} {'STATUS':<12} {'OWNER CONTACT':<20} LAST CHECK-IN")
    for v in vaults:
        print(
            f"{v.id:<44} {v.status.value:<12} {v.owner_contact_ref or '-':<20} "
            f"{v.last_checkin_at:%Y-%m-%d %H:%M}"
        )
    print(f"\n{len(vaults)} vault(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
