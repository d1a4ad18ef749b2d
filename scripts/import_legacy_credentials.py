#!/usr/bin/env python3
"""Import legacy administrator credentials into the BallotVault database.

Usage:
    python scripts/import_legacy_credentials.py --credentials database_admins.txt \
        --salts database_admin_salts.txt --bootstrap

    # Only make sure a super account exists:
    python scripts/import_legacy_credentials.py --bootstrap

Both legacy files are copied to timestamped backups before anything is
written. Re-running is safe: accounts that already exist are skipped.

Environment Variables:
    BALLOTVAULT_PATHS__DATA_DIR: Directory holding ballotvault.db
    BALLOTVAULT_LOGGING__LEVEL: Log level (default INFO)
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

from ballotvault.core.config import BallotVaultConfig
from ballotvault.core.logging import configure_root_logger
from ballotvault.db import StorageUnavailableError
from ballotvault.services import build_services


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Import legacy administrator credentials",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--credentials",
        type=Path,
        help="Legacy id:name:digest:role file",
    )
    parser.add_argument(
        "--salts",
        type=Path,
        help="Legacy id:salt file",
    )
    parser.add_argument(
        "--backup-dir",
        type=Path,
        help="Where to copy the legacy files first (default: the data directory's backups/)",
    )
    parser.add_argument(
        "--database",
        type=Path,
        help="SQLite database path (default: from configuration)",
    )
    parser.add_argument(
        "--bootstrap",
        action="store_true",
        help="Create the default super account if none is active",
    )

    args = parser.parse_args(argv)

    if not args.credentials and not args.bootstrap:
        parser.error("nothing to do: pass --credentials and/or --bootstrap")

    config = BallotVaultConfig.load()
    configure_root_logger(config.paths.log_dir if args.database is None else None, config.logging)

    try:
        services = build_services(config, database_path=args.database)

        if args.credentials:
            backup_dir = args.backup_dir or config.paths.legacy_backup_dir
            imported = services.importer.import_legacy_files(
                args.credentials, args.salts, backup_dir=backup_dir,
            )
            print(f"Imported {imported} account(s) from {args.credentials}")

        if args.bootstrap:
            result = services.auth.bootstrap_default_super_account()
            if not result:
                print(f"Error: {result.message}")
                return 1
            if result.value:
                print("\nDefault super account created!")
                print(f"  Account ID: {result.value['account_id']}")
                print(f"  Password:   {result.value['password']}")
                print("  The password must be changed at first login.")
            else:
                print("\nNo changes needed - an active super account exists.")

    except FileNotFoundError as e:
        print(f"Error: {e}")
        return 1
    except StorageUnavailableError as e:
        print(f"Error: database unavailable: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
