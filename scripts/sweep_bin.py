"""Purge expired bin entries and release their quota.

Meant to be run periodically by cron or any other scheduler. The quota
service is loaded from a ``module:attribute`` path naming either a
QuotaService instance or a zero-argument callable returning one.

Usage:
    uv run python scripts/sweep_bin.py postgresql+asyncpg://localhost/drive \\
        --quota myapp.quota:client
    uv run python scripts/sweep_bin.py sqlite+aiosqlite:///drive.db \\
        --quota myapp.quota:client --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import logging
import sys
from datetime import timedelta

from sqlalchemy.ext.asyncio import create_async_engine

from drivetree import DriveAsync, DriveConfig, QuotaService


def load_quota_service(path: str) -> QuotaService:
    """Resolve ``module:attribute`` to a QuotaService."""
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Expected module:attribute, got {path!r}")
    target = getattr(importlib.import_module(module_name), attribute)
    is_instance = isinstance(target, QuotaService) and not isinstance(target, type)
    service = target if is_instance else target()
    if not isinstance(service, QuotaService):
        raise TypeError(f"{path} does not provide a QuotaService")
    return service


async def run(args: argparse.Namespace) -> int:
    config = DriveConfig(bin_retention=timedelta(days=args.retention_days))
    engine = create_async_engine(args.database_url, echo=args.echo)
    async with DriveAsync(
        engine=engine, quota=load_quota_service(args.quota), config=config
    ) as drive:
        if args.dry_run:
            expired = await drive.expired_entries()
            print(f"Would purge {len(expired)} bin entries (and their descendants)")
            for entry_id in expired:
                print(f"  {entry_id}")
            return 0

        result = await drive.delete_expired_entries()
        if not result.success:
            print(f"error: {result.message}", file=sys.stderr)
            return 1
        print(result.message)
        for owner_id, size in sorted(result.reclaimed.items()):
            print(f"  user {owner_id}: {size} bytes reclaimed")
        print(f"Deleted {result.policies_deleted} orphaned share policies")

        if args.reconcile:
            reconciled = await drive.reconcile_quota()
            print(reconciled.message)
            if not reconciled.success:
                return 1
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Purge expired drive bin entries")
    parser.add_argument("database_url", help="SQLAlchemy async database URL")
    parser.add_argument(
        "--quota", required=True, help="module:attribute providing the QuotaService"
    )
    parser.add_argument(
        "--retention-days",
        type=float,
        default=DriveConfig().bin_retention.days,
        help="Grace period before binned entries are purged (default: %(default)s)",
    )
    parser.add_argument(
        "--dry-run", action="store_true", help="List what would be purged without deleting"
    )
    parser.add_argument(
        "--reconcile",
        action="store_true",
        help="Also retry quota adjustments left pending by earlier runs",
    )
    parser.add_argument("--echo", action="store_true", help="Log SQL statements")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
