"""
Retention CLI for the Crime Report Kenya daemon.

Runs one-off sweeps against the report database, previews which closed
reports a sweep would remove, and seeds reports for local testing.
"""

import argparse
import asyncio
import logging
import sys
import uuid
from datetime import datetime, timedelta, timezone

from crkd.config import load_retention_config

from .models import Report, ReportStatus, format_timestamp
from .retention_sweeper import RetentionSweeper
from .sqlite_store import SQLiteDocumentStore


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def build_sweeper(args) -> RetentionSweeper:
    config = load_retention_config(args.config)
    if args.retention_hours is not None:
        config.retention_hours = args.retention_hours
    store = SQLiteDocumentStore(args.db)
    return RetentionSweeper.from_config(store, config)


async def run_sweep(args) -> int:
    """Run a single sweep and print the outcome."""
    sweeper = build_sweeper(args)
    print(f"Starting retention sweep (dry_run={args.dry_run})...")

    result = await sweeper.sweep_once(dry_run=args.dry_run)

    status_icon = "✓" if result.success else "✗"
    print(f"{status_icon} Sweep {result.sweep_id}: {result.status}")
    print(f"  Cutoff: {result.cutoff.isoformat()}")
    print(f"  Matched: {result.matched}")
    print(f"  Deleted: {result.deleted_count}")
    print(f"  Duration: {result.duration_seconds:.2f}s")
    if result.error_message:
        print(f"  Error: {result.error_message}")

    return 0 if result.success else 1


async def show_preview(args) -> int:
    """List the closed reports the next sweep would remove."""
    sweeper = build_sweeper(args)
    cutoff = sweeper.cutoff()
    reports = await sweeper.store.find_reports(ReportStatus.CLOSED, cutoff)

    print("Reports eligible for deletion")
    print("=" * 40)
    print(f"Cutoff: {cutoff.isoformat()}")
    if not reports:
        print("No closed reports are past the retention window")
        return 0

    for report in sorted(reports, key=lambda r: r.last_updated_at):
        print(f"  {report.id}  last updated {report.last_updated}")
    print(f"\nTotal: {len(reports)}")
    return 0


async def seed_report(args) -> int:
    """Insert a report with a back-dated lastUpdated."""
    store = SQLiteDocumentStore(args.db)
    last_updated = datetime.now(timezone.utc) - timedelta(hours=args.age_hours)
    report = Report(
        id=args.id or uuid.uuid4().hex[:20],
        status=ReportStatus(args.status),
        last_updated=format_timestamp(last_updated),
        fields={'title': args.title} if args.title else {}
    )
    await store.put_report(report)
    print(f"Seeded report {report.id} ({report.status.value}, lastUpdated {report.last_updated})")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Crime Report Kenya retention CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Delete closed reports older than the retention window
  crkd-retention sweep --db data/crkd.db

  # See what would be deleted without deleting anything
  crkd-retention sweep --dry-run
  crkd-retention preview

  # Seed a closed report updated two days ago
  crkd-retention seed-report --status closed --age-hours 48
        """
    )

    parser.add_argument('--config', default=None,
                        help='Path to retention configuration file')
    parser.add_argument('--db', default='data/crkd.db',
                        help='Path to SQLite database file')
    parser.add_argument('--retention-hours', type=float, default=None,
                        help='Override the retention window in hours')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    sweep_parser = subparsers.add_parser('sweep', help='Run one retention sweep')
    sweep_parser.add_argument('--dry-run', action='store_true',
                              help='Count eligible reports without deleting them')

    subparsers.add_parser('preview', help='List reports eligible for deletion')

    seed_parser = subparsers.add_parser('seed-report', help='Insert a test report')
    seed_parser.add_argument('--id', default=None, help='Report id (random by default)')
    seed_parser.add_argument('--status', default='closed',
                             choices=[status.value for status in ReportStatus])
    seed_parser.add_argument('--age-hours', type=float, default=0.0,
                             help='How long ago the report was last updated')
    seed_parser.add_argument('--title', default=None)

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.verbose)

    try:
        if args.command == 'sweep':
            return asyncio.run(run_sweep(args))
        elif args.command == 'preview':
            return asyncio.run(show_preview(args))
        elif args.command == 'seed-report':
            return asyncio.run(seed_report(args))
        else:
            print(f"Unknown command: {args.command}")
            return 1

    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 1
    except Exception as e:
        print(f"Error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
