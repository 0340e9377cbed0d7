#!/usr/bin/env python3
"""
Operator CLI for the signage asset database.

Commands:
  init-db     - Create the database tables
  status      - Show which assets are overdue, due, or upcoming for maintenance
  assets      - List assets with filters, sorting and paging
  export      - Export assets or categories as CSV or JSON
  import      - Import assets from a CSV or JSON file
  categories  - List asset categories with usage counts
"""

import argparse
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from tabulate import tabulate

from signage import repository
from signage.calculations import asset_maintenance_status
from signage.errors import SignageError
from signage.filters import WARRANTY_FILTERS, AssetFilter, apply_pipeline
from signage.loader import (
    export_assets_csv,
    export_assets_json,
    export_categories_csv,
    export_categories_json,
    import_assets,
)
from signage.status import MaintenanceStatus
from web.app import create_app

# =============================================================================
# Formatting helpers
# =============================================================================


def format_date(value) -> str:
    """Format a date or datetime for display."""
    if value is None:
        return "-"
    if isinstance(value, datetime) and (value.hour, value.minute) != (0, 0):
        return value.strftime("%Y-%m-%d %H:%M")
    return value.strftime("%Y-%m-%d")


def format_due_in(next_due: Optional[datetime], now: datetime) -> str:
    """Format time until due (e.g., '3mo 15d' or '-2mo 5d')."""
    if next_due is None:
        return "-"

    days = (next_due.date() - now.date()).days
    sign = "-" if days < 0 else ""
    days = abs(days)
    months = days // 30
    remaining_days = days % 30
    if months > 0:
        return f"{sign}{months}mo {remaining_days}d"
    return f"{sign}{days}d"


def truncate(text: Optional[str], max_len: int = 30) -> str:
    """Truncate text with ellipsis if too long."""
    if text is None:
        return "-"
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


# =============================================================================
# Status command
# =============================================================================


def make_status_table(assets, schedules, now: datetime) -> List[List[str]]:
    """Convert assets to maintenance status table rows."""
    rows = []
    for asset in assets:
        schedule = schedules.get(asset.maintenance_schedule_id)
        rows.append(
            [
                truncate(asset.name),
                truncate(schedule.name if schedule else None, 24),
                format_date(asset.last_maintenance_date),
                format_date(asset.next_maintenance_date),
                format_due_in(asset.next_maintenance_date, now),
            ]
        )
    return rows


def cmd_status(args):
    """Show which assets are overdue, due, or upcoming for maintenance."""
    now = datetime.now()
    schedules = {s.id: s for s in repository.list_schedules()}
    assets = repository.list_assets()
    if args.service_type:
        wanted = args.service_type.lower()
        assets = [
            a for a in assets
            if a.maintenance_schedule_id in schedules
            and schedules[a.maintenance_schedule_id].service_type.lower() == wanted
        ]

    print(f"Assets: {len(assets)}")
    print(f"Schedules: {len(schedules)}")
    print(f"As of: {now:%Y-%m-%d %H:%M}")
    print()

    grouped = {status: [] for status in MaintenanceStatus}
    for asset in assets:
        grouped[asset_maintenance_status(asset, now)].append(asset)

    headers = ["Asset", "Schedule", "Last Done", "Next Due", "Due In"]
    for status in sorted(MaintenanceStatus, key=lambda s: s.value):
        bucket = sorted(
            grouped[status],
            key=lambda a: (a.next_maintenance_date or datetime.max, a.name.lower()),
        )
        if not bucket:
            continue
        if status == MaintenanceStatus.NO_MAINTENANCE:
            if args.due_only:
                continue
            print(f"NO SCHEDULE ({len(bucket)} assets):")
            for asset in bucket:
                print(f"  {asset.name}")
            print()
            continue
        if args.due_only and not status.is_due:
            continue
        print(f"{status.label.upper()}:")
        print(tabulate(make_status_table(bucket, schedules, now), headers=headers, tablefmt="simple"))
        print()

    return 0


# =============================================================================
# Assets command
# =============================================================================


def make_asset_table(assets, now: datetime) -> List[List[str]]:
    """Convert assets to listing table rows."""
    return [
        [
            truncate(asset.name),
            truncate(asset.category.name if asset.category else None, 20),
            asset.status,
            asset.serial_number or "-",
            format_date(asset.installation_date),
            asset.warranty_status(now) or "-",
            asset_maintenance_status(asset, now).label,
        ]
        for asset in assets
    ]


def cmd_assets(args):
    """List assets with filters, sorting and paging."""
    now = datetime.now()
    try:
        flt = AssetFilter(
            query=args.query or "",
            category_id=args.category,
            location_id=args.location,
            warranty_status=args.warranty,
            maintenance_status=args.maintenance,
        )
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    page = apply_pipeline(
        repository.list_assets(),
        flt,
        now,
        sort_key=args.sort,
        direction="desc" if args.desc else "asc",
        page=args.page,
        page_size=args.page_size,
        schedules={s.id: s for s in repository.list_schedules()},
    )

    if not page.items:
        print("No assets found")
        return 0

    headers = ["Name", "Category", "Status", "Serial", "Installed", "Warranty", "Maintenance"]
    print(tabulate(make_asset_table(page.items, now), headers=headers, tablefmt="simple"))
    print()
    print(
        f"Showing {page.start_index}-{page.end_index} of {page.total_count} "
        f"(page {page.page}/{page.total_pages})"
    )
    return 0


# =============================================================================
# Export / import commands
# =============================================================================


def cmd_export(args):
    """Export assets or categories."""
    if args.entity == "categories":
        records = repository.list_categories()
        text = export_categories_json(records) if args.format == "json" else export_categories_csv(records)
    else:
        records = repository.list_assets()
        text = export_assets_json(records) if args.format == "json" else export_assets_csv(records)

    if args.output:
        args.output.write_text(text)
        print(f"Exported {len(records)} {args.entity} to {args.output}")
    else:
        sys.stdout.write(text)
    return 0


def cmd_import(args):
    """Import assets from a CSV or JSON file."""
    if not args.file.exists():
        print(f"Error: File not found: {args.file}")
        return 1

    fmt = args.format or args.file.suffix.lstrip(".").lower()
    try:
        result = import_assets(args.file.read_text(encoding="utf-8-sig"), fmt)
    except SignageError as e:
        print(f"Error: {e.message}")
        for name, message in getattr(e, "errors", {}).items():
            print(f"  {name}: {message}")
        return 1

    print(f"Imported {len(result.imported)} assets")
    if result.errors:
        print(f"Rejected {len(result.errors)} rows:")
        print(
            tabulate(
                [[e.row, e.reason] for e in result.errors],
                headers=["Row", "Reason"],
                tablefmt="simple",
            )
        )
        return 2
    return 0


# =============================================================================
# Categories command
# =============================================================================


def cmd_categories(args):
    """List asset categories with usage counts."""
    categories = repository.list_categories()
    if not categories:
        print("No categories defined")
        return 0
    counts = repository.category_asset_counts()
    rows = [
        [c.name, truncate(c.description, 40), counts.get(c.id, 0), c.id]
        for c in categories
    ]
    print(tabulate(rows, headers=["Name", "Description", "Assets", "ID"], tablefmt="simple"))
    return 0


def cmd_init_db(args, app):
    """Tables are created by create_app(); report where."""
    print(f"Database ready: {app.config['SQLALCHEMY_DATABASE_URI']}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Digital signage asset manager",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s init-db
  %(prog)s status
  %(prog)s status --due-only --service-type Cleaning
  %(prog)s assets --query lobby --warranty expiring
  %(prog)s assets --maintenance overdue --sort next_maintenance_date
  %(prog)s export --format json --output assets.json
  %(prog)s import assets.csv
  %(prog)s categories
""",
    )
    parser.add_argument(
        "--database",
        type=str,
        help="SQLAlchemy database URL (default: DATABASE_URL or local SQLite)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create the database tables")

    # Status subcommand
    status_parser = subparsers.add_parser(
        "status", help="Show which assets are overdue, due, or upcoming"
    )
    status_parser.add_argument(
        "--due-only",
        action="store_true",
        help="Only show overdue, due today and due this week",
    )
    status_parser.add_argument(
        "--service-type",
        type=str,
        help="Only show assets whose schedule has this service type",
    )

    # Assets subcommand
    assets_parser = subparsers.add_parser("assets", help="List assets")
    assets_parser.add_argument("--query", type=str, help="Search name, serial, IP, MAC or ID")
    assets_parser.add_argument("--category", type=str, help="Category ID")
    assets_parser.add_argument("--location", type=str, help="Location ID")
    assets_parser.add_argument(
        "--warranty",
        choices=WARRANTY_FILTERS,
        default="all",
        help="Warranty state (default: all)",
    )
    assets_parser.add_argument(
        "--maintenance",
        choices=[s.key for s in MaintenanceStatus],
        help="Maintenance status",
    )
    assets_parser.add_argument(
        "--sort",
        choices=["name", "status", "installation_date", "next_maintenance_date", "created_at"],
        default="name",
        help="Sort key (default: name)",
    )
    assets_parser.add_argument("--desc", action="store_true", help="Sort descending")
    assets_parser.add_argument("--page", type=int, default=1, help="Page number (default: 1)")
    assets_parser.add_argument(
        "--page-size", type=int, default=25, help="Rows per page (default: 25)"
    )

    # Export subcommand
    export_parser = subparsers.add_parser("export", help="Export data")
    export_parser.add_argument("--format", choices=["csv", "json"], default="csv")
    export_parser.add_argument(
        "--entity", choices=["assets", "categories"], default="assets"
    )
    export_parser.add_argument("--output", type=Path, help="Write to file instead of stdout")

    # Import subcommand
    import_parser = subparsers.add_parser("import", help="Import assets from a file")
    import_parser.add_argument("file", type=Path, help="CSV or JSON file")
    import_parser.add_argument(
        "--format", choices=["csv", "json"], help="File format (default: from extension)"
    )

    subparsers.add_parser("categories", help="List asset categories")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    overrides = {"LOG_DIR": None}
    if args.database:
        overrides["SQLALCHEMY_DATABASE_URI"] = args.database
    app = create_app(overrides)

    with app.app_context():
        # Dispatch to command handler
        if args.command == "init-db":
            return cmd_init_db(args, app)
        elif args.command == "status":
            return cmd_status(args)
        elif args.command == "assets":
            if args.page_size < 1:
                print("Error: --page-size must be at least 1")
                return 1
            return cmd_assets(args)
        elif args.command == "export":
            return cmd_export(args)
        elif args.command == "import":
            return cmd_import(args)
        elif args.command == "categories":
            return cmd_categories(args)

    return 0


if __name__ == "__main__":
    sys.exit(main() or 0)
