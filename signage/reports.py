"""Aggregations behind the dashboard and reports pages."""

import csv
import io
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

from dateutil.relativedelta import relativedelta

from .calculations import asset_maintenance_status, warranty_status
from .status import MaintenanceStatus

UNASSIGNED = "Unassigned"

AGE_BUCKETS = [
    ("Under 1 year", 0, 1),
    ("1-2 years", 1, 2),
    ("2-3 years", 2, 3),
    ("3-5 years", 3, 5),
    ("5+ years", 5, None),
]


class Share(NamedTuple):
    label: str
    count: int
    percentage: int


def percentage(count: int, total: int) -> int:
    return round(count * 100 / total) if total else 0


def distribution(labels: Iterable[Optional[str]]) -> List[Share]:
    """Count labels; most common first, ties alphabetical. None counts as Unassigned."""
    counts = Counter(label or UNASSIGNED for label in labels)
    total = sum(counts.values())
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0].lower()))
    return [Share(label, count, percentage(count, total)) for label, count in ordered]


def _related_name(asset: Any, relation: str) -> Optional[str]:
    related = getattr(asset, relation, None)
    return getattr(related, "name", None) if related is not None else None


def warranty_summary(assets: Iterable[Any], now: datetime) -> Dict[str, int]:
    """Counts of assets per warranty state; 'expiring' assets also count as 'active'."""
    summary = {"active": 0, "expiring": 0, "expired": 0, "unknown": 0}
    for asset in assets:
        state = warranty_status(getattr(asset, "warranty_end", None), now)
        if state is None:
            summary["unknown"] += 1
            continue
        summary[state] += 1
        if state == "expiring":
            summary["active"] += 1
    return summary


def maintenance_summary(assets: Iterable[Any], now: datetime) -> Dict[MaintenanceStatus, int]:
    """Asset count per maintenance status, every status present, most urgent first."""
    counts = Counter(asset_maintenance_status(asset, now) for asset in assets)
    return {status: counts.get(status, 0) for status in sorted(MaintenanceStatus, key=lambda s: s.value)}


def age_distribution(assets: Iterable[Any], now: datetime) -> List[Share]:
    """Assets bucketed by years since purchase. Assets without a purchase date are left out."""
    today = now.date()
    buckets = Counter()
    for asset in assets:
        purchased = getattr(asset, "purchase_date", None)
        if purchased is None:
            continue
        years = relativedelta(today, purchased).years
        for label, low, high in AGE_BUCKETS:
            if years >= low and (high is None or years < high):
                buckets[label] += 1
                break
    total = sum(buckets.values())
    return [Share(label, buckets[label], percentage(buckets[label], total)) for label, _, _ in AGE_BUCKETS]


def maintenance_trend(assets: Iterable[Any], now: datetime, months: int = 12) -> List[Share]:
    """Assets last serviced in each of the trailing calendar months, oldest first."""
    first_month = (now.replace(day=1) - relativedelta(months=months - 1)).date()
    keys = [first_month + relativedelta(months=i) for i in range(months)]
    counts = Counter()
    for asset in assets:
        serviced = getattr(asset, "last_maintenance_date", None)
        if serviced is None:
            continue
        key = serviced.date().replace(day=1) if isinstance(serviced, datetime) else serviced.replace(day=1)
        counts[key] += 1
    total = sum(counts[k] for k in keys)
    return [Share(k.strftime("%b %Y"), counts[k], percentage(counts[k], total)) for k in keys]


def average_maintenance_minutes(assets: Iterable[Any]) -> Optional[float]:
    """Mean logged maintenance time over assets that have any, or None."""
    minutes = [a.time_spent_minutes for a in assets if getattr(a, "time_spent_minutes", None)]
    if not minutes:
        return None
    return sum(minutes) / len(minutes)



def map_points(assets: Iterable[Any], now: datetime) -> List[Dict[str, Any]]:
    """Map markers for assets that have both coordinates."""
    points = []
    for asset in assets:
        if asset.latitude is None or asset.longitude is None:
            continue
        points.append(
            {
                "id": asset.id,
                "name": asset.name,
                "latitude": asset.latitude,
                "longitude": asset.longitude,
                "status": asset.status,
                "location": _related_name(asset, "location"),
                "maintenance_status": asset_maintenance_status(asset, now).label,
            }
        )
    return points

# =============================================================================
# Dashboard
# =============================================================================


@dataclass
class Dashboard:
    total_assets: int
    total_categories: int
    total_master_assets: int
    assets_with_maintenance: int
    overdue_count: int
    due_soon_count: int
    status_counts: List[Share]
    category_distribution: List[Share]
    location_distribution: List[Share]
    warranty: Dict[str, int]
    maintenance: Dict[MaintenanceStatus, int]
    average_maintenance_minutes: Optional[float]
    recent_assets: List[Any] = field(default_factory=list)
    upcoming_maintenance: List[Any] = field(default_factory=list)


def build_dashboard(
    assets: List[Any],
    categories: List[Any],
    master_assets: List[Any],
    now: datetime,
    recent: int = 5,
) -> Dashboard:
    maintenance = maintenance_summary(assets, now)
    due_soon = sum(
        count
        for status, count in maintenance.items()
        if status not in (MaintenanceStatus.OVERDUE, MaintenanceStatus.UPCOMING, MaintenanceStatus.NO_MAINTENANCE)
    )
    scheduled = [a for a in assets if asset_maintenance_status(a, now) != MaintenanceStatus.NO_MAINTENANCE]
    upcoming = sorted(
        (a for a in scheduled if a.next_maintenance_date is not None),
        key=lambda a: a.next_maintenance_date,
    )
    newest = sorted(assets, key=lambda a: a.created_at, reverse=True)
    return Dashboard(
        total_assets=len(assets),
        total_categories=len(categories),
        total_master_assets=len(master_assets),
        assets_with_maintenance=len(scheduled),
        overdue_count=maintenance[MaintenanceStatus.OVERDUE],
        due_soon_count=due_soon,
        status_counts=distribution(a.status for a in assets),
        category_distribution=distribution(_related_name(a, "category") for a in assets),
        location_distribution=distribution(_related_name(a, "location") for a in assets),
        warranty=warranty_summary(assets, now),
        maintenance=maintenance,
        average_maintenance_minutes=average_maintenance_minutes(assets),
        recent_assets=newest[:recent],
        upcoming_maintenance=upcoming[:recent],
    )


# =============================================================================
# Reports
# =============================================================================


@dataclass
class Report:
    generated_at: datetime
    total_assets: int
    connected_assets: int
    average_brightness: Optional[float]
    average_maintenance_minutes: Optional[float]
    resolution_distribution: List[Share]
    operating_hours_distribution: List[Share]
    orientation_distribution: List[Share]
    category_distribution: List[Share]
    location_distribution: List[Share]
    age_distribution: List[Share]
    maintenance_trend: List[Share]
    warranty: Dict[str, int]
    maintenance: Dict[MaintenanceStatus, int]

    @property
    def offline_assets(self) -> int:
        return self.total_assets - self.connected_assets


def build_report(
    assets: Iterable[Any],
    now: datetime,
    location_id: Optional[str] = None,
    category_id: Optional[str] = None,
) -> Report:
    """Report over all assets, optionally narrowed to one location and/or category."""
    selected = [
        a
        for a in assets
        if (not location_id or a.location_id == location_id)
        and (not category_id or a.category_id == category_id)
    ]
    brightness = [a.brightness_level for a in selected if a.brightness_level is not None]
    return Report(
        generated_at=now,
        total_assets=len(selected),
        connected_assets=sum(1 for a in selected if a.ip_address),
        average_brightness=sum(brightness) / len(brightness) if brightness else None,
        average_maintenance_minutes=average_maintenance_minutes(selected),
        resolution_distribution=distribution(a.resolution for a in selected if a.resolution),
        operating_hours_distribution=distribution(
            f"{a.operating_hours}h" for a in selected if a.operating_hours
        ),
        orientation_distribution=distribution(a.display_orientation for a in selected),
        category_distribution=distribution(_related_name(a, "category") for a in selected),
        location_distribution=distribution(_related_name(a, "location") for a in selected),
        age_distribution=age_distribution(selected, now),
        maintenance_trend=maintenance_trend(selected, now),
        warranty=warranty_summary(selected, now),
        maintenance=maintenance_summary(selected, now),
    )


def _format_number(value: Optional[float]) -> str:
    return "" if value is None else f"{value:.1f}"


def export_report_csv(report: Report) -> str:
    """Summary metrics followed by one block per distribution."""
    out = io.StringIO()
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow(["Metric", "Value"])
    writer.writerow(["Generated", report.generated_at.strftime("%Y-%m-%d %H:%M")])
    writer.writerow(["Total assets", report.total_assets])
    writer.writerow(["Connected assets", report.connected_assets])
    writer.writerow(["Offline assets", report.offline_assets])
    writer.writerow(["Average brightness (%)", _format_number(report.average_brightness)])
    writer.writerow(
        ["Average maintenance time (min)", _format_number(report.average_maintenance_minutes)]
    )
    for state, count in report.warranty.items():
        writer.writerow([f"Warranty {state}", count])
    for status, count in report.maintenance.items():
        writer.writerow([f"Maintenance: {status.label}", count])

    sections = [
        ("Category", report.category_distribution),
        ("Location", report.location_distribution),
        ("Resolution", report.resolution_distribution),
        ("Operating hours", report.operating_hours_distribution),
        ("Orientation", report.orientation_distribution),
        ("Age", report.age_distribution),
        ("Last serviced", report.maintenance_trend),
    ]
    for title, shares in sections:
        writer.writerow([])
        writer.writerow([title, "Count", "Percentage"])
        for share in shares:
            writer.writerow([share.label, share.count, f"{share.percentage}%"])
    return out.getvalue()
