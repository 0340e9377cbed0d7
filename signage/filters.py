"""In-memory filtering, sorting and pagination of asset lists."""

import math
from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .calculations import asset_maintenance_status, warranty_status
from .status import MaintenanceStatus

WARRANTY_FILTERS = ("all", "active", "expiring", "expired")
SORT_DIRECTIONS = ("asc", "desc")
SEARCH_FIELDS = ("name", "serial_number", "id", "ip_address", "mac_address")


@dataclass(frozen=True)
class AssetFilter:
    """Active filter criteria. Empty/None criteria are ignored; the rest are ANDed."""

    query: str = ""
    category_id: Optional[str] = None
    location_id: Optional[str] = None
    section_id: Optional[str] = None
    sub_section_id: Optional[str] = None
    zone_id: Optional[str] = None
    warranty_status: str = "all"
    maintenance_status: Optional[str] = None
    service_type: Optional[str] = None
    operating_hours_min: Optional[float] = None
    operating_hours_max: Optional[float] = None
    installed_from: Optional[date] = None
    installed_to: Optional[date] = None
    due_from: Optional[date] = None
    due_to: Optional[date] = None

    def __post_init__(self):
        if self.warranty_status not in WARRANTY_FILTERS:
            raise ValueError(
                f"Unknown warranty filter '{self.warranty_status}' "
                f"(expected one of: {', '.join(WARRANTY_FILTERS)})"
            )
        if self.maintenance_status:
            MaintenanceStatus.from_key(self.maintenance_status)

    @property
    def is_active(self) -> bool:
        return self != AssetFilter()

    @classmethod
    def from_args(cls, args: Dict[str, Any]) -> "AssetFilter":
        """
        Build a filter from query-string style arguments.

        Unknown keys are ignored, blank and 'all' values mean "no filter",
        and unparseable numbers/dates are dropped.
        """
        values: Dict[str, Any] = {}
        for f in fields(cls):
            raw = args.get(f.name)
            if raw is None:
                continue
            raw = str(raw).strip()
            if raw == "" or (raw == "all" and f.name != "warranty_status"):
                continue
            if f.name.startswith("operating_hours"):
                try:
                    values[f.name] = float(raw)
                except ValueError:
                    continue
            elif f.name.startswith(("installed_", "due_")):
                try:
                    values[f.name] = date.fromisoformat(raw)
                except ValueError:
                    continue
            elif f.name == "warranty_status" and raw not in WARRANTY_FILTERS:
                continue
            elif f.name == "maintenance_status":
                try:
                    values[f.name] = MaintenanceStatus.from_key(raw).key
                except ValueError:
                    continue
            else:
                values[f.name] = raw
        return cls(**values)

    def to_args(self) -> Dict[str, str]:
        """Inverse of from_args for the non-default criteria."""
        args = {}
        default = AssetFilter()
        for f in fields(self):
            value = getattr(self, f.name)
            if value != getattr(default, f.name):
                args[f.name] = value.isoformat() if isinstance(value, date) else str(value)
        return args

    def without(self, *names: str) -> "AssetFilter":
        """Copy of this filter with the named criteria reset."""
        default = AssetFilter()
        return replace(self, **{name: getattr(default, name) for name in names})


@dataclass
class Page:
    """One page window of a filtered and sorted list."""

    items: List[Any]
    page: int
    page_size: int
    total_count: int
    total_pages: int = field(init=False)

    def __post_init__(self):
        self.total_pages = math.ceil(self.total_count / self.page_size) if self.total_count else 0

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def start_index(self) -> int:
        """1-based index of the first item on this page (0 when empty)."""
        return (self.page - 1) * self.page_size + 1 if self.items else 0

    @property
    def end_index(self) -> int:
        return self.start_index + len(self.items) - 1 if self.items else 0

    def page_numbers(self, window: int = 5) -> List[int]:
        """Page numbers to show around the current page."""
        if self.total_pages <= window:
            return list(range(1, self.total_pages + 1))
        first = max(1, min(self.page - window // 2, self.total_pages - window + 1))
        return list(range(first, first + window))


def _as_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value


def _in_range(value: Any, low: Any, high: Any) -> bool:
    if low is None and high is None:
        return True
    if value is None:
        return False
    if low is not None and value < low:
        return False
    if high is not None and value > high:
        return False
    return True


def _matches_query(asset: Any, query: str) -> bool:
    needle = query.lower()
    for name in SEARCH_FIELDS:
        value = getattr(asset, name, None)
        if value and needle in str(value).lower():
            return True
    return False


def _warranty_end(asset: Any) -> Optional[date]:
    end = getattr(asset, "warranty_end", None)
    if end is None:
        end = getattr(asset, "warranty_end_date", None)
    return _as_date(end)


def matches(
    asset: Any,
    flt: AssetFilter,
    now: datetime,
    schedules: Optional[Dict[str, Any]] = None,
) -> bool:
    """True when an asset satisfies every active criterion of the filter."""
    if flt.query and not _matches_query(asset, flt.query):
        return False
    for name in ("category_id", "location_id", "section_id", "sub_section_id", "zone_id"):
        wanted = getattr(flt, name)
        if wanted and getattr(asset, name, None) != wanted:
            return False
    if flt.warranty_status != "all":
        state = warranty_status(_warranty_end(asset), now)
        if flt.warranty_status == "active":
            if state not in ("active", "expiring"):
                return False
        elif state != flt.warranty_status:
            return False
    if flt.maintenance_status:
        if asset_maintenance_status(asset, now).key != flt.maintenance_status:
            return False
    if flt.service_type:
        schedule = (schedules or {}).get(getattr(asset, "maintenance_schedule_id", None))
        if schedule is None or schedule.service_type != flt.service_type:
            return False
    if not _in_range(
        getattr(asset, "operating_hours", None), flt.operating_hours_min, flt.operating_hours_max
    ):
        return False
    if not _in_range(
        _as_date(getattr(asset, "installation_date", None)), flt.installed_from, flt.installed_to
    ):
        return False
    if not _in_range(
        _as_date(getattr(asset, "next_maintenance_date", None)), flt.due_from, flt.due_to
    ):
        return False
    return True


def filter_assets(
    assets: Iterable[Any],
    flt: AssetFilter,
    now: datetime,
    schedules: Optional[Dict[str, Any]] = None,
) -> List[Any]:
    """Keep assets matching every active criterion, preserving input order."""
    return [a for a in assets if matches(a, flt, now, schedules)]


def _sort_value(asset: Any, key: str) -> Any:
    value = getattr(asset, key, None)
    if isinstance(value, str):
        return value.lower()
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    return value


def sort_assets(assets: Iterable[Any], key: str = "name", direction: str = "asc") -> List[Any]:
    """
    Stable sort by an attribute.

    Strings compare case-insensitively, missing values go last in either
    direction, and ties fall back to id ascending.
    """
    if direction not in SORT_DIRECTIONS:
        raise ValueError(f"Sort direction must be 'asc' or 'desc', got '{direction}'")
    by_id = sorted(assets, key=lambda a: str(getattr(a, "id", "") or ""))
    present = [a for a in by_id if _sort_value(a, key) is not None]
    missing = [a for a in by_id if _sort_value(a, key) is None]
    present.sort(key=lambda a: _sort_value(a, key), reverse=direction == "desc")
    return present + missing


def paginate(items: Sequence[Any], page: int = 1, page_size: int = 10) -> Page:
    """Slice out a 1-indexed page; out-of-range pages clamp to [1, total_pages]."""
    if page_size < 1:
        raise ValueError(f"Page size must be at least 1, got {page_size}")
    total = len(items)
    total_pages = math.ceil(total / page_size) if total else 0
    page = max(1, min(page, total_pages or 1))
    start = (page - 1) * page_size
    return Page(
        items=list(items[start:start + page_size]),
        page=page,
        page_size=page_size,
        total_count=total,
    )


def apply_pipeline(
    assets: Iterable[Any],
    flt: AssetFilter,
    now: datetime,
    sort_key: str = "name",
    direction: str = "asc",
    page: int = 1,
    page_size: int = 10,
    schedules: Optional[Dict[str, Any]] = None,
) -> Page:
    """Filter, then sort, then paginate."""
    filtered = filter_assets(assets, flt, now, schedules)
    return paginate(sort_assets(filtered, sort_key, direction), page, page_size)
