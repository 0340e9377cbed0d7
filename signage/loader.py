"""CSV and JSON export/import of assets and categories."""

import csv
import io
import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from . import repository
from .errors import ValidationError
from .validation import validate_data, validate_form

logger = logging.getLogger(__name__)

# Fixed export column order: (header, field).
ASSET_CSV_COLUMNS: List[Tuple[str, str]] = [
    ("ID", "id"),
    ("Asset Name", "name"),
    ("Category ID", "category_id"),
    ("Category", "category_name"),
    ("Status", "status"),
    ("Asset Location", "asset_location"),
    ("Google Location", "google_location"),
    ("Latitude", "latitude"),
    ("Longitude", "longitude"),
    ("Location ID", "location_id"),
    ("Section ID", "section_id"),
    ("Sub-section ID", "sub_section_id"),
    ("Zone ID", "zone_id"),
    ("Master Asset ID", "master_asset_id"),
    ("Manufacturer", "manufacturer"),
    ("Model Number", "model_number"),
    ("Screen Size", "screen_size"),
    ("Resolution", "resolution"),
    ("Power Consumption", "power_consumption"),
    ("Operating System", "operating_system"),
    ("Description", "description"),
    ("Serial Number", "serial_number"),
    ("MAC Address", "mac_address"),
    ("IP Address", "ip_address"),
    ("Barcode", "barcode"),
    ("Purchase Date", "purchase_date"),
    ("Installation Date", "installation_date"),
    ("Warranty Start Date", "warranty_start_date"),
    ("Warranty Period (Months)", "warranty_period_months"),
    ("Warranty End Date", "warranty_end_date"),
    ("Content Management System", "content_management_system"),
    ("Display Orientation", "display_orientation"),
    ("Operating Hours", "operating_hours"),
    ("Brightness Level", "brightness_level"),
    ("Maintenance Schedule ID", "maintenance_schedule_id"),
    ("Last Maintenance Date", "last_maintenance_date"),
    ("Next Maintenance Date", "next_maintenance_date"),
]

# Columns written on export but never read back on import.
EXPORT_ONLY_FIELDS = {"id", "category_name", "next_maintenance_date"}

IMPORT_COLUMNS = [(h, f) for h, f in ASSET_CSV_COLUMNS if f not in EXPORT_ONLY_FIELDS]
REQUIRED_IMPORT_HEADERS = ["Asset Name", "Category ID"]
FIELD_LABELS = {f: h for h, f in ASSET_CSV_COLUMNS}

CATEGORY_CSV_COLUMNS = [("ID", "id"), ("Name", "name"), ("Description", "description")]


@dataclass
class RowError:
    """A rejected import row (1-based data row number, header excluded)."""

    row: int
    reason: str


@dataclass
class ImportResult:
    imported: List[Any] = field(default_factory=list)
    errors: List[RowError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


# =============================================================================
# Export
# =============================================================================


def _format_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def asset_to_dict(asset: Any) -> Dict[str, Any]:
    """Serialize an asset to a flat dict keyed by field name (dates as ISO strings)."""
    data = {}
    for _, name in ASSET_CSV_COLUMNS:
        if name == "category_name":
            category = getattr(asset, "category", None)
            value = category.name if category is not None else None
        else:
            value = getattr(asset, name, None)
        data[name] = value.isoformat() if isinstance(value, (date, datetime)) else value
    return data


def export_assets_csv(assets: Iterable[Any]) -> str:
    """Render assets as CSV with the fixed ASSET_CSV_COLUMNS header row."""
    out = io.StringIO()
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow([header for header, _ in ASSET_CSV_COLUMNS])
    for asset in assets:
        data = asset_to_dict(asset)
        writer.writerow([_format_value(data[name]) for _, name in ASSET_CSV_COLUMNS])
    return out.getvalue()


def export_assets_json(assets: Iterable[Any]) -> str:
    return json.dumps([asset_to_dict(a) for a in assets], indent=2)


def export_categories_csv(categories: Iterable[Any]) -> str:
    out = io.StringIO()
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow([header for header, _ in CATEGORY_CSV_COLUMNS])
    for category in categories:
        writer.writerow([_format_value(getattr(category, name)) for _, name in CATEGORY_CSV_COLUMNS])
    return out.getvalue()


def export_categories_json(categories: Iterable[Any]) -> str:
    return json.dumps(
        [{name: getattr(c, name) for _, name in CATEGORY_CSV_COLUMNS} for c in categories],
        indent=2,
    )


def import_template_csv() -> str:
    """Header row plus one sample row for users preparing an import file."""
    sample = {
        "name": "Lobby Display 1",
        "category_id": "<category id>",
        "status": "active",
        "asset_location": "Main lobby",
        "manufacturer": "Samsung",
        "model_number": "QM55R",
        "screen_size": "55\"",
        "resolution": "3840x2160",
        "power_consumption": "120",
        "operating_system": "Tizen",
        "serial_number": "SN-0001",
        "mac_address": "00:1A:2B:3C:4D:5E",
        "ip_address": "192.168.1.50",
        "purchase_date": "2024-01-10",
        "installation_date": "2024-01-20",
        "warranty_start_date": "2024-01-20",
        "warranty_period_months": "36",
        "display_orientation": "Landscape",
        "operating_hours": "12",
    }
    out = io.StringIO()
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow([header for header, _ in IMPORT_COLUMNS])
    writer.writerow([sample.get(name, "") for _, name in IMPORT_COLUMNS])
    return out.getvalue()


# =============================================================================
# Import
# =============================================================================


def _describe(errors: Dict[str, str]) -> str:
    return "; ".join(f"{FIELD_LABELS.get(name, name)}: {message}" for name, message in errors.items())


def _check_row(row_number: int, validate, raw: Dict[str, Any]) -> Tuple[Optional[Dict], Optional[RowError]]:
    try:
        data = validate("asset", raw)
    except ValidationError as e:
        return None, RowError(row_number, _describe(e.errors))
    ref_errors = repository.check_asset_references(data)
    if ref_errors:
        return None, RowError(row_number, _describe(ref_errors))
    return data, None


def _import_rows(rows: List[Tuple[int, Dict[str, Any]]], validate, user=None) -> ImportResult:
    result = ImportResult()
    valid = []
    for row_number, raw in rows:
        data, error = _check_row(row_number, validate, raw)
        if error is not None:
            result.errors.append(error)
        else:
            valid.append(data)
    if valid:
        result.imported = repository.create_assets(valid, user)
    for error in result.errors:
        logger.warning("Rejected import row %d: %s", error.row, error.reason)
    return result


def read_asset_csv(text: str) -> List[Tuple[int, Dict[str, Any]]]:
    """
    Parse asset CSV text into (row number, form dict) pairs.

    Columns are matched by header name; the required id columns must be
    present. Rows without any values are skipped.
    """
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    headers = [h.strip() for h in (reader.fieldnames or [])]
    missing = [h for h in REQUIRED_IMPORT_HEADERS if h not in headers]
    if missing:
        raise ValidationError({"file": "Missing required columns: " + ", ".join(missing)})

    rows = []
    for row_number, row in enumerate(reader, start=1):
        row = {(k or "").strip(): v for k, v in row.items()}
        if not any((v or "").strip() for v in row.values() if isinstance(v, str)):
            continue
        rows.append((row_number, {name: row.get(header) for header, name in IMPORT_COLUMNS}))
    return rows


def import_assets_csv(text: str, user=None) -> ImportResult:
    """Import assets from CSV; rows that fail validation or id resolution are rejected."""
    return _import_rows(read_asset_csv(text), validate_form, user)


def import_assets_json(text: str, user=None) -> ImportResult:
    """Import assets from a JSON array of objects keyed by field name."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError({"file": f"Invalid JSON: {e.msg} (line {e.lineno})"}) from e
    if not isinstance(data, list):
        raise ValidationError({"file": "Expected a JSON array of assets"})

    rows = []
    for row_number, item in enumerate(data, start=1):
        if not isinstance(item, dict):
            rows.append((row_number, {}))
            continue
        rows.append((row_number, {k: v for k, v in item.items() if k not in EXPORT_ONLY_FIELDS}))
    return _import_rows(rows, _validate_json_row, user)


def _validate_json_row(kind: str, raw: Dict[str, Any]) -> Dict[str, Any]:
    # JSON values are already typed; drop nulls and blanks so defaults apply.
    cleaned = {k: v for k, v in raw.items() if v is not None and v != ""}
    return validate_data(kind, cleaned)


def import_assets(text: str, fmt: str, user=None) -> ImportResult:
    if fmt == "csv":
        return import_assets_csv(text, user)
    if fmt == "json":
        return import_assets_json(text, user)
    raise ValidationError({"file": f"Unsupported import format '{fmt}' (use csv or json)"})
