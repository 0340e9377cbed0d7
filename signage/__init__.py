"""
Digital signage asset management.

This package provides the domain logic and data layer:
- MaintenanceStatus: Urgency buckets (OVERDUE, DUE_TODAY, ... NO_MAINTENANCE)
- Interval / IntervalUnit: Maintenance schedule intervals
- calculations: Next-due arithmetic, status classification, warranty checks
- filters: Asset list filtering, sorting and pagination
- db / repository: Relational models and data access
- loader: CSV/JSON import and export
- reports: Dashboard and report aggregations
"""

from .status import MaintenanceStatus
from .schedule import Interval, IntervalUnit
from .calculations import (
    asset_maintenance_status,
    calc_next_due,
    calc_warranty_end,
    classify_maintenance,
    is_warranty_active,
    warranty_status,
)
from .filters import AssetFilter, Page, apply_pipeline, filter_assets, paginate, sort_assets
from .errors import (
    AuthError,
    ConflictError,
    DuplicateError,
    NotFoundError,
    ReferentialIntegrityError,
    SignageError,
    StoreError,
    ValidationError,
)
from .db import Asset, AssetCategory, MaintenanceSchedule, MasterAsset, User, db

__all__ = [
    "MaintenanceStatus",
    "Interval",
    "IntervalUnit",
    "asset_maintenance_status",
    "calc_next_due",
    "calc_warranty_end",
    "classify_maintenance",
    "is_warranty_active",
    "warranty_status",
    "AssetFilter",
    "Page",
    "apply_pipeline",
    "filter_assets",
    "paginate",
    "sort_assets",
    "AuthError",
    "ConflictError",
    "DuplicateError",
    "NotFoundError",
    "ReferentialIntegrityError",
    "SignageError",
    "StoreError",
    "ValidationError",
    "Asset",
    "AssetCategory",
    "MaintenanceSchedule",
    "MasterAsset",
    "User",
    "db",
]
