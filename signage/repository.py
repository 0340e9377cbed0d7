"""
Data access for every entity.

Each function either returns the affected record(s) or raises one of the
errors in signage.errors; nothing is mutated in memory until the database
commit succeeds. Ids are assigned here, at insert time.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from .calculations import calc_next_due
from .db import (
    Asset,
    AssetCategory,
    Location,
    MaintenanceSchedule,
    MasterAsset,
    Section,
    SubSection,
    User,
    Zone,
    db,
)
from .errors import (
    ConflictError,
    DuplicateError,
    NotFoundError,
    ReferentialIntegrityError,
    SignageError,
    StoreError,
    ValidationError,
)
from .validation import get_schema

logger = logging.getLogger(__name__)

ASSET_FIELDS = [name for name in get_schema("asset")["properties"] if name != "version_id"]


# =============================================================================
# Helpers
# =============================================================================


def _commit(action: str, on_integrity: Optional[SignageError] = None) -> None:
    """Commit the session, translating database failures into SignageErrors."""
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        logger.warning("Integrity error while %s: %s", action, e.orig)
        raise (on_integrity or StoreError()) from e
    except StaleDataError as e:
        db.session.rollback()
        logger.warning("Stale record while %s", action)
        raise ConflictError() from e
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.exception("Database error while %s", action)
        raise StoreError() from e


def _get(model, record_id: Optional[str], label: str):
    record = db.session.get(model, record_id) if record_id else None
    if record is None:
        raise NotFoundError(f"{label} not found")
    return record


def _count(model, *criteria) -> int:
    return db.session.scalar(db.select(func.count()).select_from(model).where(*criteria))


def _ensure_unused(label: str, usages: Iterable[tuple]) -> None:
    """Raise ReferentialIntegrityError naming every (count, noun) usage that is non-zero."""
    in_use = [f"{count} {noun}{'s' if count != 1 else ''}" for count, noun in usages if count]
    if in_use:
        raise ReferentialIntegrityError(
            f"{label} is in use by {', '.join(in_use)} and cannot be deleted"
        )


def _delete(record, label: str) -> None:
    db.session.delete(record)
    _commit(
        f"deleting {label}",
        on_integrity=ReferentialIntegrityError(f"{label} is in use and cannot be deleted"),
    )
    logger.info("Deleted %s %s", label.lower(), record.id)


# =============================================================================
# Categories
# =============================================================================


def list_categories() -> List[AssetCategory]:
    return db.session.scalars(db.select(AssetCategory).order_by(AssetCategory.name)).all()


def get_category(category_id: str) -> AssetCategory:
    return _get(AssetCategory, category_id, "Category")


def category_asset_counts() -> Dict[str, int]:
    """Map category id -> number of assets referencing it."""
    rows = db.session.execute(
        db.select(Asset.category_id, func.count()).group_by(Asset.category_id)
    ).all()
    return {category_id: count for category_id, count in rows}


def _check_category_name(name: str, exclude_id: Optional[str] = None) -> None:
    query = db.select(AssetCategory).where(func.lower(AssetCategory.name) == name.lower())
    if exclude_id:
        query = query.where(AssetCategory.id != exclude_id)
    if db.session.scalars(query).first() is not None:
        raise DuplicateError(f"Category with name '{name}' already exists")


def create_category(data: Dict[str, Any]) -> AssetCategory:
    _check_category_name(data["name"])
    category = AssetCategory(name=data["name"], description=data.get("description"))
    db.session.add(category)
    _commit(
        "creating category",
        on_integrity=DuplicateError(f"Category with name '{data['name']}' already exists"),
    )
    logger.info("Created category %s (%s)", category.id, category.name)
    return category


def update_category(category_id: str, data: Dict[str, Any]) -> AssetCategory:
    category = get_category(category_id)
    _check_category_name(data["name"], exclude_id=category_id)
    category.name = data["name"]
    category.description = data.get("description")
    _commit(
        "updating category",
        on_integrity=DuplicateError(f"Category with name '{data['name']}' already exists"),
    )
    return category


def delete_category(category_id: str) -> None:
    category = get_category(category_id)
    _ensure_unused(
        f"Category '{category.name}'",
        [
            (_count(Asset, Asset.category_id == category_id), "asset"),
            (_count(MasterAsset, MasterAsset.category_id == category_id), "master asset"),
        ],
    )
    _delete(category, "Category")


# =============================================================================
# Maintenance schedules
# =============================================================================


def list_schedules() -> List[MaintenanceSchedule]:
    return db.session.scalars(
        db.select(MaintenanceSchedule).order_by(MaintenanceSchedule.name)
    ).all()


def get_schedule(schedule_id: str) -> MaintenanceSchedule:
    return _get(MaintenanceSchedule, schedule_id, "Maintenance schedule")


def create_schedule(data: Dict[str, Any]) -> MaintenanceSchedule:
    schedule = MaintenanceSchedule(
        name=data["name"],
        service_type=data["service_type"],
        interval_value=data["interval_value"],
        interval_unit=data["interval_unit"],
        description=data.get("description"),
    )
    db.session.add(schedule)
    _commit("creating maintenance schedule")
    logger.info("Created maintenance schedule %s (%s)", schedule.id, schedule.name)
    return schedule


def update_schedule(schedule_id: str, data: Dict[str, Any]) -> MaintenanceSchedule:
    """Update a schedule and roll the next due date of every asset that uses it."""
    schedule = get_schedule(schedule_id)
    for field in ("name", "service_type", "interval_value", "interval_unit", "description"):
        setattr(schedule, field, data.get(field))
    assets = db.session.scalars(
        db.select(Asset).where(Asset.maintenance_schedule_id == schedule_id)
    ).all()
    for asset in assets:
        _refresh_next_maintenance(asset, schedule)
    _commit("updating maintenance schedule")
    return schedule


def delete_schedule(schedule_id: str) -> None:
    schedule = get_schedule(schedule_id)
    _ensure_unused(
        f"Schedule '{schedule.name}'",
        [
            (_count(Asset, Asset.maintenance_schedule_id == schedule_id), "asset"),
            (
                _count(MasterAsset, MasterAsset.maintenance_schedule_id == schedule_id),
                "master asset",
            ),
        ],
    )
    _delete(schedule, "Maintenance schedule")


# =============================================================================
# Master assets
# =============================================================================

MASTER_ASSET_FIELDS = [
    "name",
    "category_id",
    "manufacturer",
    "model_number",
    "description",
    "estimated_maintenance_time",
    "screen_size",
    "resolution",
    "power_consumption",
    "operating_system",
    "mount_type",
    "maintenance_schedule_id",
]


def list_master_assets() -> List[MasterAsset]:
    return db.session.scalars(db.select(MasterAsset).order_by(MasterAsset.name)).all()


def get_master_asset(master_asset_id: str) -> MasterAsset:
    return _get(MasterAsset, master_asset_id, "Master asset")


def _check_references(data: Dict[str, Any], checks: Dict[str, tuple]) -> Dict[str, str]:
    errors = {}
    for field, (model, label) in checks.items():
        value = data.get(field)
        if value and db.session.get(model, value) is None:
            errors[field] = f"Unknown {label}"
    return errors


def _apply_master_asset(master: MasterAsset, data: Dict[str, Any]) -> None:
    errors = _check_references(
        data,
        {
            "category_id": (AssetCategory, "category"),
            "maintenance_schedule_id": (MaintenanceSchedule, "maintenance schedule"),
        },
    )
    if errors:
        raise ValidationError(errors)
    for field in MASTER_ASSET_FIELDS:
        setattr(master, field, data.get(field))
    master.connectivity = ", ".join(data.get("connectivity") or []) or None


def create_master_asset(data: Dict[str, Any]) -> MasterAsset:
    master = MasterAsset()
    _apply_master_asset(master, data)
    db.session.add(master)
    _commit("creating master asset")
    logger.info("Created master asset %s (%s)", master.id, master.name)
    return master


def update_master_asset(master_asset_id: str, data: Dict[str, Any]) -> MasterAsset:
    master = get_master_asset(master_asset_id)
    _apply_master_asset(master, data)
    _commit("updating master asset")
    return master


def delete_master_asset(master_asset_id: str) -> None:
    master = get_master_asset(master_asset_id)
    _ensure_unused(
        f"Master asset '{master.name}'",
        [(_count(Asset, Asset.master_asset_id == master_asset_id), "asset")],
    )
    _delete(master, "Master asset")


# =============================================================================
# Location hierarchy
# =============================================================================

# level -> (model, parent foreign key, parent model, label)
LOCATION_LEVELS = {
    "location": (Location, None, None, "Location"),
    "section": (Section, "location_id", Location, "Section"),
    "sub_section": (SubSection, "section_id", Section, "Sub-section"),
    "zone": (Zone, "sub_section_id", SubSection, "Zone"),
}


def _level(level: str) -> tuple:
    try:
        return LOCATION_LEVELS[level]
    except KeyError:
        raise ValueError(f"Unknown location level '{level}'")


def list_locations() -> List[Location]:
    return db.session.scalars(db.select(Location).order_by(Location.name)).all()


def list_sections(location_id: Optional[str] = None) -> List[Section]:
    query = db.select(Section).order_by(Section.name)
    if location_id:
        query = query.where(Section.location_id == location_id)
    return db.session.scalars(query).all()


def list_sub_sections(section_id: Optional[str] = None) -> List[SubSection]:
    query = db.select(SubSection).order_by(SubSection.name)
    if section_id:
        query = query.where(SubSection.section_id == section_id)
    return db.session.scalars(query).all()


def list_zones(sub_section_id: Optional[str] = None) -> List[Zone]:
    query = db.select(Zone).order_by(Zone.name)
    if sub_section_id:
        query = query.where(Zone.sub_section_id == sub_section_id)
    return db.session.scalars(query).all()


def get_location_level(level: str, record_id: str):
    model, _, _, label = _level(level)
    return _get(model, record_id, label)


def create_location_level(level: str, data: Dict[str, Any]):
    """Create a location, section, sub-section or zone under its parent."""
    model, parent_key, parent_model, label = _level(level)
    record = model(name=data["name"])
    if parent_key:
        if db.session.get(parent_model, data.get(parent_key)) is None:
            raise ValidationError({parent_key: f"Unknown parent for {label.lower()}"})
        setattr(record, parent_key, data[parent_key])
    db.session.add(record)
    _commit(f"creating {label.lower()}")
    logger.info("Created %s %s (%s)", label.lower(), record.id, record.name)
    return record


def update_location_level(level: str, record_id: str, data: Dict[str, Any]):
    """Rename a hierarchy entry. Entries are never moved between parents."""
    record = get_location_level(level, record_id)
    record.name = data["name"]
    _commit(f"renaming {level}")
    return record


def delete_location_level(level: str, record_id: str) -> None:
    model, _, _, label = _level(level)
    record = _get(model, record_id, label)
    usages = []
    if level == "location":
        usages.append((_count(Section, Section.location_id == record_id), "section"))
        usages.append((_count(Asset, Asset.location_id == record_id), "asset"))
    elif level == "section":
        usages.append((_count(SubSection, SubSection.section_id == record_id), "sub-section"))
        usages.append((_count(Asset, Asset.section_id == record_id), "asset"))
    elif level == "sub_section":
        usages.append((_count(Zone, Zone.sub_section_id == record_id), "zone"))
        usages.append((_count(Asset, Asset.sub_section_id == record_id), "asset"))
    else:
        usages.append((_count(Asset, Asset.zone_id == record_id), "asset"))
    _ensure_unused(f"{label} '{record.name}'", usages)
    _delete(record, label)


def _check_location_chain(data: Dict[str, Any]) -> Dict[str, str]:
    """Each chosen level must belong to the chosen level above it."""
    errors: Dict[str, str] = {}
    chain = [
        ("location_id", Location, None),
        ("section_id", Section, "location_id"),
        ("sub_section_id", SubSection, "section_id"),
        ("zone_id", Zone, "sub_section_id"),
    ]
    for field, model, parent_field in chain:
        value = data.get(field)
        if not value:
            continue
        record = db.session.get(model, value)
        if record is None:
            errors[field] = "Unknown " + field[: -len("_id")].replace("_", "-")
        elif parent_field and getattr(record, parent_field) != data.get(parent_field):
            errors[field] = "Does not belong to the selected " + parent_field[: -len("_id")].replace(
                "_", "-"
            )
    return errors


# =============================================================================
# Assets
# =============================================================================


def list_assets() -> List[Asset]:
    """All assets, newest first."""
    return db.session.scalars(
        db.select(Asset).order_by(Asset.created_at.desc(), Asset.id)
    ).all()


def get_asset(asset_id: str) -> Asset:
    return _get(Asset, asset_id, "Asset")


def _refresh_next_maintenance(
    asset: Asset, schedule: Optional[MaintenanceSchedule] = None
) -> None:
    """Recompute next_maintenance_date from the schedule and last maintenance date."""
    if schedule is None and asset.maintenance_schedule_id:
        schedule = db.session.get(MaintenanceSchedule, asset.maintenance_schedule_id)
    if schedule is None or asset.last_maintenance_date is None:
        asset.next_maintenance_date = None
        return
    asset.next_maintenance_date = calc_next_due(
        asset.last_maintenance_date, schedule.interval_value, schedule.interval_unit
    )


def check_asset_references(data: Dict[str, Any]) -> Dict[str, str]:
    """Field errors for foreign keys that do not resolve or do not nest."""
    errors = _check_references(
        data,
        {
            "category_id": (AssetCategory, "category"),
            "master_asset_id": (MasterAsset, "master asset"),
            "maintenance_schedule_id": (MaintenanceSchedule, "maintenance schedule"),
        },
    )
    errors.update(_check_location_chain(data))
    return errors


def _apply_asset(asset: Asset, data: Dict[str, Any]) -> None:
    errors = check_asset_references(data)
    if errors:
        raise ValidationError(errors)
    for field in ASSET_FIELDS:
        # Logged maintenance time accumulates; a form without it keeps the total.
        if field == "time_spent_minutes" and data.get(field) is None:
            continue
        setattr(asset, field, data.get(field))
    if asset.status is None:
        asset.status = "active"
    if asset.time_spent_minutes is None:
        asset.time_spent_minutes = 0
    _refresh_next_maintenance(asset)


def _new_asset(data: Dict[str, Any], user: Optional[User]) -> Asset:
    asset = Asset()
    _apply_asset(asset, data)
    if user is not None:
        asset.created_by = user.id
    db.session.add(asset)
    return asset


def create_asset(data: Dict[str, Any], user: Optional[User] = None) -> Asset:
    asset = _new_asset(data, user)
    _commit("creating asset")
    logger.info("Created asset %s (%s)", asset.id, asset.name)
    return asset


def create_assets(rows: List[Dict[str, Any]], user: Optional[User] = None) -> List[Asset]:
    """Insert several validated assets in one transaction."""
    assets = [_new_asset(data, user) for data in rows]
    _commit("importing assets")
    logger.info("Imported %d assets", len(assets))
    return assets


def update_asset(
    asset_id: str, data: Dict[str, Any], expected_version: Optional[int] = None
) -> Asset:
    """
    Replace an asset's mutable fields.

    If expected_version is given and the stored version differs, the record
    was edited since the form was loaded and ConflictError is raised.
    """
    asset = get_asset(asset_id)
    if expected_version is not None and asset.version_id != expected_version:
        raise ConflictError()
    _apply_asset(asset, data)
    _commit("updating asset")
    logger.info("Updated asset %s (version %s)", asset.id, asset.version_id)
    return asset


def delete_asset(asset_id: str) -> None:
    _delete(get_asset(asset_id), "Asset")


def delete_assets(asset_ids: Iterable[str]) -> int:
    """Delete several assets at once; unknown ids are ignored. Returns the count deleted."""
    ids = [i for i in asset_ids if i]
    if not ids:
        return 0
    assets = db.session.scalars(db.select(Asset).where(Asset.id.in_(ids))).all()
    for asset in assets:
        db.session.delete(asset)
    _commit("deleting assets")
    logger.info("Deleted %d assets", len(assets))
    return len(assets)


def assign_schedule(asset_id: str, schedule_id: str, last_maintenance_date: datetime) -> Asset:
    """Link an asset to a schedule and compute its next due date."""
    asset = get_asset(asset_id)
    schedule = get_schedule(schedule_id)
    asset.maintenance_schedule_id = schedule.id
    asset.last_maintenance_date = last_maintenance_date
    _refresh_next_maintenance(asset, schedule)
    _commit("assigning maintenance schedule")
    logger.info(
        "Assigned schedule %s to asset %s, next due %s",
        schedule.id,
        asset.id,
        asset.next_maintenance_date,
    )
    return asset


def record_maintenance(
    asset_id: str, performed_at: datetime, minutes: Optional[int] = None
) -> Asset:
    """Log a completed service: moves last/next maintenance dates forward."""
    asset = get_asset(asset_id)
    asset.last_maintenance_date = performed_at
    if minutes:
        asset.time_spent_minutes = (asset.time_spent_minutes or 0) + minutes
    _refresh_next_maintenance(asset)
    _commit("recording maintenance")
    logger.info("Recorded maintenance on asset %s at %s", asset.id, performed_at)
    return asset


# =============================================================================
# Users
# =============================================================================


def list_users(
    search: Optional[str] = None, role: Optional[str] = None, status: Optional[str] = None
) -> List[User]:
    query = db.select(User).order_by(User.email)
    if search:
        term = f"%{search.lower()}%"
        query = query.where(
            or_(func.lower(User.email).like(term), func.lower(User.full_name).like(term))
        )
    if role:
        query = query.where(User.role == role)
    if status:
        query = query.where(User.status == status)
    return db.session.scalars(query).all()


def count_users() -> int:
    return _count(User)


def get_user(user_id: str) -> User:
    return _get(User, user_id, "User")


def get_user_by_email(email: str) -> Optional[User]:
    return db.session.scalars(
        db.select(User).where(func.lower(User.email) == email.strip().lower())
    ).first()


def create_user(email: str, password_hash: str, full_name: Optional[str], role: str) -> User:
    if get_user_by_email(email) is not None:
        raise DuplicateError(f"An account for '{email}' already exists")
    user = User(
        email=email.strip().lower(),
        password_hash=password_hash,
        full_name=full_name,
        role=role,
        status="active",
    )
    db.session.add(user)
    _commit("creating user", on_integrity=DuplicateError(f"An account for '{email}' already exists"))
    logger.info("Created user %s (%s, %s)", user.id, user.email, user.role)
    return user


def update_user(user_id: str, data: Dict[str, Any]) -> User:
    user = get_user(user_id)
    user.role = data["role"]
    user.status = data["status"]
    if data.get("full_name") is not None:
        user.full_name = data["full_name"]
    _commit("updating user")
    return user


def update_profile(
    user_id: str, full_name: Optional[str], password_hash: Optional[str] = None
) -> User:
    """Self-service changes: display name and, when given, a new password hash."""
    user = get_user(user_id)
    user.full_name = full_name
    if password_hash:
        user.password_hash = password_hash
    _commit("updating profile")
    return user


def set_users_status(user_ids: Iterable[str], status: str) -> int:
    users = db.session.scalars(db.select(User).where(User.id.in_(list(user_ids)))).all()
    for user in users:
        user.status = status
    _commit("updating user status")
    return len(users)


def touch_sign_in(user: User, when: datetime) -> None:
    user.last_sign_in_at = when
    _commit("recording sign-in")
