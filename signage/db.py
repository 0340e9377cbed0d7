"""Relational schema for categories, templates, assets, schedules, locations and users."""

import sqlite3
import uuid
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.engine import Engine

from .calculations import calc_warranty_end, is_warranty_active, warranty_status
from .schedule import Interval, IntervalUnit

db = SQLAlchemy()


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """SQLite ignores foreign keys unless asked to enforce them per connection."""
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


class AssetCategory(db.Model):
    __tablename__ = "asset_categories"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(100), nullable=False, unique=True)
    description = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    assets = db.relationship("Asset", back_populates="category")
    master_assets = db.relationship("MasterAsset", back_populates="category")


class MaintenanceSchedule(db.Model):
    __tablename__ = "maintenance_schedules"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(100), nullable=False)
    service_type = db.Column(db.String(100), nullable=False)
    interval_value = db.Column(db.Integer, nullable=False)
    interval_unit = db.Column(db.String(8), nullable=False)
    description = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    @property
    def interval(self) -> Interval:
        return Interval(self.interval_value, IntervalUnit.parse(self.interval_unit))

    @property
    def interval_display(self) -> str:
        return self.interval.display


class MasterAsset(db.Model):
    __tablename__ = "master_assets"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(200), nullable=False)
    category_id = db.Column(
        db.String(36), db.ForeignKey("asset_categories.id", ondelete="RESTRICT"), nullable=False
    )
    manufacturer = db.Column(db.String(128))
    model_number = db.Column(db.String(128))
    description = db.Column(db.Text)
    screen_size = db.Column(db.String(32))
    resolution = db.Column(db.String(32))
    power_consumption = db.Column(db.Float)
    operating_system = db.Column(db.String(64))
    mount_type = db.Column(db.String(64))
    connectivity = db.Column(db.String(200))
    estimated_maintenance_time = db.Column(db.Integer, default=0)
    maintenance_schedule_id = db.Column(
        db.String(36), db.ForeignKey("maintenance_schedules.id", ondelete="RESTRICT")
    )
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    category = db.relationship("AssetCategory", back_populates="master_assets")
    maintenance_schedule = db.relationship("MaintenanceSchedule")
    assets = db.relationship("Asset", back_populates="master_asset")

    @property
    def connectivity_list(self):
        if not self.connectivity:
            return []
        return [c.strip() for c in self.connectivity.split(",") if c.strip()]


class Location(db.Model):
    __tablename__ = "locations"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(200), nullable=False)

    sections = db.relationship("Section", back_populates="location", order_by="Section.name")


class Section(db.Model):
    __tablename__ = "sections"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(200), nullable=False)
    location_id = db.Column(
        db.String(36), db.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False
    )

    location = db.relationship("Location", back_populates="sections")
    sub_sections = db.relationship(
        "SubSection", back_populates="section", order_by="SubSection.name"
    )


class SubSection(db.Model):
    __tablename__ = "sub_sections"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(200), nullable=False)
    section_id = db.Column(
        db.String(36), db.ForeignKey("sections.id", ondelete="RESTRICT"), nullable=False
    )

    section = db.relationship("Section", back_populates="sub_sections")
    zones = db.relationship("Zone", back_populates="sub_section", order_by="Zone.name")


class Zone(db.Model):
    __tablename__ = "zones"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(200), nullable=False)
    sub_section_id = db.Column(
        db.String(36), db.ForeignKey("sub_sections.id", ondelete="RESTRICT"), nullable=False
    )

    sub_section = db.relationship("SubSection", back_populates="zones")


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    email = db.Column(db.String(254), nullable=False, unique=True)
    full_name = db.Column(db.String(200))
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(16), nullable=False, default="user")
    status = db.Column(db.String(16), nullable=False, default="active")
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    last_sign_in_at = db.Column(db.DateTime)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def initials(self) -> str:
        local = self.email.split("@")[0]
        parts = [p for p in local.split(".") if p]
        if len(parts) >= 2:
            return (parts[0][0] + parts[1][0]).upper()
        return local[:1].upper()


class Asset(db.Model):
    __tablename__ = "assets"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(200), nullable=False)
    category_id = db.Column(
        db.String(36), db.ForeignKey("asset_categories.id", ondelete="RESTRICT"), nullable=False
    )
    master_asset_id = db.Column(
        db.String(36), db.ForeignKey("master_assets.id", ondelete="RESTRICT")
    )
    status = db.Column(db.String(24), nullable=False, default="active")

    # Placement
    asset_location = db.Column(db.String(200))
    google_location = db.Column(db.String(500))
    latitude = db.Column(db.Float)
    longitude = db.Column(db.Float)
    location_id = db.Column(db.String(36), db.ForeignKey("locations.id", ondelete="RESTRICT"))
    section_id = db.Column(db.String(36), db.ForeignKey("sections.id", ondelete="RESTRICT"))
    sub_section_id = db.Column(
        db.String(36), db.ForeignKey("sub_sections.id", ondelete="RESTRICT")
    )
    zone_id = db.Column(db.String(36), db.ForeignKey("zones.id", ondelete="RESTRICT"))

    # Hardware identity and specs
    serial_number = db.Column(db.String(128))
    mac_address = db.Column(db.String(17))
    ip_address = db.Column(db.String(45))
    barcode = db.Column(db.String(128))
    manufacturer = db.Column(db.String(128))
    model_number = db.Column(db.String(128))
    screen_size = db.Column(db.String(32))
    resolution = db.Column(db.String(32))
    power_consumption = db.Column(db.Float)
    operating_system = db.Column(db.String(64))
    description = db.Column(db.Text)

    # Lifecycle
    purchase_date = db.Column(db.Date)
    installation_date = db.Column(db.Date)
    warranty_start_date = db.Column(db.Date)
    warranty_period_months = db.Column(db.Integer)
    warranty_end_date = db.Column(db.Date)

    # Digital signage configuration
    content_management_system = db.Column(db.String(128))
    display_orientation = db.Column(db.String(16), default="Landscape")
    operating_hours = db.Column(db.Integer)
    brightness_level = db.Column(db.Integer)

    # Maintenance
    maintenance_schedule_id = db.Column(
        db.String(36), db.ForeignKey("maintenance_schedules.id", ondelete="RESTRICT")
    )
    last_maintenance_date = db.Column(db.DateTime)
    next_maintenance_date = db.Column(db.DateTime)
    time_spent_minutes = db.Column(db.Integer, default=0)

    created_by = db.Column(db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )
    version_id = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    category = db.relationship("AssetCategory", back_populates="assets")
    master_asset = db.relationship("MasterAsset", back_populates="assets")
    maintenance_schedule = db.relationship("MaintenanceSchedule")
    location = db.relationship("Location")
    section = db.relationship("Section")
    sub_section = db.relationship("SubSection")
    zone = db.relationship("Zone")

    @property
    def warranty_end(self):
        """Computed end (start + months) when available, else the explicit end date."""
        return (
            calc_warranty_end(self.warranty_start_date, self.warranty_period_months)
            or self.warranty_end_date
        )

    def is_warranty_active(self, now) -> bool:
        return is_warranty_active(self.warranty_start_date, self.warranty_period_months, now)

    def warranty_status(self, now):
        return warranty_status(self.warranty_end, now)
