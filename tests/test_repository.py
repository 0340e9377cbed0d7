#!/usr/bin/env python3
"""Tests for the data-access layer."""

from datetime import datetime, timedelta

import pytest

from conftest import make_asset, make_category, make_schedule
from signage import repository
from signage.db import db
from signage.errors import (
    ConflictError,
    DuplicateError,
    NotFoundError,
    ReferentialIntegrityError,
    ValidationError,
)
from signage.validation import validate_data

pytestmark = pytest.mark.usefixtures("ctx")


# =============================================================================
# Categories
# =============================================================================


class TestCategories:
    """Tests for category create/update/delete."""

    def test_create_assigns_id(self):
        """A new category gets an id and is stored."""
        category = make_category("Displays", "Wall screens")
        assert category.id
        assert repository.get_category(category.id).description == "Wall screens"

    def test_duplicate_name_is_case_insensitive(self):
        """Category names are unique regardless of case."""
        make_category("Displays")
        with pytest.raises(DuplicateError, match="Category with name 'DISPLAYS' already exists"):
            make_category("DISPLAYS")
        assert len(repository.list_categories()) == 1

    def test_rename_to_existing_name(self):
        """Renaming onto another category name is a duplicate."""
        make_category("Displays")
        kiosks = make_category("Kiosks")
        with pytest.raises(DuplicateError):
            repository.update_category(kiosks.id, {"name": "displays", "description": None})

    def test_rename_keeps_own_name(self):
        """Saving a category under its own name is allowed."""
        category = make_category("Displays")
        updated = repository.update_category(category.id, {"name": "Displays", "description": "x"})
        assert updated.description == "x"

    def test_delete_blocked_while_assets_reference_it(self):
        """A category in use by assets cannot be deleted."""
        category = make_category("Displays")
        make_asset(category.id, "One")
        make_asset(category.id, "Two")
        with pytest.raises(ReferentialIntegrityError, match="in use by 2 assets"):
            repository.delete_category(category.id)
        assert repository.get_category(category.id).name == "Displays"
        assert len(repository.list_assets()) == 2

    def test_delete_unused(self):
        """An unused category is removed."""
        category = make_category("Displays")
        repository.delete_category(category.id)
        with pytest.raises(NotFoundError):
            repository.get_category(category.id)

    def test_asset_counts(self):
        """Counts only include categories with assets."""
        displays = make_category("Displays")
        make_category("Kiosks")
        make_asset(displays.id, "One")
        assert repository.category_asset_counts() == {displays.id: 1}


# =============================================================================
# Schedules
# =============================================================================


class TestSchedules:
    """Tests for maintenance schedules."""

    def test_update_rolls_asset_due_dates(self):
        """Changing an interval recomputes next due for its assets."""
        category = make_category()
        schedule = make_schedule(value=3, unit="month")
        asset = make_asset(
            category.id,
            maintenance_schedule_id=schedule.id,
            last_maintenance_date="2024-01-15",
        )
        assert asset.next_maintenance_date == datetime(2024, 4, 15)

        repository.update_schedule(
            schedule.id,
            {
                "name": "Monthly clean",
                "service_type": "Cleaning",
                "interval_value": 1,
                "interval_unit": "month",
                "description": None,
            },
        )
        assert repository.get_asset(asset.id).next_maintenance_date == datetime(2024, 2, 15)

    def test_delete_blocked_while_assigned(self):
        """A schedule assigned to assets cannot be deleted."""
        category = make_category()
        schedule = make_schedule()
        make_asset(category.id, maintenance_schedule_id=schedule.id, last_maintenance_date="2024-01-15")
        with pytest.raises(ReferentialIntegrityError, match="in use by 1 asset "):
            repository.delete_schedule(schedule.id)

    def test_interval_display(self):
        """Intervals read as "<n> <unit>" with plural units."""
        assert make_schedule(value=1, unit="week").interval_display == "1 week"
        assert make_schedule(value=6, unit="month").interval_display == "6 months"


# =============================================================================
# Assets
# =============================================================================


class TestAssets:
    """Tests for asset persistence."""

    def test_create_defaults(self):
        """New assets get a UUID, active status and version 1."""
        asset = make_asset(make_category().id)
        assert len(asset.id) == 36
        assert asset.status == "active"
        assert asset.time_spent_minutes == 0
        assert asset.version_id == 1
        assert asset.next_maintenance_date is None

    def test_unknown_category_rejected(self):
        """An asset must reference an existing category."""
        with pytest.raises(ValidationError) as excinfo:
            make_asset("no-such-category")
        assert excinfo.value.errors == {"category_id": "Unknown category"}
        assert repository.list_assets() == []

    def test_list_newest_first(self):
        """Assets are listed by creation time, newest first."""
        category = make_category()
        older = make_asset(category.id, "Older")
        newer = make_asset(category.id, "Newer")
        older.created_at = datetime(2024, 1, 1)
        newer.created_at = datetime(2024, 2, 1)
        db.session.commit()
        assert [a.name for a in repository.list_assets()] == ["Newer", "Older"]

    def test_update_increments_version(self):
        """Each update bumps the version."""
        category = make_category()
        asset = make_asset(category.id, "Before")
        data = validate_data("asset", {"name": "After", "category_id": category.id})
        updated = repository.update_asset(asset.id, data, expected_version=1)
        assert updated.name == "After"
        assert updated.version_id == 2

    def test_stale_version_conflicts(self):
        """An update against an old version is a conflict."""
        category = make_category()
        asset = make_asset(category.id, "Original")
        first = validate_data("asset", {"name": "First edit", "category_id": category.id})
        second = validate_data("asset", {"name": "Second edit", "category_id": category.id})
        repository.update_asset(asset.id, first, expected_version=1)
        with pytest.raises(ConflictError):
            repository.update_asset(asset.id, second, expected_version=1)
        assert repository.get_asset(asset.id).name == "First edit"

    def test_edit_without_minutes_keeps_logged_time(self):
        """Editing an asset keeps its logged maintenance minutes."""
        category = make_category()
        schedule = make_schedule()
        asset = make_asset(category.id, maintenance_schedule_id=schedule.id, last_maintenance_date="2024-01-15")
        repository.record_maintenance(asset.id, datetime(2024, 4, 1), minutes=30)
        data = validate_data(
            "asset",
            {
                "name": "Renamed",
                "category_id": category.id,
                "maintenance_schedule_id": schedule.id,
                "last_maintenance_date": "2024-04-01",
            },
        )
        assert repository.update_asset(asset.id, data).time_spent_minutes == 30

    def test_warranty_end(self):
        """Warranty end comes from start date plus months."""
        asset = make_asset(
            make_category().id, warranty_start_date="2023-01-31", warranty_period_months=13
        )
        assert asset.warranty_end.isoformat() == "2024-02-29"
        assert asset.is_warranty_active(datetime(2024, 2, 29, 23, 0))
        assert asset.warranty_status(datetime(2024, 3, 1)) == "expired"

    def test_explicit_warranty_end_date(self):
        """An explicit warranty end date is used as is."""
        asset = make_asset(make_category().id, warranty_end_date="2030-01-01")
        assert asset.warranty_end.isoformat() == "2030-01-01"
        assert not asset.is_warranty_active(datetime(2024, 1, 1))

    def test_bulk_delete(self):
        """Bulk delete removes the listed assets and skips unknown ids."""
        category = make_category()
        keep = make_asset(category.id, "Keep")
        ids = [make_asset(category.id, f"Drop {n}").id for n in range(3)]
        assert repository.delete_assets(ids + ["missing", ""]) == 3
        assert [a.id for a in repository.list_assets()] == [keep.id]

    def test_bulk_delete_nothing(self):
        """An empty id list deletes nothing."""
        assert repository.delete_assets([]) == 0

    def test_get_missing_asset(self):
        """Looking up an unknown asset raises NotFoundError."""
        with pytest.raises(NotFoundError, match="Asset not found"):
            repository.get_asset("nope")


class TestMaintenance:
    """Tests for assigning schedules and logging service."""

    def test_assign_computes_next_due(self):
        """Assigning a schedule sets the next due date."""
        asset = make_asset(make_category().id)
        schedule = make_schedule(value=3, unit="month")
        assigned = repository.assign_schedule(asset.id, schedule.id, datetime(2024, 1, 15, 9, 30))
        assert assigned.maintenance_schedule_id == schedule.id
        assert assigned.next_maintenance_date == datetime(2024, 4, 15, 9, 30)

    def test_assign_unknown_schedule(self):
        """Assigning a missing schedule raises NotFoundError."""
        asset = make_asset(make_category().id)
        with pytest.raises(NotFoundError):
            repository.assign_schedule(asset.id, "nope", datetime(2024, 1, 15))

    def test_record_rolls_forward_and_accumulates(self):
        """Recording service moves the due date and adds up minutes."""
        schedule = make_schedule(value=2, unit="week")
        asset = make_asset(
            make_category().id, maintenance_schedule_id=schedule.id, last_maintenance_date="2024-01-01"
        )
        repository.record_maintenance(asset.id, datetime(2024, 3, 1, 10, 0), minutes=20)
        asset = repository.record_maintenance(asset.id, datetime(2024, 3, 15, 10, 0), minutes=25)
        assert asset.last_maintenance_date == datetime(2024, 3, 15, 10, 0)
        assert asset.next_maintenance_date == datetime(2024, 3, 15, 10, 0) + timedelta(weeks=2)
        assert asset.time_spent_minutes == 45

    def test_record_without_schedule_has_no_next_due(self):
        """Service on an unscheduled asset leaves next due empty."""
        asset = make_asset(make_category().id)
        asset = repository.record_maintenance(asset.id, datetime(2024, 3, 1))
        assert asset.next_maintenance_date is None


# =============================================================================
# Master assets and locations
# =============================================================================


class TestMasterAssets:
    """Tests for master asset templates."""

    def test_connectivity_round_trip(self):
        """Connectivity lists are stored as comma separated text."""
        category = make_category()
        data = validate_data(
            "master_asset",
            {"name": "QM55R", "category_id": category.id, "connectivity": ["WiFi", "HDMI"]},
        )
        master = repository.create_master_asset(data)
        assert master.connectivity == "WiFi, HDMI"
        assert master.connectivity_list == ["WiFi", "HDMI"]
        assert master.estimated_maintenance_time == 0

    def test_delete_blocked_while_used(self):
        """A master asset used by assets cannot be deleted."""
        category = make_category()
        master = repository.create_master_asset(
            validate_data("master_asset", {"name": "QM55R", "category_id": category.id})
        )
        make_asset(category.id, master_asset_id=master.id)
        with pytest.raises(ReferentialIntegrityError):
            repository.delete_master_asset(master.id)

    def test_category_delete_blocked_by_master_asset(self):
        """Master assets also keep their category from being deleted."""
        category = make_category()
        repository.create_master_asset(
            validate_data("master_asset", {"name": "QM55R", "category_id": category.id})
        )
        with pytest.raises(ReferentialIntegrityError, match="1 master asset"):
            repository.delete_category(category.id)


class TestLocations:
    """Tests for the location hierarchy."""

    def build_chain(self):
        location = repository.create_location_level("location", {"name": "HQ"})
        section = repository.create_location_level(
            "section", {"name": "Ground", "location_id": location.id}
        )
        sub_section = repository.create_location_level(
            "sub_section", {"name": "Lobby", "section_id": section.id}
        )
        zone = repository.create_location_level(
            "zone", {"name": "Entrance", "sub_section_id": sub_section.id}
        )
        return location, section, sub_section, zone

    def test_cascade_lists(self):
        """Each level lists the children of its parent."""
        location, section, sub_section, zone = self.build_chain()
        assert [s.id for s in repository.list_sections(location.id)] == [section.id]
        assert [s.id for s in repository.list_sub_sections(section.id)] == [sub_section.id]
        assert [z.id for z in repository.list_zones(sub_section.id)] == [zone.id]
        assert repository.list_sections("elsewhere") == []

    def test_unknown_parent(self):
        """A level must point at an existing parent."""
        with pytest.raises(ValidationError) as excinfo:
            repository.create_location_level("section", {"name": "Ground", "location_id": "nope"})
        assert "location_id" in excinfo.value.errors

    def test_unknown_level(self):
        """Only the four location levels are accepted."""
        with pytest.raises(ValueError, match="Unknown location level"):
            repository.create_location_level("floor", {"name": "x"})

    def test_asset_location_chain_must_nest(self):
        """An asset section must belong to its location."""
        location, section, sub_section, zone = self.build_chain()
        other = repository.create_location_level("location", {"name": "Annex"})
        with pytest.raises(ValidationError) as excinfo:
            make_asset(
                make_category().id,
                location_id=other.id,
                section_id=section.id,
            )
        assert excinfo.value.errors == {"section_id": "Does not belong to the selected location"}

    def test_asset_with_full_chain(self):
        """An asset can sit in a full location chain."""
        location, section, sub_section, zone = self.build_chain()
        asset = make_asset(
            make_category().id,
            location_id=location.id,
            section_id=section.id,
            sub_section_id=sub_section.id,
            zone_id=zone.id,
        )
        assert asset.zone.name == "Entrance"

    def test_delete_blocked_by_children(self):
        """A level with children cannot be deleted."""
        location, section, _, _ = self.build_chain()
        with pytest.raises(ReferentialIntegrityError, match="1 section"):
            repository.delete_location_level("location", location.id)

    def test_rename_and_delete_leaf(self):
        """A leaf zone can be renamed and deleted."""
        _, _, _, zone = self.build_chain()
        assert repository.update_location_level("zone", zone.id, {"name": "Exit"}).name == "Exit"
        repository.delete_location_level("zone", zone.id)
        assert repository.list_zones() == []


# =============================================================================
# Users
# =============================================================================


class TestUsers:
    """Tests for user records."""

    def test_duplicate_email_is_case_insensitive(self):
        """Email addresses are unique regardless of case."""
        repository.create_user("ops@example.com", "hash", None, "user")
        with pytest.raises(DuplicateError):
            repository.create_user("OPS@example.com", "hash", None, "user")

    def test_email_is_normalised(self):
        """Emails are trimmed and lower-cased."""
        user = repository.create_user(" Ops@Example.com ", "hash", None, "user")
        assert user.email == "ops@example.com"
        assert repository.get_user_by_email("OPS@EXAMPLE.COM").id == user.id

    def test_list_users_filters(self):
        """Users can be searched by name and filtered by role."""
        repository.create_user("ann@example.com", "h", "Ann Admin", "admin")
        repository.create_user("bob@example.com", "h", "Bob", "viewer")
        assert [u.email for u in repository.list_users(search="ADMIN")] == ["ann@example.com"]
        assert [u.email for u in repository.list_users(role="viewer")] == ["bob@example.com"]

    def test_update_user_keeps_name_when_omitted(self):
        """A missing full name leaves the stored one alone."""
        user = repository.create_user("ann@example.com", "h", "Ann", "user")
        repository.update_user(user.id, {"role": "manager", "status": "active", "full_name": None})
        user = repository.get_user(user.id)
        assert (user.role, user.full_name) == ("manager", "Ann")

    def test_set_users_status(self):
        """Status changes apply to every listed user."""
        a = repository.create_user("a@example.com", "h", None, "user")
        b = repository.create_user("b@example.com", "h", None, "user")
        assert repository.set_users_status([a.id, b.id], "inactive") == 2
        assert {u.status for u in repository.list_users()} == {"inactive"}

    def test_initials(self):
        """Initials come from the email when there is no name."""
        user = repository.create_user("jane.doe@example.com", "h", None, "user")
        assert user.initials == "JD"
