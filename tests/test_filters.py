#!/usr/bin/env python3
"""Tests for asset list filtering, sorting and pagination."""

from datetime import date, datetime
from types import SimpleNamespace

import pytest

from signage.filters import (
    AssetFilter,
    apply_pipeline,
    filter_assets,
    paginate,
    sort_assets,
)

NOW = datetime(2024, 4, 10, 12, 0)

FIELDS = (
    "name",
    "serial_number",
    "ip_address",
    "mac_address",
    "category_id",
    "location_id",
    "section_id",
    "sub_section_id",
    "zone_id",
    "warranty_end",
    "maintenance_schedule_id",
    "last_maintenance_date",
    "next_maintenance_date",
    "operating_hours",
    "installation_date",
)


def make_asset(id, **kwargs):
    values = {name: None for name in FIELDS}
    values.update(kwargs)
    return SimpleNamespace(id=id, **values)


@pytest.fixture
def fleet():
    return [
        make_asset(
            "a1",
            name="Lobby Display",
            serial_number="SN-100",
            ip_address="10.0.0.5",
            category_id="screens",
            location_id="hq",
            warranty_end=date(2025, 1, 1),
            maintenance_schedule_id="clean",
            last_maintenance_date=datetime(2024, 1, 1),
            next_maintenance_date=datetime(2024, 4, 1),
            operating_hours=12,
            installation_date=date(2023, 6, 1),
        ),
        make_asset(
            "a2",
            name="cafeteria menu board",
            serial_number="SN-200",
            category_id="screens",
            location_id="annex",
            warranty_end=date(2024, 5, 1),
            maintenance_schedule_id="inspect",
            last_maintenance_date=datetime(2024, 3, 1),
            next_maintenance_date=datetime(2024, 6, 1),
            operating_hours=24,
            installation_date=date(2024, 2, 1),
        ),
        make_asset(
            "a3",
            name="Kiosk",
            mac_address="00:1A:2B:3C:4D:5E",
            category_id="kiosks",
            location_id="hq",
            warranty_end=date(2023, 1, 1),
            operating_hours=8,
        ),
        make_asset("a4", name="Spare Player", category_id="players"),
    ]


@pytest.fixture
def schedules():
    return {
        "clean": SimpleNamespace(id="clean", service_type="Cleaning"),
        "inspect": SimpleNamespace(id="inspect", service_type="Inspection"),
    }


def ids(assets):
    return [a.id for a in assets]


# =============================================================================
# AssetFilter
# =============================================================================


class TestAssetFilter:
    """Tests for AssetFilter construction and argument round-trips."""

    def test_default_is_inactive(self):
        """An empty filter is inactive; any criterion activates it."""
        assert not AssetFilter().is_active
        assert AssetFilter(query="lobby").is_active

    def test_unknown_warranty_filter_raises(self):
        """Warranty filters are limited to the known values."""
        with pytest.raises(ValueError, match="Unknown warranty filter"):
            AssetFilter(warranty_status="soon")

    def test_unknown_maintenance_status_raises(self):
        """Maintenance status filters must name a real status."""
        with pytest.raises(ValueError):
            AssetFilter(maintenance_status="later")

    def test_from_args_ignores_blank_and_all(self):
        """Blank values and "all" leave a criterion unset."""
        flt = AssetFilter.from_args({"query": " ", "category_id": "all", "location_id": ""})
        assert flt == AssetFilter()

    def test_from_args_drops_unparseable_values(self):
        """Values that fail to parse are dropped, not raised."""
        flt = AssetFilter.from_args(
            {
                "operating_hours_min": "lots",
                "installed_from": "yesterday",
                "warranty_status": "bogus",
                "maintenance_status": "soon",
            }
        )
        assert flt == AssetFilter()

    def test_from_args_parses_types(self):
        """Query arguments become numbers, dates and lower-case statuses."""
        flt = AssetFilter.from_args(
            {
                "operating_hours_min": "8",
                "installed_to": "2024-01-31",
                "maintenance_status": "OVERDUE",
                "unknown": "ignored",
            }
        )
        assert flt.operating_hours_min == 8.0
        assert flt.installed_to == date(2024, 1, 31)
        assert flt.maintenance_status == "overdue"

    def test_to_args_round_trip(self):
        """to_args output parses back to an equal filter."""
        flt = AssetFilter(
            query="lobby",
            category_id="screens",
            warranty_status="expiring",
            operating_hours_max=16.0,
            due_from=date(2024, 4, 1),
        )
        assert AssetFilter.from_args(flt.to_args()) == flt

    def test_to_args_omits_defaults(self):
        """Unset criteria are left out of the query arguments."""
        assert AssetFilter(query="x").to_args() == {"query": "x"}

    def test_without_resets_named_criteria(self):
        """without() clears only the named criteria."""
        flt = AssetFilter(query="x", category_id="screens").without("query")
        assert flt == AssetFilter(category_id="screens")


# =============================================================================
# filter_assets
# =============================================================================


class TestFilterAssets:
    """Tests for filter_assets."""

    def test_empty_filter_keeps_everything(self, fleet):
        """An empty filter returns every asset in order."""
        assert ids(filter_assets(fleet, AssetFilter(), NOW)) == ["a1", "a2", "a3", "a4"]

    def test_query_is_case_insensitive_over_name(self, fleet):
        """The search text matches names regardless of case."""
        assert ids(filter_assets(fleet, AssetFilter(query="MENU"), NOW)) == ["a2"]

    def test_query_matches_serial_ip_mac_and_id(self, fleet):
        """The search text also matches serial, IP, MAC and id."""
        assert ids(filter_assets(fleet, AssetFilter(query="sn-1"), NOW)) == ["a1"]
        assert ids(filter_assets(fleet, AssetFilter(query="10.0.0"), NOW)) == ["a1"]
        assert ids(filter_assets(fleet, AssetFilter(query="3c:4d"), NOW)) == ["a3"]
        assert ids(filter_assets(fleet, AssetFilter(query="a4"), NOW)) == ["a4"]

    def test_criteria_are_anded(self, fleet):
        """An asset must match every criterion set."""
        flt = AssetFilter(category_id="screens", location_id="hq")
        assert ids(filter_assets(fleet, flt, NOW)) == ["a1"]

    def test_warranty_active_includes_expiring(self, fleet):
        """Active warranties include those about to expire."""
        assert ids(filter_assets(fleet, AssetFilter(warranty_status="active"), NOW)) == ["a1", "a2"]

    def test_warranty_expiring_only(self, fleet):
        """The expiring filter keeps warranties ending within 90 days."""
        assert ids(filter_assets(fleet, AssetFilter(warranty_status="expiring"), NOW)) == ["a2"]

    def test_warranty_expired(self, fleet):
        """The expired filter keeps lapsed warranties."""
        assert ids(filter_assets(fleet, AssetFilter(warranty_status="expired"), NOW)) == ["a3"]

    def test_maintenance_status(self, fleet):
        """Assets are filtered by their computed maintenance status."""
        overdue = filter_assets(fleet, AssetFilter(maintenance_status="overdue"), NOW)
        unscheduled = filter_assets(fleet, AssetFilter(maintenance_status="no_maintenance"), NOW)
        assert ids(overdue) == ["a1"]
        assert ids(unscheduled) == ["a3", "a4"]

    def test_service_type_uses_schedules(self, fleet, schedules):
        """Service type is looked up through the asset schedule."""
        flt = AssetFilter(service_type="Inspection")
        assert ids(filter_assets(fleet, flt, NOW, schedules)) == ["a2"]

    def test_operating_hours_range_is_inclusive(self, fleet):
        """Operating hours bounds include their endpoints."""
        flt = AssetFilter(operating_hours_min=8, operating_hours_max=12)
        assert ids(filter_assets(fleet, flt, NOW)) == ["a1", "a3"]

    def test_installed_range_excludes_missing_dates(self, fleet):
        """Assets with no installation date fail a date range."""
        flt = AssetFilter(installed_from=date(2023, 1, 1))
        assert ids(filter_assets(fleet, flt, NOW)) == ["a1", "a2"]

    def test_due_range_compares_dates(self, fleet):
        """Next due datetimes are compared by calendar date."""
        flt = AssetFilter(due_from=date(2024, 4, 1), due_to=date(2024, 4, 30))
        assert ids(filter_assets(fleet, flt, NOW)) == ["a1"]

    def test_filtering_is_idempotent(self, fleet, schedules):
        """Filtering an already filtered list changes nothing."""
        flt = AssetFilter(category_id="screens", warranty_status="active")
        once = filter_assets(fleet, flt, NOW, schedules)
        assert filter_assets(once, flt, NOW, schedules) == once


# =============================================================================
# sort_assets
# =============================================================================


class TestSortAssets:
    """Tests for sort_assets."""

    def test_names_sort_case_insensitively(self, fleet):
        """Name order ignores case."""
        assert ids(sort_assets(fleet, "name")) == ["a2", "a3", "a1", "a4"]

    def test_descending(self, fleet):
        """desc reverses the order."""
        assert ids(sort_assets(fleet, "name", "desc")) == ["a4", "a1", "a3", "a2"]

    def test_missing_values_last_in_both_directions(self, fleet):
        """Assets missing the sort value stay at the end."""
        assert ids(sort_assets(fleet, "installation_date")) == ["a1", "a2", "a3", "a4"]
        assert ids(sort_assets(fleet, "installation_date", "desc")) == ["a2", "a1", "a3", "a4"]

    def test_ties_fall_back_to_id(self):
        """Equal keys are ordered by id in either direction."""
        assets = [make_asset("b", name="Same"), make_asset("a", name="same")]
        assert ids(sort_assets(assets, "name")) == ["a", "b"]
        assert ids(sort_assets(assets, "name", "desc")) == ["a", "b"]

    def test_mixes_dates_and_datetimes(self):
        """Dates and datetimes in one column sort together."""
        assets = [
            make_asset("x", warranty_end=datetime(2024, 1, 2, 8, 0)),
            make_asset("y", warranty_end=date(2024, 1, 1)),
        ]
        assert ids(sort_assets(assets, "warranty_end")) == ["y", "x"]

    def test_bad_direction_raises(self, fleet):
        """Only asc and desc are accepted."""
        with pytest.raises(ValueError, match="Sort direction"):
            sort_assets(fleet, "name", "up")


# =============================================================================
# paginate
# =============================================================================


class TestPaginate:
    """Tests for paginate and Page."""

    def test_pages_concatenate_to_input(self):
        """All pages together give back the input list."""
        items = list(range(23))
        pages = [paginate(items, n, 10) for n in (1, 2, 3)]
        assert [i for p in pages for i in p.items] == items
        assert pages[0].total_pages == 3
        assert len(pages[2].items) == 3

    def test_clamps_out_of_range_pages(self):
        """Page numbers outside the range are clamped."""
        items = list(range(23))
        assert paginate(items, 99, 10).page == 3
        assert paginate(items, 0, 10).page == 1
        assert paginate(items, -5, 10).items == list(range(10))

    def test_empty_list(self):
        """An empty list is a single empty first page."""
        page = paginate([], 3, 10)
        assert page.items == []
        assert page.page == 1
        assert page.total_pages == 0
        assert page.start_index == 0
        assert page.end_index == 0
        assert not page.has_next

    @pytest.mark.parametrize("size", [0, -1])
    def test_page_size_must_be_positive(self, size):
        """A page size below one is rejected."""
        with pytest.raises(ValueError, match="Page size"):
            paginate([1, 2, 3], 1, size)

    def test_indexes_and_navigation(self):
        """One-based item indexes and prev/next flags."""
        page = paginate(list(range(25)), 2, 10)
        assert (page.start_index, page.end_index) == (11, 20)
        assert page.has_prev
        assert page.has_next

    def test_page_number_window(self):
        """The page links are a window of five around the current page."""
        assert paginate(list(range(30)), 1, 10).page_numbers() == [1, 2, 3]
        assert paginate(list(range(100)), 5, 10).page_numbers() == [3, 4, 5, 6, 7]
        assert paginate(list(range(100)), 10, 10).page_numbers() == [6, 7, 8, 9, 10]


class TestApplyPipeline:
    """Tests for apply_pipeline."""

    def test_filter_then_sort_then_paginate(self, fleet):
        """Filters, sorts and pages in one call."""
        page = apply_pipeline(
            fleet, AssetFilter(category_id="screens"), NOW, sort_key="name", page=1, page_size=1
        )
        assert ids(page.items) == ["a2"]
        assert page.total_count == 2
        assert page.total_pages == 2
