"""Interval definitions for maintenance schedules."""

from dataclasses import dataclass
from enum import Enum
from typing import Union


class IntervalUnit(Enum):
    """Units a maintenance interval can be expressed in."""

    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"

    @classmethod
    def parse(cls, unit: Union["IntervalUnit", str]) -> "IntervalUnit":
        """Coerce a unit name to an IntervalUnit, failing loudly on unknown units."""
        if isinstance(unit, cls):
            return unit
        try:
            return cls(str(unit).strip().lower())
        except ValueError:
            valid = ", ".join(u.value for u in cls)
            raise ValueError(f"Unknown interval unit '{unit}' (expected one of: {valid})")

    @property
    def is_calendar(self) -> bool:
        """Month and year intervals use calendar-field addition."""
        return self in (IntervalUnit.MONTH, IntervalUnit.YEAR)


@dataclass(frozen=True)
class Interval:
    """A recurring service interval, e.g. 3 months."""

    value: int
    unit: IntervalUnit

    def __post_init__(self):
        if isinstance(self.value, bool) or not isinstance(self.value, int) or self.value < 1:
            raise ValueError(f"Interval value must be a positive integer, got {self.value!r}")
        object.__setattr__(self, "unit", IntervalUnit.parse(self.unit))

    @property
    def display(self) -> str:
        """Human-readable interval, e.g. '3 months' or '1 week'."""
        suffix = "s" if self.value > 1 else ""
        return f"{self.value} {self.unit.value}{suffix}"
