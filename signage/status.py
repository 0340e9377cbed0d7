"""Status enum for maintenance urgency buckets."""

from enum import Enum


class MaintenanceStatus(Enum):
    """Maintenance status buckets. Lower value = more urgent."""

    OVERDUE = 1
    DUE_TODAY = 2
    DUE_THIS_WEEK = 3
    DUE_THIS_MONTH = 4
    DUE_NEXT_30_DAYS = 5
    UPCOMING = 6
    NO_MAINTENANCE = 7  # No schedule or no last maintenance date

    @property
    def key(self) -> str:
        """Lowercase key used in URLs, forms and exports."""
        return self.name.lower()

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def is_due(self) -> bool:
        return self in (
            MaintenanceStatus.OVERDUE,
            MaintenanceStatus.DUE_TODAY,
            MaintenanceStatus.DUE_THIS_WEEK,
        )

    @classmethod
    def from_key(cls, key: str) -> "MaintenanceStatus":
        """Look up a status by its lowercase key (e.g. 'due_this_week')."""
        try:
            return cls[key.strip().upper()]
        except KeyError:
            valid = ", ".join(s.key for s in cls)
            raise ValueError(f"Unknown maintenance status '{key}' (expected one of: {valid})")


_LABELS = {
    MaintenanceStatus.OVERDUE: "Overdue",
    MaintenanceStatus.DUE_TODAY: "Due Today",
    MaintenanceStatus.DUE_THIS_WEEK: "Due This Week",
    MaintenanceStatus.DUE_THIS_MONTH: "Due This Month",
    MaintenanceStatus.DUE_NEXT_30_DAYS: "Due in 30 Days",
    MaintenanceStatus.UPCOMING: "Upcoming",
    MaintenanceStatus.NO_MAINTENANCE: "No Schedule",
}
