"""
Shared enumerations for the audit trail.

Actions are checked against AuditAction when an entry is
appended so the UI always has a label for them. The database
column stays a plain string: the vocabulary can grow without
a migration, and entries written under an older vocabulary
remain readable.
"""

import enum
from datetime import timedelta


class AuditAction(str, enum.Enum):
    """Verbs an audit entry may record."""
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    COMPLETED = "completed"
    SNOOZED = "snoozed"
    CANCELLED = "cancelled"
    INVITED = "invited"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ROLE_CHANGED = "role_changed"
    REMOVED = "removed"
    STARTED = "started"
    STOPPED = "stopped"
    FAILED = "failed"
    SUCCEEDED = "succeeded"


class AuditEntityType(str, enum.Enum):
    """Common categories of affected objects. Not enforced."""
    ORG = "org"
    RECORD = "record"
    REMINDER = "reminder"
    SUBSCRIPTION = "subscription"
    MEMBER = "member"
    INVITE = "invite"
    SCHEDULE = "schedule"
    AUTOMATION = "automation"


class StatsWindow(str, enum.Enum):
    """Trailing windows supported by the statistics endpoint."""
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"

    @property
    def duration(self) -> timedelta:
        return _WINDOW_DURATIONS[self]


_WINDOW_DURATIONS = {
    StatsWindow.HOUR: timedelta(hours=1),
    StatsWindow.DAY: timedelta(days=1),
    StatsWindow.WEEK: timedelta(days=7),
    StatsWindow.MONTH: timedelta(days=30),
}


class GroupBy(str, enum.Enum):
    """Bucket sizes for the activity summary timeline."""
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"


# Key used in per-actor counts for entries with no actor.
SYSTEM_ACTOR = "system"
