"""
Tests for StatsService: trailing-window stats and activity summaries.
"""

from datetime import datetime, timedelta

import pytest

from audit_trail.models.enums import GroupBy, StatsWindow, SYSTEM_ACTOR
from audit_trail.schemas.audit import AuditEntryCreate
from audit_trail.services.audit_store import AuditStore
from audit_trail.services.stats_service import (
    StatsService,
    bucket_start,
    pick_group_by,
    top_action,
)


def append_at(db_session, org_id, moment, action="created", entity_type="record", actor_id="alice"):
    """Append one entry with a fixed created_at."""
    store = AuditStore(db_session, clock=lambda: moment)
    return store.append(org_id, AuditEntryCreate(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id="e-1",
    ))


# --- Helper Function Tests ---

class TestTopAction:

    def test_highest_count_wins(self):
        assert top_action({"created": 1, "deleted": 3}) == "deleted"

    def test_tie_goes_to_alphabetically_first(self):
        assert top_action({"updated": 2, "created": 2, "deleted": 1}) == "created"

    def test_empty_is_none(self):
        assert top_action({}) is None


class TestPickGroupBy:

    @pytest.mark.parametrize("days,expected", [
        (1, GroupBy.HOUR),
        (2, GroupBy.HOUR),
        (3, GroupBy.DAY),
        (60, GroupBy.DAY),
        (61, GroupBy.WEEK),
    ])
    def test_thresholds(self, days, expected):
        start = datetime(2026, 1, 1)
        assert pick_group_by(start, start + timedelta(days=days)) == expected


class TestBucketStart:

    def test_hour(self):
        moment = datetime(2026, 1, 15, 12, 34, 56)
        assert bucket_start(moment, GroupBy.HOUR) == datetime(2026, 1, 15, 12)

    def test_day(self):
        moment = datetime(2026, 1, 15, 12, 34, 56)
        assert bucket_start(moment, GroupBy.DAY) == datetime(2026, 1, 15)

    def test_week_starts_monday(self):
        # 2026-01-15 is a Thursday.
        moment = datetime(2026, 1, 15, 12, 34, 56)
        assert bucket_start(moment, GroupBy.WEEK) == datetime(2026, 1, 12)


# --- get_stats Tests ---

class TestGetStats:

    def test_counts_by_action_entity_and_actor(self, db_session, base_time):
        append_at(db_session, "org-1", base_time, "created", "record", "alice")
        append_at(db_session, "org-1", base_time, "created", "reminder", "bob")
        append_at(db_session, "org-1", base_time, "deleted", "record", None)

        stats = StatsService(db_session).get_stats(
            "org-1", StatsWindow.DAY, now=base_time + timedelta(minutes=1)
        )

        assert stats.total == 3
        assert stats.by_action == {"created": 2, "deleted": 1}
        assert stats.by_entity_type == {"record": 2, "reminder": 1}
        assert stats.by_actor == {"alice": 1, "bob": 1, SYSTEM_ACTOR: 1}
        assert stats.top_action == "created"
        assert stats.window == StatsWindow.DAY

    def test_breakdowns_sum_to_total(self, db_session, base_time):
        for i, action in enumerate(["created", "updated", "updated", "deleted", "completed"]):
            append_at(db_session, "org-1", base_time + timedelta(minutes=i), action,
                      actor_id=None if i % 2 else f"user-{i}")

        stats = StatsService(db_session).get_stats(
            "org-1", "day", now=base_time + timedelta(hours=1)
        )

        assert sum(stats.by_action.values()) == stats.total
        assert sum(stats.by_entity_type.values()) == stats.total
        assert sum(stats.by_actor.values()) == stats.total

    def test_window_excludes_older_entries(self, db_session, base_time):
        now = base_time + timedelta(days=10)
        append_at(db_session, "org-1", now - timedelta(minutes=30))
        append_at(db_session, "org-1", now - timedelta(hours=5))
        append_at(db_session, "org-1", now - timedelta(days=3))
        append_at(db_session, "org-1", now - timedelta(days=20))

        service = StatsService(db_session)

        assert service.get_stats("org-1", StatsWindow.HOUR, now=now).total == 1
        assert service.get_stats("org-1", StatsWindow.DAY, now=now).total == 2
        assert service.get_stats("org-1", StatsWindow.WEEK, now=now).total == 3
        assert service.get_stats("org-1", StatsWindow.MONTH, now=now).total == 4

    def test_window_is_half_open(self, db_session, base_time):
        now = base_time + timedelta(days=1)
        append_at(db_session, "org-1", base_time)
        append_at(db_session, "org-1", now)

        stats = StatsService(db_session).get_stats("org-1", StatsWindow.DAY, now=now)

        assert stats.total == 1

    def test_scoped_to_org(self, db_session, base_time):
        append_at(db_session, "org-1", base_time)
        append_at(db_session, "org-2", base_time)

        stats = StatsService(db_session).get_stats(
            "org-1", now=base_time + timedelta(minutes=1)
        )

        assert stats.total == 1

    def test_empty_window(self, db_session, base_time):
        stats = StatsService(db_session).get_stats("org-1", now=base_time)

        assert stats.total == 0
        assert stats.by_action == {}
        assert stats.top_action is None

    def test_unknown_window_raises(self, db_session):
        with pytest.raises(ValueError):
            StatsService(db_session).get_stats("org-1", "year")


# --- Activity Summary Tests ---

class TestActivitySummary:

    def test_hourly_timeline(self, db_session, base_time):
        append_at(db_session, "org-1", base_time + timedelta(minutes=5))
        append_at(db_session, "org-1", base_time + timedelta(minutes=50))
        append_at(db_session, "org-1", base_time + timedelta(hours=3, minutes=1))

        summary = StatsService(db_session).get_activity_summary(
            "org-1", base_time, base_time + timedelta(days=1)
        )

        assert summary.group_by == GroupBy.HOUR
        assert [(b.timestamp, b.count) for b in summary.timeline] == [
            (base_time, 2),
            (base_time + timedelta(hours=3), 1),
        ]
        assert summary.total == 3

    def test_bounds_are_inclusive(self, db_session, base_time):
        end = base_time + timedelta(days=5)
        append_at(db_session, "org-1", base_time)
        append_at(db_session, "org-1", end)
        append_at(db_session, "org-1", end + timedelta(seconds=1))

        summary = StatsService(db_session).get_activity_summary("org-1", base_time, end)

        assert summary.total == 2
        assert summary.group_by == GroupBy.DAY

    def test_top_actors_limited_to_five(self, db_session, base_time):
        for i in range(7):
            for _ in range(i + 1):
                append_at(db_session, "org-1", base_time, actor_id=f"user-{i}")

        summary = StatsService(db_session).get_activity_summary(
            "org-1", base_time, base_time + timedelta(hours=1)
        )

        assert [a.actor_id for a in summary.top_actors] == [
            "user-6", "user-5", "user-4", "user-3", "user-2",
        ]
        assert summary.top_actors[0].count == 7

    def test_explicit_group_by(self, db_session, base_time):
        append_at(db_session, "org-1", base_time)
        append_at(db_session, "org-1", base_time + timedelta(days=1))

        summary = StatsService(db_session).get_activity_summary(
            "org-1", base_time - timedelta(days=3), base_time + timedelta(days=3), "week"
        )

        assert summary.group_by == GroupBy.WEEK
        assert [(b.timestamp, b.count) for b in summary.timeline] == [
            (datetime(2026, 1, 12), 2),
        ]

    def test_default_period_is_last_seven_days(self, db_session):
        summary = StatsService(db_session).get_activity_summary("org-1")

        assert summary.period.to - summary.period.from_ == timedelta(days=7)
        assert summary.total == 0
        assert summary.timeline == []

    def test_breakdowns_match_total(self, db_session, base_time):
        append_at(db_session, "org-1", base_time, "created", "record", "alice")
        append_at(db_session, "org-1", base_time, "deleted", "reminder", None)

        summary = StatsService(db_session).get_activity_summary(
            "org-1", base_time, base_time + timedelta(hours=2)
        )

        assert summary.by_action == {"created": 1, "deleted": 1}
        assert summary.by_entity_type == {"record": 1, "reminder": 1}
        assert sum(b.count for b in summary.timeline) == summary.total
