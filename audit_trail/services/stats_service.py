"""
Statistics over audit entries.

get_stats answers "what happened in the last hour/day/week/month"
with grouped counts. get_activity_summary answers the same for an
explicit date range and adds a timeline for charting.

Both work on the full matching set for the organization, never on
a single page.
"""

from collections import Counter
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from audit_trail.models.audit_entry import AuditEntry, utcnow
from audit_trail.models.enums import GroupBy, StatsWindow, SYSTEM_ACTOR
from audit_trail.schemas.audit import (
    ActivitySummary,
    ActorCount,
    AuditStats,
    SummaryPeriod,
    TimelineBucket,
)
from audit_trail.services.audit_store import store_errors
from audit_trail.services.filters import to_utc_naive

TOP_ACTOR_LIMIT = 5
DEFAULT_SUMMARY_RANGE = timedelta(days=7)


def top_action(by_action: dict[str, int]) -> str | None:
    """
    The most frequent action.

    Equal counts resolve to the alphabetically first action so the
    answer does not depend on dict ordering.
    """
    if not by_action:
        return None
    return min(by_action.items(), key=lambda item: (-item[1], item[0]))[0]


def pick_group_by(start: datetime | None, end: datetime | None) -> GroupBy:
    """Choose a timeline bucket size that keeps the chart readable."""
    if start is None or end is None:
        return GroupBy.DAY
    days = (end - start).total_seconds() / 86400
    if days <= 2:
        return GroupBy.HOUR
    if days <= 60:
        return GroupBy.DAY
    return GroupBy.WEEK


def bucket_start(moment: datetime, group_by: GroupBy) -> datetime:
    """Truncate a timestamp to the start of its bucket. Weeks start Monday."""
    if group_by == GroupBy.HOUR:
        return moment.replace(minute=0, second=0, microsecond=0)
    day = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    if group_by == GroupBy.DAY:
        return day
    return day - timedelta(days=day.weekday())


def _sorted_counts(counter: Counter) -> dict[str, int]:
    return dict(sorted(counter.items(), key=lambda item: (-item[1], item[0])))


class StatsService:

    def __init__(self, db: Session):
        self.db = db

    def get_stats(
        self,
        org_id: str,
        window: StatsWindow | str = StatsWindow.DAY,
        now: datetime | None = None,
    ) -> AuditStats:
        """
        Grouped counts over [now - window, now).

        A single grouped query feeds all three breakdowns, so
        sum(by_action) == sum(by_entity_type) == sum(by_actor) ==
        total even while entries are being appended. Entries
        without an actor are counted under SYSTEM_ACTOR.
        """
        window = StatsWindow(window)
        now = to_utc_naive(now) if now is not None else utcnow()
        start = now - window.duration

        with store_errors(self.db, "stats"):
            rows = self.db.execute(
                select(
                    AuditEntry.action,
                    AuditEntry.entity_type,
                    AuditEntry.actor_id,
                    func.count(),
                )
                .where(
                    AuditEntry.org_id == org_id,
                    AuditEntry.created_at >= start,
                    AuditEntry.created_at < now,
                )
                .group_by(
                    AuditEntry.action,
                    AuditEntry.entity_type,
                    AuditEntry.actor_id,
                )
            ).all()

        by_action: Counter = Counter()
        by_entity_type: Counter = Counter()
        by_actor: Counter = Counter()
        for action, entity_type, actor_id, count in rows:
            by_action[action] += count
            by_entity_type[entity_type] += count
            by_actor[actor_id or SYSTEM_ACTOR] += count

        by_action_counts = _sorted_counts(by_action)
        return AuditStats(
            by_action=by_action_counts,
            by_entity_type=_sorted_counts(by_entity_type),
            by_actor=_sorted_counts(by_actor),
            total=sum(by_action.values()),
            window=window,
            top_action=top_action(by_action_counts),
        )

    def get_activity_summary(
        self,
        org_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        group_by: GroupBy | str | None = None,
    ) -> ActivitySummary:
        """
        Timeline and breakdowns for entries with start <= created_at <= end.

        end defaults to now and start to seven days before end. When
        group_by is omitted it is picked from the length of the range.
        Buckets with no entries are left out of the timeline.
        """
        end = to_utc_naive(end) if end is not None else utcnow()
        start = to_utc_naive(start) if start is not None else end - DEFAULT_SUMMARY_RANGE
        group_by = GroupBy(group_by) if group_by else pick_group_by(start, end)

        stmt = (
            select(
                AuditEntry.created_at,
                AuditEntry.action,
                AuditEntry.entity_type,
                AuditEntry.actor_id,
            )
            .where(
                AuditEntry.org_id == org_id,
                AuditEntry.created_at >= start,
                AuditEntry.created_at <= end,
            )
            .execution_options(yield_per=1000)
        )

        timeline: Counter = Counter()
        by_action: Counter = Counter()
        by_entity_type: Counter = Counter()
        by_actor: Counter = Counter()
        total = 0
        with store_errors(self.db, "summary"):
            for created_at, action, entity_type, actor_id in self.db.execute(stmt):
                timeline[bucket_start(created_at, group_by)] += 1
                by_action[action] += 1
                by_entity_type[entity_type] += 1
                by_actor[actor_id or SYSTEM_ACTOR] += 1
                total += 1

        top_actors = sorted(by_actor.items(), key=lambda item: (-item[1], item[0]))
        return ActivitySummary(
            timeline=[
                TimelineBucket(timestamp=ts, count=count)
                for ts, count in sorted(timeline.items())
            ],
            by_action=_sorted_counts(by_action),
            by_entity_type=_sorted_counts(by_entity_type),
            top_actors=[
                ActorCount(actor_id=actor_id, count=count)
                for actor_id, count in top_actors[:TOP_ACTOR_LIMIT]
            ],
            total=total,
            group_by=group_by,
            period=SummaryPeriod(from_=start, to=end),
        )
