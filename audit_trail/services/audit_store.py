"""
Audit store: the append-only entry log and its query engine.

This service enforces the rules every other part relies on:
1. Entries are only ever appended; there is no update or delete
2. Every read is scoped to one organization
3. Listing order is (created_at DESC, id DESC), walked by keyset
   cursors, never by offset
4. Appends are serialized within the process so (created_at, id)
   keys are unique and increase in commit order

Unlike the read paths, append commits on its own: an audit entry
is a side effect of some other action and must be durable (or
reported as failed) independently of that action's transaction.
Give the store a session that is not carrying other work.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Iterator

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import DBAPIError, DisconnectionError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from audit_trail.config import get_settings
from audit_trail.errors import (
    EntryNotFound,
    InvalidFilter,
    InvalidLimit,
    StoreUnavailable,
)
from audit_trail.models.audit_entry import AuditEntry, dump_metadata, utcnow
from audit_trail.schemas.audit import AuditEntryCreate, AuditEntryResponse, AuditPage
from audit_trail.services.cursor import CursorCodec, CursorKey
from audit_trail.services.filters import AuditFilter
from audit_trail.services.notifier import AuditNotifier

logger = logging.getLogger(__name__)

# Held across timestamp allocation and commit so that, within this
# process, an entry committed later never sorts behind one
# committed earlier.
_append_lock = threading.Lock()


class MonotonicClock:
    """
    UTC clock that never repeats or goes backwards.

    If the wall clock stalls or steps back, the next reading is
    one microsecond after the previous one.
    """

    def __init__(self, source: Callable[[], datetime] = utcnow):
        self._source = source
        self._last: datetime | None = None
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            current = self._source()
            if self._last is not None and current <= self._last:
                current = self._last + timedelta(microseconds=1)
            self._last = current
            return current


default_clock = MonotonicClock()


@contextmanager
def store_errors(db: Session, operation: str):
    """
    Translate driver-level and connection pool failures into
    StoreUnavailable.
    """
    try:
        yield
    except (DBAPIError, DisconnectionError, PoolTimeoutError) as e:
        db.rollback()
        logger.error("Audit store unavailable during %s: %s", operation, e)
        raise StoreUnavailable(
            f"Audit store is unavailable ({operation}); please retry"
        ) from e


class AuditStore:
    """
    All audit entry reads and writes pass through this service.

    Deliberately has no update or delete method.
    """

    def __init__(
        self,
        db: Session,
        codec: CursorCodec | None = None,
        notifier: AuditNotifier | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.db = db
        self.codec = codec or CursorCodec()
        self.notifier = notifier
        self.clock = clock or default_clock
        self.settings = get_settings()

    # --- Writes ---

    def append(self, org_id: str, request: AuditEntryCreate) -> AuditEntry:
        """
        Record one entry and return it once it is durable.

        id and created_at are assigned here; callers cannot supply
        them. Subscribers are notified only after the commit.
        """
        with _append_lock:
            entry = AuditEntry(
                org_id=org_id,
                actor_id=request.actor_id,
                action=request.action,
                entity_type=request.entity_type,
                entity_id=request.entity_id,
                metadata_json=dump_metadata(request.metadata),
                created_at=self.clock(),
            )
            with store_errors(self.db, "append"):
                self.db.add(entry)
                self.db.commit()
                # Load the committed row so the entry stays readable
                # after the session is closed.
                self.db.refresh(entry)

        logger.debug(
            "Appended audit entry %s (%s.%s) for org %s",
            entry.id, entry.entity_type, entry.action, org_id,
        )
        if self.notifier is not None:
            self.notifier.publish(entry)
        return entry

    # --- Reads ---

    def _resolve_limit(self, limit: int | None) -> int:
        if limit is None:
            limit = self.settings.DEFAULT_PAGE_SIZE
        if limit <= 0:
            raise InvalidLimit(f"limit must be positive, got {limit}")
        return min(limit, self.settings.MAX_PAGE_SIZE)

    def _scope(self, org_id: str, audit_filter: AuditFilter) -> list:
        return [AuditEntry.org_id == org_id, *audit_filter.clauses()]

    def list_page(
        self,
        org_id: str,
        audit_filter: AuditFilter | None = None,
        cursor: str | None = None,
        limit: int | None = None,
    ) -> AuditPage:
        """
        Return one page of matching entries, newest first.

        The page starts strictly after ``cursor`` (or at the newest
        entry when no cursor is given). One extra row is fetched to
        learn whether another page exists without a second query.

        Raises InvalidLimit for limit <= 0 and InvalidCursor for a
        token this store did not issue. Limits above MAX_PAGE_SIZE
        are clamped.
        """
        audit_filter = audit_filter or AuditFilter()
        limit = self._resolve_limit(limit)
        key = self.codec.decode(cursor) if cursor else None

        conditions = self._scope(org_id, audit_filter)
        page_conditions = list(conditions)
        if key is not None:
            page_conditions.append(or_(
                AuditEntry.created_at < key.created_at,
                and_(
                    AuditEntry.created_at == key.created_at,
                    AuditEntry.id < key.id,
                ),
            ))

        with store_errors(self.db, "list"):
            rows = self.db.execute(
                select(AuditEntry)
                .where(*page_conditions)
                .order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc())
                .limit(limit + 1)
            ).scalars().all()
            total = self.db.execute(
                select(func.count()).select_from(AuditEntry).where(*conditions)
            ).scalar_one()

        has_more = len(rows) > limit
        rows = rows[:limit]
        next_cursor = None
        if has_more:
            last = rows[-1]
            next_cursor = self.codec.encode(CursorKey(last.created_at, last.id))

        return AuditPage(
            entries=[AuditEntryResponse.model_validate(r) for r in rows],
            has_more=has_more,
            next_cursor=next_cursor,
            total=total,
        )

    def search(
        self,
        org_id: str,
        query: str,
        cursor: str | None = None,
        limit: int | None = None,
        audit_filter: AuditFilter | None = None,
    ) -> AuditPage:
        """
        Free-text search with the same pagination contract as list_page.

        ``query`` becomes the filter's text constraint and is ANDed
        with any structured fields in ``audit_filter``.
        """
        if query is None or not query.strip():
            raise InvalidFilter("Search query is required")
        audit_filter = (audit_filter or AuditFilter()).with_text(query.strip())
        return self.list_page(org_id, audit_filter, cursor=cursor, limit=limit)

    def get_entry(self, org_id: str, entry_id: int) -> AuditEntry:
        """Fetch one entry. Entries of other organizations are not found."""
        with store_errors(self.db, "get"):
            entry = self.db.execute(
                select(AuditEntry).where(
                    AuditEntry.id == entry_id,
                    AuditEntry.org_id == org_id,
                )
            ).scalar_one_or_none()
        if entry is None:
            raise EntryNotFound(f"Audit entry {entry_id} not found")
        return entry

    def iter_matching(
        self,
        org_id: str,
        audit_filter: AuditFilter | None = None,
        batch_size: int | None = None,
    ) -> Iterator[AuditEntry]:
        """
        Yield every matching entry, newest first, in batches.

        Only one batch of rows is held in memory at a time.
        """
        audit_filter = audit_filter or AuditFilter()
        batch_size = batch_size or self.settings.EXPORT_BATCH_SIZE
        stmt = (
            select(AuditEntry)
            .where(*self._scope(org_id, audit_filter))
            .order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc())
            .execution_options(yield_per=batch_size)
        )
        with store_errors(self.db, "export"):
            for entry in self.db.scalars(stmt):
                yield entry
